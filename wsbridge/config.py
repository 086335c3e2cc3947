"""Tunnel and client/server configuration objects."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from ipaddress import IPv4Address, IPv6Address
from pathlib import Path

DEFAULT_CLIENT_UPGRADE_PATH_PREFIX = "v1"

Host = str | IPv4Address | IPv6Address
SocketAddr = tuple[IPv4Address | IPv6Address, int]


class ProtocolKind(enum.Enum):
    """The kind of local endpoint a tunnel listens on."""

    TCP = "tcp"
    UDP = "udp"
    STDIO = "stdio"
    SOCKS5 = "socks5"
    TPROXY_TCP = "tproxy+tcp"
    TPROXY_UDP = "tproxy+udp"
    HTTP_PROXY = "http"
    UNIX = "unix"
    REVERSE_TCP = "reverse_tcp"
    REVERSE_UDP = "reverse_udp"
    REVERSE_SOCKS5 = "reverse_socks5"
    REVERSE_HTTP_PROXY = "reverse_http"
    REVERSE_UNIX = "reverse_unix"


_REVERSE_KINDS = frozenset(
    {
        ProtocolKind.REVERSE_TCP,
        ProtocolKind.REVERSE_UDP,
        ProtocolKind.REVERSE_SOCKS5,
        ProtocolKind.REVERSE_HTTP_PROXY,
        ProtocolKind.REVERSE_UNIX,
    }
)

_PATH_KINDS = frozenset({ProtocolKind.UNIX, ProtocolKind.REVERSE_UNIX})


@dataclass(frozen=True)
class LocalProtocol:
    """A local protocol with its options.

    ``timeout`` is in seconds; ``None`` disables it.
    ``credentials`` is a ``(login, password)`` pair.
    """

    kind: ProtocolKind
    proxy_protocol: bool = False
    timeout: float | None = None
    credentials: tuple[str, str] | None = None
    path: Path | None = None

    def __post_init__(self) -> None:
        if self.kind in _PATH_KINDS and self.path is None:
            raise ValueError(f"{self.kind.value} protocol requires a socket path")

    def is_reverse(self) -> bool:
        """Whether this protocol describes a reverse (remote to local) tunnel."""
        return self.kind in _REVERSE_KINDS


@dataclass(frozen=True)
class LocalToRemote:
    """A tunnel: where to listen locally and where to forward to."""

    local_protocol: LocalProtocol
    local: SocketAddr
    remote: tuple[Host, int]


@dataclass(kw_only=True)
class ClientConfig:
    """Client settings. Durations are in seconds."""

    remote_addr: str
    local_to_remote: list[LocalToRemote] = field(default_factory=list)
    remote_to_local: list[LocalToRemote] = field(default_factory=list)
    socket_so_mark: int | None = None
    connection_min_idle: int = 0
    connection_retry_max_backoff: float = 300.0
    reverse_tunnel_connection_retry_max_backoff: float = 1.0
    tls_sni_override: str | None = None
    tls_sni_disable: bool = False
    tls_ech_enable: bool = False
    tls_verify_certificate: bool = False
    http_proxy: str | None = None
    http_proxy_login: str | None = None
    http_proxy_password: str | None = None
    http_upgrade_path_prefix: str = DEFAULT_CLIENT_UPGRADE_PATH_PREFIX
    http_upgrade_credentials: str | None = None
    websocket_ping_frequency: float | None = 30.0
    websocket_mask_frame: bool = False
    http_headers: list[tuple[str, str]] = field(default_factory=list)
    http_headers_file: Path | None = None
    tls_certificate: Path | None = None
    tls_private_key: Path | None = None
    dns_resolver: list[str] = field(default_factory=list)
    dns_resolver_prefer_ipv4: bool = False

    def __post_init__(self) -> None:
        if self.tls_sni_disable and self.tls_sni_override is not None:
            raise ValueError("tls_sni_disable cannot be used with tls_sni_override")
        if self.tls_sni_disable and self.tls_ech_enable:
            raise ValueError("tls_sni_disable cannot be used with tls_ech_enable")


@dataclass(kw_only=True)
class ServerConfig:
    """Server settings. Durations are in seconds."""

    remote_addr: str
    socket_so_mark: int | None = None
    websocket_ping_frequency: float | None = 30.0
    websocket_mask_frame: bool = False
    dns_resolver: list[str] = field(default_factory=list)
    dns_resolver_prefer_ipv4: bool = False
    restrict_to: list[str] | None = None
    restrict_http_upgrade_path_prefix: list[str] | None = None
    restrict_config: Path | None = None
    tls_certificate: Path | None = None
    tls_private_key: Path | None = None
    tls_client_ca_certs: Path | None = None
    http_proxy: str | None = None
    http_proxy_login: str | None = None
    http_proxy_password: str | None = None
    remote_to_local_server_idle_timeout: float = 180.0

    def __post_init__(self) -> None:
        if self.restrict_config is not None:
            if self.restrict_to is not None:
                raise ValueError("restrict_to cannot be used with restrict_config")
            if self.restrict_http_upgrade_path_prefix is not None:
                raise ValueError(
                    "restrict_http_upgrade_path_prefix cannot be used with restrict_config"
                )