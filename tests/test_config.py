from ipaddress import IPv4Address
from pathlib import Path

import pytest

from wsbridge.config import (
    DEFAULT_CLIENT_UPGRADE_PATH_PREFIX,
    ClientConfig,
    LocalProtocol,
    LocalToRemote,
    ProtocolKind,
    ServerConfig,
)


@pytest.mark.parametrize(
    "kind",
    [
        ProtocolKind.REVERSE_TCP,
        ProtocolKind.REVERSE_UDP,
        ProtocolKind.REVERSE_SOCKS5,
        ProtocolKind.REVERSE_HTTP_PROXY,
    ],
)
def test_reverse_kinds_are_reverse(kind):
    assert LocalProtocol(kind).is_reverse() is True


@pytest.mark.parametrize(
    "kind",
    [
        ProtocolKind.TCP,
        ProtocolKind.UDP,
        ProtocolKind.STDIO,
        ProtocolKind.SOCKS5,
        ProtocolKind.TPROXY_TCP,
        ProtocolKind.TPROXY_UDP,
        ProtocolKind.HTTP_PROXY,
    ],
)
def test_forward_kinds_are_not_reverse(kind):
    assert LocalProtocol(kind).is_reverse() is False


def test_unix_requires_path():
    with pytest.raises(ValueError):
        LocalProtocol(ProtocolKind.UNIX)
    with pytest.raises(ValueError):
        LocalProtocol(ProtocolKind.REVERSE_UNIX)


def test_unix_with_path():
    proto = LocalProtocol(ProtocolKind.REVERSE_UNIX, path=Path("/tmp/wstunnel.sock"))
    assert proto.is_reverse() is True
    assert proto.path == Path("/tmp/wstunnel.sock")


def test_local_to_remote_equality():
    a = LocalToRemote(
        LocalProtocol(ProtocolKind.TCP),
        (IPv4Address("127.0.0.1"), 443),
        ("domain.com", 4443),
    )
    b = LocalToRemote(
        LocalProtocol(ProtocolKind.TCP, proxy_protocol=False),
        (IPv4Address("127.0.0.1"), 443),
        ("domain.com", 4443),
    )
    c = LocalToRemote(
        LocalProtocol(ProtocolKind.TCP, proxy_protocol=True),
        (IPv4Address("127.0.0.1"), 443),
        ("domain.com", 4443),
    )
    assert a == b
    assert (a == c) is False


def test_client_defaults():
    cfg = ClientConfig(remote_addr="wss://localhost:8080")
    assert cfg.http_upgrade_path_prefix == DEFAULT_CLIENT_UPGRADE_PATH_PREFIX == "v1"
    assert cfg.connection_min_idle == 0
    assert cfg.connection_retry_max_backoff == 300.0
    assert cfg.reverse_tunnel_connection_retry_max_backoff == 1.0
    assert cfg.websocket_ping_frequency == 30
    assert cfg.local_to_remote == []
    assert cfg.tls_verify_certificate is False


def test_client_lists_are_independent():
    a = ClientConfig(remote_addr="ws://a")
    b = ClientConfig(remote_addr="ws://b")
    a.http_headers.append(("X-Test", "1"))
    assert b.http_headers == []


def test_client_sni_disable_conflicts_with_override():
    with pytest.raises(ValueError):
        ClientConfig(remote_addr="wss://a", tls_sni_disable=True, tls_sni_override="a.com")


def test_client_sni_disable_conflicts_with_ech():
    with pytest.raises(ValueError):
        ClientConfig(remote_addr="wss://a", tls_sni_disable=True, tls_ech_enable=True)


def test_server_defaults():
    cfg = ServerConfig(remote_addr="ws://0.0.0.0:8080")
    assert cfg.remote_to_local_server_idle_timeout == 180.0
    assert cfg.websocket_ping_frequency == 30
    assert cfg.restrict_to is None


def test_server_restrict_conflicts():
    with pytest.raises(ValueError):
        ServerConfig(
            remote_addr="ws://0.0.0.0",
            restrict_to=["google.com:443"],
            restrict_config=Path("r.yaml"),
        )
    with pytest.raises(ValueError):
        ServerConfig(
            remote_addr="ws://0.0.0.0",
            restrict_http_upgrade_path_prefix=["v1"],
            restrict_config=Path("r.yaml"),
        )


def test_server_restrict_without_config():
    cfg = ServerConfig(remote_addr="ws://0.0.0.0", restrict_to=["localhost:22"])
    assert cfg.restrict_to == ["localhost:22"]