"""Parsers for tunnel, URL, header, credential and duration arguments."""

from __future__ import annotations

import base64
import re
from ipaddress import AddressValueError, IPv4Address, IPv6Address
from pathlib import Path
from urllib.parse import parse_qsl

from .config import Host, LocalProtocol, LocalToRemote, ProtocolKind, SocketAddr

_UNSIGNED = re.compile(r"\+?[0-9]+")
_U16_MAX = 0xFFFF
_U64_MAX = 0xFFFF_FFFF_FFFF_FFFF

_DURATION_UNITS = {"s": 1, "m": 60, "h": 3600}
_DEFAULT_TIMEOUT_SEC = 30.0

_FORBIDDEN_HOST_CHARS = frozenset("\x00\t\n\r #%/:<>?@[\\]^|")
_HEADER_NAME = re.compile(r"[!#$%&'*+\-.^_`|~0-9A-Za-z]+")
_DNS_LABEL = re.compile(r"[A-Za-z0-9_-]+")

_SERVER_SCHEMES = ("ws", "wss", "http", "https")


class ArgumentError(ValueError):
    """An argument could not be parsed."""


def _parse_unsigned(text: str, maximum: int) -> int | None:
    if not _UNSIGNED.fullmatch(text):
        return None
    value = int(text)
    return value if value <= maximum else None


def _parse_ipv6(text: str) -> IPv6Address | None:
    if "%" in text:
        return None
    try:
        return IPv6Address(text)
    except (AddressValueError, ValueError):
        return None


def _parse_ipv4(text: str) -> IPv4Address | None:
    try:
        return IPv4Address(text)
    except (AddressValueError, ValueError):
        return None


def parse_duration_sec(arg: str) -> float:
    """Parse a duration such as ``30``, ``30s``, ``5m`` or ``1h`` into seconds."""
    number, multiplier = arg, 1
    if arg and arg[-1] in _DURATION_UNITS:
        number, multiplier = arg[:-1], _DURATION_UNITS[arg[-1]]

    secs = _parse_unsigned(number, _U64_MAX)
    if secs is None:
        raise ArgumentError(f"cannot parse duration of seconds from {number}")
    return float(secs * multiplier)


def parse_local_bind(arg: str) -> tuple[SocketAddr, str]:
    """Parse ``[BIND:]PORT`` at the start of ``arg``.

    Returns the bind address and what follows the port. Without an
    explicit address the bind defaults to 127.0.0.1.
    """
    if arg.startswith("["):
        ipv6_str, sep, remaining = arg.partition("]")
        if not sep:
            raise ArgumentError(f"cannot parse IPv6 bind from {arg}")
        ipv6 = _parse_ipv6(ipv6_str[1:])
        if ipv6 is None:
            raise ArgumentError(f"cannot parse IPv6 bind from {ipv6_str}")
        bind: IPv4Address | IPv6Address = ipv6
    else:
        ipv4_str, _, after = arg.partition(":")
        ipv4 = _parse_ipv4(ipv4_str)
        if ipv4 is None:
            bind, remaining = IPv4Address("127.0.0.1"), arg
        else:
            bind, remaining = ipv4, after

    remaining = remaining.lstrip(":")
    parts = re.split(r"[:?]", remaining, maxsplit=1)
    port_str = parts[0]
    remaining = parts[1] if len(parts) > 1 else ""

    port = _parse_unsigned(port_str, _U16_MAX)
    if port is None:
        raise ArgumentError(f"cannot parse bind port from {port_str}")
    return (bind, port), remaining


def _parse_domain(text: str, remaining: str) -> str:
    if not text:
        raise ArgumentError(f"cannot parse remote host from {remaining}")
    if any(ch in _FORBIDDEN_HOST_CHARS for ch in text):
        raise ArgumentError(f"cannot parse remote from {remaining}")
    if text.isascii():
        return text.lower()
    try:
        return text.encode("idna").decode("ascii").lower()
    except UnicodeError as err:
        raise ArgumentError(f"cannot parse remote from {remaining}") from err


def _parse_host_port(authority: str, remaining: str) -> tuple[Host, int | None]:
    hostport = authority.rpartition("@")[2]
    if hostport.startswith("["):
        inner, sep, after = hostport[1:].partition("]")
        if not sep:
            raise ArgumentError(f"cannot parse remote from {remaining}")
        ipv6 = _parse_ipv6(inner)
        if ipv6 is None:
            raise ArgumentError(f"cannot parse remote from {remaining}")
        host: Host = ipv6
        if after and not after.startswith(":"):
            raise ArgumentError(f"cannot parse remote from {remaining}")
        port_str = after[1:] if after else ""
    else:
        host_str, _, port_str = hostport.partition(":")
        ipv4 = _parse_ipv4(host_str)
        host = ipv4 if ipv4 is not None else _parse_domain(host_str, remaining)

    if not port_str:
        return host, None
    if not port_str.isascii() or not port_str.isdigit():
        raise ArgumentError(f"cannot parse remote from {remaining}")
    port = int(port_str)
    if port > _U16_MAX:
        raise ArgumentError(f"cannot parse remote from {remaining}")
    return host, port


def parse_tunnel_dest(remaining: str) -> tuple[Host, int, dict[str, str]]:
    """Parse ``HOST:PORT[?options]`` into host, port and sorted options."""
    match = re.match(r"([^/?#]*)(.*)", remaining, re.DOTALL)
    assert match is not None
    authority, rest = match.group(1), match.group(2)

    host, port = _parse_host_port(authority, remaining)

    # A URL parser drops the https default port, so 443 only counts
    # when it is written out right before the end or the query.
    if port is None or port == 443:
        if remaining.endswith(":443") or ":443?" in remaining:
            port = 443
        else:
            raise ArgumentError(f"cannot parse remote port from {remaining}")

    before_fragment = rest.partition("#")[0]
    query = before_fragment.partition("?")[2]
    options = dict(parse_qsl(query, keep_blank_values=True))
    return host, port, dict(sorted(options.items()))


def _timeout(options: dict[str, str]) -> float | None:
    raw = options.get("timeout_sec")
    secs = _parse_unsigned(raw, _U64_MAX) if raw is not None else None
    if secs is None:
        return _DEFAULT_TIMEOUT_SEC
    return None if secs == 0 else float(secs)


def _credentials(options: dict[str, str]) -> tuple[str, str] | None:
    login = options.get("login")
    secret = options.get("password")
    if login is None or secret is None:
        return None
    return login, secret


def _dynamic_dest(remaining: str) -> tuple[Host, int, dict[str, str]]:
    return parse_tunnel_dest(f"0.0.0.0:0?{remaining}")


def parse_tunnel_arg(arg: str) -> LocalToRemote:
    """Parse a local-to-remote tunnel such as ``tcp://1212:google.com:443``."""
    proto, sep, tunnel_info = arg.partition("://")
    if not sep:
        raise ArgumentError(f"cannot parse protocol from {arg}")

    match proto:
        case "tcp":
            local, remaining = parse_local_bind(tunnel_info)
            host, port, options = parse_tunnel_dest(remaining)
            protocol = LocalProtocol(
                ProtocolKind.TCP, proxy_protocol="proxy_protocol" in options
            )
        case "udp":
            local, remaining = parse_local_bind(tunnel_info)
            host, port, options = parse_tunnel_dest(remaining)
            protocol = LocalProtocol(ProtocolKind.UDP, timeout=_timeout(options))
        case "unix":
            path, sep, remote = tunnel_info.partition(":")
            if not sep:
                raise ArgumentError(f"cannot parse unix socket path from {arg}")
            host, port, options = parse_tunnel_dest(remote)
            protocol = LocalProtocol(
                ProtocolKind.UNIX,
                path=Path(path),
                proxy_protocol="proxy_protocol" in options,
            )
            local = (IPv6Address("::"), 0)
        case "http":
            local, remaining = parse_local_bind(tunnel_info)
            host, port, options = _dynamic_dest(remaining)
            protocol = LocalProtocol(
                ProtocolKind.HTTP_PROXY,
                timeout=_timeout(options),
                credentials=_credentials(options),
                proxy_protocol="proxy_protocol" in options,
            )
        case "socks5":
            local, remaining = parse_local_bind(tunnel_info)
            host, port, options = _dynamic_dest(remaining)
            protocol = LocalProtocol(
                ProtocolKind.SOCKS5,
                timeout=_timeout(options),
                credentials=_credentials(options),
            )
        case "stdio":
            host, port, options = parse_tunnel_dest(tunnel_info)
            protocol = LocalProtocol(
                ProtocolKind.STDIO, proxy_protocol="proxy_protocol" in options
            )
            local = (IPv4Address("0.0.0.0"), 0)
        case "tproxy+tcp":
            local, remaining = parse_local_bind(tunnel_info)
            host, port, _ = _dynamic_dest(remaining)
            protocol = LocalProtocol(ProtocolKind.TPROXY_TCP)
        case "tproxy+udp":
            local, remaining = parse_local_bind(tunnel_info)
            host, port, options = _dynamic_dest(remaining)
            protocol = LocalProtocol(ProtocolKind.TPROXY_UDP, timeout=_timeout(options))
        case _:
            raise ArgumentError(f"Invalid local protocol for tunnel {arg}")

    return LocalToRemote(local_protocol=protocol, local=local, remote=(host, port))


def parse_reverse_tunnel_arg(arg: str) -> LocalToRemote:
    """Parse a remote-to-local tunnel; only tcp, udp, socks5, http and unix apply."""
    tunnel = parse_tunnel_arg(arg)
    proto = tunnel.local_protocol
    match proto.kind:
        case ProtocolKind.TCP:
            reverse = LocalProtocol(ProtocolKind.REVERSE_TCP)
        case ProtocolKind.UDP:
            reverse = LocalProtocol(ProtocolKind.REVERSE_UDP, timeout=proto.timeout)
        case ProtocolKind.SOCKS5:
            reverse = LocalProtocol(
                ProtocolKind.REVERSE_SOCKS5,
                timeout=proto.timeout,
                credentials=proto.credentials,
            )
        case ProtocolKind.HTTP_PROXY:
            reverse = LocalProtocol(
                ProtocolKind.REVERSE_HTTP_PROXY,
                timeout=proto.timeout,
                credentials=proto.credentials,
            )
        case ProtocolKind.UNIX:
            reverse = LocalProtocol(ProtocolKind.REVERSE_UNIX, path=proto.path)
        case _:
            raise ArgumentError(f"Cannot use {proto} as reverse tunnels {arg}")

    return LocalToRemote(local_protocol=reverse, local=tunnel.local, remote=tunnel.remote)


def _dns_name_problem(name: str) -> str | None:
    if not name:
        return "empty name"
    if not name.isascii():
        return "non-ascii name"
    if len(name) > 253:
        return "name too long"
    labels = (name[:-1] if name.endswith(".") else name).split(".")
    for label in labels:
        if not label or len(label) > 63:
            return "invalid label length"
        if not _DNS_LABEL.fullmatch(label):
            return "invalid character"
        if label.startswith("-") or label.endswith("-"):
            return "label starts or ends with hyphen"
    if labels[-1].isdigit():
        return "name looks like an ip address"
    return None


def parse_sni_override(arg: str) -> str:
    """Validate a DNS name to send as TLS SNI."""
    problem = _dns_name_problem(arg)
    if problem is not None:
        raise ArgumentError(f"Invalid sni override: {problem}")
    return arg


def _is_header_value(value: str) -> bool:
    return all(ch == "\t" or " " <= ch <= "~" for ch in value)


def parse_http_headers(arg: str) -> tuple[str, str]:
    """Parse ``NAME: VALUE`` into a lower-cased header name and trimmed value."""
    key, sep, value = arg.partition(":")
    if not sep:
        raise ArgumentError(f"cannot parse http header from {arg}")

    trimmed = value.strip()
    if not _is_header_value(trimmed):
        raise ArgumentError(
            f"cannot parse http header value from {value} due to invalid characters"
        )
    if not _HEADER_NAME.fullmatch(key):
        raise ArgumentError(f"cannot parse http header name from {key}")
    return key.lower(), trimmed


def parse_http_credentials(arg: str) -> str:
    """Build a basic ``Authorization`` header value from ``USER[:PASS]``."""
    encoded = base64.b64encode(arg.strip().encode()).decode("ascii")
    return f"Basic {encoded}"


def parse_server_url(arg: str) -> str:
    """Check that ``arg`` is a ws, wss, http or https URL with a host."""
    scheme, sep, rest = arg.partition("://")
    if not sep or not re.fullmatch(r"[A-Za-z][A-Za-z0-9+.\-]*", scheme):
        raise ArgumentError(f"cannot parse server url {arg}")

    scheme = scheme.lower()
    if scheme not in _SERVER_SCHEMES:
        raise ArgumentError(f"invalid scheme {scheme}")

    authority = re.match(r"[^/?#]*", rest).group(0)  # type: ignore[union-attr]
    try:
        _parse_host_port(authority, arg)
    except ArgumentError as err:
        if not authority.rpartition("@")[2]:
            raise ArgumentError(f"invalid server host {arg}") from err
        raise ArgumentError(f"cannot parse server url {arg}") from err
    return arg