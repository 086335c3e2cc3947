"""DNS resolution through the system resolver or configured name servers."""

from __future__ import annotations

import asyncio
import enum
import logging
import socket
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from ipaddress import IPv4Address, IPv6Address, ip_address
from urllib.parse import parse_qsl, urlsplit

import dns.asyncresolver
import dns.nameserver
import dns.resolver

from .config import SocketAddr

log = logging.getLogger(__name__)

_QUERY_TIMEOUT_SEC = 1.0


def sort_socket_addrs(socket_addrs: Iterable[SocketAddr], prefer_ipv6: bool) -> list[SocketAddr]:
    """Interleave IPv6 and IPv4 addresses as RFC 8305 suggests.

    The first address is IPv6 when ``prefer_ipv6`` is set and one exists.
    """
    addrs = list(socket_addrs)
    v6 = (a for a in addrs if isinstance(a[0], IPv6Address))
    v4 = (a for a in addrs if isinstance(a[0], IPv4Address))

    ordered: list[SocketAddr] = []
    pick_v6 = not prefer_ipv6
    while True:
        pick_v6 = not pick_v6
        first, second = (v6, v4) if pick_v6 else (v4, v6)
        addr = next(first, None)
        if addr is None:
            addr = next(second, None)
        if addr is None:
            return ordered
        ordered.append(addr)


class DnsProtocol(enum.Enum):
    """Transport used to talk to a name server."""

    UDP = "udp"
    HTTPS = "https"
    TLS = "tls"


@dataclass(frozen=True)
class NameServer:
    """A name server address with its transport and TLS server name."""

    address: SocketAddr
    protocol: DnsProtocol
    tls_sni: str | None = None


_SCHEMES = {
    "dns": (DnsProtocol.UDP, 53),
    "dns+https": (DnsProtocol.HTTPS, 443),
    "dns+tls": (DnsProtocol.TLS, 853),
}


def _get_sni(query: str) -> str:
    for key, value in parse_qsl(query, keep_blank_values=True):
        if key == "sni":
            return value
    raise ValueError("Missing `sni` query parameter for dns over https")


def url_to_name_server(url: str) -> NameServer:
    """Parse ``dns://IP``, ``dns+https://IP?sni=NAME`` or ``dns+tls://IP?sni=NAME``."""
    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    if scheme not in _SCHEMES:
        raise ValueError("invalid protocol for dns resolver")
    protocol, default_port = _SCHEMES[scheme]
    tls_sni = None if protocol is DnsProtocol.UDP else _get_sni(parts.query)

    host = parts.hostname
    if not host:
        raise ValueError(f"Invalid dns resolver host: {url}")
    try:
        ip = ip_address(host)
    except ValueError as err:
        raise ValueError(f"Dns resolver must be an ip address, got {host}") from err

    port = parts.port if parts.port is not None else default_port
    return NameServer(address=(ip, port), protocol=protocol, tls_sni=tls_sni)


def _to_dnspython(server: NameServer) -> dns.nameserver.Nameserver:
    ip, port = server.address
    match server.protocol:
        case DnsProtocol.UDP:
            return dns.nameserver.Do53Nameserver(str(ip), port)
        case DnsProtocol.TLS:
            return dns.nameserver.DoTNameserver(str(ip), port, hostname=server.tls_sni)
        case DnsProtocol.HTTPS:
            authority = server.tls_sni if port == 443 else f"{server.tls_sni}:{port}"
            return dns.nameserver.DoHNameserver(
                f"https://{authority}/dns-query", bootstrap_address=str(ip)
            )


def _tune(resolver: dns.asyncresolver.Resolver) -> None:
    resolver.timeout = _QUERY_TIMEOUT_SEC
    resolver.cache = dns.resolver.Cache()


class DnsResolver:
    """Resolves domain names to socket addresses.

    Without a dnspython resolver the system (libc) resolver is used.
    ``proxy`` and ``so_mark`` are the connection settings the tunnel was
    configured with.
    """

    def __init__(
        self,
        resolver: dns.asyncresolver.Resolver | None = None,
        *,
        prefer_ipv6: bool = True,
        proxy: str | None = None,
        so_mark: int | None = None,
    ) -> None:
        self._resolver = resolver
        self.prefer_ipv6 = prefer_ipv6
        self.proxy = proxy
        self.so_mark = so_mark

    @property
    def is_system(self) -> bool:
        """Whether lookups go through the system resolver."""
        return self._resolver is None

    async def lookup_host(self, domain: str, port: int) -> list[SocketAddr]:
        """Resolve ``domain`` and pair every address with ``port``."""
        if self._resolver is None:
            loop = asyncio.get_running_loop()
            infos = await loop.getaddrinfo(domain, port, type=socket.SOCK_STREAM)
            return [(ip_address(info[4][0]), port) for info in infos]

        results = await asyncio.gather(
            self._query(domain, "A"), self._query(domain, "AAAA"), return_exceptions=True
        )
        ips: list[IPv4Address | IPv6Address] = []
        errors: list[BaseException] = []
        for result in results:
            if isinstance(result, BaseException):
                errors.append(result)
            else:
                ips.extend(result)

        if not ips:
            if errors:
                raise errors[0]
            raise LookupError(f"no addresses found for {domain}")
        return sort_socket_addrs(((ip, port) for ip in ips), self.prefer_ipv6)

    async def _query(self, domain: str, rdtype: str) -> list[IPv4Address | IPv6Address]:
        assert self._resolver is not None
        try:
            answer = await self._resolver.resolve(domain, rdtype)
        except dns.resolver.NoAnswer:
            return []
        return [ip_address(record.address) for record in answer]


def new_from_urls(
    resolvers: Sequence[str],
    proxy: str | None = None,
    so_mark: int | None = None,
    prefer_ipv6: bool = True,
) -> DnsResolver:
    """Build a resolver from resolver URLs.

    No URL means the system configuration; any ``system://`` URL means libc.
    """
    settings = {"prefer_ipv6": prefer_ipv6, "proxy": proxy, "so_mark": so_mark}

    if not resolvers:
        try:
            resolver = dns.asyncresolver.Resolver()
        except (dns.resolver.NoResolverConfiguration, OSError):
            log.warning(
                "Fall-backing to system dns resolver. You should consider specifying "
                "a dns resolver. To avoid performance issue"
            )
            return DnsResolver(**settings)
        _tune(resolver)
        return DnsResolver(resolver, **settings)

    if any(urlsplit(url).scheme.lower() == "system" for url in resolvers):
        return DnsResolver(**settings)

    name_servers = [_to_dnspython(url_to_name_server(url)) for url in resolvers]
    resolver = dns.asyncresolver.Resolver(configure=False)
    resolver.nameservers = name_servers
    _tune(resolver)
    return DnsResolver(resolver, **settings)