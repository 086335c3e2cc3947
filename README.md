# wsbridge

Asyncio building blocks for a tunnelling client and server:

- `wsbridge.config`: the tunnel description (`LocalProtocol`, `ProtocolKind`,
  `LocalToRemote`) and the `ClientConfig` / `ServerConfig` settings objects
- `wsbridge.parsers`: parsing of tunnel specifications such as
  `tcp://1212:example.com:443`, durations, HTTP headers, basic credentials,
  SNI names and server URLs
- `wsbridge.dns`: name resolution through the system resolver or through
  explicit `dns://`, `dns+https://` and `dns+tls://` name servers, with IPv6
  and IPv4 results interleaved
- `wsbridge.tls`: PEM loading, leaf certificate and common name lookup, and
  client and server `ssl.SSLContext` construction
- `wsbridge.certificate`: a generated self-signed certificate for servers that
  are given none
- `wsbridge.unix_sock`: a unix domain socket listener
- `wsbridge.executor`: task executors that keep track of spawned tasks and can
  cancel them all

## Installation

Install the package with pip. It needs Python 3.11 or later and depends on
`cryptography` and `dnspython`. The `test` extra adds `pytest` and
`pytest-asyncio`.

## Parsing tunnel arguments

```python
from wsbridge.parsers import (
    ArgumentError,
    parse_duration_sec,
    parse_http_headers,
    parse_reverse_tunnel_arg,
    parse_server_url,
    parse_tunnel_arg,
)

tunnel = parse_tunnel_arg("tcp://1212:example.com:443?proxy_protocol")
print(tunnel.local_protocol, tunnel.local, tunnel.remote)

socks = parse_tunnel_arg("socks5://127.0.0.1:1080?login=user&password=password")
print(socks.local_protocol.credentials)

reverse = parse_reverse_tunnel_arg("udp://1212:1.1.1.1:53?timeout_sec=10")
print(reverse.local_protocol.is_reverse())   # True

parse_duration_sec("5m")                     # 300.0
parse_http_headers("X-Custom: value")        # ("x-custom", "value")
parse_server_url("wss://tunnel.example.com")

try:
    parse_tunnel_arg("sdsf://443:example.com:443")
except ArgumentError as err:
    print(err)
```

The recognised local protocols are `tcp`, `udp`, `unix`, `http`, `socks5`,
`stdio`, `tproxy+tcp` and `tproxy+udp`. Without an explicit bind address a
tunnel binds to `127.0.0.1`. For `udp`, `http`, `socks5` and `tproxy+udp` the
timeout is 30 seconds unless `timeout_sec` is given; `timeout_sec=0` turns it
off. `parse_reverse_tunnel_arg` accepts only `tcp`, `udp`, `socks5`, `http` and
`unix`, and raises `ArgumentError` for the others.

`ArgumentError` is a `ValueError`.

## Configuration objects

`ClientConfig` and `ServerConfig` are keyword-only dataclasses whose defaults
match the parsers' conventions: durations are seconds (for example
`connection_retry_max_backoff=300.0`, `websocket_ping_frequency=30.0`,
`remote_to_local_server_idle_timeout=180.0`). They raise `ValueError` for
conflicting settings, such as `tls_sni_disable` together with
`tls_sni_override` or `tls_ech_enable`, or `restrict_config` together with
`restrict_to` or `restrict_http_upgrade_path_prefix`.

## Resolving names

```python
import asyncio

from wsbridge import dns


async def main():
    resolver = dns.new_from_urls(["dns://1.1.1.1"], None, None, True)
    print(await resolver.lookup_host("example.com", 443))


asyncio.run(main())
```

With no URL, `new_from_urls` reads the system DNS configuration and falls
back to the libc resolver if that fails; any `system://` URL selects the libc
resolver directly. `dns+https` and `dns+tls` URLs need an `sni` query
parameter, and every name server must be given as an IP address.
`url_to_name_server` parses a single URL and `sort_socket_addrs` does the
IPv6/IPv4 interleaving.

## TLS

```python
from wsbridge import tls

client_ctx = tls.tls_client_context(False, ["http/1.1"], None, None)
server_ctx = tls.tls_server_context(None, None, None, ["http/1.1"])
```

Certificate verification is off unless `verify_certificate` is true. With no
certificate or key paths the server context uses `embedded_certificate()`
from `wsbridge.certificate`, generated once per process. Passing
`client_ca_path` makes the server require client certificates signed by those
CAs. If `SSLKEYLOGFILE` is set, TLS keys are logged there.

`find_leaf_certificate` picks the first non-CA certificate from a list of DER
certificates and `cn_from_certificate` returns its common name.
`tls_connect(sock, context, server_hostname, timeout)` runs a handshake over an
already connected socket and returns an asyncio reader and writer; pass `None`
as the host name to send no SNI.

## Unix socket listener

```python
from wsbridge import unix_sock


async def serve():
    async with await unix_sock.run_server("/tmp/wsbridge.sock") as listener:
        async for reader, writer in listener:
            writer.write(await reader.read(1024))
            await writer.drain()
            writer.close()
```

`close()` removes the socket file if the listener created it.

## Executors

```python
import asyncio

from wsbridge.executor import JoinSetExecutor


async def main():
    with JoinSetExecutor() as executor:
        task = executor.spawn(asyncio.sleep(60))
        weak = executor.ref_clone()      # does not keep the executor alive
        weak.spawn(asyncio.sleep(60))
    # leaving the block cancels every task still running


asyncio.run(main())
```

`TaskExecutor` simply creates tasks on an event loop. Once a `JoinSetExecutor`
is gone, its `JoinSetExecutorRef` no longer runs anything it is given.

## What the package does not do

The package has no command-line program and no tunnel client or server. It
opens no outgoing TCP or UDP connections, speaks no HTTP `CONNECT` to a proxy,
and has no TCP, UDP, SOCKS5, HTTP proxy or stdio listeners; only the unix
socket listener is included. Parsed `tproxy+tcp`, `tproxy+udp`, `socks5`,
`http` and `stdio` tunnels are descriptions only, for a caller to act on.