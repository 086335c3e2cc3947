"""Unix domain socket listener that yields accepted connections."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import socket
from pathlib import Path

log = logging.getLogger(__name__)

_BACKLOG = 1024


class UnixListenerStream:
    """Async iterator of ``(reader, writer)`` pairs accepted on a Unix socket.

    When closed, the socket file is removed if it was created by this listener.
    """

    def __init__(self, sock: socket.socket, path: Path, path_to_delete: bool) -> None:
        self._sock = sock
        self.path = path
        self._path_to_delete = path_to_delete
        self._closed = False

    def __aiter__(self) -> UnixListenerStream:
        return self

    async def __anext__(self) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        if self._closed:
            raise StopAsyncIteration
        loop = asyncio.get_running_loop()
        conn, _ = await loop.sock_accept(self._sock)
        return await asyncio.open_unix_connection(sock=conn)

    def close(self) -> None:
        """Stop listening and remove the socket file if this listener made it."""
        if self._closed:
            return
        self._closed = True
        self._sock.close()
        if self._path_to_delete:
            with contextlib.suppress(OSError):
                self.path.unlink()

    async def __aenter__(self) -> UnixListenerStream:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()


async def run_server(socket_path: str | os.PathLike[str]) -> UnixListenerStream:
    """Bind a Unix stream socket at ``socket_path`` and start listening."""
    path = Path(socket_path)
    log.info("Starting Unix socket server listening cnx on %s", path)

    path_to_delete = not path.exists()
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        sock.bind(os.fspath(path))
        sock.listen(_BACKLOG)
        sock.setblocking(False)
    except OSError as err:
        sock.close()
        raise OSError(
            err.errno, f"Cannot create Unix socket server {path}: {err.strerror}"
        ) from err

    return UnixListenerStream(sock, path, path_to_delete)