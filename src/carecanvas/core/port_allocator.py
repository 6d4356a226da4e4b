"""Local port selection for dev servers."""

from __future__ import annotations

import asyncio
import socket
import sys
from typing import TypeAlias
from collections.abc import Awaitable, Callable

from carecanvas.config import DEFAULT_BASE_PORT, DEFAULT_PORT_SPAN
from carecanvas.core.errors import NoPortAvailable

PortProbe: TypeAlias = Callable[[str, int], Awaitable[bool]]


def can_bind(host: str, port: int) -> bool:
    """Open and immediately close a listener on ``port``."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        if sys.platform != "win32":
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, port))
            sock.listen(1)
        except OSError:
            return False
    return True


async def probe_port(host: str, port: int) -> bool:
    return await asyncio.to_thread(can_bind, host, port)


class PortAllocator:
    """Hand out bindable ports, never the same one twice while it is reserved.

    A port that passes the probe can still be taken by another OS process
    before the dev server binds it; that shows up later as a startup failure.
    """

    def __init__(
        self,
        *,
        base_port: int = DEFAULT_BASE_PORT,
        span: int = DEFAULT_PORT_SPAN,
        bind_host: str = "",
        probe: PortProbe | None = None,
    ) -> None:
        self._base_port = base_port
        self._span = span
        self._bind_host = bind_host
        self._probe = probe or probe_port
        self._reserved: set[int] = set()

    @property
    def reserved(self) -> frozenset[int]:
        return frozenset(self._reserved)

    async def allocate(self, start: int | None = None) -> int:
        first = self._base_port if start is None else start
        for port in range(first, first + self._span):
            if port in self._reserved:
                continue
            # Reserve before the probe suspends so concurrent callers skip it.
            self._reserved.add(port)
            if await self._probe(self._bind_host, port):
                return port
            self._reserved.discard(port)
        raise NoPortAvailable(first, self._span)

    def release(self, port: int | None) -> None:
        if port is not None:
            self._reserved.discard(port)
