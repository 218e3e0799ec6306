"""Sequential port allocation."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from ..errors import NoPortAvailableError
from .probes import port_is_free

logger = logging.getLogger(__name__)

MAX_PORT = 65535

PortCheck = Callable[[int], Awaitable[bool]]


async def find_available_port(
    start: int,
    max_attempts: int = 100,
    *,
    is_free: PortCheck | None = None,
) -> int:
    """Return the first free port in ``start, start + 1, ...``.

    Raises :class:`NoPortAvailableError` once ``max_attempts`` ports (or the
    end of the port range) have been tried.
    """

    check = is_free or port_is_free
    attempts = 0
    port = start
    while attempts < max_attempts and port <= MAX_PORT:
        attempts += 1
        if await check(port):
            if port != start:
                logger.debug("Skipped occupied ports", extra={"start": start, "port": port})
            return port
        port += 1
    raise NoPortAvailableError(start, attempts)


__all__ = ["find_available_port"]
