"""Single-resolution reply channel for one send request."""
from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from invoice_dispatch.core.types import SendReply, SendRequest

logger = logging.getLogger(__name__)


class PendingReply:
    """Hold the one reply a :class:`SendRequest` is allowed to receive.

    The worker and the watchdog both try to deliver; whichever is first wins
    and every later delivery is dropped.  Must be created inside a running
    event loop.
    """

    def __init__(self, request: SendRequest) -> None:
        self.request = request
        self._future: asyncio.Future[SendReply] = asyncio.get_running_loop().create_future()

    @property
    def delivered(self) -> bool:
        return self._future.done()

    def deliver(self, reply: SendReply) -> bool:
        """Resolve with *reply*; return False if a reply was already delivered."""
        if self._future.done():
            logger.debug(
                "Suppressed duplicate reply correlation_id=%s success=%s",
                reply.correlation_id, reply.success,
            )
            return False
        self._future.set_result(reply)
        return True

    async def wait(self) -> SendReply:
        return await asyncio.shield(self._future)


__all__ = ["PendingReply"]
