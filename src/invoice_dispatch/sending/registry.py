"""Per-invoice in-flight send tracking."""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from invoice_dispatch.core.exceptions import AlreadySendingError
from invoice_dispatch.core.types import DuplicateSendPolicy

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)


class InFlightRegistry:
    """Allow at most one send per invoice at a time.

    With :attr:`DuplicateSendPolicy.REJECT` a second claim fails
    immediately with :class:`AlreadySendingError`; with
    :attr:`DuplicateSendPolicy.QUEUE` it waits until the running send has
    released its claim.

    Example::

        registry = InFlightRegistry(DuplicateSendPolicy.QUEUE)
        async with registry.claim(42):
            ...  # only one holder for invoice 42 here
    """

    def __init__(self, policy: DuplicateSendPolicy = DuplicateSendPolicy.REJECT) -> None:
        self.policy = policy
        self._in_flight: dict[int, asyncio.Event] = {}

    def is_in_flight(self, invoice_id: int) -> bool:
        return invoice_id in self._in_flight

    def __len__(self) -> int:
        return len(self._in_flight)

    @asynccontextmanager
    async def claim(self, invoice_id: int) -> AsyncIterator[None]:
        """Hold the send slot for *invoice_id* for the duration of the block.

        Raises:
            AlreadySendingError: Under the reject policy, if a send is running
        """
        while invoice_id in self._in_flight:
            if self.policy is DuplicateSendPolicy.REJECT:
                logger.warning("Rejected concurrent send invoice_id=%s", invoice_id)
                raise AlreadySendingError(invoice_id)
            logger.info("Queued behind in-flight send invoice_id=%s", invoice_id)
            await self._in_flight[invoice_id].wait()

        done = asyncio.Event()
        self._in_flight[invoice_id] = done
        try:
            yield
        finally:
            del self._in_flight[invoice_id]
            done.set()


__all__ = ["InFlightRegistry"]
