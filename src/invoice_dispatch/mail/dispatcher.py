"""SMTP delivery with bounded retries.

Every attempt opens its own transport, verifies it, transmits one message
and closes the transport again; nothing is pooled between attempts or
between sends.  Attempts report a tagged :class:`AttemptOutcome` instead of
raising, and :meth:`MailDispatcher.dispatch` decides from the tag whether to
retry.  A message that cannot be composed is fatal; any error raised while
talking to the server, expected or not, is transient.
"""
from __future__ import annotations

import asyncio
import logging
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import aiosmtplib
from pydantic import BaseModel, ConfigDict, Field

from invoice_dispatch.mail.message import build_message

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from email.message import EmailMessage

    from invoice_dispatch.core.config import InvoicingConfig
    from invoice_dispatch.core.types import MailEnvelope, SmtpParameters

logger = logging.getLogger(__name__)

_TRANSIENT_ERRORS = (aiosmtplib.SMTPException, OSError, TimeoutError)


class AttemptTag(StrEnum):
    DELIVERED = "delivered"
    TRANSIENT = "transient"
    FATAL = "fatal"


class AttemptOutcome(BaseModel):
    """Result of a single delivery attempt."""

    model_config = ConfigDict(frozen=True)

    attempt: int
    tag: AttemptTag
    error: str | None = None


class DeliveryResult(BaseModel):
    """Final result of :meth:`MailDispatcher.dispatch`.

    ``error`` is the message of the last failed attempt when ``delivered``
    is False.
    """

    model_config = ConfigDict(frozen=True)

    delivered: bool
    error: str | None = None
    attempts: int = 0
    outcomes: list[AttemptOutcome] = Field(default_factory=list)


def _describe(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


class MailDispatcher:
    """Deliver one :class:`MailEnvelope` over SMTP.

    Args:
        config: Supplies attempt budget, backoff unit and SMTP timeouts.
        smtp_factory: Builds a transport; ``aiosmtplib.SMTP`` by default.
        sleep: Awaitable used for backoff; injectable for tests.

    Example::

        dispatcher = MailDispatcher(config)
        result = await dispatcher.dispatch(settings.smtp_parameters(), envelope)
        if not result.delivered:
            print(result.error)
    """

    def __init__(
        self,
        config: InvoicingConfig,
        smtp_factory: Callable[..., Any] | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ) -> None:
        self.config = config
        self._smtp_factory = smtp_factory or aiosmtplib.SMTP
        self._sleep = sleep or asyncio.sleep

    async def dispatch(self, smtp: SmtpParameters, envelope: MailEnvelope) -> DeliveryResult:
        """Deliver *envelope*, retrying transient failures with linear backoff."""
        max_attempts = self.config.send_max_attempts
        outcomes: list[AttemptOutcome] = []

        for attempt in range(1, max_attempts + 1):
            outcome = await self.attempt(attempt, smtp, envelope)
            outcomes.append(outcome)

            if outcome.tag is AttemptTag.DELIVERED:
                logger.info(
                    "Mail delivered to=%s host=%s attempt=%d",
                    envelope.to, smtp.host, attempt,
                )
                return DeliveryResult(delivered=True, attempts=attempt, outcomes=outcomes)

            if outcome.tag is AttemptTag.FATAL:
                logger.error("Mail delivery aborted to=%s error=%s", envelope.to, outcome.error)
                break

            if attempt < max_attempts:
                delay = self.config.send_retry_delay * attempt
                logger.warning(
                    "Mail attempt %d/%d failed to=%s error=%s; retrying in %gs",
                    attempt, max_attempts, envelope.to, outcome.error, delay,
                )
                await self._sleep(delay)
            else:
                logger.error(
                    "Mail delivery failed after %d attempts to=%s error=%s",
                    attempt, envelope.to, outcome.error,
                )

        last = outcomes[-1]
        return DeliveryResult(
            delivered=False,
            error=last.error,
            attempts=len(outcomes),
            outcomes=outcomes,
        )

    async def attempt(
        self,
        attempt: int,
        smtp: SmtpParameters,
        envelope: MailEnvelope,
    ) -> AttemptOutcome:
        """Run one connect → verify → transmit → close cycle."""
        try:
            message = await build_message(envelope)
        except Exception as exc:
            return AttemptOutcome(
                attempt=attempt,
                tag=AttemptTag.FATAL,
                error=f"Could not compose message: {_describe(exc)}",
            )

        transport = None
        try:
            transport = self._smtp_factory(
                hostname=smtp.host,
                port=smtp.port,
                use_tls=smtp.secure,
                timeout=self.config.smtp_socket_timeout,
            )
            await transport.connect(timeout=self.config.smtp_connect_timeout)
            await self._verify(transport, smtp)
            await self._transmit(transport, message, envelope)
            try:
                await transport.quit()
            except _TRANSIENT_ERRORS as exc:
                logger.debug("SMTP quit failed after delivery: %s", exc)
            return AttemptOutcome(attempt=attempt, tag=AttemptTag.DELIVERED)
        except _TRANSIENT_ERRORS as exc:
            return AttemptOutcome(attempt=attempt, tag=AttemptTag.TRANSIENT, error=_describe(exc))
        except Exception as exc:
            logger.warning(
                "Unexpected SMTP error host=%s attempt=%d", smtp.host, attempt, exc_info=True
            )
            return AttemptOutcome(attempt=attempt, tag=AttemptTag.TRANSIENT, error=_describe(exc))
        finally:
            if transport is not None and transport.is_connected:
                transport.close()

    async def _verify(self, transport: Any, smtp: SmtpParameters) -> None:
        timeout = self.config.smtp_greeting_timeout
        if smtp.username and smtp.password:
            await transport.login(smtp.username, smtp.password, timeout=timeout)
        await transport.noop(timeout=timeout)

    async def _transmit(
        self,
        transport: Any,
        message: EmailMessage,
        envelope: MailEnvelope,
    ) -> None:
        await transport.send_message(
            message,
            sender=envelope.from_address,
            recipients=envelope.recipients(),
            timeout=self.config.smtp_socket_timeout,
        )


__all__ = ["AttemptOutcome", "AttemptTag", "DeliveryResult", "MailDispatcher"]
