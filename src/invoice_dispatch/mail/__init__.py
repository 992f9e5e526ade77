"""Outgoing invoice mail."""

from invoice_dispatch.mail.dispatcher import (
    AttemptOutcome,
    AttemptTag,
    DeliveryResult,
    MailDispatcher,
)
from invoice_dispatch.mail.message import build_message

__all__ = [
    "AttemptOutcome",
    "AttemptTag",
    "DeliveryResult",
    "MailDispatcher",
    "build_message",
]
