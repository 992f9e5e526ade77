"""Invoice send orchestration."""

from invoice_dispatch.sending.orchestrator import (
    CANCELLED_MESSAGE,
    TIMEOUT_MESSAGE,
    SendOperation,
    SendOrchestrator,
)
from invoice_dispatch.sending.registry import InFlightRegistry
from invoice_dispatch.sending.reply import PendingReply

__all__ = [
    "CANCELLED_MESSAGE",
    "TIMEOUT_MESSAGE",
    "InFlightRegistry",
    "PendingReply",
    "SendOperation",
    "SendOrchestrator",
]
