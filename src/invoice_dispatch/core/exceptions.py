"""Custom exceptions for invoice-dispatch.

All exceptions derive from :class:`InvoicingError` so callers can catch the
entire family with a single ``except InvoicingError`` clause.  The send
orchestrator relies on this: every ``InvoicingError`` reaching its boundary
is turned into a failure reply carrying ``exc.message``.

Hierarchy::

    InvoicingError
    ├── ConfigurationMissingError
    ├── TemplateMissingError
    ├── RasterizerUnavailableError
    ├── StepTimeoutError
    ├── InvoiceNotFoundError
    ├── CustomerNotFoundError
    ├── RecipientMissingError
    ├── AlreadySendingError
    ├── AttachmentNotFoundError
    ├── QueryError
    └── DeliveryError
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Sequence


class InvoicingError(Exception):
    """Base exception for all invoice-dispatch errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details: dict[str, Any] = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | details={self.details}"
        return self.message

    def __repr__(self) -> str:
        return f"{type(self).__name__}(message={self.message!r})"


_MISSING_SETTING_MESSAGES = {
    "smtp_host": "SMTP settings not configured",
    "company_email": "Company email address not configured",
}


class ConfigurationMissingError(InvoicingError):
    """Raised when a company setting needed for sending is absent."""

    def __init__(
        self,
        parameter: str = "smtp_host",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            _MISSING_SETTING_MESSAGES.get(parameter, f"Setting {parameter!r} not configured"),
            details,
        )
        self.parameter = parameter


class TemplateMissingError(InvoicingError):
    """Raised when the invoice template is not found at any known location."""

    def __init__(
        self,
        searched: Sequence[str],
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            f"Invoice template not found (searched: {', '.join(searched) or 'nothing'})",
            details,
        )
        self.searched = list(searched)


class RasterizerUnavailableError(InvoicingError):
    """Raised when no headless browser executable can be located."""

    def __init__(self, reason: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(f"PDF renderer unavailable: {reason}", details)
        self.reason = reason


class StepTimeoutError(InvoicingError):
    """Raised when a single rasterizer step exceeds its time budget."""

    def __init__(
        self,
        step: str,
        budget: float,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(f"PDF generation step {step!r} timed out after {budget:g}s", details)
        self.step = step
        self.budget = budget


class RasterizationError(InvoicingError):
    """Raised when the browser reports an error during a rasterizer step."""

    def __init__(
        self,
        step: str,
        reason: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(f"PDF generation step {step!r} failed: {reason}", details)
        self.step = step
        self.reason = reason


class InvoiceNotFoundError(InvoicingError):
    """Raised when an invoice does not exist or has been soft-deleted."""

    def __init__(
        self,
        invoice_id: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__("Invoice not found", details)
        self.invoice_id = invoice_id


class CustomerNotFoundError(InvoicingError):
    """Raised when the customer referenced by an invoice does not exist."""

    def __init__(
        self,
        customer_id: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__("Customer not found", details)
        self.customer_id = customer_id


class RecipientMissingError(InvoicingError):
    """Raised when neither the request nor the customer supplies an email address."""

    def __init__(self, invoice_id: int, details: dict[str, Any] | None = None) -> None:
        super().__init__("Customer has no email address", details)
        self.invoice_id = invoice_id


class AlreadySendingError(InvoicingError):
    """Raised when a send for the same invoice is already in flight."""

    def __init__(self, invoice_id: int, details: dict[str, Any] | None = None) -> None:
        super().__init__(f"Invoice {invoice_id} is already being sent", details)
        self.invoice_id = invoice_id


class AttachmentNotFoundError(InvoicingError):
    """Raised when an attachment record or its source file is missing."""

    def __init__(self, reference: int | str, details: dict[str, Any] | None = None) -> None:
        super().__init__(f"Attachment not found: {reference!r}", details)
        self.reference = reference


class QueryError(InvoicingError):
    """Raised when the data access gateway fails to execute a statement."""

    def __init__(self, reason: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(f"Query failed: {reason}", details)
        self.reason = reason


class DeliveryError(InvoicingError):
    """Raised when mail delivery failed after the attempt budget was exhausted."""

    def __init__(
        self,
        reason: str,
        attempts: int,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(reason, details)
        self.reason = reason
        self.attempts = attempts


__all__ = [
    "AlreadySendingError",
    "AttachmentNotFoundError",
    "ConfigurationMissingError",
    "CustomerNotFoundError",
    "DeliveryError",
    "InvoiceNotFoundError",
    "InvoicingError",
    "QueryError",
    "RasterizationError",
    "RasterizerUnavailableError",
    "RecipientMissingError",
    "StepTimeoutError",
    "TemplateMissingError",
]
