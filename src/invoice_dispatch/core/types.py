"""Core types and data models for invoice-dispatch.

Domain models are read from the relational store as plain row mappings and
validated into frozen pydantic models.  Use ``model_copy(update={...})`` to
derive modified versions.
"""
from __future__ import annotations

import math
import uuid
from datetime import UTC, date, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from collections.abc import Iterable


class InvoiceStatus(StrEnum):
    """Invoice lifecycle status."""
    DRAFT = "Draft"
    SENT = "Sent"
    PAID = "Paid"
    OVERDUE = "Overdue"
    CANCELLED = "Cancelled"


class EmailLogStatus(StrEnum):
    """Terminal outcome recorded in the email audit trail."""
    SUCCESS = "success"
    FAILED = "failed"


class DuplicateSendPolicy(StrEnum):
    """What to do when a send for an invoice that is already in flight arrives."""
    REJECT = "reject"
    QUEUE = "queue"


class RasterizerState(StrEnum):
    """States of a single PDF rasterization job."""
    IDLE = "idle"
    LAUNCHING = "launching"
    PAGE_OPEN = "page_open"
    CONTENT_LOADED = "content_loaded"
    PDF_WRITTEN = "pdf_written"
    CLOSED = "closed"
    FAILED = "failed"


class SendStage(StrEnum):
    """Stage a send operation has reached."""
    QUEUED = "queued"
    LOADING = "loading"
    RENDERING = "rendering"
    RASTERIZING = "rasterizing"
    DISPATCHING = "dispatching"
    RECORDING = "recording"
    DONE = "done"


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class Customer(_Record):
    """Invoice recipient."""

    id: int
    name: str
    email: str | None = None
    billing_address: str | None = None
    phone: str | None = None
    notes: str | None = None

    def has_email(self) -> bool:
        return bool(self.email and self.email.strip())


class LineItem(_Record):
    """One priced line of an invoice."""

    id: int
    invoice_id: int
    product_id: int | None = None
    product_name: str | None = None
    description: str | None = None
    unit_price: float = 0.0
    quantity: float = 0.0
    line_total: float = 0.0
    sort_order: int = 0


class Invoice(_Record):
    """Invoice header.

    ``total`` is expected to equal the sum of the line items' ``line_total``;
    there is no tax or discount modelling, so ``subtotal == total``.
    """

    id: int
    invoice_number: str
    customer_id: int
    issue_date: date | None = None
    due_date: date | None = None
    status: InvoiceStatus = InvoiceStatus.DRAFT
    payment_terms: str | None = None
    subtotal: float = 0.0
    total: float = 0.0
    notes: str | None = None
    internal_memo: str | None = None
    sent_at: datetime | None = None
    paid_at: datetime | None = None
    deleted_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def is_balanced(self, line_items: Iterable[LineItem]) -> bool:
        """Return True if ``total`` matches the sum of *line_items* to the cent."""
        return math.isclose(
            round(sum(item.line_total for item in line_items), 2),
            round(self.total, 2),
            abs_tol=0.005,
        )


class Attachment(_Record):
    """A file stored alongside an invoice and mailed with it."""

    id: int
    invoice_id: int
    filename: str
    original_filename: str
    file_path: str
    file_size: int = 0
    mime_type: str | None = None


class SmtpParameters(BaseModel):
    """Connection parameters for one SMTP session."""

    model_config = ConfigDict(frozen=True)

    host: str = Field(..., min_length=1)
    port: int = Field(default=587, ge=1, le=65535)
    secure: bool = False
    username: str | None = None
    password: str | None = None


class CompanySettings(_Record):
    """Singleton settings row (``id = 1``): company identity and SMTP access."""

    id: int = 1
    company_name: str | None = None
    company_address: str | None = None
    company_email: str | None = None
    company_phone: str | None = None
    logo_base64: str | None = None
    invoice_due_days: int | None = None
    invoice_prefix: str | None = None
    smtp_host: str | None = None
    smtp_port: int | None = None
    smtp_user: str | None = None
    smtp_password: str | None = None
    smtp_secure: bool = False

    def has_smtp(self) -> bool:
        return bool(self.smtp_host and self.smtp_host.strip())

    def sender_address(self) -> str | None:
        """Return the From address: the company email, else the SMTP user."""
        return self.company_email or self.smtp_user or None

    def smtp_parameters(self) -> SmtpParameters:
        return SmtpParameters(
            host=(self.smtp_host or "").strip(),
            port=self.smtp_port or (465 if self.smtp_secure else 587),
            secure=self.smtp_secure,
            username=self.smtp_user or None,
            password=self.smtp_password or None,
        )

    def model_dump_safe(self) -> dict[str, Any]:
        """Dump model with the SMTP password and logo masked — safe for logging."""
        data = self.model_dump()
        if data.get("smtp_password"):
            data["smtp_password"] = "***masked***"
        if data.get("logo_base64"):
            data["logo_base64"] = f"<{len(data['logo_base64'])} chars>"
        return data


class EmailLog(_Record):
    """Append-only audit row for one terminal send outcome."""

    id: int
    invoice_id: int
    recipient_email: str
    sent_at: datetime | None = None
    status: EmailLogStatus
    error_message: str | None = None


class MailAttachment(BaseModel):
    """File attached to an outgoing message."""

    model_config = ConfigDict(frozen=True)

    filename: str = Field(..., min_length=1)
    path: str = Field(..., min_length=1)


class MailEnvelope(BaseModel):
    """Everything the mail dispatcher needs to compose one message."""

    model_config = ConfigDict(frozen=True)

    from_name: str | None = None
    from_address: str
    reply_to: str | None = None
    to: str
    bcc: list[str] = Field(default_factory=list)
    subject: str
    body: str
    attachments: list[MailAttachment] = Field(default_factory=list)

    def recipients(self) -> list[str]:
        seen: list[str] = []
        for address in [self.to, *self.bcc]:
            if address and address not in seen:
                seen.append(address)
        return seen


class SendRequest(BaseModel):
    """A request to email one invoice, keyed by a per-call correlation id."""

    model_config = ConfigDict(frozen=True)

    correlation_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    invoice_id: int
    recipient_email: str | None = None
    requested_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class SendReply(BaseModel):
    """The single terminal response to a :class:`SendRequest`."""

    model_config = ConfigDict(frozen=True)

    correlation_id: str
    success: bool
    error: str | None = None

    @classmethod
    def ok(cls, request: SendRequest) -> SendReply:
        return cls(correlation_id=request.correlation_id, success=True)

    @classmethod
    def failed(cls, request: SendRequest, error: str) -> SendReply:
        return cls(correlation_id=request.correlation_id, success=False, error=error)

    def to_payload(self) -> dict[str, Any]:
        if self.success:
            return {"success": True}
        return {"success": False, "error": self.error or "Unknown error"}


__all__ = [
    "Attachment",
    "CompanySettings",
    "Customer",
    "DuplicateSendPolicy",
    "EmailLog",
    "EmailLogStatus",
    "Invoice",
    "InvoiceStatus",
    "LineItem",
    "MailAttachment",
    "MailEnvelope",
    "RasterizerState",
    "SendReply",
    "SendRequest",
    "SendStage",
    "SmtpParameters",
]
