"""Abstract invoice storage interface.

The send pipeline reads settings, invoices, customers, line items and
attachments, and writes email log rows and the invoice's sent status.  This
module defines that repository contract so the orchestrator can be tested
against any backend, including mocks.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import date

    from invoice_dispatch.core.types import (
        Attachment,
        CompanySettings,
        Customer,
        EmailLog,
        EmailLogStatus,
        Invoice,
        InvoiceStatus,
        LineItem,
    )


class InvoiceStore(ABC):
    """Repository interface for the data the invoice send pipeline needs.

    Read methods return ``None`` for absent records rather than raising, so
    the orchestrator decides which absence is an error for the caller.

    Example:
        ```python
        store = SQLInvoiceStore(QueryGateway("sqlite+aiosqlite:///./app.db"))
        await store.initialize()

        settings = await store.get_settings()
        invoice = await store.get_invoice(42)
        items = await store.list_line_items(42)
        await store.append_email_log(42, "a@b.com", EmailLogStatus.SUCCESS)
        ```
    """

    @abstractmethod
    async def get_settings(self) -> CompanySettings | None:
        """Return the singleton settings row, or ``None`` if it was never saved."""

    @abstractmethod
    async def get_invoice(self, invoice_id: int) -> Invoice | None:
        """Return the invoice, or ``None`` if it is absent or soft-deleted."""

    @abstractmethod
    async def get_customer(self, customer_id: int) -> Customer | None:
        """Return the customer, or ``None``."""

    @abstractmethod
    async def list_line_items(self, invoice_id: int) -> list[LineItem]:
        """Return the invoice's line items ordered by ``sort_order``."""

    @abstractmethod
    async def list_attachments(self, invoice_id: int) -> list[Attachment]:
        """Return the invoice's stored attachments."""

    @abstractmethod
    async def append_email_log(
        self,
        invoice_id: int,
        recipient_email: str,
        status: EmailLogStatus,
        error_message: str | None = None,
    ) -> int:
        """Append an audit row and return its id."""

    @abstractmethod
    async def list_email_logs(self, invoice_id: int) -> list[EmailLog]:
        """Return the invoice's audit rows, oldest first."""

    @abstractmethod
    async def mark_sent(
        self,
        invoice_id: int,
        allowed_from: Iterable[InvoiceStatus],
    ) -> bool:
        """Stamp ``sent_at`` and move the status to Sent when permitted.

        Args:
            invoice_id: Invoice to update
            allowed_from: Current statuses that may transition to Sent

        Returns:
            True if the status was changed to Sent
        """

    @abstractmethod
    async def add_attachment(
        self,
        invoice_id: int,
        filename: str,
        original_filename: str,
        file_path: str,
        file_size: int,
        mime_type: str | None = None,
    ) -> Attachment:
        """Insert an attachment row and return it."""

    @abstractmethod
    async def get_attachment(self, attachment_id: int) -> Attachment | None:
        """Return one attachment row, or ``None``."""

    @abstractmethod
    async def delete_attachment(self, attachment_id: int) -> bool:
        """Delete an attachment row; return True if a row was removed."""

    @abstractmethod
    async def next_invoice_number(self) -> str:
        """Return the number to give the next invoice."""

    @abstractmethod
    async def mark_overdue(self, today: date) -> int:
        """Move Sent invoices past their due date to Overdue; return the count."""

    async def initialize(self) -> None:  # noqa: B027
        """Prepare the backend (create tables etc.). Default: no-op."""

    async def close(self) -> None:  # noqa: B027
        """Release backend resources. Default: no-op."""


__all__ = ["InvoiceStore"]
