"""SQL-backed invoice store issuing parameterized statements through the gateway."""
from __future__ import annotations

import logging
import re
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from invoice_dispatch.core.exceptions import QueryError
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
from invoice_dispatch.storage.invoice_store import InvoiceStore

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import date

    from invoice_dispatch.storage.gateway import QueryGateway

logger = logging.getLogger(__name__)

FIRST_INVOICE_NUMBER = "1001"

_TRAILING_DIGITS = re.compile(r"^(.*?)(\d+)$")


def _now() -> str:
    return datetime.now(UTC).isoformat(sep=" ", timespec="seconds")


def increment_invoice_number(last: str | None) -> str:
    """Return the invoice number following *last*.

    The trailing run of digits is incremented and any prefix or zero
    padding is kept; numbers without digits restart the sequence.

    Examples
    --------
    >>> increment_invoice_number(None)
    '1001'
    >>> increment_invoice_number("1041")
    '1042'
    >>> increment_invoice_number("INV-0099")
    'INV-0100'
    """
    if not last or not last.strip():
        return FIRST_INVOICE_NUMBER
    match = _TRAILING_DIGITS.match(last.strip())
    if match is None:
        return FIRST_INVOICE_NUMBER
    prefix, digits = match.groups()
    return f"{prefix}{int(digits) + 1:0{len(digits)}d}"


class SQLInvoiceStore(InvoiceStore):
    """Invoice store over a :class:`~invoice_dispatch.storage.gateway.QueryGateway`.

    Example
    -------
    .. code-block:: python

        store = SQLInvoiceStore(QueryGateway("sqlite+aiosqlite:///:memory:"))
        await store.initialize()
        invoice = await store.get_invoice(1)
    """

    def __init__(self, gateway: QueryGateway) -> None:
        self.gateway = gateway

    async def initialize(self) -> None:
        await self.gateway.initialize()

    async def close(self) -> None:
        await self.gateway.close()

    async def get_settings(self) -> CompanySettings | None:
        row = await self.gateway.fetch_one("SELECT * FROM settings WHERE id = 1")
        return CompanySettings.model_validate(row) if row else None

    async def get_invoice(self, invoice_id: int) -> Invoice | None:
        row = await self.gateway.fetch_one(
            "SELECT * FROM invoices WHERE id = :invoice_id AND deleted_at IS NULL",
            {"invoice_id": invoice_id},
        )
        return Invoice.model_validate(row) if row else None

    async def get_customer(self, customer_id: int) -> Customer | None:
        row = await self.gateway.fetch_one(
            "SELECT * FROM customers WHERE id = :customer_id",
            {"customer_id": customer_id},
        )
        return Customer.model_validate(row) if row else None

    async def list_line_items(self, invoice_id: int) -> list[LineItem]:
        rows = await self.gateway.fetch_all(
            "SELECT * FROM invoice_line_items WHERE invoice_id = :invoice_id "
            "ORDER BY sort_order, id",
            {"invoice_id": invoice_id},
        )
        return [LineItem.model_validate(r) for r in rows]

    async def list_attachments(self, invoice_id: int) -> list[Attachment]:
        rows = await self.gateway.fetch_all(
            "SELECT * FROM invoice_attachments WHERE invoice_id = :invoice_id ORDER BY id",
            {"invoice_id": invoice_id},
        )
        return [Attachment.model_validate(r) for r in rows]

    async def append_email_log(
        self,
        invoice_id: int,
        recipient_email: str,
        status: EmailLogStatus,
        error_message: str | None = None,
    ) -> int:
        result = await self.gateway.mutate(
            "INSERT INTO email_logs (invoice_id, recipient_email, sent_at, status, error_message) "
            "VALUES (:invoice_id, :recipient_email, :sent_at, :status, :error_message)",
            {
                "invoice_id": invoice_id,
                "recipient_email": recipient_email,
                "sent_at": _now(),
                "status": status.value,
                "error_message": error_message,
            },
        )
        if result.last_insert_id is None:
            raise QueryError("email log insert returned no row id")
        logger.info(
            "Email log appended invoice_id=%s status=%s id=%s",
            invoice_id, status.value, result.last_insert_id,
        )
        return result.last_insert_id

    async def list_email_logs(self, invoice_id: int) -> list[EmailLog]:
        rows = await self.gateway.fetch_all(
            "SELECT * FROM email_logs WHERE invoice_id = :invoice_id ORDER BY id",
            {"invoice_id": invoice_id},
        )
        return [EmailLog.model_validate(r) for r in rows]

    async def mark_sent(
        self,
        invoice_id: int,
        allowed_from: Iterable[InvoiceStatus],
    ) -> bool:
        statuses = [InvoiceStatus(s).value for s in allowed_from]
        now = _now()
        params: dict[str, object] = {"invoice_id": invoice_id, "now": now}
        changed = False
        if statuses:
            placeholders = ", ".join(f":status_{i}" for i in range(len(statuses)))
            params.update({f"status_{i}": s for i, s in enumerate(statuses)})
            result = await self.gateway.mutate(
                "UPDATE invoices SET status = 'Sent', sent_at = :now, updated_at = :now "
                f"WHERE id = :invoice_id AND status IN ({placeholders})",
                params,
            )
            changed = result.changes > 0
        if not changed:
            # Status is settled (e.g. Paid); only record the delivery time.
            await self.gateway.mutate(
                "UPDATE invoices SET sent_at = :now, updated_at = :now WHERE id = :invoice_id",
                {"invoice_id": invoice_id, "now": now},
            )
        logger.info("Invoice marked sent invoice_id=%s status_changed=%s", invoice_id, changed)
        return changed

    async def add_attachment(
        self,
        invoice_id: int,
        filename: str,
        original_filename: str,
        file_path: str,
        file_size: int,
        mime_type: str | None = None,
    ) -> Attachment:
        result = await self.gateway.mutate(
            "INSERT INTO invoice_attachments "
            "(invoice_id, filename, original_filename, file_path, file_size, mime_type) "
            "VALUES (:invoice_id, :filename, :original_filename, :file_path, :file_size, "
            ":mime_type)",
            {
                "invoice_id": invoice_id,
                "filename": filename,
                "original_filename": original_filename,
                "file_path": file_path,
                "file_size": file_size,
                "mime_type": mime_type,
            },
        )
        if result.last_insert_id is None:
            raise QueryError("attachment insert returned no row id")
        return Attachment(
            id=result.last_insert_id,
            invoice_id=invoice_id,
            filename=filename,
            original_filename=original_filename,
            file_path=file_path,
            file_size=file_size,
            mime_type=mime_type,
        )

    async def get_attachment(self, attachment_id: int) -> Attachment | None:
        row = await self.gateway.fetch_one(
            "SELECT * FROM invoice_attachments WHERE id = :attachment_id",
            {"attachment_id": attachment_id},
        )
        return Attachment.model_validate(row) if row else None

    async def delete_attachment(self, attachment_id: int) -> bool:
        result = await self.gateway.mutate(
            "DELETE FROM invoice_attachments WHERE id = :attachment_id",
            {"attachment_id": attachment_id},
        )
        return result.changes > 0

    async def next_invoice_number(self) -> str:
        row = await self.gateway.fetch_one(
            "SELECT invoice_number FROM invoices ORDER BY id DESC LIMIT 1"
        )
        return increment_invoice_number(row["invoice_number"] if row else None)

    async def mark_overdue(self, today: date) -> int:
        result = await self.gateway.mutate(
            "UPDATE invoices SET status = 'Overdue', updated_at = :now "
            "WHERE status = 'Sent' AND due_date < :today AND deleted_at IS NULL",
            {"today": today.isoformat(), "now": _now()},
        )
        if result.changes:
            logger.info("Marked %d invoice(s) overdue", result.changes)
        return result.changes


__all__ = ["FIRST_INVOICE_NUMBER", "SQLInvoiceStore", "increment_invoice_number"]
