"""Files stored alongside invoices and mailed with them."""
from __future__ import annotations

import asyncio
import logging
import mimetypes
import shutil
import time
from pathlib import Path
from typing import TYPE_CHECKING

from invoice_dispatch.core.exceptions import AttachmentNotFoundError, InvoiceNotFoundError

if TYPE_CHECKING:
    from invoice_dispatch.core.types import Attachment
    from invoice_dispatch.storage.invoice_store import InvoiceStore

logger = logging.getLogger(__name__)


class AttachmentService:
    """Copy uploaded files into the attachments directory and track them.

    Stored files are named ``{invoice_id}_{epoch_ms}{ext}``; the original
    name is kept in the row and used as the filename in outgoing mail.
    """

    def __init__(self, store: InvoiceStore, attachments_dir: Path | str) -> None:
        self.store = store
        self.attachments_dir = Path(attachments_dir)

    def stored_name(self, invoice_id: int, source: Path) -> str:
        return f"{invoice_id}_{int(time.time() * 1000)}{source.suffix}"

    async def upload(self, invoice_id: int, source_path: Path | str) -> Attachment:
        """Copy *source_path* next to the invoice and record it.

        Raises:
            InvoiceNotFoundError: If the invoice is absent or soft-deleted
            AttachmentNotFoundError: If *source_path* is not a file
        """
        source = Path(source_path)
        if await self.store.get_invoice(invoice_id) is None:
            raise InvoiceNotFoundError(invoice_id)
        if not source.is_file():
            raise AttachmentNotFoundError(str(source))

        self.attachments_dir.mkdir(parents=True, exist_ok=True)
        filename = self.stored_name(invoice_id, source)
        target = self.attachments_dir / filename
        await asyncio.to_thread(shutil.copy2, source, target)

        mime_type, _ = mimetypes.guess_type(source.name)
        attachment = await self.store.add_attachment(
            invoice_id=invoice_id,
            filename=filename,
            original_filename=source.name,
            file_path=str(target),
            file_size=target.stat().st_size,
            mime_type=mime_type,
        )
        logger.info(
            "Attachment stored invoice_id=%s id=%s file=%s",
            invoice_id, attachment.id, filename,
        )
        return attachment

    async def delete(self, attachment_id: int) -> None:
        """Remove the stored file (if still present) and its row.

        Raises:
            AttachmentNotFoundError: If no row has *attachment_id*
        """
        attachment = await self.store.get_attachment(attachment_id)
        if attachment is None:
            raise AttachmentNotFoundError(attachment_id)

        path = Path(attachment.file_path)
        try:
            path.unlink()
        except FileNotFoundError:
            logger.warning("Attachment file already gone path=%s", path)
        await self.store.delete_attachment(attachment_id)
        logger.info("Attachment deleted id=%s", attachment_id)

    async def list(self, invoice_id: int) -> list[Attachment]:
        return await self.store.list_attachments(invoice_id)


__all__ = ["AttachmentService"]
