"""Compose MIME messages from a :class:`MailEnvelope`."""
from __future__ import annotations

import asyncio
import mimetypes
from email.message import EmailMessage
from email.utils import formataddr
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from invoice_dispatch.core.types import MailAttachment, MailEnvelope

DEFAULT_MIME_TYPE = "application/octet-stream"


def guess_mime_type(filename: str) -> tuple[str, str]:
    """Return ``(maintype, subtype)`` for *filename*."""
    mime_type, _ = mimetypes.guess_type(filename)
    maintype, _, subtype = (mime_type or DEFAULT_MIME_TYPE).partition("/")
    return maintype, subtype


def _read_attachment(attachment: MailAttachment) -> bytes:
    return Path(attachment.path).read_bytes()


async def build_message(envelope: MailEnvelope) -> EmailMessage:
    """Build the message for *envelope*, reading attachments from disk.

    Bcc addresses are not written as a header; they only appear in the SMTP
    envelope (see :meth:`MailEnvelope.recipients`).

    Raises:
        OSError: If an attachment file cannot be read
    """
    message = EmailMessage()
    message["From"] = formataddr((envelope.from_name or "", envelope.from_address))
    message["To"] = envelope.to
    if envelope.reply_to:
        message["Reply-To"] = envelope.reply_to
    message["Subject"] = envelope.subject
    message.set_content(envelope.body)

    for attachment in envelope.attachments:
        payload = await asyncio.to_thread(_read_attachment, attachment)
        maintype, subtype = guess_mime_type(attachment.filename)
        message.add_attachment(
            payload, maintype=maintype, subtype=subtype, filename=attachment.filename
        )
    return message


__all__ = ["build_message", "guess_mime_type"]
