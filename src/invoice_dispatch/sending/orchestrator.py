"""Send orchestration — load, render, rasterize, mail, record, reply.

Every request runs in its own worker task and is answered exactly once
through a :class:`PendingReply`.  A watchdog armed for
:attr:`InvoicingConfig.send_deadline` answers with a timeout failure and
cancels the worker; the rasterizer and mail dispatcher release their
browser and SMTP transport in their own ``finally`` blocks, so cancellation
is the only teardown signal needed.

Outcome writes (email log row, sent status) are shielded: once started they
finish even if the worker is cancelled mid-write.

Stage order::

    queued → loading → rendering → rasterizing → dispatching → recording → done
"""
from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from invoice_dispatch.core.exceptions import (
    ConfigurationMissingError,
    CustomerNotFoundError,
    DeliveryError,
    InvoiceNotFoundError,
    InvoicingError,
    RecipientMissingError,
)
from invoice_dispatch.core.types import (
    CompanySettings,
    EmailLogStatus,
    MailAttachment,
    MailEnvelope,
    SendReply,
    SendRequest,
    SendStage,
)
from invoice_dispatch.sending.registry import InFlightRegistry
from invoice_dispatch.sending.reply import PendingReply
from invoice_dispatch.utils.currency import format_currency

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from invoice_dispatch.core.config import InvoicingConfig
    from invoice_dispatch.core.types import Attachment, Customer, Invoice, LineItem
    from invoice_dispatch.mail.dispatcher import MailDispatcher
    from invoice_dispatch.pdf.rasterizer import PdfRasterizer
    from invoice_dispatch.rendering.renderer import DocumentRenderer
    from invoice_dispatch.storage.invoice_store import InvoiceStore

logger = logging.getLogger(__name__)

TIMEOUT_MESSAGE = "Invoice send timed out. Please try again."
CANCELLED_MESSAGE = "Invoice send was cancelled."


class SendOperation:
    """Mutable bookkeeping for one in-flight :class:`SendRequest`."""

    def __init__(self, request: SendRequest) -> None:
        self.request = request
        self.reply = PendingReply(request)
        self.stage = SendStage.QUEUED
        self.recipient: str | None = None
        self.timed_out = False

    def advance(self, stage: SendStage) -> None:
        self.stage = stage
        logger.info(
            "Send stage=%s invoice_id=%s correlation_id=%s",
            stage.value, self.request.invoice_id, self.request.correlation_id,
        )


class SendOrchestrator:
    """Run invoice sends end to end.

    Args:
        store: Invoice repository.
        renderer: HTML renderer.
        rasterizer: HTML → PDF converter.
        dispatcher: SMTP sender.
        config: Deadline, output directory and audit/status policies.
        registry: In-flight tracker; built from
            ``config.duplicate_send_policy`` when omitted.

    Example::

        orchestrator = SendOrchestrator(store, renderer, rasterizer, dispatcher, config)
        reply = await orchestrator.send(42)
        print(reply.to_payload())   # {"success": True}
    """

    def __init__(
        self,
        store: InvoiceStore,
        renderer: DocumentRenderer,
        rasterizer: PdfRasterizer,
        dispatcher: MailDispatcher,
        config: InvoicingConfig,
        registry: InFlightRegistry | None = None,
    ) -> None:
        self.store = store
        self.renderer = renderer
        self.rasterizer = rasterizer
        self.dispatcher = dispatcher
        self.config = config
        self.registry = registry or InFlightRegistry(config.duplicate_send_policy)
        self._workers: set[asyncio.Task[None]] = set()

    @property
    def in_flight(self) -> int:
        return len(self._workers)

    # ------------------------------------------------------------------
    # Request / reply
    # ------------------------------------------------------------------

    async def send(self, invoice_id: int, recipient_email: str | None = None) -> SendReply:
        """Email invoice *invoice_id* and return the single reply."""
        return await self.submit(
            SendRequest(invoice_id=invoice_id, recipient_email=recipient_email)
        )

    async def submit(self, request: SendRequest) -> SendReply:
        """Start a worker for *request* under the watchdog and await its reply."""
        operation = SendOperation(request)
        worker = asyncio.create_task(
            self._run(operation), name=f"send-invoice-{request.invoice_id}"
        )
        watchdog = asyncio.get_running_loop().call_later(
            self.config.send_deadline, self._expire, operation, worker
        )
        self._workers.add(worker)
        worker.add_done_callback(self._workers.discard)
        worker.add_done_callback(lambda _: watchdog.cancel())

        reply = await operation.reply.wait()
        logger.info(
            "Send reply invoice_id=%s correlation_id=%s success=%s",
            request.invoice_id, request.correlation_id, reply.success,
        )
        return reply

    def _expire(self, operation: SendOperation, worker: asyncio.Task[None]) -> None:
        if worker.done():
            return
        operation.timed_out = True
        logger.error(
            "Send deadline of %gs exceeded invoice_id=%s stage=%s",
            self.config.send_deadline, operation.request.invoice_id, operation.stage.value,
        )
        operation.reply.deliver(SendReply.failed(operation.request, TIMEOUT_MESSAGE))
        worker.cancel()

    async def _run(self, operation: SendOperation) -> None:
        request = operation.request
        try:
            async with self.registry.claim(request.invoice_id):
                await self._pipeline(operation)
        except InvoicingError as exc:
            logger.error(
                "Send failed invoice_id=%s stage=%s error=%s",
                request.invoice_id, operation.stage.value, exc.message,
            )
            operation.reply.deliver(SendReply.failed(request, exc.message))
        except asyncio.CancelledError:
            logger.warning(
                "Send worker cancelled invoice_id=%s stage=%s",
                request.invoice_id, operation.stage.value,
            )
            raise
        except Exception as exc:
            logger.exception("Unexpected error sending invoice_id=%s", request.invoice_id)
            operation.reply.deliver(SendReply.failed(request, str(exc) or type(exc).__name__))
        finally:
            if not operation.reply.delivered:
                operation.reply.deliver(SendReply.failed(request, CANCELLED_MESSAGE))
            operation.stage = SendStage.DONE

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _pipeline(self, operation: SendOperation) -> None:
        request = operation.request
        operation.advance(SendStage.LOADING)

        settings = await self.store.get_settings()
        if settings is None or not settings.has_smtp():
            raise ConfigurationMissingError()
        if not settings.sender_address():
            raise ConfigurationMissingError("company_email")
        logger.debug("Loaded company settings %s", settings.model_dump_safe())
        invoice, customer, line_items = await self._load_invoice(request.invoice_id)

        recipient = (request.recipient_email or "").strip()
        if not recipient and customer.has_email():
            recipient = customer.email.strip()
        if not recipient:
            raise RecipientMissingError(invoice.id)
        operation.recipient = recipient
        attachments = await self.store.list_attachments(invoice.id)

        try:
            operation.advance(SendStage.RENDERING)
            html = self.renderer.render_invoice(settings, customer, invoice, line_items)
            operation.advance(SendStage.RASTERIZING)
            pdf_path = await self.rasterizer.rasterize(
                html, self.config.pdf_output_path(settings.invoice_prefix, invoice.invoice_number)
            )
        except InvoicingError as exc:
            if self.config.audit_render_failures:
                await self._record(operation, EmailLogStatus.FAILED, exc.message)
            raise

        envelope = self.build_envelope(
            settings, customer, invoice, recipient, pdf_path, attachments
        )
        operation.advance(SendStage.DISPATCHING)
        try:
            result = await self.dispatcher.dispatch(settings.smtp_parameters(), envelope)
        except asyncio.CancelledError:
            if operation.timed_out:
                await self._record(operation, EmailLogStatus.FAILED, TIMEOUT_MESSAGE)
            raise

        operation.advance(SendStage.RECORDING)
        if not result.delivered:
            error = result.error or "Unknown error"
            await self._record(operation, EmailLogStatus.FAILED, error)
            raise DeliveryError(error, result.attempts)

        await asyncio.shield(self._record_success(operation, invoice.id))
        operation.reply.deliver(SendReply.ok(request))

    async def _load_invoice(self, invoice_id: int) -> tuple[Invoice, Customer, list[LineItem]]:
        invoice = await self.store.get_invoice(invoice_id)
        if invoice is None or invoice.is_deleted():
            raise InvoiceNotFoundError(invoice_id)
        customer = await self.store.get_customer(invoice.customer_id)
        if customer is None:
            raise CustomerNotFoundError(invoice.customer_id)
        line_items = await self.store.list_line_items(invoice.id)
        if not invoice.is_balanced(line_items):
            logger.warning(
                "Invoice total does not match its line items invoice_id=%s total=%s",
                invoice.id, invoice.total,
            )
        return invoice, customer, line_items

    async def _record(
        self,
        operation: SendOperation,
        status: EmailLogStatus,
        error_message: str | None = None,
    ) -> None:
        await asyncio.shield(
            self.store.append_email_log(
                operation.request.invoice_id,
                operation.recipient or "",
                status,
                error_message,
            )
        )

    async def _record_success(self, operation: SendOperation, invoice_id: int) -> None:
        await self.store.append_email_log(
            invoice_id, operation.recipient or "", EmailLogStatus.SUCCESS
        )
        await self.store.mark_sent(invoice_id, self.config.sent_transition_from)

    def build_envelope(
        self,
        settings: CompanySettings,
        customer: Customer,
        invoice: Invoice,
        recipient: str,
        pdf_path: Path,
        attachments: Sequence[Attachment] = (),
    ) -> MailEnvelope:
        """Compose the outgoing message for *invoice*.

        The company address is the sender, the reply target and a blind
        copy; the generated PDF comes first, followed by stored attachments.

        Raises:
            ConfigurationMissingError: If no sender address can be derived
        """
        sender = settings.sender_address()
        if not sender:
            raise ConfigurationMissingError("company_email")
        company = settings.company_name or sender
        due = invoice.due_date.isoformat() if invoice.due_date else "receipt"

        body = (
            f"Dear {customer.name},\n\n"
            f"Please find attached Invoice #{invoice.invoice_number} due on {due}. "
            f"The total amount due is {format_currency(invoice.total)}.\n\n"
            "Thank you for your business.\n\n"
            f"Best regards,\n{company}"
        )
        files = [MailAttachment(filename=pdf_path.name, path=str(pdf_path))]
        files += [
            MailAttachment(filename=a.original_filename, path=a.file_path) for a in attachments
        ]
        return MailEnvelope(
            from_name=settings.company_name,
            from_address=sender,
            reply_to=settings.company_email,
            to=recipient,
            bcc=[settings.company_email] if settings.company_email else [],
            subject=f"Invoice #{invoice.invoice_number} from {company}",
            body=body,
            attachments=files,
        )

    # ------------------------------------------------------------------
    # PDF download and shutdown
    # ------------------------------------------------------------------

    async def generate_pdf(self, invoice_id: int, output_path: Path | None = None) -> Path:
        """Render and rasterize *invoice_id* without mailing it.

        Raises:
            InvoiceNotFoundError: If the invoice is absent or soft-deleted
            CustomerNotFoundError: If the invoice's customer is absent
        """
        settings = await self.store.get_settings() or CompanySettings()
        invoice, customer, line_items = await self._load_invoice(invoice_id)
        html = self.renderer.render_invoice(settings, customer, invoice, line_items)
        target = output_path or self.config.pdf_output_path(
            settings.invoice_prefix, invoice.invoice_number
        )
        return await self.rasterizer.rasterize(html, target)

    async def drain(self) -> None:
        """Wait for every in-flight worker to finish."""
        if not self._workers:
            return
        logger.info("Draining %d in-flight send(s)", len(self._workers))
        await asyncio.gather(*list(self._workers), return_exceptions=True)


__all__ = ["CANCELLED_MESSAGE", "TIMEOUT_MESSAGE", "SendOperation", "SendOrchestrator"]
