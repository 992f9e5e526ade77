"""SendOrchestrator tests — end-to-end sends over the seeded SQLite store."""
from __future__ import annotations

import asyncio
from datetime import datetime

import pytest
from playwright.async_api import Error as PlaywrightError

from invoice_dispatch.core.exceptions import StepTimeoutError, TemplateMissingError
from invoice_dispatch.core.types import (
    DuplicateSendPolicy,
    EmailLogStatus,
    InvoiceStatus,
    SendRequest,
)
from invoice_dispatch.mail.dispatcher import DeliveryResult, MailDispatcher
from invoice_dispatch.pdf.rasterizer import PdfRasterizer
from invoice_dispatch.sending.orchestrator import TIMEOUT_MESSAGE
from invoice_dispatch.sending.reply import PendingReply

from conftest import FakeDispatcher, FakeRasterizer


async def _wait_until(predicate, timeout: float = 2.0) -> None:
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.005)


class TestSuccessfulSend:

    @pytest.mark.asyncio
    async def test_reply_success(self, make_orchestrator) -> None:
        reply = await make_orchestrator().send(1)
        assert reply.success is True
        assert reply.error is None
        assert reply.to_payload() == {"success": True}

    @pytest.mark.asyncio
    async def test_status_sent_and_sent_at_set(self, make_orchestrator, seeded_store) -> None:
        await make_orchestrator().send(1)
        invoice = await seeded_store.get_invoice(1)
        assert invoice.status == InvoiceStatus.SENT
        assert invoice.sent_at is not None

    @pytest.mark.asyncio
    async def test_one_success_log(self, make_orchestrator, seeded_store) -> None:
        await make_orchestrator().send(1)
        logs = await seeded_store.list_email_logs(1)
        assert len(logs) == 1
        assert logs[0].status == EmailLogStatus.SUCCESS
        assert logs[0].recipient_email == "a@b.com"
        assert logs[0].error_message is None

    @pytest.mark.asyncio
    async def test_html_and_pdf_path(self, make_orchestrator, fake_rasterizer, config) -> None:
        reply = await make_orchestrator().send(1)
        assert reply.success
        html, path = fake_rasterizer.calls[0]
        assert html.count("$150.00") == 2
        assert path == config.output_dir / "ACME-Invoice-1001.pdf"
        assert path.is_file()

    @pytest.mark.asyncio
    async def test_envelope(self, make_orchestrator, fake_dispatcher) -> None:
        await make_orchestrator().send(1)
        envelope = fake_dispatcher.envelopes[0]
        assert envelope.to == "a@b.com"
        assert envelope.from_address == "billing@acme.test"
        assert envelope.from_name == "Acme Ltd"
        assert envelope.reply_to == "billing@acme.test"
        assert envelope.bcc == ["billing@acme.test"]
        assert envelope.subject == "Invoice #1001 from Acme Ltd"
        assert "Dear Jane Doe," in envelope.body
        assert "due on 2026-01-31" in envelope.body
        assert "$150.00" in envelope.body
        assert [a.filename for a in envelope.attachments] == ["ACME-Invoice-1001.pdf"]

    @pytest.mark.asyncio
    async def test_smtp_parameters_from_settings(self, make_orchestrator, fake_dispatcher) -> None:
        await make_orchestrator().send(1)
        smtp = fake_dispatcher.smtp[0]
        assert smtp.host == "smtp.acme.test"
        assert smtp.port == 587
        assert smtp.username == "mailer"

    @pytest.mark.asyncio
    async def test_stored_attachments_follow_pdf(
        self, make_orchestrator, fake_dispatcher, seeded_store, tmp_path
    ) -> None:
        extra = tmp_path / "terms.txt"
        extra.write_text("terms")
        await seeded_store.add_attachment(1, "1_1.txt", "terms.txt", str(extra), 5)
        await make_orchestrator().send(1)
        names = [a.filename for a in fake_dispatcher.envelopes[0].attachments]
        assert names == ["ACME-Invoice-1001.pdf", "terms.txt"]

    @pytest.mark.asyncio
    async def test_request_recipient_overrides_customer(
        self, make_orchestrator, fake_dispatcher, seeded_store
    ) -> None:
        reply = await make_orchestrator().send(1, recipient_email="ap@b.com")
        assert reply.success
        assert fake_dispatcher.envelopes[0].to == "ap@b.com"
        logs = await seeded_store.list_email_logs(1)
        assert logs[0].recipient_email == "ap@b.com"

    @pytest.mark.asyncio
    async def test_submit_echoes_correlation_id(self, make_orchestrator) -> None:
        request = SendRequest(invoice_id=1)
        reply = await make_orchestrator().submit(request)
        assert reply.correlation_id == request.correlation_id


class TestLookupFailures:

    @pytest.mark.asyncio
    async def test_missing_customer(
        self, make_orchestrator, seeded_store, fake_rasterizer, fake_dispatcher
    ) -> None:
        await seeded_store.gateway.mutate(
            "INSERT INTO invoices (id, invoice_number, customer_id, total) "
            "VALUES (2, '1002', 99, 10.0)"
        )
        reply = await make_orchestrator().send(2)
        assert reply.success is False
        assert reply.error == "Customer not found"
        assert fake_rasterizer.calls == []
        assert fake_dispatcher.envelopes == []
        assert await seeded_store.list_email_logs(2) == []

    @pytest.mark.asyncio
    async def test_missing_invoice(self, make_orchestrator, seeded_store) -> None:
        reply = await make_orchestrator().send(404)
        assert reply.error == "Invoice not found"
        assert await seeded_store.list_email_logs(404) == []

    @pytest.mark.asyncio
    async def test_soft_deleted_invoice_not_found(self, make_orchestrator, seeded_store) -> None:
        await seeded_store.gateway.mutate(
            "UPDATE invoices SET deleted_at = '2026-02-01 00:00:00' WHERE id = 1"
        )
        reply = await make_orchestrator().send(1)
        assert reply.error == "Invoice not found"

    @pytest.mark.asyncio
    async def test_smtp_not_configured(
        self, make_orchestrator, seeded_store, fake_rasterizer
    ) -> None:
        await seeded_store.gateway.mutate("UPDATE settings SET smtp_host = NULL")
        reply = await make_orchestrator().send(1)
        assert reply.error == "SMTP settings not configured"
        assert fake_rasterizer.calls == []
        assert await seeded_store.list_email_logs(1) == []

    @pytest.mark.asyncio
    async def test_sender_missing_checked_before_render(
        self, make_orchestrator, seeded_store, fake_rasterizer, fake_dispatcher
    ) -> None:
        await seeded_store.gateway.mutate(
            "UPDATE settings SET company_email = NULL, smtp_user = NULL"
        )
        reply = await make_orchestrator().send(1)
        assert reply.error == "Company email address not configured"
        assert fake_rasterizer.calls == []
        assert fake_dispatcher.envelopes == []
        assert await seeded_store.list_email_logs(1) == []

    @pytest.mark.asyncio
    async def test_deleted_invoice_from_store_not_sent(
        self, make_orchestrator, seeded_store, fake_rasterizer, monkeypatch
    ) -> None:
        invoice = await seeded_store.get_invoice(1)
        deleted = invoice.model_copy(update={"deleted_at": datetime(2026, 2, 1)})

        async def get_invoice(_invoice_id):
            return deleted

        monkeypatch.setattr(seeded_store, "get_invoice", get_invoice)
        reply = await make_orchestrator().send(1)
        assert reply.error == "Invoice not found"
        assert fake_rasterizer.calls == []

    @pytest.mark.asyncio
    async def test_customer_without_email(self, make_orchestrator, seeded_store) -> None:
        await seeded_store.gateway.mutate("UPDATE invoices SET customer_id = 2 WHERE id = 1")
        reply = await make_orchestrator().send(1)
        assert reply.success is False
        assert reply.error == "Customer has no email address"


class TestDeliveryFailures:

    @pytest.mark.asyncio
    async def test_third_attempt_succeeds(
        self, make_orchestrator, make_config, smtp_factory, seeded_store
    ) -> None:
        config = make_config()
        factory = smtp_factory(failures=2)
        dispatcher = MailDispatcher(config, smtp_factory=factory)
        reply = await make_orchestrator(config=config, dispatcher=dispatcher).send(1)

        assert reply.success is True
        assert len(factory.transports) == 3
        logs = await seeded_store.list_email_logs(1)
        assert [log.status for log in logs] == [EmailLogStatus.SUCCESS]

    @pytest.mark.asyncio
    async def test_all_attempts_fail(
        self, make_orchestrator, make_config, smtp_factory, seeded_store
    ) -> None:
        config = make_config()
        factory = smtp_factory(failures=3)
        dispatcher = MailDispatcher(config, smtp_factory=factory)
        reply = await make_orchestrator(config=config, dispatcher=dispatcher).send(1)

        assert reply.success is False
        assert reply.error == "Connection lost"
        logs = await seeded_store.list_email_logs(1)
        assert len(logs) == 1
        assert logs[0].status == EmailLogStatus.FAILED
        assert logs[0].error_message == "Connection lost"
        invoice = await seeded_store.get_invoice(1)
        assert invoice.status == InvoiceStatus.DRAFT
        assert invoice.sent_at is None

    @pytest.mark.asyncio
    async def test_unexpected_transport_error_is_logged(
        self, make_orchestrator, make_config, smtp_factory, seeded_store
    ) -> None:
        config = make_config()
        factory = smtp_factory()

        def broken(**kwargs):
            transport = factory(**kwargs)
            transport.connect.side_effect = RuntimeError("event loop is closed")
            return transport

        dispatcher = MailDispatcher(config, smtp_factory=broken)
        reply = await make_orchestrator(config=config, dispatcher=dispatcher).send(1)

        assert reply.success is False
        assert reply.error == "event loop is closed"
        assert len(factory.transports) == config.send_max_attempts
        logs = await seeded_store.list_email_logs(1)
        assert [log.status for log in logs] == [EmailLogStatus.FAILED]
        assert logs[0].error_message == "event loop is closed"
        invoice = await seeded_store.get_invoice(1)
        assert invoice.sent_at is None


class TestResend:

    @pytest.mark.asyncio
    async def test_two_sends_of_sent_invoice(self, make_orchestrator, seeded_store) -> None:
        await seeded_store.gateway.mutate("UPDATE invoices SET status = 'Sent' WHERE id = 1")
        orchestrator = make_orchestrator()
        first = await orchestrator.send(1)
        second = await orchestrator.send(1)
        assert first.success and second.success
        assert first.correlation_id != second.correlation_id
        logs = await seeded_store.list_email_logs(1)
        assert [log.status for log in logs] == [EmailLogStatus.SUCCESS, EmailLogStatus.SUCCESS]

    @pytest.mark.asyncio
    async def test_paid_invoice_keeps_status(self, make_orchestrator, seeded_store) -> None:
        await seeded_store.gateway.mutate("UPDATE invoices SET status = 'Paid' WHERE id = 1")
        reply = await make_orchestrator().send(1)
        assert reply.success
        invoice = await seeded_store.get_invoice(1)
        assert invoice.status == InvoiceStatus.PAID
        assert invoice.sent_at is not None


class TestRenderFailures:

    @pytest.mark.asyncio
    async def test_content_timeout_closes_browser(
        self, make_orchestrator, make_config, fake_playwright, seeded_store
    ) -> None:
        async def hang(*_args, **_kwargs) -> None:
            await asyncio.sleep(5)

        fake_playwright.page.set_content.side_effect = hang
        config = make_config(content_timeout=0.05)
        rasterizer = PdfRasterizer(config, playwright_factory=fake_playwright)
        reply = await make_orchestrator(config=config, rasterizer=rasterizer).send(1)

        assert reply.success is False
        assert "timed out" in reply.error
        fake_playwright.browser.close.assert_awaited_once()
        fake_playwright.driver.stop.assert_awaited_once()
        assert await seeded_store.list_email_logs(1) == []

    @pytest.mark.asyncio
    async def test_render_failure_not_audited_by_default(
        self, make_orchestrator, seeded_store, fake_dispatcher
    ) -> None:
        rasterizer = FakeRasterizer(error=StepTimeoutError("pdf_write", 10))
        reply = await make_orchestrator(rasterizer=rasterizer).send(1)
        assert reply.error == "PDF generation step 'pdf_write' timed out after 10s"
        assert fake_dispatcher.envelopes == []
        assert await seeded_store.list_email_logs(1) == []

    @pytest.mark.asyncio
    async def test_render_failure_audited_when_enabled(
        self, make_orchestrator, seeded_store
    ) -> None:
        rasterizer = FakeRasterizer(error=StepTimeoutError("pdf_write", 10))
        orchestrator = make_orchestrator(rasterizer=rasterizer, audit_render_failures=True)
        reply = await orchestrator.send(1)
        assert reply.success is False
        logs = await seeded_store.list_email_logs(1)
        assert len(logs) == 1
        assert logs[0].status == EmailLogStatus.FAILED
        assert logs[0].error_message == reply.error

    @pytest.mark.asyncio
    async def test_browser_error_audited_when_enabled(
        self, make_orchestrator, make_config, fake_playwright, seeded_store
    ) -> None:
        fake_playwright.page.pdf.side_effect = PlaywrightError(
            "Target page, context or browser has been closed"
        )
        config = make_config(audit_render_failures=True)
        rasterizer = PdfRasterizer(config, playwright_factory=fake_playwright)
        reply = await make_orchestrator(config=config, rasterizer=rasterizer).send(1)

        assert reply.success is False
        assert reply.error == (
            "PDF generation step 'pdf_write' failed: "
            "Target page, context or browser has been closed"
        )
        fake_playwright.browser.close.assert_awaited_once()
        logs = await seeded_store.list_email_logs(1)
        assert len(logs) == 1
        assert logs[0].status == EmailLogStatus.FAILED
        assert logs[0].error_message == reply.error

    @pytest.mark.asyncio
    async def test_missing_template(self, make_orchestrator, seeded_store, monkeypatch) -> None:
        orchestrator = make_orchestrator()

        def missing() -> str:
            raise TemplateMissingError(["nowhere"])

        monkeypatch.setattr(orchestrator.renderer, "load_template", missing)
        reply = await orchestrator.send(1)
        assert reply.success is False
        assert reply.error.startswith("Invoice template not found")


class TestWatchdog:

    @pytest.mark.asyncio
    async def test_timeout_during_dispatch_logs_failure(
        self, make_orchestrator, seeded_store
    ) -> None:
        orchestrator = make_orchestrator(
            dispatcher=FakeDispatcher(delay=5), send_deadline=0.1
        )
        reply = await orchestrator.send(1)
        assert reply.success is False
        assert reply.error == TIMEOUT_MESSAGE

        await orchestrator.drain()
        logs = await seeded_store.list_email_logs(1)
        assert len(logs) == 1
        assert logs[0].status == EmailLogStatus.FAILED
        assert logs[0].error_message == TIMEOUT_MESSAGE
        invoice = await seeded_store.get_invoice(1)
        assert invoice.status == InvoiceStatus.DRAFT

    @pytest.mark.asyncio
    async def test_timeout_during_rasterize_writes_nothing(
        self, make_orchestrator, seeded_store
    ) -> None:
        orchestrator = make_orchestrator(
            rasterizer=FakeRasterizer(delay=5), send_deadline=0.1
        )
        reply = await orchestrator.send(1)
        assert reply.error == TIMEOUT_MESSAGE
        await orchestrator.drain()
        assert orchestrator.in_flight == 0
        assert await seeded_store.list_email_logs(1) == []

    @pytest.mark.asyncio
    async def test_single_reply_when_deadline_and_step_coincide(
        self, make_orchestrator, monkeypatch
    ) -> None:
        accepted: dict[str, list[bool]] = {}
        deliver = PendingReply.deliver

        def tracking_deliver(pending, reply):
            result = deliver(pending, reply)
            accepted.setdefault(pending.request.correlation_id, []).append(result)
            return result

        monkeypatch.setattr(PendingReply, "deliver", tracking_deliver)
        orchestrator = make_orchestrator(
            dispatcher=FakeDispatcher(delay=0.1), send_deadline=0.1
        )
        for _ in range(3):
            reply = await orchestrator.send(1)
            await orchestrator.drain()
            assert accepted[reply.correlation_id].count(True) == 1
            if not reply.success:
                assert reply.error == TIMEOUT_MESSAGE
        assert len(accepted) == 3


class TestConcurrentSends:

    @pytest.mark.asyncio
    async def test_reject_policy(self, make_orchestrator) -> None:
        gate = asyncio.Event()
        orchestrator = make_orchestrator(dispatcher=FakeDispatcher(gate=gate))
        first = asyncio.create_task(orchestrator.send(1))
        await _wait_until(lambda: orchestrator.registry.is_in_flight(1))

        second = await orchestrator.send(1)
        assert second.success is False
        assert second.error == "Invoice 1 is already being sent"

        gate.set()
        assert (await first).success is True

    @pytest.mark.asyncio
    async def test_queue_policy(self, make_orchestrator, seeded_store) -> None:
        gate = asyncio.Event()
        dispatcher = FakeDispatcher(gate=gate)
        orchestrator = make_orchestrator(
            dispatcher=dispatcher, duplicate_send_policy=DuplicateSendPolicy.QUEUE
        )
        first = asyncio.create_task(orchestrator.send(1))
        await _wait_until(lambda: orchestrator.registry.is_in_flight(1))
        second = asyncio.create_task(orchestrator.send(1))
        await asyncio.sleep(0.02)
        assert len(dispatcher.envelopes) == 1

        gate.set()
        replies = await asyncio.gather(first, second)
        assert all(r.success for r in replies)
        assert len(await seeded_store.list_email_logs(1)) == 2


class TestGeneratePdf:

    @pytest.mark.asyncio
    async def test_writes_deterministic_path(
        self, make_orchestrator, fake_rasterizer, fake_dispatcher, config
    ) -> None:
        path = await make_orchestrator().generate_pdf(1)
        assert path == config.output_dir / "ACME-Invoice-1001.pdf"
        assert path.is_file()
        assert fake_dispatcher.envelopes == []

    @pytest.mark.asyncio
    async def test_explicit_output_path(self, make_orchestrator, tmp_path) -> None:
        target = tmp_path / "download" / "copy.pdf"
        path = await make_orchestrator().generate_pdf(1, target)
        assert path == target
        assert target.is_file()

    @pytest.mark.asyncio
    async def test_works_without_smtp(self, make_orchestrator, seeded_store) -> None:
        await seeded_store.gateway.mutate("UPDATE settings SET smtp_host = NULL")
        path = await make_orchestrator().generate_pdf(1)
        assert path.is_file()

    @pytest.mark.asyncio
    async def test_missing_invoice_raises(self, make_orchestrator) -> None:
        from invoice_dispatch.core.exceptions import InvoiceNotFoundError

        with pytest.raises(InvoiceNotFoundError):
            await make_orchestrator().generate_pdf(404)


class TestDeliveryResultScripts:

    @pytest.mark.asyncio
    async def test_failed_result_surfaces_error(self, make_orchestrator, seeded_store) -> None:
        dispatcher = FakeDispatcher(
            results=[DeliveryResult(delivered=False, error="550 mailbox unavailable", attempts=3)]
        )
        reply = await make_orchestrator(dispatcher=dispatcher).send(1)
        assert reply.error == "550 mailbox unavailable"
        logs = await seeded_store.list_email_logs(1)
        assert logs[0].error_message == "550 mailbox unavailable"
