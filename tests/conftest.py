"""Shared pytest fixtures for the invoice-dispatch test suite.

Design philosophy
-----------------
- Everything that touches the store uses SQLite in-memory, so the suite runs
  without external services.
- No real browser and no real SMTP server: the rasterizer and the SMTP
  transport are replaced by fakes that record what they were asked to do.
- Scope is "function" everywhere; each test gets a fresh database and a
  fresh ``tmp_path`` output directory.
"""
from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import aiosmtplib
import pytest

from invoice_dispatch.core.config import InvoicingConfig
from invoice_dispatch.mail.dispatcher import DeliveryResult
from invoice_dispatch.rendering.renderer import DocumentRenderer
from invoice_dispatch.sending.orchestrator import SendOrchestrator
from invoice_dispatch.storage.gateway import QueryGateway
from invoice_dispatch.storage.sql import SQLInvoiceStore

# ---------------------------------------------------------------------------
# Event loop: one per test session (required by pytest-asyncio)
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session")
def event_loop_policy():
    return asyncio.DefaultEventLoopPolicy()


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def make_config(tmp_path: Path):
    """Build an InvoicingConfig rooted in ``tmp_path``; kwargs override."""

    def _make(**kwargs) -> InvoicingConfig:
        defaults = dict(
            database_url="sqlite+aiosqlite:///:memory:",
            output_dir=tmp_path / "invoices",
            attachments_dir=tmp_path / "attachments",
            send_retry_delay=0.0,
            send_deadline=5.0,
        )
        defaults.update(kwargs)
        return InvoicingConfig(_env_file=None, **defaults)

    return _make


@pytest.fixture
def config(make_config) -> InvoicingConfig:
    return make_config()


# ---------------------------------------------------------------------------
# Storage fixtures
# ---------------------------------------------------------------------------

async def seed_store(store: SQLInvoiceStore) -> None:
    """Settings, two customers, invoice #1001 with two items totalling $150."""
    gw = store.gateway
    await gw.mutate(
        "INSERT INTO settings (id, company_name, company_email, smtp_host, smtp_port, "
        "smtp_user, smtp_password, invoice_prefix) VALUES (1, 'Acme Ltd', "
        "'billing@acme.test', 'smtp.acme.test', 587, 'mailer', 's3cret', 'ACME')"
    )
    await gw.mutate(
        "INSERT INTO customers (id, name, email) VALUES "
        "(1, 'Jane Doe', 'a@b.com'), (2, 'No Mail Co', NULL)"
    )
    await gw.mutate(
        "INSERT INTO invoices (id, invoice_number, customer_id, issue_date, due_date, "
        "status, payment_terms, subtotal, total) VALUES "
        "(1, '1001', 1, '2026-01-01', '2026-01-31', 'Draft', 'Net 30', 150.0, 150.0)"
    )
    await gw.mutate(
        "INSERT INTO invoice_line_items (invoice_id, product_name, description, "
        "unit_price, quantity, line_total, sort_order) VALUES "
        "(1, 'Widget', 'Blue widget', 50.0, 2, 100.0, 0), "
        "(1, 'Gadget', 'Small gadget', 25.0, 2, 50.0, 1)"
    )


@pytest.fixture
async def store():
    """Empty SQLite-backed invoice store."""
    s = SQLInvoiceStore(QueryGateway("sqlite+aiosqlite:///:memory:"))
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
async def seeded_store(store: SQLInvoiceStore) -> SQLInvoiceStore:
    await seed_store(store)
    return store


# ---------------------------------------------------------------------------
# Pipeline fakes
# ---------------------------------------------------------------------------

class FakeRasterizer:
    """Writes a stub PDF instead of driving a browser."""

    def __init__(self, error: Exception | None = None, delay: float = 0.0) -> None:
        self.error = error
        self.delay = delay
        self.calls: list[tuple[str, Path]] = []

    async def rasterize(self, html: str, output_path: Path | str) -> Path:
        path = Path(output_path)
        self.calls.append((html, path))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"%PDF-1.4\n% stub\n")
        return path


class FakeDispatcher:
    """Returns scripted DeliveryResults and records every envelope."""

    def __init__(
        self,
        results: list[DeliveryResult] | None = None,
        delay: float = 0.0,
        gate: asyncio.Event | None = None,
    ) -> None:
        self.results = list(results or [])
        self.delay = delay
        self.gate = gate
        self.envelopes = []
        self.smtp = []

    async def dispatch(self, smtp, envelope) -> DeliveryResult:
        self.smtp.append(smtp)
        self.envelopes.append(envelope)
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.results:
            return self.results.pop(0)
        return DeliveryResult(delivered=True, attempts=1)


@pytest.fixture
def fake_rasterizer() -> FakeRasterizer:
    return FakeRasterizer()


@pytest.fixture
def fake_dispatcher() -> FakeDispatcher:
    return FakeDispatcher()


@pytest.fixture
def make_orchestrator(seeded_store, make_config, fake_rasterizer, fake_dispatcher):
    """Build a SendOrchestrator over the seeded store; kwargs override parts."""

    def _make(config=None, rasterizer=None, dispatcher=None, **config_kwargs):
        return SendOrchestrator(
            seeded_store,
            DocumentRenderer(),
            rasterizer or fake_rasterizer,
            dispatcher or fake_dispatcher,
            config or make_config(**config_kwargs),
        )

    return _make


# ---------------------------------------------------------------------------
# SMTP and browser fakes
# ---------------------------------------------------------------------------

@pytest.fixture
def smtp_factory():
    """Return a builder for aiosmtplib.SMTP stand-ins.

    ``smtp_factory(failures=2)`` yields a factory whose first two transports
    fail on transmit; every transport built is kept in ``factory.transports``.
    """

    def _build(failures: int = 0, error: Exception | None = None):
        transports: list[MagicMock] = []

        def factory(**kwargs):
            transport = MagicMock()
            transport.kwargs = kwargs
            transport.is_connected = True
            transport.connect = AsyncMock()
            transport.login = AsyncMock()
            transport.noop = AsyncMock()
            transport.quit = AsyncMock()
            transport.close = MagicMock()
            if len(transports) < failures:
                transport.send_message = AsyncMock(
                    side_effect=error or aiosmtplib.SMTPServerDisconnected("Connection lost")
                )
            else:
                transport.send_message = AsyncMock(return_value=({}, "OK"))
            transports.append(transport)
            return transport

        factory.transports = transports
        return factory

    return _build


@pytest.fixture
def browser_executable(tmp_path: Path) -> Path:
    exe = tmp_path / "chrome"
    exe.write_text("#!/bin/sh\n")
    return exe


@pytest.fixture
def fake_playwright(browser_executable: Path):
    """Playwright stand-in: ``factory().start()`` returns a scripted driver."""
    page = MagicMock()
    page.set_content = AsyncMock()

    async def write_pdf(path: str, **_kwargs) -> bytes:
        data = b"%PDF-1.4\n"
        Path(path).write_bytes(data)
        return data

    page.pdf = AsyncMock(side_effect=write_pdf)

    browser = MagicMock()
    browser.new_page = AsyncMock(return_value=page)
    browser.close = AsyncMock()

    driver = MagicMock()
    driver.chromium.executable_path = str(browser_executable)
    driver.chromium.launch = AsyncMock(return_value=browser)
    driver.stop = AsyncMock()

    context = MagicMock()
    context.start = AsyncMock(return_value=driver)

    factory = MagicMock(return_value=context)
    factory.page = page
    factory.browser = browser
    factory.driver = driver
    return factory
