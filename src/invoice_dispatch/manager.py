"""Invoicing manager — wires store, renderer, rasterizer and dispatcher.

Construction does no I/O; :meth:`InvoicingManager.initialize` creates the
tables and brings overdue statuses up to date, :meth:`shutdown` waits for
in-flight sends and disposes the engine.

The recommended integration::

    app = FastAPI(lifespan=InvoicingManager.create_lifespan(config))
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import TYPE_CHECKING, Any

from invoice_dispatch.attachments import AttachmentService
from invoice_dispatch.mail.dispatcher import MailDispatcher
from invoice_dispatch.pdf.rasterizer import PdfRasterizer
from invoice_dispatch.rendering.renderer import DocumentRenderer
from invoice_dispatch.sending.orchestrator import SendOrchestrator

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI
    from starlette.types import Lifespan

    from invoice_dispatch.core.config import InvoicingConfig
    from invoice_dispatch.storage.invoice_store import InvoiceStore

logger = logging.getLogger(__name__)


class InvoicingManager:
    """Owner of every invoicing component for one application.

    Parameters
    ----------
    config:
        Validated :class:`~invoice_dispatch.core.config.InvoicingConfig`.
    store:
        Override the default :class:`~invoice_dispatch.storage.sql.SQLInvoiceStore`.
    renderer, rasterizer, dispatcher:
        Override the components built from *config*; tests pass fakes here.
    """

    def __init__(
        self,
        config: InvoicingConfig,
        *,
        store: InvoiceStore | None = None,
        renderer: DocumentRenderer | None = None,
        rasterizer: PdfRasterizer | None = None,
        dispatcher: MailDispatcher | None = None,
    ) -> None:
        self.config = config
        self._initialized = False

        if store is None:
            from invoice_dispatch.storage.gateway import QueryGateway
            from invoice_dispatch.storage.sql import SQLInvoiceStore
            store = SQLInvoiceStore(QueryGateway(config.database_url, echo=config.database_echo))

        self.store: InvoiceStore = store
        self.renderer = renderer or DocumentRenderer(config.template_path)
        self.rasterizer = rasterizer or PdfRasterizer(config)
        self.dispatcher = dispatcher or MailDispatcher(config)
        self.orchestrator = SendOrchestrator(
            self.store, self.renderer, self.rasterizer, self.dispatcher, config
        )
        self.attachments = AttachmentService(self.store, config.attachments_dir)

        logger.info(
            "InvoicingManager created output_dir=%s policy=%s",
            config.output_dir, config.duplicate_send_policy.value,
        )

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Create tables and roll Sent invoices past their due date to Overdue.

        Safe to call multiple times; later calls are no-ops.
        """
        if self._initialized:
            return
        await self.store.initialize()
        self.config.output_dir.mkdir(parents=True, exist_ok=True)
        await self.store.mark_overdue(date.today())
        self._initialized = True
        logger.info("InvoicingManager initialised")

    async def shutdown(self) -> None:
        """Wait for in-flight sends, then release the store."""
        if not self._initialized:
            return
        await self.orchestrator.drain()
        await self.store.close()
        self._initialized = False
        logger.info("InvoicingManager shutdown complete")

    async def __aenter__(self) -> InvoicingManager:
        await self.initialize()
        return self

    async def __aexit__(self, *_: Any) -> None:
        await self.shutdown()

    async def health_check(self) -> dict[str, Any]:
        """Return health information for the store and send pipeline."""
        health: dict[str, Any] = {"status": "healthy", "components": {}}
        try:
            settings = await self.store.get_settings()
            health["components"]["store"] = {
                "status": "healthy",
                "smtp_configured": bool(settings and settings.has_smtp()),
            }
        except Exception as exc:
            health["status"] = "unhealthy"
            health["components"]["store"] = {"status": "unhealthy", "error": str(exc)}
        health["components"]["sending"] = {
            "status": "healthy",
            "in_flight": self.orchestrator.in_flight,
        }
        return health

    @staticmethod
    def create_lifespan(
        config: InvoicingConfig,
        *,
        store: InvoiceStore | None = None,
        renderer: DocumentRenderer | None = None,
        rasterizer: PdfRasterizer | None = None,
        dispatcher: MailDispatcher | None = None,
    ) -> Lifespan[FastAPI]:
        """Build a FastAPI ``lifespan`` that owns an :class:`InvoicingManager`.

        The manager and config are published on ``app.state`` before
        initialisation so the dependencies in
        :mod:`invoice_dispatch.dependencies` can find them.
        """

        @asynccontextmanager
        async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
            manager = InvoicingManager(
                config,
                store=store,
                renderer=renderer,
                rasterizer=rasterizer,
                dispatcher=dispatcher,
            )
            app.state.invoicing_manager = manager
            app.state.invoicing_config = config

            await manager.initialize()
            try:
                yield
            finally:
                await manager.shutdown()

        return _lifespan


__all__ = ["InvoicingManager"]
