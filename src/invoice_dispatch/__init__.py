"""invoice-dispatch — render, rasterize and email invoices.

Quick start
-----------
.. code-block:: python

    from fastapi import FastAPI
    from invoice_dispatch import InvoicingConfig, InvoicingManager

    config = InvoicingConfig(database_url="sqlite+aiosqlite:///./invoicing-app.db")
    app = FastAPI(lifespan=InvoicingManager.create_lifespan(config))

    # or without HTTP
    async with InvoicingManager(config) as manager:
        reply = await manager.orchestrator.send(42)

Public API
----------
Configuration
    InvoicingConfig

Manager & orchestration
    InvoicingManager, SendOrchestrator, InFlightRegistry, PendingReply

Pipeline components
    DocumentRenderer, PdfRasterizer, MailDispatcher, AttachmentService

Storage
    InvoiceStore (ABC), SQLInvoiceStore, QueryGateway

Exceptions
    InvoicingError and all its subclasses
"""
from __future__ import annotations

from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as _pkg_version

try:
    __version__: str = _pkg_version("invoice-dispatch")
except PackageNotFoundError:  # running from source without install
    __version__ = "0.0.0+dev"

from invoice_dispatch.attachments import AttachmentService
from invoice_dispatch.core.config import InvoicingConfig
from invoice_dispatch.core.exceptions import (
    AlreadySendingError,
    AttachmentNotFoundError,
    ConfigurationMissingError,
    CustomerNotFoundError,
    DeliveryError,
    InvoiceNotFoundError,
    InvoicingError,
    QueryError,
    RasterizationError,
    RasterizerUnavailableError,
    RecipientMissingError,
    StepTimeoutError,
    TemplateMissingError,
)
from invoice_dispatch.core.types import (
    DuplicateSendPolicy,
    EmailLogStatus,
    InvoiceStatus,
    SendReply,
    SendRequest,
)
from invoice_dispatch.mail.dispatcher import DeliveryResult, MailDispatcher
from invoice_dispatch.manager import InvoicingManager
from invoice_dispatch.pdf.rasterizer import PdfRasterizer
from invoice_dispatch.rendering.renderer import DocumentRenderer
from invoice_dispatch.sending.orchestrator import SendOrchestrator
from invoice_dispatch.sending.registry import InFlightRegistry
from invoice_dispatch.sending.reply import PendingReply
from invoice_dispatch.storage.gateway import QueryGateway
from invoice_dispatch.storage.invoice_store import InvoiceStore
from invoice_dispatch.storage.sql import SQLInvoiceStore

__all__ = [
    "AlreadySendingError",
    "AttachmentNotFoundError",
    "AttachmentService",
    "ConfigurationMissingError",
    "CustomerNotFoundError",
    "DeliveryError",
    "DeliveryResult",
    "DocumentRenderer",
    "DuplicateSendPolicy",
    "EmailLogStatus",
    "InFlightRegistry",
    "InvoiceNotFoundError",
    "InvoiceStatus",
    "InvoiceStore",
    "InvoicingConfig",
    "InvoicingError",
    "InvoicingManager",
    "MailDispatcher",
    "PdfRasterizer",
    "PendingReply",
    "QueryError",
    "QueryGateway",
    "RasterizationError",
    "RasterizerUnavailableError",
    "RecipientMissingError",
    "SQLInvoiceStore",
    "SendOrchestrator",
    "SendReply",
    "SendRequest",
    "StepTimeoutError",
    "TemplateMissingError",
    "__version__",
]
