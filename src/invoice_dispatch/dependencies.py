"""FastAPI dependency-injection helpers for the invoicing routes."""
from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from invoice_dispatch.attachments import AttachmentService
from invoice_dispatch.manager import InvoicingManager
from invoice_dispatch.sending.orchestrator import SendOrchestrator
from invoice_dispatch.storage.invoice_store import InvoiceStore


def get_invoicing_manager(request: Request) -> InvoicingManager:
    """Return the manager published by :meth:`InvoicingManager.create_lifespan`."""
    manager = getattr(request.app.state, "invoicing_manager", None)
    if manager is None:
        raise RuntimeError(
            "invoicing_manager not found on app.state. "
            "Did you forget to use InvoicingManager.create_lifespan()?"
        )
    return manager


def get_orchestrator(
    manager: Annotated[InvoicingManager, Depends(get_invoicing_manager)],
) -> SendOrchestrator:
    return manager.orchestrator


def get_attachment_service(
    manager: Annotated[InvoicingManager, Depends(get_invoicing_manager)],
) -> AttachmentService:
    return manager.attachments


def get_invoice_store(
    manager: Annotated[InvoicingManager, Depends(get_invoicing_manager)],
) -> InvoiceStore:
    return manager.store


__all__ = [
    "get_attachment_service",
    "get_invoice_store",
    "get_invoicing_manager",
    "get_orchestrator",
]
