"""HTTP surface for the invoicing pipeline.

``POST /invoices/{id}/send`` is the request/response channel for sends: it
always answers ``200`` with the reply payload (``{"success": true}`` or
``{"success": false, "error": "..."}``).  The other routes raise
:class:`InvoicingError` subclasses, which :func:`invoicing_error_handler`
turns into JSON error responses.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated, Any

from fastapi import APIRouter, Depends, FastAPI, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from invoice_dispatch.attachments import AttachmentService
from invoice_dispatch.core.config import InvoicingConfig
from invoice_dispatch.core.exceptions import (
    AlreadySendingError,
    AttachmentNotFoundError,
    ConfigurationMissingError,
    CustomerNotFoundError,
    InvoiceNotFoundError,
    InvoicingError,
    StepTimeoutError,
)
from invoice_dispatch.dependencies import (
    get_attachment_service,
    get_invoice_store,
    get_invoicing_manager,
    get_orchestrator,
)
from invoice_dispatch.manager import InvoicingManager
from invoice_dispatch.sending.orchestrator import SendOrchestrator
from invoice_dispatch.storage.invoice_store import InvoiceStore

logger = logging.getLogger(__name__)

_ERROR_STATUS: list[tuple[type[InvoicingError], int]] = [
    (InvoiceNotFoundError, status.HTTP_404_NOT_FOUND),
    (CustomerNotFoundError, status.HTTP_404_NOT_FOUND),
    (AttachmentNotFoundError, status.HTTP_404_NOT_FOUND),
    (AlreadySendingError, status.HTTP_409_CONFLICT),
    (ConfigurationMissingError, status.HTTP_409_CONFLICT),
    (StepTimeoutError, status.HTTP_504_GATEWAY_TIMEOUT),
]


class SendInvoiceBody(BaseModel):
    recipient_email: str | None = Field(default=None, description="Overrides the customer email")


class GeneratePdfBody(BaseModel):
    output_path: str | None = Field(default=None, description="Write the PDF here instead")


class UploadAttachmentBody(BaseModel):
    source_path: str = Field(..., min_length=1, description="Local file to attach")


router = APIRouter(tags=["invoicing"])


@router.post("/invoices/{invoice_id}/send")
async def send_invoice(
    invoice_id: int,
    orchestrator: Annotated[SendOrchestrator, Depends(get_orchestrator)],
    body: SendInvoiceBody | None = None,
) -> dict[str, Any]:
    reply = await orchestrator.send(invoice_id, body.recipient_email if body else None)
    return reply.to_payload()


@router.post("/invoices/{invoice_id}/pdf")
async def generate_pdf(
    invoice_id: int,
    orchestrator: Annotated[SendOrchestrator, Depends(get_orchestrator)],
    body: GeneratePdfBody | None = None,
) -> dict[str, Any]:
    target = Path(body.output_path) if body and body.output_path else None
    path = await orchestrator.generate_pdf(invoice_id, target)
    return {"success": True, "path": str(path)}


@router.post("/invoices/{invoice_id}/attachments", status_code=status.HTTP_201_CREATED)
async def upload_attachment(
    invoice_id: int,
    body: UploadAttachmentBody,
    attachments: Annotated[AttachmentService, Depends(get_attachment_service)],
) -> dict[str, Any]:
    attachment = await attachments.upload(invoice_id, body.source_path)
    return {"success": True, "attachment": attachment.model_dump()}


@router.get("/invoices/{invoice_id}/attachments")
async def list_attachments(
    invoice_id: int,
    attachments: Annotated[AttachmentService, Depends(get_attachment_service)],
) -> list[dict[str, Any]]:
    return [a.model_dump() for a in await attachments.list(invoice_id)]


@router.delete("/attachments/{attachment_id}")
async def delete_attachment(
    attachment_id: int,
    attachments: Annotated[AttachmentService, Depends(get_attachment_service)],
) -> dict[str, Any]:
    await attachments.delete(attachment_id)
    return {"success": True}


@router.get("/invoices/{invoice_id}/email-logs")
async def list_email_logs(
    invoice_id: int,
    store: Annotated[InvoiceStore, Depends(get_invoice_store)],
) -> list[dict[str, Any]]:
    return [log.model_dump(mode="json") for log in await store.list_email_logs(invoice_id)]


@router.get("/invoices/next-number")
async def next_invoice_number(
    store: Annotated[InvoiceStore, Depends(get_invoice_store)],
) -> dict[str, str]:
    return {"invoice_number": await store.next_invoice_number()}


@router.get("/health")
async def health(
    manager: Annotated[InvoicingManager, Depends(get_invoicing_manager)],
) -> dict[str, Any]:
    return await manager.health_check()


async def invoicing_error_handler(request: Request, exc: InvoicingError) -> JSONResponse:
    """Render an :class:`InvoicingError` as ``{"success": false, "error": ...}``."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_type, code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            status_code = code
            break
    logger.error(
        "Invoicing error %s %s [%d]: %s",
        request.method, request.url.path, status_code, exc.message,
    )
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": exc.message},
    )


def create_app(config: InvoicingConfig | None = None, **overrides: Any) -> FastAPI:
    """Build the FastAPI application.

    Keyword *overrides* (``store``, ``renderer``, ``rasterizer``,
    ``dispatcher``) are passed to :meth:`InvoicingManager.create_lifespan`.
    """
    config = config or InvoicingConfig()
    app = FastAPI(
        title="invoice-dispatch",
        lifespan=InvoicingManager.create_lifespan(config, **overrides),
    )
    app.include_router(router)
    app.add_exception_handler(InvoicingError, invoicing_error_handler)
    return app


__all__ = ["create_app", "invoicing_error_handler", "router"]
