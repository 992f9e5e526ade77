"""Invoice HTML rendering with a mustache template.

The template lives in the package (``invoice_dispatch/templates``); a
development checkout may point :attr:`InvoicingConfig.template_path` at a
working copy instead.  Rendering is plain mustache interpolation through
``chevron``: values are HTML-escaped and the only logic is iteration over
line items.
"""
from __future__ import annotations

import logging
from importlib import resources
from pathlib import Path
from typing import TYPE_CHECKING, Any

import chevron

from invoice_dispatch.core.exceptions import TemplateMissingError
from invoice_dispatch.utils.currency import format_currency

if TYPE_CHECKING:
    from collections.abc import Iterable

    from invoice_dispatch.core.types import CompanySettings, Customer, Invoice, LineItem

logger = logging.getLogger(__name__)

TEMPLATE_PACKAGE = "invoice_dispatch"
TEMPLATE_NAME = "templates/invoice.mustache"


def _format_quantity(quantity: float) -> str:
    return f"{quantity:.2f}".rstrip("0").rstrip(".")


def _logo_src(logo: str | None) -> str | None:
    if not logo:
        return None
    if logo.startswith("data:"):
        return logo
    return f"data:image/png;base64,{logo}"


def build_context(
    settings: CompanySettings,
    customer: Customer,
    invoice: Invoice,
    line_items: Iterable[LineItem],
) -> dict[str, Any]:
    """Assemble the mustache context for one invoice.

    Every line item keeps its raw values and gains ``unit_price_formatted``
    and ``line_total_formatted``; subtotal and total are provided both raw
    and formatted.
    """
    items = [
        {
            **item.model_dump(),
            "unit_price_formatted": format_currency(item.unit_price),
            "line_total_formatted": format_currency(item.line_total),
            "quantity_formatted": _format_quantity(item.quantity),
        }
        for item in line_items
    ]
    return {
        "company": {
            "name": settings.company_name,
            "address": settings.company_address,
            "email": settings.company_email,
            "phone": settings.company_phone,
            "logo": _logo_src(settings.logo_base64),
        },
        "customer": {
            "name": customer.name,
            "email": customer.email,
            "billing_address": customer.billing_address,
        },
        "invoice": {
            "number": invoice.invoice_number,
            "issue_date": invoice.issue_date.isoformat() if invoice.issue_date else "",
            "due_date": invoice.due_date.isoformat() if invoice.due_date else "",
            "payment_terms": invoice.payment_terms,
            "notes": invoice.notes,
        },
        "line_items": items,
        "subtotal": invoice.subtotal,
        "total": invoice.total,
        "subtotal_formatted": format_currency(invoice.subtotal),
        "total_formatted": format_currency(invoice.total),
    }


class DocumentRenderer:
    """Render invoice HTML from the mustache template.

    The template is located and read on first use, then cached for the
    lifetime of the renderer.

    Args:
        template_path: Development-layout template, tried before the
            packaged one.

    Example::

        renderer = DocumentRenderer()
        html = renderer.render(build_context(settings, customer, invoice, items))
    """

    def __init__(self, template_path: Path | str | None = None) -> None:
        self._template_path = Path(template_path) if template_path else None
        self._template: str | None = None

    def candidate_paths(self) -> list[str]:
        """Return the locations searched for the template, in order."""
        candidates = []
        if self._template_path is not None:
            candidates.append(str(self._template_path))
        candidates.append(f"{TEMPLATE_PACKAGE}/{TEMPLATE_NAME}")
        return candidates

    def load_template(self) -> str:
        """Return the template source, reading it on first call.

        Raises:
            TemplateMissingError: If no candidate location holds the template
        """
        if self._template is not None:
            return self._template

        if self._template_path is not None and self._template_path.is_file():
            self._template = self._template_path.read_text(encoding="utf-8")
            logger.info("Loaded invoice template path=%s", self._template_path)
            return self._template

        packaged = resources.files(TEMPLATE_PACKAGE).joinpath(TEMPLATE_NAME)
        if packaged.is_file():
            self._template = packaged.read_text(encoding="utf-8")
            logger.info("Loaded packaged invoice template")
            return self._template

        searched = self.candidate_paths()
        logger.error("Invoice template not found searched=%s", searched)
        raise TemplateMissingError(searched)

    def render(self, context: dict[str, Any]) -> str:
        """Render *context* into an HTML string."""
        html = chevron.render(self.load_template(), context)
        logger.debug("Rendered invoice template html_length=%d", len(html))
        return html

    def render_invoice(
        self,
        settings: CompanySettings,
        customer: Customer,
        invoice: Invoice,
        line_items: Iterable[LineItem],
    ) -> str:
        """Build the context for one invoice and render it."""
        return self.render(build_context(settings, customer, invoice, line_items))


__all__ = ["DocumentRenderer", "build_context"]
