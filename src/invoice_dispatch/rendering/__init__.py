"""Invoice document rendering."""

from invoice_dispatch.rendering.renderer import DocumentRenderer, build_context

__all__ = ["DocumentRenderer", "build_context"]
