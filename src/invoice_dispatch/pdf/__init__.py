"""Headless-browser PDF generation."""

from invoice_dispatch.pdf.rasterizer import PdfRasterizer, RasterizationJob

__all__ = ["PdfRasterizer", "RasterizationJob"]
