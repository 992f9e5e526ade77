"""Utility functions and helpers."""

from invoice_dispatch.utils.currency import format_currency, to_money

__all__ = ["format_currency", "to_money"]
