"""Currency formatting matching ``Intl.NumberFormat("en-US", {currency: "USD"})``."""
from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

_CENT = Decimal("0.01")


def to_money(amount: float | int | str | Decimal | None) -> Decimal:
    """Coerce *amount* to a two-decimal :class:`~decimal.Decimal`.

    ``None`` and empty strings count as zero.  Rounding is half away from
    zero, which is what en-US number formatting does.

    Raises:
        ValueError: If *amount* is not numeric
    """
    if amount is None or (isinstance(amount, str) and not amount.strip()):
        return Decimal("0.00")
    try:
        value = Decimal(str(amount).strip())
    except InvalidOperation as exc:
        raise ValueError(f"Not a monetary amount: {amount!r}") from exc
    if not value.is_finite():
        raise ValueError(f"Not a monetary amount: {amount!r}")
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def format_currency(amount: float | int | str | Decimal | None) -> str:
    """Format *amount* as US dollars.

    Examples
    --------
    >>> format_currency(150)
    '$150.00'
    >>> format_currency(1234.5)
    '$1,234.50'
    >>> format_currency(-3.005)
    '-$3.01'
    """
    value = to_money(amount)
    sign = "-" if value < 0 else ""
    return f"{sign}${abs(value):,.2f}"


__all__ = ["format_currency", "to_money"]
