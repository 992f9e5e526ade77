"""Currency formatting tests."""
from __future__ import annotations

from decimal import Decimal

import pytest

from invoice_dispatch.utils.currency import format_currency, to_money


class TestFormatCurrency:

    @pytest.mark.parametrize(
        ("amount", "expected"),
        [
            (150, "$150.00"),
            (150.0, "$150.00"),
            (1234.5, "$1,234.50"),
            (0, "$0.00"),
            (None, "$0.00"),
            (-3.005, "-$3.01"),
            ("99.999", "$100.00"),
            (Decimal("1000000"), "$1,000,000.00"),
        ],
    )
    def test_formats(self, amount, expected) -> None:
        assert format_currency(amount) == expected


class TestToMoney:

    def test_rounds_half_up(self) -> None:
        assert to_money("2.345") == Decimal("2.35")

    def test_blank_is_zero(self) -> None:
        assert to_money("  ") == Decimal("0.00")

    @pytest.mark.parametrize("bad", ["abc", "nan", "inf"])
    def test_rejects_non_numeric(self, bad) -> None:
        with pytest.raises(ValueError):
            to_money(bad)
