"""Unit tests for the ISO 4217 currency registry."""

from decimal import Decimal

import pytest

from ledger_kernel.domain.currency import CurrencyRegistry
from ledger_kernel.exceptions import InvalidCurrencyError


class TestCurrencyRegistry:
    """Tests for CurrencyRegistry."""

    @pytest.mark.parametrize("code", ["EUR", "USD", "GBP", "SEK"])
    def test_two_decimal_currencies(self, code):
        assert CurrencyRegistry.get_decimal_places(code) == 2

    @pytest.mark.parametrize("code,places", [("JPY", 0), ("KRW", 0), ("KWD", 3), ("BHD", 3), ("CLF", 4)])
    def test_other_minor_units(self, code, places):
        assert CurrencyRegistry.get_decimal_places(code) == places

    def test_validate_normalizes(self):
        assert CurrencyRegistry.validate(" eur ") == "EUR"

    @pytest.mark.parametrize("code", ["", "EU", "EURO", "ABC", None])
    def test_invalid_codes(self, code):
        assert not CurrencyRegistry.is_valid(code)
        with pytest.raises(InvalidCurrencyError):
            CurrencyRegistry.validate(code)

    def test_unknown_code_has_no_places(self):
        with pytest.raises(InvalidCurrencyError) as exc_info:
            CurrencyRegistry.get_decimal_places("XYZ")
        assert exc_info.value.code == "INVALID_CURRENCY"

    def test_minor_unit(self):
        assert CurrencyRegistry.get_info("EUR").minor_unit == Decimal("0.01")
        assert CurrencyRegistry.get_info("JPY").minor_unit == Decimal("1")

    def test_all_codes_contains_majors(self):
        assert {"EUR", "USD", "JPY"} <= CurrencyRegistry.all_codes()
