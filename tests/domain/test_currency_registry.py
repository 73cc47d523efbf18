"""CurrencyRegistry: validation, rounding and minor units."""

from decimal import Decimal

import pytest

from mentorship_kernel.domain.currency import CurrencyRegistry


class TestCurrencyRegistry:
    def test_validate_normalizes_case(self):
        assert CurrencyRegistry.validate("kes") == "KES"

    @pytest.mark.parametrize("code", ["", "XXX", "KESX"])
    def test_validate_rejects(self, code):
        with pytest.raises(ValueError):
            CurrencyRegistry.validate(code)

    def test_quantize_half_up(self):
        assert CurrencyRegistry.quantize(Decimal("10.005"), "KES") == Decimal("10.01")

    def test_zero_decimal_currency(self):
        assert CurrencyRegistry.quantize(Decimal("1500.4"), "UGX") == Decimal("1500")
        assert CurrencyRegistry.to_minor_units(Decimal("1500"), "UGX") == 1500

    def test_to_minor_units(self):
        assert CurrencyRegistry.to_minor_units(Decimal("1000.00"), "NGN") == 100000
        assert CurrencyRegistry.to_minor_units(Decimal("0.015"), "USD") == 2

    def test_is_valid(self):
        assert CurrencyRegistry.is_valid("ghs")
        assert not CurrencyRegistry.is_valid("")
        assert "ZAR" in CurrencyRegistry.all_codes()
