"""Currency -- ISO 4217 codes accepted for escrow and their minor units."""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import ClassVar


@dataclass(frozen=True)
class CurrencyInfo:
    """Information about a single ISO 4217 currency."""

    code: str
    decimal_places: int
    name: str

    @property
    def quantize_string(self) -> str:
        """String for Decimal.quantize() to round to this currency's precision."""
        if self.decimal_places == 0:
            return "1"
        return "0." + "0" * self.decimal_places


class CurrencyRegistry:
    """Currencies the escrow ledger and payment gateway settle in."""

    _CURRENCIES: ClassVar[dict[str, CurrencyInfo]] = {
        "KES": CurrencyInfo("KES", 2, "Kenyan Shilling"),
        "NGN": CurrencyInfo("NGN", 2, "Nigerian Naira"),
        "GHS": CurrencyInfo("GHS", 2, "Ghanaian Cedi"),
        "ZAR": CurrencyInfo("ZAR", 2, "South African Rand"),
        "UGX": CurrencyInfo("UGX", 0, "Ugandan Shilling"),
        "RWF": CurrencyInfo("RWF", 0, "Rwandan Franc"),
        "USD": CurrencyInfo("USD", 2, "US Dollar"),
        "EUR": CurrencyInfo("EUR", 2, "Euro"),
        "GBP": CurrencyInfo("GBP", 2, "Pound Sterling"),
    }

    @classmethod
    def is_valid(cls, code: str) -> bool:
        return code.upper() in cls._CURRENCIES if code else False

    @classmethod
    def get_info(cls, code: str) -> CurrencyInfo | None:
        return cls._CURRENCIES.get(code.upper()) if code else None

    @classmethod
    def validate(cls, code: str) -> str:
        """
        Validate and normalize a currency code.

        Raises:
            ValueError: If the currency is not supported.
        """
        if not code:
            raise ValueError("Currency code cannot be empty")
        normalized = code.upper().strip()
        if normalized not in cls._CURRENCIES:
            raise ValueError(f"Unsupported currency code: {code}")
        return normalized

    @classmethod
    def quantize(cls, amount: Decimal, code: str) -> Decimal:
        info = cls._CURRENCIES[cls.validate(code)]
        return amount.quantize(Decimal(info.quantize_string), rounding=ROUND_HALF_UP)

    @classmethod
    def to_minor_units(cls, amount: Decimal, code: str) -> int:
        """Convert a major-unit amount to the integer minor units gateways expect (kobo, cents)."""
        info = cls._CURRENCIES[cls.validate(code)]
        return int(cls.quantize(amount, code) * (Decimal(10) ** info.decimal_places))

    @classmethod
    def all_codes(cls) -> frozenset[str]:
        return frozenset(cls._CURRENCIES.keys())
