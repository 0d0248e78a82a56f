"""
Money and currency utilities using py-moneyed and Babel.

The processor speaks in integer minor units (cents); everything shown to a
person goes through ``format_minor_units`` so totals read like ``$10.00``.
"""

from decimal import Decimal
from typing import Any

from babel import Locale
from babel.core import UnknownLocaleError
from babel.numbers import format_currency, get_currency_precision
from moneyed import Currency, Money, get_currency
from moneyed.classes import CurrencyDoesNotExist

DEFAULT_LOCALE = "en_US"


class MoneyHandler:
    """Central handler for money operations with proper error handling."""

    def __init__(self, default_currency: str = "USD", default_locale: str = DEFAULT_LOCALE) -> None:
        self.default_currency = self._validate_currency(default_currency)
        self.default_locale = self._validate_locale(default_locale)

    def _validate_currency(self, currency_code: str) -> Currency:
        try:
            return get_currency(currency_code.upper())
        except CurrencyDoesNotExist:
            raise ValueError(f"Invalid currency code: {currency_code}")

    def _validate_locale(self, locale_code: str) -> str:
        try:
            Locale.parse(locale_code)
            return locale_code
        except (UnknownLocaleError, ValueError):
            return DEFAULT_LOCALE

    def create_money(
        self, amount: int | float | Decimal | str, currency: str | None = None
    ) -> Money:
        """Create Money object with proper validation."""
        validated_currency = self._validate_currency(currency or self.default_currency.code)
        return Money(amount=Decimal(str(amount)), currency=validated_currency)

    def from_minor_units(self, minor_units: int, currency: str | None = None) -> Money:
        """Create Money from minor units (e.g., cents)."""
        validated_currency = self._validate_currency(currency or self.default_currency.code)
        precision = get_currency_precision(validated_currency.code)
        amount = Decimal(minor_units) / Decimal(10**precision)
        return Money(amount=amount, currency=validated_currency)

    def to_minor_units(self, money: Money) -> int:
        """Convert Money to minor units."""
        precision = get_currency_precision(money.currency.code)
        return int(money.amount * 10**precision)

    def format_money(self, money: Money, locale: str | None = None, **kwargs: Any) -> str:
        """Format Money object with locale-aware formatting."""
        validated_locale = self._validate_locale(locale or self.default_locale)
        try:
            return format_currency(
                number=money.amount, currency=money.currency.code, locale=validated_locale, **kwargs
            )
        except (TypeError, ValueError):
            return f"{money.currency.code} {money.amount}"

    def format_minor_units(
        self, minor_units: int, currency: str | None = None, locale: str | None = None
    ) -> str:
        """Format a signed minor-unit amount, e.g. ``1000, "USD"`` -> ``$10.00``."""
        return self.format_money(self.from_minor_units(minor_units, currency), locale)


_handler: MoneyHandler | None = None


def get_money_handler() -> MoneyHandler:
    """Handler configured from billing settings."""
    global _handler
    if _handler is None:
        from dotmac.cashier.settings import get_settings

        billing = get_settings().billing
        _handler = MoneyHandler(default_currency=billing.currency, default_locale=billing.locale)
    return _handler


def format_minor_units(minor_units: int, currency: str | None = None, locale: str | None = None) -> str:
    """Format minor units with the default handler."""
    return get_money_handler().format_minor_units(minor_units, currency, locale)


__all__ = [
    "MoneyHandler",
    "get_money_handler",
    "format_minor_units",
]
