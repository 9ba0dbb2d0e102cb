"""
Currency Presentation
=====================

Prices are stored in the base currency. On reads they can be shown in
another currency by applying a fixed multiplier.

Unknown or missing currency codes leave the price unchanged.

The base currency is read from SHOP_BASE_CURRENCY when the app is built
(see get_base_currency) and held by one CurrencyConverter per app.
"""

import os
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from shop import schemas

DEFAULT_BASE_CURRENCY = "USD"

# Units of each currency per one unit of USD
_USD_RATES = {
    "USD": Decimal("1"),
    "EUR": Decimal("0.92"),
    "GBP": Decimal("0.79"),
    "BGN": Decimal("1.80"),
}

CENTS = Decimal("0.01")


def get_base_currency() -> str:
    return os.getenv("SHOP_BASE_CURRENCY", DEFAULT_BASE_CURRENCY).strip().upper()


def rates_for(base: str) -> dict:
    """Multipliers from ``base`` to every known currency."""
    if base not in _USD_RATES:
        return {base: Decimal("1")}
    base_rate = _USD_RATES[base]
    return {code: rate / base_rate for code, rate in _USD_RATES.items()}


class CurrencyConverter:
    """Converts base-currency prices for display."""

    def __init__(self, base_currency: str = DEFAULT_BASE_CURRENCY):
        self.base_currency = base_currency.upper()
        self.rates = rates_for(self.base_currency)

    def convert_price(self, price, currency: Optional[str] = None) -> Decimal:
        """
        Convert a base-currency price into ``currency`` for display.

        Examples (base USD):
            convert_price(Decimal("10.00"), "EUR")  -> Decimal("9.20")
            convert_price(Decimal("10.00"), "xyz")  -> Decimal("10.00")
            convert_price(Decimal("10.00"))         -> Decimal("10.00")
        """
        amount = Decimal(str(price)) if not isinstance(price, Decimal) else price
        if not currency:
            return amount

        rate = self.rates.get(currency.strip().upper())
        if rate is None:
            return amount

        return (amount * rate).quantize(CENTS, rounding=ROUND_HALF_UP)

    # ========================================================================
    # READ-SIDE PRESENTATION
    # ========================================================================

    def present_product(self, product, currency: Optional[str] = None):
        """Product row -> schemas.Product with its price in ``currency``."""
        shown = schemas.Product.model_validate(product)
        return shown.model_copy(update={"price": self.convert_price(shown.price, currency)})

    def present_order(self, order, currency: Optional[str] = None):
        """Resolved order -> copy with order and line prices in ``currency``."""
        lines = [
            line.model_copy(update={"price": self.convert_price(line.price, currency)})
            for line in order.products
        ]
        return order.model_copy(
            update={"price": self.convert_price(order.price, currency), "products": lines}
        )
