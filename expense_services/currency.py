"""
expense_services.currency -- Conversion into the company base currency.

Responsibility:
    Implements the ``CurrencyConverter`` protocol over a static rate table
    loaded from configuration.  Live rate feeds plug in behind the same
    protocol.

Invariants enforced:
    - Same-currency conversion is the identity with rate 1.
    - Converted amounts are rounded half-up to 2 places; the rate is kept
      unrounded on the expense.
    - A missing pair is an error, never a silent 1:1.
"""

from __future__ import annotations

from decimal import Decimal

from expense_kernel.db.types import round_money
from expense_kernel.exceptions import CurrencyConversionError
from expense_kernel.logging_config import get_logger

logger = get_logger("services.currency")

_ONE = Decimal(1)


class StaticRateConverter:
    """Converts with a fixed ``(from, to) -> rate`` table."""

    def __init__(self, rates: dict[tuple[str, str], Decimal] | None = None):
        self._rates = {
            (src.upper(), dst.upper()): Decimal(str(rate))
            for (src, dst), rate in (rates or {}).items()
        }

    @classmethod
    def from_config(cls, config) -> StaticRateConverter:
        return cls(config.rate_table())

    def rate(self, from_currency: str, to_currency: str) -> Decimal:
        src, dst = from_currency.upper(), to_currency.upper()
        if src == dst:
            return _ONE
        direct = self._rates.get((src, dst))
        if direct is not None:
            return direct
        inverse = self._rates.get((dst, src))
        if inverse is not None and inverse != 0:
            return _ONE / inverse
        logger.warning(
            "exchange_rate_missing",
            extra={"from_currency": src, "to_currency": dst},
        )
        raise CurrencyConversionError(src, dst)

    def convert(
        self,
        amount: Decimal,
        from_currency: str,
        to_currency: str,
    ) -> tuple[Decimal, Decimal]:
        """
        Returns:
            ``(converted_amount, exchange_rate)``

        Raises:
            CurrencyConversionError: No direct or inverse rate for the pair.
        """
        rate = self.rate(from_currency, to_currency)
        if rate == _ONE:
            return Decimal(amount), _ONE
        return round_money(Decimal(amount) * rate), rate
