"""
Module: expense_kernel.db.types
Responsibility: Annotated type aliases for monetary and identifier columns, so
    every model uses identical precision definitions.
Architecture position: Kernel > DB.  May be imported by models/ and services/.
    MUST NOT import from any of those layers.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated

from sqlalchemy import Numeric, String

# Monetary amount: 38 digits total, 9 decimal places
Money = Annotated[Decimal, Numeric(38, 9)]

# Exchange rate: 38 digits total, 18 decimal places
Rate = Annotated[Decimal, Numeric(38, 18)]

# ISO 4217 currency code
Currency = Annotated[str, String(3)]

# SHA-256 hash as hex string
PayloadHash = Annotated[str, String(64)]

MONEY_DECIMAL_PLACES = 2
RATE_DECIMAL_PLACES = 6


def round_money(amount: Decimal, places: int = MONEY_DECIMAL_PLACES) -> Decimal:
    """Round a monetary amount half-up to ``places`` decimals."""
    return amount.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)
