"""
Expense submission input (``expense_kernel.domain.submission``).

Validation runs before any sequence or decision logic.  Limits mirror
the request validator of the submission endpoint.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from uuid import UUID

from expense_kernel.exceptions import ExpenseValidationError

CURRENCY_CODE = re.compile(r"^[A-Z]{3}$")
CATEGORY_MIN, CATEGORY_MAX = 2, 100
DESCRIPTION_MIN, DESCRIPTION_MAX = 5, 500
COMMENTS_MAX = 500
# Stored as NUMERIC(38, 9)
AMOUNT_MAX_PLACES = 9
AMOUNT_MAX_INTEGER_DIGITS = 29


@dataclass(frozen=True)
class ExpenseSubmission:
    """Inbound expense claim."""

    employee_id: UUID
    company_id: UUID
    amount: Decimal
    currency: str
    category: str
    expense_date: date
    description: str
    receipt_url: str | None = None

    def validate(self, today: date) -> None:
        """Raise ExpenseValidationError on the first malformed field."""
        try:
            amount = Decimal(str(self.amount))
        except (InvalidOperation, TypeError, ValueError):
            raise ExpenseValidationError("amount", f"not a number: {self.amount!r}")
        if not amount.is_finite() or amount <= 0:
            raise ExpenseValidationError("amount", "must be positive")
        if amount.normalize().as_tuple().exponent < -AMOUNT_MAX_PLACES:
            raise ExpenseValidationError(
                "amount", f"at most {AMOUNT_MAX_PLACES} decimal places",
            )
        if amount.adjusted() >= AMOUNT_MAX_INTEGER_DIGITS:
            raise ExpenseValidationError("amount", "too large")

        if not isinstance(self.currency, str) or not CURRENCY_CODE.match(self.currency):
            raise ExpenseValidationError(
                "currency", "must be a 3-letter upper-case code",
            )

        category = (self.category or "").strip()
        if not CATEGORY_MIN <= len(category) <= CATEGORY_MAX:
            raise ExpenseValidationError(
                "category", f"length must be {CATEGORY_MIN}-{CATEGORY_MAX}",
            )

        description = (self.description or "").strip()
        if not DESCRIPTION_MIN <= len(description) <= DESCRIPTION_MAX:
            raise ExpenseValidationError(
                "description", f"length must be {DESCRIPTION_MIN}-{DESCRIPTION_MAX}",
            )

        if not isinstance(self.expense_date, date):
            raise ExpenseValidationError("expense_date", "required")
        if self.expense_date > today:
            raise ExpenseValidationError("expense_date", "cannot be in the future")


def validate_comments(comments: str | None) -> None:
    """Decision and override comments are optional but bounded."""
    if comments is not None and len(comments) > COMMENTS_MAX:
        raise ExpenseValidationError(
            "comments", f"at most {COMMENTS_MAX} characters",
        )
