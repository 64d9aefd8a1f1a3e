"""Read-only query selectors."""

from expense_kernel.selectors.base import BaseSelector
from expense_kernel.selectors.expense_selector import (
    ExpenseSelector,
    ExpenseSummary,
    StatusTotals,
)

__all__ = ["BaseSelector", "ExpenseSelector", "ExpenseSummary", "StatusTotals"]
