"""
expense_engines.budget -- Pure monthly budget alert state machine.

Responsibility:
    Decide whether a submission pushes an employee across their budget
    alert threshold or their full budget, and which alert (if any) to emit.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - The alert latch moves only none -> warned -> exceeded within one
      period.  A new period starts from none.
    - Each alert fires at most once per period.
    - Utilization is computed with Decimal math; comparisons are inclusive.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from expense_engines.tracer import traced_engine
from expense_kernel.domain.approval import BudgetAlertState, NotificationKind

_HUNDRED = Decimal(100)


@dataclass(frozen=True)
class BudgetAlertEvaluation:
    """New latch state and the alert to emit, if any."""

    state: BudgetAlertState
    period: str
    utilization: Decimal
    alert: NotificationKind | None = None


def period_key(day: date) -> str:
    """Calendar month of ``day`` as ``YYYY-MM``."""
    return f"{day.year:04d}-{day.month:02d}"


def month_bounds(day: date) -> tuple[date, date]:
    """``[first day of month, first day of next month)``."""
    start = day.replace(day=1)
    if start.month == 12:
        return start, start.replace(year=start.year + 1, month=1)
    return start, start.replace(month=start.month + 1)


@traced_engine(
    "budget", "1.0",
    fingerprint_fields=("state", "state_period", "period", "spent", "budget", "threshold_pct"),
)
def evaluate_budget_alert(
    *,
    state: BudgetAlertState,
    state_period: str | None,
    period: str,
    spent: Decimal,
    budget: Decimal | None,
    threshold_pct: int,
) -> BudgetAlertEvaluation:
    """Advance the alert latch for the employee's month-to-date ``spent``."""
    if state_period != period:
        state = BudgetAlertState.NONE

    if budget is None or budget <= 0:
        return BudgetAlertEvaluation(state=state, period=period, utilization=Decimal(0))

    utilization = spent * _HUNDRED / budget

    if utilization >= _HUNDRED and state != BudgetAlertState.EXCEEDED:
        return BudgetAlertEvaluation(
            state=BudgetAlertState.EXCEEDED,
            period=period,
            utilization=utilization,
            alert=NotificationKind.BUDGET_EXCEEDED,
        )
    if utilization >= Decimal(threshold_pct) and state == BudgetAlertState.NONE:
        return BudgetAlertEvaluation(
            state=BudgetAlertState.WARNED,
            period=period,
            utilization=utilization,
            alert=NotificationKind.BUDGET_WARNING,
        )
    return BudgetAlertEvaluation(state=state, period=period, utilization=utilization)
