"""
Tests for the pure monthly budget alert latch.
"""

from datetime import date
from decimal import Decimal

import pytest

from expense_engines.budget import evaluate_budget_alert, month_bounds, period_key
from expense_kernel.domain.approval import BudgetAlertState, NotificationKind

NONE = BudgetAlertState.NONE
WARNED = BudgetAlertState.WARNED
EXCEEDED = BudgetAlertState.EXCEEDED


def evaluate(spent, state=NONE, state_period="2024-01", period="2024-01", budget="1000", threshold=80):
    return evaluate_budget_alert(
        state=state,
        state_period=state_period,
        period=period,
        spent=Decimal(spent),
        budget=Decimal(budget) if budget is not None else None,
        threshold_pct=threshold,
    )


class TestPeriods:

    def test_period_key(self):
        assert period_key(date(2024, 3, 9)) == "2024-03"

    @pytest.mark.parametrize(
        "day, expected",
        [
            (date(2024, 1, 15), (date(2024, 1, 1), date(2024, 2, 1))),
            (date(2024, 12, 31), (date(2024, 12, 1), date(2025, 1, 1))),
            (date(2024, 2, 29), (date(2024, 2, 1), date(2024, 3, 1))),
        ],
    )
    def test_month_bounds(self, day, expected):
        assert month_bounds(day) == expected


class TestBudgetAlertLatch:

    def test_below_threshold_no_alert(self):
        result = evaluate("799.99")
        assert result.alert is None
        assert result.state == NONE

    def test_threshold_is_inclusive(self):
        result = evaluate("800")
        assert result.alert == NotificationKind.BUDGET_WARNING
        assert result.state == WARNED
        assert result.utilization == Decimal(80)

    def test_warning_fires_once(self):
        result = evaluate("900", state=WARNED)
        assert result.alert is None
        assert result.state == WARNED

    def test_exceeded_from_none_skips_warning(self):
        result = evaluate("1000")
        assert result.alert == NotificationKind.BUDGET_EXCEEDED
        assert result.state == EXCEEDED

    def test_exceeded_after_warning(self):
        result = evaluate("1200", state=WARNED)
        assert result.alert == NotificationKind.BUDGET_EXCEEDED

    def test_exceeded_fires_once(self):
        result = evaluate("1500", state=EXCEEDED)
        assert result.alert is None
        assert result.state == EXCEEDED

    def test_new_month_resets_latch(self):
        result = evaluate("850", state=EXCEEDED, state_period="2023-12", period="2024-01")
        assert result.alert == NotificationKind.BUDGET_WARNING
        assert result.period == "2024-01"

    def test_state_never_moves_backwards_in_period(self):
        result = evaluate("10", state=EXCEEDED)
        assert result.state == EXCEEDED

    @pytest.mark.parametrize("budget", [None, "0", "-5"])
    def test_no_budget_no_alert(self, budget):
        result = evaluate("5000", budget=budget)
        assert result.alert is None
        assert result.utilization == Decimal(0)
