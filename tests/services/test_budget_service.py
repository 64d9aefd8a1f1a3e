"""
Tests for BudgetService: budget administration and the alert latch as
driven by real submissions.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from expense_kernel.domain.approval import BudgetAlertState, NotificationKind
from expense_kernel.exceptions import ExpenseValidationError, UserNotFoundError
from expense_kernel.models.audit_event import AuditAction
from expense_kernel.services.auditor_service import AuditorService
from expense_services.budget import BudgetService


@pytest.fixture
def budgets(session, deterministic_clock, notifier):
    return BudgetService(session, clock=deterministic_clock, notifier=notifier)


def alerts(notifier, user):
    return [
        n.kind for n in notifier.sent_to(user.id)
        if n.kind in (NotificationKind.BUDGET_WARNING, NotificationKind.BUDGET_EXCEEDED)
    ]


class TestUpdateBudget:

    def test_sets_budget_and_resets_latch(self, session, org, budgets):
        org.employee.budget_alert_state = BudgetAlertState.EXCEEDED.value
        org.employee.budget_alert_period = "2024-01"
        session.flush()

        user = budgets.update_budget(org.employee.id, org.admin.id, Decimal("500"), 90)

        assert user.monthly_budget == Decimal("500")
        assert user.budget_alert_threshold == 90
        assert user.budget_alert_state == BudgetAlertState.NONE.value
        assert user.budget_alert_period is None
        trace = AuditorService(session).get_trace("User", org.employee.id)
        assert trace.last_action == AuditAction.BUDGET_UPDATED

    def test_default_threshold_applied(self, org, budgets):
        user = budgets.update_budget(org.employee.id, org.admin.id, Decimal("500"))
        assert user.budget_alert_threshold == 80

    @pytest.mark.parametrize(
        "budget, threshold",
        [(Decimal("-1"), 80), (Decimal("100"), 0), (Decimal("100"), 101)],
    )
    def test_invalid_values_rejected(self, org, budgets, budget, threshold):
        with pytest.raises(ExpenseValidationError):
            budgets.update_budget(org.employee.id, org.admin.id, budget, threshold)

    def test_unknown_user(self, org, budgets):
        with pytest.raises(UserNotFoundError):
            budgets.update_budget(uuid4(), org.admin.id, Decimal("100"))


class TestCheckAfterSubmission:

    def test_no_budget_means_no_check(self, org, budgets):
        assert budgets.check_after_submission(org.employee.id) is None

    def test_warning_then_exceeded_each_once(self, session, org, submit, budgets, notifier):
        budgets.update_budget(org.employee.id, org.admin.id, Decimal("1000"), 80)

        submit("500.00")
        assert alerts(notifier, org.employee) == []

        submit("300.00")
        assert alerts(notifier, org.employee) == [NotificationKind.BUDGET_WARNING]

        submit("50.00")
        assert alerts(notifier, org.employee) == [NotificationKind.BUDGET_WARNING]

        submit("200.00")
        assert alerts(notifier, org.employee) == [
            NotificationKind.BUDGET_WARNING, NotificationKind.BUDGET_EXCEEDED,
        ]

        submit("10.00")
        assert len(alerts(notifier, org.employee)) == 2
        assert org.employee.budget_alert_state == BudgetAlertState.EXCEEDED.value
        assert org.employee.budget_alert_period == "2024-01"

        trace = AuditorService(session).get_trace("User", org.employee.id)
        assert trace.actions.count(AuditAction.BUDGET_ALERT_RAISED) == 2

    def test_cancelled_expenses_do_not_count(self, org, submit, workflow, budgets, notifier):
        budgets.update_budget(org.employee.id, org.admin.id, Decimal("100"), 80)
        big = submit("70.00")
        workflow.cancel_expense(big.expense_id, org.employee.id)
        submit("20.00")
        assert alerts(notifier, org.employee) == []

    def test_other_months_ignored(self, org, submit, budgets, notifier):
        budgets.update_budget(org.employee.id, org.admin.id, Decimal("100"), 80)
        submit("95.00", expense_date=date(2023, 12, 20))
        assert alerts(notifier, org.employee) == []

    def test_new_month_rearms_latch(self, org, submit, budgets, notifier):
        budgets.update_budget(org.employee.id, org.admin.id, Decimal("100"), 80)
        submit("85.00")
        assert alerts(notifier, org.employee) == [NotificationKind.BUDGET_WARNING]

        result = budgets.check_after_submission(org.employee.id, as_of=date(2024, 2, 3))
        assert result.alert is None
        assert result.state == BudgetAlertState.NONE
        assert org.employee.budget_alert_period == "2024-02"

    def test_alert_carries_budget_details(self, org, submit, budgets, notifier):
        budgets.update_budget(org.employee.id, org.admin.id, Decimal("200"), 50)
        submit("150.00")
        (warning,) = [n for n in notifier.sent_to(org.employee.id) if n.kind == NotificationKind.BUDGET_WARNING]
        assert warning.details["period"] == "2024-01"
        assert Decimal(warning.details["spent"]) == Decimal("150")
        assert Decimal(warning.details["budget"]) == Decimal("200")
        assert warning.details["utilization"] == "75.00"
