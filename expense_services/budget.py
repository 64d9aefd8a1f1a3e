"""
expense_services.budget -- Monthly employee budgets and their alerts.

Responsibility:
    Stores an employee's monthly budget and alert threshold, and after each
    submission advances the alert latch computed by
    ``expense_engines.budget.evaluate_budget_alert``.

Architecture position:
    Services layer.  Reads month-to-date spend through ExpenseSelector,
    persists the latch on the user row, audits and notifies.

Invariants enforced:
    - Budgets never block a submission; they only alert.
    - Each alert fires at most once per calendar month.
    - Changing the budget resets the latch.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from expense_engines.budget import (
    BudgetAlertEvaluation,
    evaluate_budget_alert,
    month_bounds,
    period_key,
)
from expense_kernel.domain.approval import BudgetAlertState, Notification
from expense_kernel.domain.clock import Clock, SystemClock
from expense_kernel.exceptions import ExpenseValidationError, UserNotFoundError
from expense_kernel.logging_config import get_logger
from expense_kernel.models.audit_event import AuditAction
from expense_kernel.models.user import UserModel
from expense_kernel.selectors.expense_selector import ExpenseSelector
from expense_kernel.services.auditor_service import AuditorService
from expense_kernel.services.base import BaseService
from expense_services.notifications import budget_details, notify_safely

logger = get_logger("services.budget")

DEFAULT_ALERT_THRESHOLD = 80


class BudgetService(BaseService):
    """Budget administration and the post-submission budget check."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        notifier=None,
        auditor: AuditorService | None = None,
        default_threshold: int = DEFAULT_ALERT_THRESHOLD,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._notifier = notifier
        self._auditor = auditor or AuditorService(session, self._clock)
        self._default_threshold = default_threshold
        self._expenses = ExpenseSelector(session)

    def _get_user(self, user_id: UUID) -> UserModel:
        user = self.session.get(UserModel, user_id)
        if user is None:
            raise UserNotFoundError(str(user_id))
        return user

    def update_budget(
        self,
        user_id: UUID,
        actor_id: UUID,
        monthly_budget: Decimal | None,
        alert_threshold: int | None = None,
    ) -> UserModel:
        """
        Set (or clear, with None) the employee's monthly budget.

        Raises:
            UserNotFoundError: Unknown user.
            ExpenseValidationError: Negative budget or threshold outside 1-100.
        """
        if monthly_budget is not None and Decimal(monthly_budget) < 0:
            raise ExpenseValidationError("monthly_budget", "must not be negative")
        threshold = self._default_threshold if alert_threshold is None else alert_threshold
        if not 1 <= threshold <= 100:
            raise ExpenseValidationError("budget_alert_threshold", "must be between 1 and 100")

        user = self._get_user(user_id)
        user.monthly_budget = Decimal(monthly_budget) if monthly_budget is not None else None
        user.budget_alert_threshold = threshold
        user.budget_alert_state = BudgetAlertState.NONE.value
        user.budget_alert_period = None
        self.session.flush()

        self._auditor.record(
            "User", user_id, AuditAction.BUDGET_UPDATED, actor_id,
            {"monthly_budget": user.monthly_budget, "alert_threshold": threshold},
        )
        logger.info(
            "budget_updated",
            extra={
                "user_id": str(user_id),
                "monthly_budget": str(user.monthly_budget),
                "alert_threshold": threshold,
            },
        )
        return user

    def check_after_submission(
        self,
        employee_id: UUID,
        as_of: date | None = None,
    ) -> BudgetAlertEvaluation | None:
        """
        Advance the alert latch for the month containing ``as_of`` (today
        by default).  Returns None when the employee has no budget.
        """
        user = self._get_user(employee_id)
        if user.monthly_budget is None or user.monthly_budget <= 0:
            return None

        day = as_of or self._clock.today()
        start, end = month_bounds(day)
        spent = self._expenses.spend_between(employee_id, start, end)

        evaluation = evaluate_budget_alert(
            state=BudgetAlertState(user.budget_alert_state),
            state_period=user.budget_alert_period,
            period=period_key(day),
            spent=spent,
            budget=user.monthly_budget,
            threshold_pct=user.budget_alert_threshold,
        )

        if (
            evaluation.state.value != user.budget_alert_state
            or evaluation.period != user.budget_alert_period
        ):
            user.budget_alert_state = evaluation.state.value
            user.budget_alert_period = evaluation.period
            self.session.flush()

        if evaluation.alert is not None:
            details = budget_details(
                evaluation.period, spent, user.monthly_budget, evaluation.utilization,
            )
            self._auditor.record(
                "User", employee_id, AuditAction.BUDGET_ALERT_RAISED, employee_id,
                {"alert": evaluation.alert.value, **details},
            )
            logger.warning(
                "budget_alert_raised",
                extra={"user_id": str(employee_id), "alert": evaluation.alert.value, **details},
            )
            notify_safely(
                self._notifier,
                Notification(
                    kind=evaluation.alert,
                    recipient_id=employee_id,
                    actor_id=employee_id,
                    details=details,
                ),
            )
        return evaluation
