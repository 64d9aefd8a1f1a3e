"""
Module: expense_kernel.selectors.expense_selector
Responsibility: Read-only queries over expenses: single lookups, approver
    inboxes, approval history, employee listings, company summaries and
    month-to-date spend for budget checks.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Read-only: no mutations performed on any queried data.
    - Lists are ordered deterministically (submitted_at, then id).

Failure modes:
    - ExpenseNotFoundError from ``get``/``history`` when the expense does not
      exist or belongs to another company.  ``find`` returns None instead.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import and_, false, func, or_, select

from expense_kernel.domain.approval import (
    ApprovalHistory,
    ExpenseSnapshot,
    ExpenseStatus,
    StepStatus,
    UserRole,
)
from expense_kernel.exceptions import ExpenseNotFoundError, UserNotFoundError
from expense_kernel.models.expense import ApprovalStepModel, ExpenseModel
from expense_kernel.models.user import UserModel
from expense_kernel.selectors.base import BaseSelector
from expense_kernel.services.user_directory import SqlUserDirectory

DEFAULT_POOL_ROLES = (UserRole.MANAGER, UserRole.ADMIN)


@dataclass(frozen=True)
class StatusTotals:
    """Count and company-currency total for one status."""

    count: int = 0
    total: Decimal = Decimal("0")


@dataclass(frozen=True)
class ExpenseSummary:
    """Per-status counts and totals for a company."""

    company_id: UUID
    by_status: dict[ExpenseStatus, StatusTotals] = field(default_factory=dict)

    def count(self, status: ExpenseStatus) -> int:
        return self.by_status.get(status, StatusTotals()).count

    def total(self, status: ExpenseStatus) -> Decimal:
        return self.by_status.get(status, StatusTotals()).total

    @property
    def total_count(self) -> int:
        return sum(t.count for t in self.by_status.values())


class ExpenseSelector(BaseSelector):
    """Read side of the expense aggregate."""

    def find(self, expense_id: UUID, company_id: UUID | None = None) -> ExpenseSnapshot | None:
        model = self.session.get(ExpenseModel, expense_id)
        if model is None or (company_id is not None and model.company_id != company_id):
            return None
        return model.to_dto()

    def get(self, expense_id: UUID, company_id: UUID | None = None) -> ExpenseSnapshot:
        expense = self.find(expense_id, company_id)
        if expense is None:
            raise ExpenseNotFoundError(str(expense_id))
        return expense

    def _actionable_by(
        self,
        user: UserModel | None,
        approver_id: UUID,
        pool_roles: tuple[UserRole, ...],
        approver_only: bool,
    ):
        """
        Where-clause for pending expenses ``approver_id`` may decide now:
        those assigned to them, plus, for members of the eligible pool, the
        company's expenses waiting on a dynamic step.  A pending expense
        with no current approver and a pending step is waiting on a dynamic
        step.  Claimants never see their own expenses.
        """
        assigned = ExpenseModel.current_approver_id == approver_id
        in_pool = (
            user is not None
            and user.id in SqlUserDirectory(self.session).eligible_pool(
                user.company_id, pool_roles, approver_only=approver_only,
            )
        )
        dynamic = false()
        if in_pool:
            dynamic = and_(
                ExpenseModel.company_id == user.company_id,
                ExpenseModel.current_approver_id.is_(None),
                ExpenseModel.employee_id != approver_id,
                ExpenseModel.steps.any(ApprovalStepModel.status == StepStatus.PENDING.value),
            )
        return and_(
            ExpenseModel.status == ExpenseStatus.PENDING.value,
            or_(assigned, dynamic),
        )

    def pending_for_approver(
        self,
        approver_id: UUID,
        pool_roles: tuple[UserRole, ...] = DEFAULT_POOL_ROLES,
        approver_only: bool = True,
    ) -> list[ExpenseSnapshot]:
        """
        Pending expenses ``approver_id`` may decide now, oldest first.

        ``pool_roles`` and ``approver_only`` must match the workflow's
        dynamic-pool settings.
        """
        user = self.session.get(UserModel, approver_id)
        stmt = (
            select(ExpenseModel)
            .where(self._actionable_by(user, approver_id, pool_roles, approver_only))
            .order_by(ExpenseModel.submitted_at, ExpenseModel.id)
        )
        return [m.to_dto() for m in self.session.execute(stmt).scalars()]

    def pending_count(
        self,
        user_id: UUID,
        pool_roles: tuple[UserRole, ...] = DEFAULT_POOL_ROLES,
        approver_only: bool = True,
    ) -> int:
        """
        Inbox size.  Admins see every pending expense of their company,
        everyone else those they may decide now.
        """
        user = self.session.get(UserModel, user_id)
        if user is None:
            raise UserNotFoundError(str(user_id))

        stmt = select(func.count(ExpenseModel.id))
        if user.role == UserRole.ADMIN.value:
            stmt = stmt.where(
                ExpenseModel.status == ExpenseStatus.PENDING.value,
                ExpenseModel.company_id == user.company_id,
            )
        else:
            stmt = stmt.where(self._actionable_by(user, user_id, pool_roles, approver_only))
        return self.session.execute(stmt).scalar_one()

    def history(self, expense_id: UUID, company_id: UUID | None = None) -> ApprovalHistory:
        expense = self.get(expense_id, company_id)
        return ApprovalHistory(
            expense_id=expense.expense_id,
            status=expense.status,
            steps=expense.approval_sequence,
            final_approval=expense.final_approval,
        )

    def list_for_employee(
        self,
        employee_id: UUID,
        status: ExpenseStatus | None = None,
    ) -> list[ExpenseSnapshot]:
        """An employee's own expenses, newest first."""
        stmt = select(ExpenseModel).where(ExpenseModel.employee_id == employee_id)
        if status is not None:
            stmt = stmt.where(ExpenseModel.status == status.value)
        stmt = stmt.order_by(ExpenseModel.submitted_at.desc(), ExpenseModel.id)
        return [m.to_dto() for m in self.session.execute(stmt).scalars()]

    def summary(self, company_id: UUID) -> ExpenseSummary:
        stmt = (
            select(
                ExpenseModel.status,
                func.count(ExpenseModel.id),
                func.sum(ExpenseModel.amount_in_company_currency),
            )
            .where(ExpenseModel.company_id == company_id)
            .group_by(ExpenseModel.status)
        )
        by_status = {}
        for status, count, total in self.session.execute(stmt):
            by_status[ExpenseStatus(status)] = StatusTotals(
                count=count,
                total=Decimal(str(total)) if total is not None else Decimal("0"),
            )
        return ExpenseSummary(company_id=company_id, by_status=by_status)

    def spend_between(self, employee_id: UUID, start: date, end: date) -> Decimal:
        """Company-currency spend of non-cancelled expenses dated in ``[start, end)``."""
        stmt = select(func.sum(ExpenseModel.amount_in_company_currency)).where(
            ExpenseModel.employee_id == employee_id,
            ExpenseModel.status != ExpenseStatus.CANCELLED.value,
            ExpenseModel.expense_date >= start,
            ExpenseModel.expense_date < end,
        )
        total = self.session.execute(stmt).scalar_one_or_none()
        return Decimal(str(total)) if total is not None else Decimal("0")
