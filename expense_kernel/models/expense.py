"""
Module: expense_kernel.models.expense
Responsibility: ORM persistence for the expense aggregate and its embedded
    approval steps.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Step order is stable: UNIQUE(expense_id, sequence); steps are created
      once at submission and never re-numbered.
    - Lifecycle: DB check constraints limit status values; immutability
      listeners (db/immutability.py) block changes to terminal expenses and
      decided steps.
    - Concurrency: ``version`` is advanced by a compare-and-swap UPDATE before
      every mutation (see ExpenseWorkflowService).

Failure modes:
    - IntegrityError on duplicate step sequence.
    - ImmutabilityViolationError when a terminal expense or a decided step is
      modified through the ORM.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from expense_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from expense_kernel.domain.approval import ApprovalStep, ExpenseSnapshot


class ExpenseModel(Base):
    """
    Persistent expense claim.

    Contract:
        Final-approval columns are written exactly once, together with the
        transition to approved or rejected.

    Guarantees:
        - ``steps`` is always loaded ordered by ``sequence``.
        - ``to_dto()`` yields the ``ExpenseSnapshot`` the engine consumes.
    """

    __tablename__ = "expenses"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'cancelled')",
            name="ck_expenses_valid_status",
        ),
        CheckConstraint("amount > 0", name="ck_expenses_positive_amount"),
        CheckConstraint("version >= 1", name="ck_expenses_version_positive"),
        Index("idx_expenses_company_status", "company_id", "status"),
        Index("idx_expenses_employee_date", "employee_id", "expense_date"),
        Index("idx_expenses_current_approver", "current_approver_id", "status"),
    )

    company_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("companies.id"), nullable=False,
    )
    employee_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("users.id"), nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    amount_in_company_currency: Mapped[Decimal] = mapped_column(nullable=False)
    exchange_rate: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("1"))
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    expense_date: Mapped[date] = mapped_column(nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    receipt_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    current_approver_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("users.id"), nullable=True,
    )
    matched_rule_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("approval_rules.id"), nullable=True,
    )
    submitted_at: Mapped[datetime] = mapped_column(nullable=False)

    # Final approval, written once with the terminal transition
    final_decision: Mapped[str | None] = mapped_column(String(20), nullable=True)
    final_decided_by_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("users.id"), nullable=True,
    )
    final_decided_at: Mapped[datetime | None] = mapped_column(nullable=True)
    final_comments: Mapped[str | None] = mapped_column(Text, nullable=True)

    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Advanced only by the compare-and-swap in ExpenseWorkflowService
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    steps: Mapped[list["ApprovalStepModel"]] = relationship(
        "ApprovalStepModel",
        back_populates="expense",
        order_by="ApprovalStepModel.sequence",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<Expense {self.id} {self.amount} {self.currency} "
            f"status={self.status} v{self.version}>"
        )

    def to_dto(self) -> ExpenseSnapshot:
        """Convert ORM model to frozen domain DTO."""
        from expense_kernel.domain.approval import (
            ExpenseSnapshot,
            ExpenseStatus,
            FinalApproval,
        )

        final = None
        if self.final_decision is not None:
            final = FinalApproval(
                decision=ExpenseStatus(self.final_decision),
                decided_by_id=self.final_decided_by_id,
                decided_at=self.final_decided_at,
                final_comments=self.final_comments,
            )

        return ExpenseSnapshot(
            expense_id=self.id,
            company_id=self.company_id,
            employee_id=self.employee_id,
            amount=self.amount,
            currency=self.currency,
            amount_in_company_currency=self.amount_in_company_currency,
            exchange_rate=self.exchange_rate,
            category=self.category,
            expense_date=self.expense_date,
            description=self.description,
            status=ExpenseStatus(self.status),
            approval_sequence=tuple(s.to_dto() for s in self.steps),
            current_approver_id=self.current_approver_id,
            final_approval=final,
            receipt_url=self.receipt_url,
            version=self.version,
            submitted_at=self.submitted_at,
            matched_rule_id=self.matched_rule_id,
        )


class ApprovalStepModel(Base):
    """
    One approval step of an expense.

    Contract:
        A step leaves ``pending`` at most once.  Afterwards no column may
        change (enforced by the immutability listeners).
    """

    __tablename__ = "approval_steps"

    __table_args__ = (
        UniqueConstraint("expense_id", "sequence", name="uq_approval_steps_position"),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'overridden')",
            name="ck_approval_steps_valid_status",
        ),
        CheckConstraint("sequence >= 1", name="ck_approval_steps_sequence_positive"),
        Index("idx_approval_steps_approver", "approver_id", "status"),
    )

    expense_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("expenses.id"), nullable=False,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    # None for dynamic (percentage) steps
    approver_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("users.id"), nullable=True,
    )
    is_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    kind: Mapped[str] = mapped_column(String(30), nullable=False, default="fixed")
    percentage: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    acted_by_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("users.id"), nullable=True,
    )
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(nullable=True)
    overridden_at: Mapped[datetime | None] = mapped_column(nullable=True)

    expense: Mapped["ExpenseModel"] = relationship(
        "ExpenseModel",
        back_populates="steps",
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalStep expense={self.expense_id} #{self.sequence} "
            f"approver={self.approver_id} status={self.status}>"
        )

    def to_dto(self) -> ApprovalStep:
        """Convert ORM model to frozen domain DTO."""
        from expense_kernel.domain.approval import ApprovalStep, StepKind, StepStatus

        return ApprovalStep(
            sequence=self.sequence,
            approver_id=self.approver_id,
            is_required=self.is_required,
            status=StepStatus(self.status),
            kind=StepKind(self.kind),
            percentage=self.percentage,
            comments=self.comments,
            acted_by_id=self.acted_by_id,
            approved_at=self.approved_at,
            rejected_at=self.rejected_at,
            overridden_at=self.overridden_at,
        )

    @classmethod
    def from_dto(cls, dto: ApprovalStep) -> ApprovalStepModel:
        """Create ORM model from domain DTO."""
        return cls(
            sequence=dto.sequence,
            approver_id=dto.approver_id,
            is_required=dto.is_required,
            kind=dto.kind.value,
            percentage=dto.percentage,
            status=dto.status.value,
            comments=dto.comments,
            acted_by_id=dto.acted_by_id,
            approved_at=dto.approved_at,
            rejected_at=dto.rejected_at,
            overridden_at=dto.overridden_at,
        )

    def apply(self, dto: ApprovalStep) -> None:
        """Copy the decision fields of a decided step DTO onto this row."""
        self.status = dto.status.value
        self.comments = dto.comments
        self.acted_by_id = dto.acted_by_id
        self.approved_at = dto.approved_at
        self.rejected_at = dto.rejected_at
        self.overridden_at = dto.overridden_at
