"""
Module: expense_kernel.models.user
Responsibility: ORM persistence for company users: role, reporting line,
    approver flag, and monthly budget with its alert latch.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - email is globally unique.
    - budget_alert_state only moves none -> warned -> exceeded within the
      month named by budget_alert_period; BudgetService resets it.

Failure modes:
    - IntegrityError on duplicate email.
"""

from __future__ import annotations

from datetime import datetime
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
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from expense_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from expense_kernel.domain.approval import UserInfo


class UserModel(Base):
    """
    A user of a company.

    Contract:
        ``manager_id`` points at the user's direct manager.  A manager only
        approves by default when ``is_manager_approver`` is set.
    """

    __tablename__ = "users"

    __table_args__ = (
        UniqueConstraint("email", name="uq_users_email"),
        CheckConstraint(
            "role IN ('admin', 'manager', 'employee')",
            name="ck_users_valid_role",
        ),
        CheckConstraint(
            "budget_alert_state IN ('none', 'warned', 'exceeded')",
            name="ck_users_valid_alert_state",
        ),
        Index("idx_users_company_role", "company_id", "role", "is_active"),
    )

    company_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("companies.id"), nullable=False,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(254), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="employee")
    manager_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("users.id"), nullable=True,
    )
    is_manager_approver: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Monthly budget in company base currency (None = no budget tracking)
    monthly_budget: Mapped[Decimal | None] = mapped_column(nullable=True)
    budget_alert_threshold: Mapped[int] = mapped_column(
        Integer, nullable=False, default=80,
    )
    budget_alert_state: Mapped[str] = mapped_column(
        String(20), nullable=False, default="none",
    )
    # "YYYY-MM" the alert state applies to
    budget_alert_period: Mapped[str | None] = mapped_column(String(7), nullable=True)

    def __repr__(self) -> str:
        return f"<User {self.email} role={self.role}>"

    def to_dto(self) -> UserInfo:
        """Convert ORM model to frozen domain DTO."""
        from expense_kernel.domain.approval import UserInfo, UserRole

        return UserInfo(
            user_id=self.id,
            company_id=self.company_id,
            name=self.name,
            email=self.email,
            role=UserRole(self.role),
            manager_id=self.manager_id,
            is_manager_approver=self.is_manager_approver,
            is_active=self.is_active,
        )
