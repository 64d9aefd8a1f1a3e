"""
Module: expense_kernel.models.approval_rule
Responsibility: ORM persistence for per-company approval rules.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - rule_type is one of the four approval strategies (DB check constraint).
    - Rules are soft-deleted via is_active; rows are never removed while
      expenses reference them through matched_rule_id.
    - created_at is the equal-priority tie-break (oldest wins), so it is set
      once at creation by ApprovalRuleService.

Storage shape of ``conditions`` (JSON)::

    {"percentage": 60,
     "specific_approvers": ["<uuid>", ...],
     "sequential": [{"approver_id": "<uuid>", "sequence": 1, "is_required": true}]}
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from expense_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from expense_kernel.domain.approval import ApprovalRule, RuleConditions


def conditions_to_json(conditions: RuleConditions) -> dict[str, Any]:
    """Serialize rule conditions for the JSON column."""
    data: dict[str, Any] = {}
    if conditions.percentage is not None:
        data["percentage"] = conditions.percentage
    if conditions.specific_approvers:
        data["specific_approvers"] = [str(a) for a in conditions.specific_approvers]
    if conditions.sequential:
        data["sequential"] = [
            {
                "approver_id": str(s.approver_id),
                "sequence": s.sequence,
                "is_required": s.is_required,
            }
            for s in conditions.sequential
        ]
    return data


def conditions_from_json(data: dict[str, Any] | None) -> RuleConditions:
    """Parse the JSON column back into rule conditions."""
    from expense_kernel.domain.approval import RuleConditions, SequentialApprover

    data = data or {}
    percentage = data.get("percentage")
    return RuleConditions(
        percentage=int(percentage) if percentage is not None else None,
        specific_approvers=tuple(
            UUID(str(a)) for a in data.get("specific_approvers") or ()
        ),
        sequential=tuple(
            SequentialApprover(
                approver_id=UUID(str(entry["approver_id"])),
                sequence=int(entry["sequence"]),
                is_required=bool(entry.get("is_required", True)),
            )
            for entry in data.get("sequential") or ()
        ),
    )


class ApprovalRuleModel(Base):
    """
    Persistent approval rule.

    Guarantees:
        - ``to_dto()`` yields an ``ApprovalRule`` whose conditions are typed
          (UUIDs, ints), regardless of how the JSON was stored.
    """

    __tablename__ = "approval_rules"

    __table_args__ = (
        CheckConstraint(
            "rule_type IN ('percentage', 'specific_approver', 'hybrid', 'sequential')",
            name="ck_approval_rules_valid_type",
        ),
        Index(
            "idx_approval_rules_lookup",
            "company_id", "is_active", "priority",
        ),
    )

    company_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("companies.id"), nullable=False,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    rule_type: Mapped[str] = mapped_column(String(30), nullable=False)
    conditions: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    min_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    max_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    category_filter: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    priority: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return (
            f"<ApprovalRule {self.name} type={self.rule_type} "
            f"priority={self.priority} active={self.is_active}>"
        )

    def to_dto(self) -> ApprovalRule:
        """Convert ORM model to frozen domain DTO."""
        from expense_kernel.domain.approval import (
            AmountThreshold,
            ApprovalRule,
            RuleType,
        )

        return ApprovalRule(
            rule_id=self.id,
            company_id=self.company_id,
            name=self.name,
            rule_type=RuleType(self.rule_type),
            conditions=conditions_from_json(self.conditions),
            amount_threshold=AmountThreshold(
                min_amount=self.min_amount,
                max_amount=self.max_amount,
            ),
            category_filter=frozenset(self.category_filter or ()),
            priority=self.priority,
            is_active=self.is_active,
            created_at=self.created_at,
            description=self.description or "",
        )
