"""
Module: expense_kernel.models.audit_event
Responsibility: ORM persistence for the expense audit trail.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Audit records are append-only; no UPDATE or DELETE (ORM listeners in
      db/immutability.py).
    - entity_seq is a gap-free per-entity counter, UNIQUE(entity_type,
      entity_id, entity_seq).  Writers to one expense are already serialized
      by the version compare-and-swap, so the counter never races.
    - payload_hash = SHA-256 of the canonical JSON payload.

Minimum coverage (each action type generates at least one audit row):
    - EXPENSE_SUBMITTED, STEP_APPROVED, STEP_REJECTED
    - EXPENSE_APPROVED, EXPENSE_REJECTED, EXPENSE_OVERRIDDEN, EXPENSE_CANCELLED
    - RULE_CREATED, RULE_UPDATED, RULE_DEACTIVATED
    - BUDGET_UPDATED, BUDGET_ALERT_RAISED
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from expense_kernel.db.base import Base, UUIDString


class AuditAction(str, Enum):
    """Types of auditable actions."""

    # Expense lifecycle
    EXPENSE_SUBMITTED = "expense_submitted"
    STEP_APPROVED = "step_approved"
    STEP_REJECTED = "step_rejected"
    EXPENSE_APPROVED = "expense_approved"
    EXPENSE_REJECTED = "expense_rejected"
    EXPENSE_OVERRIDDEN = "expense_overridden"
    EXPENSE_CANCELLED = "expense_cancelled"

    # Rule administration
    RULE_CREATED = "rule_created"
    RULE_UPDATED = "rule_updated"
    RULE_DEACTIVATED = "rule_deactivated"

    # Budgets
    BUDGET_UPDATED = "budget_updated"
    BUDGET_ALERT_RAISED = "budget_alert_raised"


class ExpenseAuditEvent(Base):
    """
    Append-only audit row.

    Contract:
        Rows are never updated or deleted.  ``payload_hash`` lets forensic
        tooling detect a payload edited outside the ORM.
    """

    __tablename__ = "expense_audit_events"

    __table_args__ = (
        UniqueConstraint(
            "entity_type", "entity_id", "entity_seq",
            name="uq_expense_audit_entity_seq",
        ),
        Index("idx_expense_audit_entity", "entity_type", "entity_id"),
        Index("idx_expense_audit_action", "action"),
        Index("idx_expense_audit_occurred", "occurred_at"),
    )

    # Type of entity being audited ("Expense", "ApprovalRule", "User")
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    entity_seq: Mapped[int] = mapped_column(Integer, nullable=False)

    action: Mapped[str] = mapped_column(String(50), nullable=False)
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)

    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<ExpenseAuditEvent {self.action} on "
            f"{self.entity_type}:{self.entity_id} #{self.entity_seq}>"
        )
