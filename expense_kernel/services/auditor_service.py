"""
AuditorService -- append-only audit trail for expenses, rules and budgets.

Responsibility:
    Creates immutable audit rows for every significant state change and
    answers trace queries for forensic review.

Architecture position:
    Kernel > Services -- imperative shell, called by ExpenseWorkflowService,
    ApprovalRuleService and BudgetService.

Invariants enforced:
    - Append-only: audit rows are never modified or deleted (ORM listeners
      on ExpenseAuditEvent).
    - Per-entity ordering: ``entity_seq`` is max+1 for the entity.  Every
      writer of an expense holds its version compare-and-swap first, so two
      writers never allocate the same number.
    - ``payload_hash`` is the SHA-256 of the canonical payload;
      ``verify_trace()`` recomputes it.

Failure modes:
    - IntegrityError if two writers race on the same entity without the
      compare-and-swap (programming error).
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from expense_kernel.domain.clock import Clock, SystemClock
from expense_kernel.logging_config import get_logger
from expense_kernel.models.audit_event import AuditAction, ExpenseAuditEvent
from expense_kernel.services.base import BaseService
from expense_kernel.utils.hashing import hash_payload, jsonable

logger = get_logger("services.auditor")


@dataclass(frozen=True)
class AuditTraceEntry:
    """A single entry in an audit trace."""

    entity_seq: int
    action: AuditAction
    occurred_at: datetime
    actor_id: UUID
    payload: dict[str, Any]
    payload_hash: str


@dataclass(frozen=True)
class AuditTrace:
    """All audit rows of one entity, oldest first."""

    entity_type: str
    entity_id: UUID
    entries: tuple[AuditTraceEntry, ...]

    @property
    def is_empty(self) -> bool:
        return len(self.entries) == 0

    @property
    def actions(self) -> tuple[AuditAction, ...]:
        return tuple(e.action for e in self.entries)

    @property
    def last_action(self) -> AuditAction | None:
        return self.entries[-1].action if self.entries else None


class AuditorService(BaseService):
    """
    Service for creating and reading audit rows.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def _next_entity_seq(self, entity_type: str, entity_id: UUID) -> int:
        current = self.session.execute(
            select(func.max(ExpenseAuditEvent.entity_seq)).where(
                ExpenseAuditEvent.entity_type == entity_type,
                ExpenseAuditEvent.entity_id == entity_id,
            )
        ).scalar_one_or_none()
        return (current or 0) + 1

    def record(
        self,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        actor_id: UUID,
        payload: dict[str, Any] | None = None,
    ) -> ExpenseAuditEvent:
        """
        Append one audit row and flush it.

        Postconditions:
            - The row is flushed with the next ``entity_seq`` of the entity.
            - ``payload_hash == hash_payload(payload)``.
        """
        payload_data = jsonable(payload or {})
        audit_event = ExpenseAuditEvent(
            entity_type=entity_type,
            entity_id=entity_id,
            entity_seq=self._next_entity_seq(entity_type, entity_id),
            action=action.value,
            actor_id=actor_id,
            occurred_at=self._clock.now(),
            payload=payload_data,
            payload_hash=hash_payload(payload_data),
        )
        self.session.add(audit_event)
        self.session.flush()

        logger.debug(
            "audit_event_recorded",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "audit_action": action.value,
                "entity_seq": audit_event.entity_seq,
            },
        )
        return audit_event

    def record_expense(
        self,
        expense_id: UUID,
        action: AuditAction,
        actor_id: UUID,
        payload: dict[str, Any] | None = None,
    ) -> ExpenseAuditEvent:
        """Convenience wrapper for ``entity_type="Expense"``."""
        return self.record("Expense", expense_id, action, actor_id, payload)

    def get_trace(self, entity_type: str, entity_id: UUID) -> AuditTrace:
        """Return the full audit trace of an entity."""
        rows = self.session.execute(
            select(ExpenseAuditEvent)
            .where(
                ExpenseAuditEvent.entity_type == entity_type,
                ExpenseAuditEvent.entity_id == entity_id,
            )
            .order_by(ExpenseAuditEvent.entity_seq)
        ).scalars().all()

        return AuditTrace(
            entity_type=entity_type,
            entity_id=entity_id,
            entries=tuple(
                AuditTraceEntry(
                    entity_seq=row.entity_seq,
                    action=AuditAction(row.action),
                    occurred_at=row.occurred_at,
                    actor_id=row.actor_id,
                    payload=row.payload or {},
                    payload_hash=row.payload_hash,
                )
                for row in rows
            ),
        )

    def verify_trace(self, trace: AuditTrace) -> bool:
        """True if every entry's payload still matches its stored hash."""
        for entry in trace.entries:
            if hash_payload(entry.payload) != entry.payload_hash:
                logger.error(
                    "audit_payload_mismatch",
                    extra={
                        "entity_type": trace.entity_type,
                        "entity_id": str(trace.entity_id),
                        "entity_seq": entry.entity_seq,
                    },
                )
                return False
        return True
