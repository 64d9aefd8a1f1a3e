"""
Tests for the append-only audit trail.
"""

from decimal import Decimal
from uuid import uuid4

from sqlalchemy import update

from expense_kernel.domain.approval import ApprovalAction, RuleType, UserRole
from expense_kernel.models.audit_event import AuditAction, ExpenseAuditEvent
from expense_kernel.services.auditor_service import AuditorService
from expense_kernel.utils.hashing import hash_payload


class TestAuditorService:

    def test_sequence_numbers_per_entity(self, session, deterministic_clock, test_actor_id):
        auditor = AuditorService(session, deterministic_clock)
        first, second = uuid4(), uuid4()
        a = auditor.record("Expense", first, AuditAction.EXPENSE_SUBMITTED, test_actor_id)
        b = auditor.record("Expense", second, AuditAction.EXPENSE_SUBMITTED, test_actor_id)
        c = auditor.record("Expense", first, AuditAction.EXPENSE_CANCELLED, test_actor_id)
        assert (a.entity_seq, b.entity_seq, c.entity_seq) == (1, 1, 2)

    def test_payload_normalized_and_hashed(self, session, deterministic_clock, test_actor_id):
        auditor = AuditorService(session, deterministic_clock)
        entity = uuid4()
        row = auditor.record(
            "Expense", entity, AuditAction.EXPENSE_SUBMITTED, test_actor_id,
            {"amount": Decimal("12.50"), "matched_rule_id": entity},
        )
        assert row.payload == {"amount": "12.5", "matched_rule_id": str(entity)}
        assert row.payload_hash == hash_payload(row.payload)
        assert row.occurred_at == deterministic_clock.now()

    def test_empty_trace(self, session):
        trace = AuditorService(session).get_trace("Expense", uuid4())
        assert trace.is_empty
        assert trace.last_action is None


class TestExpenseTrail:

    def test_full_lifecycle_trail(self, session, org, submit, workflow, make_rule):
        cfo = org.add_user(UserRole.MANAGER, name="CFO", is_manager_approver=True)
        make_rule(RuleType.SEQUENTIAL, sequential=((org.manager, 1, True), (cfo, 2, True)))
        expense = submit()
        workflow.record_decision(expense.expense_id, org.manager.id, ApprovalAction.APPROVE, "first")
        workflow.record_decision(expense.expense_id, cfo.id, ApprovalAction.APPROVE, "second")

        trace = AuditorService(session).get_trace("Expense", expense.expense_id)
        assert trace.actions == (
            AuditAction.EXPENSE_SUBMITTED,
            AuditAction.STEP_APPROVED,
            AuditAction.STEP_APPROVED,
            AuditAction.EXPENSE_APPROVED,
        )
        assert [e.entity_seq for e in trace.entries] == [1, 2, 3, 4]
        assert [e.actor_id for e in trace.entries] == [org.employee.id, org.manager.id, cfo.id, cfo.id]
        assert trace.entries[1].payload == {"sequence": 1, "comments": "first", "version": 2}
        assert trace.entries[3].payload["reason"] == "completed"

    def test_verify_trace_detects_tampering(self, session, submit):
        expense = submit()
        auditor = AuditorService(session)
        assert auditor.verify_trace(auditor.get_trace("Expense", expense.expense_id))

        # Core UPDATE bypasses the ORM listeners, as a direct SQL edit would
        session.execute(
            update(ExpenseAuditEvent)
            .where(ExpenseAuditEvent.entity_id == expense.expense_id)
            .values(payload={"amount": "0.01"})
            .execution_options(synchronize_session=False)
        )
        session.expire_all()
        assert not auditor.verify_trace(auditor.get_trace("Expense", expense.expense_id))
