"""
ORM-level immutability of finalized expenses, decided steps and audit rows.
"""

import pytest
from sqlalchemy import select

from expense_kernel.domain.approval import ApprovalAction, RuleType, UserRole
from expense_kernel.exceptions import ImmutabilityViolationError
from expense_kernel.models.audit_event import ExpenseAuditEvent
from expense_kernel.models.expense import ExpenseModel


def load(session, expense_id) -> ExpenseModel:
    return session.get(ExpenseModel, expense_id)


class TestExpenseImmutability:

    def test_pending_expense_may_change(self, session, submit):
        expense = submit()
        model = load(session, expense.expense_id)
        model.receipt_url = "https://receipts.test/1.pdf"
        session.flush()

    @pytest.mark.parametrize("field, value", [("amount", 1), ("status", "pending")])
    def test_finalized_expense_frozen(self, session, org, submit, workflow, field, value):
        expense = submit()
        workflow.record_decision(expense.expense_id, org.manager.id, ApprovalAction.REJECT)
        model = load(session, expense.expense_id)
        setattr(model, field, value)
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert exc_info.value.entity_type == "Expense"

    def test_cancelled_expense_cannot_be_deleted(self, session, org, submit, workflow):
        expense = submit()
        workflow.cancel_expense(expense.expense_id, org.employee.id)
        session.delete(load(session, expense.expense_id))
        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestStepImmutability:

    def test_decided_step_frozen_while_later_step_pending(self, session, org, submit, workflow, make_rule):
        cfo = org.add_user(UserRole.MANAGER, name="CFO", is_manager_approver=True)
        make_rule(RuleType.SEQUENTIAL, sequential=((org.manager, 1, True), (cfo, 2, True)))
        expense = submit()
        workflow.record_decision(expense.expense_id, org.manager.id, ApprovalAction.APPROVE, "ok")

        first, second = sorted(load(session, expense.expense_id).steps, key=lambda s: s.sequence)
        second.comments = "still pending, still editable"
        session.flush()

        first.comments = "rewritten"
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert exc_info.value.entity_type == "ApprovalStep"


class TestAuditImmutability:

    def test_audit_rows_cannot_be_updated(self, session, submit):
        expense = submit()
        row = session.execute(
            select(ExpenseAuditEvent).where(ExpenseAuditEvent.entity_id == expense.expense_id)
        ).scalars().first()
        row.payload = {"amount": "0"}
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_audit_rows_cannot_be_deleted(self, session, submit):
        expense = submit()
        row = session.execute(
            select(ExpenseAuditEvent).where(ExpenseAuditEvent.entity_id == expense.expense_id)
        ).scalars().first()
        session.delete(row)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
