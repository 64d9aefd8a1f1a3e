"""
Tests for ExpenseSelector read queries.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from expense_kernel.domain.approval import (
    ApprovalAction,
    ExpenseStatus,
    RuleType,
    StepStatus,
    UserRole,
)
from expense_kernel.exceptions import ExpenseNotFoundError, UserNotFoundError
from expense_kernel.selectors.expense_selector import ExpenseSelector


@pytest.fixture
def selector(session):
    return ExpenseSelector(session)


class TestLookups:

    def test_get_and_find(self, org, submit, selector):
        expense = submit()
        assert selector.get(expense.expense_id) == expense
        assert selector.find(uuid4()) is None
        with pytest.raises(ExpenseNotFoundError):
            selector.get(uuid4())

    def test_company_scoping(self, session, org, submit, selector, org_builder):
        expense = submit()
        other = org_builder(session, org.clock)
        assert selector.find(expense.expense_id, other.company.id) is None
        assert selector.get(expense.expense_id, org.company.id).expense_id == expense.expense_id

    def test_history(self, org, submit, workflow, selector):
        expense = submit()
        workflow.record_decision(expense.expense_id, org.manager.id, ApprovalAction.APPROVE, "Fine")
        history = selector.history(expense.expense_id)
        assert history.status == ExpenseStatus.APPROVED
        (step,) = history.steps
        assert step.status == StepStatus.APPROVED
        assert step.comments == "Fine"
        assert history.final_approval.approved_by_id == org.manager.id


class TestInbox:

    def test_pending_for_approver_in_submission_order(self, org, submit, workflow, selector):
        first = submit("10.00")
        org.clock.tick()
        second = submit("20.00")
        org.clock.tick()
        decided = submit("30.00")
        workflow.record_decision(decided.expense_id, org.manager.id, ApprovalAction.REJECT)

        inbox = selector.pending_for_approver(org.manager.id)
        assert [e.expense_id for e in inbox] == [first.expense_id, second.expense_id]
        assert selector.pending_for_approver(org.admin.id) == []

    def test_pending_count_by_role(self, org, submit, selector):
        submit()
        submit()
        assert selector.pending_count(org.manager.id) == 2
        assert selector.pending_count(org.employee.id) == 0
        # Admins see every pending expense of their company
        assert selector.pending_count(org.admin.id) == 2

    def test_dynamic_step_reaches_pool_inbox(self, org, submit, workflow, make_rule, selector):
        make_rule(RuleType.PERCENTAGE, percentage=60)
        expense = submit()
        assert expense.current_approver_id is None

        assert [e.expense_id for e in selector.pending_for_approver(org.manager.id)] == [
            expense.expense_id
        ]
        assert selector.pending_count(org.manager.id) == 1
        assert selector.pending_for_approver(org.admin.id)[0].expense_id == expense.expense_id
        assert selector.pending_for_approver(org.employee.id) == []
        plain = org.add_user(UserRole.MANAGER, is_manager_approver=False)
        assert selector.pending_count(plain.id) == 0

        workflow.record_decision(expense.expense_id, org.manager.id, ApprovalAction.APPROVE)
        assert selector.pending_for_approver(org.manager.id) == []
        assert selector.pending_count(org.manager.id) == 0

    def test_pool_inbox_respects_roles_setting(self, org, submit, make_rule, selector):
        make_rule(RuleType.PERCENTAGE, percentage=60)
        submit()
        assert selector.pending_for_approver(org.manager.id, pool_roles=(UserRole.ADMIN,)) == []
        assert len(selector.pending_for_approver(org.manager.id, approver_only=False)) == 1

    def test_claimant_not_shown_own_dynamic_expense(self, org, submit, make_rule, selector):
        make_rule(RuleType.PERCENTAGE, percentage=60)
        expense = submit(employee=org.manager)
        peer = org.add_user(UserRole.MANAGER, name="Peer", is_manager_approver=True)

        assert selector.pending_for_approver(org.manager.id) == []
        assert selector.pending_count(org.manager.id) == 0
        assert [e.expense_id for e in selector.pending_for_approver(peer.id)] == [expense.expense_id]

    def test_empty_sequence_in_no_inbox(self, org, submit, selector):
        org.manager.is_manager_approver = False
        org.admin.is_active = False
        org.session.flush()
        submit()
        assert selector.pending_for_approver(org.manager.id, approver_only=False) == []

    def test_pending_count_unknown_user(self, selector):
        with pytest.raises(UserNotFoundError):
            selector.pending_count(uuid4())


class TestListingsAndTotals:

    def test_list_for_employee_newest_first(self, org, submit, workflow, selector):
        older = submit("10.00")
        org.clock.tick()
        newer = submit("20.00")
        workflow.cancel_expense(older.expense_id, org.employee.id)

        listed = selector.list_for_employee(org.employee.id)
        assert [e.expense_id for e in listed] == [newer.expense_id, older.expense_id]
        cancelled = selector.list_for_employee(org.employee.id, ExpenseStatus.CANCELLED)
        assert [e.expense_id for e in cancelled] == [older.expense_id]

    def test_summary(self, org, submit, workflow, selector):
        submit("10.00")
        approved = submit("20.00")
        workflow.record_decision(approved.expense_id, org.manager.id, ApprovalAction.APPROVE)
        submit("100.00", currency="EUR")

        summary = selector.summary(org.company.id)
        assert summary.count(ExpenseStatus.PENDING) == 2
        assert summary.total(ExpenseStatus.PENDING) == Decimal("118.00")
        assert summary.count(ExpenseStatus.APPROVED) == 1
        assert summary.count(ExpenseStatus.REJECTED) == 0
        assert summary.total_count == 3

    def test_spend_between_half_open(self, org, submit, selector):
        submit("10.00", expense_date=date(2024, 1, 1))
        submit("20.00", expense_date=date(2024, 1, 14))
        submit("40.00", expense_date=date(2023, 12, 31))
        other = org.add_user(UserRole.EMPLOYEE, manager=org.manager)
        submit("80.00", employee=other, expense_date=date(2024, 1, 5))

        spent = selector.spend_between(org.employee.id, date(2024, 1, 1), date(2024, 1, 14))
        assert spent == Decimal("10.00")
        assert selector.spend_between(org.employee.id, date(2025, 1, 1), date(2025, 2, 1)) == Decimal("0")
