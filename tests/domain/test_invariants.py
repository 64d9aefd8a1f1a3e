"""
Tests for the expense aggregate invariants and lifecycle tables.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from expense_kernel.domain.approval import (
    EXPENSE_TRANSITIONS,
    STEP_TRANSITIONS,
    TERMINAL_EXPENSE_STATUSES,
    ApprovalStep,
    ExpenseSnapshot,
    ExpenseStatus,
    FinalApproval,
    StepStatus,
)
from expense_kernel.exceptions import ExpenseInvariantError
from expense_kernel.invariants import ExpenseInvariant, check_expense_invariants

T0 = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)
APPROVER = uuid4()


def snapshot(**overrides) -> ExpenseSnapshot:
    values = dict(
        expense_id=uuid4(),
        company_id=uuid4(),
        employee_id=uuid4(),
        amount=Decimal("10"),
        currency="USD",
        amount_in_company_currency=Decimal("10"),
        exchange_rate=Decimal("1"),
        category="Travel",
        expense_date=date(2024, 1, 1),
        description="Taxi fare",
        approval_sequence=(ApprovalStep(1, APPROVER),),
        current_approver_id=APPROVER,
    )
    values.update(overrides)
    return ExpenseSnapshot(**values)


def broken(expense: ExpenseSnapshot) -> str:
    with pytest.raises(ExpenseInvariantError) as exc_info:
        check_expense_invariants(expense)
    return exc_info.value.invariant


class TestLifecycleTables:

    def test_terminal_states_have_no_exits(self):
        for status in TERMINAL_EXPENSE_STATUSES:
            assert EXPENSE_TRANSITIONS[status] == frozenset()

    def test_steps_never_return_to_pending(self):
        for status, targets in STEP_TRANSITIONS.items():
            assert StepStatus.PENDING not in targets


class TestExpenseInvariants:

    def test_pending_snapshot_valid(self):
        check_expense_invariants(snapshot())

    def test_empty_pending_sequence_valid(self):
        check_expense_invariants(snapshot(approval_sequence=(), current_approver_id=None))

    def test_approved_without_final_approval(self):
        expense = snapshot(status=ExpenseStatus.APPROVED, current_approver_id=None)
        assert broken(expense) == ExpenseInvariant.FINAL_APPROVAL_MATCHES_STATUS.value

    def test_final_decision_must_match_status(self):
        expense = snapshot(
            status=ExpenseStatus.APPROVED,
            current_approver_id=None,
            final_approval=FinalApproval(ExpenseStatus.REJECTED, APPROVER, T0),
        )
        assert broken(expense) == ExpenseInvariant.FINAL_APPROVAL_MATCHES_STATUS.value

    def test_cancelled_has_no_final_approval(self):
        expense = snapshot(
            status=ExpenseStatus.CANCELLED,
            current_approver_id=None,
            final_approval=FinalApproval(ExpenseStatus.APPROVED, APPROVER, T0),
        )
        assert broken(expense) == ExpenseInvariant.FINAL_APPROVAL_MATCHES_STATUS.value

    def test_terminal_with_current_approver(self):
        expense = snapshot(status=ExpenseStatus.CANCELLED)
        assert broken(expense) == ExpenseInvariant.CURRENT_APPROVER_ONLY_WHEN_PENDING.value

    def test_current_approver_must_be_next_pending(self):
        expense = snapshot(current_approver_id=uuid4())
        assert broken(expense) == ExpenseInvariant.CURRENT_APPROVER_ONLY_WHEN_PENDING.value

    def test_sequence_gap(self):
        expense = snapshot(approval_sequence=(ApprovalStep(2, APPROVER),))
        assert broken(expense) == ExpenseInvariant.STABLE_SEQUENCE_ORDER.value

    def test_decided_step_needs_its_timestamp(self):
        step = ApprovalStep(1, APPROVER, status=StepStatus.APPROVED)
        expense = snapshot(approval_sequence=(step,), current_approver_id=None)
        assert broken(expense) == ExpenseInvariant.DECISION_METADATA_ONCE.value

    def test_pending_step_carries_no_timestamp(self):
        step = ApprovalStep(1, APPROVER, rejected_at=T0)
        expense = snapshot(approval_sequence=(step,))
        assert broken(expense) == ExpenseInvariant.DECISION_METADATA_ONCE.value
