"""
Expense Aggregate Invariants.

These invariants are structural law for every persisted expense.  No
configuration or rule may override them.  ``check_expense_invariants``
is called by the workflow service before every write and by the
property tests after every simulated decision.
"""

from enum import Enum, unique

from expense_kernel.domain.approval import (
    ExpenseSnapshot,
    ExpenseStatus,
    StepStatus,
)
from expense_kernel.exceptions import ExpenseInvariantError


@unique
class ExpenseInvariant(str, Enum):
    """Non-configurable invariants of the expense aggregate."""

    FINAL_APPROVAL_MATCHES_STATUS = "final_approval_matches_status"
    """``final_approval`` is set iff status is approved or rejected, and
    its decision equals the status."""

    CURRENT_APPROVER_ONLY_WHEN_PENDING = "current_approver_only_when_pending"
    """``current_approver_id`` is None whenever the expense is terminal,
    and otherwise names the approver of the next pending step."""

    STABLE_SEQUENCE_ORDER = "stable_sequence_order"
    """Steps are ordered by strictly increasing 1-based ``sequence``."""

    DECISION_METADATA_ONCE = "decision_metadata_once"
    """A step carries exactly the timestamp matching its status."""


ALL_EXPENSE_INVARIANTS: frozenset[ExpenseInvariant] = frozenset(ExpenseInvariant)

# The kernel package may not import from these packages.
# Enforced by tests/architecture/test_kernel_boundary.py.
FORBIDDEN_KERNEL_IMPORTS: tuple[str, ...] = (
    "expense_engines",
    "expense_services",
    "expense_config",
)


def check_expense_invariants(expense: ExpenseSnapshot) -> None:
    """Raise ExpenseInvariantError if the snapshot is inconsistent."""
    eid = str(expense.expense_id)

    finalized = expense.status in (ExpenseStatus.APPROVED, ExpenseStatus.REJECTED)
    if finalized != (expense.final_approval is not None):
        raise ExpenseInvariantError(eid, ExpenseInvariant.FINAL_APPROVAL_MATCHES_STATUS.value)
    if finalized and expense.final_approval.decision != expense.status:
        raise ExpenseInvariantError(eid, ExpenseInvariant.FINAL_APPROVAL_MATCHES_STATUS.value)

    if expense.is_terminal:
        if expense.current_approver_id is not None:
            raise ExpenseInvariantError(
                eid, ExpenseInvariant.CURRENT_APPROVER_ONLY_WHEN_PENDING.value,
            )
    else:
        next_step = next((s for s in expense.approval_sequence if s.is_pending), None)
        expected = next_step.approver_id if next_step is not None else None
        if expense.current_approver_id != expected:
            raise ExpenseInvariantError(
                eid, ExpenseInvariant.CURRENT_APPROVER_ONLY_WHEN_PENDING.value,
            )

    positions = [s.sequence for s in expense.approval_sequence]
    if positions != list(range(1, len(positions) + 1)):
        raise ExpenseInvariantError(eid, ExpenseInvariant.STABLE_SEQUENCE_ORDER.value)

    for step in expense.approval_sequence:
        stamps = {
            StepStatus.APPROVED: step.approved_at,
            StepStatus.REJECTED: step.rejected_at,
            StepStatus.OVERRIDDEN: step.overridden_at,
        }
        for status, stamp in stamps.items():
            if (step.status == status) != (stamp is not None):
                raise ExpenseInvariantError(
                    eid, ExpenseInvariant.DECISION_METADATA_ONCE.value,
                )
