"""
expense_engines.approval -- Pure approval-sequence and decision engine.

Responsibility:
    Select the applicable approval rule for an expense, materialize its
    approval sequence, and compute the next expense state for one
    approver's decision or an administrative override.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import expense_kernel/domain types, kernel exceptions and
    the kernel logger.  Timestamps are passed in by the caller.

Invariants enforced:
    - Deterministic rule selection: priority descending, then oldest
      ``created_at``, then ``rule_id``.  First match wins.
    - Step positions are dense 1..n in construction order.
    - A step leaves ``pending`` once; decided steps are never rewritten.
    - Reject is always terminal.
    - Percentage comparisons are inclusive (``>=``) and use Decimal math.
    - An empty sequence can never be approved by percentage or fallback.

Failure modes:
    - ExpenseNotPendingError when the expense is already terminal.
    - NotCurrentApproverError when the actor has no actionable step.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable
from uuid import UUID

from expense_engines.tracer import traced_engine
from expense_kernel.domain.approval import (
    ApprovalAction,
    ApprovalRule,
    ApprovalStep,
    DecisionOutcome,
    ExpenseSnapshot,
    ExpenseStatus,
    FinalApproval,
    OutcomeReason,
    OverrideAction,
    RuleType,
    StepKind,
    StepStatus,
)
from expense_kernel.exceptions import ExpenseNotPendingError, NotCurrentApproverError

DEFAULT_FALLBACK_THRESHOLD = 50
INSUFFICIENT_APPROVALS_COMMENT = "Insufficient approvals"
OVERRIDE_STEP_COMMENT = "Overridden by admin"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_HUNDRED = Decimal(100)


# =========================================================================
# Rule selection
# =========================================================================


def rule_matches(rule: ApprovalRule, amount: Decimal, category: str) -> bool:
    """Active, amount inside ``[min, max)``, category allowed by the filter."""
    return rule.is_active and rule.matches(amount, category)


def _rule_rank(rule: ApprovalRule) -> tuple:
    # Rules without a creation time sort after every dated rule.
    return (
        -rule.priority,
        rule.created_at is None,
        rule.created_at or _EPOCH,
        str(rule.rule_id),
    )


@traced_engine("approval", "1.0", fingerprint_fields=("amount", "category"))
def select_matching_rule(
    rules: Iterable[ApprovalRule],
    *,
    amount: Decimal,
    category: str,
) -> ApprovalRule | None:
    """The single applicable rule, or None when no rule matches."""
    matches = [r for r in rules if rule_matches(r, amount, category)]
    if not matches:
        return None
    return min(matches, key=_rule_rank)


# =========================================================================
# Sequence construction
# =========================================================================


def _dynamic_step(sequence: int, kind: StepKind, percentage: int | None) -> ApprovalStep:
    return ApprovalStep(
        sequence=sequence,
        approver_id=None,
        is_required=False,
        kind=kind,
        percentage=percentage,
    )


def build_sequence(rule: ApprovalRule) -> tuple[ApprovalStep, ...]:
    """
    Materialize the approval steps for ``rule``.

    sequential          one step per configured approver, ordered by the
                        configured position, ``is_required`` as configured
    specific_approver   one required step per approver, in list order
    percentage          one optional dynamic step carrying the percentage
    hybrid              required specific steps, then one optional dynamic
                        step carrying the percentage
    """
    cond = rule.conditions

    if rule.rule_type == RuleType.SEQUENTIAL:
        ordered = sorted(cond.sequential, key=lambda s: s.sequence)
        return tuple(
            ApprovalStep(
                sequence=position,
                approver_id=entry.approver_id,
                is_required=entry.is_required,
            )
            for position, entry in enumerate(ordered, start=1)
        )

    if rule.rule_type == RuleType.SPECIFIC_APPROVER:
        return tuple(
            ApprovalStep(sequence=position, approver_id=approver_id)
            for position, approver_id in enumerate(cond.specific_approvers, start=1)
        )

    if rule.rule_type == RuleType.PERCENTAGE:
        return (_dynamic_step(1, StepKind.PERCENTAGE, cond.percentage),)

    if rule.rule_type == RuleType.HYBRID:
        steps = [
            ApprovalStep(
                sequence=position,
                approver_id=approver_id,
                kind=StepKind.HYBRID_SPECIFIC,
            )
            for position, approver_id in enumerate(cond.specific_approvers, start=1)
        ]
        steps.append(
            _dynamic_step(len(steps) + 1, StepKind.HYBRID_PERCENTAGE, cond.percentage)
        )
        return tuple(steps)

    raise ValueError(f"Unknown rule type: {rule.rule_type!r}")


def default_sequence(approver_id: UUID | None) -> tuple[ApprovalStep, ...]:
    """Single required step for the resolved default approver, or no steps."""
    if approver_id is None:
        return ()
    return (ApprovalStep(sequence=1, approver_id=approver_id),)


# =========================================================================
# Sequence queries
# =========================================================================


def next_pending_step(steps: Iterable[ApprovalStep]) -> ApprovalStep | None:
    """Lowest-positioned pending step."""
    pending = [s for s in steps if s.is_pending]
    return min(pending, key=lambda s: s.sequence) if pending else None


def initial_current_approver(steps: Iterable[ApprovalStep]) -> UUID | None:
    """Approver of the first pending step; None when it is dynamic or absent."""
    step = next_pending_step(steps)
    return step.approver_id if step is not None else None


def required_complete(steps: Iterable[ApprovalStep]) -> bool:
    """Every required step has left ``pending``."""
    return all(not s.is_pending for s in steps if s.is_required)


def approval_percentage(steps: tuple[ApprovalStep, ...]) -> Decimal:
    """``approved / total * 100``; 0 for an empty sequence."""
    if not steps:
        return Decimal(0)
    approved = sum(1 for s in steps if s.status == StepStatus.APPROVED)
    return Decimal(approved) * _HUNDRED / Decimal(len(steps))


def auto_approver_ids(rules: Iterable[ApprovalRule]) -> frozenset[UUID]:
    """Specific approvers of every active specific_approver/hybrid rule."""
    ids: set[UUID] = set()
    for rule in rules:
        if rule.is_active:
            ids.update(rule.specific_approver_ids)
    return frozenset(ids)


def percentage_thresholds(rules: Iterable[ApprovalRule]) -> tuple[int, ...]:
    """Configured percentages of every active percentage/hybrid rule."""
    return tuple(sorted({
        rule.percentage_threshold
        for rule in rules
        if rule.is_active and rule.percentage_threshold is not None
    }))


def find_actionable_step(
    steps: tuple[ApprovalStep, ...],
    actor_id: UUID,
    current_approver_id: UUID | None,
    eligible_pool: frozenset[UUID] = frozenset(),
    claimant_id: UUID | None = None,
) -> ApprovalStep | None:
    """
    The step ``actor_id`` may decide now, if any.

    Only the next pending step is actionable.  A fixed step needs the actor
    to be both its approver and the current approver; a dynamic step needs
    the actor to be in the eligible pool and not the claimant.
    """
    step = next_pending_step(steps)
    if step is None:
        return None
    if step.is_dynamic:
        if actor_id == claimant_id:
            return None
        return step if actor_id in eligible_pool else None
    if step.approver_id == actor_id and current_approver_id == actor_id:
        return step
    return None


# =========================================================================
# Decision evaluation
# =========================================================================


def _replace_step(
    steps: tuple[ApprovalStep, ...],
    updated: ApprovalStep,
) -> tuple[ApprovalStep, ...]:
    return tuple(updated if s.sequence == updated.sequence else s for s in steps)


def _decide_step(
    step: ApprovalStep,
    actor_id: UUID,
    action: ApprovalAction,
    comments: str | None,
    decided_at: datetime,
) -> ApprovalStep:
    if action == ApprovalAction.APPROVE:
        return replace(
            step, status=StepStatus.APPROVED, comments=comments,
            acted_by_id=actor_id, approved_at=decided_at,
        )
    return replace(
        step, status=StepStatus.REJECTED, comments=comments,
        acted_by_id=actor_id, rejected_at=decided_at,
    )


def _finalize(
    steps: tuple[ApprovalStep, ...],
    decision: ExpenseStatus,
    actor_id: UUID,
    decided_at: datetime,
    comments: str | None,
    reason: OutcomeReason,
    touched: ApprovalStep | None,
) -> DecisionOutcome:
    return DecisionOutcome(
        status=decision,
        steps=steps,
        current_approver_id=None,
        reason=reason,
        final_approval=FinalApproval(
            decision=decision,
            decided_by_id=actor_id,
            decided_at=decided_at,
            final_comments=comments,
        ),
        touched_step=touched,
    )


def fallback_outcome(
    steps: tuple[ApprovalStep, ...],
    *,
    actor_id: UUID,
    decided_at: datetime,
    comments: str | None = None,
    threshold: int = DEFAULT_FALLBACK_THRESHOLD,
    insufficient_comment: str = INSUFFICIENT_APPROVALS_COMMENT,
    touched: ApprovalStep | None = None,
) -> DecisionOutcome:
    """
    Final outcome once no pending step remains and no percentage rule was
    met: approved at ``approved/total*100 >= threshold``, else rejected with
    ``insufficient_comment``.  An empty sequence is always rejected.
    """
    pct = approval_percentage(steps)
    if steps and pct >= Decimal(threshold):
        reason = OutcomeReason.COMPLETED if pct == _HUNDRED else OutcomeReason.FALLBACK_APPROVED
        return _finalize(
            steps, ExpenseStatus.APPROVED, actor_id, decided_at, comments, reason, touched,
        )
    return _finalize(
        steps, ExpenseStatus.REJECTED, actor_id, decided_at,
        insufficient_comment, OutcomeReason.FALLBACK_REJECTED, touched,
    )


def _advance(
    steps: tuple[ApprovalStep, ...],
    touched: ApprovalStep,
) -> DecisionOutcome:
    nxt = next_pending_step(steps)
    return DecisionOutcome(
        status=ExpenseStatus.PENDING,
        steps=steps,
        current_approver_id=nxt.approver_id if nxt is not None else None,
        reason=OutcomeReason.ADVANCED,
        touched_step=touched,
    )


@traced_engine("approval", "1.0", fingerprint_fields=("actor_id", "action", "comments"))
def evaluate_decision(
    *,
    expense: ExpenseSnapshot,
    actor_id: UUID,
    action: ApprovalAction,
    decided_at: datetime,
    comments: str | None = None,
    company_rules: tuple[ApprovalRule, ...] = (),
    eligible_pool: frozenset[UUID] = frozenset(),
    fallback_threshold: int = DEFAULT_FALLBACK_THRESHOLD,
    insufficient_comment: str = INSUFFICIENT_APPROVALS_COMMENT,
) -> DecisionOutcome:
    """
    Apply one approver's decision to a pending expense.

    1. Mark the actor's step approved/rejected with comment and timestamp.
    2. Reject finalizes ``rejected`` immediately.
    3. Approve by a specific approver of any active specific_approver or
       hybrid rule of the company finalizes ``approved``.
    4. Once every required step is decided, any active percentage/hybrid
       rule of the company whose percentage is met finalizes ``approved``.
    5. Otherwise advance to the next pending step; with none left, apply
       the fallback threshold.

    Raises:
        ExpenseNotPendingError: The expense is terminal.
        NotCurrentApproverError: The actor has no actionable step.
    """
    eid = str(expense.expense_id)
    if expense.status != ExpenseStatus.PENDING:
        raise ExpenseNotPendingError(eid, expense.status.value)

    action = ApprovalAction(action)
    step = find_actionable_step(
        expense.approval_sequence, actor_id, expense.current_approver_id,
        eligible_pool, claimant_id=expense.employee_id,
    )
    if step is None:
        raise NotCurrentApproverError(eid, str(actor_id))

    touched = _decide_step(step, actor_id, action, comments, decided_at)
    steps = _replace_step(expense.approval_sequence, touched)

    if action == ApprovalAction.REJECT:
        return _finalize(
            steps, ExpenseStatus.REJECTED, actor_id, decided_at, comments,
            OutcomeReason.REJECTED, touched,
        )

    if actor_id in auto_approver_ids(company_rules):
        return _finalize(
            steps, ExpenseStatus.APPROVED, actor_id, decided_at, comments,
            OutcomeReason.AUTO_APPROVED, touched,
        )

    if not required_complete(steps):
        return _advance(steps, touched)

    pct = approval_percentage(steps)
    if any(pct >= Decimal(t) for t in percentage_thresholds(company_rules)):
        return _finalize(
            steps, ExpenseStatus.APPROVED, actor_id, decided_at, comments,
            OutcomeReason.PERCENTAGE_MET, touched,
        )

    if next_pending_step(steps) is not None:
        return _advance(steps, touched)

    return fallback_outcome(
        steps,
        actor_id=actor_id,
        decided_at=decided_at,
        comments=comments,
        threshold=fallback_threshold,
        insufficient_comment=insufficient_comment,
        touched=touched,
    )


@traced_engine("approval", "1.0", fingerprint_fields=("admin_id", "action", "comments"))
def apply_override(
    *,
    expense: ExpenseSnapshot,
    admin_id: UUID,
    action: OverrideAction,
    decided_at: datetime,
    comments: str | None = None,
) -> DecisionOutcome:
    """
    Force-finalize a pending expense.

    Every still-pending step becomes ``overridden``; decided steps keep
    their decision.  The sequence logic is bypassed entirely.

    Raises:
        ExpenseNotPendingError: The expense is terminal.
    """
    if expense.status != ExpenseStatus.PENDING:
        raise ExpenseNotPendingError(str(expense.expense_id), expense.status.value)

    action = OverrideAction(action)
    steps = tuple(
        replace(
            s,
            status=StepStatus.OVERRIDDEN,
            comments=OVERRIDE_STEP_COMMENT,
            acted_by_id=admin_id,
            overridden_at=decided_at,
        )
        if s.is_pending else s
        for s in expense.approval_sequence
    )
    decision = (
        ExpenseStatus.APPROVED if action == OverrideAction.APPROVED
        else ExpenseStatus.REJECTED
    )
    return _finalize(
        steps, decision, admin_id, decided_at,
        comments or f"{OVERRIDE_STEP_COMMENT}: {action.value}",
        OutcomeReason.OVERRIDDEN, None,
    )
