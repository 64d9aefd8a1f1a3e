"""
Approval domain types (``expense_kernel.domain.approval``).

Responsibility
--------------
Pure value objects for the expense approval workflow.  Defines the
expense and step lifecycle state machines, approval rules and their
conditions, approval steps, the expense aggregate snapshot, decision
outcomes, and the protocols of the external collaborators the core
reads from (rules, users) or writes to (notifications).

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``models/``, ``services/``, ``selectors/`` or outer layers.

Invariants enforced
-------------------
* Expense lifecycle -- ``EXPENSE_TRANSITIONS`` defines the only legal
  expense status edges.  Terminal states have no outgoing edges.
* Step lifecycle -- ``STEP_TRANSITIONS``: a step leaves ``pending`` at
  most once and never returns to it.
* Amount ranges are half-open: ``min_amount <= amount < max_amount``.
* An empty ``category_filter`` matches every category.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Protocol
from uuid import UUID


# =========================================================================
# Enumerations
# =========================================================================


class RuleType(str, Enum):
    """Approval strategy configured on a rule."""

    PERCENTAGE = "percentage"
    SPECIFIC_APPROVER = "specific_approver"
    HYBRID = "hybrid"
    SEQUENTIAL = "sequential"


class StepStatus(str, Enum):
    """Approval step lifecycle states."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    OVERRIDDEN = "overridden"


class StepKind(str, Enum):
    """How a step's approver is determined.

    ``FIXED`` and ``HYBRID_SPECIFIC`` steps name their approver.
    ``PERCENTAGE`` and ``HYBRID_PERCENTAGE`` steps are dynamic: the
    approver is resolved from the company's eligible pool when acted on.
    """

    FIXED = "fixed"
    PERCENTAGE = "percentage"
    HYBRID_SPECIFIC = "hybrid_specific"
    HYBRID_PERCENTAGE = "hybrid_percentage"


DYNAMIC_STEP_KINDS: frozenset[StepKind] = frozenset({
    StepKind.PERCENTAGE,
    StepKind.HYBRID_PERCENTAGE,
})


class ExpenseStatus(str, Enum):
    """Expense lifecycle states."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class ApprovalAction(str, Enum):
    """Decision an approver can make on a step."""

    APPROVE = "approve"
    REJECT = "reject"


class OverrideAction(str, Enum):
    """Outcome an administrator can force."""

    APPROVED = "approved"
    REJECTED = "rejected"


class UserRole(str, Enum):
    """Company roles."""

    ADMIN = "admin"
    MANAGER = "manager"
    EMPLOYEE = "employee"


class BudgetAlertState(str, Enum):
    """Budget alert latch, reset whenever the budget or month changes."""

    NONE = "none"
    WARNED = "warned"
    EXCEEDED = "exceeded"


# =========================================================================
# Lifecycle state machines
# =========================================================================


EXPENSE_TRANSITIONS: dict[ExpenseStatus, frozenset[ExpenseStatus]] = {
    ExpenseStatus.PENDING: frozenset({
        ExpenseStatus.APPROVED,
        ExpenseStatus.REJECTED,
        ExpenseStatus.CANCELLED,
    }),
    ExpenseStatus.APPROVED: frozenset(),
    ExpenseStatus.REJECTED: frozenset(),
    ExpenseStatus.CANCELLED: frozenset(),
}

TERMINAL_EXPENSE_STATUSES: frozenset[ExpenseStatus] = frozenset({
    ExpenseStatus.APPROVED,
    ExpenseStatus.REJECTED,
    ExpenseStatus.CANCELLED,
})

STEP_TRANSITIONS: dict[StepStatus, frozenset[StepStatus]] = {
    StepStatus.PENDING: frozenset({
        StepStatus.APPROVED,
        StepStatus.REJECTED,
        StepStatus.OVERRIDDEN,
    }),
    StepStatus.APPROVED: frozenset(),
    StepStatus.REJECTED: frozenset(),
    StepStatus.OVERRIDDEN: frozenset(),
}


# =========================================================================
# Rules
# =========================================================================


@dataclass(frozen=True)
class AmountThreshold:
    """Half-open amount range in company base currency.  ``None`` = unbounded."""

    min_amount: Decimal | None = None
    max_amount: Decimal | None = None

    def contains(self, amount: Decimal) -> bool:
        if self.min_amount is not None and amount < self.min_amount:
            return False
        if self.max_amount is not None and amount >= self.max_amount:
            return False
        return True


@dataclass(frozen=True)
class SequentialApprover:
    """One configured position of a sequential rule."""

    approver_id: UUID
    sequence: int
    is_required: bool = True


@dataclass(frozen=True)
class RuleConditions:
    """Type-keyed rule payload.

    ``percentage`` is used by percentage and hybrid rules,
    ``specific_approvers`` by specific_approver and hybrid rules,
    ``sequential`` by sequential rules.
    """

    percentage: int | None = None
    specific_approvers: tuple[UUID, ...] = ()
    sequential: tuple[SequentialApprover, ...] = ()


@dataclass(frozen=True)
class ApprovalRule:
    """A company approval rule.

    At most one rule is selected per expense: the highest-priority
    active rule whose amount range and category filter both match.
    Equal priorities resolve to the oldest rule (``created_at``, then
    ``rule_id``).
    """

    rule_id: UUID
    company_id: UUID
    name: str
    rule_type: RuleType
    conditions: RuleConditions = field(default_factory=RuleConditions)
    amount_threshold: AmountThreshold = field(default_factory=AmountThreshold)
    category_filter: frozenset[str] = frozenset()
    priority: int = 0
    is_active: bool = True
    created_at: datetime | None = None
    description: str = ""

    def matches(self, amount: Decimal, category: str) -> bool:
        """Amount range and category filter both match."""
        if not self.amount_threshold.contains(amount):
            return False
        if self.category_filter and category not in self.category_filter:
            return False
        return True

    @property
    def specific_approver_ids(self) -> tuple[UUID, ...]:
        """Approvers with auto-approval authority under this rule."""
        if self.rule_type in (RuleType.SPECIFIC_APPROVER, RuleType.HYBRID):
            return self.conditions.specific_approvers
        return ()

    @property
    def percentage_threshold(self) -> int | None:
        """Configured approval percentage for percentage/hybrid rules."""
        if self.rule_type in (RuleType.PERCENTAGE, RuleType.HYBRID):
            return self.conditions.percentage
        return None


# =========================================================================
# Approval sequence and aggregate
# =========================================================================


@dataclass(frozen=True)
class ApprovalStep:
    """One position in an expense's approval sequence.

    ``approver_id`` is ``None`` for dynamic (percentage) steps; whoever
    from the eligible pool acts on the step is recorded in
    ``acted_by_id``.  Decision timestamps are set exactly once, when the
    status leaves ``pending``.
    """

    sequence: int
    approver_id: UUID | None
    is_required: bool = True
    status: StepStatus = StepStatus.PENDING
    kind: StepKind = StepKind.FIXED
    percentage: int | None = None
    comments: str | None = None
    acted_by_id: UUID | None = None
    approved_at: datetime | None = None
    rejected_at: datetime | None = None
    overridden_at: datetime | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == StepStatus.PENDING

    @property
    def is_dynamic(self) -> bool:
        return self.kind in DYNAMIC_STEP_KINDS


@dataclass(frozen=True)
class FinalApproval:
    """Final decision record, set once when the expense is finalized."""

    decision: ExpenseStatus
    decided_by_id: UUID
    decided_at: datetime
    final_comments: str | None = None

    @property
    def approved_by_id(self) -> UUID | None:
        return self.decided_by_id if self.decision == ExpenseStatus.APPROVED else None

    @property
    def rejected_by_id(self) -> UUID | None:
        return self.decided_by_id if self.decision == ExpenseStatus.REJECTED else None


@dataclass(frozen=True)
class ExpenseSnapshot:
    """Immutable snapshot of the expense aggregate."""

    expense_id: UUID
    company_id: UUID
    employee_id: UUID
    amount: Decimal
    currency: str
    amount_in_company_currency: Decimal
    exchange_rate: Decimal
    category: str
    expense_date: date
    description: str
    status: ExpenseStatus = ExpenseStatus.PENDING
    approval_sequence: tuple[ApprovalStep, ...] = ()
    current_approver_id: UUID | None = None
    final_approval: FinalApproval | None = None
    receipt_url: str | None = None
    version: int = 1
    submitted_at: datetime | None = None
    matched_rule_id: UUID | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_EXPENSE_STATUSES


# =========================================================================
# Evaluation results
# =========================================================================


class OutcomeReason(str, Enum):
    """Why the evaluator produced a given outcome."""

    ADVANCED = "advanced"
    COMPLETED = "completed"
    REJECTED = "rejected"
    AUTO_APPROVED = "auto_approved"
    PERCENTAGE_MET = "percentage_met"
    FALLBACK_APPROVED = "fallback_approved"
    FALLBACK_REJECTED = "fallback_rejected"
    OVERRIDDEN = "overridden"


@dataclass(frozen=True)
class DecisionOutcome:
    """Result of applying one decision (or an override) to a sequence."""

    status: ExpenseStatus
    steps: tuple[ApprovalStep, ...]
    current_approver_id: UUID | None
    reason: OutcomeReason
    final_approval: FinalApproval | None = None
    touched_step: ApprovalStep | None = None

    @property
    def is_final(self) -> bool:
        return self.status in TERMINAL_EXPENSE_STATUSES


@dataclass(frozen=True)
class BulkDecisionResult:
    """Per-expense result of a bulk decision."""

    expense_id: UUID
    outcome: str  # "success" | "skipped" | "error"
    status: ExpenseStatus | None = None
    error_code: str | None = None
    reason: str = ""


@dataclass(frozen=True)
class ApprovalHistory:
    """Read model for an expense's approval trail."""

    expense_id: UUID
    status: ExpenseStatus
    steps: tuple[ApprovalStep, ...]
    final_approval: FinalApproval | None


# =========================================================================
# Users
# =========================================================================


@dataclass(frozen=True)
class UserInfo:
    """Directory view of a user."""

    user_id: UUID
    company_id: UUID
    name: str
    email: str
    role: UserRole
    manager_id: UUID | None = None
    is_manager_approver: bool = False
    is_active: bool = True


# =========================================================================
# Notifications
# =========================================================================


class NotificationKind(str, Enum):
    """Events the notifier is told about."""

    STEP_ASSIGNED = "step_assigned"
    EXPENSE_APPROVED = "expense_approved"
    EXPENSE_REJECTED = "expense_rejected"
    EXPENSE_OVERRIDDEN = "expense_overridden"
    EXPENSE_CANCELLED = "expense_cancelled"
    BUDGET_WARNING = "budget_warning"
    BUDGET_EXCEEDED = "budget_exceeded"


@dataclass(frozen=True)
class Notification:
    """Payload handed to an ExpenseNotifier."""

    kind: NotificationKind
    recipient_id: UUID | None
    expense_id: UUID | None = None
    actor_id: UUID | None = None
    action: str | None = None
    status: ExpenseStatus | None = None
    details: dict = field(default_factory=dict)


# =========================================================================
# Collaborator protocols
# =========================================================================


class RuleRepository(Protocol):
    """Read-only access to company approval rules."""

    def find_active_rules(self, company_id: UUID) -> tuple[ApprovalRule, ...]:
        """Return every active rule of the company, oldest first."""
        ...


class UserDirectory(Protocol):
    """Read-only access to users and roles."""

    def get_user(self, user_id: UUID) -> UserInfo:
        ...

    def find_first_active(
        self,
        company_id: UUID,
        role: UserRole,
        approver_only: bool = False,
        exclude_id: UUID | None = None,
    ) -> UserInfo | None:
        ...

    def eligible_pool(
        self,
        company_id: UUID,
        roles: tuple[UserRole, ...],
        approver_only: bool = True,
        exclude_id: UUID | None = None,
    ) -> frozenset[UUID]:
        ...


class ExpenseNotifier(Protocol):
    """Outbound notification channel (email, chat, ...)."""

    def notify(self, notification: Notification) -> None:
        ...


class CurrencyConverter(Protocol):
    """Converts an amount into the company base currency."""

    def convert(
        self,
        amount: Decimal,
        from_currency: str,
        to_currency: str,
    ) -> tuple[Decimal, Decimal]:
        """Return ``(converted_amount, exchange_rate)``."""
        ...
