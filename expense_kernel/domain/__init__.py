"""
Pure domain layer.

This module contains pure data transfer objects and domain logic
with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O

All domain objects are immutable and deterministic.
"""

from expense_kernel.domain.approval import (
    DYNAMIC_STEP_KINDS,
    EXPENSE_TRANSITIONS,
    STEP_TRANSITIONS,
    TERMINAL_EXPENSE_STATUSES,
    AmountThreshold,
    ApprovalAction,
    ApprovalHistory,
    ApprovalRule,
    ApprovalStep,
    BudgetAlertState,
    BulkDecisionResult,
    CurrencyConverter,
    DecisionOutcome,
    ExpenseNotifier,
    ExpenseSnapshot,
    ExpenseStatus,
    FinalApproval,
    Notification,
    NotificationKind,
    OutcomeReason,
    OverrideAction,
    RuleConditions,
    RuleRepository,
    RuleType,
    SequentialApprover,
    StepKind,
    StepStatus,
    UserDirectory,
    UserInfo,
    UserRole,
)
from expense_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from expense_kernel.domain.submission import ExpenseSubmission, validate_comments

__all__ = [
    "AmountThreshold",
    "ApprovalAction",
    "ApprovalHistory",
    "ApprovalRule",
    "ApprovalStep",
    "BudgetAlertState",
    "BulkDecisionResult",
    "Clock",
    "CurrencyConverter",
    "DYNAMIC_STEP_KINDS",
    "DecisionOutcome",
    "DeterministicClock",
    "EXPENSE_TRANSITIONS",
    "ExpenseNotifier",
    "ExpenseSnapshot",
    "ExpenseStatus",
    "ExpenseSubmission",
    "FinalApproval",
    "Notification",
    "NotificationKind",
    "OutcomeReason",
    "OverrideAction",
    "RuleConditions",
    "RuleRepository",
    "RuleType",
    "STEP_TRANSITIONS",
    "SequentialApprover",
    "StepKind",
    "StepStatus",
    "SystemClock",
    "TERMINAL_EXPENSE_STATUSES",
    "UserDirectory",
    "UserInfo",
    "UserRole",
    "validate_comments",
]
