"""
Module: expense_engines
Responsibility:
    Package entrypoint that re-exports the pure calculation engines: the
    approval engine (rule selection, sequence construction, decision
    evaluation, override) and the budget alert engine.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import expense_kernel domain types, exceptions and logging.
    MUST NOT import expense_services or expense_config.

Invariants enforced:
    - Purity: engines NEVER call ``datetime.now()`` or ``date.today()``.
      Timestamps are passed in by the caller.
    - Decimal-only arithmetic for amounts and percentages.
    - Determinism: identical inputs always produce identical outputs.
"""

from expense_engines.approval import (
    DEFAULT_FALLBACK_THRESHOLD,
    INSUFFICIENT_APPROVALS_COMMENT,
    OVERRIDE_STEP_COMMENT,
    apply_override,
    approval_percentage,
    auto_approver_ids,
    build_sequence,
    default_sequence,
    evaluate_decision,
    fallback_outcome,
    find_actionable_step,
    initial_current_approver,
    next_pending_step,
    percentage_thresholds,
    required_complete,
    rule_matches,
    select_matching_rule,
)
from expense_engines.budget import (
    BudgetAlertEvaluation,
    evaluate_budget_alert,
    month_bounds,
    period_key,
)
from expense_engines.tracer import compute_input_fingerprint, traced_engine

__all__ = [
    "BudgetAlertEvaluation",
    "DEFAULT_FALLBACK_THRESHOLD",
    "INSUFFICIENT_APPROVALS_COMMENT",
    "OVERRIDE_STEP_COMMENT",
    "apply_override",
    "approval_percentage",
    "auto_approver_ids",
    "build_sequence",
    "compute_input_fingerprint",
    "default_sequence",
    "evaluate_budget_alert",
    "evaluate_decision",
    "fallback_outcome",
    "find_actionable_step",
    "initial_current_approver",
    "month_bounds",
    "next_pending_step",
    "percentage_thresholds",
    "period_key",
    "required_complete",
    "rule_matches",
    "select_matching_rule",
    "traced_engine",
]
