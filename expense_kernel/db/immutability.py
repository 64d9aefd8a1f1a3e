"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

Once an expense is approved, rejected or cancelled it is history: the
approval trail is what auditors and the employee see.  Likewise a step that
left ``pending`` records who decided and when, and an audit row records what
happened.  None of these may change afterwards.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
We register listeners that intercept these events and check the rules:

    session.flush()
         |
         v
    [before_update event] --> _check_*_immutability() --> ImmutabilityViolationError
         |
         v
    [before_delete event] --> _check_*_delete() -------> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

Bulk Core statements (``update()``/``delete()``) bypass these listeners.  The
only Core UPDATE the kernel issues is the version compare-and-swap, which
touches nothing but ``version``.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity              | When Immutable                          | Why
--------------------|-----------------------------------------|---------------------------
ExpenseModel        | status was approved/rejected/cancelled  | Finalized expense is history
ApprovalStepModel   | status was approved/rejected/overridden | Decision recorded once
ExpenseAuditEvent   | ALWAYS (from creation)                  | Audit trail is append-only
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from expense_kernel.exceptions import ImmutabilityViolationError
from expense_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_TERMINAL_EXPENSE = frozenset({"approved", "rejected", "cancelled"})
_DECIDED_STEP = frozenset({"approved", "rejected", "overridden"})


def _previous_status(target) -> str:
    """Status the row had before the pending flush."""
    history = get_history(target, "status")
    if history.deleted:
        return history.deleted[0]
    return target.status


def _changed_fields(target) -> list[str]:
    return [attr.key for attr in inspect(target).attrs if attr.history.has_changes()]


def _block(entity_type: str, entity_id, operation: str, reason: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _check_expense_immutability(mapper, connection, target):
    """Terminal expenses cannot change.  pending -> terminal is the one allowed edge."""
    previous = _previous_status(target)
    if previous not in _TERMINAL_EXPENSE:
        return
    changed = _changed_fields(target)
    if changed:
        _block(
            "Expense", target.id, "UPDATE",
            f"Cannot modify field '{changed[0]}' on {previous} expense",
        )


def _check_expense_delete(mapper, connection, target):
    if _previous_status(target) in _TERMINAL_EXPENSE:
        _block("Expense", target.id, "DELETE", "Finalized expenses cannot be deleted")


def _check_step_immutability(mapper, connection, target):
    """A decided step never changes again."""
    previous = _previous_status(target)
    if previous not in _DECIDED_STEP:
        return
    changed = _changed_fields(target)
    if changed:
        _block(
            "ApprovalStep", target.id, "UPDATE",
            f"Cannot modify field '{changed[0]}' on {previous} approval step",
        )


def _check_step_delete(mapper, connection, target):
    if _previous_status(target) in _DECIDED_STEP:
        _block("ApprovalStep", target.id, "DELETE", "Decided steps cannot be deleted")


def _check_audit_event_immutability(mapper, connection, target):
    _block(
        "ExpenseAuditEvent", target.id, "UPDATE",
        "Audit events are immutable and cannot be modified",
    )


def _check_audit_event_delete(mapper, connection, target):
    _block(
        "ExpenseAuditEvent", target.id, "DELETE",
        "Audit events cannot be deleted",
    )


def _listeners():
    from expense_kernel.models.audit_event import ExpenseAuditEvent
    from expense_kernel.models.expense import ApprovalStepModel, ExpenseModel

    return (
        (ExpenseModel, "before_update", _check_expense_immutability),
        (ExpenseModel, "before_delete", _check_expense_delete),
        (ApprovalStepModel, "before_update", _check_step_immutability),
        (ApprovalStepModel, "before_delete", _check_step_delete),
        (ExpenseAuditEvent, "before_update", _check_audit_event_immutability),
        (ExpenseAuditEvent, "before_delete", _check_audit_event_delete),
    )


def register_immutability_listeners() -> None:
    """
    Register all immutability enforcement event listeners.

    Idempotent.  Called by init_engine_from_url(), so every process that
    talks to the database has them.
    """
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def unregister_immutability_listeners() -> None:
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that need to violate the rules on purpose.
    """
    for target, event_name, listener_fn in _listeners():
        if event.contains(target, event_name, listener_fn):
            event.remove(target, event_name, listener_fn)
