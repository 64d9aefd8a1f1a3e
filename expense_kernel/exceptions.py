"""
Typed Exception Hierarchy for the Expense Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Request handlers must map every core failure to a response without parsing
message strings.  Every error therefore has:
  1. A TYPED exception class (catch by type, not message)
  2. A CODE attribute (machine-readable, API-safe)
  3. Structured DATA stored as attributes (not just a message string)

Example - RIGHT way:
    try:
        workflow.record_decision(expense_id, actor_id, ApprovalAction.APPROVE)
    except NotCurrentApproverError as e:
        api_response(status=403, code=e.code, expense=e.expense_id)
    except InvalidExpenseStateError as e:
        api_response(status=409, code=e.code, expense=e.expense_id)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from ExpenseKernelError:

    ExpenseKernelError (base)
    |
    +-- NotFoundError
    |   +-- ExpenseNotFoundError
    |   +-- UserNotFoundError
    |   +-- CompanyNotFoundError
    |   +-- ApprovalRuleNotFoundError
    |
    +-- AuthorizationError
    |   +-- NotCurrentApproverError
    |   +-- InsufficientRoleError
    |
    +-- InvalidExpenseStateError
    |   +-- ExpenseNotPendingError
    |   +-- DecisionConflictError
    |
    +-- ValidationError
    |   +-- ExpenseValidationError
    |   +-- InvalidRuleError
    |
    +-- DependencyError
    |   +-- RuleRepositoryError
    |   +-- CurrencyConversionError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- ExpenseInvariantError
    |
    +-- NotificationError        (logged and swallowed, never surfaced)

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                      | When Raised
----------------|---------------------------|-------------------------------------------
Not-found       | EXPENSE_NOT_FOUND         | Expense missing or outside caller's company
                | USER_NOT_FOUND            | User id does not exist
                | COMPANY_NOT_FOUND         | Company id does not exist
                | APPROVAL_RULE_NOT_FOUND   | Rule id does not exist
----------------|---------------------------|-------------------------------------------
Authorization   | NOT_CURRENT_APPROVER      | Actor has no actionable pending step
                | INSUFFICIENT_ROLE         | Action outside the actor's role
----------------|---------------------------|-------------------------------------------
Invalid-state   | EXPENSE_NOT_PENDING       | Expense already finalized or cancelled
                | DECISION_CONFLICT         | Version moved under a concurrent writer
----------------|---------------------------|-------------------------------------------
Validation      | EXPENSE_VALIDATION_FAILED | Malformed submission or comment
                | INVALID_RULE              | Rule conditions inconsistent with type
----------------|---------------------------|-------------------------------------------
Dependency      | RULE_REPOSITORY_FAILURE   | Rule lookup failed
                | CURRENCY_CONVERSION_FAILED| No rate for currency pair
----------------|---------------------------|-------------------------------------------
Immutability    | IMMUTABILITY_VIOLATION    | Finalized row modified
----------------|---------------------------|-------------------------------------------
Invariant       | EXPENSE_INVARIANT_BROKEN  | Aggregate consistency check failed
----------------|---------------------------|-------------------------------------------
Notification    | NOTIFICATION_FAILED       | Notifier failed (swallowed)
"""


class ExpenseKernelError(Exception):
    """
    Base exception for all expense kernel errors.

    All subclasses must have a ``code`` class attribute for
    machine-readable error identification.
    """

    code: str = "EXPENSE_KERNEL_ERROR"


# Not-found exceptions


class NotFoundError(ExpenseKernelError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"


class ExpenseNotFoundError(NotFoundError):
    """Expense does not exist or does not belong to the caller's company."""

    code: str = "EXPENSE_NOT_FOUND"

    def __init__(self, expense_id: str):
        self.expense_id = expense_id
        super().__init__(f"Expense not found: {expense_id}")


class UserNotFoundError(NotFoundError):
    """User identity does not exist."""

    code: str = "USER_NOT_FOUND"

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"User not found: {user_id}")


class CompanyNotFoundError(NotFoundError):
    """Company does not exist."""

    code: str = "COMPANY_NOT_FOUND"

    def __init__(self, company_id: str):
        self.company_id = company_id
        super().__init__(f"Company not found: {company_id}")


class ApprovalRuleNotFoundError(NotFoundError):
    """Approval rule does not exist."""

    code: str = "APPROVAL_RULE_NOT_FOUND"

    def __init__(self, rule_id: str):
        self.rule_id = rule_id
        super().__init__(f"Approval rule not found: {rule_id}")


# Authorization exceptions


class AuthorizationError(ExpenseKernelError):
    """Base exception for permission failures."""

    code: str = "AUTHORIZATION_ERROR"


class NotCurrentApproverError(AuthorizationError):
    """Acting identity has no actionable pending step on the expense."""

    code: str = "NOT_CURRENT_APPROVER"

    def __init__(self, expense_id: str, actor_id: str):
        self.expense_id = expense_id
        self.actor_id = actor_id
        super().__init__(
            f"User {actor_id} is not the current approver for expense {expense_id}"
        )


class InsufficientRoleError(AuthorizationError):
    """Action attempted outside the actor's role."""

    code: str = "INSUFFICIENT_ROLE"

    def __init__(self, actor_id: str, action: str, required: str):
        self.actor_id = actor_id
        self.action = action
        self.required = required
        super().__init__(
            f"User {actor_id} cannot {action}: requires {required}"
        )


# Invalid-state exceptions


class InvalidExpenseStateError(ExpenseKernelError):
    """Base exception for actions on an expense in the wrong state."""

    code: str = "INVALID_EXPENSE_STATE"

    def __init__(self, expense_id: str, message: str):
        self.expense_id = expense_id
        super().__init__(message)


class ExpenseNotPendingError(InvalidExpenseStateError):
    """Action attempted on an expense that is no longer pending."""

    code: str = "EXPENSE_NOT_PENDING"

    def __init__(self, expense_id: str, status: str):
        self.status = status
        super().__init__(
            expense_id,
            f"Expense {expense_id} is {status}; no further action allowed",
        )


class DecisionConflictError(InvalidExpenseStateError):
    """Another writer changed the expense between read and write."""

    code: str = "DECISION_CONFLICT"

    def __init__(self, expense_id: str, expected_version: int):
        self.expected_version = expected_version
        super().__init__(
            expense_id,
            f"Expense {expense_id} was modified concurrently "
            f"(expected version {expected_version})",
        )


# Validation exceptions


class ValidationError(ExpenseKernelError):
    """Base exception for malformed input."""

    code: str = "VALIDATION_ERROR"


class ExpenseValidationError(ValidationError):
    """Submission or decision input failed validation."""

    code: str = "EXPENSE_VALIDATION_FAILED"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


class InvalidRuleError(ValidationError):
    """Approval rule conditions are inconsistent with its type."""

    code: str = "INVALID_RULE"

    def __init__(self, rule_name: str, reason: str):
        self.rule_name = rule_name
        self.reason = reason
        super().__init__(f"Invalid approval rule '{rule_name}': {reason}")


# Dependency exceptions


class DependencyError(ExpenseKernelError):
    """Base exception for failures of external collaborators."""

    code: str = "DEPENDENCY_ERROR"


class RuleRepositoryError(DependencyError):
    """Rule lookup failed (datastore unavailable, corrupt row)."""

    code: str = "RULE_REPOSITORY_FAILURE"

    def __init__(self, company_id: str, reason: str):
        self.company_id = company_id
        self.reason = reason
        super().__init__(f"Rule lookup failed for company {company_id}: {reason}")


class CurrencyConversionError(DependencyError):
    """No conversion available for a currency pair."""

    code: str = "CURRENCY_CONVERSION_FAILED"

    def __init__(self, from_currency: str, to_currency: str):
        self.from_currency = from_currency
        self.to_currency = to_currency
        super().__init__(
            f"No exchange rate available from {from_currency} to {to_currency}"
        )


# Immutability exceptions


class ImmutabilityError(ExpenseKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify a finalized expense, decided step, or audit row."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Aggregate invariants


class ExpenseInvariantError(ExpenseKernelError):
    """An expense aggregate failed its consistency check."""

    code: str = "EXPENSE_INVARIANT_BROKEN"

    def __init__(self, expense_id: str, invariant: str):
        self.expense_id = expense_id
        self.invariant = invariant
        super().__init__(f"Expense {expense_id} violates invariant: {invariant}")


# Notification


class NotificationError(ExpenseKernelError):
    """A notifier failed.  Logged and swallowed by notify_safely()."""

    code: str = "NOTIFICATION_FAILED"

    def __init__(self, channel: str, reason: str):
        self.channel = channel
        self.reason = reason
        super().__init__(f"Notification via {channel} failed: {reason}")
