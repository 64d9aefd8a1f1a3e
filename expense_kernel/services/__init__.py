"""
Kernel services - persistence-side collaborators of the approval core.

Services flush within the caller's transaction and never commit.
"""

from expense_kernel.services.auditor_service import (
    AuditorService,
    AuditTrace,
    AuditTraceEntry,
)
from expense_kernel.services.rule_repository import SqlRuleRepository
from expense_kernel.services.rule_service import (
    ApprovalRuleService,
    validate_rule,
)
from expense_kernel.services.user_directory import SqlUserDirectory

__all__ = [
    "ApprovalRuleService",
    "AuditTrace",
    "AuditTraceEntry",
    "AuditorService",
    "SqlRuleRepository",
    "SqlUserDirectory",
    "validate_rule",
]
