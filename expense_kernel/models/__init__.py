"""SQLAlchemy ORM models for the expense kernel."""

from expense_kernel.models.approval_rule import ApprovalRuleModel
from expense_kernel.models.audit_event import AuditAction, ExpenseAuditEvent
from expense_kernel.models.company import CompanyModel
from expense_kernel.models.expense import ApprovalStepModel, ExpenseModel
from expense_kernel.models.user import UserModel

__all__ = [
    "ApprovalRuleModel",
    "ApprovalStepModel",
    "AuditAction",
    "CompanyModel",
    "ExpenseAuditEvent",
    "ExpenseModel",
    "UserModel",
]
