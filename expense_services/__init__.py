"""
expense_services -- Orchestration above the expense kernel.

Workflow, budgets, notifications, currency conversion and rule seeding.
Depends on expense_kernel, expense_engines and expense_config; nothing in
those packages imports from here.
"""

from expense_services.budget import BudgetService
from expense_services.currency import StaticRateConverter
from expense_services.expense_workflow import DecisionReceipt, ExpenseWorkflowService
from expense_services.notifications import (
    LoggingNotifier,
    SmtpNotifier,
    build_notifier,
    notify_safely,
    render_notification,
)
from expense_services.rule_seeding import seed_company_rules, seed_from_config

__all__ = [
    "BudgetService",
    "DecisionReceipt",
    "ExpenseWorkflowService",
    "LoggingNotifier",
    "SmtpNotifier",
    "StaticRateConverter",
    "build_notifier",
    "notify_safely",
    "render_notification",
    "seed_company_rules",
    "seed_from_config",
]
