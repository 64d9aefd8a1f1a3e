"""
Workflow configuration schema.

Frozen dataclasses parsed from YAML by ``expense_config.loader``.  This
is the runtime shape of the settings the workflow service, notifiers,
currency converter and rule seeding read.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from expense_kernel.domain.approval import RuleType, UserRole


@dataclass(frozen=True)
class SmtpSettings:
    """Outbound mail settings for SmtpNotifier."""

    host: str = "localhost"
    port: int = 25
    sender: str = "expenses@localhost"
    use_tls: bool = False
    username: str | None = None
    password: str | None = None
    timeout_seconds: float = 10.0


@dataclass(frozen=True)
class ExchangeRateDef:
    """Static rate: 1 ``from_currency`` = ``rate`` ``to_currency``."""

    from_currency: str
    to_currency: str
    rate: Decimal


@dataclass(frozen=True)
class SequentialApproverDef:
    """Sequential position referencing a user by email."""

    email: str
    sequence: int
    is_required: bool = True


@dataclass(frozen=True)
class RuleDefinition:
    """Approval rule as authored in YAML.  Approvers are referenced by email."""

    name: str
    rule_type: RuleType
    percentage: int | None = None
    specific_approvers: tuple[str, ...] = ()
    sequential: tuple[SequentialApproverDef, ...] = ()
    min_amount: Decimal | None = None
    max_amount: Decimal | None = None
    categories: tuple[str, ...] = ()
    priority: int = 0
    description: str = ""


@dataclass(frozen=True)
class CompanyRuleSet:
    """Rule fragments for one company, keyed by company name."""

    company_name: str
    rules: tuple[RuleDefinition, ...] = ()


@dataclass(frozen=True)
class WorkflowConfig:
    """The sole runtime configuration artifact."""

    config_id: str
    version: int
    fallback_threshold: int = 50
    insufficient_approvals_comment: str = "Insufficient approvals"
    dynamic_pool_roles: tuple[UserRole, ...] = (UserRole.MANAGER, UserRole.ADMIN)
    pool_requires_approver_flag: bool = True
    default_budget_alert_threshold: int = 80
    notifier: str = "logging"
    smtp: SmtpSettings = field(default_factory=SmtpSettings)
    exchange_rates: tuple[ExchangeRateDef, ...] = ()
    company_rules: tuple[CompanyRuleSet, ...] = ()
    checksum: str = ""

    def rules_for(self, company_name: str) -> tuple[RuleDefinition, ...]:
        for rule_set in self.company_rules:
            if rule_set.company_name == company_name:
                return rule_set.rules
        return ()

    def rate_table(self) -> dict[tuple[str, str], Decimal]:
        return {(r.from_currency, r.to_currency): r.rate for r in self.exchange_rates}
