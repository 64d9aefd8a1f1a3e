"""
Configuration Loader (``expense_config.loader``).

Responsibility
--------------
Loads the workflow YAML file and parses it into the typed
``expense_config.schema`` dataclasses.  The single public entry point for
runtime config is ``expense_config.get_active_config()``.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; no silent defaults for required keys.
* ``validate_config`` collects every structural problem before anything is
  returned, so one run reports all of them.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from expense_config.schema import (
    CompanyRuleSet,
    ExchangeRateDef,
    RuleDefinition,
    SequentialApproverDef,
    SmtpSettings,
    WorkflowConfig,
)
from expense_kernel.domain.approval import RuleType, UserRole

NOTIFIERS = ("logging", "smtp")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _decimal(value: Any, what: str) -> Decimal | None:
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"{what}: not a number: {value!r}")


def parse_smtp(data: dict[str, Any] | None) -> SmtpSettings:
    data = data or {}
    defaults = SmtpSettings()
    return SmtpSettings(
        host=data.get("host", defaults.host),
        port=int(data.get("port", defaults.port)),
        sender=data.get("sender", defaults.sender),
        use_tls=bool(data.get("use_tls", defaults.use_tls)),
        username=data.get("username"),
        password=data.get("password"),
        timeout_seconds=float(data.get("timeout_seconds", defaults.timeout_seconds)),
    )


def parse_exchange_rate(data: dict[str, Any]) -> ExchangeRateDef:
    return ExchangeRateDef(
        from_currency=data["from"],
        to_currency=data["to"],
        rate=_decimal(data["rate"], f"rate {data['from']}->{data['to']}"),
    )


def parse_rule(data: dict[str, Any]) -> RuleDefinition:
    """Parse one rule fragment.  ``name`` and ``type`` are required."""
    return RuleDefinition(
        name=data["name"],
        rule_type=RuleType(data["type"]),
        percentage=int(data["percentage"]) if data.get("percentage") is not None else None,
        specific_approvers=tuple(data.get("specific_approvers") or ()),
        sequential=tuple(
            SequentialApproverDef(
                email=entry["approver"],
                sequence=int(entry["sequence"]),
                is_required=bool(entry.get("is_required", True)),
            )
            for entry in data.get("sequential") or ()
        ),
        min_amount=_decimal(data.get("min_amount"), f"rule {data['name']} min_amount"),
        max_amount=_decimal(data.get("max_amount"), f"rule {data['name']} max_amount"),
        categories=tuple(data.get("categories") or ()),
        priority=int(data.get("priority", 0)),
        description=data.get("description", ""),
    )


def parse_config(data: dict[str, Any]) -> WorkflowConfig:
    """Parse the full document.  ``config_id`` and ``version`` are required."""
    workflow = data.get("workflow") or {}
    budgets = data.get("budgets") or {}
    notifications = data.get("notifications") or {}

    return WorkflowConfig(
        config_id=data["config_id"],
        version=int(data["version"]),
        fallback_threshold=int(workflow.get("fallback_threshold", 50)),
        insufficient_approvals_comment=workflow.get(
            "insufficient_approvals_comment", "Insufficient approvals",
        ),
        dynamic_pool_roles=tuple(
            UserRole(r) for r in workflow.get("dynamic_pool_roles", ("manager", "admin"))
        ),
        pool_requires_approver_flag=bool(
            workflow.get("pool_requires_approver_flag", True)
        ),
        default_budget_alert_threshold=int(budgets.get("default_alert_threshold", 80)),
        notifier=notifications.get("channel", "logging"),
        smtp=parse_smtp(notifications.get("smtp")),
        exchange_rates=tuple(
            parse_exchange_rate(r) for r in data.get("exchange_rates") or ()
        ),
        company_rules=tuple(
            CompanyRuleSet(
                company_name=entry["company"],
                rules=tuple(parse_rule(r) for r in entry.get("rules") or ()),
            )
            for entry in data.get("company_rules") or ()
        ),
        checksum=compute_checksum(data),
    )


def validate_config(config: WorkflowConfig) -> list[str]:
    """Every structural problem in ``config``; empty when valid."""
    errors: list[str] = []

    if not 0 <= config.fallback_threshold <= 100:
        errors.append(f"fallback_threshold out of range: {config.fallback_threshold}")
    if not 1 <= config.default_budget_alert_threshold <= 100:
        errors.append(
            "default_alert_threshold out of range: "
            f"{config.default_budget_alert_threshold}"
        )
    if not config.dynamic_pool_roles:
        errors.append("dynamic_pool_roles must name at least one role")
    if config.notifier not in NOTIFIERS:
        errors.append(f"unknown notification channel: {config.notifier}")

    for rate in config.exchange_rates:
        if rate.rate is None or rate.rate <= 0:
            errors.append(f"exchange rate {rate.from_currency}->{rate.to_currency} must be positive")

    for rule_set in config.company_rules:
        names = [r.name for r in rule_set.rules]
        if len(set(names)) != len(names):
            errors.append(f"duplicate rule names for company {rule_set.company_name}")
        for rule in rule_set.rules:
            where = f"{rule_set.company_name}/{rule.name}"
            if rule.rule_type in (RuleType.PERCENTAGE, RuleType.HYBRID):
                if rule.percentage is None or not 1 <= rule.percentage <= 100:
                    errors.append(f"{where}: percentage must be between 1 and 100")
            if rule.rule_type in (RuleType.SPECIFIC_APPROVER, RuleType.HYBRID):
                if not rule.specific_approvers:
                    errors.append(f"{where}: specific_approvers required")
            if rule.rule_type == RuleType.SEQUENTIAL and not rule.sequential:
                errors.append(f"{where}: sequential approvers required")
            if (
                rule.min_amount is not None
                and rule.max_amount is not None
                and rule.min_amount >= rule.max_amount
            ):
                errors.append(f"{where}: min_amount must be below max_amount")

    return errors
