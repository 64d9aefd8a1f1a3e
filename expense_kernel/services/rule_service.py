"""
ApprovalRuleService -- administrative writes of approval rules.

Responsibility:
    Creates, updates and soft-deletes company approval rules after checking
    that the conditions are consistent with the rule type.  Every write is
    audited.

Architecture position:
    Kernel > Services -- imperative shell.  The approval engine only ever
    reads rules through ``SqlRuleRepository``.

Invariants enforced:
    - Percentage is an integer 1-100 for percentage and hybrid rules.
    - Specific-approver and hybrid rules name at least one approver.
    - Sequential rules name at least one approver; sequence numbers are
      positive and distinct.
    - Every named approver is an active user of the rule's company.
    - Amount bounds are non-negative and ``min < max`` when both are set.
    - ``created_at`` is written once; it is the equal-priority tie-break.

Failure modes:
    - InvalidRuleError on any inconsistency above.
    - CompanyNotFoundError / ApprovalRuleNotFoundError for unknown ids.
"""

from dataclasses import replace
from typing import Iterable
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from expense_kernel.domain.approval import (
    AmountThreshold,
    ApprovalRule,
    RuleConditions,
    RuleType,
)
from expense_kernel.domain.clock import Clock, SystemClock
from expense_kernel.exceptions import (
    ApprovalRuleNotFoundError,
    CompanyNotFoundError,
    InvalidRuleError,
)
from expense_kernel.logging_config import get_logger
from expense_kernel.models.approval_rule import ApprovalRuleModel, conditions_to_json
from expense_kernel.models.audit_event import AuditAction
from expense_kernel.models.company import CompanyModel
from expense_kernel.models.user import UserModel
from expense_kernel.services.auditor_service import AuditorService
from expense_kernel.services.base import BaseService

logger = get_logger("services.rule_service")

NAME_MIN, NAME_MAX = 2, 100
DESCRIPTION_MAX = 500


def validate_rule(rule: ApprovalRule) -> None:
    """Pure structural validation of a rule.  Raises InvalidRuleError."""
    name = (rule.name or "").strip()
    if not NAME_MIN <= len(name) <= NAME_MAX:
        raise InvalidRuleError(rule.name, f"name length must be {NAME_MIN}-{NAME_MAX}")
    if len(rule.description or "") > DESCRIPTION_MAX:
        raise InvalidRuleError(rule.name, f"description longer than {DESCRIPTION_MAX}")
    if rule.priority < 0:
        raise InvalidRuleError(rule.name, "priority must be >= 0")

    low = rule.amount_threshold.min_amount
    high = rule.amount_threshold.max_amount
    if low is not None and low < 0:
        raise InvalidRuleError(rule.name, "min_amount must be >= 0")
    if high is not None and high < 0:
        raise InvalidRuleError(rule.name, "max_amount must be >= 0")
    if low is not None and high is not None and low >= high:
        raise InvalidRuleError(rule.name, "min_amount must be below max_amount")

    cond = rule.conditions
    if rule.rule_type in (RuleType.PERCENTAGE, RuleType.HYBRID):
        if cond.percentage is None or not 1 <= cond.percentage <= 100:
            raise InvalidRuleError(rule.name, "percentage must be between 1 and 100")

    if rule.rule_type in (RuleType.SPECIFIC_APPROVER, RuleType.HYBRID):
        if not cond.specific_approvers:
            raise InvalidRuleError(rule.name, "at least one specific approver required")
        if len(set(cond.specific_approvers)) != len(cond.specific_approvers):
            raise InvalidRuleError(rule.name, "specific approvers must be distinct")

    if rule.rule_type == RuleType.SEQUENTIAL:
        if not cond.sequential:
            raise InvalidRuleError(rule.name, "at least one sequential approver required")
        positions = [s.sequence for s in cond.sequential]
        if any(p < 1 for p in positions):
            raise InvalidRuleError(rule.name, "sequence numbers must be positive")
        if len(set(positions)) != len(positions):
            raise InvalidRuleError(rule.name, "sequence numbers must be distinct")


def _named_approvers(rule: ApprovalRule) -> set[UUID]:
    ids = set(rule.conditions.specific_approvers)
    ids.update(s.approver_id for s in rule.conditions.sequential)
    return ids


class ApprovalRuleService(BaseService):
    """
    Admin-facing rule writes.

    Non-goals:
        - Does NOT check that the acting user is an admin; the request
          boundary authenticates and authorizes rule administration.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        auditor: AuditorService | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._auditor = auditor or AuditorService(session, self._clock)

    def _get_model(self, rule_id: UUID, company_id: UUID | None = None) -> ApprovalRuleModel:
        model = self.session.get(ApprovalRuleModel, rule_id)
        if model is None or (company_id is not None and model.company_id != company_id):
            raise ApprovalRuleNotFoundError(str(rule_id))
        return model

    def _check_approvers(self, rule: ApprovalRule) -> None:
        named = _named_approvers(rule)
        if not named:
            return
        found = set(
            self.session.execute(
                select(UserModel.id).where(
                    UserModel.id.in_(named),
                    UserModel.company_id == rule.company_id,
                    UserModel.is_active.is_(True),
                )
            ).scalars()
        )
        missing = named - found
        if missing:
            raise InvalidRuleError(
                rule.name,
                "approvers are not active users of the company: "
                + ", ".join(sorted(str(m) for m in missing)),
            )

    def create_rule(
        self,
        company_id: UUID,
        actor_id: UUID,
        name: str,
        rule_type: RuleType,
        conditions: RuleConditions,
        amount_threshold: AmountThreshold | None = None,
        category_filter: Iterable[str] = (),
        priority: int = 0,
        description: str = "",
    ) -> ApprovalRule:
        """
        Validate and persist a new active rule.

        Raises:
            CompanyNotFoundError: Unknown company.
            InvalidRuleError: Conditions inconsistent with the type.
        """
        if self.session.get(CompanyModel, company_id) is None:
            raise CompanyNotFoundError(str(company_id))

        now = self._clock.now()
        rule = ApprovalRule(
            rule_id=uuid4(),
            company_id=company_id,
            name=name.strip() if name else name,
            rule_type=RuleType(rule_type),
            conditions=conditions,
            amount_threshold=amount_threshold or AmountThreshold(),
            category_filter=frozenset(category_filter),
            priority=priority,
            is_active=True,
            created_at=now,
            description=description or "",
        )
        validate_rule(rule)
        self._check_approvers(rule)

        model = ApprovalRuleModel(
            id=rule.rule_id,
            company_id=company_id,
            name=rule.name,
            description=rule.description,
            rule_type=rule.rule_type.value,
            conditions=conditions_to_json(rule.conditions),
            min_amount=rule.amount_threshold.min_amount,
            max_amount=rule.amount_threshold.max_amount,
            category_filter=sorted(rule.category_filter),
            priority=priority,
            is_active=True,
            created_at=now,
        )
        self.session.add(model)
        self.session.flush()

        self._auditor.record(
            "ApprovalRule", rule.rule_id, AuditAction.RULE_CREATED, actor_id,
            {"name": rule.name, "rule_type": rule.rule_type.value, "priority": priority},
        )
        logger.info(
            "approval_rule_created",
            extra={
                "rule_id": str(rule.rule_id),
                "company_id": str(company_id),
                "rule_type": rule.rule_type.value,
                "priority": priority,
            },
        )
        return model.to_dto()

    def update_rule(
        self,
        rule_id: UUID,
        actor_id: UUID,
        company_id: UUID | None = None,
        *,
        name: str | None = None,
        description: str | None = None,
        conditions: RuleConditions | None = None,
        amount_threshold: AmountThreshold | None = None,
        category_filter: Iterable[str] | None = None,
        priority: int | None = None,
    ) -> ApprovalRule:
        """
        Replace the given fields and re-validate.  ``rule_type`` and
        ``created_at`` never change.
        """
        model = self._get_model(rule_id, company_id)
        current = model.to_dto()

        changes: dict = {}
        if name is not None:
            changes["name"] = name.strip()
        if description is not None:
            changes["description"] = description
        if conditions is not None:
            changes["conditions"] = conditions
        if amount_threshold is not None:
            changes["amount_threshold"] = amount_threshold
        if category_filter is not None:
            changes["category_filter"] = frozenset(category_filter)
        if priority is not None:
            changes["priority"] = priority

        updated = replace(current, **changes)
        validate_rule(updated)
        self._check_approvers(updated)

        model.name = updated.name
        model.description = updated.description
        model.conditions = conditions_to_json(updated.conditions)
        model.min_amount = updated.amount_threshold.min_amount
        model.max_amount = updated.amount_threshold.max_amount
        model.category_filter = sorted(updated.category_filter)
        model.priority = updated.priority
        model.updated_at = self._clock.now()
        self.session.flush()

        self._auditor.record(
            "ApprovalRule", rule_id, AuditAction.RULE_UPDATED, actor_id,
            {"fields": sorted(changes)},
        )
        logger.info(
            "approval_rule_updated",
            extra={"rule_id": str(rule_id), "fields": sorted(changes)},
        )
        return model.to_dto()

    def deactivate_rule(
        self,
        rule_id: UUID,
        actor_id: UUID,
        company_id: UUID | None = None,
    ) -> ApprovalRule:
        """Soft delete.  Expenses already built from the rule keep their steps."""
        model = self._get_model(rule_id, company_id)
        if model.is_active:
            model.is_active = False
            model.updated_at = self._clock.now()
            self.session.flush()
            self._auditor.record(
                "ApprovalRule", rule_id, AuditAction.RULE_DEACTIVATED, actor_id, {},
            )
            logger.info("approval_rule_deactivated", extra={"rule_id": str(rule_id)})
        return model.to_dto()

