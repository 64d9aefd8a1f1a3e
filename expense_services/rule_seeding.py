"""
expense_services.rule_seeding -- Create company rules from configuration.

Responsibility:
    Turns the ``company_rules`` fragments of the workflow YAML (approvers
    referenced by email) into persisted approval rules through
    ApprovalRuleService, so validation and audit apply to seeded rules too.

Failure modes:
    - InvalidRuleError when a referenced email is not a user of the company.
    - CompanyNotFoundError for an unknown company id.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from expense_config.schema import RuleDefinition, WorkflowConfig
from expense_kernel.domain.approval import (
    AmountThreshold,
    ApprovalRule,
    RuleConditions,
    SequentialApprover,
)
from expense_kernel.domain.clock import Clock
from expense_kernel.exceptions import CompanyNotFoundError, InvalidRuleError
from expense_kernel.logging_config import get_logger
from expense_kernel.models.company import CompanyModel
from expense_kernel.models.user import UserModel
from expense_kernel.services.rule_service import ApprovalRuleService

logger = get_logger("services.rule_seeding")


def _email_index(session: Session, company_id: UUID) -> dict[str, UUID]:
    rows = session.execute(
        select(UserModel.email, UserModel.id).where(UserModel.company_id == company_id)
    )
    return {email.lower(): user_id for email, user_id in rows}


def _resolve(definition: RuleDefinition, emails: dict[str, UUID], email: str) -> UUID:
    try:
        return emails[email.lower()]
    except KeyError:
        raise InvalidRuleError(definition.name, f"unknown approver email {email}") from None


def conditions_for(definition: RuleDefinition, emails: dict[str, UUID]) -> RuleConditions:
    """Rule conditions with approver emails resolved to user ids."""
    return RuleConditions(
        percentage=definition.percentage,
        specific_approvers=tuple(
            _resolve(definition, emails, e) for e in definition.specific_approvers
        ),
        sequential=tuple(
            SequentialApprover(
                approver_id=_resolve(definition, emails, s.email),
                sequence=s.sequence,
                is_required=s.is_required,
            )
            for s in definition.sequential
        ),
    )


def seed_company_rules(
    session: Session,
    company_id: UUID,
    actor_id: UUID,
    definitions: tuple[RuleDefinition, ...],
    clock: Clock | None = None,
) -> list[ApprovalRule]:
    """Create one active rule per definition, in file order."""
    if session.get(CompanyModel, company_id) is None:
        raise CompanyNotFoundError(str(company_id))

    emails = _email_index(session, company_id)
    service = ApprovalRuleService(session, clock)
    created = []
    for definition in definitions:
        created.append(service.create_rule(
            company_id,
            actor_id,
            definition.name,
            definition.rule_type,
            conditions_for(definition, emails),
            amount_threshold=AmountThreshold(definition.min_amount, definition.max_amount),
            category_filter=definition.categories,
            priority=definition.priority,
            description=definition.description,
        ))
    logger.info(
        "company_rules_seeded",
        extra={"company_id": str(company_id), "rule_count": len(created)},
    )
    return created


def seed_from_config(
    session: Session,
    config: WorkflowConfig,
    company_id: UUID,
    actor_id: UUID,
    clock: Clock | None = None,
) -> list[ApprovalRule]:
    """Seed the rules configured for the company's name."""
    company = session.get(CompanyModel, company_id)
    if company is None:
        raise CompanyNotFoundError(str(company_id))
    return seed_company_rules(
        session, company_id, actor_id, config.rules_for(company.name), clock,
    )
