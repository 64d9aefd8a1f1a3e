"""
SqlRuleRepository -- read-only rule access for the approval engine.

Responsibility:
    Implements the ``RuleRepository`` protocol over ``approval_rules``.
    The engine never writes rules; ApprovalRuleService does.

Failure modes:
    - RuleRepositoryError wraps any database error or undecodable row, so
      callers can tell a lookup failure apart from "no rule matched".
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from expense_kernel.domain.approval import ApprovalRule
from expense_kernel.exceptions import ApprovalRuleNotFoundError, RuleRepositoryError
from expense_kernel.logging_config import get_logger
from expense_kernel.models.approval_rule import ApprovalRuleModel

logger = get_logger("services.rule_repository")


class SqlRuleRepository:
    """Rule lookups backed by the ORM session."""

    def __init__(self, session: Session):
        self._session = session

    def _active_rules_stmt(self, company_id: UUID):
        return (
            select(ApprovalRuleModel)
            .where(
                ApprovalRuleModel.company_id == company_id,
                ApprovalRuleModel.is_active.is_(True),
            )
            .order_by(ApprovalRuleModel.created_at, ApprovalRuleModel.id)
        )

    def find_active_rules(self, company_id: UUID) -> tuple[ApprovalRule, ...]:
        """Every active rule of the company, oldest first."""
        try:
            models = self._session.execute(
                self._active_rules_stmt(company_id)
            ).scalars().all()
            return tuple(m.to_dto() for m in models)
        except SQLAlchemyError as exc:
            logger.error(
                "rule_lookup_failed",
                extra={"company_id": str(company_id), "error": str(exc)},
            )
            raise RuleRepositoryError(str(company_id), str(exc)) from exc
        except (KeyError, TypeError, ValueError) as exc:
            logger.error(
                "rule_row_undecodable",
                extra={"company_id": str(company_id), "error": str(exc)},
            )
            raise RuleRepositoryError(
                str(company_id), f"undecodable rule row: {exc}",
            ) from exc

    def get_rule(self, rule_id: UUID) -> ApprovalRule:
        """Any rule by id, active or not."""
        model = self._session.get(ApprovalRuleModel, rule_id)
        if model is None:
            raise ApprovalRuleNotFoundError(str(rule_id))
        return model.to_dto()
