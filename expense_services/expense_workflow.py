"""
expense_services.expense_workflow -- Expense submission and decisions.

Responsibility:
    The imperative shell around the pure approval engine.  Submits expenses
    (validation, conversion, rule selection, sequence construction), records
    approver decisions one at a time or in bulk, applies administrative
    overrides and owner cancellations.

Architecture position:
    Services layer.  May import from expense_engines/ (pure engines),
    expense_kernel/ (domain, models, selectors, services) and
    expense_config/.  Thin coordinator: no approval logic lives here.

Invariants enforced:
    - Every mutation of an expense first advances ``version`` with a
      compare-and-swap UPDATE.  A zero row count raises
      DecisionConflictError before any other row is touched.
    - On PostgreSQL the expense row is also read ``FOR UPDATE``.
    - ``check_expense_invariants`` runs on the projected snapshot before
      anything is written.
    - Every state change writes audit rows in the same transaction.
    - Notifications go out after the state change and never fail it.

Failure modes:
    - ExpenseValidationError, NotFoundError subclasses, AuthorizationError
      subclasses, InvalidExpenseStateError subclasses and
      RuleRepositoryError propagate unchanged.  The caller's transaction
      boundary (``session_scope``) rolls back.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

from expense_config import WorkflowConfig, get_active_config
from expense_engines.approval import (
    apply_override,
    build_sequence,
    default_sequence,
    evaluate_decision,
    initial_current_approver,
    next_pending_step,
    select_matching_rule,
)
from expense_kernel.domain.approval import (
    ApprovalAction,
    ApprovalRule,
    ApprovalStep,
    BulkDecisionResult,
    DecisionOutcome,
    ExpenseSnapshot,
    ExpenseStatus,
    Notification,
    NotificationKind,
    OverrideAction,
    UserInfo,
    UserRole,
)
from expense_kernel.domain.clock import Clock, SystemClock
from expense_kernel.domain.submission import ExpenseSubmission, validate_comments
from expense_kernel.exceptions import (
    CompanyNotFoundError,
    DecisionConflictError,
    ExpenseKernelError,
    ExpenseNotFoundError,
    ExpenseNotPendingError,
    ExpenseValidationError,
    InsufficientRoleError,
    RuleRepositoryError,
    UserNotFoundError,
)
from expense_kernel.invariants import check_expense_invariants
from expense_kernel.logging_config import LogContext, get_logger
from expense_kernel.models.audit_event import AuditAction
from expense_kernel.models.company import CompanyModel
from expense_kernel.models.expense import ApprovalStepModel, ExpenseModel
from expense_kernel.services.auditor_service import AuditorService
from expense_kernel.services.base import BaseService
from expense_kernel.services.rule_repository import SqlRuleRepository
from expense_kernel.services.user_directory import SqlUserDirectory
from expense_services.budget import BudgetService
from expense_services.currency import StaticRateConverter
from expense_services.notifications import (
    LoggingNotifier,
    expense_details,
    notify_safely,
)

logger = get_logger("services.expense_workflow")

TRACE_TYPE_EXPENSE_WORKFLOW = "EXPENSE_WORKFLOW"
OUTCOME_SUCCESS = "success"
OUTCOME_SKIPPED = "skipped"
OUTCOME_ERROR = "error"

_FINAL_NOTIFICATION = {
    ExpenseStatus.APPROVED: NotificationKind.EXPENSE_APPROVED,
    ExpenseStatus.REJECTED: NotificationKind.EXPENSE_REJECTED,
}


def _emit_workflow_trace(
    operation: str,
    expense_id: UUID,
    from_status: str,
    to_status: str,
    outcome: str,
    duration_ms: float,
    **fields: Any,
) -> None:
    """Structured record of one workflow operation for traceability."""
    record: dict[str, Any] = {
        "trace_type": TRACE_TYPE_EXPENSE_WORKFLOW,
        "operation": operation,
        "traced_expense_id": str(expense_id),
        "from_status": from_status,
        "to_status": to_status,
        "outcome": outcome,
        "duration_ms": round(duration_ms, 3),
    }
    record.update(fields)
    logger.info("expense_workflow_trace", extra=record)


@dataclass(frozen=True)
class DecisionReceipt:
    """What ``record_decision`` did: the updated expense and the engine outcome."""

    expense: ExpenseSnapshot
    outcome: DecisionOutcome

    @property
    def status(self) -> ExpenseStatus:
        return self.expense.status

    @property
    def touched_step(self) -> ApprovalStep | None:
        return self.outcome.touched_step


class ExpenseWorkflowService(BaseService):
    """
    Orchestrates the expense lifecycle.

    Collaborators default to the SQL-backed implementations over the same
    session; tests inject doubles through the constructor.

    Non-goals:
        - Does NOT call ``session.commit()``.  Callers wrap each operation
          in ``session_scope()`` (or their own transaction).
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: WorkflowConfig | None = None,
        rules=None,
        users=None,
        notifier=None,
        converter=None,
        auditor: AuditorService | None = None,
        budget: BudgetService | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._config = config or get_active_config()
        self._rules = rules or SqlRuleRepository(session)
        self._users = users or SqlUserDirectory(session)
        self._notifier = notifier if notifier is not None else LoggingNotifier()
        self._converter = converter or StaticRateConverter.from_config(self._config)
        self._auditor = auditor or AuditorService(session, self._clock)
        self._budget = budget or BudgetService(
            session,
            clock=self._clock,
            notifier=self._notifier,
            auditor=self._auditor,
            default_threshold=self._config.default_budget_alert_threshold,
        )

    # =====================================================================
    # Submission
    # =====================================================================

    def submit_expense(self, submission: ExpenseSubmission) -> ExpenseSnapshot:
        """
        Validate, convert and persist a new pending expense with its
        approval sequence.

        Raises:
            ExpenseValidationError: Malformed submission.
            UserNotFoundError: Employee unknown, inactive or in another company.
            CompanyNotFoundError: Company unknown.
            CurrencyConversionError: No rate into the company currency.
        """
        start = time.monotonic()
        with LogContext.bind(
            actor_id=str(submission.employee_id),
            company_id=str(submission.company_id),
        ):
            submission.validate(self._clock.today())

            company = self.session.get(CompanyModel, submission.company_id)
            if company is None:
                raise CompanyNotFoundError(str(submission.company_id))
            employee = self._users.get_user(submission.employee_id)
            if employee.company_id != submission.company_id or not employee.is_active:
                raise UserNotFoundError(str(submission.employee_id))

            amount = Decimal(str(submission.amount))
            converted, rate = self._converter.convert(
                amount, submission.currency, company.base_currency,
            )

            rule, steps = self._resolve_sequence(employee, converted, submission.category)
            now = self._clock.now()

            model = ExpenseModel(
                company_id=submission.company_id,
                employee_id=submission.employee_id,
                amount=amount,
                currency=submission.currency,
                amount_in_company_currency=converted,
                exchange_rate=rate,
                category=submission.category.strip(),
                expense_date=submission.expense_date,
                description=submission.description.strip(),
                receipt_url=submission.receipt_url,
                status=ExpenseStatus.PENDING.value,
                current_approver_id=initial_current_approver(steps),
                matched_rule_id=rule.rule_id if rule is not None else None,
                submitted_at=now,
                version=1,
                steps=[ApprovalStepModel.from_dto(s) for s in steps],
            )
            check_expense_invariants(model.to_dto())
            self.session.add(model)
            self.session.flush()
            snapshot = model.to_dto()

            with LogContext.bind(expense_id=str(snapshot.expense_id)):
                self._auditor.record_expense(
                    snapshot.expense_id,
                    AuditAction.EXPENSE_SUBMITTED,
                    submission.employee_id,
                    {
                        "amount": snapshot.amount,
                        "currency": snapshot.currency,
                        "amount_in_company_currency": converted,
                        "exchange_rate": rate,
                        "category": snapshot.category,
                        "matched_rule_id": snapshot.matched_rule_id,
                        "steps": len(steps),
                    },
                )
                logger.info(
                    "expense_submitted",
                    extra={
                        "amount": str(snapshot.amount),
                        "currency": snapshot.currency,
                        "amount_in_company_currency": str(converted),
                        "matched_rule_id": (
                            str(rule.rule_id) if rule is not None else None
                        ),
                        "step_count": len(steps),
                    },
                )
                if not steps:
                    logger.warning("expense_needs_manual_intervention")

                self._notify_assignment(snapshot)
                self._check_budget(submission.employee_id)

                _emit_workflow_trace(
                    "submit", snapshot.expense_id, "none", snapshot.status.value,
                    OUTCOME_SUCCESS, (time.monotonic() - start) * 1000,
                )
            return snapshot

    def _resolve_sequence(
        self,
        employee: UserInfo,
        amount: Decimal,
        category: str,
    ) -> tuple[ApprovalRule | None, tuple[ApprovalStep, ...]]:
        try:
            # A failed query must not abort the enclosing transaction
            with self.session.begin_nested():
                rules = self._rules.find_active_rules(employee.company_id)
        except RuleRepositoryError as exc:
            logger.warning(
                "rule_lookup_failed_using_default",
                extra={"error_code": exc.code, "error": str(exc)},
            )
            rules = ()

        rule = select_matching_rule(rules, amount=amount, category=category.strip())
        if rule is not None:
            steps = build_sequence(rule)
            if steps:
                return rule, steps
        return None, default_sequence(self._default_approver(employee))

    def _default_approver(self, employee: UserInfo) -> UUID | None:
        """
        Direct manager when flagged as an approver, else the first active
        manager approver, else the first active admin.  Never the claimant.
        """
        if employee.manager_id is not None and employee.manager_id != employee.user_id:
            try:
                manager = self._users.get_user(employee.manager_id)
            except UserNotFoundError:
                manager = None
            if manager is not None and manager.is_active and manager.is_manager_approver:
                return manager.user_id

        fallback = self._users.find_first_active(
            employee.company_id, UserRole.MANAGER,
            approver_only=True, exclude_id=employee.user_id,
        )
        if fallback is None:
            fallback = self._users.find_first_active(
                employee.company_id, UserRole.ADMIN, exclude_id=employee.user_id,
            )
        return fallback.user_id if fallback is not None else None

    def _check_budget(self, employee_id: UUID) -> None:
        try:
            self._budget.check_after_submission(employee_id)
        except ExpenseKernelError as exc:
            logger.warning(
                "budget_check_failed",
                extra={"error_code": exc.code, "error": str(exc)},
            )

    # =====================================================================
    # Decisions
    # =====================================================================

    def record_decision(
        self,
        expense_id: UUID,
        actor_id: UUID,
        action: ApprovalAction,
        comments: str | None = None,
        company_id: UUID | None = None,
    ) -> DecisionReceipt:
        """
        Apply one approver's decision.

        Raises:
            ExpenseValidationError: Unknown action or comments too long.
            ExpenseNotFoundError: Unknown expense or outside ``company_id``.
            ExpenseNotPendingError: Expense already finalized or cancelled.
            NotCurrentApproverError: Actor has no actionable step.
            DecisionConflictError: A concurrent writer won the race.
            RuleRepositoryError: Company rules could not be read.
        """
        start = time.monotonic()
        action = _coerce(ApprovalAction, action, "action")
        validate_comments(comments)

        with LogContext.bind(actor_id=str(actor_id), expense_id=str(expense_id)):
            model = self._load_for_update(expense_id, company_id)
            expense = model.to_dto()
            if expense.status != ExpenseStatus.PENDING:
                raise ExpenseNotPendingError(str(expense_id), expense.status.value)

            company_rules = self._rules.find_active_rules(expense.company_id)
            outcome = evaluate_decision(
                expense=expense,
                actor_id=actor_id,
                action=action,
                decided_at=self._clock.now(),
                comments=comments,
                company_rules=company_rules,
                eligible_pool=self._pool_for(expense),
                fallback_threshold=self._config.fallback_threshold,
                insufficient_comment=self._config.insufficient_approvals_comment,
            )

            updated = self._write_outcome(model, expense, outcome)

            step_action = (
                AuditAction.STEP_APPROVED if action == ApprovalAction.APPROVE
                else AuditAction.STEP_REJECTED
            )
            touched = outcome.touched_step
            self._auditor.record_expense(
                expense_id, step_action, actor_id,
                {
                    "sequence": touched.sequence if touched else None,
                    "comments": comments,
                    "version": updated.version,
                },
            )
            logger.info(
                "decision_recorded",
                extra={
                    "decision": action.value,
                    "sequence": touched.sequence if touched else None,
                    "outcome_reason": outcome.reason.value,
                    "new_status": updated.status.value,
                },
            )
            if outcome.is_final:
                self._record_final(updated, actor_id, outcome)
                self._notify_final(updated, actor_id)
            else:
                self._notify_assignment(updated)

            _emit_workflow_trace(
                "decide", expense_id, expense.status.value, updated.status.value,
                OUTCOME_SUCCESS, (time.monotonic() - start) * 1000,
                reason=outcome.reason.value,
            )
            return DecisionReceipt(expense=updated, outcome=outcome)

    def bulk_decide(
        self,
        expense_ids: Iterable[UUID],
        actor_id: UUID,
        action: ApprovalAction,
        comments: str | None = None,
        company_id: UUID | None = None,
    ) -> list[BulkDecisionResult]:
        """
        Apply the same decision to many expenses, each evaluated exactly as
        a single ``record_decision`` would.  Per-expense failures are
        reported, never raised; already-finalized expenses are skipped.
        """
        results: list[BulkDecisionResult] = []
        seen: set[UUID] = set()
        for expense_id in expense_ids:
            if expense_id in seen:
                continue
            seen.add(expense_id)
            try:
                # One savepoint per expense: a failure never poisons the rest
                with self.session.begin_nested():
                    receipt = self.record_decision(
                        expense_id, actor_id, action, comments, company_id,
                    )
            except ExpenseNotPendingError as exc:
                results.append(BulkDecisionResult(
                    expense_id=expense_id,
                    outcome=OUTCOME_SKIPPED,
                    status=ExpenseStatus(exc.status),
                    error_code=exc.code,
                    reason=str(exc),
                ))
            except ExpenseKernelError as exc:
                results.append(BulkDecisionResult(
                    expense_id=expense_id,
                    outcome=OUTCOME_ERROR,
                    error_code=exc.code,
                    reason=str(exc),
                ))
            else:
                results.append(BulkDecisionResult(
                    expense_id=expense_id,
                    outcome=OUTCOME_SUCCESS,
                    status=receipt.status,
                ))

        logger.info(
            "bulk_decision_completed",
            extra={
                "decision": str(getattr(action, "value", action)),
                "requested": len(results),
                "succeeded": sum(1 for r in results if r.outcome == OUTCOME_SUCCESS),
                "skipped": sum(1 for r in results if r.outcome == OUTCOME_SKIPPED),
                "failed": sum(1 for r in results if r.outcome == OUTCOME_ERROR),
            },
        )
        return results

    # =====================================================================
    # Override and cancellation
    # =====================================================================

    def override(
        self,
        expense_id: UUID,
        admin_id: UUID,
        action: OverrideAction,
        comments: str | None = None,
        company_id: UUID | None = None,
    ) -> ExpenseSnapshot:
        """
        Force a pending expense to approved or rejected.  Admins only.

        Raises:
            InsufficientRoleError: The actor is not an active admin.
            ExpenseNotFoundError: Unknown expense or in another company.
            ExpenseNotPendingError: Expense already finalized or cancelled.
            DecisionConflictError: A concurrent writer won the race.
        """
        start = time.monotonic()
        action = _coerce(OverrideAction, action, "action")
        validate_comments(comments)

        with LogContext.bind(actor_id=str(admin_id), expense_id=str(expense_id)):
            admin = self._users.get_user(admin_id)
            if admin.role != UserRole.ADMIN or not admin.is_active:
                raise InsufficientRoleError(str(admin_id), "override", UserRole.ADMIN.value)

            model = self._load_for_update(expense_id, company_id or admin.company_id)
            expense = model.to_dto()
            outcome = apply_override(
                expense=expense,
                admin_id=admin_id,
                action=action,
                decided_at=self._clock.now(),
                comments=comments,
            )
            updated = self._write_outcome(model, expense, outcome)

            overridden = [
                s.sequence for before, s in zip(expense.approval_sequence, outcome.steps)
                if before.is_pending
            ]
            self._auditor.record_expense(
                expense_id, AuditAction.EXPENSE_OVERRIDDEN, admin_id,
                {
                    "decision": updated.status.value,
                    "overridden_steps": overridden,
                    "comments": updated.final_approval.final_comments,
                    "version": updated.version,
                },
            )
            logger.warning(
                "expense_overridden",
                extra={
                    "decision": updated.status.value,
                    "overridden_steps": overridden,
                },
            )
            notify_safely(self._notifier, Notification(
                kind=NotificationKind.EXPENSE_OVERRIDDEN,
                recipient_id=updated.employee_id,
                expense_id=expense_id,
                actor_id=admin_id,
                action=action.value,
                status=updated.status,
                details=expense_details(updated, updated.final_approval.final_comments),
            ))

            _emit_workflow_trace(
                "override", expense_id, expense.status.value, updated.status.value,
                OUTCOME_SUCCESS, (time.monotonic() - start) * 1000,
            )
            return updated

    def cancel_expense(self, expense_id: UUID, employee_id: UUID) -> ExpenseSnapshot:
        """
        Withdraw a pending expense.  Only the submitting employee may.

        Raises:
            ExpenseNotFoundError: Unknown expense.
            InsufficientRoleError: The actor did not submit the expense.
            ExpenseNotPendingError: Expense already finalized or cancelled.
        """
        with LogContext.bind(actor_id=str(employee_id), expense_id=str(expense_id)):
            model = self._load_for_update(expense_id)
            expense = model.to_dto()
            if expense.employee_id != employee_id:
                raise InsufficientRoleError(str(employee_id), "cancel", "expense owner")
            if expense.status != ExpenseStatus.PENDING:
                raise ExpenseNotPendingError(str(expense_id), expense.status.value)

            previous_approver = expense.current_approver_id
            projected = replace(
                expense,
                status=ExpenseStatus.CANCELLED,
                current_approver_id=None,
                version=expense.version + 1,
            )
            check_expense_invariants(projected)

            self._claim(model, expense.version)
            model.status = ExpenseStatus.CANCELLED.value
            model.current_approver_id = None
            model.cancelled_at = self._clock.now()
            self.session.flush()
            updated = model.to_dto()

            self._auditor.record_expense(
                expense_id, AuditAction.EXPENSE_CANCELLED, employee_id,
                {"version": updated.version},
            )
            logger.info("expense_cancelled")
            if previous_approver is not None:
                notify_safely(self._notifier, Notification(
                    kind=NotificationKind.EXPENSE_CANCELLED,
                    recipient_id=previous_approver,
                    expense_id=expense_id,
                    actor_id=employee_id,
                    status=ExpenseStatus.CANCELLED,
                    details=expense_details(updated),
                ))
            return updated

    # =====================================================================
    # Persistence helpers
    # =====================================================================

    def _load_for_update(
        self,
        expense_id: UUID,
        company_id: UUID | None = None,
    ) -> ExpenseModel:
        stmt = (
            select(ExpenseModel)
            .where(ExpenseModel.id == expense_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        model = self.session.execute(stmt).scalars().first()
        if model is None or (company_id is not None and model.company_id != company_id):
            raise ExpenseNotFoundError(str(expense_id))
        return model

    def _claim(self, model: ExpenseModel, expected_version: int) -> None:
        """
        Compare-and-swap the version.  Exactly one writer of a given
        version gets a row back.
        """
        result = self.session.execute(
            update(ExpenseModel)
            .where(
                ExpenseModel.id == model.id,
                ExpenseModel.version == expected_version,
            )
            .values(version=expected_version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(
                "decision_conflict",
                extra={"expected_version": expected_version},
            )
            raise DecisionConflictError(str(model.id), expected_version)
        set_committed_value(model, "version", expected_version + 1)

    def _write_outcome(
        self,
        model: ExpenseModel,
        expense: ExpenseSnapshot,
        outcome: DecisionOutcome,
    ) -> ExpenseSnapshot:
        projected = replace(
            expense,
            status=outcome.status,
            approval_sequence=outcome.steps,
            current_approver_id=outcome.current_approver_id,
            final_approval=outcome.final_approval,
            version=expense.version + 1,
        )
        check_expense_invariants(projected)

        self._claim(model, expense.version)

        rows = {row.sequence: row for row in model.steps}
        for before, after in zip(expense.approval_sequence, outcome.steps):
            if before != after:
                rows[after.sequence].apply(after)

        model.status = outcome.status.value
        model.current_approver_id = outcome.current_approver_id
        final = outcome.final_approval
        if final is not None:
            model.final_decision = final.decision.value
            model.final_decided_by_id = final.decided_by_id
            model.final_decided_at = final.decided_at
            model.final_comments = final.final_comments
        self.session.flush()
        return model.to_dto()

    def _pool_for(self, expense: ExpenseSnapshot) -> frozenset[UUID]:
        step = next_pending_step(expense.approval_sequence)
        if step is None or not step.is_dynamic:
            return frozenset()
        return self._users.eligible_pool(
            expense.company_id,
            self._config.dynamic_pool_roles,
            approver_only=self._config.pool_requires_approver_flag,
            exclude_id=expense.employee_id,
        )

    def _record_final(
        self,
        expense: ExpenseSnapshot,
        actor_id: UUID,
        outcome: DecisionOutcome,
    ) -> None:
        final_action = (
            AuditAction.EXPENSE_APPROVED if expense.status == ExpenseStatus.APPROVED
            else AuditAction.EXPENSE_REJECTED
        )
        self._auditor.record_expense(
            expense.expense_id, final_action, actor_id,
            {
                "reason": outcome.reason.value,
                "final_comments": expense.final_approval.final_comments,
            },
        )
        logger.info(
            "expense_finalized",
            extra={
                "final_status": expense.status.value,
                "outcome_reason": outcome.reason.value,
            },
        )

    # =====================================================================
    # Notifications
    # =====================================================================

    def _notify_assignment(self, expense: ExpenseSnapshot) -> None:
        step = next_pending_step(expense.approval_sequence)
        if step is None:
            return
        if step.is_dynamic:
            recipients = sorted(self._pool_for(expense), key=str)
        elif expense.current_approver_id is not None:
            recipients = [expense.current_approver_id]
        else:
            recipients = []
        for recipient in recipients:
            notify_safely(self._notifier, Notification(
                kind=NotificationKind.STEP_ASSIGNED,
                recipient_id=recipient,
                expense_id=expense.expense_id,
                actor_id=expense.employee_id,
                details=expense_details(expense),
            ))

    def _notify_final(self, expense: ExpenseSnapshot, actor_id: UUID) -> None:
        notify_safely(self._notifier, Notification(
            kind=_FINAL_NOTIFICATION[expense.status],
            recipient_id=expense.employee_id,
            expense_id=expense.expense_id,
            actor_id=actor_id,
            action=expense.status.value,
            status=expense.status,
            details=expense_details(expense, expense.final_approval.final_comments),
        ))


def _coerce(enum_type, value, field_name: str):
    try:
        return enum_type(value)
    except ValueError:
        raise ExpenseValidationError(field_name, f"unknown value {value!r}") from None
