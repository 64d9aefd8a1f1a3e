"""
SqlUserDirectory -- identity and role lookups for the approval core.

Responsibility:
    Implements the ``UserDirectory`` protocol over ``users``: single user
    lookup, the default-approver search and the eligible pool of a dynamic
    (percentage) step.

Invariants enforced:
    - ``find_first_active`` is deterministic: oldest user first, then id.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from expense_kernel.domain.approval import UserInfo, UserRole
from expense_kernel.exceptions import UserNotFoundError
from expense_kernel.models.user import UserModel


class SqlUserDirectory:
    """User lookups backed by the ORM session."""

    def __init__(self, session: Session):
        self._session = session

    def get_user(self, user_id: UUID) -> UserInfo:
        model = self._session.get(UserModel, user_id)
        if model is None:
            raise UserNotFoundError(str(user_id))
        return model.to_dto()

    def find_first_active(
        self,
        company_id: UUID,
        role: UserRole,
        approver_only: bool = False,
        exclude_id: UUID | None = None,
    ) -> UserInfo | None:
        """
        Oldest active user of ``role``; with ``approver_only`` only flagged
        approvers.  ``exclude_id`` is never returned (the claimant).
        """
        stmt = select(UserModel).where(
            UserModel.company_id == company_id,
            UserModel.role == role.value,
            UserModel.is_active.is_(True),
        )
        if approver_only:
            stmt = stmt.where(UserModel.is_manager_approver.is_(True))
        if exclude_id is not None:
            stmt = stmt.where(UserModel.id != exclude_id)
        stmt = stmt.order_by(UserModel.created_at, UserModel.id).limit(1)

        model = self._session.execute(stmt).scalars().first()
        return model.to_dto() if model is not None else None

    def eligible_pool(
        self,
        company_id: UUID,
        roles: tuple[UserRole, ...],
        approver_only: bool = True,
        exclude_id: UUID | None = None,
    ) -> frozenset[UUID]:
        """
        Users allowed to act on a dynamic step.

        ``approver_only`` restricts managers to those flagged
        ``is_manager_approver``.  Admins are never filtered by the flag.
        ``exclude_id`` (the claimant) is left out.
        """
        if not roles:
            return frozenset()
        stmt = select(UserModel.id, UserModel.role, UserModel.is_manager_approver).where(
            UserModel.company_id == company_id,
            UserModel.role.in_([r.value for r in roles]),
            UserModel.is_active.is_(True),
        )
        pool = set()
        for user_id, role, is_approver in self._session.execute(stmt):
            if approver_only and role == UserRole.MANAGER.value and not is_approver:
                continue
            if user_id == exclude_id:
                continue
            pool.add(user_id)
        return frozenset(pool)
