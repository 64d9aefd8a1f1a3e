"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every writing service in the kernel layer.  Concrete services receive
    a SQLAlchemy ``Session`` that they use via ``session.flush()`` --
    never ``session.commit()``.

Invariants enforced:
    Transaction boundaries: services flush within the caller's transaction
    and never commit or rollback themselves.  The caller (request handler,
    ``session_scope()``, or test harness) owns commit/rollback, so a
    decision and its audit rows persist together or not at all.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseService(ABC):
    """
    Abstract base class for kernel services.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide read models -- those belong in
          ``expense_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session
