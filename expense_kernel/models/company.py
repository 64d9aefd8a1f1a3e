"""
Module: expense_kernel.models.company
Responsibility: ORM persistence for the tenant that owns users, rules and
    expenses.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - base_currency is the currency every amount threshold and budget is
      expressed in.  It is not changed once expenses exist (not enforced
      at the ORM level; rule thresholds would silently change meaning).
"""

from datetime import datetime

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from expense_kernel.db.base import Base


class CompanyModel(Base):
    """A company (tenant)."""

    __tablename__ = "companies"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    country: Mapped[str | None] = mapped_column(String(100), nullable=True)
    base_currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<Company {self.name} ({self.base_currency})>"
