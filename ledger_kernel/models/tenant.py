"""
Module: ledger_kernel.models.tenant
Responsibility: The tenant registry.  One row per bookkeeping organization
    sharing this process and database.
Architecture position: Kernel > Models.  Not tenant-scoped itself; it is the
    partition key every scoped table refers to.
"""

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase


class Tenant(TrackedBase):
    """
    A tenant (company) whose ledger is isolated from every other tenant.

    Guarantees:
        - slug is globally unique.
        - base_currency is an ISO 4217 code fixed at creation; every base
          amount of the tenant's journal lines is in this currency.
    """

    __tablename__ = "tenants"

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    slug: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    base_currency: Mapped[str] = mapped_column(String(3), nullable=False, default="EUR")

    country_code: Mapped[str] = mapped_column(String(2), nullable=False, default="EE")

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Tenant {self.slug}>"
