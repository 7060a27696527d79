"""
Module: ledger_kernel.models.tax_rate
Responsibility: Date-effective tax rates, either global defaults
    (tenant_id NULL) or tenant overrides.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - valid_to > valid_from when valid_to is set (CHECK constraint).
    - Rates are never deleted; the only permitted update is closing an
      open interval by setting valid_to (db/immutability.py).
    - At most one rate per (jurisdiction, category, tenant scope) is active
      on any date (TaxRateService.add_rate, serialized on TaxRateScope).
    - rate fits Numeric(9, 4) and is not negative.

Not a TenantScopedMixin model: global rows have no tenant, so lookups
filter on tenant_id explicitly.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, Date, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base, TrackedBase, UUIDString
from ledger_kernel.db.types import ExactNumeric

RATE_PRECISION = 9
RATE_SCALE = 4

GLOBAL_SCOPE = "global"


class TaxRate(TrackedBase):
    """
    A tax rate valid over the half-open interval [valid_from, valid_to).

    rate is a percentage: 22.00 means 22 %.  account_code names the account,
    in the tenant's chart, that collects the tax.
    """

    __tablename__ = "tax_rates"
    __table_args__ = (
        Index("idx_tax_rate_lookup", "jurisdiction", "category", "valid_from"),
        Index("idx_tax_rate_tenant", "tenant_id"),
        CheckConstraint(
            "valid_to IS NULL OR valid_to > valid_from",
            name="ck_tax_rate_interval",
        ),
        CheckConstraint("rate >= 0", name="ck_tax_rate_non_negative"),
    )

    tenant_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("tenants.id"),
        nullable=True,
    )

    jurisdiction: Mapped[str] = mapped_column(String(10), nullable=False)

    category: Mapped[str] = mapped_column(String(50), nullable=False)

    name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    rate: Mapped[Decimal] = mapped_column(ExactNumeric(RATE_PRECISION, RATE_SCALE), nullable=False)

    valid_from: Mapped[date] = mapped_column(Date, nullable=False)

    valid_to: Mapped[date | None] = mapped_column(Date, nullable=True)

    account_code: Mapped[str | None] = mapped_column(String(50), nullable=True)

    def __repr__(self) -> str:
        scope = self.tenant_id or "global"
        return (
            f"<TaxRate {self.jurisdiction}/{self.category} {self.rate}% "
            f"[{self.valid_from}, {self.valid_to}) {scope}>"
        )

    @property
    def is_global(self) -> bool:
        return self.tenant_id is None

    def covers(self, on_date: date) -> bool:
        """True when ``on_date`` falls inside [valid_from, valid_to)."""
        if on_date < self.valid_from:
            return False
        return self.valid_to is None or on_date < self.valid_to

    def overlaps(self, valid_from: date, valid_to: date | None) -> bool:
        """True when [valid_from, valid_to) intersects this rate's interval."""
        starts_before_other_ends = valid_to is None or self.valid_from < valid_to
        ends_after_other_starts = self.valid_to is None or valid_from < self.valid_to
        return starts_before_other_ends and ends_after_other_starts


class TaxRateScope(Base):
    """
    Lock row of one (jurisdiction, category, scope).

    scope is the tenant id of an override, or GLOBAL_SCOPE.  Writers lock
    this row before checking for overlaps, so two inserts into one scope
    run one after the other.
    """

    __tablename__ = "tax_rate_scopes"
    __table_args__ = (
        UniqueConstraint("jurisdiction", "category", "scope", name="uq_tax_rate_scope"),
    )

    jurisdiction: Mapped[str] = mapped_column(String(10), nullable=False)

    category: Mapped[str] = mapped_column(String(50), nullable=False)

    scope: Mapped[str] = mapped_column(String(36), nullable=False)

    @classmethod
    def key_for(cls, tenant_id: UUID | None) -> str:
        return str(tenant_id) if tenant_id is not None else GLOBAL_SCOPE
