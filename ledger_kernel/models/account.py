"""
Module: ledger_kernel.models.account
Responsibility: ORM persistence for a tenant's chart of accounts, the
    target of every journal line.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - (tenant_id, code) is unique.
    - account_type never changes after creation (db/immutability.py).
    - code is frozen once the account or any descendant is referenced by a
      journal line (db/immutability.py).
    - The normal balance is derived from account_type, never stored.

Failure modes:
    - ImmutabilityViolationError on a forbidden structural update.
    - AccountReferencedError / SystemAccountProtectedError on deletion of a
      used or system account.
"""

from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import TenantScopedMixin, TrackedBase, UUIDString

if TYPE_CHECKING:
    from ledger_kernel.models.journal import JournalLine


class AccountType(str, Enum):
    """Closed set of account types."""

    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    REVENUE = "revenue"
    EXPENSE = "expense"

    @property
    def normal_balance(self) -> "NormalBalance":
        if self in (AccountType.ASSET, AccountType.EXPENSE):
            return NormalBalance.DEBIT
        return NormalBalance.CREDIT


class NormalBalance(str, Enum):
    """Side on which an account's balance is positive."""

    DEBIT = "debit"
    CREDIT = "credit"


class Account(TenantScopedMixin, TrackedBase):
    """
    One node of a tenant's chart of accounts.

    Contract:
        Deactivated rather than deleted once used.  System accounts (seeded
        with the tenant) are never deleted or deactivated.

    Guarantees:
        - code is unique within the tenant.
        - account_type is one of AccountType.
        - parent_id, when set, names an account of the same tenant.
    """

    __tablename__ = "accounts"
    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_account_tenant_code"),
        Index("idx_account_tenant_type", "tenant_id", "account_type"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    account_type: Mapped[AccountType] = mapped_column(String(20), nullable=False)

    parent_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=True,
    )

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    is_system: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    description: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    parent: Mapped["Account | None"] = relationship(
        remote_side="Account.id",
        back_populates="children",
    )

    children: Mapped[list["Account"]] = relationship(back_populates="parent")

    journal_lines: Mapped[list["JournalLine"]] = relationship(
        back_populates="account",
        lazy="dynamic",
    )

    def __repr__(self) -> str:
        return f"<Account {self.code}: {self.name}>"

    @property
    def normal_balance(self) -> NormalBalance:
        return AccountType(self.account_type).normal_balance

    @property
    def is_debit_normal(self) -> bool:
        return self.normal_balance == NormalBalance.DEBIT
