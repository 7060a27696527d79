"""
Module: ledger_kernel.models.journal
Responsibility: ORM persistence for journal entries and their lines, the
    single source of financial truth.
Architecture position: Kernel > Models.  May import from db/ and the pure
    domain enums.

Invariants enforced:
    - (tenant_id, entry_seq) and (tenant_id, entry_number) are unique.
      Both stay NULL until the entry is posted.
    - Status moves DRAFT -> POSTED -> VOIDED and never back
      (db/immutability.py, plus PostgreSQL triggers).
    - Once posted, only the void fields may change, and only as the
      POSTED -> VOIDED transition.  Voided entries never change.
    - Each line has exactly one positive side; base_debit/base_credit are
      computed once, when the line is created, and never recomputed.
    - Only JournalWriter flushes these rows (db/immutability.py).

Failure modes:
    - ImmutabilityViolationError on update/delete of a posted or voided
      entry or of its lines.
    - UnauthorizedJournalWriteError on a flush outside the writer.
    - IntegrityError (surfaced as ConcurrentWriteConflictError) on a
      duplicate entry number.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import TenantScopedMixin, TrackedBase, UUIDString
from ledger_kernel.db.types import ExactNumeric, exact_sum
from ledger_kernel.domain.dtos import LineSide

if TYPE_CHECKING:
    from ledger_kernel.models.account import Account


class JournalEntryStatus(str, Enum):
    """Lifecycle status of a journal entry.  Transitions are one-way."""

    DRAFT = "draft"
    POSTED = "posted"
    VOIDED = "voided"


class JournalEntry(TenantScopedMixin, TrackedBase):
    """
    Journal entry header, the atomic unit of double-entry accounting.

    Contract:
        Created as DRAFT with at least one line.  Posting assigns the
        tenant's next entry_seq and the display entry_number.  Voiding never
        edits history: it posts a reversal that points back through
        reversal_of_id and flips this entry to VOIDED.

    Guarantees:
        - Base-currency debits equal credits (checked by JournalWriter).
        - entry_seq is unique per tenant and never reused.
    """

    __tablename__ = "journal_entries"
    __table_args__ = (
        UniqueConstraint("tenant_id", "entry_seq", name="uq_journal_tenant_seq"),
        UniqueConstraint("tenant_id", "entry_number", name="uq_journal_tenant_number"),
        Index("idx_journal_tenant_date", "tenant_id", "entry_date"),
        Index("idx_journal_tenant_status", "tenant_id", "status"),
    )

    entry_seq: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    entry_number: Mapped[str | None] = mapped_column(String(50), nullable=True)

    entry_date: Mapped[date] = mapped_column(Date, nullable=False)

    description: Mapped[str] = mapped_column(String(1000), nullable=False)

    reference: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Originating document, e.g. ("INVOICE", "<invoice id>") or ("VOID", ...)
    source_type: Mapped[str | None] = mapped_column(String(50), nullable=True)

    source_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    status: Mapped[JournalEntryStatus] = mapped_column(
        String(10),
        default=JournalEntryStatus.DRAFT.value,
        nullable=False,
    )

    posted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    posted_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    voided_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    voided_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    void_reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    reversal_of_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=True,
    )

    lines: Mapped[list["JournalLine"]] = relationship(
        back_populates="entry",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="JournalLine.line_seq",
    )

    reversal_of: Mapped["JournalEntry | None"] = relationship(
        remote_side="JournalEntry.id",
        foreign_keys=[reversal_of_id],
    )

    def __repr__(self) -> str:
        label = self.entry_number or self.id
        return f"<JournalEntry {label} status={JournalEntryStatus(self.status).value}>"

    @property
    def is_draft(self) -> bool:
        return self.status == JournalEntryStatus.DRAFT

    @property
    def is_posted(self) -> bool:
        return self.status == JournalEntryStatus.POSTED

    @property
    def is_voided(self) -> bool:
        return self.status == JournalEntryStatus.VOIDED

    @property
    def total_base_debits(self) -> Decimal:
        return exact_sum(line.base_debit for line in self.lines)

    @property
    def total_base_credits(self) -> Decimal:
        return exact_sum(line.base_credit for line in self.lines)

    @property
    def is_balanced(self) -> bool:
        """Read-side convenience; the write-side guard lives in JournalWriter."""
        return self.total_base_debits == self.total_base_credits


class JournalLine(TenantScopedMixin, TrackedBase):
    """
    One debit or credit line of a journal entry.

    Guarantees:
        - Exactly one of debit_amount / credit_amount is positive; the
          other is zero.  The same holds for the base amounts.
        - currency is an ISO 4217 code; exchange_rate converts it to the
          tenant base currency and is 1 for base-currency lines.
    """

    __tablename__ = "journal_lines"
    __table_args__ = (
        Index("idx_line_entry", "journal_entry_id"),
        Index("idx_line_tenant_account", "tenant_id", "account_id"),
        CheckConstraint("debit_amount >= 0 AND credit_amount >= 0", name="ck_line_non_negative"),
        CheckConstraint(
            "(debit_amount > 0 AND credit_amount = 0) OR "
            "(credit_amount > 0 AND debit_amount = 0)",
            name="ck_line_one_side",
        ),
    )

    journal_entry_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id", ondelete="CASCADE"),
        nullable=False,
    )

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=False,
    )

    line_seq: Mapped[int] = mapped_column(Integer, nullable=False)

    description: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    debit_amount: Mapped[Decimal] = mapped_column(
        ExactNumeric(38, 9),
        nullable=False,
        default=Decimal("0"),
    )

    credit_amount: Mapped[Decimal] = mapped_column(
        ExactNumeric(38, 9),
        nullable=False,
        default=Decimal("0"),
    )

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    exchange_rate: Mapped[Decimal] = mapped_column(
        ExactNumeric(38, 18),
        nullable=False,
        default=Decimal("1"),
    )

    base_debit: Mapped[Decimal] = mapped_column(
        ExactNumeric(38, 9),
        nullable=False,
        default=Decimal("0"),
    )

    base_credit: Mapped[Decimal] = mapped_column(
        ExactNumeric(38, 9),
        nullable=False,
        default=Decimal("0"),
    )

    entry: Mapped["JournalEntry"] = relationship(back_populates="lines")

    account: Mapped["Account"] = relationship(back_populates="journal_lines")

    def __repr__(self) -> str:
        return (
            f"<JournalLine {self.line_seq} dr={self.debit_amount} "
            f"cr={self.credit_amount} {self.currency}>"
        )

    @property
    def side(self) -> LineSide:
        return LineSide.DEBIT if self.debit_amount > 0 else LineSide.CREDIT

    @property
    def amount(self) -> Decimal:
        return self.debit_amount if self.debit_amount > 0 else self.credit_amount
