"""
DTOs -- immutable data crossing the ledger boundary.

Responsibility:
    Request shapes accepted by the journal engine (``LineRequest``,
    ``SourceRef``) and read-side records returned instead of ORM objects
    (``JournalEntryRecord``, ``JournalLineRecord``, ``AccountRecord``,
    ``TaxComputation``).

Architecture position:
    Kernel > Domain -- pure, zero I/O.  ``from_model()`` converters are only
    called from services and selectors.

Invariants enforced:
    - Records are frozen; a caller can never mutate ledger state through one.
    - Request objects are not validated here.  JournalWriter validates every
      line and reports the offending line index.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from ledger_kernel.db.types import exact_sum

if TYPE_CHECKING:
    from ledger_kernel.models.account import Account as AccountModel
    from ledger_kernel.models.journal import JournalEntry as JournalEntryModel
    from ledger_kernel.models.journal import JournalLine as JournalLineModel


class LineSide(str, Enum):
    """Which side of the entry a line is on."""

    DEBIT = "debit"
    CREDIT = "credit"


@dataclass(frozen=True)
class SourceRef:
    """Originating document of an entry, e.g. ``SourceRef("INVOICE", "INV-42")``."""

    source_type: str
    source_id: str


@dataclass(frozen=True)
class LineRequest:
    """
    One requested journal line.

    ``account`` is an account code or an account id.  ``currency`` defaults
    to the tenant base currency and ``exchange_rate`` to 1 for base-currency
    lines.  ``amount`` must be positive; ``side`` says which column it lands in.
    """

    account: str | UUID
    side: LineSide | str
    amount: Decimal | int | str
    currency: str | None = None
    exchange_rate: Decimal | int | str | None = None
    description: str | None = None

    @classmethod
    def debit(cls, account: str | UUID, amount, **kwargs) -> LineRequest:
        return cls(account=account, side=LineSide.DEBIT, amount=amount, **kwargs)

    @classmethod
    def credit(cls, account: str | UUID, amount, **kwargs) -> LineRequest:
        return cls(account=account, side=LineSide.CREDIT, amount=amount, **kwargs)


@dataclass(frozen=True)
class JournalLineRecord:
    id: UUID
    line_seq: int
    account_id: UUID
    account_code: str | None
    description: str | None
    debit_amount: Decimal
    credit_amount: Decimal
    currency: str
    exchange_rate: Decimal
    base_debit: Decimal
    base_credit: Decimal

    @property
    def side(self) -> LineSide:
        return LineSide.DEBIT if self.debit_amount > 0 else LineSide.CREDIT

    @classmethod
    def from_model(cls, line: JournalLineModel) -> JournalLineRecord:
        return cls(
            id=line.id,
            line_seq=line.line_seq,
            account_id=line.account_id,
            account_code=line.account.code if line.account is not None else None,
            description=line.description,
            debit_amount=Decimal(line.debit_amount),
            credit_amount=Decimal(line.credit_amount),
            currency=line.currency,
            exchange_rate=Decimal(line.exchange_rate),
            base_debit=Decimal(line.base_debit),
            base_credit=Decimal(line.base_credit),
        )


@dataclass(frozen=True)
class JournalEntryRecord:
    """Read-only snapshot of a journal entry and its lines."""

    id: UUID
    tenant_id: UUID
    status: str
    entry_seq: int | None
    entry_number: str | None
    entry_date: date
    description: str
    reference: str | None
    source_type: str | None
    source_id: str | None
    posted_at: datetime | None
    posted_by_id: UUID | None
    voided_at: datetime | None
    voided_by_id: UUID | None
    void_reason: str | None
    reversal_of_id: UUID | None
    created_by_id: UUID
    lines: tuple[JournalLineRecord, ...]

    @property
    def total_base_debits(self) -> Decimal:
        return exact_sum(line.base_debit for line in self.lines)

    @property
    def total_base_credits(self) -> Decimal:
        return exact_sum(line.base_credit for line in self.lines)

    @classmethod
    def from_model(cls, entry: JournalEntryModel) -> JournalEntryRecord:
        return cls(
            id=entry.id,
            tenant_id=entry.tenant_id,
            status=getattr(entry.status, "value", entry.status),
            entry_seq=entry.entry_seq,
            entry_number=entry.entry_number,
            entry_date=entry.entry_date,
            description=entry.description,
            reference=entry.reference,
            source_type=entry.source_type,
            source_id=entry.source_id,
            posted_at=entry.posted_at,
            posted_by_id=entry.posted_by_id,
            voided_at=entry.voided_at,
            voided_by_id=entry.voided_by_id,
            void_reason=entry.void_reason,
            reversal_of_id=entry.reversal_of_id,
            created_by_id=entry.created_by_id,
            lines=tuple(JournalLineRecord.from_model(line) for line in entry.lines),
        )


@dataclass(frozen=True)
class AccountRecord:
    id: UUID
    code: str
    name: str
    account_type: str
    normal_balance: str
    parent_id: UUID | None
    is_active: bool
    is_system: bool
    description: str | None

    @classmethod
    def from_model(cls, account: AccountModel) -> AccountRecord:
        return cls(
            id=account.id,
            code=account.code,
            name=account.name,
            account_type=getattr(account.account_type, "value", account.account_type),
            normal_balance=account.normal_balance.value,
            parent_id=account.parent_id,
            is_active=account.is_active,
            is_system=account.is_system,
            description=account.description,
        )


@dataclass(frozen=True)
class TaxComputation:
    """
    Tax on a base amount at the rate in force on a date.

    ``rate`` is the percentage callers freeze into their journal lines;
    ``tax_amount`` is rounded half away from zero to the currency's minor unit.
    """

    rate_id: UUID
    jurisdiction: str
    category: str
    on_date: date
    rate: Decimal
    base_amount: Decimal
    tax_amount: Decimal
    currency: str
    account_code: str | None
