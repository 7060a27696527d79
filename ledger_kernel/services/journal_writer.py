"""
JournalWriter -- the single writer of journal entries and lines.

Responsibility:
    Persists validated drafts, posts drafts (sequence assignment) and voids
    posted entries by posting an exact reversal.  Every flush of
    JournalEntry / JournalLine rows in the kernel happens inside this
    module's ``journal_write_scope``.

Architecture position:
    Kernel > Services.  Called by JournalEngine, which resolves accounts and
    computes base amounts first.  Delegates numbering to SequenceService.

Invariants enforced:
    - Base debits equal base credits exactly and their sum is positive,
      checked when the draft is written and again when it is posted.
    - DRAFT -> POSTED -> VOIDED only.  The entry row is locked
      (SELECT ... FOR UPDATE) before its status is examined.
    - Entry numbers come from the locked per-tenant counter row.
    - A void never edits history: the reversal swaps each line's debit and
      credit (and frozen base amounts), is posted, and only then is the
      original marked VOIDED, all in the caller's transaction.

Failure modes:
    - EmptyEntryError, UnbalancedEntryError: draft does not balance.
    - EntryNotFoundError: unknown id (or another tenant's entry).
    - AlreadyPostedError / AlreadyVoidedError: post of a non-draft.
    - EntryNotPostedError: void of a draft or voided entry.
    - InvalidVoidReasonError: blank void reason.
    - InvalidDateIntervalError: void_date before the original entry date.

Non-goals:
    - Does NOT commit; session_scope() owns the transaction.
    - Does NOT resolve accounts or convert currencies.
"""

from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.config import LedgerConfig, get_active_config
from ledger_kernel.db.immutability import journal_write_scope
from ledger_kernel.db.types import exact_sum
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import SourceRef
from ledger_kernel.exceptions import (
    AlreadyPostedError,
    AlreadyVoidedError,
    EmptyEntryError,
    EntryNotFoundError,
    EntryNotPostedError,
    InvalidDateIntervalError,
    InvalidVoidReasonError,
    UnbalancedEntryError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.journal import JournalEntry, JournalEntryStatus, JournalLine
from ledger_kernel.services.sequence_service import SequenceService

logger = get_logger("services.journal_writer")

VOID_SOURCE_TYPE = "VOID"


@dataclass(frozen=True)
class PreparedLine:
    """A fully validated line: account resolved, base amounts computed."""

    account_id: UUID
    account_code: str
    debit_amount: Decimal
    credit_amount: Decimal
    currency: str
    exchange_rate: Decimal
    base_debit: Decimal
    base_credit: Decimal
    description: str | None = None

    def swapped(self) -> "PreparedLine":
        """The same line on the opposite side, base amounts included."""
        return replace(
            self,
            debit_amount=self.credit_amount,
            credit_amount=self.debit_amount,
            base_debit=self.base_credit,
            base_credit=self.base_debit,
        )

    @classmethod
    def from_model(cls, line: JournalLine) -> "PreparedLine":
        return cls(
            account_id=line.account_id,
            account_code=line.account.code,
            debit_amount=Decimal(line.debit_amount),
            credit_amount=Decimal(line.credit_amount),
            currency=line.currency,
            exchange_rate=Decimal(line.exchange_rate),
            base_debit=Decimal(line.base_debit),
            base_credit=Decimal(line.base_credit),
            description=line.description,
        )


def check_balance(debits: Decimal, credits: Decimal, currency: str) -> None:
    """Exact equality, and a positive total.  No tolerance."""
    if debits != credits or debits <= 0:
        raise UnbalancedEntryError(debits, credits, currency)


class JournalWriter:
    """
    Writes journal rows for the tenant bound to the session.

    Contract:
        ``write_draft()`` persists entry and lines in one flush.
        ``post()`` and ``void()`` return the affected ORM entry.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: LedgerConfig | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config or get_active_config()
        self._sequence_service = SequenceService(session)

    # ------------------------------------------------------------------
    # Draft
    # ------------------------------------------------------------------

    def write_draft(
        self,
        entry_date: date,
        description: str,
        lines: list[PreparedLine],
        base_currency: str,
        actor_id: UUID,
        source_ref: SourceRef | None = None,
        reference: str | None = None,
        reversal_of_id: UUID | None = None,
    ) -> JournalEntry:
        """
        Persist a DRAFT entry with its lines.

        Preconditions:
            Lines are prepared (see JournalEngine.prepare_lines()).

        Raises:
            EmptyEntryError: no lines.
            UnbalancedEntryError: base totals differ or are zero.
        """
        if not lines:
            raise EmptyEntryError()

        debits = exact_sum(line.base_debit for line in lines)
        credits = exact_sum(line.base_credit for line in lines)
        check_balance(debits, credits, base_currency)

        entry = JournalEntry(
            id=uuid4(),
            entry_date=entry_date,
            description=description,
            reference=reference,
            source_type=source_ref.source_type if source_ref else None,
            source_id=source_ref.source_id if source_ref else None,
            status=JournalEntryStatus.DRAFT.value,
            reversal_of_id=reversal_of_id,
            created_by_id=actor_id,
        )
        for seq, line in enumerate(lines, start=1):
            entry.lines.append(
                JournalLine(
                    id=uuid4(),
                    account_id=line.account_id,
                    line_seq=seq,
                    description=line.description,
                    debit_amount=line.debit_amount,
                    credit_amount=line.credit_amount,
                    currency=line.currency,
                    exchange_rate=line.exchange_rate,
                    base_debit=line.base_debit,
                    base_credit=line.base_credit,
                    created_by_id=actor_id,
                )
            )

        with journal_write_scope(self._session):
            self._session.add(entry)
            self._session.flush()

        logger.info(
            "journal_draft_created",
            extra={
                "entry_id": str(entry.id),
                "entry_date": entry_date.isoformat(),
                "line_count": len(lines),
                "base_total": str(debits),
                "base_currency": base_currency,
                "reversal_of_id": str(reversal_of_id) if reversal_of_id else None,
            },
        )
        return entry

    # ------------------------------------------------------------------
    # Post
    # ------------------------------------------------------------------

    def _lock_entry(self, entry_id: UUID) -> JournalEntry:
        entry = self._session.execute(
            select(JournalEntry)
            .where(JournalEntry.id == entry_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if entry is None:
            raise EntryNotFoundError(str(entry_id))
        return entry

    def post(self, entry_id: UUID, actor_id: UUID, base_currency: str = "") -> JournalEntry:
        """
        Post a draft: lock it, re-check balance, assign the next number.

        Postconditions:
            - status is POSTED, entry_seq/entry_number assigned.
            - The entry and its lines are immutable from now on, except for
              the void transition.
        """
        entry = self._lock_entry(entry_id)

        if entry.status == JournalEntryStatus.POSTED:
            raise AlreadyPostedError(str(entry.id), entry.entry_number)
        if entry.status == JournalEntryStatus.VOIDED:
            raise AlreadyVoidedError(str(entry.id))

        check_balance(
            entry.total_base_debits,
            entry.total_base_credits,
            base_currency,
        )

        seq = self._sequence_service.next_value(SequenceService.JOURNAL_ENTRY)
        now = self._clock.now()

        with journal_write_scope(self._session):
            entry.entry_seq = seq
            entry.entry_number = self._config.format_entry_number(seq)
            entry.status = JournalEntryStatus.POSTED.value
            entry.posted_at = now
            entry.posted_by_id = actor_id
            entry.updated_by_id = actor_id
            self._session.flush()

        logger.info(
            "journal_entry_posted",
            extra={
                "entry_id": str(entry.id),
                "entry_number": entry.entry_number,
                "entry_seq": seq,
                "entry_date": entry.entry_date.isoformat(),
                "posted_at": now.isoformat(),
                "posted_by_id": str(actor_id),
            },
        )
        return entry

    # ------------------------------------------------------------------
    # Void
    # ------------------------------------------------------------------

    def void(
        self,
        entry_id: UUID,
        actor_id: UUID,
        reason: str,
        base_currency: str = "",
        void_date: date | None = None,
    ) -> JournalEntry:
        """
        Void a posted entry by posting its reversal.

        Returns the reversal entry.  The original keeps its lines and its
        number; only status, voided_at, voided_by_id and void_reason change.
        """
        if reason is None or not reason.strip():
            raise InvalidVoidReasonError(str(entry_id))
        reason = reason.strip()

        original = self._lock_entry(entry_id)
        if original.status != JournalEntryStatus.POSTED:
            raise EntryNotPostedError(str(original.id), original.status)

        reversal_date = void_date or original.entry_date
        if reversal_date < original.entry_date:
            raise InvalidDateIntervalError(
                original.entry_date.isoformat(), reversal_date.isoformat()
            )

        reversal_lines = [PreparedLine.from_model(line).swapped() for line in original.lines]

        reversal = self.write_draft(
            entry_date=reversal_date,
            description=f"Void of {original.entry_number}: {reason}",
            lines=reversal_lines,
            base_currency=base_currency,
            actor_id=actor_id,
            source_ref=SourceRef(VOID_SOURCE_TYPE, str(original.id)),
            reference=original.entry_number,
            reversal_of_id=original.id,
        )
        self.post(reversal.id, actor_id, base_currency)

        now = self._clock.now()
        with journal_write_scope(self._session):
            original.status = JournalEntryStatus.VOIDED.value
            original.voided_at = now
            original.voided_by_id = actor_id
            original.void_reason = reason
            original.updated_by_id = actor_id
            self._session.flush()

        logger.info(
            "entry_voided",
            extra={
                "entry_id": str(original.id),
                "entry_number": original.entry_number,
                "reversal_entry_id": str(reversal.id),
                "reversal_entry_number": reversal.entry_number,
                "voided_by_id": str(actor_id),
                "reason": reason,
            },
        )
        return reversal
