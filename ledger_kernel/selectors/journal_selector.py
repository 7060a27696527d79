"""
Module: ledger_kernel.selectors.journal_selector
Responsibility: Read-only access to the bound tenant's journal entries,
    returned as frozen JournalEntryRecord snapshots.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Read-only: nothing is added, flushed or committed.
    - Lines come back in line_seq order.

Failure modes:
    - Returns None or an empty list when nothing matches; never raises on
      absence of data.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from ledger_kernel.domain.dtos import JournalEntryRecord
from ledger_kernel.models.journal import JournalEntry, JournalEntryStatus, JournalLine
from ledger_kernel.selectors.base import BaseSelector


class JournalSelector(BaseSelector):
    """Journal entry queries."""

    def _query(self):
        return select(JournalEntry).options(
            selectinload(JournalEntry.lines).selectinload(JournalLine.account)
        )

    def _one(self, query) -> JournalEntryRecord | None:
        entry = self.session.execute(query).scalar_one_or_none()
        return JournalEntryRecord.from_model(entry) if entry else None

    def get_entry(self, entry_id: UUID) -> JournalEntryRecord | None:
        return self._one(self._query().where(JournalEntry.id == entry_id))

    def get_by_number(self, entry_number: str) -> JournalEntryRecord | None:
        return self._one(self._query().where(JournalEntry.entry_number == entry_number))

    def get_reversal(self, entry_id: UUID) -> JournalEntryRecord | None:
        """The posted entry that reverses ``entry_id``, if it was voided."""
        return self._one(self._query().where(JournalEntry.reversal_of_id == entry_id))

    def list_entries(
        self,
        status: JournalEntryStatus | str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        account_id: UUID | None = None,
        source_type: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[JournalEntryRecord]:
        """
        Entries matching every given filter.

        Numbered entries come first in number order, then drafts by date.
        """
        query = self._query()

        if status is not None:
            query = query.where(JournalEntry.status == JournalEntryStatus(status).value)
        if start_date is not None:
            query = query.where(JournalEntry.entry_date >= start_date)
        if end_date is not None:
            query = query.where(JournalEntry.entry_date <= end_date)
        if source_type is not None:
            query = query.where(JournalEntry.source_type == source_type)
        if account_id is not None:
            query = query.where(
                JournalEntry.id.in_(
                    select(JournalLine.journal_entry_id).where(
                        JournalLine.account_id == account_id
                    )
                )
            )

        query = query.order_by(
            JournalEntry.entry_seq.is_(None),
            JournalEntry.entry_seq,
            JournalEntry.entry_date,
            JournalEntry.created_at,
        )
        if limit is not None:
            query = query.limit(limit)
        if offset is not None:
            query = query.offset(offset)

        entries = self.session.execute(query).scalars().all()
        return [JournalEntryRecord.from_model(e) for e in entries]
