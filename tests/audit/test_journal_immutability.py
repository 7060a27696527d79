"""
Journal history is append-only.

Verifies:
- Posted entries and their lines reject every change except the void transition
- Voided entries reject every change
- Entries are inserted as drafts only
- A draft cannot jump straight to voided
- Draft entries and lines remain editable

These tests use the ORM listeners; the PostgreSQL triggers are covered in
test_database_triggers.py.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from ledger_kernel.db.immutability import journal_write_scope
from ledger_kernel.domain.dtos import LineRequest
from ledger_kernel.exceptions import ImmutabilityViolationError
from ledger_kernel.models.journal import JournalEntry, JournalEntryStatus


class TestPostedEntry:
    def test_description_change_blocked(self, post_sale, session):
        entry_id, _ = post_sale()
        entry = session.get(JournalEntry, entry_id)
        entry.description = "Rewritten"

        with journal_write_scope(session):
            with pytest.raises(ImmutabilityViolationError) as exc_info:
                session.flush()
        assert exc_info.value.entity_type == "JournalEntry"

    def test_entry_date_change_blocked(self, post_sale, session):
        entry_id, _ = post_sale()
        entry = session.get(JournalEntry, entry_id)
        entry.entry_date = date(2024, 12, 31)

        with journal_write_scope(session):
            with pytest.raises(ImmutabilityViolationError):
                session.flush()

    def test_back_to_draft_blocked(self, post_sale, session):
        entry_id, _ = post_sale()
        entry = session.get(JournalEntry, entry_id)
        entry.status = JournalEntryStatus.DRAFT.value

        with journal_write_scope(session):
            with pytest.raises(ImmutabilityViolationError):
                session.flush()

    def test_line_amount_change_blocked(self, post_sale, session):
        entry_id, _ = post_sale()
        entry = session.get(JournalEntry, entry_id)
        line = entry.lines[0]
        line.debit_amount = Decimal("1.00")
        line.base_debit = Decimal("1.00")

        with journal_write_scope(session):
            with pytest.raises(ImmutabilityViolationError) as exc_info:
                session.flush()
        assert exc_info.value.entity_type == "JournalLine"

    def test_delete_blocked(self, post_sale, session):
        entry_id, _ = post_sale()
        entry = session.get(JournalEntry, entry_id)
        session.delete(entry)

        with journal_write_scope(session):
            with pytest.raises(ImmutabilityViolationError):
                session.flush()

    def test_void_with_extra_change_blocked(self, post_sale, session, test_actor_id):
        entry_id, _ = post_sale()
        entry = session.get(JournalEntry, entry_id)
        entry.status = JournalEntryStatus.VOIDED.value
        entry.void_reason = "typo"
        entry.voided_by_id = test_actor_id
        entry.description = "Quietly changed"

        with journal_write_scope(session):
            with pytest.raises(ImmutabilityViolationError, match="description"):
                session.flush()


class TestVoidedEntry:
    def test_frozen(self, ledger, tenant, test_actor_id, post_sale, session):
        entry_id, _ = post_sale()
        ledger.void(tenant.tenant_id, entry_id, test_actor_id, "duplicate")

        entry = session.get(JournalEntry, entry_id)
        entry.void_reason = "another reason"

        with journal_write_scope(session):
            with pytest.raises(ImmutabilityViolationError):
                session.flush()


class TestDraftEntry:
    @pytest.fixture
    def draft_id(self, ledger, tenant):
        return ledger.create_draft(
            tenant.tenant_id,
            date(2025, 1, 15),
            "Pending",
            [LineRequest.debit("1200", "10.00"), LineRequest.credit("4100", "10.00")],
        )

    def test_cannot_be_voided_directly(self, draft_id, session):
        entry = session.get(JournalEntry, draft_id)
        entry.status = JournalEntryStatus.VOIDED.value

        with journal_write_scope(session):
            with pytest.raises(ImmutabilityViolationError, match="draft"):
                session.flush()

    def test_description_editable(self, draft_id, session):
        entry = session.get(JournalEntry, draft_id)
        entry.description = "Pending, corrected"
        entry.lines[0].description = "Receivable"

        with journal_write_scope(session):
            session.flush()

        assert entry.description == "Pending, corrected"

    def test_inserted_as_posted_blocked(self, session):
        entry = JournalEntry(
            id=uuid4(),
            entry_date=date(2025, 1, 15),
            description="Smuggled",
            status=JournalEntryStatus.POSTED.value,
            created_by_id=uuid4(),
        )
        session.add(entry)

        with journal_write_scope(session):
            with pytest.raises(ImmutabilityViolationError, match="draft"):
                session.flush()

    def test_violation_logged(self, draft_id, session, captured_logs):
        entry = session.get(JournalEntry, draft_id)
        entry.status = JournalEntryStatus.VOIDED.value

        with journal_write_scope(session):
            with pytest.raises(ImmutabilityViolationError):
                session.flush()

        blocked = [r for r in captured_logs() if r["message"] == "immutability_violation_blocked"]
        assert blocked
        assert blocked[0]["entity_type"] == "JournalEntry"
