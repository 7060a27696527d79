"""
PostgreSQL trigger enforcement.

The ORM listeners are the first line; these triggers hold even for raw SQL
that never touches the ORM.  Every statement here is plain SQL.
"""

from datetime import date

import pytest
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError

from ledger_kernel.db.engine import get_engine, session_scope
from ledger_kernel.db.triggers import ALL_TRIGGER_NAMES, triggers_installed
from ledger_kernel.domain.dtos import LineRequest
from ledger_kernel.exceptions import ImmutabilityViolationError

pytestmark = pytest.mark.postgres


def _execute(sql: str, **params) -> None:
    with get_engine().begin() as conn:
        conn.execute(text(sql), params)


class TestTriggersInstalled:
    def test_all_present(self, db):
        assert triggers_installed(get_engine()) == sorted(ALL_TRIGGER_NAMES)


class TestJournalEntryTriggers:
    def test_posted_update_rejected(self, post_sale):
        entry_id, _ = post_sale()
        with pytest.raises(DBAPIError, match="IMMUTABILITY_VIOLATION"):
            _execute(
                "UPDATE journal_entries SET description = 'rewritten' WHERE id = :id",
                id=str(entry_id),
            )

    def test_posted_delete_rejected(self, post_sale):
        entry_id, _ = post_sale()
        with pytest.raises(DBAPIError, match="IMMUTABILITY_VIOLATION"):
            _execute("DELETE FROM journal_entries WHERE id = :id", id=str(entry_id))

    def test_void_transition_allowed(self, post_sale):
        entry_id, _ = post_sale()
        _execute(
            "UPDATE journal_entries SET status = 'voided', void_reason = 'test' WHERE id = :id",
            id=str(entry_id),
        )

    def test_voided_update_rejected(self, ledger, tenant, test_actor_id, post_sale):
        entry_id, _ = post_sale()
        ledger.void(tenant.tenant_id, entry_id, test_actor_id, "duplicate")
        with pytest.raises(DBAPIError, match="IMMUTABILITY_VIOLATION"):
            _execute(
                "UPDATE journal_entries SET void_reason = 'changed' WHERE id = :id",
                id=str(entry_id),
            )

    def test_draft_void_rejected(self, ledger, tenant):
        entry_id = ledger.create_draft(
            tenant.tenant_id,
            date(2025, 1, 15),
            "Pending",
            [LineRequest.debit("1200", "10"), LineRequest.credit("4100", "10")],
        )
        with pytest.raises(DBAPIError, match="IMMUTABILITY_VIOLATION"):
            _execute(
                "UPDATE journal_entries SET status = 'voided' WHERE id = :id",
                id=str(entry_id),
            )

    def test_back_to_draft_rejected(self, post_sale):
        entry_id, _ = post_sale()
        with pytest.raises(DBAPIError, match="IMMUTABILITY_VIOLATION"):
            _execute(
                "UPDATE journal_entries SET status = 'draft' WHERE id = :id",
                id=str(entry_id),
            )


class TestJournalLineTriggers:
    def test_posted_line_update_rejected(self, post_sale):
        entry_id, _ = post_sale()
        with pytest.raises(DBAPIError, match="IMMUTABILITY_VIOLATION"):
            _execute(
                "UPDATE journal_lines SET debit_amount = 1, base_debit = 1 "
                "WHERE journal_entry_id = :id AND debit_amount > 0",
                id=str(entry_id),
            )

    def test_posted_line_delete_rejected(self, post_sale):
        entry_id, _ = post_sale()
        with pytest.raises(DBAPIError, match="IMMUTABILITY_VIOLATION"):
            _execute("DELETE FROM journal_lines WHERE journal_entry_id = :id", id=str(entry_id))


class TestTaxRateTriggers:
    def test_delete_rejected(self, ledger):
        rate_id = ledger.add_tax_rate("LV", "STANDARD", "21", date(2012, 7, 1))
        with pytest.raises(DBAPIError, match="IMMUTABILITY_VIOLATION"):
            _execute("DELETE FROM tax_rates WHERE id = :id", id=str(rate_id))

    def test_rate_change_rejected(self, ledger):
        rate_id = ledger.add_tax_rate("LV", "STANDARD", "21", date(2012, 7, 1))
        with pytest.raises(DBAPIError, match="IMMUTABILITY_VIOLATION"):
            _execute("UPDATE tax_rates SET rate = 22 WHERE id = :id", id=str(rate_id))

    def test_close_allowed_once(self, ledger):
        rate_id = ledger.add_tax_rate("LV", "STANDARD", "21", date(2012, 7, 1))
        _execute("UPDATE tax_rates SET valid_to = '2026-01-01' WHERE id = :id", id=str(rate_id))
        with pytest.raises(DBAPIError, match="IMMUTABILITY_VIOLATION"):
            _execute("UPDATE tax_rates SET valid_to = '2027-01-01' WHERE id = :id", id=str(rate_id))


class TestSessionScopeTranslation:
    def test_trigger_violation_becomes_integrity_alarm(self, post_sale):
        entry_id, _ = post_sale()
        with pytest.raises(ImmutabilityViolationError):
            with session_scope() as session:
                session.execute(
                    text("UPDATE journal_entries SET description = 'x' WHERE id = :id"),
                    {"id": str(entry_id)},
                )
