"""
Tests for the journal entry lifecycle: draft, post, void.

Verifies:
- Line validation reports the zero-based index of the offending line
- Entries balance exactly in the base currency, or nothing is written
- Posting assigns JE-00001, JE-00002, ... per tenant
- Voiding posts an exact reversal and flips the original to voided
"""

from dataclasses import replace
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from ledger_kernel.domain.dtos import LineRequest, LineSide, SourceRef
from ledger_kernel.exceptions import (
    AlreadyPostedError,
    AlreadyVoidedError,
    EmptyEntryError,
    EntryNotFoundError,
    EntryNotPostedError,
    InvalidAccountError,
    InvalidCurrencyError,
    InvalidDateIntervalError,
    InvalidLineError,
    InvalidVoidReasonError,
    UnbalancedEntryError,
    ValidationError,
)
from ledger_kernel.ledger import LedgerCore

ENTRY_DATE = date(2025, 1, 15)


def _draft(ledger, tenant, lines, **kwargs):
    return ledger.create_draft(tenant.tenant_id, ENTRY_DATE, "Test entry", lines, **kwargs)


def _sale(amount="1000.00"):
    return [LineRequest.debit("1200", amount), LineRequest.credit("4100", amount)]


class TestCreateDraft:
    def test_draft_has_no_number(self, ledger, tenant, test_actor_id):
        entry_id = _draft(ledger, tenant, _sale(), actor_id=test_actor_id)
        entry = ledger.get_entry(tenant.tenant_id, entry_id)

        assert entry.status == "draft"
        assert entry.entry_number is None
        assert entry.entry_seq is None
        assert entry.created_by_id == test_actor_id
        assert [line.line_seq for line in entry.lines] == [1, 2]
        assert entry.lines[0].side == LineSide.DEBIT
        assert entry.lines[0].account_code == "1200"
        assert entry.total_base_debits == entry.total_base_credits == Decimal("1000.00")

    def test_source_ref_and_reference(self, ledger, tenant):
        entry_id = _draft(
            ledger, tenant, _sale(), source_ref=SourceRef("INVOICE", "INV-42"), reference="INV-42"
        )
        entry = ledger.get_entry(tenant.tenant_id, entry_id)
        assert (entry.source_type, entry.source_id, entry.reference) == ("INVOICE", "INV-42", "INV-42")

    def test_accounts_by_id(self, ledger, tenant):
        receivables = ledger.resolve_account(tenant.tenant_id, "1200")
        revenue = ledger.resolve_account(tenant.tenant_id, "4100")
        entry_id = _draft(
            ledger,
            tenant,
            [LineRequest.debit(receivables.id, "10"), LineRequest.credit(revenue.id, "10")],
        )
        assert ledger.get_entry(tenant.tenant_id, entry_id).lines[1].account_id == revenue.id

    def test_side_as_string(self, ledger, tenant):
        lines = [
            LineRequest("1200", "DEBIT", "10.00"),
            LineRequest("4100", "credit", "10.00"),
        ]
        assert _draft(ledger, tenant, lines) is not None

    def test_multi_line_split(self, ledger, tenant):
        lines = [
            LineRequest.debit("1200", "1220.00"),
            LineRequest.credit("4100", "1000.00"),
            LineRequest.credit("2200", "220.00"),
        ]
        entry = ledger.get_entry(tenant.tenant_id, _draft(ledger, tenant, lines))
        assert len(entry.lines) == 3

    def test_empty(self, ledger, tenant):
        with pytest.raises(EmptyEntryError):
            _draft(ledger, tenant, [])

    def test_unbalanced_writes_nothing(self, ledger, tenant):
        with pytest.raises(UnbalancedEntryError) as exc_info:
            _draft(ledger, tenant, [LineRequest.debit("1200", "1000.00"), LineRequest.credit("4100", "999.99")])

        assert exc_info.value.debits == Decimal("1000.00")
        assert exc_info.value.credits == Decimal("999.99")
        assert ledger.list_entries(tenant.tenant_id) == []

    def test_single_sided(self, ledger, tenant):
        with pytest.raises(UnbalancedEntryError):
            _draft(ledger, tenant, [LineRequest.debit("1200", "10.00")])

    @pytest.mark.parametrize("amount", ["0", "-5.00", "NaN", "Infinity", "abc", "1.0000000001"])
    def test_bad_amounts(self, ledger, tenant, amount):
        lines = [LineRequest.debit("1200", "10.00"), LineRequest.credit("4100", amount)]
        with pytest.raises(InvalidLineError) as exc_info:
            _draft(ledger, tenant, lines)
        assert exc_info.value.line_index == 1

    def test_float_amount(self, ledger, tenant):
        with pytest.raises(InvalidLineError) as exc_info:
            _draft(ledger, tenant, [LineRequest.debit("1200", 10.5), LineRequest.credit("4100", "10.50")])
        assert exc_info.value.line_index == 0

    def test_bad_side(self, ledger, tenant):
        with pytest.raises(InvalidLineError):
            _draft(ledger, tenant, [LineRequest("1200", "left", "10"), LineRequest.credit("4100", "10")])

    def test_unknown_account(self, ledger, tenant):
        with pytest.raises(InvalidAccountError):
            _draft(ledger, tenant, [LineRequest.debit("9999", "10"), LineRequest.credit("4100", "10")])

    def test_other_tenants_account(self, ledger, tenant, other_tenant):
        foreign = ledger.resolve_account(other_tenant.tenant_id, "1200")
        with pytest.raises(InvalidAccountError):
            _draft(ledger, tenant, [LineRequest.debit(foreign.id, "10"), LineRequest.credit("4100", "10")])

    def test_inactive_account(self, ledger, tenant):
        account = ledger.create_account(tenant.tenant_id, "1150", "Side", "asset")
        ledger.deactivate_account(tenant.tenant_id, account.id)
        with pytest.raises(InvalidAccountError, match="inactive"):
            _draft(ledger, tenant, [LineRequest.debit("1150", "10"), LineRequest.credit("4100", "10")])

    def test_invalid_currency(self, ledger, tenant):
        lines = [
            LineRequest.debit("1200", "10", currency="XYZ", exchange_rate="1.1"),
            LineRequest.credit("4100", "11"),
        ]
        with pytest.raises(InvalidCurrencyError):
            _draft(ledger, tenant, lines)

    def test_all_validation_errors_are_validation_family(self, ledger, tenant):
        for lines in ([], [LineRequest.debit("1200", "1")], [LineRequest.debit("nope", "1")]):
            with pytest.raises(ValidationError):
                _draft(ledger, tenant, lines)

    def test_logged(self, ledger, tenant, captured_logs):
        entry_id = _draft(ledger, tenant, _sale())
        records = [r for r in captured_logs() if r["message"] == "journal_draft_created"]
        assert records[0]["entry_id"] == str(entry_id)
        assert records[0]["base_total"] == "1000.00"
        assert records[0]["tenant_id"] == str(tenant.tenant_id)


class TestForeignCurrencyLines:
    def test_base_amount_frozen(self, ledger, tenant):
        lines = [
            LineRequest.debit("1200", "100.00", currency="USD", exchange_rate="0.923456"),
            LineRequest.credit("4100", "92.35"),
        ]
        entry = ledger.get_entry(tenant.tenant_id, _draft(ledger, tenant, lines))
        usd = entry.lines[0]
        assert usd.currency == "USD"
        assert usd.debit_amount == Decimal("100.00")
        assert usd.exchange_rate == Decimal("0.923456")
        assert usd.base_debit == Decimal("92.35")

    def test_balance_checked_on_rounded_base(self, ledger, tenant):
        lines = [
            LineRequest.debit("1200", "100.00", currency="USD", exchange_rate="0.923456"),
            LineRequest.credit("4100", "92.34"),
        ]
        with pytest.raises(UnbalancedEntryError):
            _draft(ledger, tenant, lines)

    def test_missing_rate(self, ledger, tenant):
        lines = [LineRequest.debit("1200", "100", currency="USD"), LineRequest.credit("4100", "92")]
        with pytest.raises(InvalidLineError) as exc_info:
            _draft(ledger, tenant, lines)
        assert exc_info.value.line_index == 0

    def test_base_currency_rate_must_be_one(self, ledger, tenant):
        lines = [
            LineRequest.debit("1200", "100", currency="EUR", exchange_rate="1.1"),
            LineRequest.credit("4100", "110"),
        ]
        with pytest.raises(InvalidLineError):
            _draft(ledger, tenant, lines)

    def test_base_amount_rounding_to_zero(self, ledger, tenant):
        lines = [
            LineRequest.debit("1200", "1", currency="JPY", exchange_rate="0.001"),
            LineRequest.credit("4100", "0.01"),
        ]
        with pytest.raises(InvalidLineError, match="rounds to zero"):
            _draft(ledger, tenant, lines)

    @pytest.mark.parametrize("rate", ["0", "-1"])
    def test_non_positive_rate(self, ledger, tenant, rate):
        lines = [
            LineRequest.debit("1200", "100", currency="USD", exchange_rate=rate),
            LineRequest.credit("4100", "92"),
        ]
        with pytest.raises(InvalidLineError):
            _draft(ledger, tenant, lines)


class TestStoragePrecision:
    """Amounts and rates read back exactly as written, on every backend."""

    def test_nine_fractional_digits_round_trip(self, ledger, tenant):
        lines = [
            LineRequest.debit("1200", "123456789.123456789", currency="USD", exchange_rate="0.92"),
            LineRequest.credit("4100", "113580245.99"),
        ]
        entry = ledger.get_entry(tenant.tenant_id, _draft(ledger, tenant, lines))
        usd = entry.lines[0]
        assert usd.debit_amount == Decimal("123456789.123456789")
        assert usd.base_debit == Decimal("113580245.99")

    def test_rate_fractional_digits_round_trip(self, ledger, tenant):
        lines = [
            LineRequest.debit("1200", "100", currency="USD", exchange_rate="0.923456789012345678"),
            LineRequest.credit("4100", "92.35"),
        ]
        entry = ledger.get_entry(tenant.tenant_id, _draft(ledger, tenant, lines))
        assert entry.lines[0].exchange_rate == Decimal("0.923456789012345678")

    def test_large_balanced_entry_posts(self, ledger, tenant, test_actor_id):
        lines = [
            LineRequest.debit("1200", "1000000000000000.20"),
            LineRequest.credit("4100", "500000000000000.07"),
            LineRequest.credit("4100", "500000000000000.13"),
        ]
        entry_id = _draft(ledger, tenant, lines)
        assert ledger.post(tenant.tenant_id, entry_id, test_actor_id) == "JE-00001"

        assert ledger.account_balance(tenant.tenant_id, "1200") == Decimal("1000000000000000.20")
        assert ledger.account_balance(tenant.tenant_id, "4100") == Decimal("1000000000000000.20")
        trial_balance = ledger.trial_balance(tenant.tenant_id, ENTRY_DATE)
        assert trial_balance.total_debits == Decimal("1000000000000000.20")
        assert trial_balance.is_balanced

    def test_many_small_amounts_sum_exactly(self, ledger, tenant, test_actor_id):
        lines = [LineRequest.debit("1200", "0.10") for _ in range(30)]
        lines.append(LineRequest.credit("4100", "3.00"))
        ledger.post(tenant.tenant_id, _draft(ledger, tenant, lines), test_actor_id)

        assert ledger.account_balance(tenant.tenant_id, "1200") == Decimal("3.00")
        assert ledger.trial_balance(tenant.tenant_id, ENTRY_DATE).total_credits == Decimal("3.00")

    def test_integer_digits_beyond_precision(self, ledger, tenant):
        amount = "1" + "0" * 29
        with pytest.raises(InvalidLineError, match="storage precision"):
            _draft(ledger, tenant, _sale(amount))


class TestPost:
    def test_numbering(self, ledger, tenant, test_actor_id, deterministic_clock):
        first = _draft(ledger, tenant, _sale())
        second = _draft(ledger, tenant, _sale("5.00"))

        assert ledger.post(tenant.tenant_id, first, test_actor_id) == "JE-00001"
        assert ledger.post(tenant.tenant_id, second, test_actor_id) == "JE-00002"

        entry = ledger.get_entry(tenant.tenant_id, first)
        assert entry.status == "posted"
        assert entry.entry_seq == 1
        assert entry.posted_by_id == test_actor_id
        assert entry.posted_at == deterministic_clock.now()

    def test_numbering_is_per_tenant(self, ledger, tenant, other_tenant, test_actor_id):
        ledger.post(tenant.tenant_id, _draft(ledger, tenant, _sale()), test_actor_id)
        ledger.post(tenant.tenant_id, _draft(ledger, tenant, _sale()), test_actor_id)
        other = _draft(ledger, other_tenant, _sale())
        assert ledger.post(other_tenant.tenant_id, other, test_actor_id) == "JE-00001"

    def test_post_order_not_creation_order(self, ledger, tenant, test_actor_id):
        first = _draft(ledger, tenant, _sale())
        second = _draft(ledger, tenant, _sale())
        assert ledger.post(tenant.tenant_id, second, test_actor_id) == "JE-00001"
        assert ledger.post(tenant.tenant_id, first, test_actor_id) == "JE-00002"

    def test_already_posted(self, ledger, tenant, test_actor_id):
        entry_id = _draft(ledger, tenant, _sale())
        ledger.post(tenant.tenant_id, entry_id, test_actor_id)

        with pytest.raises(AlreadyPostedError) as exc_info:
            ledger.post(tenant.tenant_id, entry_id, test_actor_id)
        assert exc_info.value.entry_number == "JE-00001"

    def test_failed_post_consumes_no_number(self, ledger, tenant, test_actor_id):
        entry_id = _draft(ledger, tenant, _sale())
        ledger.post(tenant.tenant_id, entry_id, test_actor_id)
        with pytest.raises(AlreadyPostedError):
            ledger.post(tenant.tenant_id, entry_id, test_actor_id)

        assert ledger.post(tenant.tenant_id, _draft(ledger, tenant, _sale()), test_actor_id) == "JE-00002"

    def test_voided_cannot_be_posted(self, ledger, tenant, test_actor_id):
        entry_id = _draft(ledger, tenant, _sale())
        ledger.post(tenant.tenant_id, entry_id, test_actor_id)
        ledger.void(tenant.tenant_id, entry_id, test_actor_id, "wrong customer")

        with pytest.raises(AlreadyVoidedError):
            ledger.post(tenant.tenant_id, entry_id, test_actor_id)

    def test_unknown_entry(self, ledger, tenant, test_actor_id):
        with pytest.raises(EntryNotFoundError):
            ledger.post(tenant.tenant_id, "00000000-0000-0000-0000-000000000001", test_actor_id)

    def test_malformed_entry_id(self, ledger, tenant, test_actor_id):
        with pytest.raises(EntryNotFoundError):
            ledger.post(tenant.tenant_id, "JE-00001", test_actor_id)

    def test_logged_with_context(self, ledger, tenant, test_actor_id, captured_logs):
        entry_id = _draft(ledger, tenant, _sale())
        ledger.post(tenant.tenant_id, entry_id, test_actor_id)

        posted = [r for r in captured_logs() if r["message"] == "journal_entry_posted"]
        assert len(posted) == 1
        assert posted[0]["entry_number"] == "JE-00001"
        assert posted[0]["entry_id"] == str(entry_id)
        assert posted[0]["actor_id"] == str(test_actor_id)

    def test_custom_number_format(self, db, deterministic_clock, test_config, test_actor_id):
        core = LedgerCore(
            clock=deterministic_clock,
            config=replace(test_config, entry_number_prefix="GL-", entry_number_width=3),
        )
        tenant = core.create_tenant("Format OU", "format")
        entry_id = core.create_draft(tenant.tenant_id, ENTRY_DATE, "x", _sale())
        assert core.post(tenant.tenant_id, entry_id, test_actor_id) == "GL-001"


class TestVoid:
    def test_reversal(self, ledger, tenant, test_actor_id, deterministic_clock):
        entry_id = _draft(ledger, tenant, _sale())
        ledger.post(tenant.tenant_id, entry_id, test_actor_id)
        deterministic_clock.advance(60)

        reversal_id = ledger.void(tenant.tenant_id, entry_id, test_actor_id, "duplicate")

        original = ledger.get_entry(tenant.tenant_id, entry_id)
        reversal = ledger.get_entry(tenant.tenant_id, reversal_id)

        assert original.status == "voided"
        assert original.entry_number == "JE-00001"
        assert original.void_reason == "duplicate"
        assert original.voided_by_id == test_actor_id
        assert original.voided_at == datetime(2025, 1, 1, 12, 1, tzinfo=timezone.utc)

        assert reversal.status == "posted"
        assert reversal.entry_number == "JE-00002"
        assert reversal.reversal_of_id == entry_id
        assert reversal.entry_date == original.entry_date
        assert reversal.reference == "JE-00001"
        assert reversal.source_type == "VOID"
        assert reversal.source_id == str(entry_id)
        assert reversal.description == "Void of JE-00001: duplicate"

    def test_reversal_swaps_every_line(self, ledger, tenant, test_actor_id):
        lines = [
            LineRequest.debit("1200", "100.00", currency="USD", exchange_rate="0.923456"),
            LineRequest.credit("4100", "80.00"),
            LineRequest.credit("2200", "12.35"),
        ]
        entry_id = _draft(ledger, tenant, lines)
        ledger.post(tenant.tenant_id, entry_id, test_actor_id)
        reversal_id = ledger.void(tenant.tenant_id, entry_id, test_actor_id, "cancelled")

        original = ledger.get_entry(tenant.tenant_id, entry_id)
        reversal = ledger.get_entry(tenant.tenant_id, reversal_id)
        for before, after in zip(original.lines, reversal.lines):
            assert after.account_id == before.account_id
            assert after.debit_amount == before.credit_amount
            assert after.credit_amount == before.debit_amount
            assert after.base_debit == before.base_credit
            assert after.base_credit == before.base_debit
            assert after.currency == before.currency
            assert after.exchange_rate == before.exchange_rate

    def test_void_date(self, ledger, tenant, test_actor_id):
        entry_id = _draft(ledger, tenant, _sale())
        ledger.post(tenant.tenant_id, entry_id, test_actor_id)
        reversal_id = ledger.void(
            tenant.tenant_id, entry_id, test_actor_id, "late", void_date=date(2025, 2, 3)
        )
        assert ledger.get_entry(tenant.tenant_id, reversal_id).entry_date == date(2025, 2, 3)

    def test_void_date_before_entry(self, ledger, tenant, test_actor_id):
        entry_id = _draft(ledger, tenant, _sale())
        ledger.post(tenant.tenant_id, entry_id, test_actor_id)
        with pytest.raises(InvalidDateIntervalError):
            ledger.void(tenant.tenant_id, entry_id, test_actor_id, "late", void_date=date(2025, 1, 14))
        assert ledger.get_entry(tenant.tenant_id, entry_id).status == "posted"

    def test_draft_cannot_be_voided(self, ledger, tenant, test_actor_id):
        entry_id = _draft(ledger, tenant, _sale())
        with pytest.raises(EntryNotPostedError) as exc_info:
            ledger.void(tenant.tenant_id, entry_id, test_actor_id, "oops")
        assert exc_info.value.status == "draft"

    def test_double_void(self, ledger, tenant, test_actor_id):
        entry_id = _draft(ledger, tenant, _sale())
        ledger.post(tenant.tenant_id, entry_id, test_actor_id)
        ledger.void(tenant.tenant_id, entry_id, test_actor_id, "first")

        with pytest.raises(EntryNotPostedError):
            ledger.void(tenant.tenant_id, entry_id, test_actor_id, "second")
        assert len(ledger.list_entries(tenant.tenant_id)) == 2

    @pytest.mark.parametrize("reason", ["", "   ", None])
    def test_reason_required(self, ledger, tenant, test_actor_id, reason):
        entry_id = _draft(ledger, tenant, _sale())
        ledger.post(tenant.tenant_id, entry_id, test_actor_id)
        with pytest.raises(InvalidVoidReasonError):
            ledger.void(tenant.tenant_id, entry_id, test_actor_id, reason)

    def test_reversal_posts_to_inactive_account(
        self, ledger, tenant, test_actor_id, deterministic_clock
    ):
        account = ledger.create_account(tenant.tenant_id, "4150", "Old product line", "revenue")
        entry_id = _draft(ledger, tenant, [LineRequest.debit("1200", "10"), LineRequest.credit("4150", "10")])
        ledger.post(tenant.tenant_id, entry_id, test_actor_id)

        permissive = LedgerCore(
            clock=deterministic_clock,
            config=replace(ledger.config, allow_deactivate_with_balance=True),
        )
        permissive.deactivate_account(tenant.tenant_id, account.id)

        reversal_id = ledger.void(tenant.tenant_id, entry_id, test_actor_id, "closed line")
        assert ledger.get_entry(tenant.tenant_id, reversal_id).status == "posted"
        assert ledger.account_balance(tenant.tenant_id, "4150") == Decimal("0")

    def test_logged(self, ledger, tenant, test_actor_id, captured_logs):
        entry_id = _draft(ledger, tenant, _sale())
        ledger.post(tenant.tenant_id, entry_id, test_actor_id)
        ledger.void(tenant.tenant_id, entry_id, test_actor_id, "duplicate")

        voided = [r for r in captured_logs() if r["message"] == "entry_voided"]
        assert voided[0]["reversal_entry_number"] == "JE-00002"
        assert voided[0]["reason"] == "duplicate"
