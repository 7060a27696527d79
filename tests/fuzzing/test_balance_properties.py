"""
Property-based tests of the balance invariant.

Properties:
- Any balanced set of lines posts, and the trial balance stays balanced
- Any set of lines whose base totals differ is refused with nothing written
- Voiding restores every account balance to its value before the entry
- Swapping a prepared line twice is the identity
- Amounts with nine fractional digits, and amounts near the top of the
  storage range, read back and total exactly

The database is not reset between examples, so each property is stated
relative to the ledger state the example starts from.
"""

from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from uuid import uuid4

import pytest
from hypothesis import HealthCheck, assume, given, settings
from hypothesis import strategies as st

from ledger_kernel.domain.dtos import LineRequest, LineSide
from ledger_kernel.exceptions import UnbalancedEntryError
from ledger_kernel.services.journal_writer import PreparedLine

DEBIT_ACCOUNTS = ["1100", "1200", "5300"]
CREDIT_ACCOUNTS = ["2100", "3100", "4100"]
ENTRY_DATE = date(2025, 1, 15)
YEAR_END = date(2025, 12, 31)

DB_SETTINGS = settings(
    max_examples=40,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow, HealthCheck.function_scoped_fixture],
)

amounts = st.decimals(
    min_value=Decimal("0.01"),
    max_value=Decimal("999999.99"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)

large_amounts = st.decimals(
    min_value=Decimal("1000000000000.00"),
    max_value=Decimal("999999999999999999999.99"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)

precise_amounts = st.decimals(
    min_value=Decimal("0.01"),
    max_value=Decimal("99999999999999999999.999999999"),
    places=9,
    allow_nan=False,
    allow_infinity=False,
)


@st.composite
def balanced_lines(draw, amount_strategy=amounts):
    """Debit lines, and credit lines that regroup the same amounts."""
    parts = draw(st.lists(amount_strategy, min_size=1, max_size=6))
    credit_count = draw(st.integers(min_value=1, max_value=len(parts)))

    debits = [
        LineRequest.debit(draw(st.sampled_from(DEBIT_ACCOUNTS)), amount) for amount in parts
    ]
    credits = []
    for i in range(credit_count):
        chunk = parts[i::credit_count]
        credits.append(
            LineRequest.credit(draw(st.sampled_from(CREDIT_ACCOUNTS)), sum(chunk, Decimal("0")))
        )
    return debits + credits


def _balances(ledger, tenant_id):
    return {
        code: ledger.account_balance(tenant_id, code, YEAR_END)
        for code in DEBIT_ACCOUNTS + CREDIT_ACCOUNTS
    }


class TestBalanceInvariant:
    @given(lines=balanced_lines())
    @DB_SETTINGS
    def test_balanced_lines_post(self, ledger, tenant, test_actor_id, lines):
        entry_id = ledger.create_draft(tenant.tenant_id, ENTRY_DATE, "Generated", lines)
        ledger.post(tenant.tenant_id, entry_id, test_actor_id)

        entry = ledger.get_entry(tenant.tenant_id, entry_id)
        assert entry.total_base_debits == entry.total_base_credits
        assert entry.total_base_debits > 0
        assert ledger.trial_balance(tenant.tenant_id, YEAR_END).is_balanced

    @given(lines=balanced_lines(), skew=amounts)
    @DB_SETTINGS
    def test_unbalanced_lines_refused(self, ledger, tenant, lines, skew):
        before = len(ledger.list_entries(tenant.tenant_id))
        lines = lines + [LineRequest.debit("5300", skew)]

        with pytest.raises(UnbalancedEntryError) as exc_info:
            ledger.create_draft(tenant.tenant_id, ENTRY_DATE, "Generated", lines)

        assert exc_info.value.debits - exc_info.value.credits == skew
        assert len(ledger.list_entries(tenant.tenant_id)) == before

    @given(lines=balanced_lines())
    @DB_SETTINGS
    def test_void_restores_balances(self, ledger, tenant, test_actor_id, lines):
        before = _balances(ledger, tenant.tenant_id)

        entry_id = ledger.create_draft(tenant.tenant_id, ENTRY_DATE, "Generated", lines)
        ledger.post(tenant.tenant_id, entry_id, test_actor_id)
        ledger.void(tenant.tenant_id, entry_id, test_actor_id, "generated")

        assert _balances(ledger, tenant.tenant_id) == before


class TestExactAmounts:
    @given(lines=balanced_lines(large_amounts))
    @DB_SETTINGS
    def test_large_entries_total_exactly(self, ledger, tenant, test_actor_id, lines):
        before = ledger.trial_balance(tenant.tenant_id, YEAR_END).total_debits

        entry_id = ledger.create_draft(tenant.tenant_id, ENTRY_DATE, "Generated", lines)
        ledger.post(tenant.tenant_id, entry_id, test_actor_id)

        expected = sum((line.amount for line in lines if line.side == LineSide.DEBIT), Decimal("0"))
        entry = ledger.get_entry(tenant.tenant_id, entry_id)
        assert entry.total_base_debits == expected
        trial_balance = ledger.trial_balance(tenant.tenant_id, YEAR_END)
        assert trial_balance.total_debits - before == expected
        assert trial_balance.is_balanced

    @given(amount=precise_amounts)
    @DB_SETTINGS
    def test_nine_fractional_digits_read_back(self, ledger, tenant, test_actor_id, amount):
        lines = [LineRequest.debit("1200", amount), LineRequest.credit("4100", amount)]
        before = ledger.account_balance(tenant.tenant_id, "1200", YEAR_END)

        entry_id = ledger.create_draft(tenant.tenant_id, ENTRY_DATE, "Generated", lines)
        ledger.post(tenant.tenant_id, entry_id, test_actor_id)

        entry = ledger.get_entry(tenant.tenant_id, entry_id)
        assert entry.lines[0].debit_amount == amount
        assert entry.lines[1].credit_amount == amount
        base = amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        assert entry.lines[0].base_debit == base
        assert ledger.account_balance(tenant.tenant_id, "1200", YEAR_END) - before == base


class TestPreparedLine:
    @given(amount=amounts, rate=st.decimals(min_value=Decimal("0.0001"), max_value=Decimal("1000"), places=4))
    @settings(max_examples=200)
    def test_swap_is_involution(self, amount, rate):
        base = (amount * rate).quantize(Decimal("0.01"))
        assume(base > 0)
        line = PreparedLine(
            account_id=uuid4(),
            account_code="1200",
            debit_amount=amount,
            credit_amount=Decimal("0"),
            currency="USD",
            exchange_rate=rate,
            base_debit=base,
            base_credit=Decimal("0"),
        )
        swapped = line.swapped()
        assert swapped.credit_amount == amount
        assert swapped.base_credit == base
        assert swapped.exchange_rate == rate
        assert swapped.swapped() == line
