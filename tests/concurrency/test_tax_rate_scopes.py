"""
Concurrent tax rate maintenance.

Writers of one (jurisdiction, category, scope) take the scope's lock row
before the overlap check, so of several overlapping inserts released at
once exactly one survives.  The first use of a scope races on creating the
lock row itself; the loser rolls back its savepoint and waits on the row.
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import date
from decimal import Decimal
from threading import Barrier
from uuid import UUID

import pytest

from ledger_kernel.exceptions import OverlappingTaxRateError

pytestmark = pytest.mark.slow_locks

THREADS = 8


def _run_together(fn, args_list):
    """Run ``fn(*args)`` for each args tuple, all released at once.  Returns results or exceptions."""
    barrier = Barrier(len(args_list))

    def _call(args):
        barrier.wait(timeout=30)
        try:
            return fn(*args)
        except Exception as exc:
            return exc

    with ThreadPoolExecutor(max_workers=len(args_list)) as pool:
        return list(pool.map(_call, args_list))


class TestOverlappingInserts:
    def test_one_global_rate_wins(self, ledger, tenant):
        results = _run_together(
            lambda rate: ledger.add_tax_rate("LT", "STANDARD", rate, date(2024, 1, 1)),
            [(str(20 + i),) for i in range(THREADS)],
        )

        winners = [r for r in results if isinstance(r, UUID)]
        losers = [r for r in results if not isinstance(r, UUID)]
        assert len(winners) == 1, results
        assert all(isinstance(r, OverlappingTaxRateError) for r in losers), losers

        rate = ledger.effective_rate(tenant.tenant_id, "LT", "STANDARD", date(2025, 1, 1))
        assert rate in {Decimal(20 + i) for i in range(THREADS)}

    def test_one_override_wins(self, ledger, tenant):
        results = _run_together(
            lambda start: ledger.add_tax_rate(
                "LT", "STANDARD", "21", start, tenant_id=tenant.tenant_id
            ),
            [(date(2024, 1, 1 + i),) for i in range(THREADS)],
        )

        assert sum(isinstance(r, UUID) for r in results) == 1, results
        assert all(
            isinstance(r, (UUID, OverlappingTaxRateError)) for r in results
        ), results

    def test_overrides_of_different_tenants_coexist(self, ledger, tenant, other_tenant):
        results = _run_together(
            lambda tenant_id: ledger.add_tax_rate(
                "LT", "STANDARD", "21", date(2024, 1, 1), tenant_id=tenant_id
            ),
            [(tenant.tenant_id,), (other_tenant.tenant_id,)],
        )

        assert all(isinstance(r, UUID) for r in results), results


class TestAdjacentInserts:
    def test_disjoint_intervals_all_succeed(self, ledger, tenant):
        results = _run_together(
            lambda year: ledger.add_tax_rate(
                "LT", "REDUCED", "9", date(year, 1, 1), date(year + 1, 1, 1)
            ),
            [(2010 + i,) for i in range(THREADS)],
        )

        assert all(isinstance(r, UUID) for r in results), results
        for i in range(THREADS):
            on_date = date(2010 + i, 6, 1)
            assert ledger.effective_rate(tenant.tenant_id, "LT", "REDUCED", on_date) == Decimal("9")
