"""
Pure domain layer.

Value objects, DTOs, the tenant context and the clock.  No ORM, no
database, no I/O (except SystemClock).
"""

from ledger_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from ledger_kernel.domain.currency import CurrencyInfo, CurrencyRegistry
from ledger_kernel.domain.dtos import (
    AccountRecord,
    JournalEntryRecord,
    JournalLineRecord,
    LineRequest,
    LineSide,
    SourceRef,
    TaxComputation,
)
from ledger_kernel.domain.tenant import SYSTEM_ACTOR_ID, TenantContext
from ledger_kernel.domain.values import ExchangeRate, Money

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "CurrencyInfo",
    "CurrencyRegistry",
    "AccountRecord",
    "JournalEntryRecord",
    "JournalLineRecord",
    "LineRequest",
    "LineSide",
    "SourceRef",
    "TaxComputation",
    "SYSTEM_ACTOR_ID",
    "TenantContext",
    "ExchangeRate",
    "Money",
]
