"""Kernel services.  Each takes a tenant-bound Session and never commits."""

from ledger_kernel.services.account_service import AccountService
from ledger_kernel.services.journal_engine import JournalEngine
from ledger_kernel.services.journal_writer import JournalWriter, PreparedLine
from ledger_kernel.services.sequence_service import SequenceCounter, SequenceService
from ledger_kernel.services.tax_rate_service import TaxRateService
from ledger_kernel.services.tenant_service import TenantService

__all__ = [
    "AccountService",
    "JournalEngine",
    "JournalWriter",
    "PreparedLine",
    "SequenceCounter",
    "SequenceService",
    "TaxRateService",
    "TenantService",
]
