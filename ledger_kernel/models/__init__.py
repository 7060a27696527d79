"""ORM models for the ledger kernel."""

from ledger_kernel.models.account import Account, AccountType, NormalBalance
from ledger_kernel.models.journal import (
    JournalEntry,
    JournalEntryStatus,
    JournalLine,
    LineSide,
)
from ledger_kernel.models.tax_rate import TaxRate, TaxRateScope
from ledger_kernel.models.tenant import Tenant


def import_all_models() -> None:
    """Import every mapped class so Base.metadata knows all tables."""
    # The counter table lives beside the service that owns it.
    import ledger_kernel.services.sequence_service  # noqa: F401


__all__ = [
    "Account",
    "AccountType",
    "NormalBalance",
    "JournalEntry",
    "JournalEntryStatus",
    "JournalLine",
    "LineSide",
    "TaxRate",
    "TaxRateScope",
    "Tenant",
    "import_all_models",
]
