"""Read-only query selectors."""

from ledger_kernel.selectors.journal_selector import JournalSelector
from ledger_kernel.selectors.ledger_selector import (
    AccountBalance,
    BalanceSheet,
    IncomeStatement,
    LedgerSelector,
    TrialBalance,
    TrialBalanceRow,
)

__all__ = [
    "JournalSelector",
    "LedgerSelector",
    "AccountBalance",
    "BalanceSheet",
    "IncomeStatement",
    "TrialBalance",
    "TrialBalanceRow",
]
