"""
Ledger Kernel - multi-tenant general ledger core

The double-entry journal engine every bookkeeping module writes through:
- Draft -> Posted -> Voided journal entries with reversal on void
- Per-tenant serialized entry numbering
- Exact decimal balances, trial balance and statements
- Date-effective tax rate resolution
- Tenant isolation enforced at the storage-access layer
"""

__version__ = "0.1.0"
