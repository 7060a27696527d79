"""
Module: ledger_kernel.selectors.base
Responsibility: Base class for read-only query selectors.
Architecture position: Kernel > Selectors.  May import from db/, models/ and
    domain/.  Selectors never add, delete, flush or commit.

Invariants enforced:
    - Results are DTOs, never ORM instances.
    - Balances are always derived from journal lines; nothing is stored.
    - Tenant filtering comes from the session binding (db/tenancy.py).
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseSelector(ABC):
    """Holds the caller's session; subclasses implement the queries."""

    def __init__(self, session: Session):
        self.session = session
