"""
BaseService -- common constructor for kernel services.

Services receive a Session bound to a tenant and persist with
``session.flush()``.  They never commit or roll back: the caller's
``session_scope()`` owns the transaction, so a multi-step operation such
as void (reversal + post + status change) is all-or-nothing.
"""

from abc import ABC
from uuid import UUID

from sqlalchemy.orm import Session

from ledger_kernel.db.tenancy import require_tenant_id
from ledger_kernel.domain.clock import Clock, SystemClock


class BaseService(ABC):
    """
    Abstract base class for kernel services.

    Guarantees:
        - The service never calls ``session.commit()`` or ``session.rollback()``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()

    @property
    def tenant_id(self) -> UUID:
        """Tenant bound to the session; TenantContextMissingError if none."""
        return require_tenant_id(self.session, type(self).__name__)
