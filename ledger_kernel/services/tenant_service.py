"""
TenantService -- tenant registry and tenant resolution.

Responsibility:
    Turns an opaque tenant identifier into a ``TenantContext``, the only
    form in which a tenant reaches the rest of the kernel.  Also creates
    tenants (seeding the default chart of accounts) and deactivates them.

Architecture position:
    Kernel > Services.  Used by ``LedgerCore.tenant_session()`` before any
    tenant-scoped query runs.

Invariants enforced:
    - Only an existing, active tenant resolves.
    - A tenant's chart is seeded inside a session bound to that tenant, so
      every seeded account carries its tenant_id.

Failure modes:
    - TenantNotFoundError: unknown id, malformed id or inactive tenant.
    - InvalidCurrencyError: base currency is not an ISO 4217 code.
"""

from uuid import UUID, uuid4

from sqlalchemy import select

from ledger_kernel.config import LedgerConfig, get_active_config
from ledger_kernel.db.tenancy import tenant_bound
from ledger_kernel.domain.currency import CurrencyRegistry
from ledger_kernel.domain.tenant import SYSTEM_ACTOR_ID, TenantContext
from ledger_kernel.exceptions import TenantNotFoundError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.tenant import Tenant
from ledger_kernel.services.base import BaseService

logger = get_logger("services.tenant")


def parse_tenant_id(tenant_id: UUID | str) -> UUID:
    """UUID from a caller-supplied identifier; TenantNotFoundError if malformed."""
    if isinstance(tenant_id, UUID):
        return tenant_id
    try:
        return UUID(str(tenant_id))
    except ValueError as e:
        raise TenantNotFoundError(str(tenant_id)) from e


class TenantService(BaseService):
    """Tenant lookup and lifecycle.  Works on sessions with no tenant bound."""

    def __init__(self, session, clock=None, config: LedgerConfig | None = None):
        super().__init__(session, clock)
        self.config = config or get_active_config()

    def get(self, tenant_id: UUID | str) -> Tenant:
        tenant = self.session.get(Tenant, parse_tenant_id(tenant_id))
        if tenant is None:
            raise TenantNotFoundError(str(tenant_id))
        return tenant

    def resolve(self, tenant_id: UUID | str) -> TenantContext:
        """
        Resolve an identifier to an active tenant.

        Raises:
            TenantNotFoundError: unknown, malformed or inactive tenant.
        """
        tenant = self.get(tenant_id)
        if not tenant.is_active:
            logger.warning("tenant_inactive", extra={"tenant_id": str(tenant.id)})
            raise TenantNotFoundError(str(tenant_id))
        return TenantContext.from_model(tenant)

    def get_by_slug(self, slug: str) -> Tenant:
        tenant = self.session.execute(
            select(Tenant).where(Tenant.slug == slug)
        ).scalar_one_or_none()
        if tenant is None:
            raise TenantNotFoundError(slug)
        return tenant

    def list_tenants(self, active_only: bool = True) -> list[Tenant]:
        query = select(Tenant).order_by(Tenant.slug)
        if active_only:
            query = query.where(Tenant.is_active.is_(True))
        return list(self.session.execute(query).scalars())

    def create_tenant(
        self,
        name: str,
        slug: str,
        base_currency: str | None = None,
        country_code: str = "EE",
        actor_id: UUID | None = None,
        bootstrap_chart: bool = True,
    ) -> TenantContext:
        """
        Register a tenant, optionally seeding the default chart of accounts.

        A duplicate slug surfaces as ConcurrentWriteConflictError from the
        enclosing session_scope().
        """
        from ledger_kernel.services.account_service import AccountService

        actor_id = actor_id or SYSTEM_ACTOR_ID
        currency = CurrencyRegistry.validate(base_currency or self.config.default_base_currency)

        tenant = Tenant(
            id=uuid4(),
            name=name,
            slug=slug,
            base_currency=currency,
            country_code=country_code.upper(),
            is_active=True,
            created_by_id=actor_id,
        )
        self.session.add(tenant)
        self.session.flush()

        seeded = 0
        if bootstrap_chart:
            with tenant_bound(self.session, tenant.id):
                accounts = AccountService(
                    self.session, self.clock, self.config
                ).bootstrap_default_chart(actor_id=actor_id)
            seeded = len(accounts)

        logger.info(
            "tenant_created",
            extra={
                "tenant_id": str(tenant.id),
                "slug": slug,
                "base_currency": currency,
                "accounts_seeded": seeded,
            },
        )
        return TenantContext.from_model(tenant)

    def deactivate_tenant(self, tenant_id: UUID | str, actor_id: UUID | None = None) -> Tenant:
        tenant = self.get(tenant_id)
        if tenant.is_active:
            tenant.is_active = False
            tenant.updated_by_id = actor_id or SYSTEM_ACTOR_ID
            self.session.flush()
            logger.info("tenant_deactivated", extra={"tenant_id": str(tenant.id)})
        return tenant
