"""Tenant context -- the resolved identity every ledger operation runs under."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING
from uuid import UUID

if TYPE_CHECKING:
    from ledger_kernel.models.tenant import Tenant

# Actor recorded when the caller does not name one (seeding, migrations).
SYSTEM_ACTOR_ID = UUID(int=0)


@dataclass(frozen=True)
class TenantContext:
    """
    A resolved, active tenant.

    Produced only by TenantService.resolve(); holding one means the tenant
    existed and was active when the operation started.
    """

    tenant_id: UUID
    name: str
    slug: str
    base_currency: str
    country_code: str

    @classmethod
    def from_model(cls, tenant: Tenant) -> TenantContext:
        return cls(
            tenant_id=tenant.id,
            name=tenant.name,
            slug=tenant.slug,
            base_currency=tenant.base_currency,
            country_code=tenant.country_code,
        )
