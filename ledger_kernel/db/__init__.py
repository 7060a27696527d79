"""Database layer - engine, base classes, types, tenancy and immutability."""

from ledger_kernel.db.base import UUID, Base, TenantScopedMixin, TrackedBase, UUIDString
from ledger_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from ledger_kernel.db.tenancy import bind_tenant, bound_tenant_id
from ledger_kernel.db.types import ExactNumeric, round_money

__all__ = [
    "Base",
    "TrackedBase",
    "TenantScopedMixin",
    "UUIDString",
    "UUID",
    "create_tables",
    "drop_tables",
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_engine_from_url",
    "reset_engine",
    "session_scope",
    "bind_tenant",
    "bound_tenant_id",
    "ExactNumeric",
    "round_money",
]
