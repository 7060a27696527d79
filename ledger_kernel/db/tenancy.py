"""
Module: ledger_kernel.db.tenancy
Responsibility: Tenant isolation at the storage-access layer.  A session is
    bound to one tenant; from then on every ORM statement it executes is
    filtered to that tenant and every row it flushes is stamped with it.
Architecture position: Kernel > DB.  Imports db/base.py and the exception
    hierarchy only.

Invariants enforced:
    - Every ORM SELECT, UPDATE and DELETE touching a TenantScopedMixin
      model carries ``tenant_id = <bound tenant>`` criteria, including
      joined and aliased occurrences.
    - A tenant-scoped statement with no bound tenant is refused.
    - New rows without a tenant_id are stamped with the bound tenant; rows
      carrying another tenant's id are refused.

Failure modes:
    - TenantContextMissingError: scoped statement or flush with no tenant.
    - CrossTenantWriteError: flush of a row owned by a different tenant.
"""

from contextlib import contextmanager
from typing import Generator
from uuid import UUID

from sqlalchemy import event
from sqlalchemy.orm import ORMExecuteState, Session, with_loader_criteria

from ledger_kernel.db.base import TenantScopedMixin
from ledger_kernel.exceptions import CrossTenantWriteError, TenantContextMissingError
from ledger_kernel.logging_config import get_logger

logger = get_logger("db.tenancy")

TENANT_INFO_KEY = "ledger_kernel.tenant_id"


def bind_tenant(session: Session, tenant_id: UUID) -> None:
    """Bind ``session`` to a tenant for the rest of its life (or until unbound)."""
    session.info[TENANT_INFO_KEY] = tenant_id


def unbind_tenant(session: Session) -> None:
    session.info.pop(TENANT_INFO_KEY, None)


def bound_tenant_id(session: Session) -> UUID | None:
    """The tenant the session is bound to, or None."""
    return session.info.get(TENANT_INFO_KEY)


def require_tenant_id(session: Session, entity: str = "tenant data") -> UUID:
    tenant_id = bound_tenant_id(session)
    if tenant_id is None:
        raise TenantContextMissingError(entity)
    return tenant_id


@contextmanager
def tenant_bound(session: Session, tenant_id: UUID) -> Generator[Session, None, None]:
    """Temporarily bind ``session`` to ``tenant_id``, restoring the previous binding."""
    previous = bound_tenant_id(session)
    bind_tenant(session, tenant_id)
    try:
        yield session
    finally:
        if previous is None:
            unbind_tenant(session)
        else:
            bind_tenant(session, previous)


def _scoped_mapper_names(state: ORMExecuteState) -> list[str]:
    return [
        m.class_.__name__
        for m in state.all_mappers
        if issubclass(m.class_, TenantScopedMixin)
    ]


def _add_tenant_criteria(state: ORMExecuteState) -> None:
    if not state.is_orm_statement:
        return
    if state.is_column_load or state.is_relationship_load:
        return
    if not (state.is_select or state.is_update or state.is_delete):
        return

    tenant_id = bound_tenant_id(state.session)
    if tenant_id is None:
        scoped = _scoped_mapper_names(state)
        if scoped:
            raise TenantContextMissingError(", ".join(scoped))
        return

    state.statement = state.statement.options(
        with_loader_criteria(
            TenantScopedMixin,
            lambda cls: cls.tenant_id == tenant_id,
            include_aliases=True,
        )
    )


def _stamp_tenant(session: Session, flush_context, instances) -> None:
    tenant_id = bound_tenant_id(session)

    for obj in session.new:
        if not isinstance(obj, TenantScopedMixin):
            continue
        if tenant_id is None:
            raise TenantContextMissingError(type(obj).__name__)
        if obj.tenant_id is None:
            obj.tenant_id = tenant_id
        elif obj.tenant_id != tenant_id:
            _refuse(obj, tenant_id)

    for obj in list(session.dirty) + list(session.deleted):
        if not isinstance(obj, TenantScopedMixin):
            continue
        if tenant_id is None:
            raise TenantContextMissingError(type(obj).__name__)
        if obj.tenant_id != tenant_id:
            _refuse(obj, tenant_id)


def _refuse(obj: TenantScopedMixin, tenant_id: UUID) -> None:
    logger.error(
        "cross_tenant_write_blocked",
        extra={
            "entity_type": type(obj).__name__,
            "row_tenant_id": str(obj.tenant_id),
            "bound_tenant_id": str(tenant_id),
        },
    )
    raise CrossTenantWriteError(type(obj).__name__, str(obj.tenant_id), str(tenant_id))


_LISTENERS = (
    ("do_orm_execute", _add_tenant_criteria),
    ("before_flush", _stamp_tenant),
)


def register_tenancy_listeners() -> None:
    """Install the session hooks on every Session.  Idempotent."""
    for name, fn in _LISTENERS:
        if not event.contains(Session, name, fn):
            event.listen(Session, name, fn)


def unregister_tenancy_listeners() -> None:
    for name, fn in _LISTENERS:
        if event.contains(Session, name, fn):
            event.remove(Session, name, fn)
