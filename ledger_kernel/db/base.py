"""
Module: ledger_kernel.db.base
Responsibility: Declarative base classes for all ORM models: UUID primary
    keys, the column type map, audit columns and the tenant partition column.
Architecture position: Kernel > DB.  Lowest-level import target inside the
    kernel.  MUST NOT import from models/, services/, selectors/ or domain/.

Invariants enforced:
    - UUID primary keys, generated with uuid4.
    - Decimal maps to Numeric(38, 9).  Never float for amounts.
    - Every tracked row records created_by_id (NOT NULL).
    - Every tenant-scoped row carries a NOT NULL, indexed tenant_id.  The
      value is stamped and checked by db/tenancy.py, never by callers.
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, DateTime, ForeignKey, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column
from sqlalchemy.types import TypeDecorator

from ledger_kernel.db.types import ExactNumeric


class UUIDString(TypeDecorator):
    """UUID stored as String(36) so the schema is portable across backends."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(value)
        return None

    def process_result_value(self, value, dialect):
        if value is not None:
            return PyUUID(value)
        return None


class Base(DeclarativeBase):
    """
    Declarative base for all ledger models.

    Guarantees:
        - id is a uuid4 UUID stored as String(36).
        - Decimal maps to ExactNumeric(38, 9) (Numeric; canonical text on SQLite).
        - datetime maps to DateTime(timezone=True).
        - int maps to BigInteger.
    """

    type_annotation_map: ClassVar[dict] = {
        Decimal: ExactNumeric(38, 9),
        datetime: DateTime(timezone=True),
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


class TrackedBase(Base):
    """
    Abstract base with audit timestamps and actor tracking.

    updated_at and updated_by_id are audit metadata and may change on rows
    whose financial columns are otherwise frozen.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    created_by_id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    updated_by_id: Mapped[PyUUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )


class TenantScopedMixin:
    """
    Marks a model as partitioned by tenant.

    Contract:
        Queries against subclasses are filtered to the session's bound
        tenant and flushes are stamped with it (see db/tenancy.py).  A
        subclass never needs to filter on tenant_id itself.
    """

    @declared_attr
    def tenant_id(cls) -> Mapped[PyUUID]:
        return mapped_column(
            UUIDString(),
            ForeignKey("tenants.id"),
            nullable=False,
            index=True,
        )


# Re-export UUID for convenience
UUID = PyUUID
