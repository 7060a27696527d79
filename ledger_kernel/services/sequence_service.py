"""
SequenceService -- per-tenant entry numbering via locked counter rows.

Responsibility:
    Hands out the next journal entry sequence value of the bound tenant.
    A dedicated counter row per (tenant, sequence name) is locked with
    ``SELECT ... FOR UPDATE`` for the rest of the caller's transaction.

Architecture position:
    Kernel > Services.  Called by JournalWriter when an entry is posted.

Invariants enforced:
    - Uniqueness: two committed entries of one tenant never share a value.
      Aggregate-max-plus-one over journal_entries is never used; the locked
      counter row is the only source of the next value.
    - Transactional: the increment becomes visible when the caller's
      transaction commits.  A rolled-back post leaves a gap, which is
      allowed; a duplicate never is.
    - Per tenant: tenants never contend for each other's counter row.

Failure modes:
    - IntegrityError on a concurrent first use of a counter; handled with a
      savepoint rollback and a locked re-read.
    - TenantContextMissingError when the session is not bound to a tenant.
"""

from sqlalchemy import BigInteger, String, UniqueConstraint, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from ledger_kernel.db.base import Base, TenantScopedMixin
from ledger_kernel.db.tenancy import require_tenant_id
from ledger_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(TenantScopedMixin, Base):
    """
    Named counter of one tenant.

    Row-level locking on this row is the single point of serialization for
    the tenant's entry numbers.
    """

    __tablename__ = "sequence_counters"
    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_sequence_tenant_name"),
    )

    name: Mapped[str] = mapped_column(String(50), nullable=False)

    current_value: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )


class SequenceService:
    """
    Transactional per-tenant sequence numbers.

    Contract:
        ``next_value(name)`` returns the bound tenant's next value for
        ``name``.  The counter row stays locked until the caller's
        transaction ends.

    Non-goals:
        - Does NOT commit; the caller owns the transaction.
    """

    JOURNAL_ENTRY = "journal_entry"

    def __init__(self, session: Session):
        self._session = session

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, sequence_name: str = JOURNAL_ENTRY) -> int:
        """
        Lock the counter row (creating it on first use), increment, return.

        Postconditions:
            - Returns an integer > 0, strictly greater than every value
              previously committed for this tenant and name.
        """
        tenant_id = require_tenant_id(self._session, "SequenceCounter")

        counter = self._locked_counter(sequence_name)

        if counter is None:
            # First use.  A concurrent transaction may create the same row,
            # so the insert runs in a savepoint.
            savepoint = self._session.begin_nested()
            try:
                counter = SequenceCounter(
                    tenant_id=tenant_id,
                    name=sequence_name,
                    current_value=1,
                )
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": 1},
                )
                return 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                counter = self._locked_counter(sequence_name)
                if counter is None:
                    raise

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str = JOURNAL_ENTRY) -> int | None:
        """Current value without incrementing, or None if never used."""
        counter = self._session.execute(
            select(SequenceCounter).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()
        return counter.current_value if counter else None
