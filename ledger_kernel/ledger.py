"""
LedgerCore -- the programmatic boundary of the ledger kernel.

Responsibility:
    Every public operation takes an opaque tenant id, resolves it to an
    active tenant, binds the tenant to a fresh session and runs the
    operation in one transaction (``session_scope``).  Results leave as
    ids, strings, Decimals or frozen records, never as ORM objects.

Architecture position:
    Outermost kernel layer.  Collaborator modules (invoicing, payments,
    payroll) call this class and nothing below it.

Invariants enforced:
    - No operation runs without a resolved tenant; callers never name a
      partition, only a tenant id.
    - One operation, one transaction: a failure anywhere rolls back every
      write of that operation.
    - Each operation may carry a deadline (seconds); the configured
      default applies otherwise.

Failure modes:
    - Any LedgerKernelError from the layers below, unchanged.
    - TransientError subclasses for infrastructure failures, after rollback.

Usage:
    core = LedgerCore()
    tenant = core.create_tenant("Acme OU", "acme")
    entry_id = core.create_draft(
        tenant.tenant_id,
        date(2025, 1, 15),
        "Invoice 42",
        [LineRequest.debit("1200", "1000.00"), LineRequest.credit("4100", "1000.00")],
    )
    number = core.post(tenant.tenant_id, entry_id, actor_id)
"""

from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Generator
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from ledger_kernel.config import LedgerConfig, get_active_config
from ledger_kernel.db.engine import get_session_factory, session_scope
from ledger_kernel.db.tenancy import bind_tenant
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import (
    AccountRecord,
    JournalEntryRecord,
    LineRequest,
    SourceRef,
    TaxComputation,
)
from ledger_kernel.domain.tenant import TenantContext
from ledger_kernel.exceptions import EntryNotFoundError
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.selectors.journal_selector import JournalSelector
from ledger_kernel.selectors.ledger_selector import (
    AccountBalance,
    BalanceSheet,
    IncomeStatement,
    LedgerSelector,
    TrialBalance,
)
from ledger_kernel.services.account_service import AccountService
from ledger_kernel.services.journal_engine import JournalEngine
from ledger_kernel.services.tax_rate_service import TaxRateService
from ledger_kernel.services.tenant_service import TenantService

logger = get_logger("ledger")


def _entry_uuid(entry_id: UUID | str) -> UUID:
    if isinstance(entry_id, UUID):
        return entry_id
    try:
        return UUID(str(entry_id))
    except ValueError as e:
        raise EntryNotFoundError(str(entry_id)) from e


class LedgerCore:
    """
    Multi-tenant general ledger.

    Thread-safe: each call opens its own session from the shared factory.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        clock: Clock | None = None,
        config: LedgerConfig | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._config = config or get_active_config()

    @property
    def config(self) -> LedgerConfig:
        return self._config

    def _factory(self) -> sessionmaker[Session]:
        return self._session_factory or get_session_factory()

    def _timeout(self, timeout: float | None) -> float | None:
        return timeout if timeout is not None else self._config.default_timeout_seconds

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    @contextmanager
    def tenant_session(
        self,
        tenant_id: UUID | str,
        timeout: float | None = None,
        actor_id: UUID | None = None,
    ) -> Generator[tuple[Session, TenantContext], None, None]:
        """
        A transaction bound to an active tenant.

        Yields ``(session, tenant)``.  Commits on normal exit, rolls back on
        any exception.
        """
        with session_scope(self._timeout(timeout), self._factory()) as session:
            tenant = TenantService(session, self._clock, self._config).resolve(tenant_id)
            bind_tenant(session, tenant.tenant_id)
            with LogContext.bind(
                tenant_id=str(tenant.tenant_id),
                actor_id=str(actor_id) if actor_id else None,
            ):
                yield session, tenant

    @contextmanager
    def _global_session(self, timeout: float | None = None) -> Generator[Session, None, None]:
        with session_scope(self._timeout(timeout), self._factory()) as session:
            yield session

    def _engine(self, session: Session, tenant: TenantContext) -> JournalEngine:
        return JournalEngine(session, tenant, self._clock, self._config)

    # ------------------------------------------------------------------
    # Tenants
    # ------------------------------------------------------------------

    def create_tenant(
        self,
        name: str,
        slug: str,
        base_currency: str | None = None,
        country_code: str = "EE",
        actor_id: UUID | None = None,
        bootstrap_chart: bool = True,
        timeout: float | None = None,
    ) -> TenantContext:
        """Register a tenant; seeds the default chart unless told otherwise."""
        with self._global_session(timeout) as session:
            return TenantService(session, self._clock, self._config).create_tenant(
                name,
                slug,
                base_currency=base_currency,
                country_code=country_code,
                actor_id=actor_id,
                bootstrap_chart=bootstrap_chart,
            )

    def resolve_tenant(self, tenant_id: UUID | str) -> TenantContext:
        with self._global_session() as session:
            return TenantService(session, self._clock, self._config).resolve(tenant_id)

    def deactivate_tenant(self, tenant_id: UUID | str, actor_id: UUID | None = None) -> None:
        with self._global_session() as session:
            TenantService(session, self._clock, self._config).deactivate_tenant(tenant_id, actor_id)

    # ------------------------------------------------------------------
    # Journal
    # ------------------------------------------------------------------

    def create_draft(
        self,
        tenant_id: UUID | str,
        entry_date: date,
        description: str,
        lines: list[LineRequest],
        source_ref: SourceRef | None = None,
        reference: str | None = None,
        actor_id: UUID | None = None,
        timeout: float | None = None,
    ) -> UUID:
        """Validate and persist a DRAFT entry.  Returns its id."""
        with self.tenant_session(tenant_id, timeout, actor_id) as (session, tenant):
            entry = self._engine(session, tenant).create_draft(
                entry_date,
                description,
                lines,
                actor_id=actor_id,
                source_ref=source_ref,
                reference=reference,
            )
            return entry.id

    def post(
        self,
        tenant_id: UUID | str,
        entry_id: UUID | str,
        actor_id: UUID | None,
        timeout: float | None = None,
    ) -> str:
        """Post a draft.  Returns the assigned entry number, e.g. ``JE-00001``."""
        with self.tenant_session(tenant_id, timeout, actor_id) as (session, tenant):
            entry = self._engine(session, tenant).post(_entry_uuid(entry_id), actor_id)
            return entry.entry_number

    def void(
        self,
        tenant_id: UUID | str,
        entry_id: UUID | str,
        actor_id: UUID | None,
        reason: str,
        void_date: date | None = None,
        timeout: float | None = None,
    ) -> UUID:
        """Void a posted entry.  Returns the id of the posted reversal."""
        with self.tenant_session(tenant_id, timeout, actor_id) as (session, tenant):
            reversal = self._engine(session, tenant).void(
                _entry_uuid(entry_id), actor_id, reason, void_date=void_date
            )
            return reversal.id

    def get_entry(self, tenant_id: UUID | str, entry_id: UUID | str) -> JournalEntryRecord:
        with self.tenant_session(tenant_id) as (session, _):
            record = JournalSelector(session).get_entry(_entry_uuid(entry_id))
            if record is None:
                raise EntryNotFoundError(str(entry_id))
            return record

    def get_entry_by_number(self, tenant_id: UUID | str, entry_number: str) -> JournalEntryRecord:
        with self.tenant_session(tenant_id) as (session, _):
            record = JournalSelector(session).get_by_number(entry_number)
            if record is None:
                raise EntryNotFoundError(entry_number)
            return record

    def list_entries(self, tenant_id: UUID | str, **filters) -> list[JournalEntryRecord]:
        with self.tenant_session(tenant_id) as (session, _):
            return JournalSelector(session).list_entries(**filters)

    # ------------------------------------------------------------------
    # Balances and statements
    # ------------------------------------------------------------------

    def account_balance(
        self,
        tenant_id: UUID | str,
        account_id: UUID | str,
        as_of_date: date | None = None,
        timeout: float | None = None,
    ) -> Decimal:
        """
        Net balance on the account's normal side.

        ``account_id`` may be a code.  Without ``as_of_date`` all history counts.
        """
        return self.account_balance_detail(tenant_id, account_id, as_of_date, timeout).balance

    def account_balance_detail(
        self,
        tenant_id: UUID | str,
        account_id: UUID | str,
        as_of_date: date | None = None,
        timeout: float | None = None,
    ) -> AccountBalance:
        with self.tenant_session(tenant_id, timeout) as (session, _):
            account = AccountService(session, self._clock, self._config).lookup(account_id)
            return LedgerSelector(session).account_balance(account.id, as_of_date)

    def trial_balance(
        self,
        tenant_id: UUID | str,
        as_of_date: date,
        timeout: float | None = None,
    ) -> TrialBalance:
        with self.tenant_session(tenant_id, timeout) as (session, _):
            return LedgerSelector(session).trial_balance(as_of_date)

    def balance_sheet(self, tenant_id: UUID | str, as_of_date: date) -> BalanceSheet:
        with self.tenant_session(tenant_id) as (session, _):
            return LedgerSelector(session).balance_sheet(as_of_date)

    def income_statement(
        self,
        tenant_id: UUID | str,
        start_date: date,
        end_date: date,
    ) -> IncomeStatement:
        with self.tenant_session(tenant_id) as (session, _):
            return LedgerSelector(session).income_statement(start_date, end_date)

    # ------------------------------------------------------------------
    # Chart of accounts
    # ------------------------------------------------------------------

    def create_account(
        self,
        tenant_id: UUID | str,
        code: str,
        name: str,
        account_type: str,
        parent: UUID | str | None = None,
        description: str | None = None,
        actor_id: UUID | None = None,
    ) -> AccountRecord:
        with self.tenant_session(tenant_id, actor_id=actor_id) as (session, _):
            account = AccountService(session, self._clock, self._config).create_account(
                code,
                name,
                account_type,
                parent=parent,
                description=description,
                actor_id=actor_id,
            )
            return AccountRecord.from_model(account)

    def resolve_account(self, tenant_id: UUID | str, code: str) -> AccountRecord:
        with self.tenant_session(tenant_id) as (session, _):
            account = AccountService(session, self._clock, self._config).resolve(code)
            return AccountRecord.from_model(account)

    def list_accounts(self, tenant_id: UUID | str, active_only: bool = False) -> list[AccountRecord]:
        with self.tenant_session(tenant_id) as (session, _):
            accounts = AccountService(session, self._clock, self._config).list_accounts(
                active_only=active_only
            )
            return [AccountRecord.from_model(a) for a in accounts]

    def update_account(
        self,
        tenant_id: UUID | str,
        account_id: UUID,
        actor_id: UUID | None = None,
        **changes,
    ) -> AccountRecord:
        """Apply ``name``, ``description`` and/or ``parent`` changes."""
        with self.tenant_session(tenant_id, actor_id=actor_id) as (session, _):
            account = AccountService(session, self._clock, self._config).update_account(
                account_id, actor_id=actor_id, **changes
            )
            return AccountRecord.from_model(account)

    def deactivate_account(
        self,
        tenant_id: UUID | str,
        account_id: UUID,
        actor_id: UUID | None = None,
    ) -> AccountRecord:
        with self.tenant_session(tenant_id, actor_id=actor_id) as (session, _):
            account = AccountService(session, self._clock, self._config).deactivate(
                account_id, actor_id
            )
            return AccountRecord.from_model(account)

    def delete_account(self, tenant_id: UUID | str, account_id: UUID) -> None:
        with self.tenant_session(tenant_id) as (session, _):
            AccountService(session, self._clock, self._config).delete_account(account_id)

    # ------------------------------------------------------------------
    # Tax rates
    # ------------------------------------------------------------------

    def effective_rate(
        self,
        tenant_id: UUID | str,
        jurisdiction: str,
        category: str,
        on_date: date,
        timeout: float | None = None,
    ) -> Decimal:
        """The percentage in force on ``on_date``, e.g. ``Decimal('22.00')``."""
        with self.tenant_session(tenant_id, timeout) as (session, _):
            rate = TaxRateService(session, self._clock).effective_rate(
                jurisdiction, category, on_date
            )
            return Decimal(rate.rate)

    def compute_tax(
        self,
        tenant_id: UUID | str,
        base_amount: Decimal | str,
        currency: str,
        jurisdiction: str,
        category: str,
        on_date: date,
    ) -> TaxComputation:
        with self.tenant_session(tenant_id) as (session, _):
            return TaxRateService(session, self._clock).compute_tax(
                base_amount, currency, jurisdiction, category, on_date
            )

    def add_tax_rate(
        self,
        jurisdiction: str,
        category: str,
        rate: Decimal | str,
        valid_from: date,
        valid_to: date | None = None,
        name: str | None = None,
        account_code: str | None = None,
        tenant_id: UUID | str | None = None,
        actor_id: UUID | None = None,
    ) -> UUID:
        """Add a global rate, or a tenant override when ``tenant_id`` is given."""
        kwargs = dict(
            valid_to=valid_to,
            name=name,
            account_code=account_code,
            tenant_override=tenant_id is not None,
            actor_id=actor_id,
        )
        if tenant_id is None:
            with self._global_session() as session:
                return TaxRateService(session, self._clock).add_rate(
                    jurisdiction, category, rate, valid_from, **kwargs
                ).id
        with self.tenant_session(tenant_id, actor_id=actor_id) as (session, _):
            return TaxRateService(session, self._clock).add_rate(
                jurisdiction, category, rate, valid_from, **kwargs
            ).id

    def close_tax_rate(
        self,
        rate_id: UUID,
        valid_to: date,
        tenant_id: UUID | str | None = None,
        actor_id: UUID | None = None,
    ) -> None:
        if tenant_id is None:
            with self._global_session() as session:
                TaxRateService(session, self._clock).close_rate(rate_id, valid_to, actor_id)
            return
        with self.tenant_session(tenant_id, actor_id=actor_id) as (session, _):
            TaxRateService(session, self._clock).close_rate(rate_id, valid_to, actor_id)

    def load_tax_rates(self, path: Path | str | None = None) -> int:
        """Seed global rates from YAML (Estonian VAT by default).  Returns rows added."""
        with self._global_session() as session:
            return len(TaxRateService(session, self._clock).load_rates_from_yaml(path))
