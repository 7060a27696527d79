"""
TaxRateService -- date-effective tax rate resolution.

Responsibility:
    Resolves the rate in force for (jurisdiction, category, date), preferring
    the bound tenant's override over the global default; computes tax on a
    base amount; maintains the rate table (add, close, seed from YAML).

Architecture position:
    Kernel > Services.  TaxRate is not tenant-scoped (global rows have no
    tenant), so every query here filters on tenant_id explicitly.

Invariants enforced:
    - Resolution never defaults to zero: no covering rate is an error.
    - At most one rate per (jurisdiction, category, scope) covers a date.
      add_rate() refuses overlaps; finding two at lookup time is an
      integrity alarm.
    - Rates are never deleted; close_rate() only sets an open valid_to, and
      only within the session's own scope: a tenant session closes its own
      overrides, the unbound session closes global rates.
    - add_rate() locks the scope's TaxRateScope row before its overlap
      check, so concurrent writers of one scope serialize.
    - Intervals are half-open: valid_from inclusive, valid_to exclusive.

Failure modes:
    - NoRateDefinedError, TaxRateNotFoundError.
    - AmbiguousTaxRateError (IntegrityAlarm), logged at CRITICAL.
    - InvalidDateIntervalError, InvalidTaxRateError, OverlappingTaxRateError
      on writes.
"""

from datetime import date
from decimal import Decimal
from pathlib import Path
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError

from ledger_kernel.config import load_yaml_file, parse_date
from ledger_kernel.db.tenancy import bound_tenant_id
from ledger_kernel.db.types import fits_scale, round_money
from ledger_kernel.domain.currency import CurrencyRegistry
from ledger_kernel.domain.dtos import TaxComputation
from ledger_kernel.domain.tenant import SYSTEM_ACTOR_ID
from ledger_kernel.domain.values import to_decimal
from ledger_kernel.exceptions import (
    AmbiguousTaxRateError,
    InvalidDateIntervalError,
    InvalidTaxRateError,
    NoRateDefinedError,
    OverlappingTaxRateError,
    TaxRateNotFoundError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.tax_rate import RATE_PRECISION, RATE_SCALE, TaxRate, TaxRateScope
from ledger_kernel.services.base import BaseService

logger = get_logger("services.tax_rate")

ESTONIAN_VAT_PATH = Path(__file__).resolve().parent.parent / "data" / "tax_rates_ee.yaml"

_HUNDRED = Decimal("100")


def _label(value: str) -> str:
    return value.strip().upper()


def _rate_value(rate) -> Decimal:
    try:
        value = to_decimal(rate)
    except (TypeError, ValueError) as e:
        raise InvalidTaxRateError(repr(rate), str(e)) from e
    if not value.is_finite() or value < 0:
        raise InvalidTaxRateError(str(value), "must be a non-negative number")
    if not fits_scale(value, RATE_SCALE, precision=RATE_PRECISION):
        raise InvalidTaxRateError(
            str(value), f"at most {RATE_SCALE} decimal places and {RATE_PRECISION} digits"
        )
    return value


class TaxRateService(BaseService):
    """Tax rate lookup and maintenance."""

    def _scope_filter(self, tenant_id: UUID | None):
        if tenant_id is None:
            return TaxRate.tenant_id.is_(None)
        return TaxRate.tenant_id == tenant_id

    def _covering(self, jurisdiction: str, category: str, on_date: date, tenant_id):
        query = (
            select(TaxRate)
            .where(
                TaxRate.jurisdiction == jurisdiction,
                TaxRate.category == category,
                TaxRate.valid_from <= on_date,
                or_(TaxRate.valid_to.is_(None), TaxRate.valid_to > on_date),
                self._scope_filter(tenant_id),
            )
            .order_by(TaxRate.valid_from)
        )
        return list(self.session.execute(query).scalars())

    def _locked_scope(self, jurisdiction: str, category: str, scope: str) -> TaxRateScope | None:
        return self.session.execute(
            select(TaxRateScope)
            .where(
                TaxRateScope.jurisdiction == jurisdiction,
                TaxRateScope.category == category,
                TaxRateScope.scope == scope,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _lock_scope(self, jurisdiction: str, category: str, tenant_id: UUID | None) -> None:
        """Lock the scope row for the rest of the transaction, creating it on first use."""
        scope = TaxRateScope.key_for(tenant_id)
        if self._locked_scope(jurisdiction, category, scope) is not None:
            return

        # A concurrent writer may create the same row; insert in a savepoint.
        savepoint = self.session.begin_nested()
        try:
            self.session.add(
                TaxRateScope(jurisdiction=jurisdiction, category=category, scope=scope)
            )
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            logger.debug(
                "tax_rate_scope_race_retry",
                extra={"jurisdiction": jurisdiction, "category": category, "scope": scope},
            )
            savepoint.rollback()
            if self._locked_scope(jurisdiction, category, scope) is None:
                raise

    def effective_rate(self, jurisdiction: str, category: str, on_date: date) -> TaxRate:
        """
        The single rate covering ``on_date``.

        The bound tenant's override wins over the global default; the global
        default is consulted only when no override covers the date.

        Raises:
            NoRateDefinedError: nothing covers the date in either scope.
            AmbiguousTaxRateError: two rates of one scope cover the date.
        """
        jurisdiction, category = _label(jurisdiction), _label(category)
        tenant_id = self.tenant_id

        for scope in (tenant_id, None):
            matches = self._covering(jurisdiction, category, on_date, scope)
            if len(matches) > 1:
                rate_ids = [str(r.id) for r in matches]
                logger.critical(
                    "ambiguous_tax_rate",
                    extra={
                        "jurisdiction": jurisdiction,
                        "category": category,
                        "on_date": on_date.isoformat(),
                        "rate_ids": rate_ids,
                        "scope": "tenant" if scope else "global",
                    },
                )
                raise AmbiguousTaxRateError(jurisdiction, category, on_date.isoformat(), rate_ids)
            if matches:
                return matches[0]

        raise NoRateDefinedError(jurisdiction, category, on_date.isoformat())

    def compute_tax(
        self,
        base_amount: Decimal | int | str,
        currency: str,
        jurisdiction: str,
        category: str,
        on_date: date,
    ) -> TaxComputation:
        """
        Tax on ``base_amount`` at the rate in force on ``on_date``.

        The tax is rounded half away from zero to the currency's minor unit.
        The returned ``rate`` is the value callers freeze into their lines.
        """
        amount = to_decimal(base_amount)
        currency = CurrencyRegistry.validate(currency)
        rate = self.effective_rate(jurisdiction, category, on_date)
        rate_value = Decimal(rate.rate)
        tax = round_money(
            amount * rate_value / _HUNDRED,
            CurrencyRegistry.get_decimal_places(currency),
        )
        return TaxComputation(
            rate_id=rate.id,
            jurisdiction=rate.jurisdiction,
            category=rate.category,
            on_date=on_date,
            rate=rate_value,
            base_amount=amount,
            tax_amount=tax,
            currency=currency,
            account_code=rate.account_code,
        )

    def get(self, rate_id: UUID) -> TaxRate:
        rate = self.session.execute(
            select(TaxRate).where(
                TaxRate.id == rate_id,
                or_(TaxRate.tenant_id.is_(None), TaxRate.tenant_id == bound_tenant_id(self.session)),
            )
        ).scalar_one_or_none()
        if rate is None:
            raise TaxRateNotFoundError(str(rate_id))
        return rate

    def list_rates(
        self,
        jurisdiction: str | None = None,
        category: str | None = None,
    ) -> list[TaxRate]:
        """Global rates plus the bound tenant's overrides, oldest first."""
        tenant_id = bound_tenant_id(self.session)
        query = select(TaxRate).order_by(
            TaxRate.jurisdiction, TaxRate.category, TaxRate.valid_from
        )
        if tenant_id is None:
            query = query.where(TaxRate.tenant_id.is_(None))
        else:
            query = query.where(or_(TaxRate.tenant_id.is_(None), TaxRate.tenant_id == tenant_id))
        if jurisdiction is not None:
            query = query.where(TaxRate.jurisdiction == _label(jurisdiction))
        if category is not None:
            query = query.where(TaxRate.category == _label(category))
        return list(self.session.execute(query).scalars())

    def add_rate(
        self,
        jurisdiction: str,
        category: str,
        rate: Decimal | int | str,
        valid_from: date,
        valid_to: date | None = None,
        name: str | None = None,
        account_code: str | None = None,
        tenant_override: bool = False,
        actor_id: UUID | None = None,
    ) -> TaxRate:
        """
        Insert a rate, global by default or as the bound tenant's override.

        Raises:
            InvalidDateIntervalError: valid_to not after valid_from.
            OverlappingTaxRateError: another rate of the same scope overlaps.
            InvalidTaxRateError: negative, or more precise than the column.
        """
        jurisdiction, category = _label(jurisdiction), _label(category)
        rate_value = _rate_value(rate)
        if valid_to is not None and valid_to <= valid_from:
            raise InvalidDateIntervalError(valid_from.isoformat(), valid_to.isoformat())

        tenant_id = self.tenant_id if tenant_override else None

        self._lock_scope(jurisdiction, category, tenant_id)

        same_scope = self.session.execute(
            select(TaxRate).where(
                TaxRate.jurisdiction == jurisdiction,
                TaxRate.category == category,
                self._scope_filter(tenant_id),
            )
        ).scalars()
        for existing in same_scope:
            if existing.overlaps(valid_from, valid_to):
                raise OverlappingTaxRateError(jurisdiction, category, str(existing.id))

        tax_rate = TaxRate(
            tenant_id=tenant_id,
            jurisdiction=jurisdiction,
            category=category,
            name=name,
            rate=rate_value,
            valid_from=valid_from,
            valid_to=valid_to,
            account_code=account_code,
            created_by_id=actor_id or SYSTEM_ACTOR_ID,
        )
        self.session.add(tax_rate)
        self.session.flush()

        logger.info(
            "tax_rate_added",
            extra={
                "rate_id": str(tax_rate.id),
                "jurisdiction": jurisdiction,
                "category": category,
                "rate": str(rate_value),
                "valid_from": valid_from.isoformat(),
                "valid_to": valid_to.isoformat() if valid_to else None,
                "scope": "tenant" if tenant_id else "global",
            },
        )
        return tax_rate

    def close_rate(self, rate_id: UUID, valid_to: date, actor_id: UUID | None = None) -> TaxRate:
        """
        Close an open rate interval.

        Only rates of the session's own scope can be closed; a global rate
        seen from a tenant session is read-only.  Closing an already-closed
        rate is refused by the immutability listeners.

        Raises:
            TaxRateNotFoundError: unknown id, or a rate of another scope.
        """
        tax_rate = self.get(rate_id)
        if tax_rate.tenant_id != bound_tenant_id(self.session):
            logger.warning(
                "tax_rate_close_refused",
                extra={"rate_id": str(rate_id), "scope": "tenant" if tax_rate.tenant_id else "global"},
            )
            raise TaxRateNotFoundError(str(rate_id))
        if valid_to <= tax_rate.valid_from:
            raise InvalidDateIntervalError(tax_rate.valid_from.isoformat(), valid_to.isoformat())

        tax_rate.valid_to = valid_to
        tax_rate.updated_by_id = actor_id or SYSTEM_ACTOR_ID
        self.session.flush()
        logger.info(
            "tax_rate_closed",
            extra={"rate_id": str(tax_rate.id), "valid_to": valid_to.isoformat()},
        )
        return tax_rate

    def load_rates_from_yaml(
        self,
        path: Path | str | None = None,
        tenant_override: bool = False,
        actor_id: UUID | None = None,
    ) -> list[TaxRate]:
        """
        Seed rates from a YAML file (the Estonian VAT history by default).

        A rate already present with the same scope, jurisdiction, category,
        start date and value is skipped, so seeding is repeatable.
        """
        data = load_yaml_file(Path(path) if path else ESTONIAN_VAT_PATH)
        default_jurisdiction = data.get("jurisdiction")
        default_account = data.get("account_code")
        scope_tenant = self.tenant_id if tenant_override else None

        existing = {
            (r.jurisdiction, r.category, r.valid_from, Decimal(r.rate))
            for r in self.session.execute(
                select(TaxRate).where(self._scope_filter(scope_tenant))
            ).scalars()
        }

        created = []
        for entry in data.get("rates") or []:
            jurisdiction = _label(str(entry.get("jurisdiction", default_jurisdiction)))
            category = _label(str(entry["category"]))
            valid_from = parse_date(entry["valid_from"])
            rate_value = to_decimal(str(entry["rate"]))
            if (jurisdiction, category, valid_from, rate_value) in existing:
                continue
            valid_to = entry.get("valid_to")
            account_code = entry.get("account_code", default_account)
            created.append(
                self.add_rate(
                    jurisdiction=jurisdiction,
                    category=category,
                    rate=rate_value,
                    valid_from=valid_from,
                    valid_to=parse_date(valid_to) if valid_to is not None else None,
                    name=entry.get("name"),
                    account_code=str(account_code) if account_code is not None else None,
                    tenant_override=tenant_override,
                    actor_id=actor_id,
                )
            )

        logger.info("tax_rates_loaded", extra={"rates_created": len(created)})
        return created
