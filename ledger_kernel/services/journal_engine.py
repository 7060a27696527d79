"""
JournalEngine -- create, post and void journal entries for one tenant.

Responsibility:
    Validates line requests (sides, amounts, currencies, exchange rates,
    accounts), computes the frozen base-currency amounts, and hands the
    prepared lines to JournalWriter.  Every validation runs before the
    first write, so a rejected request leaves nothing behind.

Architecture position:
    Kernel > Services.  Orchestrates AccountService (lookups) and
    JournalWriter (all journal writes).  Called by LedgerCore.

Invariants enforced:
    - Each line has exactly one positive side and an amount representable
      at storage scale (9 fractional digits).
    - Base amount = round_half_up(amount x exchange_rate) at the base
      currency's minor unit, and must be positive.  The rounded values are
      what must balance.
    - Base-currency lines carry exchange rate 1; foreign lines must supply
      a positive rate.
    - Every account exists in the tenant and is active.

Failure modes:
    - EmptyEntryError, InvalidLineError, InvalidAccountError,
      InvalidCurrencyError, UnbalancedEntryError.
    - State errors from JournalWriter on post / void.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from ledger_kernel.config import LedgerConfig, get_active_config
from ledger_kernel.db.types import RATE_DECIMAL_PLACES, exact_context, fits_scale, round_money
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.currency import CurrencyRegistry
from ledger_kernel.domain.dtos import LineRequest, LineSide, SourceRef
from ledger_kernel.domain.tenant import SYSTEM_ACTOR_ID, TenantContext
from ledger_kernel.domain.values import to_decimal
from ledger_kernel.exceptions import (
    AccountNotFoundError,
    EmptyEntryError,
    InvalidAccountError,
    InvalidCurrencyError,
    InvalidLineError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.journal import JournalEntry
from ledger_kernel.services.account_service import AccountService
from ledger_kernel.services.journal_writer import JournalWriter, PreparedLine

logger = get_logger("services.journal_engine")

_ONE = Decimal("1")


def _decimal(index: int, value) -> Decimal:
    try:
        return to_decimal(value)
    except (TypeError, ValueError) as e:
        raise InvalidLineError(index, str(e)) from e


class JournalEngine:
    """
    Journal entry state machine for a resolved tenant.

    Contract:
        ``create_draft()`` -> DRAFT entry (no number).
        ``post()`` -> POSTED entry with its number.
        ``void()`` -> the POSTED reversal; the original becomes VOIDED.
    """

    def __init__(
        self,
        session: Session,
        tenant: TenantContext,
        clock: Clock | None = None,
        config: LedgerConfig | None = None,
    ):
        self._session = session
        self._tenant = tenant
        self._clock = clock or SystemClock()
        self._config = config or get_active_config()
        self._accounts = AccountService(session, self._clock, self._config)
        self._writer = JournalWriter(session, self._clock, self._config)

    @property
    def base_currency(self) -> str:
        return self._tenant.base_currency

    def create_draft(
        self,
        entry_date: date,
        description: str,
        lines: list[LineRequest],
        actor_id: UUID | None = None,
        source_ref: SourceRef | None = None,
        reference: str | None = None,
    ) -> JournalEntry:
        """Validate ``lines`` and persist them as a DRAFT entry."""
        prepared = self.prepare_lines(lines)
        return self._writer.write_draft(
            entry_date=entry_date,
            description=description or "",
            lines=prepared,
            base_currency=self.base_currency,
            actor_id=actor_id or SYSTEM_ACTOR_ID,
            source_ref=source_ref,
            reference=reference,
        )

    def post(self, entry_id: UUID, actor_id: UUID | None = None) -> JournalEntry:
        with LogContext.bind(entry_id=str(entry_id)):
            return self._writer.post(entry_id, actor_id or SYSTEM_ACTOR_ID, self.base_currency)

    def void(
        self,
        entry_id: UUID,
        actor_id: UUID | None,
        reason: str,
        void_date: date | None = None,
    ) -> JournalEntry:
        with LogContext.bind(entry_id=str(entry_id)):
            return self._writer.void(
                entry_id,
                actor_id or SYSTEM_ACTOR_ID,
                reason,
                base_currency=self.base_currency,
                void_date=void_date,
            )

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def prepare_lines(self, lines: list[LineRequest]) -> list[PreparedLine]:
        """
        Validate every request and compute base amounts.

        Raises on the first offending line, reporting its zero-based index.
        """
        if not lines:
            raise EmptyEntryError()

        base_places = CurrencyRegistry.get_decimal_places(self.base_currency)
        return [
            self._prepare_line(index, request, base_places)
            for index, request in enumerate(lines)
        ]

    def _prepare_line(self, index: int, request: LineRequest, base_places: int) -> PreparedLine:
        try:
            side = LineSide(str(getattr(request.side, "value", request.side)).lower())
        except ValueError as e:
            raise InvalidLineError(index, f"side must be debit or credit, got {request.side!r}") from e

        amount = self._amount(index, request.amount)
        currency = self._currency(index, request.currency)
        rate = self._exchange_rate(index, currency, request.exchange_rate)

        with exact_context():
            base_amount = round_money(amount * rate, base_places)
        if base_amount <= 0:
            raise InvalidLineError(
                index, f"amount {amount} {currency} rounds to zero in {self.base_currency}"
            )

        account = self._account(request.account)

        is_debit = side == LineSide.DEBIT
        zero = Decimal("0")
        return PreparedLine(
            account_id=account.id,
            account_code=account.code,
            debit_amount=amount if is_debit else zero,
            credit_amount=zero if is_debit else amount,
            currency=currency,
            exchange_rate=rate,
            base_debit=base_amount if is_debit else zero,
            base_credit=zero if is_debit else base_amount,
            description=request.description,
        )

    def _amount(self, index: int, value) -> Decimal:
        amount = _decimal(index, value)
        if not amount.is_finite():
            raise InvalidLineError(index, f"amount is not a finite number: {value!r}")
        if amount <= 0:
            raise InvalidLineError(index, f"amount must be positive, got {amount}")
        if not fits_scale(amount):
            raise InvalidLineError(index, f"amount {amount} exceeds storage precision")
        return amount

    def _currency(self, index: int, value: str | None) -> str:
        if value is None:
            return self.base_currency
        try:
            return CurrencyRegistry.validate(value)
        except InvalidCurrencyError:
            logger.info("line_currency_rejected", extra={"line_index": index, "currency": value})
            raise

    def _exchange_rate(self, index: int, currency: str, value) -> Decimal:
        if currency == self.base_currency:
            if value is not None and _decimal(index, value) != _ONE:
                raise InvalidLineError(index, "exchange rate must be 1 for base-currency lines")
            return _ONE

        if value is None:
            raise InvalidLineError(
                index, f"exchange rate to {self.base_currency} required for {currency} line"
            )
        rate = _decimal(index, value)
        if not rate.is_finite() or rate <= 0:
            raise InvalidLineError(index, f"exchange rate must be positive, got {value!r}")
        if not fits_scale(rate, RATE_DECIMAL_PLACES):
            raise InvalidLineError(index, f"exchange rate {rate} exceeds storage precision")
        return rate

    def _account(self, account_ref: UUID | str):
        try:
            account = self._accounts.lookup(account_ref)
        except AccountNotFoundError as e:
            raise InvalidAccountError(str(account_ref), "account not found in tenant") from e
        if not account.is_active:
            raise InvalidAccountError(account.code, "account is inactive")
        return account
