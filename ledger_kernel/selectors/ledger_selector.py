"""
Module: ledger_kernel.selectors.ledger_selector
Responsibility: Balances and statements derived from posted journal lines:
    account balance, trial balance, period activity, balance sheet and
    income statement.  Nothing is stored; every figure is summed at query
    time from base-currency line amounts.
Architecture position: Kernel > Selectors.  May import from db/, models/
    and domain/.

Invariants enforced:
    - Only entries that reached POSTED count (status POSTED or VOIDED).  A
      voided entry stays in the ledger and its posted reversal offsets it.
    - entry_date <= as_of_date; no other cutoff.
    - All sums are in the tenant base currency, Decimal only.  Where the
      database keeps amounts as text (SQLite) the lines are fetched and
      summed in Python; elsewhere NUMERIC SUM is exact.
    - A trial balance whose debits differ from its credits is an integrity
      alarm: logged at CRITICAL and raised, never returned.

Failure modes:
    - AccountNotFoundError from account_balance() for an unknown account.
    - TrialBalanceImbalanceError (IntegrityAlarm).
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ledger_kernel.db.tenancy import require_tenant_id
from ledger_kernel.db.types import exact_context, exact_sum, round_money, sums_exactly_in_sql
from ledger_kernel.domain.currency import CurrencyRegistry
from ledger_kernel.exceptions import AccountNotFoundError, TrialBalanceImbalanceError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import Account, AccountType, NormalBalance
from ledger_kernel.models.journal import JournalEntry, JournalEntryStatus, JournalLine
from ledger_kernel.models.tenant import Tenant
from ledger_kernel.selectors.base import BaseSelector

logger = get_logger("selectors.ledger")

LEDGER_STATUSES = (JournalEntryStatus.POSTED.value, JournalEntryStatus.VOIDED.value)

_ZERO = Decimal("0")


@dataclass(frozen=True)
class AccountBalance:
    """Posted activity of one account."""

    account_id: UUID
    account_code: str
    account_name: str
    account_type: str
    debit_total: Decimal
    credit_total: Decimal
    line_count: int

    @property
    def normal_balance(self) -> NormalBalance:
        return AccountType(self.account_type).normal_balance

    @property
    def balance(self) -> Decimal:
        """Net balance, positive on the account's normal side."""
        with exact_context():
            if self.normal_balance == NormalBalance.DEBIT:
                return self.debit_total - self.credit_total
            return self.credit_total - self.debit_total


@dataclass(frozen=True)
class TrialBalanceRow:
    account_id: UUID
    account_code: str
    account_name: str
    account_type: str
    debit_total: Decimal
    credit_total: Decimal

    @property
    def net(self) -> Decimal:
        """Debits minus credits."""
        with exact_context():
            return self.debit_total - self.credit_total

    @property
    def debit_balance(self) -> Decimal:
        return self.net if self.net > 0 else _ZERO

    @property
    def credit_balance(self) -> Decimal:
        return -self.net if self.net < 0 else _ZERO


@dataclass(frozen=True)
class TrialBalance:
    as_of_date: date
    currency: str
    rows: tuple[TrialBalanceRow, ...]
    total_debits: Decimal
    total_credits: Decimal

    @property
    def is_balanced(self) -> bool:
        return self.total_debits == self.total_credits

    def row_for(self, account_code: str) -> TrialBalanceRow | None:
        for row in self.rows:
            if row.account_code == account_code:
                return row
        return None


@dataclass(frozen=True)
class IncomeStatement:
    start_date: date
    end_date: date
    currency: str
    revenue: tuple[AccountBalance, ...]
    expenses: tuple[AccountBalance, ...]

    @property
    def total_revenue(self) -> Decimal:
        return exact_sum(b.balance for b in self.revenue)

    @property
    def total_expenses(self) -> Decimal:
        return exact_sum(b.balance for b in self.expenses)

    @property
    def net_income(self) -> Decimal:
        return self.total_revenue - self.total_expenses


@dataclass(frozen=True)
class BalanceSheet:
    """
    Assets against liabilities and equity as of a date.

    ``retained_earnings`` is cumulative revenue minus expenses up to the
    date, i.e. the profit not yet closed into an equity account.
    """

    as_of_date: date
    currency: str
    assets: tuple[AccountBalance, ...]
    liabilities: tuple[AccountBalance, ...]
    equity: tuple[AccountBalance, ...]
    retained_earnings: Decimal

    @property
    def total_assets(self) -> Decimal:
        return exact_sum(b.balance for b in self.assets)

    @property
    def total_liabilities(self) -> Decimal:
        return exact_sum(b.balance for b in self.liabilities)

    @property
    def total_equity(self) -> Decimal:
        return exact_sum(b.balance for b in self.equity) + self.retained_earnings

    @property
    def is_balanced(self) -> bool:
        return self.total_assets == self.total_liabilities + self.total_equity


class LedgerSelector(BaseSelector):
    """
    Balance computations over the bound tenant's posted lines.

    Contract:
        Figures are rounded to the tenant base currency's minor unit, which
        is the precision base amounts are frozen at.
    """

    def __init__(self, session: Session):
        super().__init__(session)
        self._currency: str | None = None

    @property
    def currency(self) -> str:
        if self._currency is None:
            tenant = self.session.get(Tenant, require_tenant_id(self.session, "ledger"))
            self._currency = tenant.base_currency
        return self._currency

    def _amount(self, value) -> Decimal:
        if value is None:
            return _ZERO
        places = CurrencyRegistry.get_decimal_places(self.currency)
        return round_money(Decimal(value), places)

    def _ledger_lines(
        self,
        columns,
        as_of_date: date | None,
        start_date: date | None,
        account_id: UUID | None,
        account_types: tuple[AccountType, ...] | None,
    ):
        query = (
            select(*columns)
            .select_from(JournalLine)
            .join(JournalEntry, JournalLine.journal_entry_id == JournalEntry.id)
            .join(Account, JournalLine.account_id == Account.id)
            .where(JournalEntry.status.in_(LEDGER_STATUSES))
        )
        if as_of_date is not None:
            query = query.where(JournalEntry.entry_date <= as_of_date)
        if start_date is not None:
            query = query.where(JournalEntry.entry_date >= start_date)
        if account_id is not None:
            query = query.where(JournalLine.account_id == account_id)
        if account_types is not None:
            query = query.where(Account.account_type.in_([t.value for t in account_types]))
        return query

    def _summed_rows(self, *filters) -> list[tuple]:
        """(id, code, name, type, debit total, credit total, line count) per account."""
        account_columns = (Account.id, Account.code, Account.name, Account.account_type)

        if sums_exactly_in_sql(self.session.get_bind().dialect.name):
            query = (
                self._ledger_lines(
                    account_columns
                    + (
                        func.sum(JournalLine.base_debit),
                        func.sum(JournalLine.base_credit),
                        func.count(JournalLine.id),
                    ),
                    *filters,
                )
                .group_by(*account_columns)
                .order_by(Account.code)
            )
            return [tuple(row) for row in self.session.execute(query).all()]

        # Text-stored decimals: fetch the lines and add them up as Decimals.
        query = self._ledger_lines(
            account_columns + (JournalLine.base_debit, JournalLine.base_credit),
            *filters,
        )
        grouped: dict[UUID, list] = {}
        for row in self.session.execute(query).all():
            key = row[0]
            if key not in grouped:
                grouped[key] = [*row[:4], [], []]
            grouped[key][4].append(row[4])
            grouped[key][5].append(row[5])
        return sorted(
            (
                (*head, exact_sum(debits), exact_sum(credits), len(debits))
                for *head, debits, credits in grouped.values()
            ),
            key=lambda row: row[1],
        )

    def _balances(
        self,
        as_of_date: date | None = None,
        start_date: date | None = None,
        account_id: UUID | None = None,
        account_types: tuple[AccountType, ...] | None = None,
    ) -> list[AccountBalance]:
        rows = self._summed_rows(as_of_date, start_date, account_id, account_types)
        return [
            AccountBalance(
                account_id=row_id,
                account_code=code,
                account_name=name,
                account_type=account_type,
                debit_total=self._amount(debit_total),
                credit_total=self._amount(credit_total),
                line_count=line_count,
            )
            for row_id, code, name, account_type, debit_total, credit_total, line_count in rows
        ]

    def account_balance(self, account_id: UUID, as_of_date: date | None = None) -> AccountBalance:
        """
        Balance of one account as of a date (all history when None).

        An account without posted activity has a zero balance.
        """
        balances = self._balances(as_of_date=as_of_date, account_id=account_id)
        if balances:
            return balances[0]

        account = self.session.execute(
            select(Account).where(Account.id == account_id)
        ).scalar_one_or_none()
        if account is None:
            raise AccountNotFoundError(str(account_id))
        return AccountBalance(
            account_id=account.id,
            account_code=account.code,
            account_name=account.name,
            account_type=account.account_type,
            debit_total=_ZERO,
            credit_total=_ZERO,
            line_count=0,
        )

    def trial_balance(self, as_of_date: date) -> TrialBalance:
        """
        One row per account with posted activity up to ``as_of_date``.

        Raises:
            TrialBalanceImbalanceError: debits and credits differ.  This
                means journal invariants were bypassed; it is logged at
                CRITICAL before being raised.
        """
        balances = self._balances(as_of_date=as_of_date)
        rows = tuple(
            TrialBalanceRow(
                account_id=b.account_id,
                account_code=b.account_code,
                account_name=b.account_name,
                account_type=b.account_type,
                debit_total=b.debit_total,
                credit_total=b.credit_total,
            )
            for b in balances
        )
        total_debits = exact_sum(r.debit_total for r in rows)
        total_credits = exact_sum(r.credit_total for r in rows)

        trial_balance = TrialBalance(
            as_of_date=as_of_date,
            currency=self.currency,
            rows=rows,
            total_debits=total_debits,
            total_credits=total_credits,
        )

        if not trial_balance.is_balanced:
            tenant_id = str(require_tenant_id(self.session, "ledger"))
            logger.critical(
                "trial_balance_integrity_alarm",
                extra={
                    "tenant_id": tenant_id,
                    "as_of_date": as_of_date.isoformat(),
                    "total_debits": str(total_debits),
                    "total_credits": str(total_credits),
                    "difference": str(total_debits - total_credits),
                },
            )
            raise TrialBalanceImbalanceError(
                tenant_id, as_of_date.isoformat(), total_debits, total_credits
            )

        return trial_balance

    def period_balances(self, start_date: date, end_date: date) -> list[AccountBalance]:
        """Revenue and expense activity with entry_date in [start_date, end_date]."""
        return self._balances(
            as_of_date=end_date,
            start_date=start_date,
            account_types=(AccountType.REVENUE, AccountType.EXPENSE),
        )

    def income_statement(self, start_date: date, end_date: date) -> IncomeStatement:
        balances = self.period_balances(start_date, end_date)
        return IncomeStatement(
            start_date=start_date,
            end_date=end_date,
            currency=self.currency,
            revenue=tuple(b for b in balances if b.account_type == AccountType.REVENUE.value),
            expenses=tuple(b for b in balances if b.account_type == AccountType.EXPENSE.value),
        )

    def _retained_earnings(self, as_of_date: date) -> Decimal:
        # Credit-positive: revenue credits add, expense debits subtract.
        profit_and_loss = self._balances(
            as_of_date=as_of_date,
            account_types=(AccountType.REVENUE, AccountType.EXPENSE),
        )
        return exact_sum(b.credit_total - b.debit_total for b in profit_and_loss)

    def balance_sheet(self, as_of_date: date) -> BalanceSheet:
        balances = self._balances(
            as_of_date=as_of_date,
            account_types=(AccountType.ASSET, AccountType.LIABILITY, AccountType.EQUITY),
        )

        def of_type(account_type: AccountType) -> tuple[AccountBalance, ...]:
            return tuple(b for b in balances if b.account_type == account_type.value)

        return BalanceSheet(
            as_of_date=as_of_date,
            currency=self.currency,
            assets=of_type(AccountType.ASSET),
            liabilities=of_type(AccountType.LIABILITY),
            equity=of_type(AccountType.EQUITY),
            retained_earnings=self._retained_earnings(as_of_date),
        )
