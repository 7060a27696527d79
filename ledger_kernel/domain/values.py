"""
Values -- immutable monetary value objects.

Responsibility:
    ``Money`` pairs an exact Decimal amount with an ISO 4217 currency and
    carries the kernel's arithmetic and rounding rules.  ``ExchangeRate``
    converts a transaction amount into the tenant base currency.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  Depends on domain/currency.py and
    db/types.py (rounding) only.

Invariants enforced:
    - Amounts are Decimal; floats are rejected at construction.
    - Currency codes are valid ISO 4217 codes.
    - Arithmetic never mixes currencies.
    - Rounding is half away from zero, to the currency's minor unit.

Failure modes:
    - InvalidCurrencyError on an unknown currency code.
    - TypeError when a float is supplied as an amount.
    - ValueError on cross-currency arithmetic or a non-positive rate.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from ledger_kernel.db.types import round_money
from ledger_kernel.domain.currency import CurrencyRegistry


def to_decimal(value: Decimal | int | str) -> Decimal:
    """Exact Decimal from an int, str or Decimal.  Floats are refused."""
    if isinstance(value, bool) or isinstance(value, float):
        raise TypeError(f"Monetary values must not be {type(value).__name__}: {value!r}")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"Invalid amount: {value!r}") from e


@dataclass(frozen=True, slots=True)
class Money:
    """
    Monetary amount value object.

    Contract:
        The amount and its currency never travel separately.

    Guarantees:
        - Immutable and hashable.
        - amount is a finite Decimal; currency is an upper-case ISO 4217 code.
        - round() is the only place a Money loses precision.

    Non-goals:
        - Does NOT auto-round; callers call round() when a value is final.
    """

    amount: Decimal
    currency: str

    def __post_init__(self) -> None:
        amount = to_decimal(self.amount)
        if not amount.is_finite():
            raise ValueError(f"Invalid amount: {self.amount!r}")
        object.__setattr__(self, "amount", amount)
        object.__setattr__(self, "currency", CurrencyRegistry.validate(self.currency))

    @classmethod
    def of(cls, amount: Decimal | int | str, currency: str) -> Money:
        return cls(amount=to_decimal(amount), currency=currency)

    @classmethod
    def zero(cls, currency: str) -> Money:
        return cls(amount=Decimal("0"), currency=currency)

    @property
    def decimal_places(self) -> int:
        return CurrencyRegistry.get_decimal_places(self.currency)

    @property
    def is_zero(self) -> bool:
        return self.amount == 0

    @property
    def is_positive(self) -> bool:
        return self.amount > 0

    @property
    def is_negative(self) -> bool:
        return self.amount < 0

    def round(self) -> Money:
        """New Money rounded half away from zero to the currency's minor unit."""
        return Money(round_money(self.amount, self.decimal_places), self.currency)

    def _check_same_currency(self, other: Money, op: str) -> None:
        if self.currency != other.currency:
            raise ValueError(
                f"Cannot {op} Money with different currencies: "
                f"{self.currency} and {other.currency}"
            )

    def __add__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_same_currency(other, "add")
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_same_currency(other, "subtract")
        return Money(self.amount - other.amount, self.currency)

    def __neg__(self) -> Money:
        return Money(-self.amount, self.currency)

    def __abs__(self) -> Money:
        return Money(abs(self.amount), self.currency)

    def __mul__(self, factor: Decimal | int | str) -> Money:
        if isinstance(factor, float):
            return NotImplemented
        return Money(self.amount * to_decimal(factor), self.currency)

    __rmul__ = __mul__

    def __lt__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_same_currency(other, "compare")
        return self.amount < other.amount

    def __le__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_same_currency(other, "compare")
        return self.amount <= other.amount

    def __str__(self) -> str:
        return f"{self.amount} {self.currency}"

    def __repr__(self) -> str:
        return f"Money({self.amount!r}, {self.currency!r})"


@dataclass(frozen=True, slots=True)
class ExchangeRate:
    """
    Rate converting ``from_currency`` into ``to_currency``.

    1 unit of from_currency = ``rate`` units of to_currency.
    """

    from_currency: str
    to_currency: str
    rate: Decimal

    def __post_init__(self) -> None:
        rate = to_decimal(self.rate)
        if not rate.is_finite() or rate <= 0:
            raise ValueError(f"Exchange rate must be positive, got {self.rate!r}")
        object.__setattr__(self, "rate", rate)
        object.__setattr__(self, "from_currency", CurrencyRegistry.validate(self.from_currency))
        object.__setattr__(self, "to_currency", CurrencyRegistry.validate(self.to_currency))

    def convert(self, money: Money) -> Money:
        """Converted amount, rounded to the target currency's minor unit."""
        if money.currency != self.from_currency:
            raise ValueError(
                f"Rate converts {self.from_currency}, got {money.currency}"
            )
        return Money(money.amount * self.rate, self.to_currency).round()
