"""
Module: ledger_kernel.db.types
Responsibility: The exact numeric column type and the one sanctioned rounding
    function for monetary values.
Architecture position: Kernel > DB.  Imported by models/, domain/, services/
    and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - Storage: amounts are Numeric(38, 9), rates Numeric(38, 18).  A value
      with more fractional digits, or more integer digits than the column
      leaves room for, is not representable and is rejected before it
      reaches the database.
    - SQLite has no exact numeric storage class, so on SQLite the columns
      hold canonical decimal text and are never summed by the database.
    - Rounding: round_money() rounds half away from zero (ROUND_HALF_UP on
      the absolute value, which is what Decimal's ROUND_HALF_UP does).
    - No floats.  Every amount and rate is a Decimal.

Failure modes:
    - decimal.InvalidOperation when quantizing NaN or infinity.
    - TypeError when a float is bound to an exact column.
"""

from decimal import ROUND_HALF_UP, Decimal, localcontext

from sqlalchemy import Numeric, String
from sqlalchemy.types import TypeDecorator

STORAGE_PRECISION = 38
STORAGE_DECIMAL_PLACES = 9
RATE_DECIMAL_PLACES = 18
DEFAULT_ROUNDING = ROUND_HALF_UP

# Wide enough that a product of two full-width column values is exact.
EXACT_PRECISION = 2 * STORAGE_PRECISION + 4


def exact_context():
    """Decimal context in which sums and products of stored values never round."""
    return localcontext(prec=EXACT_PRECISION, rounding=DEFAULT_ROUNDING)


def decimal_text(value: Decimal) -> str:
    """
    Canonical plain-notation text of a Decimal.

    Trailing zeros are dropped and zero is always ``"0"``, so equal values
    have equal text and the sign checks in the CHECK constraints compare
    correctly as text on SQLite.

        decimal_text(Decimal("1000.00")) -> "1000"
        decimal_text(Decimal("0.000")) -> "0"
        decimal_text(Decimal("1E+3")) -> "1000"
    """
    if value == 0:
        return "0"
    return format(value.normalize(), "f")


class ExactNumeric(TypeDecorator):
    """
    Numeric(precision, scale) that reads back exactly the Decimal written.

    PostgreSQL stores a native NUMERIC.  SQLite would store NUMERIC as a
    REAL, so there the column is text holding ``decimal_text(value)``.
    """

    impl = Numeric
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(self.impl.precision + 2))
        return dialect.type_descriptor(self.impl)

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, float):
            raise TypeError(f"Float {value!r} bound to an exact numeric column; use Decimal")
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        if dialect.name == "sqlite":
            return decimal_text(value)
        return value

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, Decimal):
            return value
        if isinstance(value, float):
            raise TypeError(f"Exact numeric column returned float {value!r}")
        return Decimal(value)


def exact_sum(values) -> Decimal:
    """Sum of Decimals with no intermediate rounding."""
    with exact_context():
        return sum(values, Decimal("0"))


def sums_exactly_in_sql(dialect_name: str) -> bool:
    """False where ExactNumeric columns are text, and SQL SUM would go through floats."""
    return dialect_name != "sqlite"


def round_money(
    value: Decimal,
    decimal_places: int = 2,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to ``decimal_places``, half away from zero.

    This is the only rounding function used for money in the kernel.

        round_money(Decimal("0.125")) -> Decimal("0.13")
        round_money(Decimal("-0.125")) -> Decimal("-0.13")
        round_money(Decimal("1234.5"), 0) -> Decimal("1235")
    """
    exponent = Decimal(1).scaleb(-decimal_places)
    with exact_context():
        return value.quantize(exponent, rounding=rounding)


def fits_scale(
    value: Decimal,
    decimal_places: int = STORAGE_DECIMAL_PLACES,
    precision: int = STORAGE_PRECISION,
) -> bool:
    """
    True when ``value`` fits a Numeric(precision, decimal_places) column.

    At most ``decimal_places`` fractional digits and at most
    ``precision - decimal_places`` integer digits.
    """
    if not value.is_finite():
        return False
    if value == 0:
        return True
    normalized = value.normalize()
    exponent = normalized.as_tuple().exponent
    if exponent < 0 and -exponent > decimal_places:
        return False
    integer_digits = normalized.adjusted() + 1
    return integer_digits <= precision - decimal_places
