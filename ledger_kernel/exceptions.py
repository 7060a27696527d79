"""
Typed Exception Hierarchy for the Ledger Kernel.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from LedgerKernelError. Callers branch on the five
families, never on message text:

    LedgerKernelError (base)
    |
    +-- ValidationError            caller-correctable, never retried
    |   +-- EmptyEntryError
    |   +-- UnbalancedEntryError
    |   +-- InvalidLineError
    |   +-- InvalidAccountError
    |   +-- InvalidCurrencyError
    |   +-- DuplicateAccountCodeError
    |   +-- InvalidParentError
    |   +-- InvalidDateIntervalError
    |   +-- OverlappingTaxRateError
    |   +-- InvalidTaxRateError
    |   +-- InvalidVoidReasonError
    |
    +-- StateError                 caller logic error or a lost race
    |   +-- AlreadyPostedError
    |   +-- AlreadyVoidedError
    |   +-- EntryNotPostedError
    |   +-- AccountHasBalanceError
    |   +-- SystemAccountProtectedError
    |   +-- AccountReferencedError
    |   +-- TenantContextMissingError
    |
    +-- NotFoundError              surfaced as-is
    |   +-- TenantNotFoundError
    |   +-- AccountNotFoundError
    |   +-- EntryNotFoundError
    |   +-- NoRateDefinedError
    |   +-- TaxRateNotFoundError
    |
    +-- IntegrityAlarm             the core invariant is broken; halt
    |   +-- TrialBalanceImbalanceError
    |   +-- ImmutabilityViolationError
    |   +-- UnauthorizedJournalWriteError
    |   +-- CrossTenantWriteError
    |   +-- AmbiguousTaxRateError
    |
    +-- TransientError             infrastructure failure, rolled back
        +-- StorageUnavailableError
        +-- ConcurrentWriteConflictError
        +-- OperationTimeoutError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                       | When Raised
--------------|----------------------------|-------------------------------------
Validation    | EMPTY_ENTRY                | Entry has no lines
              | UNBALANCED_ENTRY           | Base debits != base credits, or zero
              | INVALID_LINE               | Both/neither side, negative, scale
              | INVALID_ACCOUNT            | Account unknown, other tenant, inactive
              | INVALID_CURRENCY           | Not an ISO 4217 code
              | DUPLICATE_ACCOUNT_CODE     | Code already used in the tenant
              | INVALID_PARENT             | Parent outside tenant or a cycle
              | INVALID_DATE_INTERVAL      | valid_to <= valid_from
              | OVERLAPPING_TAX_RATE       | Interval collides in the same scope
              | INVALID_VOID_REASON        | Void without a reason
--------------|----------------------------|-------------------------------------
State         | ALREADY_POSTED             | Post on a posted entry
              | ALREADY_VOIDED             | Post on a voided entry
              | ENTRY_NOT_POSTED           | Void on a draft or voided entry
              | ACCOUNT_HAS_BALANCE        | Deactivate with non-zero balance
              | SYSTEM_ACCOUNT_PROTECTED   | Delete/deactivate a system account
              | ACCOUNT_REFERENCED         | Delete an account in use
              | TENANT_CONTEXT_MISSING     | Tenant query with no bound tenant
--------------|----------------------------|-------------------------------------
Not found     | TENANT_NOT_FOUND           | Unknown or inactive tenant
              | ACCOUNT_NOT_FOUND          | Unknown account in the tenant
              | ENTRY_NOT_FOUND            | Unknown entry in the tenant
              | NO_RATE_DEFINED            | No tax rate covers the date
              | TAX_RATE_NOT_FOUND         | Unknown tax rate id
--------------|----------------------------|-------------------------------------
Integrity     | TRIAL_BALANCE_IMBALANCE    | Trial balance does not balance
              | IMMUTABILITY_VIOLATION     | Posted record mutation attempted
              | UNAUTHORIZED_JOURNAL_WRITE | Journal rows flushed outside writer
              | CROSS_TENANT_WRITE         | Row stamped with a foreign tenant
              | AMBIGUOUS_TAX_RATE         | Two rates active in one scope
--------------|----------------------------|-------------------------------------
Transient     | STORAGE_UNAVAILABLE        | Connection or database failure
              | CONCURRENT_WRITE_CONFLICT  | Unique constraint lost to a race
              | OPERATION_TIMEOUT          | Deadline exceeded, rolled back

===============================================================================
HANDLING PATTERNS
===============================================================================

    try:
        ledger.create_draft(tenant_id, ...)
    except UnbalancedEntryError as e:
        return {"error": e.code, "debits": e.debits, "credits": e.credits}

IntegrityAlarm subclasses expose ``public_message`` for end users; the
structured attributes are for operator logs only.
"""

from decimal import Decimal


class LedgerKernelError(Exception):
    """
    Base exception for all ledger kernel errors.

    All subclasses carry a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "LEDGER_KERNEL_ERROR"


# =============================================================================
# Validation
# =============================================================================


class ValidationError(LedgerKernelError):
    """Caller-correctable input error. Never retried automatically."""

    code: str = "VALIDATION_ERROR"


class EmptyEntryError(ValidationError):
    """Journal entry request has no lines."""

    code: str = "EMPTY_ENTRY"

    def __init__(self):
        super().__init__("Journal entry must have at least one line")


class UnbalancedEntryError(ValidationError):
    """Base-currency debits do not equal credits, or the entry sums to zero."""

    code: str = "UNBALANCED_ENTRY"

    def __init__(self, debits: Decimal, credits: Decimal, currency: str):
        self.debits = debits
        self.credits = credits
        self.currency = currency
        super().__init__(
            f"entry does not balance: debits {currency} {debits}, "
            f"credits {currency} {credits}"
        )


class InvalidLineError(ValidationError):
    """A journal line is malformed."""

    code: str = "INVALID_LINE"

    def __init__(self, line_index: int, reason: str):
        self.line_index = line_index
        self.reason = reason
        super().__init__(f"Invalid line {line_index}: {reason}")


class InvalidAccountError(ValidationError):
    """Account cannot be posted to."""

    code: str = "INVALID_ACCOUNT"

    def __init__(self, account: str, reason: str):
        self.account = account
        self.reason = reason
        super().__init__(f"Invalid account {account}: {reason}")


class InvalidCurrencyError(ValidationError):
    """Currency code is not a recognized ISO 4217 code."""

    code: str = "INVALID_CURRENCY"

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__(f"Invalid ISO 4217 currency code: '{currency}'")


class DuplicateAccountCodeError(ValidationError):
    """Account code already exists in the tenant."""

    code: str = "DUPLICATE_ACCOUNT_CODE"

    def __init__(self, account_code: str):
        self.account_code = account_code
        super().__init__(f"Account code already exists: {account_code}")


class InvalidParentError(ValidationError):
    """Parent account is outside the tenant or would create a cycle."""

    code: str = "INVALID_PARENT"

    def __init__(self, parent: str, reason: str):
        self.parent = parent
        self.reason = reason
        super().__init__(f"Invalid parent account {parent}: {reason}")


class InvalidDateIntervalError(ValidationError):
    """valid_to is not strictly after valid_from."""

    code: str = "INVALID_DATE_INTERVAL"

    def __init__(self, valid_from: str, valid_to: str):
        self.valid_from = valid_from
        self.valid_to = valid_to
        super().__init__(
            f"valid_to {valid_to} must be after valid_from {valid_from}"
        )


class OverlappingTaxRateError(ValidationError):
    """A tax rate interval collides with another one in the same scope."""

    code: str = "OVERLAPPING_TAX_RATE"

    def __init__(self, jurisdiction: str, category: str, existing_rate_id: str):
        self.jurisdiction = jurisdiction
        self.category = category
        self.existing_rate_id = existing_rate_id
        super().__init__(
            f"Tax rate {jurisdiction}/{category} overlaps existing rate "
            f"{existing_rate_id}"
        )


class InvalidTaxRateError(ValidationError):
    """A tax rate is negative or does not fit the rate column."""

    code: str = "INVALID_TAX_RATE"

    def __init__(self, rate: str, reason: str):
        self.rate = rate
        self.reason = reason
        super().__init__(f"Invalid tax rate {rate}: {reason}")


class InvalidVoidReasonError(ValidationError):
    """Void requested without a reason."""

    code: str = "INVALID_VOID_REASON"

    def __init__(self, journal_entry_id: str):
        self.journal_entry_id = journal_entry_id
        super().__init__(f"A reason is required to void entry {journal_entry_id}")


# =============================================================================
# State
# =============================================================================


class StateError(LedgerKernelError):
    """Operation is not allowed in the record's current state."""

    code: str = "STATE_ERROR"


class AlreadyPostedError(StateError):
    """Entry has already been posted."""

    code: str = "ALREADY_POSTED"

    def __init__(self, journal_entry_id: str, entry_number: str | None):
        self.journal_entry_id = journal_entry_id
        self.entry_number = entry_number
        super().__init__(
            f"Journal entry {journal_entry_id} already posted as {entry_number}"
        )


class AlreadyVoidedError(StateError):
    """Entry has been voided and can no longer be posted."""

    code: str = "ALREADY_VOIDED"

    def __init__(self, journal_entry_id: str):
        self.journal_entry_id = journal_entry_id
        super().__init__(f"Journal entry {journal_entry_id} is voided")


class EntryNotPostedError(StateError):
    """Only posted entries can be voided."""

    code: str = "ENTRY_NOT_POSTED"

    def __init__(self, journal_entry_id: str, status: str):
        self.journal_entry_id = journal_entry_id
        self.status = status
        super().__init__(
            f"Cannot void entry {journal_entry_id}: status is {status}, not posted"
        )


class AccountHasBalanceError(StateError):
    """Account still carries a balance and policy forbids deactivation."""

    code: str = "ACCOUNT_HAS_BALANCE"

    def __init__(self, account_id: str, balance: Decimal):
        self.account_id = account_id
        self.balance = balance
        super().__init__(
            f"Account {account_id} has a non-zero balance of {balance}"
        )


class SystemAccountProtectedError(StateError):
    """System accounts cannot be deleted or deactivated."""

    code: str = "SYSTEM_ACCOUNT_PROTECTED"

    def __init__(self, account_id: str, operation: str):
        self.account_id = account_id
        self.operation = operation
        super().__init__(f"Cannot {operation} system account {account_id}")


class AccountReferencedError(StateError):
    """Account is referenced and cannot be deleted."""

    code: str = "ACCOUNT_REFERENCED"

    def __init__(self, account_id: str, reason: str = "referenced by journal lines"):
        self.account_id = account_id
        self.reason = reason
        super().__init__(f"Cannot delete account {account_id}: {reason}")


class TenantContextMissingError(StateError):
    """A tenant-scoped statement ran without a bound tenant."""

    code: str = "TENANT_CONTEXT_MISSING"

    def __init__(self, entity: str):
        self.entity = entity
        super().__init__(f"No tenant bound to the session while accessing {entity}")


# =============================================================================
# Not found
# =============================================================================


class NotFoundError(LedgerKernelError):
    """Referenced record does not exist (in the current tenant)."""

    code: str = "NOT_FOUND"


class TenantNotFoundError(NotFoundError):
    """Tenant identifier does not resolve to an active tenant."""

    code: str = "TENANT_NOT_FOUND"

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        super().__init__(f"Tenant not found or inactive: {tenant_id}")


class AccountNotFoundError(NotFoundError):
    """Account does not exist in the tenant."""

    code: str = "ACCOUNT_NOT_FOUND"

    def __init__(self, account: str):
        self.account = account
        super().__init__(f"Account not found: {account}")


class EntryNotFoundError(NotFoundError):
    """Journal entry does not exist in the tenant."""

    code: str = "ENTRY_NOT_FOUND"

    def __init__(self, journal_entry_id: str):
        self.journal_entry_id = journal_entry_id
        super().__init__(f"Journal entry not found: {journal_entry_id}")


class NoRateDefinedError(NotFoundError):
    """No tax rate interval covers the requested date."""

    code: str = "NO_RATE_DEFINED"

    def __init__(self, jurisdiction: str, category: str, on_date: str):
        self.jurisdiction = jurisdiction
        self.category = category
        self.on_date = on_date
        super().__init__(
            f"No {jurisdiction}/{category} tax rate defined on {on_date}"
        )


class TaxRateNotFoundError(NotFoundError):
    """Tax rate id does not exist or is not visible to the tenant."""

    code: str = "TAX_RATE_NOT_FOUND"

    def __init__(self, rate_id: str):
        self.rate_id = rate_id
        super().__init__(f"Tax rate not found: {rate_id}")


# =============================================================================
# Integrity alarms
# =============================================================================


class IntegrityAlarm(LedgerKernelError):
    """
    The ledger's central invariant has been violated.

    Never logged-and-continued.  End users see ``public_message`` only.
    """

    code: str = "INTEGRITY_ALARM"
    public_message: str = "internal consistency error"


class TrialBalanceImbalanceError(IntegrityAlarm):
    """Aggregated posted debits do not equal credits."""

    code: str = "TRIAL_BALANCE_IMBALANCE"

    def __init__(self, tenant_id: str, as_of_date: str, debits: Decimal, credits: Decimal):
        self.tenant_id = tenant_id
        self.as_of_date = as_of_date
        self.debits = debits
        self.credits = credits
        super().__init__(
            f"Trial balance for tenant {tenant_id} as of {as_of_date} does not "
            f"balance: debits={debits}, credits={credits}"
        )


class ImmutabilityViolationError(IntegrityAlarm):
    """Attempted to modify or delete an immutable record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


class UnauthorizedJournalWriteError(IntegrityAlarm):
    """Journal rows were flushed outside the journal writer."""

    code: str = "UNAUTHORIZED_JOURNAL_WRITE"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"{entity_type} {entity_id} written outside the journal writer"
        )


class CrossTenantWriteError(IntegrityAlarm):
    """A row stamped with another tenant was flushed through a tenant session."""

    code: str = "CROSS_TENANT_WRITE"

    def __init__(self, entity_type: str, row_tenant_id: str, bound_tenant_id: str):
        self.entity_type = entity_type
        self.row_tenant_id = row_tenant_id
        self.bound_tenant_id = bound_tenant_id
        super().__init__(
            f"{entity_type} for tenant {row_tenant_id} written in session "
            f"bound to tenant {bound_tenant_id}"
        )


class AmbiguousTaxRateError(IntegrityAlarm):
    """More than one rate is active in a single scope on a single date."""

    code: str = "AMBIGUOUS_TAX_RATE"

    def __init__(self, jurisdiction: str, category: str, on_date: str, rate_ids: list[str]):
        self.jurisdiction = jurisdiction
        self.category = category
        self.on_date = on_date
        self.rate_ids = rate_ids
        super().__init__(
            f"{len(rate_ids)} {jurisdiction}/{category} rates active on {on_date}"
        )


# =============================================================================
# Transient
# =============================================================================


class TransientError(LedgerKernelError):
    """
    Infrastructure failure after the transaction was rolled back.

    Retryable by the caller; the core never retries on its own.
    """

    code: str = "TRANSIENT_ERROR"


class StorageUnavailableError(TransientError):
    """Database connection or server failure."""

    code: str = "STORAGE_UNAVAILABLE"

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Storage unavailable: {detail}")


class ConcurrentWriteConflictError(TransientError):
    """A uniqueness constraint was lost to a concurrent transaction."""

    code: str = "CONCURRENT_WRITE_CONFLICT"

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Concurrent write conflict: {detail}")


class OperationTimeoutError(TransientError):
    """Operation exceeded its deadline and was rolled back."""

    code: str = "OPERATION_TIMEOUT"

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Operation exceeded its {timeout_seconds}s deadline")
