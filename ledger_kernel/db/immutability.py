"""
ORM-level protection of posted history.

===============================================================================
LAYERS
===============================================================================

  Layer 1: THIS FILE (ORM event listeners)
    - Catches modifications made through SQLAlchemy before SQL is emitted.

  Layer 2: db/sql/*.sql (PostgreSQL triggers, see db/triggers.py)
    - Catches raw SQL and bulk statements for journal rows and tax rates.

Both layers enforce the same rules.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity        | Rule
--------------|-----------------------------------------------------------------
JournalEntry  | Inserted as DRAFT only.  DRAFT -> POSTED -> VOIDED only.
              | POSTED: only the void fields may change, as part of the void.
              | VOIDED: nothing changes.  Non-draft entries are never deleted.
JournalLine   | Inserted, updated or deleted only while the parent is DRAFT.
Account       | account_type never changes.  code frozen once the account or a
              | descendant is referenced by a journal line.  Deletion refused
              | for system accounts and referenced accounts.
TaxRate       | Never deleted.  Only an open valid_to may be set (closing).

updated_at / updated_by_id are audit metadata and may always change.

===============================================================================
SINGLE WRITER
===============================================================================

JournalEntry and JournalLine rows are flushed only inside
``journal_write_scope(session)``, which JournalWriter opens.  Any other
flush of journal rows raises UnauthorizedJournalWriteError.

===============================================================================
USAGE
===============================================================================

    from ledger_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()   # done by init_engine_from_url()

To exercise the database triggers directly (TESTS ONLY):

    unregister_immutability_listeners()
    ...
    register_immutability_listeners()
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import event, inspect, select, text
from sqlalchemy.orm import Session

from ledger_kernel.exceptions import (
    AccountReferencedError,
    ImmutabilityViolationError,
    SystemAccountProtectedError,
    UnauthorizedJournalWriteError,
)
from ledger_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

AUDIT_FIELDS = frozenset({"updated_at", "updated_by_id"})

VOID_TRANSITION_FIELDS = frozenset({"status", "voided_at", "voided_by_id", "void_reason"})

JOURNAL_WRITE_SCOPE_KEY = "ledger_kernel.journal_write_scope"


def _blocked(entity_type: str, entity_id, operation: str, reason: str, **extra):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            **extra,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _changed_columns(target) -> list[str]:
    """Column attributes with pending changes (relationships are ignored)."""
    insp = inspect(target)
    changed = []
    for attr in insp.mapper.column_attrs:
        if insp.attrs[attr.key].history.has_changes():
            changed.append(attr.key)
    return changed


def _status_value(value) -> str | None:
    if value is None:
        return None
    return getattr(value, "value", value)


# =============================================================================
# Single writer
# =============================================================================


@contextmanager
def journal_write_scope(session: Session) -> Generator[Session, None, None]:
    """Authorize journal row flushes on ``session`` for the duration of the block."""
    depth = session.info.get(JOURNAL_WRITE_SCOPE_KEY, 0)
    session.info[JOURNAL_WRITE_SCOPE_KEY] = depth + 1
    try:
        yield session
    finally:
        if depth:
            session.info[JOURNAL_WRITE_SCOPE_KEY] = depth
        else:
            session.info.pop(JOURNAL_WRITE_SCOPE_KEY, None)


def _check_journal_write_authority(session, flush_context, instances):
    from ledger_kernel.models.journal import JournalEntry, JournalLine

    if session.info.get(JOURNAL_WRITE_SCOPE_KEY):
        return

    candidates = list(session.new) + list(session.deleted) + [
        obj for obj in session.dirty if session.is_modified(obj)
    ]
    for obj in candidates:
        if isinstance(obj, (JournalEntry, JournalLine)):
            entity_type = type(obj).__name__
            logger.critical(
                "unauthorized_journal_write_blocked",
                extra={"entity_type": entity_type, "entity_id": str(obj.id)},
            )
            raise UnauthorizedJournalWriteError(entity_type, str(obj.id))


# =============================================================================
# Journal entries and lines
# =============================================================================


def _check_journal_entry_insert(mapper, connection, target):
    status = _status_value(target.status)
    if status is not None and status != "draft":
        _blocked(
            "JournalEntry",
            target.id,
            "INSERT",
            f"Journal entries must be created as draft, not {status}",
        )


def _check_journal_entry_immutability(mapper, connection, target):
    """
    Enforce the entry lifecycle on UPDATE.

    The status the row had before this flush decides what may change:
    draft rows are free (except jumping straight to voided), posted rows
    may only take the void transition, voided rows are frozen.
    """
    insp = inspect(target)
    status_history = insp.attrs.status.history
    if status_history.deleted:
        old_status = _status_value(status_history.deleted[0])
    else:
        old_status = _status_value(target.status)
    new_status = _status_value(target.status)

    changed = [c for c in _changed_columns(target) if c not in AUDIT_FIELDS]
    if not changed:
        return

    if old_status == "draft":
        if new_status == "voided":
            _blocked(
                "JournalEntry",
                target.id,
                "UPDATE",
                "A draft entry cannot be voided",
            )
        return

    if old_status == "posted" and new_status == "voided":
        illegal = [c for c in changed if c not in VOID_TRANSITION_FIELDS]
        if not illegal:
            return
        _blocked(
            "JournalEntry",
            target.id,
            "UPDATE",
            f"Cannot modify field(s) {illegal} while voiding a posted entry",
            fields=illegal,
        )

    _blocked(
        "JournalEntry",
        target.id,
        "UPDATE",
        f"Cannot modify field(s) {changed} on {old_status} journal entry",
        fields=changed,
    )


def _check_journal_entry_delete(mapper, connection, target):
    history = inspect(target).attrs.status.history
    status = _status_value(history.deleted[0] if history.deleted else target.status)
    if status != "draft":
        _blocked(
            "JournalEntry",
            target.id,
            "DELETE",
            f"{status} journal entries cannot be deleted",
        )


def _parent_status(connection, journal_entry_id) -> str | None:
    from ledger_kernel.models.journal import JournalEntry

    table = JournalEntry.__table__
    return connection.execute(
        select(table.c.status).where(table.c.id == journal_entry_id)
    ).scalar_one_or_none()


def _line_guard(operation: str):
    def _check(mapper, connection, target):
        entry_id = target.journal_entry_id
        if entry_id is None and target.entry is not None:
            entry_id = target.entry.id
        if entry_id is None:
            return
        status = _parent_status(connection, entry_id)
        if status is not None and status != "draft":
            _blocked(
                "JournalLine",
                target.id,
                operation,
                f"Journal lines cannot be changed once the entry is {status}",
            )

    _check.__name__ = f"_check_journal_line_{operation.lower()}"
    return _check


_check_journal_line_insert = _line_guard("INSERT")
_check_journal_line_immutability = _line_guard("UPDATE")
_check_journal_line_delete = _line_guard("DELETE")


# =============================================================================
# Accounts
# =============================================================================

_ACCOUNT_TREE_REFERENCED = text("""
    WITH RECURSIVE account_tree AS (
        SELECT id FROM accounts WHERE id = :account_id
        UNION ALL
        SELECT a.id
        FROM accounts a
        JOIN account_tree t ON a.parent_id = t.id
    )
    SELECT EXISTS (
        SELECT 1 FROM journal_lines jl
        WHERE jl.account_id IN (SELECT id FROM account_tree)
    )
""")


def account_tree_is_referenced(connection, account_id) -> bool:
    """True when the account or any descendant appears on any journal line."""
    return bool(
        connection.execute(
            _ACCOUNT_TREE_REFERENCED, {"account_id": str(account_id)}
        ).scalar()
    )


def _check_account_structural_immutability(mapper, connection, target):
    changed = _changed_columns(target)

    if "account_type" in changed:
        _blocked(
            "Account",
            target.id,
            "UPDATE",
            "account_type cannot change after creation",
            fields=["account_type"],
        )

    if "code" in changed and account_tree_is_referenced(connection, target.id):
        _blocked(
            "Account",
            target.id,
            "UPDATE",
            "code cannot change once the account is referenced by journal lines",
            fields=["code"],
        )


def _check_account_deletion_before_flush(session, flush_context, instances):
    """
    Refuse deletion of system or referenced accounts.

    Runs in before_flush so the refusal happens before cascades are planned.
    """
    from ledger_kernel.models.account import Account

    for obj in list(session.deleted):
        if not isinstance(obj, Account):
            continue

        if obj.is_system:
            logger.error(
                "account_delete_blocked",
                extra={"account_id": str(obj.id), "reason": "system_account"},
            )
            raise SystemAccountProtectedError(str(obj.id), "delete")

        with session.no_autoflush:
            referenced = account_tree_is_referenced(session.connection(), obj.id)

        if referenced:
            logger.error(
                "account_delete_blocked",
                extra={"account_id": str(obj.id), "reason": "referenced"},
            )
            raise AccountReferencedError(str(obj.id))


# =============================================================================
# Tax rates
# =============================================================================


def _check_tax_rate_immutability(mapper, connection, target):
    changed = [c for c in _changed_columns(target) if c not in AUDIT_FIELDS]
    if not changed:
        return

    if changed != ["valid_to"]:
        illegal = [c for c in changed if c != "valid_to"]
        _blocked(
            "TaxRate",
            target.id,
            "UPDATE",
            f"Cannot modify field(s) {illegal} on a tax rate",
            fields=illegal,
        )

    previous = inspect(target).attrs.valid_to.history.deleted
    if previous and previous[0] is not None:
        _blocked(
            "TaxRate",
            target.id,
            "UPDATE",
            "Only an open tax rate interval can be closed",
            fields=["valid_to"],
        )


def _check_tax_rate_delete(mapper, connection, target):
    _blocked("TaxRate", target.id, "DELETE", "Tax rates are never deleted")


# =============================================================================
# Registration
# =============================================================================


def _listeners():
    from ledger_kernel.models.account import Account
    from ledger_kernel.models.journal import JournalEntry, JournalLine
    from ledger_kernel.models.tax_rate import TaxRate

    return [
        (Session, "before_flush", _check_journal_write_authority),
        (Session, "before_flush", _check_account_deletion_before_flush),
        (JournalEntry, "before_insert", _check_journal_entry_insert),
        (JournalEntry, "before_update", _check_journal_entry_immutability),
        (JournalEntry, "before_delete", _check_journal_entry_delete),
        (JournalLine, "before_insert", _check_journal_line_insert),
        (JournalLine, "before_update", _check_journal_line_immutability),
        (JournalLine, "before_delete", _check_journal_line_delete),
        (Account, "before_update", _check_account_structural_immutability),
        (TaxRate, "before_update", _check_tax_rate_immutability),
        (TaxRate, "before_delete", _check_tax_rate_delete),
    ]


def register_immutability_listeners():
    """
    Register all immutability and single-writer listeners.

    Idempotent; safe to call on every engine initialization.
    """
    for target, name, fn in _listeners():
        if not event.contains(target, name, fn):
            event.listen(target, name, fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove the listeners.

    WARNING: only for tests that exercise the database-level triggers.
    """
    for target, name, fn in _listeners():
        _safe_remove_listener(target, name, fn)
