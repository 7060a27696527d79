"""
Module: ledger_kernel.db.triggers
Responsibility: Loading, installing and verifying the PostgreSQL triggers
    that duplicate the ORM rules of db/immutability.py at the database level.
Architecture position: Kernel > DB.  Imports nothing from the kernel.

Invariants enforced (PostgreSQL only):
    - journal_entries: inserted as draft; posted rows accept only the void
      transition; voided rows never change; non-draft rows never deleted.
    - journal_lines: insert, update and delete only while the entry is draft.
    - tax_rates: never deleted; only an open valid_to may be set.

Failure modes:
    - RAISE EXCEPTION 'IMMUTABILITY_VIOLATION: ...' on violation, surfaced by
      session_scope() as ImmutabilityViolationError.
    - FileNotFoundError if an SQL file is missing from the sql/ directory.
"""

from pathlib import Path

from sqlalchemy import text
from sqlalchemy.engine import Engine

SQL_DIR = Path(__file__).parent / "sql"

TRIGGER_FILES = [
    "01_journal_entry.sql",
    "02_journal_line.sql",
    "03_tax_rate.sql",
]

DROP_FILE = "99_drop_all.sql"

ALL_TRIGGER_NAMES = [
    "trg_journal_entry_insert_draft",
    "trg_journal_entry_immutability_update",
    "trg_journal_entry_immutability_delete",
    "trg_journal_line_immutability",
    "trg_tax_rate_immutability_update",
    "trg_tax_rate_immutability_delete",
]


def _load_sql_file(filename: str) -> str:
    return (SQL_DIR / filename).read_text(encoding="utf-8")


def _load_all_trigger_sql() -> str:
    """All trigger files concatenated in numbered order."""
    parts = []
    for filename in TRIGGER_FILES:
        parts.append(f"-- Loading: {filename}")
        parts.append(_load_sql_file(filename))
    return "\n".join(parts)


def install_immutability_triggers(engine: Engine) -> None:
    """
    Install the triggers.  Idempotent (CREATE OR REPLACE / DROP IF EXISTS).

    Preconditions: tables exist and ``engine`` is PostgreSQL.
    """
    with engine.connect() as conn:
        conn.execute(text(_load_all_trigger_sql()))
        conn.commit()


def uninstall_immutability_triggers(engine: Engine) -> None:
    """Remove every trigger and its function.  Tests and migrations only."""
    with engine.connect() as conn:
        conn.execute(text(_load_sql_file(DROP_FILE)))
        conn.commit()


def triggers_installed(engine: Engine) -> list[str]:
    """Names of the expected triggers currently present."""
    with engine.connect() as conn:
        rows = conn.execute(
            text(
                "SELECT tgname FROM pg_trigger "
                "WHERE NOT tgisinternal AND tgname = ANY(:names)"
            ),
            {"names": ALL_TRIGGER_NAMES},
        ).scalars()
        return sorted(rows)
