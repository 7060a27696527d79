"""
AccountService -- the tenant's chart of accounts.

Responsibility:
    Creates, resolves, updates, deactivates and (when unused) deletes
    accounts of the tenant bound to the session, and seeds the default
    chart for new tenants.

Architecture position:
    Kernel > Services.  Reads balances through LedgerSelector; never writes
    journal rows.

Invariants enforced:
    - Codes are unique per tenant (checked here, backed by a unique
      constraint).
    - Parents belong to the same tenant and never form a cycle.  Because
      every query is tenant-filtered, another tenant's account is simply
      not found.
    - System accounts are never deactivated or deleted.
    - An account with a non-zero posted balance is only deactivated when
      configuration allows it.
    - account_type and (once used) code are frozen by db/immutability.py.

Failure modes:
    - DuplicateAccountCodeError, InvalidParentError, InvalidAccountError.
    - AccountNotFoundError for an unknown code or id.
    - AccountHasBalanceError, SystemAccountProtectedError,
      AccountReferencedError on deactivate / delete.
"""

from pathlib import Path
from uuid import UUID

from sqlalchemy import select

from ledger_kernel.config import LedgerConfig, get_active_config, load_yaml_file
from ledger_kernel.db.immutability import account_tree_is_referenced
from ledger_kernel.domain.tenant import SYSTEM_ACTOR_ID
from ledger_kernel.exceptions import (
    AccountHasBalanceError,
    AccountNotFoundError,
    AccountReferencedError,
    DuplicateAccountCodeError,
    InvalidAccountError,
    InvalidParentError,
    SystemAccountProtectedError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import Account, AccountType
from ledger_kernel.services.base import BaseService

logger = get_logger("services.account")

DEFAULT_CHART_PATH = Path(__file__).resolve().parent.parent / "data" / "default_chart.yaml"

_UNSET = object()


def parse_account_type(value: AccountType | str, code: str = "") -> AccountType:
    if isinstance(value, AccountType):
        return value
    try:
        return AccountType(str(value).strip().lower())
    except ValueError as e:
        raise InvalidAccountError(code, f"unknown account type {value!r}") from e


class AccountService(BaseService):
    """
    Chart-of-accounts operations for the bound tenant.

    Contract:
        Methods return ORM Account instances; LedgerCore converts them to
        AccountRecord at the boundary.  Writes are flushed, never committed.
    """

    def __init__(self, session, clock=None, config: LedgerConfig | None = None):
        super().__init__(session, clock)
        self.config = config or get_active_config()

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, account_id: UUID) -> Account:
        account = self.session.execute(
            select(Account).where(Account.id == account_id)
        ).scalar_one_or_none()
        if account is None:
            raise AccountNotFoundError(str(account_id))
        return account

    def resolve(self, code: str) -> Account:
        """Account with ``code`` in the bound tenant, or AccountNotFoundError."""
        account = self.session.execute(
            select(Account).where(Account.code == code)
        ).scalar_one_or_none()
        if account is None:
            raise AccountNotFoundError(code)
        return account

    def lookup(self, account: UUID | str) -> Account:
        """Resolve an account given either its id or its code."""
        if isinstance(account, UUID):
            return self.get(account)
        return self.resolve(str(account))

    def find_by_codes(self, codes: list[str]) -> dict[str, Account]:
        if not codes:
            return {}
        accounts = self.session.execute(
            select(Account).where(Account.code.in_(codes))
        ).scalars()
        return {a.code: a for a in accounts}

    def list_accounts(
        self,
        active_only: bool = False,
        account_type: AccountType | str | None = None,
    ) -> list[Account]:
        query = select(Account).order_by(Account.code)
        if active_only:
            query = query.where(Account.is_active.is_(True))
        if account_type is not None:
            query = query.where(Account.account_type == parse_account_type(account_type).value)
        return list(self.session.execute(query).scalars())

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_account(
        self,
        code: str,
        name: str,
        account_type: AccountType | str,
        parent: UUID | str | None = None,
        description: str | None = None,
        is_system: bool = False,
        actor_id: UUID | None = None,
    ) -> Account:
        """
        Create an active account.

        Raises:
            InvalidAccountError: empty code or name, unknown type.
            DuplicateAccountCodeError: code already used in this tenant.
            InvalidParentError: parent not found in this tenant.
        """
        code = (code or "").strip()
        if not code:
            raise InvalidAccountError(code, "account code is required")
        if not (name or "").strip():
            raise InvalidAccountError(code, "account name is required")
        acct_type = parse_account_type(account_type, code)

        existing = self.session.execute(
            select(Account.id).where(Account.code == code)
        ).scalar_one_or_none()
        if existing is not None:
            raise DuplicateAccountCodeError(code)

        parent_account = self._resolve_parent(parent) if parent is not None else None

        account = Account(
            tenant_id=self.tenant_id,
            code=code,
            name=name.strip(),
            account_type=acct_type.value,
            parent_id=parent_account.id if parent_account else None,
            is_active=True,
            is_system=is_system,
            description=description,
            created_by_id=actor_id or SYSTEM_ACTOR_ID,
        )
        self.session.add(account)
        self.session.flush()

        logger.info(
            "account_created",
            extra={
                "account_id": str(account.id),
                "account_code": code,
                "account_type": acct_type.value,
                "parent_id": str(account.parent_id) if account.parent_id else None,
                "is_system": is_system,
            },
        )
        return account

    def update_account(
        self,
        account_id: UUID,
        name: str | None = None,
        description: str | None = None,
        parent=_UNSET,
        actor_id: UUID | None = None,
    ) -> Account:
        """
        Rename, re-describe or re-parent an account.

        ``parent=None`` makes the account a root; omit it to keep the
        current parent.
        """
        account = self.get(account_id)

        if name is not None:
            if not name.strip():
                raise InvalidAccountError(account.code, "account name is required")
            account.name = name.strip()
        if description is not None:
            account.description = description
        if parent is not _UNSET:
            if parent is None:
                account.parent_id = None
            else:
                new_parent = self._resolve_parent(parent)
                self._check_no_cycle(account, new_parent)
                account.parent_id = new_parent.id

        account.updated_by_id = actor_id or SYSTEM_ACTOR_ID
        self.session.flush()
        logger.info("account_updated", extra={"account_id": str(account.id)})
        return account

    def deactivate(self, account_id: UUID, actor_id: UUID | None = None) -> Account:
        """
        Mark an account inactive.  Historical lines stay untouched.

        Raises:
            SystemAccountProtectedError: the account is a system account.
            AccountHasBalanceError: non-zero posted balance and the policy
                ``accounts.allow_deactivate_with_balance`` is off.
        """
        from ledger_kernel.selectors.ledger_selector import LedgerSelector

        account = self.get(account_id)
        if account.is_system:
            raise SystemAccountProtectedError(str(account.id), "deactivate")
        if not account.is_active:
            return account

        balance = LedgerSelector(self.session).account_balance(account.id).balance
        if balance != 0 and not self.config.allow_deactivate_with_balance:
            logger.warning(
                "account_deactivation_refused",
                extra={"account_id": str(account.id), "balance": str(balance)},
            )
            raise AccountHasBalanceError(str(account.id), balance)

        account.is_active = False
        account.updated_by_id = actor_id or SYSTEM_ACTOR_ID
        self.session.flush()
        logger.info(
            "account_deactivated",
            extra={"account_id": str(account.id), "balance": str(balance)},
        )
        return account

    def delete_account(self, account_id: UUID) -> None:
        """
        Delete an account that was never used.

        Raises:
            SystemAccountProtectedError: system account.
            AccountReferencedError: journal lines or child accounts refer to it.
        """
        account = self.get(account_id)
        if account.is_system:
            raise SystemAccountProtectedError(str(account.id), "delete")

        has_children = self.session.execute(
            select(Account.id).where(Account.parent_id == account.id).limit(1)
        ).first()
        if has_children is not None:
            raise AccountReferencedError(str(account.id), "has child accounts")

        if account_tree_is_referenced(self.session.connection(), account.id):
            raise AccountReferencedError(str(account.id))

        self.session.delete(account)
        self.session.flush()
        logger.info(
            "account_deleted",
            extra={"account_id": str(account_id), "account_code": account.code},
        )

    def bootstrap_default_chart(
        self,
        actor_id: UUID | None = None,
        path: Path | None = None,
    ) -> list[Account]:
        """
        Seed the default chart as system accounts.

        Codes that already exist are left alone, so seeding is repeatable.
        """
        data = load_yaml_file(path or DEFAULT_CHART_PATH)
        entries = data.get("accounts") or []

        existing = self.find_by_codes([str(e["code"]) for e in entries])
        created = []
        for entry in entries:
            code = str(entry["code"])
            if code in existing:
                continue
            parent_code = entry.get("parent")
            account = self.create_account(
                code=code,
                name=entry["name"],
                account_type=entry["type"],
                parent=str(parent_code) if parent_code is not None else None,
                description=entry.get("description"),
                is_system=True,
                actor_id=actor_id,
            )
            existing[code] = account
            created.append(account)

        logger.info("default_chart_seeded", extra={"accounts_created": len(created)})
        return created

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _resolve_parent(self, parent: UUID | str) -> Account:
        try:
            return self.lookup(parent)
        except AccountNotFoundError as e:
            raise InvalidParentError(str(parent), "parent account not found in tenant") from e

    def _check_no_cycle(self, account: Account, new_parent: Account) -> None:
        node = new_parent
        seen = set()
        while node is not None:
            if node.id == account.id:
                raise InvalidParentError(
                    new_parent.code, f"would make {account.code} its own ancestor"
                )
            if node.id in seen:
                break
            seen.add(node.id)
            node = self.get(node.parent_id) if node.parent_id else None
