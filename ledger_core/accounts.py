"""
Chart of Accounts Module

Manages the hierarchical chart of accounts. Every account has a type
(asset, liability, equity, revenue or expense); sub-accounts inherit the
type of their root ancestor. Accounts are never deleted, only deactivated,
so historical journal lines always resolve to an account.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional
from enum import Enum
import logging

from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .currency import CurrencyRegistry
from .errors import (
    AccountInUseError, AccountNotFoundError, DuplicateAccountError,
    InvalidParentError, LedgerValidationError
)


logger = logging.getLogger(__name__)

_UNCHANGED = object()


class AccountType(Enum):
    """Standard accounting account types"""
    ASSET = "asset"           # Debit normal balance
    LIABILITY = "liability"   # Credit normal balance
    EQUITY = "equity"         # Credit normal balance
    REVENUE = "revenue"       # Credit normal balance
    EXPENSE = "expense"       # Debit normal balance


DEBIT_NORMAL_TYPES = frozenset({AccountType.ASSET, AccountType.EXPENSE})
NOMINAL_TYPES = frozenset({AccountType.REVENUE, AccountType.EXPENSE})


def is_debit_normal(account_type: AccountType) -> bool:
    """Assets and expenses carry a debit normal balance"""
    return account_type in DEBIT_NORMAL_TYPES


def is_nominal(account_type: AccountType) -> bool:
    """Revenue and expense accounts reset to zero at every period close"""
    return account_type in NOMINAL_TYPES


def normal_balance(account_type: AccountType, debit_total: Decimal, credit_total: Decimal) -> Decimal:
    """Net balance signed by the account type's normal side"""
    if is_debit_normal(account_type):
        return debit_total - credit_total
    return credit_total - debit_total


@dataclass
class Account(StorageRecord):
    """
    Ledger account. ``id`` and ``code`` are the same immutable value.

    ``currency_id`` pins the account to a single currency; None accepts
    lines in any active currency.
    """
    code: str
    name: str
    account_type: AccountType
    parent_code: Optional[str] = None
    currency_id: Optional[str] = None
    is_active: bool = True
    description: str = ""

    @property
    def is_debit_normal(self) -> bool:
        return is_debit_normal(self.account_type)

    @classmethod
    def from_dict(cls, data: Dict) -> 'Account':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            code=data['code'],
            name=data['name'],
            account_type=AccountType(data['account_type']),
            parent_code=data.get('parent_code'),
            currency_id=data.get('currency_id'),
            is_active=data.get('is_active', True),
            description=data.get('description', "")
        )


class ChartOfAccounts:
    """
    Registry of ledger accounts

    Type resolution walks the parent chain over an arena of accounts keyed
    by code; there is no object graph to chase.
    """

    def __init__(
        self,
        storage: StorageInterface,
        currencies: CurrencyRegistry,
        audit_trail: AuditTrail,
        require_zero_balance_to_deactivate: bool = False
    ):
        self.storage = storage
        self.currencies = currencies
        self.audit_trail = audit_trail
        self.require_zero_balance_to_deactivate = require_zero_balance_to_deactivate
        self.table_name = "accounts"
        self._balance_reader: Optional[Callable[[str], Dict[str, Decimal]]] = None

    def attach_balance_reader(self, reader: Callable[[str], Dict[str, Decimal]]) -> None:
        """
        Register the function used to read an account's current net balance
        per currency when the zero-balance deactivation policy is enabled.
        """
        self._balance_reader = reader

    def create_account(
        self,
        code: str,
        name: str,
        account_type: Optional[AccountType] = None,
        parent_code: Optional[str] = None,
        currency_id: Optional[str] = None,
        description: str = ""
    ) -> Account:
        """
        Create a new account

        Args:
            code: Unique, immutable account code
            name: Display name
            account_type: Account type; may be omitted for sub-accounts, which
                inherit the type of their root ancestor
            parent_code: Optional parent account code
            currency_id: Optional currency the account is pinned to
            description: Free-form description

        Returns:
            Created Account

        Raises:
            DuplicateAccountError: If the code already exists
            InvalidParentError: If the parent does not exist or its type
                disagrees with the requested type
        """
        code = (code or "").strip()
        if not code:
            raise LedgerValidationError("Account code is required")
        if not name:
            raise LedgerValidationError("Account name is required", account_code=code)

        if isinstance(account_type, str):
            account_type = AccountType(account_type.lower())

        if self.storage.exists(self.table_name, code):
            raise DuplicateAccountError(code)

        if parent_code is not None:
            if parent_code == code:
                raise InvalidParentError(
                    f"Account {code} cannot be its own parent",
                    account_code=code,
                    parent_code=parent_code
                )
            if not self.storage.exists(self.table_name, parent_code):
                raise InvalidParentError(
                    f"Parent account {parent_code} does not exist",
                    account_code=code,
                    parent_code=parent_code
                )
            root_type = self.resolve_type(parent_code)
            if account_type is None:
                account_type = root_type
            elif account_type != root_type:
                raise InvalidParentError(
                    f"Account {code} of type {account_type.value} cannot sit under "
                    f"{parent_code} of type {root_type.value}",
                    account_code=code,
                    parent_code=parent_code,
                    account_type=account_type,
                    parent_type=root_type
                )
        elif account_type is None:
            raise LedgerValidationError(
                f"Root account {code} requires an account type",
                account_code=code
            )

        if currency_id is not None:
            currency_id = self.currencies.require_active(currency_id).code

        now = datetime.now(timezone.utc)
        account = Account(
            id=code,
            created_at=now,
            updated_at=now,
            code=code,
            name=name,
            account_type=account_type,
            parent_code=parent_code,
            currency_id=currency_id,
            description=description
        )
        self._save_account(account)

        self.audit_trail.log_event(
            event_type=AuditEventType.ACCOUNT_CREATED,
            entity_type="account",
            entity_id=code,
            metadata={
                "name": name,
                "account_type": account_type.value,
                "parent_code": parent_code,
                "currency_id": currency_id
            }
        )
        logger.info("Account created", extra={"extra": {"account_code": code, "account_type": account_type.value}})
        return account

    def update_account(
        self,
        code: str,
        name: Optional[str] = None,
        parent_code=_UNCHANGED,
        description: Optional[str] = None
    ) -> Account:
        """
        Update an account's name, description or parent. The code and type
        never change; pass ``parent_code=None`` to make the account a root.

        Raises:
            AccountNotFoundError: If the account does not exist
            InvalidParentError: If the new parent is missing, would create a
                cycle, or has a different root type
        """
        account = self.require_account(code)
        changes = {}

        if name is not None and name != account.name:
            account.name = name
            changes['name'] = name

        if description is not None and description != account.description:
            account.description = description
            changes['description'] = description

        if parent_code is not _UNCHANGED and parent_code != account.parent_code:
            if parent_code is not None:
                self._check_reparent(account, parent_code)
            account.parent_code = parent_code
            changes['parent_code'] = parent_code

        if changes:
            account.updated_at = datetime.now(timezone.utc)
            self._save_account(account)
            self.audit_trail.log_event(
                event_type=AuditEventType.ACCOUNT_UPDATED,
                entity_type="account",
                entity_id=code,
                metadata=changes
            )
        return account

    def _check_reparent(self, account: Account, parent_code: str) -> None:
        arena = self._arena()
        if parent_code not in arena:
            raise InvalidParentError(
                f"Parent account {parent_code} does not exist",
                account_code=account.code,
                parent_code=parent_code
            )

        # Walk up from the new parent; meeting the account itself means a cycle
        current: Optional[str] = parent_code
        seen = set()
        while current is not None:
            if current == account.code:
                raise InvalidParentError(
                    f"Moving {account.code} under {parent_code} would create a cycle",
                    account_code=account.code,
                    parent_code=parent_code
                )
            if current in seen:
                break
            seen.add(current)
            current = arena[current].parent_code if current in arena else None

        parent_type = self._resolve_in_arena(parent_code, arena)
        if parent_type != account.account_type:
            raise InvalidParentError(
                f"Account {account.code} of type {account.account_type.value} cannot sit under "
                f"{parent_code} of type {parent_type.value}",
                account_code=account.code,
                parent_code=parent_code,
                account_type=account.account_type,
                parent_type=parent_type
            )

    def deactivate_account(self, code: str) -> Account:
        """
        Hide an account from new postings. Historical queries still see it.

        Raises:
            AccountInUseError: If the zero-balance policy is enabled and the
                account carries a non-zero balance in any currency
        """
        account = self.require_account(code)
        if not account.is_active:
            return account

        if self.require_zero_balance_to_deactivate and self._balance_reader:
            balances = {
                currency: amount
                for currency, amount in self._balance_reader(code).items()
                if amount != 0
            }
            if balances:
                raise AccountInUseError(code, balances)

        account.is_active = False
        account.updated_at = datetime.now(timezone.utc)
        self._save_account(account)

        self.audit_trail.log_event(
            event_type=AuditEventType.ACCOUNT_DEACTIVATED,
            entity_type="account",
            entity_id=code,
            metadata={}
        )
        logger.info("Account deactivated", extra={"extra": {"account_code": code}})
        return account

    def reactivate_account(self, code: str) -> Account:
        """Make a deactivated account available for postings again"""
        account = self.require_account(code)
        if account.is_active:
            return account

        account.is_active = True
        account.updated_at = datetime.now(timezone.utc)
        self._save_account(account)

        self.audit_trail.log_event(
            event_type=AuditEventType.ACCOUNT_REACTIVATED,
            entity_type="account",
            entity_id=code,
            metadata={}
        )
        return account

    def get_account(self, code: str) -> Optional[Account]:
        """Get account by code"""
        data = self.storage.load(self.table_name, code)
        return Account.from_dict(data) if data else None

    def require_account(self, code: str) -> Account:
        """Get account by code or raise AccountNotFoundError"""
        account = self.get_account(code)
        if not account:
            raise AccountNotFoundError(code)
        return account

    def list_accounts(
        self,
        account_type: Optional[AccountType] = None,
        is_active: Optional[bool] = None,
        parent_code: Optional[str] = None,
        search: Optional[str] = None
    ) -> List[Account]:
        """
        List accounts ordered by code

        Args:
            account_type: Only accounts of this type
            is_active: Only active (True) or inactive (False) accounts
            parent_code: Only direct children of this account
            search: Case-insensitive substring of code or name
        """
        filters = {}
        if account_type is not None:
            filters['account_type'] = AccountType(account_type).value
        if is_active is not None:
            filters['is_active'] = is_active
        if parent_code is not None:
            filters['parent_code'] = parent_code

        accounts = [Account.from_dict(d) for d in self.storage.find(self.table_name, filters)]

        if search:
            needle = search.lower()
            accounts = [a for a in accounts if needle in a.code.lower() or needle in a.name.lower()]

        return sorted(accounts, key=lambda a: a.code)

    def get_children(self, code: str) -> List[Account]:
        """Direct sub-accounts of an account"""
        self.require_account(code)
        return self.list_accounts(parent_code=code)

    def get_descendant_codes(self, code: str) -> List[str]:
        """The account and every account beneath it"""
        arena = self._arena()
        children: Dict[str, List[str]] = {}
        for account in arena.values():
            if account.parent_code:
                children.setdefault(account.parent_code, []).append(account.code)

        result = []
        pending = [code]
        while pending:
            current = pending.pop()
            if current in result:
                continue
            result.append(current)
            pending.extend(children.get(current, []))
        return result

    def resolve_type(self, code: str) -> AccountType:
        """
        Walk the parent chain to the root account and return its type

        Raises:
            AccountNotFoundError: If the account does not exist
        """
        return self._resolve_in_arena(code, self._arena())

    def resolve_types(self) -> Dict[str, AccountType]:
        """Resolved type of every account, keyed by code"""
        arena = self._arena()
        return {code: self._resolve_in_arena(code, arena) for code in arena}

    def _resolve_in_arena(self, code: str, arena: Dict[str, Account]) -> AccountType:
        if code not in arena:
            raise AccountNotFoundError(code)

        current = arena[code]
        seen = {code}
        while current.parent_code and current.parent_code in arena:
            if current.parent_code in seen:
                raise InvalidParentError(
                    f"Account hierarchy contains a cycle at {current.parent_code}",
                    account_code=code
                )
            seen.add(current.parent_code)
            current = arena[current.parent_code]
        return current.account_type

    def _arena(self) -> Dict[str, Account]:
        return {d['code']: Account.from_dict(d) for d in self.storage.load_all(self.table_name)}

    def _save_account(self, account: Account) -> None:
        self.storage.save(self.table_name, account.code, account.to_dict())
