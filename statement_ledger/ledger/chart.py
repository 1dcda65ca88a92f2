"""
Chart of Accounts

Creates, validates and looks up chart accounts.

Rules enforced here:
- The first digit of the code is the type (1 asset ... 5 expense)
- Codes are unique
- A child account has its parent's type
- System accounts are never edited away (the ledger refuses to
  deactivate or merge them)

DESIGN DECISION: When no id is given the code is the id, so the seeded
accounts are addressable as "5200" from rules, tests and configuration.
"""

from typing import Optional
from uuid import UUID

from pydantic import ValidationError

from statement_ledger.audit import AuditLogger
from statement_ledger.ledger.errors import AccountNotFoundError, InvalidAccountError
from statement_ledger.models.ledger import AccountType, BankAccount, ChartAccount
from statement_ledger.services.storage import AccountStorageInterface, DuplicateError

# Parents of the ledger accounts created for bank accounts
CASH_AND_BANK_REF = "1100"
CREDIT_CARDS_REF = "2100"

_CODE_STEP = 10
_CODE_CEILING = 9999


# =============================================================================
# DEFAULT CHART
# =============================================================================

def _account(code: str, name: str, account_type: AccountType, parent: Optional[str] = None,
             subtype: Optional[str] = None, system: bool = False) -> ChartAccount:
    return ChartAccount(
        code=code,
        name=name,
        type=account_type,
        parent_ref=parent,
        subtype=subtype,
        is_system=system,
    )


def default_chart() -> list[ChartAccount]:
    """System accounts plus a small personal-finance preset, parents first."""
    return [
        # Assets
        _account("1000", "Assets", AccountType.ASSET, system=True),
        _account("1100", "Cash & Bank", AccountType.ASSET, "1000", "Cash", system=True),
        # Liabilities
        _account("2000", "Liabilities", AccountType.LIABILITY, system=True),
        _account("2100", "Credit Cards", AccountType.LIABILITY, "2000", "Credit Card", system=True),
        # Equity
        _account("3000", "Equity", AccountType.EQUITY, system=True),
        _account("3100", "Opening Balance Equity", AccountType.EQUITY, "3000", system=True),
        _account("3200", "Retained Earnings", AccountType.EQUITY, "3000", system=True),
        _account("3900", "Reconciliation Adjustments", AccountType.EQUITY, "3000", system=True),
        # Revenue
        _account("4000", "Revenue", AccountType.REVENUE, system=True),
        _account("4100", "Salary", AccountType.REVENUE, "4000"),
        _account("4200", "Interest", AccountType.REVENUE, "4000"),
        _account("4900", "Other Income", AccountType.REVENUE, "4000"),
        # Expenses
        _account("5000", "Expenses", AccountType.EXPENSE, system=True),
        _account("5100", "Housing", AccountType.EXPENSE, "5000"),
        _account("5200", "Food & Dining", AccountType.EXPENSE, "5000"),
        _account("5300", "Transportation", AccountType.EXPENSE, "5000"),
        _account("5400", "Utilities", AccountType.EXPENSE, "5000"),
        _account("5900", "Other Expenses", AccountType.EXPENSE, "5000"),
    ]


class ChartOfAccounts:
    """Chart-of-accounts service on top of account storage."""

    def __init__(
        self,
        storage: AccountStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._audit = audit_logger or AuditLogger()

    async def seed_defaults(self) -> int:
        """
        Create whichever default accounts are missing.

        Returns:
            Number of accounts created
        """
        created = 0
        for account in default_chart():
            if await self._storage.get_chart_account(account.id) is None:
                await self._storage.save_chart_account(account)
                created += 1
        return created

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    async def get(self, account_ref: str) -> ChartAccount:
        account = await self._storage.get_chart_account(account_ref)
        if account is None:
            raise AccountNotFoundError(f"Chart account not found: {account_ref}")
        return account

    async def find(self, account_ref: str) -> Optional[ChartAccount]:
        return await self._storage.get_chart_account(account_ref)

    async def list_accounts(self, include_inactive: bool = False) -> list[ChartAccount]:
        return await self._storage.list_chart_accounts(include_inactive=include_inactive)

    async def children_of(self, account_ref: str, include_inactive: bool = False) -> list[ChartAccount]:
        return [
            a for a in await self.list_accounts(include_inactive=include_inactive)
            if a.parent_ref == account_ref
        ]

    async def hierarchy(self) -> list[tuple[int, ChartAccount]]:
        """
        Active accounts as (depth, account), each parent followed by its
        children, siblings ordered by code.
        """
        accounts = await self.list_accounts()
        known = {a.id for a in accounts}
        by_parent: dict[Optional[str], list[ChartAccount]] = {}
        for account in accounts:
            parent = account.parent_ref if account.parent_ref in known else None
            by_parent.setdefault(parent, []).append(account)

        ordered: list[tuple[int, ChartAccount]] = []

        def walk(parent: Optional[str], depth: int) -> None:
            for account in by_parent.get(parent, []):
                ordered.append((depth, account))
                walk(account.id, depth + 1)

        walk(None, 0)
        return ordered

    async def leaf_accounts(self, account_type: Optional[AccountType] = None) -> list[ChartAccount]:
        """Active accounts without active children; these are what transactions post to."""
        accounts = await self.list_accounts()
        parents = {a.parent_ref for a in accounts if a.parent_ref}
        return [
            a for a in accounts
            if a.id not in parents and (account_type is None or a.type == account_type)
        ]

    async def expense_accounts(self) -> list[ChartAccount]:
        return await self.leaf_accounts(AccountType.EXPENSE)

    async def revenue_accounts(self) -> list[ChartAccount]:
        return await self.leaf_accounts(AccountType.REVENUE)

    async def next_code(self, account_type: AccountType) -> str:
        """Next free code for a type: the highest existing code of that type plus ten."""
        prefix = account_type.code_prefix
        codes = [
            int(a.code) for a in await self.list_accounts(include_inactive=True)
            if a.code.startswith(prefix) and len(a.code) == 4
        ]
        candidate = max(codes + [int(prefix) * 1000]) + _CODE_STEP
        if candidate > _CODE_CEILING or not str(candidate).startswith(prefix):
            raise InvalidAccountError(f"No free {account_type.value} account codes left")
        return str(candidate)

    # =========================================================================
    # CREATION
    # =========================================================================

    async def add_account(
        self,
        account: ChartAccount,
        correlation_id: Optional[UUID] = None,
    ) -> ChartAccount:
        """
        Validate and store a new chart account.

        Raises:
            InvalidAccountError: Unknown or inactive parent, parent of
                                 another type, or code already in use
        """
        if account.parent_ref:
            parent = await self._storage.get_chart_account(account.parent_ref)
            if parent is None:
                raise InvalidAccountError(f"Parent account not found: {account.parent_ref}")
            if not parent.is_active:
                raise InvalidAccountError(f"Parent account is inactive: {account.parent_ref}")
            if parent.type != account.type:
                raise InvalidAccountError(
                    f"Account {account.code} is {account.type.value} but its parent "
                    f"{parent.code} is {parent.type.value}"
                )
        if await self._storage.get_chart_account(account.id) is not None:
            raise InvalidAccountError(f"Account already exists: {account.id}")

        try:
            saved = await self._storage.save_chart_account(account)
        except DuplicateError as e:
            raise InvalidAccountError(str(e)) from e

        await self._audit.log_account_created(
            account_id=saved.id,
            code=saved.code,
            name=saved.name,
            correlation_id=correlation_id,
        )
        return saved

    async def create_account(
        self,
        name: str,
        account_type: AccountType,
        parent_ref: Optional[str] = None,
        code: Optional[str] = None,
        subtype: Optional[str] = None,
        bank_account_ref: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> ChartAccount:
        """Create an account, generating the code when none is given."""
        try:
            account = ChartAccount(
                code=code or await self.next_code(account_type),
                name=name,
                type=account_type,
                parent_ref=parent_ref,
                subtype=subtype,
                bank_account_ref=bank_account_ref,
            )
        except ValidationError as e:
            raise InvalidAccountError(str(e)) from e
        return await self.add_account(account, correlation_id=correlation_id)

    async def ensure_bank_chart_account(
        self,
        bank_account: BankAccount,
        correlation_id: Optional[UUID] = None,
    ) -> ChartAccount:
        """
        Ledger account mirroring a bank account, created on first use.

        Checking, savings and money market accounts become assets under
        Cash & Bank; credit cards and credit lines become liabilities under
        Credit Cards.
        """
        if bank_account.chart_account_ref:
            existing = await self._storage.get_chart_account(bank_account.chart_account_ref)
            if existing is not None:
                return existing

        for account in await self.list_accounts(include_inactive=True):
            if account.bank_account_ref == bank_account.id:
                return account

        if bank_account.is_liability:
            account_type, parent_ref, subtype = AccountType.LIABILITY, CREDIT_CARDS_REF, "Credit Card"
        else:
            account_type, parent_ref, subtype = AccountType.ASSET, CASH_AND_BANK_REF, "Cash"

        if await self._storage.get_chart_account(parent_ref) is None:
            parent_ref = None

        return await self.create_account(
            name=bank_account.name,
            account_type=account_type,
            parent_ref=parent_ref,
            subtype=subtype,
            bank_account_ref=bank_account.id,
            correlation_id=correlation_id,
        )
