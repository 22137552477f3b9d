"""
CPDEX Token Ledger  (external collaborator)

The exchange core never moves balances itself. It calls a TokenLedger for
four primitives (debit, credit, mint, burn) plus balance reads and account
provisioning. `ensure_account` is idempotent for user accounts; `create_account`
is strict and is used for accounts that must belong to one owner from birth
(pool vaults). Each primitive is atomic; a failure raises
LedgerError and the calling operation aborts.

`transaction()` groups the primitives of one exchange operation so they are
applied all-or-nothing. InMemoryLedger implements it with a per-thread undo
journal: balance changes are recorded as deltas and reversed if the block
raises. Deltas commute: a rollback leaves changes made by other threads intact.
Assets and strict accounts created inside the block are removed again.

Authorization:
  - debit / burn must be signed by the account's owner
  - mint must be signed by the asset's mint authority, if it has one
  - vaults are owned by their pool's authority address
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Tuple

from ..constants import U64_MAX
from ..exceptions import InsufficientFundsError, LedgerError

logger = logging.getLogger(__name__)


class TokenLedger(ABC):
    """Capability set the exchange core consumes."""

    @abstractmethod
    def debit(self, account: str, asset: str, amount: int, authority: str) -> None:
        ...

    @abstractmethod
    def credit(self, account: str, asset: str, amount: int) -> None:
        ...

    @abstractmethod
    def mint(self, asset: str, account: str, amount: int, authority: Optional[str] = None) -> None:
        ...

    @abstractmethod
    def burn(self, asset: str, account: str, amount: int, authority: str) -> None:
        ...

    @abstractmethod
    def balance_of(self, account: str, asset: str) -> int:
        ...

    @abstractmethod
    def supply_of(self, asset: str) -> int:
        ...

    @abstractmethod
    def ensure_account(self, account: str, asset: str, owner: Optional[str] = None) -> None:
        """Provision an account for an asset if it does not exist yet."""

    @abstractmethod
    def create_account(self, account: str, asset: str, owner: str) -> None:
        """Provision a new account owned by owner. Raises LedgerError if it exists."""

    @abstractmethod
    def create_asset(
        self, asset: str, mint_authority: Optional[str] = None, decimals: int = 0,
    ) -> None:
        ...

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Group primitives atomically. Ledgers without rollback just run the block."""
        yield

    def transfer(
        self, source: str, destination: str, asset: str, amount: int, authority: str,
    ) -> None:
        self.debit(source, asset, amount, authority)
        self.credit(destination, asset, amount)


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------

@dataclass
class AssetInfo:
    asset: str
    mint_authority: Optional[str] = None
    decimals: int = 0
    supply: int = 0
    # Registered on first use by ensure_account rather than by create_asset
    implicit: bool = False


class InMemoryLedger(TokenLedger):
    """
    Process-local ledger used by tests, the CLI and embedding services.

    Balances are keyed by (account, asset).
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._balances: Dict[Tuple[str, str], int] = {}
        self._owners: Dict[Tuple[str, str], str] = {}
        self._assets: Dict[str, AssetInfo] = {}
        self._local = threading.local()

    # -- Transactions -------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[None]:
        journal: Optional[List[Tuple[str, Any, Any]]] = getattr(self._local, "journal", None)
        if journal is not None:
            # Nested: join the outer transaction
            yield
            return

        self._local.journal = []
        try:
            yield
        except BaseException:
            self._rollback(self._local.journal)
            raise
        finally:
            self._local.journal = None

    def _record(self, kind: str, key: Any, change: Any) -> None:
        journal = getattr(self._local, "journal", None)
        if journal is not None:
            journal.append((kind, key, change))

    def _rollback(self, journal: List[Tuple[str, Any, Any]]) -> None:
        with self._lock:
            for kind, key, change in reversed(journal):
                if kind == "balance":
                    self._balances[key] -= change
                elif kind == "supply":
                    self._assets[key].supply -= change
                elif kind == "account":
                    self._balances.pop(key, None)
                    self._owners.pop(key, None)
                elif change is None:
                    self._assets.pop(key, None)
                else:
                    self._assets[key] = change
        if journal:
            logger.debug("Ledger rolled back %d changes", len(journal))

    # -- Assets and accounts ------------------------------------------------

    def create_asset(
        self, asset: str, mint_authority: Optional[str] = None, decimals: int = 0,
    ) -> None:
        """
        Register an asset.

        An asset that ensure_account registered implicitly and that has never
        been minted is claimed; any other existing asset is refused.
        """
        with self._lock:
            previous = self._assets.get(asset)
            if previous is not None and not (previous.implicit and previous.supply == 0):
                raise LedgerError(f"Asset {asset} already exists")
            self._assets[asset] = AssetInfo(
                asset=asset, mint_authority=mint_authority, decimals=decimals,
            )
            self._record("asset", asset, previous)

    def ensure_account(self, account: str, asset: str, owner: Optional[str] = None) -> None:
        key = (account, asset)
        with self._lock:
            if key in self._balances:
                if owner is not None and self._owners[key] != owner:
                    raise LedgerError(
                        f"Account {account} for {asset} is owned by {self._owners[key]}"
                    )
                return
            if asset not in self._assets:
                # Plain assets (no mint authority) are registered on first use
                self._assets[asset] = AssetInfo(asset=asset, implicit=True)
            self._balances[key] = 0
            self._owners[key] = owner or account

    def create_account(self, account: str, asset: str, owner: str) -> None:
        key = (account, asset)
        with self._lock:
            if key in self._balances:
                raise LedgerError(f"Account {account} already exists for {asset}")
            if asset not in self._assets:
                self._assets[asset] = AssetInfo(asset=asset, implicit=True)
            self._balances[key] = 0
            self._owners[key] = owner
            self._record("account", key, None)

    def owner_of(self, account: str, asset: str) -> Optional[str]:
        return self._owners.get((account, asset))

    def asset_info(self, asset: str) -> Optional[AssetInfo]:
        return self._assets.get(asset)

    # -- Primitives ---------------------------------------------------------

    def debit(self, account: str, asset: str, amount: int, authority: str) -> None:
        self._check_amount(amount)
        key = (account, asset)
        with self._lock:
            self._require_account(key, debit=True)
            if self._owners[key] != authority:
                raise LedgerError(f"{authority} may not debit {account}")
            balance = self._balances[key]
            if balance < amount:
                raise InsufficientFundsError(
                    f"Insufficient {asset} in {account}: have {balance}, need {amount}"
                )
            self._balances[key] = balance - amount
            self._record("balance", key, -amount)

    def credit(self, account: str, asset: str, amount: int) -> None:
        self._check_amount(amount)
        key = (account, asset)
        with self._lock:
            self._require_account(key)
            new_balance = self._balances[key] + amount
            if new_balance > U64_MAX:
                raise LedgerError(f"Balance overflow for {account}")
            self._balances[key] = new_balance
            self._record("balance", key, amount)

    def mint(self, asset: str, account: str, amount: int, authority: Optional[str] = None) -> None:
        self._check_amount(amount)
        with self._lock:
            info = self._assets.get(asset)
            if info is None:
                raise LedgerError(f"Unknown asset {asset}")
            if info.mint_authority is not None and info.mint_authority != authority:
                raise LedgerError(f"{authority} is not the mint authority of {asset}")
            if info.supply + amount > U64_MAX:
                raise LedgerError(f"Supply overflow for {asset}")
            self.credit(account, asset, amount)
            info.supply += amount
            self._record("supply", asset, amount)

    def burn(self, asset: str, account: str, amount: int, authority: str) -> None:
        self._check_amount(amount)
        with self._lock:
            info = self._assets.get(asset)
            if info is None:
                raise LedgerError(f"Unknown asset {asset}")
            self.debit(account, asset, amount, authority)
            info.supply -= amount
            self._record("supply", asset, -amount)

    # -- Reads --------------------------------------------------------------

    def balance_of(self, account: str, asset: str) -> int:
        return self._balances.get((account, asset), 0)

    def supply_of(self, asset: str) -> int:
        info = self._assets.get(asset)
        return info.supply if info else 0

    # -- Serialisation ------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "assets": {
                    a.asset: {
                        "mint_authority": a.mint_authority,
                        "decimals": a.decimals,
                        "supply": a.supply,
                        "implicit": a.implicit,
                    }
                    for a in self._assets.values()
                },
                "accounts": [
                    {
                        "account": account,
                        "asset": asset,
                        "owner": self._owners[(account, asset)],
                        "balance": balance,
                    }
                    for (account, asset), balance in sorted(self._balances.items())
                ],
            }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InMemoryLedger":
        ledger = cls()
        for asset, info in data.get("assets", {}).items():
            ledger._assets[asset] = AssetInfo(
                asset=asset,
                mint_authority=info.get("mint_authority"),
                decimals=int(info.get("decimals", 0)),
                supply=int(info.get("supply", 0)),
                implicit=bool(info.get("implicit", False)),
            )
        for entry in data.get("accounts", []):
            key = (entry["account"], entry["asset"])
            ledger._balances[key] = int(entry["balance"])
            ledger._owners[key] = entry["owner"]
        return ledger

    # -- Internal -----------------------------------------------------------

    @staticmethod
    def _check_amount(amount: int) -> None:
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise LedgerError("Amount must be an integer")
        if amount < 0 or amount > U64_MAX:
            raise LedgerError(f"Amount out of range: {amount}")

    def _require_account(self, key: Tuple[str, str], debit: bool = False) -> None:
        if key not in self._balances:
            account, asset = key
            if debit:
                raise InsufficientFundsError(f"No {asset} account for {account}")
            raise LedgerError(f"Account {account} is not provisioned for {asset}")
