"""
CPDEX Exchange Engine

Owns the registry, every pool record and the token ledger handle, and
exposes the six core operations:

  - initialize          (admin only)
  - create_pool         (permissionless)
  - deposit_liquidity
  - withdraw_liquidity
  - swap
  - collect_fees        (admin only)

Concurrency:
  - Each pool has its own re-entrant lock; operations on one pool are
    strictly serialized, operations on different pools run in parallel
  - A registry lock serializes initialization and pools_count increments
  - Every mutating operation runs inside _atomic(): all preconditions and
    calculations complete before the first ledger call, and any failure
    restores the pool record and rolls the ledger back
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from decimal import Decimal, ROUND_DOWN
from typing import Any, Dict, Iterator, List, Optional, Tuple

from ..constants import LP_TOKEN_DECIMALS, U64_MAX
from ..exceptions import (
    ConfigurationError,
    InvalidTokenError,
    LiquidityError,
    NotInitializedError,
    PoolExistsError,
    PoolNotFoundError,
)
from .arithmetic import checked_sub, require_u64
from .fees import FeeCollector
from .ledger import InMemoryLedger, TokenLedger
from .liquidity import (
    calculate_lp_to_mint,
    calculate_withdrawal_amounts,
    checked_liquidity_add,
)
from .pool import Pool
from .registry import Registry
from .swap import SwapQuote, check_slippage, quote_swap

logger = logging.getLogger(__name__)


class DexEngine:
    """
    Constant-product exchange over a TokenLedger.

    Usage:

        engine = DexEngine(admin="admin", ledger=InMemoryLedger())
        engine.initialize("admin", 3, 1000, 30, "treasury")
        pool = engine.create_pool("SOL", "USDC")
        lp = engine.deposit_liquidity(pool.pool_id, "alice", 1_000, 4_000)
    """

    def __init__(
        self,
        admin: str,
        ledger: Optional[TokenLedger] = None,
        allow_reinitialize: bool = True,
        strict_fee_collection: bool = False,
    ) -> None:
        if not admin:
            raise ConfigurationError("An admin identity must be configured")
        self.admin = admin
        self.ledger: TokenLedger = ledger if ledger is not None else InMemoryLedger()
        self.allow_reinitialize = allow_reinitialize
        self.fee_collector = FeeCollector(self.ledger, strict=strict_fee_collection)

        self.registry: Optional[Registry] = None
        self._pools: Dict[str, Pool] = {}
        self._pool_locks: Dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()

    @classmethod
    def from_config(cls, config: Any, ledger: Optional[TokenLedger] = None) -> "DexEngine":
        """Build an engine from an ExchangeSectionConfig."""
        return cls(
            admin=config.admin,
            ledger=ledger,
            allow_reinitialize=config.allow_reinitialize,
            strict_fee_collection=config.strict_fee_collection,
        )

    # =====================================================================
    #  Atomic execution
    # =====================================================================

    def _lock_for(self, pool_id: str) -> threading.RLock:
        lock = self._pool_locks.get(pool_id)
        if lock is None:
            with self._registry_lock:
                lock = self._pool_locks.setdefault(pool_id, threading.RLock())
        return lock

    @contextmanager
    def _atomic(self, pool: Pool) -> Iterator[None]:
        """Run a block with exclusive access to pool, all-or-nothing."""
        with self._lock_for(pool.pool_id):
            snapshot = pool.to_dict()
            try:
                with self.ledger.transaction():
                    yield
            except BaseException:
                pool.restore(snapshot)
                raise

    def _require_registry(self) -> Registry:
        if self.registry is None:
            raise NotInitializedError("Exchange registry is not initialized")
        return self.registry

    def _reserves(self, pool: Pool) -> Tuple[int, int]:
        return (
            self.ledger.balance_of(pool.vault_a_id, pool.token_a_id),
            self.ledger.balance_of(pool.vault_b_id, pool.token_b_id),
        )

    # =====================================================================
    #  Registry
    # =====================================================================

    def initialize(
        self,
        caller: str,
        fee_numerator: int,
        fee_denominator: int,
        protocol_fee_percentage: int,
        fee_collector: str,
    ) -> Registry:
        """
        Set the global fee schedule and collector.

        Re-initialization overwrites the registry (pools_count restarts at 0)
        unless allow_reinitialize is off. Existing pools keep their frozen
        fee schedule either way.
        """
        registry = Registry.initialize(
            self.admin, caller, fee_numerator, fee_denominator,
            protocol_fee_percentage, fee_collector,
        )
        with self._registry_lock:
            if self.registry is not None:
                if not self.allow_reinitialize:
                    raise ConfigurationError("Exchange registry is already initialized")
                logger.warning(
                    "Registry re-initialized: fee %d/%d -> %d/%d, pools_count reset from %d",
                    self.registry.fee_numerator, self.registry.fee_denominator,
                    fee_numerator, fee_denominator, self.registry.pools_count,
                )
            self.registry = registry

        logger.info(
            "Exchange initialized: fee=%d/%d protocol=%d%% collector=%s",
            fee_numerator, fee_denominator, protocol_fee_percentage, fee_collector,
        )
        return registry

    # =====================================================================
    #  Pools
    # =====================================================================

    def create_pool(self, token_a: str, token_b: str, owner: Optional[str] = None) -> Pool:
        """
        Create an empty pool for the ordered pair (token_a, token_b).

        Any caller may create a pool. The reversed pair is a distinct pool.
        The vaults are created fresh under the pool authority; a pair whose
        vault ids are already provisioned on the ledger is refused.
        """
        with self._registry_lock:
            registry = self._require_registry()
            pool = Pool.from_registry(token_a, token_b, registry)
            if pool.pool_id in self._pools:
                raise PoolExistsError(f"Pool already exists for {pool.pair}")

            previous_count = registry.pools_count
            registry.next_pool_index()
            authority = pool.authority.address
            try:
                with self.ledger.transaction():
                    self.ledger.create_asset(
                        pool.lp_asset_id, mint_authority=authority, decimals=LP_TOKEN_DECIMALS,
                    )
                    self.ledger.create_account(pool.vault_a_id, pool.token_a_id, authority)
                    self.ledger.create_account(pool.vault_b_id, pool.token_b_id, authority)
                    if owner:
                        self.ledger.ensure_account(owner, pool.lp_asset_id)
            except BaseException:
                registry.pools_count = previous_count
                raise

            self._pools[pool.pool_id] = pool
            self._pool_locks.setdefault(pool.pool_id, threading.RLock())

        logger.info("Pool created: %s (%s)", pool.pool_id, pool.pair)
        logger.debug("LP asset: %s, vaults: %s / %s", pool.lp_asset_id, pool.vault_a_id, pool.vault_b_id)
        return pool

    def get_pool(self, pool_id: str) -> Pool:
        pool = self._pools.get(pool_id)
        if pool is None:
            raise PoolNotFoundError(f"Pool {pool_id} not found")
        return pool

    def find_pool(self, token_a: str, token_b: str) -> Optional[Pool]:
        """Pool for the exact ordered pair, if any."""
        for pool in self._pools.values():
            if pool.token_a_id == token_a and pool.token_b_id == token_b:
                return pool
        return None

    def get_all_pools(self) -> List[Pool]:
        return list(self._pools.values())

    @property
    def pool_count(self) -> int:
        return len(self._pools)

    # =====================================================================
    #  Liquidity
    # =====================================================================

    def deposit_liquidity(
        self,
        pool_id: str,
        owner: str,
        token_a_amount: int,
        token_b_amount: int,
    ) -> int:
        """
        Deposit both assets and mint LP shares to owner.

        Returns:
            LP shares minted
        """
        require_u64(token_a_amount, "token_a_amount")
        require_u64(token_b_amount, "token_b_amount")
        pool = self.get_pool(pool_id)

        with self._atomic(pool):
            reserve_a, reserve_b = self._reserves(pool)
            lp_minted = calculate_lp_to_mint(
                token_a_amount, token_b_amount, reserve_a, reserve_b, pool.total_liquidity,
            )
            new_total = checked_liquidity_add(pool.total_liquidity, lp_minted)

            self.ledger.transfer(owner, pool.vault_a_id, pool.token_a_id, token_a_amount, owner)
            self.ledger.transfer(owner, pool.vault_b_id, pool.token_b_id, token_b_amount, owner)
            self.ledger.ensure_account(owner, pool.lp_asset_id)
            self.ledger.mint(pool.lp_asset_id, owner, lp_minted, pool.authority.address)
            pool.total_liquidity = new_total

        logger.info(
            "Deposited %d token A and %d token B for %d LP tokens",
            token_a_amount, token_b_amount, lp_minted,
        )
        return lp_minted

    def withdraw_liquidity(self, pool_id: str, owner: str, lp_amount: int) -> Tuple[int, int]:
        """
        Burn LP shares and return the proportional reserves to owner.

        Returns:
            (token_a_amount, token_b_amount)
        """
        require_u64(lp_amount, "lp_amount")
        pool = self.get_pool(pool_id)

        with self._atomic(pool):
            balance = self.ledger.balance_of(owner, pool.lp_asset_id)
            if balance < lp_amount:
                raise LiquidityError(
                    f"Insufficient liquidity: {owner} holds {balance} LP, requested {lp_amount}"
                )
            if pool.total_liquidity < lp_amount:
                raise LiquidityError(
                    f"Insufficient liquidity: total {pool.total_liquidity}, requested {lp_amount}"
                )
            reserve_a, reserve_b = self._reserves(pool)
            token_a_amount, token_b_amount = calculate_withdrawal_amounts(
                lp_amount, reserve_a, reserve_b, pool.total_liquidity,
            )
            new_total = checked_sub(pool.total_liquidity, lp_amount)

            authority = pool.authority.address
            self.ledger.burn(pool.lp_asset_id, owner, lp_amount, owner)
            self.ledger.ensure_account(owner, pool.token_a_id)
            self.ledger.ensure_account(owner, pool.token_b_id)
            self.ledger.transfer(pool.vault_a_id, owner, pool.token_a_id, token_a_amount, authority)
            self.ledger.transfer(pool.vault_b_id, owner, pool.token_b_id, token_b_amount, authority)
            pool.total_liquidity = new_total

        logger.info(
            "Withdrawn %d token A and %d token B by burning %d LP tokens",
            token_a_amount, token_b_amount, lp_amount,
        )
        return token_a_amount, token_b_amount

    # =====================================================================
    #  Swap
    # =====================================================================

    def _resolve_direction(
        self, pool: Pool, source_asset: str, destination_asset: str,
    ) -> Tuple[str, str, str]:
        """Return (source_side, source_vault, destination_vault)."""
        if source_asset == destination_asset:
            raise InvalidTokenError("Source and destination assets must differ")
        source_side = pool.side_of(source_asset)
        pool.side_of(destination_asset)
        return source_side, pool.vault_for(source_asset), pool.vault_for(destination_asset)

    def _quote(
        self, pool: Pool, input_amount: int, source_asset: str, destination_asset: str,
    ) -> SwapQuote:
        _, source_vault, destination_vault = self._resolve_direction(
            pool, source_asset, destination_asset,
        )
        return quote_swap(
            input_amount,
            self.ledger.balance_of(source_vault, source_asset),
            self.ledger.balance_of(destination_vault, destination_asset),
            pool.fee_numerator,
            pool.fee_denominator,
            pool.protocol_fee_percentage,
        )

    def quote_swap(
        self,
        pool_id: str,
        input_amount: int,
        source_asset: str,
        destination_asset: str,
    ) -> SwapQuote:
        """Price a swap without executing it."""
        require_u64(input_amount, "input_amount")
        pool = self.get_pool(pool_id)
        with self._lock_for(pool.pool_id):
            return self._quote(pool, input_amount, source_asset, destination_asset)

    def swap(
        self,
        pool_id: str,
        owner: str,
        input_amount: int,
        minimum_output_amount: int,
        source_asset: str,
        destination_asset: str,
    ) -> int:
        """
        Exact-input swap with a slippage floor.

        Returns:
            Output amount credited to owner
        """
        require_u64(input_amount, "input_amount")
        require_u64(minimum_output_amount, "minimum_output_amount")
        pool = self.get_pool(pool_id)
        source_side, source_vault, destination_vault = self._resolve_direction(
            pool, source_asset, destination_asset,
        )

        with self._atomic(pool):
            quote = self._quote(pool, input_amount, source_asset, destination_asset)
            check_slippage(quote.output_amount, minimum_output_amount)

            pool.accrue_protocol_fee(source_side, quote.protocol_fee, U64_MAX)
            self.ledger.transfer(owner, source_vault, source_asset, input_amount, owner)
            self.ledger.ensure_account(owner, destination_asset)
            self.ledger.transfer(
                destination_vault, owner, destination_asset,
                quote.output_amount, pool.authority.address,
            )

        logger.info(
            "Swapped %d tokens for %d tokens (protocol fee: %d)",
            input_amount, quote.output_amount, quote.protocol_fee,
        )
        return quote.output_amount

    # =====================================================================
    #  Protocol fees
    # =====================================================================

    def collect_fees(self, pool_id: str, caller: str) -> Tuple[int, int]:
        """
        Send a pool's accrued protocol fees to the registry's fee collector.

        Returns:
            (token_a_fee_amount, token_b_fee_amount)
        """
        registry = self._require_registry()
        pool = self.get_pool(pool_id)
        with self._atomic(pool):
            return self.fee_collector.collect(pool, registry, caller)

    # =====================================================================
    #  Query interface (read-only)
    # =====================================================================

    def get_reserves(self, pool_id: str) -> Tuple[int, int]:
        return self._reserves(self.get_pool(pool_id))

    def get_pool_info(self, pool_id: str) -> Dict[str, Any]:
        """Pool record plus live reserves, LP supply and spot price (B per A)."""
        pool = self.get_pool(pool_id)
        with self._lock_for(pool.pool_id):
            reserve_a, reserve_b = self._reserves(pool)
            info = pool.to_dict()
            info.update(
                reserve_a=reserve_a,
                reserve_b=reserve_b,
                lp_supply=self.ledger.supply_of(pool.lp_asset_id),
            )
        if reserve_a > 0:
            price = (Decimal(reserve_b) / Decimal(reserve_a)).quantize(
                Decimal("0.00000001"), rounding=ROUND_DOWN,
            )
            info["price"] = str(price)
        else:
            info["price"] = None
        return info

    def lp_balance(self, pool_id: str, owner: str) -> int:
        pool = self.get_pool(pool_id)
        return self.ledger.balance_of(owner, pool.lp_asset_id)

    # =====================================================================
    #  Persistence
    # =====================================================================

    def to_dict(self) -> Dict[str, Any]:
        return {
            "registry": self.registry.to_dict() if self.registry else None,
            "pools": [self._pools[pid].to_dict() for pid in sorted(self._pools)],
        }

    def load_state(self, data: Dict[str, Any]) -> None:
        """Replace registry and pools from a to_dict() payload."""
        registry_data = data.get("registry")
        registry = Registry.from_dict(registry_data) if registry_data else None
        pools = [Pool.from_dict(p) for p in data.get("pools", [])]
        with self._registry_lock:
            self.registry = registry
            self._pools = {p.pool_id: p for p in pools}
            self._pool_locks = {p.pool_id: threading.RLock() for p in pools}
