"""
CPDEX Exchange State Manager

Front door for services that drive the exchange with transaction envelopes
instead of direct engine calls.

Responsibilities:
  - Validates DexTransactions and enforces per-sender nonces
  - Dispatches each operation to the DexEngine
  - Reports the outcome as a DexExecResult instead of raising
  - Computes a state root over the registry, pools and ledger balances
  - Serializes / deserializes the whole exchange (engine + in-memory ledger)
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from collections import deque
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional, Union

from ..exceptions import LedgerError
from .engine import DexEngine
from .ledger import InMemoryLedger
from .transactions import DexOpType, DexTransaction

logger = logging.getLogger(__name__)

STATE_VERSION = 1

# Most recent execution results kept for inspection
DEFAULT_RESULTS_LIMIT = 1024


# ---------------------------------------------------------------------------
# Transaction execution result
# ---------------------------------------------------------------------------

class DexExecResult:
    """Result of executing a single exchange transaction."""

    __slots__ = ("success", "data", "error", "logs")

    def __init__(
        self,
        success: bool = True,
        data: Optional[Dict[str, Any]] = None,
        error: str = "",
        logs: Optional[List[Dict[str, Any]]] = None,
    ):
        self.success = success
        self.data = data or {}
        self.error = error
        self.logs = logs or []

    def __repr__(self) -> str:
        if self.success:
            return f"DexExecResult(success=True, data={self.data})"
        return f"DexExecResult(success=False, error={self.error!r})"


# ---------------------------------------------------------------------------
# Exchange State Manager
# ---------------------------------------------------------------------------

class DexStateManager:
    """
    Executes DexTransactions against a DexEngine.

    Usage:

        mgr = DexStateManager(DexEngine(admin="admin"))
        result = mgr.process_transaction(tx)
        if not result.success:
            print(result.error)
    """

    def __init__(self, engine: DexEngine, results_limit: int = DEFAULT_RESULTS_LIMIT) -> None:
        self.engine = engine
        # Per-sender nonces for replay protection
        self._nonces: Dict[str, int] = {}
        self._nonce_lock = threading.Lock()
        self._results: Deque[DexExecResult] = deque(maxlen=results_limit)

    # =====================================================================
    #  Transaction processing
    # =====================================================================

    def process_transaction(self, tx: DexTransaction) -> DexExecResult:
        """
        Execute a single exchange transaction.

        Failures never raise: they come back as DexExecResult(success=False)
        with the failure message, and leave engine and ledger unchanged.
        """
        # 1. Structural validation
        try:
            tx.validate_basic()
        except ValueError as e:
            return DexExecResult(success=False, error=str(e))

        # 2. Nonce check; reserve the nonce so a concurrent replay is refused
        with self._nonce_lock:
            expected_nonce = self._nonces.get(tx.sender, 0)
            if tx.nonce != expected_nonce:
                return DexExecResult(
                    success=False,
                    error=f"Invalid nonce: expected {expected_nonce}, got {tx.nonce}",
                )
            self._nonces[tx.sender] = tx.nonce + 1

        # 3. Execute
        try:
            result = self._execute_op(tx)
        except Exception as e:
            logger.error("Exchange op %s failed: %s", DexOpType(tx.op_type).name, e)
            result = DexExecResult(success=False, error=f"{type(e).__name__}: {e}")

        # 4. Release the nonce on failure
        if not result.success:
            with self._nonce_lock:
                if self._nonces.get(tx.sender) == tx.nonce + 1:
                    self._nonces[tx.sender] = tx.nonce

        tx.success = result.success
        tx.result = result.data
        tx.error = result.error
        self._results.append(result)
        return result

    def _execute_op(self, tx: DexTransaction) -> DexExecResult:
        handlers = {
            DexOpType.INITIALIZE: self._op_initialize,
            DexOpType.CREATE_POOL: self._op_create_pool,
            DexOpType.DEPOSIT_LIQUIDITY: self._op_deposit_liquidity,
            DexOpType.WITHDRAW_LIQUIDITY: self._op_withdraw_liquidity,
            DexOpType.SWAP: self._op_swap,
            DexOpType.COLLECT_FEES: self._op_collect_fees,
        }
        handler = handlers.get(tx.op_type)
        if handler is None:
            return DexExecResult(success=False, error=f"Unknown op type: {tx.op_type}")
        return handler(tx)

    # =====================================================================
    #  Operation handlers
    # =====================================================================

    def _op_initialize(self, tx: DexTransaction) -> DexExecResult:
        p = tx.params
        registry = self.engine.initialize(
            tx.sender,
            p["fee_numerator"],
            p["fee_denominator"],
            p["protocol_fee_percentage"],
            p["fee_collector"],
        )
        return DexExecResult(data=registry.to_dict())

    def _op_create_pool(self, tx: DexTransaction) -> DexExecResult:
        p = tx.params
        pool = self.engine.create_pool(p["token_a"], p["token_b"], owner=tx.sender)
        return DexExecResult(
            data={"pool_id": pool.pool_id, "pair": pool.pair, "lp_asset_id": pool.lp_asset_id},
            logs=[{"event": "PoolCreated", "pool_id": pool.pool_id}],
        )

    def _op_deposit_liquidity(self, tx: DexTransaction) -> DexExecResult:
        p = tx.params
        lp_minted = self.engine.deposit_liquidity(
            p["pool_id"], tx.sender, p["token_a_amount"], p["token_b_amount"],
        )
        return DexExecResult(
            data={"lp_minted": lp_minted},
            logs=[{"event": "LiquidityDeposited", "pool_id": p["pool_id"], "lp": lp_minted}],
        )

    def _op_withdraw_liquidity(self, tx: DexTransaction) -> DexExecResult:
        p = tx.params
        amount_a, amount_b = self.engine.withdraw_liquidity(p["pool_id"], tx.sender, p["lp_amount"])
        return DexExecResult(
            data={"token_a_amount": amount_a, "token_b_amount": amount_b},
            logs=[{"event": "LiquidityWithdrawn", "pool_id": p["pool_id"], "lp": p["lp_amount"]}],
        )

    def _op_swap(self, tx: DexTransaction) -> DexExecResult:
        p = tx.params
        output_amount = self.engine.swap(
            p["pool_id"],
            tx.sender,
            p["input_amount"],
            p["minimum_output_amount"],
            p["source_asset"],
            p["destination_asset"],
        )
        return DexExecResult(
            data={"output_amount": output_amount},
            logs=[{"event": "Swap", "pool_id": p["pool_id"], "output": output_amount}],
        )

    def _op_collect_fees(self, tx: DexTransaction) -> DexExecResult:
        p = tx.params
        amount_a, amount_b = self.engine.collect_fees(p["pool_id"], tx.sender)
        return DexExecResult(data={"token_a_amount": amount_a, "token_b_amount": amount_b})

    # =====================================================================
    #  State root
    # =====================================================================

    def compute_state_root(self) -> str:
        """
        Deterministic hash over the registry, every pool record with its vault
        balances, and the sender nonces.

        Returns:
            64-char hex string (blake2b-256)
        """
        hasher = hashlib.blake2b(digest_size=32)

        registry = self.engine.registry
        if registry is not None:
            hasher.update(json.dumps(registry.to_dict(), sort_keys=True).encode())

        ledger = self.engine.ledger
        for pool in sorted(self.engine.get_all_pools(), key=lambda p: p.pool_id):
            reserve_a = ledger.balance_of(pool.vault_a_id, pool.token_a_id)
            reserve_b = ledger.balance_of(pool.vault_b_id, pool.token_b_id)
            pool_hash = hashlib.blake2b(
                (f"{pool.pool_id}:{pool.total_liquidity}:{reserve_a}:{reserve_b}:"
                 f"{pool.protocol_fees_token_a}:{pool.protocol_fees_token_b}").encode(),
                digest_size=16,
            ).digest()
            hasher.update(pool_hash)

        for sender in sorted(self._nonces):
            hasher.update(f"{sender}:{self._nonces[sender]}".encode())

        return hasher.hexdigest()

    # =====================================================================
    #  Query interface
    # =====================================================================

    def get_nonce(self, sender: str) -> int:
        return self._nonces.get(sender, 0)

    @property
    def results(self) -> List[DexExecResult]:
        return list(self._results)

    def reset_results(self) -> None:
        """Drop the recorded execution results."""
        self._results.clear()

    # =====================================================================
    #  Persistence
    # =====================================================================

    def to_dict(self) -> Dict[str, Any]:
        ledger = self.engine.ledger
        if not isinstance(ledger, InMemoryLedger):
            raise LedgerError("Only an InMemoryLedger can be serialized with the exchange state")
        return {
            "version": STATE_VERSION,
            "engine": self.engine.to_dict(),
            "ledger": ledger.to_dict(),
            "nonces": dict(sorted(self._nonces.items())),
        }

    @classmethod
    def from_dict(
        cls,
        data: Dict[str, Any],
        admin: str,
        allow_reinitialize: bool = True,
        strict_fee_collection: bool = False,
    ) -> "DexStateManager":
        version = data.get("version", STATE_VERSION)
        if version != STATE_VERSION:
            raise ValueError(f"Unsupported state version: {version}")
        engine = DexEngine(
            admin=admin,
            ledger=InMemoryLedger.from_dict(data.get("ledger", {})),
            allow_reinitialize=allow_reinitialize,
            strict_fee_collection=strict_fee_collection,
        )
        engine.load_state(data.get("engine", {}))
        manager = cls(engine)
        manager._nonces = {k: int(v) for k, v in data.get("nonces", {}).items()}
        return manager

    def save(self, path: Union[str, Path]) -> None:
        """Write the exchange state as JSON, replacing the file atomically."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(json.dumps(self.to_dict(), indent=2, sort_keys=True))
        tmp.replace(path)
        logger.debug("Exchange state saved to %s", path)

    @classmethod
    def load(cls, path: Union[str, Path], admin: str, **kwargs: Any) -> "DexStateManager":
        """Load state written by save(); a missing file yields an empty exchange."""
        path = Path(path)
        if not path.exists():
            logger.debug("No state file at %s, starting empty", path)
            return cls(DexEngine(admin=admin, **kwargs))
        data = json.loads(path.read_text())
        return cls.from_dict(data, admin=admin, **kwargs)
