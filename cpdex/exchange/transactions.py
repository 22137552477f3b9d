"""
CPDEX Exchange Transaction Types

Defines the envelope for exchange operations submitted to the state manager.
An envelope names the operation, the acting identity and its nonce, and the
operation-specific parameters; the state manager validates and executes it.

Transaction Types:
  - INITIALIZE:          Set the fee schedule and fee collector (admin)
  - CREATE_POOL:         Create a pool for an ordered token pair
  - DEPOSIT_LIQUIDITY:   Deposit both assets and mint LP shares
  - WITHDRAW_LIQUIDITY:  Burn LP shares for the proportional reserves
  - SWAP:                Exact-input swap with a minimum output
  - COLLECT_FEES:        Pay accrued protocol fees to the collector (admin)

Security:
  - Nonce prevents replay
  - The envelope hash covers op type, sender, nonce and params
"""

from __future__ import annotations

import hashlib
import json
import time
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict


# ---------------------------------------------------------------------------
# Operation Types
# ---------------------------------------------------------------------------

class DexOpType(IntEnum):
    """All exchange operation types. Values are part of the tx hash."""
    INITIALIZE = 1
    CREATE_POOL = 2
    DEPOSIT_LIQUIDITY = 3
    WITHDRAW_LIQUIDITY = 4
    SWAP = 5
    COLLECT_FEES = 6


# Required params per operation type
REQUIRED_PARAMS: Dict[DexOpType, tuple] = {
    DexOpType.INITIALIZE: (
        "fee_numerator", "fee_denominator", "protocol_fee_percentage", "fee_collector",
    ),
    DexOpType.CREATE_POOL: ("token_a", "token_b"),
    DexOpType.DEPOSIT_LIQUIDITY: ("pool_id", "token_a_amount", "token_b_amount"),
    DexOpType.WITHDRAW_LIQUIDITY: ("pool_id", "lp_amount"),
    DexOpType.SWAP: (
        "pool_id", "input_amount", "minimum_output_amount",
        "source_asset", "destination_asset",
    ),
    DexOpType.COLLECT_FEES: ("pool_id",),
}

# Parameters naming a token, pool or account
IDENTIFIER_PARAMS = frozenset({
    "fee_collector", "token_a", "token_b", "pool_id", "source_asset", "destination_asset",
})


# ---------------------------------------------------------------------------
# Exchange Transaction
# ---------------------------------------------------------------------------

@dataclass
class DexTransaction:
    """
    Envelope for a single exchange operation.

    Fields other than timestamp and the execution results change the tx hash.
    """
    op_type: DexOpType
    sender: str                         # acting identity (owner / caller)
    nonce: int                          # per-sender monotonic nonce
    params: Dict[str, Any]              # operation-specific parameters
    timestamp: float = 0.0

    # --- Filled in after execution ---
    success: bool = False
    result: Dict[str, Any] = field(default_factory=dict)
    error: str = ""

    def __post_init__(self):
        if self.timestamp == 0.0:
            self.timestamp = time.time()

    # -- Hashing ------------------------------------------------------------

    def tx_hash(self) -> str:
        raw = self._canonical_bytes()
        return hashlib.blake2b(raw, digest_size=32).hexdigest()

    def _canonical_bytes(self) -> bytes:
        params_json = json.dumps(self.params, sort_keys=True, default=str).encode("utf-8")
        parts = [
            int(self.op_type).to_bytes(1, "big"),
            self.sender.encode("utf-8"),
            self.nonce.to_bytes(8, "big"),
            params_json,
        ]
        return b"".join(parts)

    # -- Serialization ------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "op_type": int(self.op_type),
            "sender": self.sender,
            "nonce": self.nonce,
            "params": self.params,
            "timestamp": self.timestamp,
            "tx_hash": self.tx_hash(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> DexTransaction:
        return cls(
            op_type=DexOpType(data["op_type"]),
            sender=data["sender"],
            nonce=data["nonce"],
            params=data["params"],
            timestamp=data.get("timestamp", 0.0),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, default=str)

    @classmethod
    def from_json(cls, raw: str) -> DexTransaction:
        return cls.from_dict(json.loads(raw))

    # -- Validation ---------------------------------------------------------

    def validate_basic(self) -> bool:
        """
        Structural validation (no state access needed).

        Raises:
            ValueError: with specific reason
        """
        if not self.sender:
            raise ValueError("Missing sender")
        if isinstance(self.nonce, bool) or not isinstance(self.nonce, int) or self.nonce < 0:
            raise ValueError("Nonce must be a non-negative integer")
        if self.op_type not in DexOpType.__members__.values():
            raise ValueError(f"Unknown operation type: {self.op_type}")
        if not isinstance(self.params, dict):
            raise ValueError("Params must be a mapping")

        self._validate_params()
        return True

    def _validate_params(self) -> None:
        op = DexOpType(self.op_type)
        for key in REQUIRED_PARAMS[op]:
            if key not in self.params:
                raise ValueError(f"{op.name} missing param: {key}")
            if key in IDENTIFIER_PARAMS and not isinstance(self.params[key], str):
                raise ValueError(f"{op.name} param {key} must be a string")

    def __repr__(self) -> str:
        return (f"DexTransaction(op={DexOpType(self.op_type).name}, sender={self.sender[:16]}, "
                f"nonce={self.nonce}, hash={self.tx_hash()[:12]}...)")
