"""
CPDEX Pool State

A pool holds two reserve assets in vaults it exclusively controls, plus the
derivative LP-share asset it mints and burns. The fee schedule is copied from
the registry when the pool is created and frozen thereafter.

Reserves are never cached on the record: they are the live balances of the
two vaults on the token ledger, which is what every calculator reads.

Identity:
  - The pool address is derived from ("liquidity_pool", token_a, token_b)
  - Vault and LP asset ids are derived from the pool address
  - Deterministic blake2b derivation, no uuid4
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Any, Dict, Tuple

from ..constants import (
    ADDRESS_DIGEST_SIZE,
    LP_MINT_SEED,
    MAX_BUMP,
    POOL_SEED,
    VAULT_SEED,
)
from ..exceptions import InvalidTokenError, LiquidityError
from .registry import Registry


# ---------------------------------------------------------------------------
# Address derivation
# ---------------------------------------------------------------------------

def _digest(*parts: bytes) -> bytes:
    hasher = hashlib.blake2b(digest_size=ADDRESS_DIGEST_SIZE)
    for part in parts:
        hasher.update(len(part).to_bytes(2, "big"))
        hasher.update(part)
    return hasher.digest()


def find_pool_address(token_a: str, token_b: str) -> Tuple[str, int]:
    """
    Derive the pool address and its authority bump for an ordered pair.

    Candidates are tried from bump 255 downwards; a candidate whose digest has
    the high bit set is rejected, so roughly half the bumps are skipped, as in
    the host ledger's program-address search.
    """
    seeds = (POOL_SEED, token_a.encode("utf-8"), token_b.encode("utf-8"))
    for bump in range(MAX_BUMP, -1, -1):
        digest = _digest(*seeds, bytes([bump]))
        if digest[0] < 0x80:
            return digest.hex(), bump
    raise InvalidTokenError(f"No valid pool address for {token_a}/{token_b}")


@dataclass(frozen=True)
class PoolAuthority:
    """
    Opaque signing capability held by a pool.

    The token ledger only lets this authority debit the pool's vaults and
    mint the pool's LP asset. Any other authorization mechanism can stand
    behind the same attributes.
    """
    address: str
    bump: int

    @classmethod
    def derive(cls, token_a: str, token_b: str) -> "PoolAuthority":
        address, bump = find_pool_address(token_a, token_b)
        return cls(address=address, bump=bump)

    def vault_id(self, side: str) -> str:
        return _digest(VAULT_SEED, self.address.encode("utf-8"), side.encode("utf-8")).hex()

    def lp_asset_id(self) -> str:
        return _digest(LP_MINT_SEED, self.address.encode("utf-8")).hex()


# ---------------------------------------------------------------------------
# Pool record
# ---------------------------------------------------------------------------

SIDE_A = "a"
SIDE_B = "b"


@dataclass
class Pool:
    """Persisted per-pair record."""
    pool_id: str
    token_a_id: str
    token_b_id: str
    vault_a_id: str
    vault_b_id: str
    lp_asset_id: str
    authority_bump: int
    fee_numerator: int
    fee_denominator: int
    protocol_fee_percentage: int
    total_liquidity: int = 0
    protocol_fees_token_a: int = 0
    protocol_fees_token_b: int = 0

    @classmethod
    def from_registry(cls, token_a: str, token_b: str, registry: Registry) -> "Pool":
        """Create an empty pool that freezes the registry's current fee schedule."""
        if not token_a or not token_b:
            raise InvalidTokenError("Token ids must be non-empty")
        if token_a == token_b:
            raise InvalidTokenError(f"Pool tokens must differ (got {token_a} twice)")

        authority = PoolAuthority.derive(token_a, token_b)
        return cls(
            pool_id=authority.address,
            token_a_id=token_a,
            token_b_id=token_b,
            vault_a_id=authority.vault_id(SIDE_A),
            vault_b_id=authority.vault_id(SIDE_B),
            lp_asset_id=authority.lp_asset_id(),
            authority_bump=authority.bump,
            fee_numerator=registry.fee_numerator,
            fee_denominator=registry.fee_denominator,
            protocol_fee_percentage=registry.protocol_fee_percentage,
        )

    @property
    def authority(self) -> PoolAuthority:
        return PoolAuthority(address=self.pool_id, bump=self.authority_bump)

    @property
    def pair(self) -> str:
        return f"{self.token_a_id}:{self.token_b_id}"

    def side_of(self, asset: str) -> str:
        """Return SIDE_A or SIDE_B for one of the pool's two assets."""
        if asset == self.token_a_id:
            return SIDE_A
        if asset == self.token_b_id:
            return SIDE_B
        raise InvalidTokenError(f"Asset {asset} is not part of pool {self.pair}")

    def vault_for(self, asset: str) -> str:
        return self.vault_a_id if self.side_of(asset) == SIDE_A else self.vault_b_id

    def accrue_protocol_fee(self, side: str, amount: int, limit: int) -> None:
        """Add a protocol fee to the accumulator of the given side."""
        if side == SIDE_A:
            new_total = self.protocol_fees_token_a + amount
        else:
            new_total = self.protocol_fees_token_b + amount
        if new_total > limit:
            raise LiquidityError("Protocol fee accumulator overflow")
        if side == SIDE_A:
            self.protocol_fees_token_a = new_total
        else:
            self.protocol_fees_token_b = new_total

    # -- Serialisation ------------------------------------------------------

    _FIELDS = (
        "pool_id", "token_a_id", "token_b_id", "vault_a_id", "vault_b_id",
        "lp_asset_id", "authority_bump", "total_liquidity", "fee_numerator",
        "fee_denominator", "protocol_fee_percentage",
        "protocol_fees_token_a", "protocol_fees_token_b",
    )

    def to_dict(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in self._FIELDS}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Pool":
        return cls(**{name: data[name] for name in cls._FIELDS})

    def restore(self, snapshot: Dict[str, Any]) -> None:
        """Overwrite every field from a to_dict() snapshot."""
        for name in self._FIELDS:
            setattr(self, name, snapshot[name])
