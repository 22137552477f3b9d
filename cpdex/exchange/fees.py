"""
CPDEX Protocol Fee Collector

Drains a pool's accrued protocol fees to the registry's fee collector.

Both accumulators are zeroed before any transfer is issued; a re-entrant call
during a transfer finds nothing left to pay.
If a transfer fails, the engine's atomic block restores the accumulators
together with the ledger.
"""

from __future__ import annotations

import logging
from typing import Tuple

from ..exceptions import AuthorizationError, FeeCollectionError
from .ledger import TokenLedger
from .pool import Pool
from .registry import Registry

logger = logging.getLogger(__name__)


class FeeCollector:
    """Admin-gated protocol fee withdrawal."""

    def __init__(self, ledger: TokenLedger, strict: bool = False) -> None:
        self.ledger = ledger
        # strict: raise FeeCollectionError instead of returning (0, 0)
        self.strict = strict

    def collect(self, pool: Pool, registry: Registry, caller: str) -> Tuple[int, int]:
        """
        Transfer accrued protocol fees to ``registry.fee_collector``.

        Returns:
            (token_a_fee_amount, token_b_fee_amount)

        Raises:
            AuthorizationError: caller is not the registry admin
            FeeCollectionError: nothing to collect and strict mode is on
        """
        if not registry.is_admin(caller):
            raise AuthorizationError("Only the admin may collect protocol fees")

        token_a_fee_amount = pool.protocol_fees_token_a
        token_b_fee_amount = pool.protocol_fees_token_b
        if self.strict and token_a_fee_amount == 0 and token_b_fee_amount == 0:
            raise FeeCollectionError(f"No fees to collect in pool {pool.pair}")

        pool.protocol_fees_token_a = 0
        pool.protocol_fees_token_b = 0

        authority = pool.authority.address
        collector = registry.fee_collector
        if token_a_fee_amount > 0:
            self.ledger.ensure_account(collector, pool.token_a_id)
            self.ledger.transfer(
                pool.vault_a_id, collector, pool.token_a_id, token_a_fee_amount, authority,
            )
        if token_b_fee_amount > 0:
            self.ledger.ensure_account(collector, pool.token_b_id)
            self.ledger.transfer(
                pool.vault_b_id, collector, pool.token_b_id, token_b_fee_amount, authority,
            )

        logger.info(
            "Collected protocol fees: %d token A, %d token B",
            token_a_fee_amount, token_b_fee_amount,
        )
        return token_a_fee_amount, token_b_fee_amount
