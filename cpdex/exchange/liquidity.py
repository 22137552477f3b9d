"""
CPDEX Liquidity Calculators

Issuance (deposit -> LP shares minted) and redemption (LP shares burned ->
reserve amounts returned). Pure functions over integers: they read no state
and mutate nothing, the engine applies their results.

Issuance:
  - First deposit mints floor(sqrt(a * b)).
  - Later deposits mint min(a * L / Ra, b * L / Rb); a deposit off the
    current price ratio is credited only at its weaker side.

Redemption:
  - share = floor(lp * 10^18 / L), then each reserve is scaled by the share.
"""

from __future__ import annotations

from typing import Tuple

from ..constants import U64_MAX, WITHDRAW_SCALE
from ..exceptions import LiquidityError
from .arithmetic import checked_div, checked_mul, isqrt_floor, to_u64


def calculate_initial_liquidity(token_a_amount: int, token_b_amount: int) -> int:
    """LP shares for the first deposit into an empty pool."""
    product = checked_mul(token_a_amount, token_b_amount)
    lp_tokens = to_u64(isqrt_floor(product))
    if lp_tokens == 0:
        raise LiquidityError("Insufficient liquidity: initial deposit mints zero LP tokens")
    return lp_tokens


def calculate_proportional_liquidity(
    token_a_amount: int,
    token_b_amount: int,
    reserve_a: int,
    reserve_b: int,
    total_liquidity: int,
) -> int:
    """LP shares for a deposit into a pool that already has liquidity."""
    lp_by_a = to_u64(checked_div(checked_mul(token_a_amount, total_liquidity), reserve_a))
    lp_by_b = to_u64(checked_div(checked_mul(token_b_amount, total_liquidity), reserve_b))
    lp_tokens = min(lp_by_a, lp_by_b)
    if lp_tokens == 0:
        raise LiquidityError("Insufficient liquidity: deposit mints zero LP tokens")
    return lp_tokens


def calculate_lp_to_mint(
    token_a_amount: int,
    token_b_amount: int,
    reserve_a: int,
    reserve_b: int,
    total_liquidity: int,
) -> int:
    """Dispatch to the initial or proportional formula."""
    if total_liquidity == 0:
        return calculate_initial_liquidity(token_a_amount, token_b_amount)
    return calculate_proportional_liquidity(
        token_a_amount, token_b_amount, reserve_a, reserve_b, total_liquidity,
    )


def calculate_withdrawal_amounts(
    lp_amount: int,
    reserve_a: int,
    reserve_b: int,
    total_liquidity: int,
) -> Tuple[int, int]:
    """
    Reserve amounts returned for burning lp_amount shares.

    Raises:
        LiquidityError: lp_amount exceeds total_liquidity, the pool is empty,
            or either output rounds to zero (dust withdrawal)
    """
    if lp_amount > total_liquidity:
        raise LiquidityError(
            f"Insufficient liquidity: {lp_amount} LP exceeds total {total_liquidity}"
        )
    share = checked_div(checked_mul(lp_amount, WITHDRAW_SCALE), total_liquidity)
    token_a_amount = to_u64(checked_div(checked_mul(share, reserve_a), WITHDRAW_SCALE))
    token_b_amount = to_u64(checked_div(checked_mul(share, reserve_b), WITHDRAW_SCALE))
    if token_a_amount == 0 or token_b_amount == 0:
        raise LiquidityError("Insufficient liquidity: withdrawal rounds to zero")
    return token_a_amount, token_b_amount


def checked_liquidity_add(total_liquidity: int, lp_minted: int) -> int:
    total = total_liquidity + lp_minted
    if total > U64_MAX:
        raise LiquidityError("total_liquidity overflow")
    return total
