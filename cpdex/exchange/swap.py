"""
CPDEX Swap Pricer  (constant product, exact input)

    total_fee     = floor(input * fee_numerator / fee_denominator)
    protocol_fee  = floor(total_fee * protocol_fee_percentage / 100)
    input_net     = input - total_fee
    output        = floor(R_out * input_net / (R_in + input_net))

The whole input, fee included, enters the source reserve; only the protocol
part of the fee is earmarked for later collection. The LP part stays in the
reserve, so R_in * R_out grows on every swap that charges a fee.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Tuple

from ..constants import PROTOCOL_FEE_BASE
from ..exceptions import LiquidityError, SlippageError
from .arithmetic import checked_add, checked_div, checked_mul, checked_sub, to_u64

ZERO = Decimal("0")


@dataclass(frozen=True)
class SwapQuote:
    """Every amount a swap would move, computed without touching state."""
    input_amount: int
    total_fee: int
    protocol_fee: int
    input_net: int
    output_amount: int
    input_reserve: int
    output_reserve: int

    @property
    def lp_fee(self) -> int:
        """Fee share retained in the reserves for liquidity providers."""
        return self.total_fee - self.protocol_fee

    @property
    def price_impact(self) -> Decimal:
        """
        Relative shortfall of the execution price against the spot price.

        Returns:
            Price impact as a fraction (e.g. 0.01 = 1% impact), fees included
        """
        if self.input_amount == 0 or self.input_reserve == 0:
            return ZERO
        spot = Decimal(self.output_reserve) / Decimal(self.input_reserve)
        execution = Decimal(self.output_amount) / Decimal(self.input_amount)
        impact = (spot - execution) / spot
        return impact.quantize(Decimal("0.00000001"), rounding=ROUND_HALF_UP)


def calculate_fee_breakdown(
    input_amount: int,
    fee_numerator: int,
    fee_denominator: int,
    protocol_fee_percentage: int,
) -> Tuple[int, int]:
    """Return (total_fee, protocol_fee) for an input amount."""
    total_fee = to_u64(checked_div(checked_mul(input_amount, fee_numerator), fee_denominator))
    protocol_fee = to_u64(
        checked_div(checked_mul(total_fee, protocol_fee_percentage), PROTOCOL_FEE_BASE)
    )
    return total_fee, protocol_fee


def calculate_output_amount(input_net: int, input_reserve: int, output_reserve: int) -> int:
    """
    Constant-product output for a fee-free input.

    Raises:
        LiquidityError: empty reserve, zero output, or output above the reserve
    """
    if input_reserve == 0 or output_reserve == 0:
        raise LiquidityError("Insufficient liquidity: pool reserves are empty")
    numerator = checked_mul(output_reserve, input_net)
    denominator = checked_add(input_reserve, input_net)
    output_amount = to_u64(checked_div(numerator, denominator))
    if output_amount == 0:
        raise LiquidityError("Insufficient liquidity: swap output rounds to zero")
    if output_amount > output_reserve:
        raise LiquidityError("Insufficient liquidity: output exceeds reserve")
    return output_amount


def quote_swap(
    input_amount: int,
    input_reserve: int,
    output_reserve: int,
    fee_numerator: int,
    fee_denominator: int,
    protocol_fee_percentage: int,
) -> SwapQuote:
    """Price an exact-input swap against the given reserves."""
    total_fee, protocol_fee = calculate_fee_breakdown(
        input_amount, fee_numerator, fee_denominator, protocol_fee_percentage,
    )
    input_net = checked_sub(input_amount, total_fee)
    output_amount = calculate_output_amount(input_net, input_reserve, output_reserve)
    return SwapQuote(
        input_amount=input_amount,
        total_fee=total_fee,
        protocol_fee=protocol_fee,
        input_net=input_net,
        output_amount=output_amount,
        input_reserve=input_reserve,
        output_reserve=output_reserve,
    )


def check_slippage(output_amount: int, minimum_output_amount: int) -> None:
    if output_amount < minimum_output_amount:
        raise SlippageError(
            f"Slippage tolerance exceeded: got {output_amount}, minimum {minimum_output_amount}"
        )
