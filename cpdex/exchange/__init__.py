"""
CPDEX Exchange Engine

Constant-product automated market maker over an external token ledger.

Components:
  - Registry (admin, fee schedule, fee collector, pool counter)
  - Pool records with derived vaults and LP asset
  - Issuance / Redemption calculators
  - Swap Pricer (exact input, fee split)
  - Fee Collector (admin-gated protocol fee withdrawal)
  - Token Ledger interface and in-memory implementation
  - Transaction envelope and state manager
"""

from .registry import (
    Registry,
    validate_fee_schedule,
)
from .pool import (
    Pool,
    PoolAuthority,
    SIDE_A,
    SIDE_B,
    find_pool_address,
)
from .liquidity import (
    calculate_initial_liquidity,
    calculate_proportional_liquidity,
    calculate_lp_to_mint,
    calculate_withdrawal_amounts,
)
from .swap import (
    SwapQuote,
    calculate_fee_breakdown,
    calculate_output_amount,
    quote_swap,
)
from .fees import FeeCollector
from .ledger import (
    AssetInfo,
    InMemoryLedger,
    TokenLedger,
)
from .engine import DexEngine
from .transactions import (
    DexOpType,
    DexTransaction,
)
from .state_manager import (
    DexExecResult,
    DexStateManager,
)

__all__ = [
    # Registry
    "Registry", "validate_fee_schedule",
    # Pool
    "Pool", "PoolAuthority", "SIDE_A", "SIDE_B", "find_pool_address",
    # Calculators
    "calculate_initial_liquidity", "calculate_proportional_liquidity",
    "calculate_lp_to_mint", "calculate_withdrawal_amounts",
    "SwapQuote", "calculate_fee_breakdown", "calculate_output_amount", "quote_swap",
    # Fees
    "FeeCollector",
    # Ledger
    "AssetInfo", "InMemoryLedger", "TokenLedger",
    # Engine
    "DexEngine",
    # Transactions / state manager
    "DexOpType", "DexTransaction", "DexExecResult", "DexStateManager",
]
