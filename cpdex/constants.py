"""
CPDEX Constants

This module consolidates the protocol constants and environment configuration
used throughout the codebase. Constants are organized by category for easy
reference and maintenance.
"""
import ast
from dotenv import dotenv_values

# =============================================================================
# ENVIRONMENT CONFIGURATION
# =============================================================================
# Load environment variables once at module import
_config = dotenv_values(".env")

LOGGER_DEFAULTS = {
    'LOG_LEVEL':                       'INFO',
    'LOG_FORMAT':                      '%(asctime)s - %(levelname)s - %(name)s - %(message)s',
    'LOG_DATE_FORMAT':                 '%Y-%m-%dT%H:%M:%S',
    'LOG_CONSOLE_HIGHLIGHTING':        'True',
}

LOG_MAX_FILE_SIZE = 10 * 1024 * 1024 # 10MB
LOG_BACKUP_COUNT = 5


# WARNING: THE VALUES BELOW DEFINE THE POOL ACCOUNTING RULES. CHANGING THEM ALTERS EVERY
# MINT, BURN AND SWAP AMOUNT AND MAKES PERSISTED STATE INCOMPATIBLE WITH THIS BUILD.

# ==================================================================================
# INTEGER DOMAIN
# ==================================================================================
U64_MAX = 2**64 - 1
U128_MAX = 2**128 - 1


# ==================================================================================
# POOL ACCOUNTING
# ==================================================================================
# Fixed-point scale used when converting an LP amount into a share of reserves
WITHDRAW_SCALE = 10**18

# protocol_fee_percentage is expressed out of this base
PROTOCOL_FEE_BASE = 100

LP_TOKEN_DECIMALS = 6


# ==================================================================================
# DEFAULT FEE SCHEDULE
# ==================================================================================
DEFAULT_FEE_NUMERATOR = 3
DEFAULT_FEE_DENOMINATOR = 1000
DEFAULT_PROTOCOL_FEE_PERCENTAGE = 30


# ==================================================================================
# ADDRESS DERIVATION
# ==================================================================================
POOL_SEED = b"liquidity_pool"
VAULT_SEED = b"vault"
LP_MINT_SEED = b"lp_mint"
MAX_BUMP = 255
ADDRESS_DIGEST_SIZE = 16


# ==================================================================================
# CONFIGURATION WRAPPERS
# ==================================================================================
class ConfigString(str):
    """
    String subclass that stores a default value.
    """
    def __new__(cls, value, default):
        obj = str.__new__(cls, value)
        obj._default = default
        return obj

    def default(self):
        return self._default

class ConfigBool(int):
    """
    Int subclass acting as a boolean that stores a default value.
    """
    def __new__(cls, value, default):
        obj = int.__new__(cls, bool(value))
        obj._default = default
        return obj

    def default(self):
        return self._default

    def __repr__(self):
        return str(bool(self))

    def __str__(self):
        return str(bool(self))

    def __eq__(self, other):
        return bool(self) == other

    __hash__ = int.__hash__


# ==================================================================================
# DYNAMIC CONFIGURATION LOADING
# ==================================================================================
namespace = globals()

def parse_bool(v):
    """
    Convert "True"/"False" (any casing, with surrounding whitespace) into bool.
    Avoids exceptions by only calling ast.literal_eval for known literals.
    """
    if not isinstance(v, str):
        return v
    s = v.strip()
    if not s:
        return v
    if s.casefold() in {"true", "false"}:
        # ast.literal_eval expects "True"/"False"
        return ast.literal_eval(s.title())
    return v

for key, default_raw in LOGGER_DEFAULTS.items():
    # dotenv_values returns strings or None. None is treated as missing.
    raw = _config.get(key)
    value_raw = default_raw if raw is None else raw

    value = parse_bool(value_raw)
    default_val = parse_bool(default_raw)

    if isinstance(value, bool):
        namespace[key] = ConfigBool(value, default_val)
    else:
        namespace[key] = ConfigString(value_raw, default_val)
