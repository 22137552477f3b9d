"""
CPDEX Exceptions

Custom exception classes for the constant-product exchange.
"""


class DexException(Exception):
    """Base exception for CPDEX."""
    pass


class AuthorizationError(DexException):
    """Caller lacks the required administrator identity."""
    pass


class ConfigurationError(DexException):
    """Fee schedule or configuration value out of range."""
    pass


class LiquidityError(DexException):
    """
    Zero-reserve division, zero-output rounding, arithmetic overflow or
    underflow, or insufficient LP balance / total liquidity.
    """
    pass


class SlippageError(DexException):
    """Realized swap output below the caller's minimum."""
    pass


class FeeCollectionError(DexException):
    """No protocol fees to collect."""
    pass


class InvalidTokenError(DexException):
    """Asset identifier does not belong to the pool, or a pair is degenerate."""
    pass


class PoolExistsError(DexException):
    """A pool already exists for this ordered token pair."""
    pass


class PoolNotFoundError(DexException):
    """No pool with the given id."""
    pass


class NotInitializedError(DexException):
    """The exchange registry has not been initialized."""
    pass


class LedgerError(DexException):
    """Token ledger rejected an operation."""
    pass


class InsufficientFundsError(LedgerError):
    """Account balance too low for a debit or burn."""
    pass
