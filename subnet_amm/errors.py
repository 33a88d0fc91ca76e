"""
Error taxonomy for the subnet AMM engine.

Every public operation is all-or-nothing: whichever of these is raised,
the pool state is left exactly as it was before the call.
"""


class PoolError(Exception):
    """Base class for all pool errors."""
    pass


class ValidationError(PoolError):
    """Raised when an input fails validation (zero amount, zero address, ...)."""
    pass


class AuthorizationError(PoolError):
    """Raised when a controller-only operation is called without the controller capability."""
    pass


class LiquidityError(PoolError):
    """Raised when reserves cannot support the requested operation."""
    pass


class SlippageError(LiquidityError):
    """Raised when a swap would return less than the caller's minimum."""

    def __init__(self, amount_out: int, min_amount_out: int):
        self.amount_out = amount_out
        self.min_amount_out = min_amount_out
        super().__init__(f"Slippage: got {amount_out}, expected at least {min_amount_out}")


class ReentrancyError(PoolError):
    """Raised when a locked entry point is re-entered."""
    pass


class TransferError(PoolError):
    """Raised when a token transfer fails."""
    pass


class ArithmeticOverflowError(PoolError):
    """Raised when a checked fixed-point operation leaves the uint256 range."""
    pass
