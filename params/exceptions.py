"""
BTC Staking - Parameter Exceptions

This module defines exceptions raised while validating staking parameters
and per-request values checked against them.
"""


class StakingParamsError(Exception):
    """Base exception for staking parameter errors."""
    pass


class InvalidStakingParametersError(StakingParamsError):
    """
    Raised when a staking parameter invariant is violated.

    The message names the violated invariant. Not a ValueError subclass, so
    pydantic validators pass it through unwrapped.
    """
    pass


class AmountOutOfRangeError(StakingParamsError):
    """Raised when a staking amount falls outside the configured bounds."""

    def __init__(self, amount: int, min_amount: int, max_amount: int, message: str = None):
        self.amount = amount
        self.min_amount = min_amount
        self.max_amount = max_amount
        if message is None:
            message = (
                f"Staking amount is out of range: {amount} satoshis not within "
                f"[{min_amount}, {max_amount}]"
            )
        super().__init__(message)
