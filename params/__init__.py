"""
BTC Staking - Staking Parameters Module

Parameter models, protocol constants and the ordered parameter validator.
"""

from .constants import BTC_DUST_SAT, MIN_UNBONDING_OUTPUT_VALUE
from .exceptions import (
    StakingParamsError,
    InvalidStakingParametersError,
    AmountOutOfRangeError,
)
from .schema import SlashingParams, StakingParams
from .validation import validate_staking_amount, validate_staking_params

__all__ = [
    'BTC_DUST_SAT',
    'MIN_UNBONDING_OUTPUT_VALUE',
    'StakingParamsError',
    'InvalidStakingParametersError',
    'AmountOutOfRangeError',
    'SlashingParams',
    'StakingParams',
    'validate_staking_amount',
    'validate_staking_params',
]
