"""
BTC Staking - Staking Parameter Validation

Enforces the joint invariants of the protocol parameters before any script or
transaction work. Checks run in a fixed order and stop at the first violation.

The unbonding-time-versus-timelock check depends on the timelock chosen for a
request, so callers re-run validation with that timelock for every request.
"""

import logging
from typing import Optional

from crypto.keys import is_valid_no_coord_public_key
from .constants import MIN_UNBONDING_OUTPUT_VALUE
from .exceptions import AmountOutOfRangeError, InvalidStakingParametersError


logger = logging.getLogger(__name__)


def _validate_covenant_committee(params) -> None:
    keys = params.covenant_no_coord_pks
    if not keys:
        raise InvalidStakingParametersError("Could not find any covenant public keys")

    if params.covenant_quorum <= 0:
        raise InvalidStakingParametersError("Covenant quorum must be greater than 0")
    if params.covenant_quorum > len(keys):
        raise InvalidStakingParametersError(
            f"Covenant quorum ({params.covenant_quorum}) exceeds the number of "
            f"covenant public keys ({len(keys)})"
        )

    for key in keys:
        if not is_valid_no_coord_public_key(key):
            raise InvalidStakingParametersError(
                f"Covenant public key should contain no coordinate: {key}"
            )
    if len({key.lower() for key in keys}) != len(keys):
        raise InvalidStakingParametersError("Covenant public keys must be unique")


def _validate_amounts(params) -> None:
    if params.unbonding_fee_sat <= 0:
        raise InvalidStakingParametersError("Unbonding fee must be greater than 0")

    if params.min_staking_amount_sat <= params.unbonding_fee_sat + MIN_UNBONDING_OUTPUT_VALUE:
        raise InvalidStakingParametersError(
            f"Minimum staking amount must be greater than unbonding fee plus "
            f"{MIN_UNBONDING_OUTPUT_VALUE}"
        )

    if params.max_staking_amount_sat < params.min_staking_amount_sat:
        raise InvalidStakingParametersError(
            "Maximum staking amount must be greater or equal to minimum staking amount"
        )


def _validate_times(params) -> None:
    if params.min_staking_time_blocks <= 0:
        raise InvalidStakingParametersError("Minimum staking time must be greater than 0")

    if params.max_staking_time_blocks < params.min_staking_time_blocks:
        raise InvalidStakingParametersError(
            "Maximum staking time must be greater or equal to minimum staking time"
        )

    if params.unbonding_time <= 0:
        raise InvalidStakingParametersError("Unbonding time must be greater than 0")


def _validate_timelock(params, timelock: int) -> None:
    if timelock < params.min_staking_time_blocks or timelock > params.max_staking_time_blocks:
        raise InvalidStakingParametersError("Staking transaction timelock is out of range")

    if params.unbonding_time >= timelock:
        raise InvalidStakingParametersError(
            f"Unbonding time ({params.unbonding_time}) must be less than the "
            f"staking timelock ({timelock})"
        )


def _validate_slashing(slashing) -> None:
    if not 0 < slashing.slashing_rate < 1:
        raise InvalidStakingParametersError("Slashing rate must be greater than 0 and less than 1")

    if not slashing.slashing_pk_script_hex:
        raise InvalidStakingParametersError("Slashing public key script is missing")
    try:
        bytes.fromhex(slashing.slashing_pk_script_hex)
    except ValueError:
        raise InvalidStakingParametersError("Slashing public key script must be hex encoded")

    if slashing.min_slashing_tx_fee_sat <= 0:
        raise InvalidStakingParametersError(
            "Minimum slashing transaction fee must be greater than 0"
        )


def validate_staking_params(params, timelock: Optional[int] = None):
    """
    Validate staking parameters, optionally against a request timelock.

    Args:
        params: StakingParams (or any object with the same attributes)
        timelock: Staking timelock chosen for a request, in blocks

    Returns:
        The same params, unchanged

    Raises:
        InvalidStakingParametersError: Naming the first violated invariant
    """
    _validate_covenant_committee(params)
    _validate_amounts(params)
    _validate_times(params)
    if timelock is not None:
        _validate_timelock(params, timelock)
    if params.slashing is not None:
        _validate_slashing(params.slashing)

    logger.debug(f"Validated staking params (timelock={timelock})")
    return params


def validate_staking_amount(amount: int, params) -> int:
    """
    Check a staking amount against the parameter bounds.

    Raises:
        AmountOutOfRangeError: If amount is outside [min, max]
    """
    if amount < params.min_staking_amount_sat or amount > params.max_staking_amount_sat:
        raise AmountOutOfRangeError(
            amount, params.min_staking_amount_sat, params.max_staking_amount_sat
        )
    return amount
