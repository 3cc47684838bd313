"""
BTC Staking - Output Address Derivation

Derives the Taproot outputs committed to by a staking script set, independent
of any transaction. All outputs use the unspendable NUMS point as internal
key so they can only be spent through a script leaf.

Two failures are kept apart but share one error type: the builder returning
no usable output ("Failed to build staking output") and the builder raising,
in which case its message is carried over unmodified.
"""

import logging
from typing import Optional

from crypto.exceptions import AddressDerivationError
from crypto.keys import NUMS_INTERNAL_KEY
from scripts.staking_scripts import StakingScripts
from scripts.taproot import (
    DEFAULT_OUTPUT_BUILDER,
    ScriptTree,
    TaprootOutput,
    TaprootOutputBuilder,
)


logger = logging.getLogger(__name__)


def _build_output(script_tree: ScriptTree, network: str,
                  builder: Optional[TaprootOutputBuilder]) -> TaprootOutput:
    builder = builder or DEFAULT_OUTPUT_BUILDER
    try:
        output = builder.build(NUMS_INTERNAL_KEY, script_tree, network)
    except Exception as e:
        raise AddressDerivationError(str(e)) from e

    if output is None or not output.output_script or not output.address:
        raise AddressDerivationError("Failed to build staking output")
    return output


def derive_staking_output_info(scripts: StakingScripts, network: str,
                               builder: Optional[TaprootOutputBuilder] = None) -> TaprootOutput:
    """
    Build the Taproot staking output of a script set.

    Args:
        scripts: Staking script set
        network: Network name
        builder: Taproot output builder (coincurve-backed default)

    Returns:
        TaprootOutput over [slashing, [unbonding, timelock]]

    Raises:
        AddressDerivationError: If the output cannot be built
    """
    return _build_output(scripts.staking_tree(), network, builder)


def derive_staking_output_address(scripts: StakingScripts, network: str,
                                  builder: Optional[TaprootOutputBuilder] = None) -> str:
    """
    Derive the staking output address for display or verification.

    Raises:
        AddressDerivationError: If the output or its address cannot be built
    """
    output = derive_staking_output_info(scripts, network, builder)
    logger.debug(f"Derived staking output address {output.address}")
    return output.address


def derive_unbonding_output_info(scripts: StakingScripts, network: str,
                                 builder: Optional[TaprootOutputBuilder] = None) -> TaprootOutput:
    """Build the Taproot output of an unbonding transaction."""
    return _build_output(scripts.unbonding_tree(), network, builder)


def derive_slashing_change_output_info(scripts: StakingScripts, network: str,
                                       builder: Optional[TaprootOutputBuilder] = None) -> TaprootOutput:
    """Build the Taproot output returning the unslashed funds to the staker."""
    return _build_output(scripts.slashing_change_tree(), network, builder)
