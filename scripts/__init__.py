"""
BTC Staking - Script Construction Module

Opcodes and minimal-push script building, Taproot script trees and outputs,
and the staking script builder.
"""

from .exceptions import ScriptError, ScriptBuildError, InvalidScriptError
from .staking_scripts import (
    COVENANT_KEY_ORDERING,
    STAKING_OUTPUT_TREE_LAYOUT,
    UNBONDING_OUTPUT_TREE_LAYOUT,
    SLASHING_CHANGE_TREE_LAYOUT,
    StakingScriptData,
    StakingScripts,
)
from .taproot import (
    TapBranch,
    TapLeaf,
    TaprootOutput,
    TaprootOutputBuilder,
    CoincurveTaprootOutputBuilder,
)

__all__ = [
    'ScriptError',
    'ScriptBuildError',
    'InvalidScriptError',
    'COVENANT_KEY_ORDERING',
    'STAKING_OUTPUT_TREE_LAYOUT',
    'UNBONDING_OUTPUT_TREE_LAYOUT',
    'SLASHING_CHANGE_TREE_LAYOUT',
    'StakingScriptData',
    'StakingScripts',
    'TapBranch',
    'TapLeaf',
    'TaprootOutput',
    'TaprootOutputBuilder',
    'CoincurveTaprootOutputBuilder',
]
