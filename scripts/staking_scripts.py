"""
BTC Staking - Staking Script Construction

Builds the tapscript leaves guarding a staking output from the staker key,
the finality provider keys and the covenant committee:

- timelock:            <staker> CHECKSIGVERIFY <T> CHECKSEQUENCEVERIFY
- unbonding:           <staker> CHECKSIGVERIFY <covenant M-of-N>
- slashing:            <staker> CHECKSIGVERIFY <fp 1-of-K, verify> <covenant M-of-N>
- unbonding timelock:  <staker> CHECKSIGVERIFY <U> CHECKSEQUENCEVERIFY

Key order inside multi-key scripts and the leaf layout of every tree are
protocol constants: changing either changes every derived address.
"""

import logging
from dataclasses import dataclass
from typing import Sequence, Tuple, Union

from crypto.keys import XOnlyPublicKey
from crypto.exceptions import InvalidPublicKeyError
from .exceptions import ScriptBuildError
from .opcodes import ScriptBuilder, ScriptOpcode
from .taproot import ScriptTree, build_script_tree


logger = logging.getLogger(__name__)

# Keys inside a multi-key script are sorted by their raw 32 bytes.
COVENANT_KEY_ORDERING = "lexicographic"

# Leaf layouts, as nested (left, right) pairs of script roles.
STAKING_OUTPUT_TREE_LAYOUT = ("slashing", ("unbonding", "timelock"))
UNBONDING_OUTPUT_TREE_LAYOUT = ("slashing", "unbonding_timelock")
SLASHING_CHANGE_TREE_LAYOUT = "unbonding_timelock"

# nSequence relative block locks are 16 bits wide
MAX_RELATIVE_TIMELOCK = 65535

KeyLike = Union[XOnlyPublicKey, bytes, str]


@dataclass(frozen=True)
class StakingScripts:
    """
    The canonical script set of a staking position.

    Two instances are equal iff every script is byte-identical.
    """
    timelock_script: bytes
    unbonding_script: bytes
    slashing_script: bytes
    unbonding_timelock_script: bytes

    def script_for_role(self, role: str) -> bytes:
        return getattr(self, f"{role}_script")

    def _tree(self, layout) -> ScriptTree:
        def resolve(node):
            if isinstance(node, str):
                return self.script_for_role(node)
            return [resolve(child) for child in node]
        return build_script_tree(resolve(layout))

    def staking_tree(self) -> ScriptTree:
        """Script tree of the staking output."""
        return self._tree(STAKING_OUTPUT_TREE_LAYOUT)

    def unbonding_tree(self) -> ScriptTree:
        """Script tree of the unbonding output."""
        return self._tree(UNBONDING_OUTPUT_TREE_LAYOUT)

    def slashing_change_tree(self) -> ScriptTree:
        """Script tree of the change output of a slashing transaction."""
        return self._tree(SLASHING_CHANGE_TREE_LAYOUT)

    def to_dict(self) -> dict:
        return {
            'timelock_script': self.timelock_script.hex(),
            'unbonding_script': self.unbonding_script.hex(),
            'slashing_script': self.slashing_script.hex(),
            'unbonding_timelock_script': self.unbonding_timelock_script.hex(),
        }


def _parse_key(key: KeyLike) -> XOnlyPublicKey:
    try:
        return XOnlyPublicKey.parse(key)
    except (InvalidPublicKeyError, ValueError) as e:
        raise ScriptBuildError(f"Invalid x-only public key: {e}")


def build_single_key_script(key: XOnlyPublicKey, with_verify: bool) -> bytes:
    """<pk> OP_CHECKSIG, or OP_CHECKSIGVERIFY when more script follows."""
    opcode = ScriptOpcode.OP_CHECKSIGVERIFY if with_verify else ScriptOpcode.OP_CHECKSIG
    return ScriptBuilder().push_data(key.key).push_opcode(opcode).build()


def build_multi_key_script(keys: Sequence[XOnlyPublicKey], threshold: int,
                           with_verify: bool) -> bytes:
    """
    Build a threshold check over x-only keys.

    A single key collapses to a single-key script. Otherwise the keys are
    sorted and laid out as
    <pk0> OP_CHECKSIG <pk1> OP_CHECKSIGADD ... <M> OP_NUMEQUAL(VERIFY).

    Raises:
        ScriptBuildError: On an empty key list, a bad threshold or duplicate keys
    """
    if not keys:
        raise ScriptBuildError("No keys provided")
    if threshold < 1 or threshold > len(keys):
        raise ScriptBuildError(
            f"Required number of valid signers ({threshold}) must be between 1 and the number of keys ({len(keys)})"
        )
    if len(keys) == 1:
        return build_single_key_script(keys[0], with_verify)

    sorted_keys = sorted(keys)
    for previous, current in zip(sorted_keys, sorted_keys[1:]):
        if previous == current:
            raise ScriptBuildError("Duplicate keys provided")

    builder = ScriptBuilder()
    builder.push_data(sorted_keys[0].key).push_opcode(ScriptOpcode.OP_CHECKSIG)
    for key in sorted_keys[1:]:
        builder.push_data(key.key).push_opcode(ScriptOpcode.OP_CHECKSIGADD)
    builder.push_number(threshold)
    builder.push_opcode(ScriptOpcode.OP_NUMEQUALVERIFY if with_verify else ScriptOpcode.OP_NUMEQUAL)
    return builder.build()


def build_timelock_script(key: XOnlyPublicKey, timelock: int) -> bytes:
    """<pk> OP_CHECKSIGVERIFY <timelock> OP_CHECKSEQUENCEVERIFY"""
    return (
        ScriptBuilder()
        .push_data(key.key)
        .push_opcode(ScriptOpcode.OP_CHECKSIGVERIFY)
        .push_number(timelock)
        .push_opcode(ScriptOpcode.OP_CHECKSEQUENCEVERIFY)
        .build()
    )


class StakingScriptData:
    """
    Validated inputs of the staking script builder.

    Args:
        staker_key: Staker x-only key
        finality_provider_keys: One or more finality provider x-only keys
        covenant_keys: Covenant committee x-only keys
        covenant_threshold: Covenant quorum M
        staking_timelock: Staking timelock T in blocks
        unbonding_timelock: Unbonding time U in blocks
    """

    def __init__(self, staker_key: KeyLike, finality_provider_keys: Sequence[KeyLike],
                 covenant_keys: Sequence[KeyLike], covenant_threshold: int,
                 staking_timelock: int, unbonding_timelock: int):
        if (staker_key is None or not finality_provider_keys or not covenant_keys
                or covenant_threshold is None or staking_timelock is None
                or unbonding_timelock is None):
            raise ScriptBuildError("Missing required input values")

        self.staker_key = _parse_key(staker_key)
        self.finality_provider_keys: Tuple[XOnlyPublicKey, ...] = tuple(
            _parse_key(k) for k in finality_provider_keys
        )
        self.covenant_keys: Tuple[XOnlyPublicKey, ...] = tuple(_parse_key(k) for k in covenant_keys)
        self.covenant_threshold = covenant_threshold
        self.staking_timelock = staking_timelock
        self.unbonding_timelock = unbonding_timelock

        self.validate()

    def validate(self) -> None:
        """
        Check the joint invariants of the inputs.

        Raises:
            ScriptBuildError: Naming the first violated invariant
        """
        all_keys = (self.staker_key,) + self.finality_provider_keys + self.covenant_keys
        if len(set(all_keys)) != len(all_keys):
            raise ScriptBuildError("Duplicate keys provided")

        if not isinstance(self.covenant_threshold, int) or self.covenant_threshold < 1:
            raise ScriptBuildError("Covenant threshold must be at least 1")
        if self.covenant_threshold > len(self.covenant_keys):
            raise ScriptBuildError(
                f"Covenant threshold {self.covenant_threshold} exceeds committee size {len(self.covenant_keys)}"
            )

        for name, value in (("Staking timelock", self.staking_timelock),
                            ("Unbonding timelock", self.unbonding_timelock)):
            if not isinstance(value, int) or not 0 < value <= MAX_RELATIVE_TIMELOCK:
                raise ScriptBuildError(f"{name} must be between 1 and {MAX_RELATIVE_TIMELOCK}, got {value}")

    def build_scripts(self) -> StakingScripts:
        """Build every staking script."""
        staker_verify = build_single_key_script(self.staker_key, True)
        covenant_multisig = build_multi_key_script(self.covenant_keys, self.covenant_threshold, False)

        scripts = StakingScripts(
            timelock_script=build_timelock_script(self.staker_key, self.staking_timelock),
            unbonding_script=staker_verify + covenant_multisig,
            slashing_script=(
                staker_verify
                + build_multi_key_script(self.finality_provider_keys, 1, True)
                + covenant_multisig
            ),
            unbonding_timelock_script=build_timelock_script(self.staker_key, self.unbonding_timelock),
        )
        logger.debug(
            f"Built staking scripts for staker {self.staker_key.hex} "
            f"({len(self.covenant_keys)} covenant keys, quorum {self.covenant_threshold})"
        )
        return scripts
