"""
BTC Staking - Taproot Script Trees and Outputs

This module provides:
- TapLeaf / TapBranch script tree nodes with BIP341 hashing
- Merkle path and control block generation for script-path spending
- A pluggable Taproot output builder interface with a coincurve-backed default

The shape of a script tree changes the output key, so trees are always built
from an explicit nested structure and never rebalanced.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence, Union

from bitcoinlib.encoding import varstr

from crypto.addresses import encode_segwit_address
from crypto.keys import (
    lift_x,
    taproot_output_script,
    taproot_tweak_public_key,
    tagged_hash,
)
from crypto.exceptions import InvalidPublicKeyError
from .exceptions import InvalidScriptError


LEAF_VERSION_TAPSCRIPT = 0xc0


@dataclass(frozen=True)
class TapLeaf:
    """Represents a single leaf in the Taproot script tree."""
    script: bytes
    leaf_version: int = LEAF_VERSION_TAPSCRIPT

    def __post_init__(self):
        """Validate leaf parameters."""
        if not self.script:
            raise InvalidScriptError("Tap leaf script cannot be empty")
        if len(self.script) > 10000:  # Bitcoin script size limit
            raise InvalidScriptError("Tap leaf script too large")
        if self.leaf_version & 0xfe != self.leaf_version:
            raise InvalidScriptError(f"Invalid leaf version: {self.leaf_version:#x}")

    def leaf_hash(self) -> bytes:
        """Compute TapLeaf hash for this leaf."""
        return tagged_hash(
            "TapLeaf",
            bytes([self.leaf_version]) + varstr(self.script)
        )

    def node_hash(self) -> bytes:
        return self.leaf_hash()


@dataclass(frozen=True)
class TapBranch:
    """Represents an internal node in the Taproot script tree."""
    left: Union['TapBranch', TapLeaf]
    right: Union['TapBranch', TapLeaf]

    def branch_hash(self) -> bytes:
        """Compute TapBranch hash, ordering the child hashes lexicographically."""
        left_hash = self.left.node_hash()
        right_hash = self.right.node_hash()
        if left_hash <= right_hash:
            return tagged_hash("TapBranch", left_hash + right_hash)
        return tagged_hash("TapBranch", right_hash + left_hash)

    def node_hash(self) -> bytes:
        return self.branch_hash()


ScriptTree = Union[TapBranch, TapLeaf]


def build_script_tree(structure: Union[bytes, Sequence]) -> ScriptTree:
    """
    Build a script tree from a nested structure of scripts.

    A bytes value becomes a leaf and a two-element sequence becomes a branch,
    so ``[a, [b, c]]`` is a branch of leaf ``a`` and the branch of ``b`` and ``c``.

    Args:
        structure: Script bytes or a nested pair of structures

    Returns:
        Root of the script tree
    """
    if isinstance(structure, (TapLeaf, TapBranch)):
        return structure
    if isinstance(structure, (bytes, bytearray)):
        return TapLeaf(bytes(structure))
    if len(structure) == 1:
        return build_script_tree(structure[0])
    if len(structure) != 2:
        raise InvalidScriptError("Script tree nodes must have exactly two children")
    return TapBranch(build_script_tree(structure[0]), build_script_tree(structure[1]))


def merkle_root(tree: ScriptTree) -> bytes:
    """Compute merkle root of script tree."""
    return tree.node_hash()


def find_merkle_path(target: TapLeaf, tree: ScriptTree) -> Optional[List[bytes]]:
    """
    Find the sibling hashes from a leaf up to the root.

    Returns:
        List of sibling hashes (empty for a single-leaf tree), or None if absent
    """
    if isinstance(tree, TapLeaf):
        return [] if tree == target else None

    left_path = find_merkle_path(target, tree.left)
    if left_path is not None:
        return left_path + [tree.right.node_hash()]

    right_path = find_merkle_path(target, tree.right)
    if right_path is not None:
        return right_path + [tree.left.node_hash()]

    return None


@dataclass(frozen=True)
class TaprootOutput:
    """Taproot output with its script tree and tweaked key."""
    internal_pubkey: bytes
    script_tree: Optional[ScriptTree]
    tweaked_pubkey: bytes
    output_key_parity: int
    output_script: bytes
    address: Optional[str] = None

    def __post_init__(self):
        """Validate Taproot output."""
        if len(self.internal_pubkey) != 32:
            raise InvalidScriptError("Internal pubkey must be 32 bytes (x-only)")
        if len(self.tweaked_pubkey) != 32:
            raise InvalidScriptError("Tweaked pubkey must be 32 bytes (x-only)")
        if len(self.output_script) != 34:
            raise InvalidScriptError("Taproot output script must be 34 bytes")

    def control_block(self, script: bytes, leaf_version: int = LEAF_VERSION_TAPSCRIPT) -> bytes:
        """
        Generate control block for script-path spending.

        Args:
            script: The leaf script being executed
            leaf_version: Tapscript leaf version

        Returns:
            Control block bytes: version|parity, internal key, merkle path
        """
        if self.script_tree is None:
            raise InvalidScriptError("Output has no script tree")
        path = find_merkle_path(TapLeaf(script, leaf_version), self.script_tree)
        if path is None:
            raise InvalidScriptError("Script is not a leaf of this output")
        return bytes([leaf_version | self.output_key_parity]) + self.internal_pubkey + b''.join(path)


class TaprootOutputBuilder(ABC):
    """
    Constructs a Taproot output from an internal key and a script tree.

    Implementations may return None when no output can be produced; callers
    treat that as a failure distinct from the builder raising.
    """

    @abstractmethod
    def build(self, internal_pubkey: bytes, script_tree: Optional[ScriptTree],
              network: str) -> Optional[TaprootOutput]:
        """Build the output for ``network``."""


class CoincurveTaprootOutputBuilder(TaprootOutputBuilder):
    """Default builder doing the BIP341 tweak with coincurve."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def build(self, internal_pubkey: bytes, script_tree: Optional[ScriptTree],
              network: str) -> Optional[TaprootOutput]:
        if lift_x(internal_pubkey) is None:
            raise InvalidPublicKeyError("Invalid internal public key")

        root = merkle_root(script_tree) if script_tree is not None else None
        tweaked_pubkey, parity = taproot_tweak_public_key(internal_pubkey, root)
        address = encode_segwit_address(1, tweaked_pubkey, network)
        self.logger.debug(f"Built taproot output {address}")

        return TaprootOutput(
            internal_pubkey=internal_pubkey,
            script_tree=script_tree,
            tweaked_pubkey=tweaked_pubkey,
            output_key_parity=parity,
            output_script=taproot_output_script(tweaked_pubkey),
            address=address,
        )


DEFAULT_OUTPUT_BUILDER: TaprootOutputBuilder = CoincurveTaprootOutputBuilder()
