"""
Public Key Handling for BTC Staking

This module normalizes and validates secp256k1 public keys in their compressed
(33-byte) and x-only (32-byte, "no coordinate") forms and implements the
BIP340/341 helpers needed to commit to a Taproot script tree.

Only x-only keys are valid inside tapscripts. Every key that reaches the
script builder goes through XOnlyPublicKey, the single parsing entry point.

References:
- BIP340: https://github.com/bitcoin/bips/blob/master/bip-0340.mediawiki
- BIP341: https://github.com/bitcoin/bips/blob/master/bip-0341.mediawiki
"""

import hashlib
import string
from dataclasses import dataclass
from typing import Optional, Tuple, Union

from coincurve import PublicKey as CoinCurvePublicKey

from .exceptions import InvalidPublicKeyError


X_ONLY_PUBKEY_SIZE = 32
COMPRESSED_PUBKEY_SIZE = 33

# BIP341 "nothing up my sleeve" point H = lift_x(SHA256(G)); nobody knows its
# discrete log, so outputs using it as internal key are script-path only.
NUMS_INTERNAL_KEY = bytes.fromhex(
    "50929b74c1a04954b78b4b6035e97a5e078a5a0f28ec96d547bfee9ace803ac0"
)


def tagged_hash(tag: str, data: bytes) -> bytes:
    """
    Compute BIP340/341 tagged hash: SHA256(SHA256(tag) + SHA256(tag) + data).

    Args:
        tag: Tag string for the hash
        data: Data to hash

    Returns:
        32-byte tagged hash
    """
    tag_hash = hashlib.sha256(tag.encode('utf-8')).digest()
    return hashlib.sha256(tag_hash + tag_hash + data).digest()


def lift_x(x: bytes) -> Optional[bytes]:
    """
    Lift an x-coordinate to the curve point with even y.

    Args:
        x: 32-byte x-coordinate

    Returns:
        33-byte compressed public key with even y, or None if x is not on the curve
    """
    if len(x) != X_ONLY_PUBKEY_SIZE:
        return None

    candidate = b'\x02' + x
    try:
        CoinCurvePublicKey(candidate)
    except ValueError:
        return None
    return candidate


def is_valid_x_only(key: bytes) -> bool:
    """Check that raw bytes are a 32-byte x-coordinate of a curve point."""
    return lift_x(key) is not None


def _is_hex_of_length(value: str, *lengths: int) -> bool:
    """Check for a plain hex string (no prefix or whitespace) of one of the given lengths."""
    return (
        isinstance(value, str)
        and len(value) in lengths
        and all(c in string.hexdigits for c in value)
    )


def _no_coord_bytes(key: bytes) -> Optional[bytes]:
    """Strip a parity prefix from a compressed key, or pass x-only bytes through."""
    if len(key) == X_ONLY_PUBKEY_SIZE:
        return key
    if len(key) == COMPRESSED_PUBKEY_SIZE and key[0] in (0x02, 0x03):
        return key[1:]
    return None


def is_valid_no_coord_public_key(public_key: str) -> bool:
    """
    Check whether a hex string is a valid x-only public key.

    A compressed key that still carries its parity byte is rejected.

    Args:
        public_key: Hex encoded key

    Returns:
        True if the string is exactly 64 hex characters encoding a curve point
    """
    if not _is_hex_of_length(public_key, 2 * X_ONLY_PUBKEY_SIZE):
        return False
    return is_valid_x_only(bytes.fromhex(public_key))


def get_public_key_no_coord(public_key: str) -> str:
    """
    Normalize a public key to its x-only hex form.

    Args:
        public_key: Hex encoded x-only or compressed key

    Returns:
        64-character hex x-only key

    Raises:
        InvalidPublicKeyError: If the input is neither a valid x-only nor compressed key
    """
    if not _is_hex_of_length(public_key, 2 * X_ONLY_PUBKEY_SIZE, 2 * COMPRESSED_PUBKEY_SIZE):
        raise InvalidPublicKeyError("Invalid public key without coordinate")

    no_coord = _no_coord_bytes(bytes.fromhex(public_key))
    if no_coord is None or not is_valid_x_only(no_coord):
        raise InvalidPublicKeyError("Invalid public key without coordinate")
    return no_coord.hex()


@dataclass(frozen=True, order=True)
class XOnlyPublicKey:
    """
    Validated x-only public key.

    Ordering compares raw bytes, which is the canonical key order used
    inside multi-key scripts.
    """
    key: bytes

    def __post_init__(self):
        if not isinstance(self.key, bytes) or not is_valid_x_only(self.key):
            raise InvalidPublicKeyError("Invalid public key without coordinate")

    @classmethod
    def from_bytes(cls, data: bytes) -> 'XOnlyPublicKey':
        """Build from 32 x-only bytes or a 33-byte compressed key."""
        no_coord = _no_coord_bytes(bytes(data))
        if no_coord is None:
            raise InvalidPublicKeyError("Invalid public key without coordinate")
        return cls(no_coord)

    @classmethod
    def from_hex(cls, public_key: str) -> 'XOnlyPublicKey':
        """Build from a hex x-only or compressed key."""
        return cls(bytes.fromhex(get_public_key_no_coord(public_key)))

    @classmethod
    def parse(cls, value: Union['XOnlyPublicKey', bytes, str]) -> 'XOnlyPublicKey':
        """Accept an existing key, raw bytes or hex."""
        if isinstance(value, cls):
            return value
        if isinstance(value, (bytes, bytearray)):
            return cls.from_bytes(bytes(value))
        if isinstance(value, str):
            return cls.from_hex(value)
        raise InvalidPublicKeyError(f"Unsupported public key type: {type(value).__name__}")

    @property
    def hex(self) -> str:
        return self.key.hex()

    def __bytes__(self) -> bytes:
        return self.key

    def __str__(self) -> str:
        return self.hex


# Taproot utility functions

def compute_taproot_tweak(internal_pubkey_x: bytes, merkle_root: Optional[bytes] = None) -> bytes:
    """
    Compute Taproot tweak according to BIP341.

    Args:
        internal_pubkey_x: 32-byte x-only internal public key
        merkle_root: Optional 32-byte Merkle root of script tree

    Returns:
        32-byte tweak value
    """
    if len(internal_pubkey_x) != X_ONLY_PUBKEY_SIZE:
        raise InvalidPublicKeyError("Internal pubkey x-coordinate must be 32 bytes")

    tweak_data = internal_pubkey_x
    if merkle_root is not None:
        if len(merkle_root) != 32:
            raise InvalidPublicKeyError("Merkle root must be 32 bytes")
        tweak_data += merkle_root

    return tagged_hash("TapTweak", tweak_data)


def taproot_tweak_public_key(internal_pubkey_x: bytes,
                             merkle_root: Optional[bytes] = None) -> Tuple[bytes, int]:
    """
    Tweak an x-only internal key into a Taproot output key.

    Args:
        internal_pubkey_x: 32-byte x-only internal public key
        merkle_root: Merkle root of the script tree (None for key-path only)

    Returns:
        Tuple of (32-byte x-only output key, output key y parity)
    """
    internal_point = lift_x(internal_pubkey_x)
    if internal_point is None:
        raise InvalidPublicKeyError("Invalid internal public key")

    tweak = compute_taproot_tweak(internal_pubkey_x, merkle_root)
    try:
        # Q = P + t*G
        tweaked = CoinCurvePublicKey(internal_point).add(tweak)
    except ValueError as e:
        raise InvalidPublicKeyError(f"Failed to tweak public key: {e}")

    compressed = tweaked.format(compressed=True)
    return compressed[1:], compressed[0] & 1


def taproot_output_script(tweaked_pubkey_x: bytes) -> bytes:
    """
    Create Taproot output script (witness program).

    Args:
        tweaked_pubkey_x: 32-byte x-only tweaked public key

    Returns:
        34-byte P2TR output script
    """
    if len(tweaked_pubkey_x) != X_ONLY_PUBKEY_SIZE:
        raise InvalidPublicKeyError("Tweaked pubkey must be 32 bytes")

    # P2TR script: OP_1 <32-byte-tweaked-pubkey>
    return b'\x51\x20' + tweaked_pubkey_x
