"""
BTC Staking - Key and Address Utilities

This module provides:
- x-only / compressed public key normalization and validation
- BIP340/341 tagged hashes and Taproot key tweaking
- Address classification and encoding (bech32m, bech32, base58check)

Dependencies:
- coincurve: Fast secp256k1 operations
- bitcoinlib: bech32/bech32m encoding and HASH160
- base58: base58check encoding
"""

from .exceptions import (
    CryptoError,
    InvalidPublicKeyError,
    AddressError,
    AddressDerivationError,
)
from .keys import (
    NUMS_INTERNAL_KEY,
    XOnlyPublicKey,
    get_public_key_no_coord,
    is_valid_no_coord_public_key,
    tagged_hash,
    taproot_tweak_public_key,
)
from .addresses import (
    address_to_output_script,
    is_native_segwit,
    is_taproot,
    is_valid_bitcoin_address,
    native_segwit_address,
    taproot_key_path_address,
)

__all__ = [
    'CryptoError',
    'InvalidPublicKeyError',
    'AddressError',
    'AddressDerivationError',
    'NUMS_INTERNAL_KEY',
    'XOnlyPublicKey',
    'get_public_key_no_coord',
    'is_valid_no_coord_public_key',
    'tagged_hash',
    'taproot_tweak_public_key',
    'address_to_output_script',
    'is_native_segwit',
    'is_taproot',
    'is_valid_bitcoin_address',
    'native_segwit_address',
    'taproot_key_path_address',
]
