"""
Cryptographic Exceptions for BTC Staking

This module defines custom exceptions for key handling and address operations.
"""


class CryptoError(Exception):
    """Base exception for all cryptographic errors."""
    pass


class InvalidPublicKeyError(CryptoError):
    """Raised when a public key is malformed or not a valid curve point."""
    pass


class AddressError(CryptoError):
    """Raised when an address cannot be decoded or encoded for a network."""
    pass


class AddressDerivationError(CryptoError):
    """
    Raised when a Taproot output or its address cannot be derived.

    The message is either the fixed "no output" text or the underlying
    builder's own message, which is carried over unmodified.
    """
    pass
