"""
BTC Staking - Transaction Utilities

Wire-format helpers shared by the transaction model and fee estimator.
"""

import hashlib
import struct


def serialize_compact_size(n: int) -> bytes:
    """
    Serialize integer as Bitcoin compact size.

    Args:
        n: Integer to serialize

    Returns:
        Compact size encoded bytes
    """
    if n < 0xfd:
        return struct.pack('<B', n)
    elif n <= 0xffff:
        return b'\xfd' + struct.pack('<H', n)
    elif n <= 0xffffffff:
        return b'\xfe' + struct.pack('<I', n)
    else:
        return b'\xff' + struct.pack('<Q', n)


def double_sha256(data: bytes) -> bytes:
    """Calculate double SHA256 hash (used for transaction IDs)."""
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def serialize_outpoint(txid: str, vout: int) -> bytes:
    """
    Serialize a transaction outpoint.

    Args:
        txid: Transaction ID in display (big-endian) hex
        vout: Output index

    Returns:
        36-byte outpoint with the txid byte-reversed
    """
    txid_bytes = bytes.fromhex(txid)
    if len(txid_bytes) != 32:
        raise ValueError(f"Transaction ID must be 32 bytes, got {len(txid_bytes)}")
    return txid_bytes[::-1] + struct.pack('<I', vout)


def is_valid_txid(txid: str) -> bool:
    """Check for a 64-character hex transaction ID."""
    if not isinstance(txid, str) or len(txid) != 64:
        return False
    try:
        bytes.fromhex(txid)
    except ValueError:
        return False
    return True
