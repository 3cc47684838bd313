"""
Tests for Public Key Handling

Tests x-only normalization and validation, tagged hashes and the BIP341
Taproot key tweak.
"""

import hashlib

import pytest

from crypto.exceptions import InvalidPublicKeyError
from crypto.keys import (
    NUMS_INTERNAL_KEY,
    XOnlyPublicKey,
    get_public_key_no_coord,
    is_valid_no_coord_public_key,
    lift_x,
    tagged_hash,
    taproot_output_script,
    taproot_tweak_public_key,
)

from staking_testdata import compressed_key, x_only_key


# BIP86 test vector: first receiving key of the BIP86 test mnemonic
BIP86_INTERNAL_KEY = "cc8a4bc64d897bddc5fbc2f670f7a8ba0b386779106cf1223c6fc5d7cd6fc115"
BIP86_OUTPUT_KEY = "a60869f0dbcf1dc659c9cecbaf8050135ea9e8cdc487053f1dc6880949dc684c"

GENERATOR_X = "79be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798"


class TestNoCoordPublicKey:
    """Test x-only public key validation and normalization."""

    def test_valid_x_only_key(self):
        """A 32-byte x-coordinate on the curve is valid."""
        assert is_valid_no_coord_public_key(GENERATOR_X)
        assert is_valid_no_coord_public_key(x_only_key(7))

    def test_compressed_key_rejected(self):
        """A key that still carries its parity byte is not x-only."""
        assert not is_valid_no_coord_public_key(compressed_key(7))

    def test_invalid_keys_rejected(self):
        """Off-curve, wrong-length and non-hex input is invalid."""
        assert not is_valid_no_coord_public_key("ff" * 32)
        assert not is_valid_no_coord_public_key("00" * 31)
        assert not is_valid_no_coord_public_key("")
        assert not is_valid_no_coord_public_key("zz" * 32)

    def test_normalize_compressed_key(self):
        """Compressed keys of either parity normalize to their x-coordinate."""
        for secret in (1, 2, 3, 10):
            assert get_public_key_no_coord(compressed_key(secret)) == x_only_key(secret)

    def test_normalize_x_only_key_is_identity(self):
        assert get_public_key_no_coord(GENERATOR_X) == GENERATOR_X

    def test_normalize_invalid_key(self):
        with pytest.raises(InvalidPublicKeyError, match="Invalid public key without coordinate"):
            get_public_key_no_coord("ff" * 32)
        with pytest.raises(InvalidPublicKeyError):
            get_public_key_no_coord("04" + GENERATOR_X)
        with pytest.raises(InvalidPublicKeyError):
            get_public_key_no_coord("not hex")
        with pytest.raises(InvalidPublicKeyError):
            get_public_key_no_coord("invalid_public_key")

    def test_whitespace_and_prefixes_rejected(self):
        """Only plain 64 (or 66, when normalizing) character hex strings are keys."""
        spaced = " ".join(GENERATOR_X[i:i + 2] for i in range(0, 64, 2))
        assert not is_valid_no_coord_public_key(spaced)
        assert not is_valid_no_coord_public_key(" " + GENERATOR_X)
        assert not is_valid_no_coord_public_key(GENERATOR_X + "\n")
        assert not is_valid_no_coord_public_key("0x" + GENERATOR_X)
        assert not is_valid_no_coord_public_key(None)
        assert is_valid_no_coord_public_key(GENERATOR_X.upper())

        with pytest.raises(InvalidPublicKeyError):
            get_public_key_no_coord(spaced)
        with pytest.raises(InvalidPublicKeyError):
            get_public_key_no_coord(" " + compressed_key(7))
        with pytest.raises(InvalidPublicKeyError):
            get_public_key_no_coord(compressed_key(7) + "00")
        assert get_public_key_no_coord(compressed_key(7).upper()) == x_only_key(7)

    def test_normalize_is_idempotent(self, data_generator):
        for _ in range(10):
            key = data_generator.generate_compressed_key()
            once = get_public_key_no_coord(key)
            assert get_public_key_no_coord(once) == once


class TestXOnlyPublicKey:
    """Test the XOnlyPublicKey value type."""

    def test_parse_forms(self):
        """Hex, compressed hex, raw bytes and instances all parse to the same key."""
        expected = XOnlyPublicKey(bytes.fromhex(x_only_key(5)))
        assert XOnlyPublicKey.parse(x_only_key(5)) == expected
        assert XOnlyPublicKey.parse(compressed_key(5)) == expected
        assert XOnlyPublicKey.parse(bytes.fromhex(x_only_key(5))) == expected
        assert XOnlyPublicKey.parse(expected) is expected

    def test_invalid_key(self):
        with pytest.raises(InvalidPublicKeyError):
            XOnlyPublicKey(b'\xff' * 32)
        with pytest.raises(InvalidPublicKeyError):
            XOnlyPublicKey.parse(12345)

    def test_ordering_is_bytewise(self):
        keys = [XOnlyPublicKey.parse(x_only_key(secret)) for secret in (3, 4, 5, 6)]
        assert [k.key for k in sorted(keys)] == sorted(k.key for k in keys)

    def test_hex_and_str(self):
        key = XOnlyPublicKey.parse(GENERATOR_X)
        assert key.hex == GENERATOR_X
        assert str(key) == GENERATOR_X
        assert bytes(key) == bytes.fromhex(GENERATOR_X)


class TestTaprootTweak:
    """Test BIP340 tagged hashes and the BIP341 key tweak."""

    def test_tagged_hash(self):
        tag = hashlib.sha256(b"TapLeaf").digest()
        assert tagged_hash("TapLeaf", b"data") == hashlib.sha256(tag + tag + b"data").digest()

    def test_lift_x_even_y(self):
        assert lift_x(bytes.fromhex(GENERATOR_X)) == b'\x02' + bytes.fromhex(GENERATOR_X)
        assert lift_x(b'\xff' * 32) is None
        assert lift_x(b'\x01' * 31) is None

    def test_nums_key_is_on_curve(self):
        assert lift_x(NUMS_INTERNAL_KEY) is not None

    def test_bip86_key_path_tweak(self):
        """Key-path-only tweak matches the BIP86 test vector."""
        output_key, parity = taproot_tweak_public_key(bytes.fromhex(BIP86_INTERNAL_KEY))
        assert output_key.hex() == BIP86_OUTPUT_KEY
        assert parity in (0, 1)

    def test_tweak_depends_on_merkle_root(self):
        internal = bytes.fromhex(BIP86_INTERNAL_KEY)
        key_path, _ = taproot_tweak_public_key(internal)
        script_path, _ = taproot_tweak_public_key(internal, b'\x01' * 32)
        assert key_path != script_path

    def test_invalid_internal_key(self):
        with pytest.raises(InvalidPublicKeyError):
            taproot_tweak_public_key(b'\xff' * 32)
        with pytest.raises(InvalidPublicKeyError):
            taproot_tweak_public_key(bytes.fromhex(BIP86_INTERNAL_KEY), b'\x01' * 31)

    def test_output_script(self):
        script = taproot_output_script(bytes.fromhex(BIP86_OUTPUT_KEY))
        assert script == b'\x51\x20' + bytes.fromhex(BIP86_OUTPUT_KEY)
