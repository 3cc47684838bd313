"""
Address Encoding and Classification for BTC Staking

Decodes and encodes network-specific Bitcoin addresses (Taproot bech32m,
native segwit bech32, legacy base58check) and maps them to and from output
scripts. Addresses are only produced here and by the staking output deriver.

References:
- BIP173: https://github.com/bitcoin/bips/blob/master/bip-0173.mediawiki
- BIP350: https://github.com/bitcoin/bips/blob/master/bip-0350.mediawiki
- BIP86: https://github.com/bitcoin/bips/blob/master/bip-0086.mediawiki
"""

import logging
from dataclasses import dataclass
from typing import Dict, Tuple, Union

import base58
from bitcoinlib.encoding import (
    EncodingError,
    addr_bech32_to_pubkeyhash,
    hash160,
    pubkeyhash_to_addr_bech32,
)

from .exceptions import AddressError, InvalidPublicKeyError
from .keys import (
    XOnlyPublicKey,
    lift_x,
    taproot_output_script,
    taproot_tweak_public_key,
)


logger = logging.getLogger(__name__)

# BIP350 checksum constant for witness version 1+
BECH32M_CONST = 0x2bc830a3

OP_0 = 0x00
OP_1 = 0x51
OP_DUP = 0x76
OP_HASH160 = 0xa9
OP_EQUAL = 0x87
OP_EQUALVERIFY = 0x88
OP_CHECKSIG = 0xac


@dataclass(frozen=True)
class NetworkPrefixes:
    """Address prefixes of a Bitcoin network."""
    name: str
    bech32_hrp: str
    p2pkh_version: int
    p2sh_version: int


NETWORKS: Dict[str, NetworkPrefixes] = {
    'bitcoin': NetworkPrefixes('bitcoin', 'bc', 0x00, 0x05),
    'testnet': NetworkPrefixes('testnet', 'tb', 0x6f, 0xc4),
    'signet': NetworkPrefixes('signet', 'tb', 0x6f, 0xc4),
    'regtest': NetworkPrefixes('regtest', 'bcrt', 0x6f, 0xc4),
}

NETWORK_ALIASES = {
    'mainnet': 'bitcoin',
    'testnet3': 'testnet',
}


def get_network(network: Union[str, NetworkPrefixes]) -> NetworkPrefixes:
    """
    Resolve a network name to its address prefixes.

    Args:
        network: Network name ('bitcoin', 'testnet', 'signet', 'regtest') or prefixes

    Returns:
        NetworkPrefixes for the network

    Raises:
        AddressError: If the network is unknown
    """
    if isinstance(network, NetworkPrefixes):
        return network
    name = NETWORK_ALIASES.get(network, network)
    try:
        return NETWORKS[name]
    except KeyError:
        raise AddressError(f"Unknown network: {network}")


def encode_segwit_address(witness_version: int, program: bytes, network: str) -> str:
    """
    Encode a witness program as a bech32 (v0) or bech32m (v1+) address.

    Args:
        witness_version: Witness version 0-16
        program: Witness program bytes
        network: Network name

    Returns:
        Segwit address string
    """
    prefixes = get_network(network)
    if not 0 <= witness_version <= 16:
        raise AddressError(f"Invalid witness version: {witness_version}")
    if not 2 <= len(program) <= 40:
        raise AddressError(f"Invalid witness program length: {len(program)}")

    checksum_xor = BECH32M_CONST if witness_version else 1
    try:
        return pubkeyhash_to_addr_bech32(
            program,
            prefix=prefixes.bech32_hrp,
            witver=witness_version,
            checksum_xor=checksum_xor,
        )
    except EncodingError as e:
        raise AddressError(f"Failed to encode segwit address: {e}")


def decode_segwit_address(address: str, network: str) -> Tuple[int, bytes]:
    """
    Decode a bech32/bech32m address for the given network.

    Args:
        address: Segwit address
        network: Network name the address must belong to

    Returns:
        Tuple of (witness version, witness program)

    Raises:
        AddressError: If the address is malformed, for another network or
            uses the checksum of the other witness version family
    """
    prefixes = get_network(network)
    try:
        script = addr_bech32_to_pubkeyhash(
            address, prefix=prefixes.bech32_hrp, include_witver=True
        )
    except (EncodingError, TypeError, ValueError, IndexError) as e:
        raise AddressError(f"Invalid segwit address {address}: {e}")

    script = bytes(script)
    witness_version = script[0] - 0x50 if script[0] else 0
    program = script[2:]

    # BIP350: v0 must carry the bech32 checksum, v1+ the bech32m checksum
    if encode_segwit_address(witness_version, program, network) != address.lower():
        raise AddressError(f"Invalid segwit address {address}: wrong checksum variant")
    return witness_version, program


def decode_base58_address(address: str, network: str) -> Tuple[int, bytes]:
    """
    Decode a base58check address for the given network.

    Returns:
        Tuple of (version byte, 20-byte hash)

    Raises:
        AddressError: If the checksum, length or version byte is wrong
    """
    prefixes = get_network(network)
    try:
        decoded = base58.b58decode_check(address)
    except ValueError as e:
        raise AddressError(f"Invalid base58 address {address}: {e}")

    if len(decoded) != 21:
        raise AddressError(f"Invalid base58 address length: {address}")
    version, payload = decoded[0], decoded[1:]
    if version not in (prefixes.p2pkh_version, prefixes.p2sh_version):
        raise AddressError(f"Address {address} does not belong to network {prefixes.name}")
    return version, payload


def _is_segwit_candidate(address: str, network: str) -> bool:
    return address.lower().startswith(get_network(network).bech32_hrp + '1')


def address_to_output_script(address: str, network: str) -> bytes:
    """
    Convert an address to the scriptPubKey it pays to.

    Args:
        address: Bitcoin address
        network: Network name

    Returns:
        Output script bytes

    Raises:
        AddressError: If the address is invalid for the network
    """
    if _is_segwit_candidate(address, network):
        witness_version, program = decode_segwit_address(address, network)
        version_op = OP_1 + witness_version - 1 if witness_version else OP_0
        return bytes([version_op, len(program)]) + program

    version, payload = decode_base58_address(address, network)
    if version == get_network(network).p2pkh_version:
        return bytes([OP_DUP, OP_HASH160, 0x14]) + payload + bytes([OP_EQUALVERIFY, OP_CHECKSIG])
    return bytes([OP_HASH160, 0x14]) + payload + bytes([OP_EQUAL])


def output_script_to_address(script: bytes, network: str) -> str:
    """
    Convert a standard output script back to its address.

    Raises:
        AddressError: If the script is not a standard addressable type
    """
    prefixes = get_network(network)
    if len(script) == 25 and script[:3] == bytes([OP_DUP, OP_HASH160, 0x14]) \
            and script[23:] == bytes([OP_EQUALVERIFY, OP_CHECKSIG]):
        return base58.b58encode_check(bytes([prefixes.p2pkh_version]) + script[3:23]).decode('ascii')
    if len(script) == 23 and script[:2] == bytes([OP_HASH160, 0x14]) and script[22] == OP_EQUAL:
        return base58.b58encode_check(bytes([prefixes.p2sh_version]) + script[2:22]).decode('ascii')
    if 4 <= len(script) <= 42 and script[1] == len(script) - 2 \
            and (script[0] == OP_0 or OP_1 <= script[0] <= OP_1 + 15):
        witness_version = script[0] - OP_1 + 1 if script[0] else 0
        return encode_segwit_address(witness_version, script[2:], network)
    raise AddressError(f"Unsupported output script: {script.hex()}")


def is_taproot(address: str, network: str) -> bool:
    """
    Check whether an address is a Taproot (witness v1, 32-byte program) address.

    Never raises: malformed addresses, addresses for another network and
    other output types all yield False.
    """
    try:
        if not _is_segwit_candidate(address, network):
            return False
        witness_version, program = decode_segwit_address(address, network)
    except (AddressError, AttributeError):
        return False
    return witness_version == 1 and len(program) == 32


def is_native_segwit(address: str, network: str) -> bool:
    """Check whether an address is a P2WPKH (witness v0, 20-byte program) address."""
    try:
        if not _is_segwit_candidate(address, network):
            return False
        witness_version, program = decode_segwit_address(address, network)
    except (AddressError, AttributeError):
        return False
    return witness_version == 0 and len(program) == 20


def is_valid_bitcoin_address(address: str, network: str) -> bool:
    """Check whether an address decodes under the network's encoding rules."""
    try:
        address_to_output_script(address, network)
    except (AddressError, AttributeError):
        return False
    return True


def taproot_key_path_address(public_key: Union[str, bytes, XOnlyPublicKey], network: str) -> str:
    """
    Derive the BIP86 key-path-only Taproot address of a public key.

    Args:
        public_key: x-only or compressed key (hex, bytes or XOnlyPublicKey)
        network: Network name

    Returns:
        bech32m address
    """
    internal = XOnlyPublicKey.parse(public_key)
    output_key, _ = taproot_tweak_public_key(internal.key)
    return encode_segwit_address(1, output_key, network)


def taproot_key_path_output_script(public_key: Union[str, bytes, XOnlyPublicKey]) -> bytes:
    """BIP86 P2TR output script of a public key."""
    internal = XOnlyPublicKey.parse(public_key)
    output_key, _ = taproot_tweak_public_key(internal.key)
    return taproot_output_script(output_key)


def native_segwit_output_script(public_key: Union[str, bytes]) -> bytes:
    """
    P2WPKH output script of a public key.

    An x-only key is taken to be the even-y point.
    """
    key = bytes.fromhex(public_key) if isinstance(public_key, str) else bytes(public_key)
    if len(key) == 32:
        lifted = lift_x(key)
        if lifted is None:
            raise InvalidPublicKeyError("Invalid public key without coordinate")
        key = lifted
    elif len(key) != 33 or key[0] not in (0x02, 0x03):
        raise InvalidPublicKeyError("Native segwit requires a compressed public key")
    else:
        XOnlyPublicKey.from_bytes(key)
    return bytes([OP_0, 0x14]) + hash160(key)


def native_segwit_address(public_key: Union[str, bytes], network: str) -> str:
    """Derive the P2WPKH address of a public key."""
    return encode_segwit_address(0, native_segwit_output_script(public_key)[2:], network)
