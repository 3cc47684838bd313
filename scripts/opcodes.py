"""
BTC Staking - Script Opcodes and Builder

Opcode constants, a minimal-push script builder and a script tokenizer used
to build tapscripts and to sanity check externally supplied output scripts.
"""

import struct
from typing import Iterator, List, Tuple

from .exceptions import InvalidScriptError


class ScriptOpcode:
    """Bitcoin Script opcodes used in staking scripts."""

    # Constants
    OP_0 = 0x00
    OP_FALSE = OP_0
    OP_PUSHDATA1 = 0x4c
    OP_PUSHDATA2 = 0x4d
    OP_PUSHDATA4 = 0x4e
    OP_1NEGATE = 0x4f
    OP_1 = 0x51
    OP_TRUE = OP_1
    OP_16 = 0x60

    # Flow control
    OP_VERIFY = 0x69
    OP_RETURN = 0x6a

    # Stack operations
    OP_DROP = 0x75
    OP_DUP = 0x76

    # Bitwise logic
    OP_EQUAL = 0x87
    OP_EQUALVERIFY = 0x88

    # Arithmetic
    OP_NUMEQUAL = 0x9c
    OP_NUMEQUALVERIFY = 0x9d

    # Crypto
    OP_HASH160 = 0xa9
    OP_CHECKSIG = 0xac
    OP_CHECKSIGVERIFY = 0xad

    # Locktime
    OP_CHECKLOCKTIMEVERIFY = 0xb1
    OP_CHECKSEQUENCEVERIFY = 0xb2

    # Tapscript
    OP_CHECKSIGADD = 0xba


def encode_script_num(number: int) -> bytes:
    """Encode an integer as a minimal CScriptNum."""
    if number == 0:
        return b''

    negative = number < 0
    if negative:
        number = -number

    result = []
    while number > 0:
        result.append(number & 0xff)
        number >>= 8

    if result[-1] & 0x80:
        result.append(0x80 if negative else 0x00)
    elif negative:
        result[-1] |= 0x80

    return bytes(result)


class ScriptBuilder:
    """
    Incremental script builder with minimal push encoding.

    Small integers 1..16 become OP_1..OP_16, everything else is pushed as a
    minimal CScriptNum.
    """

    MAX_SCRIPT_SIZE = 10000

    def __init__(self):
        self.script_stack: List[bytes] = []

    def push_data(self, data: bytes) -> 'ScriptBuilder':
        """Push data with the smallest push opcode."""
        if len(data) == 0:
            self.script_stack.append(bytes([ScriptOpcode.OP_0]))
        elif len(data) <= 75:
            self.script_stack.append(bytes([len(data)]) + data)
        elif len(data) <= 255:
            self.script_stack.append(bytes([ScriptOpcode.OP_PUSHDATA1, len(data)]) + data)
        elif len(data) <= 65535:
            self.script_stack.append(bytes([ScriptOpcode.OP_PUSHDATA2]) + struct.pack('<H', len(data)) + data)
        else:
            raise InvalidScriptError(f"Data too large: {len(data)} bytes")
        return self

    def push_opcode(self, opcode: int) -> 'ScriptBuilder':
        self.script_stack.append(bytes([opcode]))
        return self

    def push_number(self, number: int) -> 'ScriptBuilder':
        """Push a number using minimal encoding."""
        if number == 0:
            return self.push_opcode(ScriptOpcode.OP_0)
        if number == -1:
            return self.push_opcode(ScriptOpcode.OP_1NEGATE)
        if 1 <= number <= 16:
            return self.push_opcode(ScriptOpcode.OP_1 + number - 1)
        return self.push_data(encode_script_num(number))

    def build(self) -> bytes:
        script = b''.join(self.script_stack)
        if len(script) > self.MAX_SCRIPT_SIZE:
            raise InvalidScriptError(f"Script too large: {len(script)} bytes")
        return script


def iter_script(script: bytes) -> Iterator[Tuple[int, bytes]]:
    """
    Tokenize a script into (opcode, pushed data) pairs.

    Raises:
        InvalidScriptError: If a push runs past the end of the script
    """
    offset = 0
    while offset < len(script):
        opcode = script[offset]
        offset += 1
        if opcode == 0 or opcode > ScriptOpcode.OP_PUSHDATA4:
            yield opcode, b''
            continue

        if opcode < ScriptOpcode.OP_PUSHDATA1:
            size = opcode
        else:
            width = {ScriptOpcode.OP_PUSHDATA1: 1,
                     ScriptOpcode.OP_PUSHDATA2: 2,
                     ScriptOpcode.OP_PUSHDATA4: 4}[opcode]
            if offset + width > len(script):
                raise InvalidScriptError("Truncated push length")
            size = int.from_bytes(script[offset:offset + width], 'little')
            offset += width

        if offset + size > len(script):
            raise InvalidScriptError("Push past end of script")
        yield opcode, script[offset:offset + size]
        offset += size


def is_parsable_script(script: bytes) -> bool:
    """Check whether a script tokenizes cleanly and is non-empty."""
    if not script:
        return False
    try:
        for _ in iter_script(script):
            pass
    except InvalidScriptError:
        return False
    return True


def decode_script_num(data: bytes) -> int:
    """Decode a CScriptNum (little-endian, sign bit in the last byte)."""
    if not data:
        return 0
    result = int.from_bytes(data, 'little')
    if data[-1] & 0x80:
        return -(result & ~(0x80 << (8 * (len(data) - 1))))
    return result


def read_script_number(opcode: int, data: bytes) -> int:
    """Interpret a tokenized script element as a number."""
    if opcode == ScriptOpcode.OP_0:
        return 0
    if opcode == ScriptOpcode.OP_1NEGATE:
        return -1
    if ScriptOpcode.OP_1 <= opcode <= ScriptOpcode.OP_16:
        return opcode - ScriptOpcode.OP_1 + 1
    if opcode < ScriptOpcode.OP_PUSHDATA1:
        return decode_script_num(data)
    raise InvalidScriptError(f"Script element {opcode:#x} is not a number")
