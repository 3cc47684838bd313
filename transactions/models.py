"""
BTC Staking - Unsigned Transaction Model

Immutable transaction structures and their legacy (non-witness) wire
serialization. Transactions built here are unsigned: every input carries an
empty scriptSig and no witness, so the txid is final as soon as it is built.
"""

import struct
from dataclasses import dataclass
from io import BytesIO
from typing import Any, Dict, Tuple

from .utils import double_sha256, serialize_compact_size, serialize_outpoint


TRANSACTION_VERSION = 2
NON_RBF_SEQUENCE = 0xffffffff


@dataclass(frozen=True)
class TxInput:
    """Previous output reference; txid is display (big-endian) hex."""
    txid: str
    vout: int
    sequence: int = NON_RBF_SEQUENCE


@dataclass(frozen=True)
class TxOutput:
    """Value in satoshis paid to an output script."""
    value: int
    script: bytes


@dataclass(frozen=True)
class Transaction:
    """
    Unsigned Bitcoin transaction.

    Fee re-estimation never edits a transaction in place; builders assemble
    a fresh instance for every candidate.
    """
    inputs: Tuple[TxInput, ...]
    outputs: Tuple[TxOutput, ...]
    version: int = TRANSACTION_VERSION
    locktime: int = 0

    def serialize(self) -> bytes:
        """Serialize to the standard transaction wire format without witness."""
        result = BytesIO()

        # Version (4 bytes, little endian)
        result.write(struct.pack('<I', self.version))

        result.write(serialize_compact_size(len(self.inputs)))
        for tx_input in self.inputs:
            result.write(serialize_outpoint(tx_input.txid, tx_input.vout))
            # Empty script (for unsigned transaction)
            result.write(b'\x00')
            result.write(struct.pack('<I', tx_input.sequence))

        result.write(serialize_compact_size(len(self.outputs)))
        for tx_output in self.outputs:
            result.write(struct.pack('<Q', tx_output.value))
            result.write(serialize_compact_size(len(tx_output.script)))
            result.write(tx_output.script)

        result.write(struct.pack('<I', self.locktime))
        return result.getvalue()

    def to_hex(self) -> str:
        return self.serialize().hex()

    @property
    def txid(self) -> str:
        """Transaction ID as display (big-endian) hex."""
        return double_sha256(self.serialize())[::-1].hex()

    @property
    def total_output_value(self) -> int:
        return sum(output.value for output in self.outputs)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'txid': self.txid,
            'version': self.version,
            'locktime': self.locktime,
            'inputs': [
                {'txid': i.txid, 'vout': i.vout, 'sequence': i.sequence}
                for i in self.inputs
            ],
            'outputs': [
                {'value': o.value, 'script_pubkey': o.script.hex()}
                for o in self.outputs
            ],
            'hex': self.to_hex(),
        }
