"""
BTC Staking - UTXO Selection

Greedy UTXO selection that re-estimates the fee as inputs are added. The fee
grows with every selected input, so selection accumulates until the running
total covers the amount plus the fee for the current input set.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Sequence, Tuple

from params.constants import BTC_DUST_SAT
from scripts.opcodes import is_parsable_script
from .exceptions import InsufficientFundsError, InvalidTransactionInputError
from .fees import (
    estimate_fee,
    estimate_transaction_size,
    get_estimated_change_output_size,
    size_fee,
)
from .utils import is_valid_txid


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UTXO:
    """
    Unspent output supplied by a chain data source.

    txid is display (big-endian) hex, as printed by block explorers and
    Bitcoin Core; it is byte-reversed only when serialized into an outpoint.
    """
    txid: str
    vout: int
    script_pubkey: str
    value: int

    def __post_init__(self):
        if not is_valid_txid(self.txid):
            raise InvalidTransactionInputError(f"Invalid UTXO transaction ID: {self.txid}")
        if self.vout < 0:
            raise InvalidTransactionInputError(f"Invalid UTXO output index: {self.vout}")
        if self.value < 0:
            raise InvalidTransactionInputError(f"Invalid UTXO value: {self.value}")

    @property
    def script(self) -> bytes:
        return bytes.fromhex(self.script_pubkey)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'UTXO':
        """Build from a dict using snake_case or camelCase keys."""
        return cls(
            txid=data['txid'],
            vout=int(data['vout']),
            script_pubkey=data.get('script_pubkey', data.get('scriptPubKey')),
            value=int(data['value']),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'txid': self.txid,
            'vout': self.vout,
            'script_pubkey': self.script_pubkey,
            'value': self.value,
        }


class SelectionPolicy(str, Enum):
    """Order in which candidate UTXOs are considered."""
    LARGEST_FIRST = "largest_first"
    AS_SUPPLIED = "as_supplied"


@dataclass(frozen=True)
class UTXOSelection:
    """Selected inputs, in selection order, and the estimated fee."""
    selected: Tuple[UTXO, ...]
    fee: int

    @property
    def total_value(self) -> int:
        return sum(utxo.value for utxo in self.selected)


def _has_valid_script(utxo: UTXO) -> bool:
    try:
        return is_parsable_script(utxo.script)
    except ValueError:
        return False


def get_staking_tx_input_utxos_and_fees(
    utxos: Sequence[UTXO],
    amount: int,
    fee_rate: float,
    output_scripts: Sequence[bytes],
    policy: SelectionPolicy = SelectionPolicy.LARGEST_FIRST,
) -> UTXOSelection:
    """
    Select UTXOs covering ``amount`` plus the fee of the resulting transaction.

    UTXOs whose script cannot be parsed are ignored. After each added input
    the fee is re-estimated; if the residual would exceed the dust limit the
    cost of a change output is included as well.

    Args:
        utxos: Candidate UTXOs
        amount: Amount to fund, in satoshis
        fee_rate: Fee rate in sat/vB
        output_scripts: Scripts of the outputs other than change
        policy: Order in which candidates are accumulated

    Returns:
        UTXOSelection with the selected UTXOs and the fee

    Raises:
        InsufficientFundsError: If all candidates together cannot cover amount plus fee
    """
    if fee_rate <= 0:
        raise InvalidTransactionInputError("Fee rate must be greater than 0")
    if amount <= 0:
        raise InvalidTransactionInputError("Amount must be greater than 0")

    candidates = [utxo for utxo in utxos if _has_valid_script(utxo)]
    if not candidates:
        raise InsufficientFundsError(
            amount, 0, "Insufficient funds: no valid UTXOs available for staking"
        )
    if policy == SelectionPolicy.LARGEST_FIRST:
        # sorted() is stable, equal values keep their supplied order
        candidates = sorted(candidates, key=lambda utxo: utxo.value, reverse=True)

    selected: List[UTXO] = []
    accumulated = 0
    fee = 0
    for utxo in candidates:
        selected.append(utxo)
        accumulated += utxo.value

        size = estimate_transaction_size((u.script for u in selected), output_scripts)
        fee = estimate_fee(size, fee_rate)
        if accumulated - (amount + fee) > BTC_DUST_SAT:
            fee += size_fee(get_estimated_change_output_size(), fee_rate)
        if accumulated >= amount + fee:
            break

    if accumulated < amount + fee:
        raise InsufficientFundsError(amount + fee, accumulated)

    logger.debug(
        f"Selected {len(selected)} of {len(candidates)} UTXOs "
        f"({accumulated} sat) for {amount} sat at {fee_rate} sat/vB, fee {fee}"
    )
    return UTXOSelection(tuple(selected), fee)
