"""
BTC Staking - Transaction Builders

Builds the unsigned transactions of a staking position:

- staking: funds the staking output from wallet UTXOs, with change
- unbonding: moves the staking output into the unbonding output early
- slashing: splits a staking or unbonding output between the slashing
  script and a timelocked change output back to the staker
- withdrawal: sweeps a matured timelock leaf to a wallet address

Every builder returns a BuiltTransaction carrying the transaction and the
fee it pays. Script-path spends also carry the leaf script and control block
a signer needs to complete the witness.
"""

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Sequence

from crypto.addresses import address_to_output_script
from params.constants import BTC_DUST_SAT, MIN_UNBONDING_OUTPUT_VALUE
from scripts.opcodes import iter_script, read_script_number
from scripts.staking_scripts import StakingScripts
from scripts.taproot import TaprootOutput, TaprootOutputBuilder
from staking.outputs import (
    derive_slashing_change_output_info,
    derive_staking_output_info,
    derive_unbonding_output_info,
)
from .exceptions import DustOutputError, InsufficientFundsError, InvalidTransactionInputError
from .fees import get_withdraw_tx_fee
from .models import NON_RBF_SEQUENCE, Transaction, TxInput, TxOutput
from .utxo import UTXO, SelectionPolicy, get_staking_tx_input_utxos_and_fees


logger = logging.getLogger(__name__)

# nLockTime values at or above this are timestamps, not heights
BTC_LOCKTIME_HEIGHT_TIME_CUTOFF = 500000000

SPEND_FROM_STAKING = "staking"
SPEND_FROM_UNBONDING = "unbonding"


@dataclass(frozen=True)
class ScriptPathSpend:
    """What a signer needs to spend a Taproot output through one leaf."""
    leaf_script: bytes
    control_block: bytes
    prevout_value: int
    prevout_script: bytes


@dataclass(frozen=True)
class BuiltTransaction:
    """An unsigned transaction and the fee it pays."""
    transaction: Transaction
    fee: int
    spend_info: Optional[ScriptPathSpend] = None

    def to_dict(self) -> dict:
        result = {
            'transaction': self.transaction.to_dict(),
            'fee': self.fee,
        }
        if self.spend_info is not None:
            result['spend_info'] = {
                'leaf_script': self.spend_info.leaf_script.hex(),
                'control_block': self.spend_info.control_block.hex(),
                'prevout_value': self.spend_info.prevout_value,
                'prevout_script': self.spend_info.prevout_script.hex(),
            }
        return result


def _check_output_index(transaction: Transaction, output_index: int) -> TxOutput:
    if output_index < 0:
        raise InvalidTransactionInputError("Output index must be bigger or equal to 0")
    if output_index >= len(transaction.outputs):
        raise InvalidTransactionInputError(
            f"Output index {output_index} out of range ({len(transaction.outputs)} outputs)"
        )
    return transaction.outputs[output_index]


def _check_prevout(prevout: TxOutput, expected: TaprootOutput) -> None:
    if prevout.script != expected.output_script:
        raise InvalidTransactionInputError(
            f"Output script {prevout.script.hex()} does not match the expected "
            f"output {expected.output_script.hex()}"
        )


def _script_path_spend(output: TaprootOutput, leaf_script: bytes, prevout: TxOutput) -> ScriptPathSpend:
    return ScriptPathSpend(
        leaf_script=leaf_script,
        control_block=output.control_block(leaf_script),
        prevout_value=prevout.value,
        prevout_script=prevout.script,
    )


def staking_transaction(
    scripts: StakingScripts,
    amount: int,
    change_address: str,
    utxos: Sequence[UTXO],
    network: str,
    fee_rate: float,
    lock_height: Optional[int] = None,
    policy: SelectionPolicy = SelectionPolicy.LARGEST_FIRST,
    output_builder: Optional[TaprootOutputBuilder] = None,
) -> BuiltTransaction:
    """
    Build the unsigned staking transaction.

    Inputs are the selected UTXOs in selection order. Outputs are the
    staking output followed by a change output when the change is above
    the dust limit; a smaller residual is left to the miner and reported as
    part of the fee.

    Args:
        scripts: Staking script set
        amount: Staked amount in satoshis
        change_address: Address receiving the change
        utxos: Candidate UTXOs
        network: Network name
        fee_rate: Fee rate in sat/vB
        lock_height: Optional absolute lock height
        policy: UTXO selection order
        output_builder: Taproot output builder override

    Returns:
        BuiltTransaction where sum(inputs) == amount + fee + change

    Raises:
        InvalidTransactionInputError: On a non-positive amount or fee rate, or a bad lock height
        InsufficientFundsError: If the UTXOs cannot cover amount plus fee
        AddressDerivationError: If the staking output cannot be built
        AddressError: If the change address is invalid for the network
    """
    if amount <= 0:
        raise InvalidTransactionInputError("Amount must be greater than 0")
    if fee_rate <= 0:
        raise InvalidTransactionInputError("Fee rate must be greater than 0")
    if lock_height is not None and not 0 <= lock_height < BTC_LOCKTIME_HEIGHT_TIME_CUTOFF:
        raise InvalidTransactionInputError("Invalid lock height")

    staking_output = derive_staking_output_info(scripts, network, output_builder)
    change_script = address_to_output_script(change_address, network)

    selection = get_staking_tx_input_utxos_and_fees(
        utxos, amount, fee_rate, [staking_output.output_script], policy
    )

    inputs = tuple(TxInput(utxo.txid, utxo.vout, NON_RBF_SEQUENCE) for utxo in selection.selected)
    outputs = [TxOutput(amount, staking_output.output_script)]

    fee = selection.fee
    change = selection.total_value - (amount + fee)
    if change > BTC_DUST_SAT:
        outputs.append(TxOutput(change, change_script))
    else:
        fee = selection.total_value - amount

    transaction = Transaction(inputs, tuple(outputs), locktime=lock_height or 0)
    logger.info(
        f"Built staking transaction {transaction.txid}: {amount} sat to "
        f"{staking_output.address}, fee {fee} sat, {len(inputs)} inputs"
    )
    return BuiltTransaction(transaction, fee)


def unbonding_transaction(
    scripts: StakingScripts,
    staking_tx: Transaction,
    unbonding_fee: int,
    network: str,
    output_index: int = 0,
    output_builder: Optional[TaprootOutputBuilder] = None,
) -> BuiltTransaction:
    """
    Build the unsigned unbonding transaction spending the staking output.

    Args:
        scripts: Staking script set
        staking_tx: Staking transaction
        unbonding_fee: Fee in satoshis, fixed by the staking parameters
        network: Network name
        output_index: Index of the staking output in staking_tx
        output_builder: Taproot output builder override

    Returns:
        BuiltTransaction spending the unbonding leaf

    Raises:
        InvalidTransactionInputError: On a bad fee or output index
        DustOutputError: If the unbonding output is below the minimum value
    """
    if unbonding_fee <= 0:
        raise InvalidTransactionInputError("Unbonding fee must be bigger than 0")
    prevout = _check_output_index(staking_tx, output_index)

    staking_output = derive_staking_output_info(scripts, network, output_builder)
    _check_prevout(prevout, staking_output)
    unbonding_output = derive_unbonding_output_info(scripts, network, output_builder)

    value = prevout.value - unbonding_fee
    if value < MIN_UNBONDING_OUTPUT_VALUE:
        raise DustOutputError("Output value is less than minimum unbonding output value")

    transaction = Transaction(
        inputs=(TxInput(staking_tx.txid, output_index, NON_RBF_SEQUENCE),),
        outputs=(TxOutput(value, unbonding_output.output_script),),
    )
    logger.info(f"Built unbonding transaction {transaction.txid} for staking tx {staking_tx.txid}")
    return BuiltTransaction(
        transaction,
        unbonding_fee,
        _script_path_spend(staking_output, scripts.unbonding_script, prevout),
    )


def slashing_transaction(
    scripts: StakingScripts,
    transaction: Transaction,
    slashing_pk_script: bytes,
    slashing_rate: float,
    min_slashing_tx_fee: int,
    network: str,
    output_index: int = 0,
    spend_from: str = SPEND_FROM_STAKING,
    output_builder: Optional[TaprootOutputBuilder] = None,
) -> BuiltTransaction:
    """
    Build an unsigned slashing transaction.

    Output 0 pays the slashed share to the slashing script, output 1 returns
    the rest minus the fee to the staker under the unbonding timelock.

    Args:
        scripts: Staking script set
        transaction: Staking or unbonding transaction being slashed
        slashing_pk_script: Output script receiving the slashed funds
        slashing_rate: Slashed fraction, strictly between 0 and 1
        min_slashing_tx_fee: Fee of the slashing transaction in satoshis
        network: Network name
        output_index: Index of the spent output
        spend_from: SPEND_FROM_STAKING or SPEND_FROM_UNBONDING
        output_builder: Taproot output builder override

    Returns:
        BuiltTransaction spending the slashing leaf

    Raises:
        InvalidTransactionInputError: On a bad rate, fee, output index or source
        DustOutputError: If either output would be dust
    """
    if not 0 < slashing_rate < 1:
        raise InvalidTransactionInputError("Slashing rate must be between 0 and 1")
    if not isinstance(min_slashing_tx_fee, int) or min_slashing_tx_fee <= 0:
        raise InvalidTransactionInputError("Minimum fee must be a positive integer")
    if spend_from == SPEND_FROM_STAKING:
        source_output = derive_staking_output_info(scripts, network, output_builder)
    elif spend_from == SPEND_FROM_UNBONDING:
        source_output = derive_unbonding_output_info(scripts, network, output_builder)
    else:
        raise InvalidTransactionInputError(f"Unknown slashing source: {spend_from}")

    prevout = _check_output_index(transaction, output_index)
    _check_prevout(prevout, source_output)

    slashing_amount = int(
        (Decimal(prevout.value) * Decimal(str(slashing_rate))).to_integral_value(rounding=ROUND_HALF_UP)
    )
    if slashing_amount <= BTC_DUST_SAT:
        raise DustOutputError("Slashing amount is less than dust limit")

    user_funds = prevout.value - slashing_amount - min_slashing_tx_fee
    if user_funds <= BTC_DUST_SAT:
        raise DustOutputError("User funds are less than dust limit")

    change_output = derive_slashing_change_output_info(scripts, network, output_builder)
    slashing_tx = Transaction(
        inputs=(TxInput(transaction.txid, output_index, NON_RBF_SEQUENCE),),
        outputs=(
            TxOutput(slashing_amount, slashing_pk_script),
            TxOutput(user_funds, change_output.output_script),
        ),
    )
    logger.info(
        f"Built slashing transaction {slashing_tx.txid} from {spend_from} tx "
        f"{transaction.txid}: {slashing_amount} sat slashed"
    )
    return BuiltTransaction(
        slashing_tx,
        min_slashing_tx_fee,
        _script_path_spend(source_output, scripts.slashing_script, prevout),
    )


def _leaf_timelock(leaf_script: bytes) -> int:
    # <pk> OP_CHECKSIGVERIFY <timelock> OP_CHECKSEQUENCEVERIFY
    elements = list(iter_script(leaf_script))
    if len(elements) != 4:
        raise InvalidTransactionInputError("Leaf script is not a timelock script")
    return read_script_number(*elements[2])


def withdrawal_transaction(
    source_output: TaprootOutput,
    leaf_script: bytes,
    transaction: Transaction,
    withdrawal_address: str,
    network: str,
    fee_rate: float,
    output_index: int = 0,
) -> BuiltTransaction:
    """
    Build an unsigned transaction sweeping a timelocked leaf.

    The input sequence is set to the leaf's relative timelock so the
    transaction becomes valid once the lock has matured.

    Args:
        source_output: Taproot output being spent
        leaf_script: Timelock leaf of source_output
        transaction: Transaction holding source_output
        withdrawal_address: Address receiving the funds
        network: Network name
        fee_rate: Fee rate in sat/vB
        output_index: Index of the spent output

    Raises:
        InvalidTransactionInputError: On a bad fee rate or output index
        InsufficientFundsError: If the output cannot pay the fee
        DustOutputError: If what is left after the fee is dust
    """
    if fee_rate <= 0:
        raise InvalidTransactionInputError("Withdrawal feeRate must be bigger than 0")
    prevout = _check_output_index(transaction, output_index)
    _check_prevout(prevout, source_output)

    fee = get_withdraw_tx_fee(fee_rate)
    value = prevout.value - fee
    if value < 0:
        raise InsufficientFundsError(
            fee, prevout.value, "Not enough funds to cover the fee for withdrawal transaction"
        )
    if value < BTC_DUST_SAT:
        raise DustOutputError("Output value is less than dust limit")

    withdrawal = Transaction(
        inputs=(TxInput(transaction.txid, output_index, _leaf_timelock(leaf_script)),),
        outputs=(TxOutput(value, address_to_output_script(withdrawal_address, network)),),
    )
    logger.info(f"Built withdrawal transaction {withdrawal.txid}: {value} sat to {withdrawal_address}")
    return BuiltTransaction(withdrawal, fee, _script_path_spend(source_output, leaf_script, prevout))


def withdraw_timelock_unbonded_transaction(
    scripts: StakingScripts,
    staking_tx: Transaction,
    withdrawal_address: str,
    network: str,
    fee_rate: float,
    output_index: int = 0,
    output_builder: Optional[TaprootOutputBuilder] = None,
) -> BuiltTransaction:
    """Withdraw a staking output whose staking timelock has expired."""
    return withdrawal_transaction(
        derive_staking_output_info(scripts, network, output_builder),
        scripts.timelock_script,
        staking_tx,
        withdrawal_address,
        network,
        fee_rate,
        output_index,
    )


def withdraw_early_unbonded_transaction(
    scripts: StakingScripts,
    unbonding_tx: Transaction,
    withdrawal_address: str,
    network: str,
    fee_rate: float,
    output_index: int = 0,
    output_builder: Optional[TaprootOutputBuilder] = None,
) -> BuiltTransaction:
    """Withdraw an unbonding output whose unbonding timelock has expired."""
    return withdrawal_transaction(
        derive_unbonding_output_info(scripts, network, output_builder),
        scripts.unbonding_timelock_script,
        unbonding_tx,
        withdrawal_address,
        network,
        fee_rate,
        output_index,
    )
