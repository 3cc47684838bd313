"""
BTC Staking - Fee Estimation

Virtual-size estimates for staking related transactions. Sizes are upper
bounds in vbytes: inputs are sized by the script type they spend, every
non OP_RETURN output is costed as the largest non-legacy output.
"""

from decimal import ROUND_CEILING, Decimal
from typing import Iterable

from scripts.opcodes import ScriptOpcode


# Estimated vsize of a key-path Taproot input
P2TR_INPUT_SIZE = 58
# Estimated vsize of a P2WPKH input
P2WPKH_INPUT_SIZE = 68
# Conservative vsize for inputs of any other script type
DEFAULT_INPUT_SIZE = 180
# Largest non-legacy output (P2TR / P2WSH)
MAX_NON_LEGACY_OUTPUT_SIZE = 43
# Version, locktime, counts and segwit marker
TX_BUFFER_SIZE_OVERHEAD = 11
# Extra size allowance for withdrawal transactions
WITHDRAW_TX_BUFFER_SIZE = 17
# OP_RETURN output: 8-byte value plus 1-byte script length
OP_RETURN_OUTPUT_VALUE_SIZE = 8
OP_RETURN_VALUE_SERIALIZE_SIZE = 1

# Wallets round low fee rates unpredictably; pad the fee below this rate.
WALLET_RELAY_FEE_RATE_THRESHOLD = 2
LOW_RATE_ESTIMATION_ACCURACY_BUFFER = 30


def is_p2wpkh_script(script: bytes) -> bool:
    return len(script) == 22 and script[0] == ScriptOpcode.OP_0 and script[1] == 0x14


def is_p2tr_script(script: bytes) -> bool:
    return len(script) == 34 and script[0] == ScriptOpcode.OP_1 and script[1] == 0x20


def is_op_return_script(script: bytes) -> bool:
    return len(script) > 0 and script[0] == ScriptOpcode.OP_RETURN


def get_input_size_by_script(script: bytes) -> int:
    """Estimated vsize of an input spending ``script``."""
    if is_p2wpkh_script(script):
        return P2WPKH_INPUT_SIZE
    if is_p2tr_script(script):
        return P2TR_INPUT_SIZE
    return DEFAULT_INPUT_SIZE


def get_output_size(script: bytes) -> int:
    """Estimated vsize of an output paying to ``script``."""
    if is_op_return_script(script):
        return len(script) + OP_RETURN_OUTPUT_VALUE_SIZE + OP_RETURN_VALUE_SERIALIZE_SIZE
    return MAX_NON_LEGACY_OUTPUT_SIZE


def get_estimated_change_output_size() -> int:
    return MAX_NON_LEGACY_OUTPUT_SIZE


def estimate_transaction_size(input_scripts: Iterable[bytes], output_scripts: Iterable[bytes]) -> int:
    """
    Estimate the vsize of a transaction.

    Args:
        input_scripts: Output scripts of the UTXOs being spent
        output_scripts: Scripts of the outputs being created

    Returns:
        Estimated size in vbytes
    """
    input_size = sum(get_input_size_by_script(script) for script in input_scripts)
    output_size = sum(get_output_size(script) for script in output_scripts)
    return input_size + output_size + TX_BUFFER_SIZE_OVERHEAD


def rate_based_tx_buffer_fee(fee_rate: float) -> int:
    """Padding added to fees at low fee rates."""
    return LOW_RATE_ESTIMATION_ACCURACY_BUFFER if fee_rate <= WALLET_RELAY_FEE_RATE_THRESHOLD else 0


def size_fee(size: int, fee_rate: float) -> int:
    """
    Fee for ``size`` vbytes at ``fee_rate`` sat/vB, rounded up to whole satoshis.

    The rate is taken at its decimal value: 100 vB at 1.1 sat/vB is 110 sat.
    """
    fee = Decimal(size) * Decimal(str(fee_rate))
    return int(fee.to_integral_value(rounding=ROUND_CEILING))


def estimate_fee(size: int, fee_rate: float) -> int:
    """Fee for a transaction of ``size`` vbytes including the low-rate buffer."""
    return size_fee(size, fee_rate) + rate_based_tx_buffer_fee(fee_rate)


def get_withdraw_tx_fee(fee_rate: float) -> int:
    """Fee of a single-input, single-output timelock withdrawal."""
    size = (
        P2TR_INPUT_SIZE
        + get_estimated_change_output_size()
        + TX_BUFFER_SIZE_OVERHEAD
        + WITHDRAW_TX_BUFFER_SIZE
    )
    return estimate_fee(size, fee_rate)
