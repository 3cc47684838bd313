"""
BTC Staking - Transaction Module

Unsigned transaction models, fee estimation, UTXO selection and the staking
transaction builders. Builders live in transactions.builder.
"""

from .exceptions import (
    TransactionError,
    InvalidTransactionInputError,
    DustOutputError,
    InsufficientFundsError,
)
from .models import NON_RBF_SEQUENCE, TRANSACTION_VERSION, Transaction, TxInput, TxOutput
from .utxo import UTXO, SelectionPolicy, UTXOSelection, get_staking_tx_input_utxos_and_fees

__all__ = [
    'TransactionError',
    'InvalidTransactionInputError',
    'DustOutputError',
    'InsufficientFundsError',
    'NON_RBF_SEQUENCE',
    'TRANSACTION_VERSION',
    'Transaction',
    'TxInput',
    'TxOutput',
    'UTXO',
    'SelectionPolicy',
    'UTXOSelection',
    'get_staking_tx_input_utxos_and_fees',
]
