"""
BTC Staking - Transaction Exceptions

This module defines custom exceptions for UTXO selection and transaction assembly.
"""


class TransactionError(Exception):
    """Base exception for transaction-related errors."""
    pass


class InvalidTransactionInputError(TransactionError):
    """Exception raised for invalid builder inputs (fee rate, output index, lock height)."""
    pass


class DustOutputError(TransactionError):
    """Exception raised when an output would fall at or below the dust limit."""
    pass


class InsufficientFundsError(TransactionError):
    """Exception raised when transaction inputs are insufficient to cover outputs and fees."""

    def __init__(self, required: int, available: int, message: str = None):
        self.required = required
        self.available = available
        self.shortfall = required - available
        if message is None:
            message = (
                f"Insufficient funds: required {required} satoshis, available {available} "
                f"satoshis (short by {self.shortfall})"
            )
        super().__init__(message)
