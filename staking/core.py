"""
BTC Staking - Staking Orchestrator

The Staking class binds a staker, a finality provider, the protocol
parameters and a staking timelock, and builds every transaction of the
position from them. Parameters are validated against the timelock once at
construction; each builder then only checks its own request values.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from crypto.addresses import (
    get_network,
    is_valid_bitcoin_address,
    native_segwit_address,
    taproot_key_path_address,
)
from crypto.exceptions import AddressError, InvalidPublicKeyError
from crypto.keys import (
    COMPRESSED_PUBKEY_SIZE,
    get_public_key_no_coord,
    is_valid_no_coord_public_key,
    lift_x,
)
from params.exceptions import InvalidStakingParametersError
from params.schema import SlashingParams, StakingParams
from params.validation import validate_staking_amount, validate_staking_params
from scripts.staking_scripts import StakingScriptData, StakingScripts
from scripts.taproot import TaprootOutputBuilder
from transactions.builder import (
    SPEND_FROM_STAKING,
    SPEND_FROM_UNBONDING,
    BuiltTransaction,
    slashing_transaction,
    staking_transaction,
    unbonding_transaction,
    withdraw_early_unbonded_transaction,
    withdraw_timelock_unbonded_transaction,
)
from transactions.models import Transaction
from transactions.utxo import UTXO, SelectionPolicy
from .outputs import derive_staking_output_address


ADDRESS_TYPE_TAPROOT = "taproot"
ADDRESS_TYPE_NATIVE_SEGWIT = "native_segwit"


@dataclass(frozen=True)
class StakerInfo:
    """
    Staker identity used for scripts, change and withdrawals.

    Attributes:
        address: Staker wallet address, receives change
        public_key_no_coord_hex: Staker x-only key (hex)
        public_key_with_coord_hex: Staker compressed key (hex), when known
    """
    address: str
    public_key_no_coord_hex: str
    public_key_with_coord_hex: Optional[str] = None

    @classmethod
    def from_public_key(cls, public_key_hex: str, network: str,
                        address_type: str = ADDRESS_TYPE_TAPROOT) -> 'StakerInfo':
        """
        Build staker info from a wallet public key.

        An x-only input is taken to be the even-y point.

        Args:
            public_key_hex: x-only or compressed key (hex)
            network: Network name
            address_type: ADDRESS_TYPE_TAPROOT (BIP86) or ADDRESS_TYPE_NATIVE_SEGWIT

        Raises:
            InvalidPublicKeyError: If the key is invalid
            ValueError: On an unknown address type
        """
        no_coord = get_public_key_no_coord(public_key_hex)
        if len(public_key_hex) == 2 * COMPRESSED_PUBKEY_SIZE:
            with_coord = public_key_hex.lower()
        else:
            with_coord = lift_x(bytes.fromhex(no_coord)).hex()

        if address_type == ADDRESS_TYPE_TAPROOT:
            address = taproot_key_path_address(no_coord, network)
        elif address_type == ADDRESS_TYPE_NATIVE_SEGWIT:
            address = native_segwit_address(with_coord, network)
        else:
            raise ValueError(f"Unsupported address type: {address_type}")
        return cls(address=address, public_key_no_coord_hex=no_coord, public_key_with_coord_hex=with_coord)


class Staking:
    """
    Builds the transactions of one staking position.

    Args:
        network: Network name (bitcoin, testnet, signet, regtest)
        staker_info: Staker address and key
        params: Protocol staking parameters
        finality_provider_pk_no_coord_hex: Finality provider x-only key (hex)
        timelock: Staking timelock in blocks
        output_builder: Taproot output builder override
    """

    def __init__(self, network: str, staker_info: StakerInfo, params: StakingParams,
                 finality_provider_pk_no_coord_hex: str, timelock: int,
                 output_builder: Optional[TaprootOutputBuilder] = None):
        self.logger = logging.getLogger(__name__)

        self.network = get_network(network).name
        if not is_valid_bitcoin_address(staker_info.address, self.network):
            raise AddressError("Invalid staker bitcoin address")
        if not is_valid_no_coord_public_key(staker_info.public_key_no_coord_hex):
            raise InvalidPublicKeyError("Invalid staker public key")
        if not is_valid_no_coord_public_key(finality_provider_pk_no_coord_hex):
            raise InvalidPublicKeyError("Invalid finality provider public key")

        validate_staking_params(params, timelock)

        self.staker_info = staker_info
        self.params = params
        self.finality_provider_pk_no_coord_hex = finality_provider_pk_no_coord_hex
        self.timelock = timelock
        self.output_builder = output_builder

    def build_scripts(self) -> StakingScripts:
        """
        Build the staking scripts of this position.

        Raises:
            ScriptBuildError: If the key material or timelocks are invalid
        """
        return StakingScriptData(
            staker_key=self.staker_info.public_key_no_coord_hex,
            finality_provider_keys=[self.finality_provider_pk_no_coord_hex],
            covenant_keys=self.params.covenant_no_coord_pks,
            covenant_threshold=self.params.covenant_quorum,
            staking_timelock=self.timelock,
            unbonding_timelock=self.params.unbonding_time,
        ).build_scripts()

    def staking_address(self) -> str:
        """Address of the staking output."""
        return derive_staking_output_address(self.build_scripts(), self.network, self.output_builder)

    def _slashing_params(self) -> SlashingParams:
        if self.params.slashing is None:
            raise InvalidStakingParametersError("Slashing parameters are missing")
        return self.params.slashing

    def create_staking_transaction(self, amount: int, utxos: Sequence[UTXO], fee_rate: float,
                                   lock_height: Optional[int] = None,
                                   policy: SelectionPolicy = SelectionPolicy.LARGEST_FIRST
                                   ) -> BuiltTransaction:
        """
        Build the unsigned staking transaction, with change to the staker address.

        Args:
            amount: Staked amount in satoshis
            utxos: Candidate UTXOs of the staker
            fee_rate: Fee rate in sat/vB
            lock_height: Optional absolute lock height
            policy: UTXO selection order

        Returns:
            BuiltTransaction with the transaction and its fee

        Raises:
            AmountOutOfRangeError: If amount is outside the parameter bounds
            InsufficientFundsError: If the UTXOs cannot cover amount plus fee
        """
        validate_staking_params(self.params, self.timelock)
        validate_staking_amount(amount, self.params)

        built = staking_transaction(
            self.build_scripts(),
            amount,
            self.staker_info.address,
            utxos,
            self.network,
            fee_rate,
            lock_height=lock_height,
            policy=policy,
            output_builder=self.output_builder,
        )
        self.logger.info(f"Staking {amount} sat for {self.timelock} blocks, fee {built.fee} sat")
        return built

    def create_unbonding_transaction(self, staking_tx: Transaction,
                                     staking_output_index: int = 0) -> BuiltTransaction:
        """Build the unbonding transaction paying the parameter unbonding fee."""
        return unbonding_transaction(
            self.build_scripts(),
            staking_tx,
            self.params.unbonding_fee_sat,
            self.network,
            staking_output_index,
            self.output_builder,
        )

    def create_slashing_transaction(self, staking_tx: Transaction,
                                    staking_output_index: int = 0) -> BuiltTransaction:
        """Build the transaction slashing the staking output."""
        slashing = self._slashing_params()
        return slashing_transaction(
            self.build_scripts(),
            staking_tx,
            slashing.slashing_pk_script,
            slashing.slashing_rate,
            slashing.min_slashing_tx_fee_sat,
            self.network,
            staking_output_index,
            SPEND_FROM_STAKING,
            self.output_builder,
        )

    def create_unbonding_slashing_transaction(self, unbonding_tx: Transaction) -> BuiltTransaction:
        """Build the transaction slashing the output of an unbonding transaction."""
        slashing = self._slashing_params()
        return slashing_transaction(
            self.build_scripts(),
            unbonding_tx,
            slashing.slashing_pk_script,
            slashing.slashing_rate,
            slashing.min_slashing_tx_fee_sat,
            self.network,
            0,
            SPEND_FROM_UNBONDING,
            self.output_builder,
        )

    def create_withdraw_timelock_unbonded_transaction(self, staking_tx: Transaction, fee_rate: float,
                                                      staking_output_index: int = 0) -> BuiltTransaction:
        """Withdraw the staking output to the staker address after the staking timelock."""
        return withdraw_timelock_unbonded_transaction(
            self.build_scripts(),
            staking_tx,
            self.staker_info.address,
            self.network,
            fee_rate,
            staking_output_index,
            self.output_builder,
        )

    def create_withdraw_early_unbonded_transaction(self, unbonding_tx: Transaction,
                                                   fee_rate: float) -> BuiltTransaction:
        """Withdraw the unbonding output to the staker address after the unbonding time."""
        return withdraw_early_unbonded_transaction(
            self.build_scripts(),
            unbonding_tx,
            self.staker_info.address,
            self.network,
            fee_rate,
            0,
            self.output_builder,
        )
