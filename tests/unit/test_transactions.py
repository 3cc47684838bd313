"""
Tests for the Unsigned Transaction Model and Transaction Builders

Covers the staking, unbonding, slashing and withdrawal builders and the
legacy wire serialization of the transactions they produce.
"""

import pytest

from crypto.exceptions import AddressError
from scripts.staking_scripts import StakingScriptData
from staking.outputs import (
    derive_slashing_change_output_info,
    derive_staking_output_info,
    derive_unbonding_output_info,
)
from transactions.builder import (
    SPEND_FROM_STAKING,
    SPEND_FROM_UNBONDING,
    slashing_transaction,
    staking_transaction,
    unbonding_transaction,
    withdraw_early_unbonded_transaction,
    withdraw_timelock_unbonded_transaction,
)
from transactions.exceptions import (
    DustOutputError,
    InsufficientFundsError,
    InvalidTransactionInputError,
)
from transactions.models import NON_RBF_SEQUENCE, Transaction, TxInput, TxOutput
from transactions.utils import double_sha256, serialize_compact_size, serialize_outpoint


STAKING_TIMELOCK = 150
UNBONDING_TIME = 101

# BIP350 invalid vector: witness v1 program with a bech32 (v0) checksum
SIGNET_V1_BECH32_ADDRESS = "tb1p0xlxvlhemja6c4dqv22uapctqupfhlxm9h8z3k2e72q4k9hcz7vqqzj3dz"


@pytest.fixture
def scripts(staker_pk, finality_provider_pk, covenant_pks):
    return StakingScriptData(
        staker_pk, [finality_provider_pk], covenant_pks, 2, STAKING_TIMELOCK, UNBONDING_TIME
    ).build_scripts()


@pytest.fixture
def staking_output(scripts, network):
    return derive_staking_output_info(scripts, network)


@pytest.fixture
def unbonding_output(scripts, network):
    return derive_unbonding_output_info(scripts, network)


@pytest.fixture
def staking_tx(scripts, staker_info, make_utxo, network):
    utxos = [make_utxo(50_000, 0), make_utxo(200_000, 1), make_utxo(10_000, 2)]
    return staking_transaction(scripts, 100_000, staker_info.address, utxos, network, 5).transaction


@pytest.fixture
def unbonding_tx(scripts, staking_tx, network):
    return unbonding_transaction(scripts, staking_tx, 1000, network).transaction


def funding_tx(value: int, script: bytes) -> Transaction:
    """A transaction paying value to script, for spending tests."""
    return Transaction(
        inputs=(TxInput("aa" * 32, 0),),
        outputs=(TxOutput(value, script),),
    )


class TestTransactionModel:
    """Test serialization of unsigned transactions."""

    def test_serialize(self):
        script = b'\x00\x14' + b'\x22' * 20
        tx = Transaction(
            inputs=(TxInput("00" * 31 + "01", 0),),
            outputs=(TxOutput(1000, script),),
        )
        expected = (
            "02000000"
            + "01" + "01" + "00" * 31 + "00000000" + "00" + "ffffffff"
            + "01" + "e803000000000000" + "16" + script.hex()
            + "00000000"
        )
        assert tx.to_hex() == expected

    def test_txid_is_reversed_double_sha(self):
        tx = funding_tx(5000, b'\x51\x20' + b'\x11' * 32)
        assert tx.txid == double_sha256(tx.serialize())[::-1].hex()

    def test_locktime_and_sequence(self):
        tx = Transaction(
            inputs=(TxInput("ab" * 32, 3, 150),),
            outputs=(TxOutput(1, b'\x6a'),),
            locktime=800000,
        )
        raw = tx.serialize()
        assert raw[-4:] == (800000).to_bytes(4, 'little')
        assert (150).to_bytes(4, 'little') in raw

    def test_outpoint(self):
        assert serialize_outpoint("00" * 31 + "ff", 1) == b'\xff' + b'\x00' * 31 + b'\x01\x00\x00\x00'

    def test_compact_size(self):
        assert serialize_compact_size(0xfc) == b'\xfc'
        assert serialize_compact_size(0xfd) == b'\xfd\xfd\x00'
        assert serialize_compact_size(0x10000) == b'\xfe\x00\x00\x01\x00'

    def test_to_dict(self):
        tx = funding_tx(5000, b'\x6a')
        data = tx.to_dict()
        assert data['txid'] == tx.txid
        assert data['outputs'] == [{'value': 5000, 'script_pubkey': '6a'}]
        assert data['hex'] == tx.to_hex()


class TestStakingTransaction:
    """Test the staking transaction builder."""

    def test_outputs_and_fee(self, scripts, staker_info, staker_script, make_utxo, network, staking_output):
        utxos = [make_utxo(50_000, 0), make_utxo(200_000, 1), make_utxo(10_000, 2)]
        built = staking_transaction(scripts, 100_000, staker_info.address, utxos, network, 5)
        tx = built.transaction

        assert tx.version == 2
        assert tx.locktime == 0
        assert tx.inputs == (TxInput(utxos[1].txid, utxos[1].vout, NON_RBF_SEQUENCE),)
        assert tx.outputs[0] == TxOutput(100_000, staking_output.output_script)
        assert tx.outputs[1] == TxOutput(99_225, staker_script)
        assert built.fee == 775
        assert built.spend_info is None

    def test_value_conservation(self, scripts, staker_info, network, data_generator, staker_pk):
        for _ in range(10):
            utxos = data_generator.generate_utxos(staker_pk, 5, 10_000, 500_000)
            amount = data_generator.random.randint(10_000, sum(u.value for u in utxos) // 2)
            built = staking_transaction(scripts, amount, staker_info.address, utxos, network, 3)

            spent = {(u.txid, u.vout): u.value for u in utxos}
            total_in = sum(spent[(i.txid, i.vout)] for i in built.transaction.inputs)
            assert total_in == built.transaction.total_output_value + built.fee

    def test_dust_change_folded_into_fee(self, scripts, staker_info, make_utxo, network):
        # 112 vbytes at 1 sat/vB plus the 30 sat low rate buffer, 300 sat left over
        utxo = make_utxo(100_000 + 142 + 300)
        built = staking_transaction(scripts, 100_000, staker_info.address, [utxo], network, 1)

        assert len(built.transaction.outputs) == 1
        assert built.fee == 442

    def test_inputs_keep_selection_order(self, scripts, staker_info, make_utxo, network):
        from transactions.utxo import SelectionPolicy
        utxos = [make_utxo(50_000, 0), make_utxo(200_000, 1)]
        built = staking_transaction(
            scripts, 100_000, staker_info.address, utxos, network, 1,
            policy=SelectionPolicy.AS_SUPPLIED,
        )
        assert [i.txid for i in built.transaction.inputs] == [utxos[0].txid, utxos[1].txid]

    def test_lock_height(self, scripts, staker_info, make_utxo, network):
        utxos = [make_utxo(200_000)]
        built = staking_transaction(scripts, 100_000, staker_info.address, utxos, network, 1, lock_height=800_000)
        assert built.transaction.locktime == 800_000

        with pytest.raises(InvalidTransactionInputError, match="Invalid lock height"):
            staking_transaction(scripts, 100_000, staker_info.address, utxos, network, 1, lock_height=500_000_000)

    def test_invalid_amount_and_rate(self, scripts, staker_info, make_utxo, network):
        utxos = [make_utxo(200_000)]
        with pytest.raises(InvalidTransactionInputError):
            staking_transaction(scripts, 0, staker_info.address, utxos, network, 1)
        with pytest.raises(InvalidTransactionInputError):
            staking_transaction(scripts, 1000, staker_info.address, utxos, network, 0)

    def test_insufficient_funds(self, scripts, staker_info, make_utxo, network):
        with pytest.raises(InsufficientFundsError):
            staking_transaction(scripts, 100_000, staker_info.address, [make_utxo(100_000)], network, 1)

    def test_change_address_with_wrong_checksum_variant(self, scripts, make_utxo, network):
        with pytest.raises(AddressError):
            staking_transaction(
                scripts, 100_000, SIGNET_V1_BECH32_ADDRESS, [make_utxo(200_000)], network, 1
            )


class TestUnbondingTransaction:
    """Test the unbonding transaction builder."""

    def test_unbonding(self, scripts, staking_tx, network, staking_output, unbonding_output):
        built = unbonding_transaction(scripts, staking_tx, 1000, network)
        tx = built.transaction

        assert tx.inputs == (TxInput(staking_tx.txid, 0, NON_RBF_SEQUENCE),)
        assert tx.outputs == (TxOutput(99_000, unbonding_output.output_script),)
        assert tx.locktime == 0
        assert built.fee == 1000
        assert built.spend_info.leaf_script == scripts.unbonding_script
        assert built.spend_info.control_block == staking_output.control_block(scripts.unbonding_script)
        assert built.spend_info.prevout_value == 100_000

    def test_below_minimum_output(self, scripts, staking_tx, network):
        with pytest.raises(DustOutputError, match="minimum unbonding output value"):
            unbonding_transaction(scripts, staking_tx, 99_001, network)
        assert unbonding_transaction(scripts, staking_tx, 99_000, network).transaction.outputs[0].value == 1000

    def test_invalid_fee(self, scripts, staking_tx, network):
        with pytest.raises(InvalidTransactionInputError, match="Unbonding fee must be bigger than 0"):
            unbonding_transaction(scripts, staking_tx, 0, network)

    def test_invalid_output_index(self, scripts, staking_tx, network):
        with pytest.raises(InvalidTransactionInputError):
            unbonding_transaction(scripts, staking_tx, 1000, network, output_index=-1)
        with pytest.raises(InvalidTransactionInputError):
            unbonding_transaction(scripts, staking_tx, 1000, network, output_index=5)

    def test_wrong_output(self, scripts, staking_tx, network):
        # output 1 is the change output
        with pytest.raises(InvalidTransactionInputError, match="does not match"):
            unbonding_transaction(scripts, staking_tx, 1000, network, output_index=1)


class TestSlashingTransaction:
    """Test the slashing transaction builder."""

    def test_slash_staking_output(self, scripts, staking_tx, network, slashing_pk_script, staking_output):
        built = slashing_transaction(scripts, staking_tx, slashing_pk_script, 0.1, 1000, network)
        tx = built.transaction
        change = derive_slashing_change_output_info(scripts, network)

        assert tx.inputs == (TxInput(staking_tx.txid, 0, NON_RBF_SEQUENCE),)
        assert tx.outputs == (
            TxOutput(10_000, slashing_pk_script),
            TxOutput(89_000, change.output_script),
        )
        assert built.fee == 1000
        assert built.spend_info.leaf_script == scripts.slashing_script
        assert built.spend_info.control_block == staking_output.control_block(scripts.slashing_script)

    def test_slash_unbonding_output(self, scripts, unbonding_tx, network, slashing_pk_script, unbonding_output):
        built = slashing_transaction(
            scripts, unbonding_tx, slashing_pk_script, 0.1, 1000, network, spend_from=SPEND_FROM_UNBONDING
        )
        assert [o.value for o in built.transaction.outputs] == [9900, 88_100]
        assert built.spend_info.control_block == unbonding_output.control_block(scripts.slashing_script)

    def test_rounds_half_up(self, scripts, network, slashing_pk_script, staking_output):
        tx = funding_tx(12_345, staking_output.output_script)
        built = slashing_transaction(scripts, tx, slashing_pk_script, 0.1, 1000, network)
        assert [o.value for o in built.transaction.outputs] == [1235, 10_110]

    def test_rounds_exact_half_up(self, scripts, network, slashing_pk_script, staking_output):
        # 2590 * 0.35 is exactly 906.5
        tx = funding_tx(2590, staking_output.output_script)
        built = slashing_transaction(scripts, tx, slashing_pk_script, 0.35, 1000, network)
        assert [o.value for o in built.transaction.outputs] == [907, 683]

    def test_slashing_amount_dust(self, scripts, staking_tx, network, slashing_pk_script):
        with pytest.raises(DustOutputError, match="Slashing amount is less than dust limit"):
            slashing_transaction(scripts, staking_tx, slashing_pk_script, 0.001, 1000, network)

    def test_user_funds_dust(self, scripts, staking_tx, network, slashing_pk_script):
        with pytest.raises(DustOutputError, match="User funds are less than dust limit"):
            slashing_transaction(scripts, staking_tx, slashing_pk_script, 0.5, 49_500, network)

    @pytest.mark.parametrize("rate", [0, 1, -0.5, 1.5])
    def test_invalid_rate(self, scripts, staking_tx, network, slashing_pk_script, rate):
        with pytest.raises(InvalidTransactionInputError):
            slashing_transaction(scripts, staking_tx, slashing_pk_script, rate, 1000, network)

    @pytest.mark.parametrize("fee", [0, -1, 1.5])
    def test_invalid_fee(self, scripts, staking_tx, network, slashing_pk_script, fee):
        with pytest.raises(InvalidTransactionInputError):
            slashing_transaction(scripts, staking_tx, slashing_pk_script, 0.1, fee, network)

    def test_invalid_source(self, scripts, staking_tx, network, slashing_pk_script):
        with pytest.raises(InvalidTransactionInputError, match="Unknown slashing source"):
            slashing_transaction(scripts, staking_tx, slashing_pk_script, 0.1, 1000, network, spend_from="change")

    def test_source_must_match(self, scripts, unbonding_tx, network, slashing_pk_script):
        with pytest.raises(InvalidTransactionInputError, match="does not match"):
            slashing_transaction(
                scripts, unbonding_tx, slashing_pk_script, 0.1, 1000, network, spend_from=SPEND_FROM_STAKING
            )


class TestWithdrawalTransaction:
    """Test the timelock withdrawal builders."""

    def test_withdraw_timelock_unbonded(self, scripts, staking_tx, staker_info, staker_script,
                                        network, staking_output):
        built = withdraw_timelock_unbonded_transaction(scripts, staking_tx, staker_info.address, network, 10)
        tx = built.transaction

        assert tx.inputs == (TxInput(staking_tx.txid, 0, STAKING_TIMELOCK),)
        assert tx.outputs == (TxOutput(100_000 - 1290, staker_script),)
        assert tx.locktime == 0
        assert built.fee == 1290
        assert built.spend_info.leaf_script == scripts.timelock_script
        assert built.spend_info.control_block == staking_output.control_block(scripts.timelock_script)

    def test_withdraw_early_unbonded(self, scripts, unbonding_tx, staker_info, staker_script,
                                     network, unbonding_output):
        built = withdraw_early_unbonded_transaction(scripts, unbonding_tx, staker_info.address, network, 10)
        tx = built.transaction

        assert tx.inputs == (TxInput(unbonding_tx.txid, 0, UNBONDING_TIME),)
        assert tx.outputs == (TxOutput(99_000 - 1290, staker_script),)
        assert built.spend_info.control_block == \
            unbonding_output.control_block(scripts.unbonding_timelock_script)

    def test_fee_exceeds_output(self, scripts, staker_info, network, staking_output):
        tx = funding_tx(1000, staking_output.output_script)
        with pytest.raises(InsufficientFundsError, match="Not enough funds to cover the fee"):
            withdraw_timelock_unbonded_transaction(scripts, tx, staker_info.address, network, 10)

    def test_dust_output(self, scripts, staker_info, network, staking_output):
        tx = funding_tx(1500, staking_output.output_script)
        with pytest.raises(DustOutputError, match="Output value is less than dust limit"):
            withdraw_timelock_unbonded_transaction(scripts, tx, staker_info.address, network, 10)

    def test_invalid_fee_rate(self, scripts, staking_tx, staker_info, network):
        with pytest.raises(InvalidTransactionInputError):
            withdraw_timelock_unbonded_transaction(scripts, staking_tx, staker_info.address, network, 0)

    def test_invalid_output_index(self, scripts, staking_tx, staker_info, network):
        with pytest.raises(InvalidTransactionInputError):
            withdraw_timelock_unbonded_transaction(
                scripts, staking_tx, staker_info.address, network, 10, output_index=-1
            )

    def test_withdrawal_address_with_wrong_checksum_variant(self, scripts, staking_tx, network):
        with pytest.raises(AddressError):
            withdraw_timelock_unbonded_transaction(scripts, staking_tx, SIGNET_V1_BECH32_ADDRESS, network, 10)
