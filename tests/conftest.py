"""
Pytest configuration and fixtures for BTC staking tests.
"""

import pytest

from crypto.addresses import native_segwit_output_script, taproot_key_path_output_script
from params.schema import SlashingParams, StakingParams
from staking.core import StakerInfo
from transactions.utxo import UTXO

from staking_testdata import StakingDataGenerator, compressed_key, x_only_key


NETWORK = "signet"


@pytest.fixture
def network():
    return NETWORK


@pytest.fixture
def staker_pk():
    """Compressed staker key."""
    return compressed_key(1)


@pytest.fixture
def staker_pk_no_coord(staker_pk):
    return staker_pk[2:]


@pytest.fixture
def finality_provider_pk():
    return x_only_key(2)


@pytest.fixture
def covenant_pks():
    """Three covenant committee keys."""
    return [x_only_key(secret) for secret in (3, 4, 5)]


@pytest.fixture
def slashing_pk_script():
    return native_segwit_output_script(compressed_key(6))


@pytest.fixture
def staking_params(covenant_pks, slashing_pk_script):
    """Valid parameters: 2-of-3 covenant, timelocks 150..60000, unbonding 101 blocks."""
    return StakingParams(
        covenant_no_coord_pks=covenant_pks,
        covenant_quorum=2,
        unbonding_time=101,
        unbonding_fee_sat=1000,
        min_staking_amount_sat=10000,
        max_staking_amount_sat=10000000,
        min_staking_time_blocks=150,
        max_staking_time_blocks=60000,
        slashing=SlashingParams(
            slashing_rate=0.1,
            slashing_pk_script_hex=slashing_pk_script.hex(),
            min_slashing_tx_fee_sat=1000,
        ),
    )


@pytest.fixture
def staker_info(staker_pk, network):
    """Staker with a BIP86 Taproot address."""
    return StakerInfo.from_public_key(staker_pk, network)


@pytest.fixture
def staker_script(staker_pk):
    return taproot_key_path_output_script(staker_pk)


@pytest.fixture
def make_utxo(staker_script):
    """Factory for staker UTXOs with distinct txids."""
    def _make(value: int, index: int = 0, script: bytes = None) -> UTXO:
        return UTXO(
            txid=f"{index + 1:064x}",
            vout=index,
            script_pubkey=(script or staker_script).hex(),
            value=value,
        )
    return _make


@pytest.fixture
def data_generator():
    """Seeded generator for randomized staking data."""
    return StakingDataGenerator(seed=42)
