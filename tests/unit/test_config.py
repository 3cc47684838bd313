"""
Tests for CLI Configuration Management
"""

import json
import os

import pytest
import yaml

from cli import config as config_module
from cli.config import (
    DEFAULT_CONFIG,
    ConfigError,
    ConfigurationManager,
    get_config_manager,
)


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Keep user config files and BTCSTAKING_ variables out of the tests."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    for key in list(os.environ):
        if key.startswith("BTCSTAKING_"):
            monkeypatch.delenv(key)
    monkeypatch.setattr(config_module, "_global_config_manager", None)


class TestConfigLoading:
    """Test hierarchical configuration loading."""

    def test_defaults(self):
        manager = ConfigurationManager()
        assert manager.load() == DEFAULT_CONFIG
        assert manager.get_sources() == ["defaults"]
        assert manager.validate() == []

    def test_defaults_not_mutated(self):
        manager = ConfigurationManager()
        manager.set('staking.fee_rate', 50.0)
        assert DEFAULT_CONFIG['staking']['fee_rate'] == 2.0

    def test_profile(self):
        manager = ConfigurationManager(profile='mainnet')
        assert manager.get('network.type') == 'bitcoin'
        assert manager.get('network.bitcoin_rpc.port') == 8332
        assert manager.get('network.bitcoin_rpc.host') == 'localhost'
        assert manager.get('staking.fee_rate') == 10.0
        assert manager.get_sources() == ["defaults", "profile:mainnet"]

    def test_unknown_profile(self):
        with pytest.raises(ConfigError, match="Unknown profile"):
            ConfigurationManager(profile='moonnet').load()

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text(yaml.safe_dump({'staking': {'fee_rate': 3.5, 'params_file': 'params.json'}}))

        manager = ConfigurationManager(config_file=str(path))
        assert manager.get('staking.fee_rate') == 3.5
        assert manager.get('staking.params_file') == 'params.json'
        assert manager.get('staking.selection_policy') == 'largest_first'
        assert manager.get_sources() == ["defaults", f"file:{path}"]

    def test_json_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({'cli': {'output_format': 'json'}}))
        assert ConfigurationManager(config_file=str(path)).get('cli.output_format') == 'json'

    def test_file_overrides_profile(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text("staking:\n  fee_rate: 4\n")
        manager = ConfigurationManager(config_file=str(path), profile='regtest')
        assert manager.get('staking.fee_rate') == 4
        assert manager.get('network.type') == 'regtest'

    def test_search_path(self, tmp_path):
        (tmp_path / ".btc-staking.yml").write_text("network:\n  type: regtest\n")
        manager = ConfigurationManager()
        assert manager.get('network.type') == 'regtest'
        assert manager.get_sources()[-1].endswith(".btc-staking.yml")

    def test_empty_file(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text("")
        assert ConfigurationManager(config_file=str(path)).load() == DEFAULT_CONFIG

    def test_invalid_files(self, tmp_path):
        broken = tmp_path / "config.json"
        broken.write_text("{not json")
        with pytest.raises(ConfigError):
            ConfigurationManager(config_file=str(broken)).load()

        listing = tmp_path / "config.yml"
        listing.write_text("- a\n- b\n")
        with pytest.raises(ConfigError, match="mapping"):
            ConfigurationManager(config_file=str(listing)).load()

        with pytest.raises(ConfigError):
            ConfigurationManager(config_file=str(tmp_path / "missing.yml")).load()

        other = tmp_path / "config.toml"
        other.write_text("")
        with pytest.raises(ConfigError, match="Unknown config file format"):
            ConfigurationManager(config_file=str(other)).load()

    def test_environment_variables(self, monkeypatch):
        monkeypatch.setenv("BTCSTAKING_NETWORK__BITCOIN_RPC__HOST", "node.example")
        monkeypatch.setenv("BTCSTAKING_NETWORK__BITCOIN_RPC__PORT", "18332")
        monkeypatch.setenv("BTCSTAKING_STAKING__FEE_RATE", "1.5")
        monkeypatch.setenv("BTCSTAKING_NETWORK__BITCOIN_RPC__WALLET", "none")

        manager = ConfigurationManager(profile='mainnet')
        assert manager.get('network.bitcoin_rpc.host') == 'node.example'
        assert manager.get('network.bitcoin_rpc.port') == 18332
        assert manager.get('network.bitcoin_rpc.wallet') is None
        assert manager.get('staking.fee_rate') == 1.5
        assert manager.get_sources()[-1] == "environment"

    def test_parse_env_value(self):
        manager = ConfigurationManager()
        assert manager._parse_env_value("yes") is True
        assert manager._parse_env_value("False") is False
        assert manager._parse_env_value("null") is None
        assert manager._parse_env_value("42") == 42
        assert manager._parse_env_value("0.5") == 0.5
        assert manager._parse_env_value("tb1q") == "tb1q"

    def test_path_expansion(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text("staking:\n  params_file: ~/params.json\n")
        expected = os.path.join(str(tmp_path / "home"), "params.json")
        assert ConfigurationManager(config_file=str(path)).get('staking.params_file') == expected


class TestConfigAccess:
    """Test get/set and caching."""

    def test_get_default(self):
        manager = ConfigurationManager()
        assert manager.get('staking.missing', 'fallback') == 'fallback'
        assert manager.get('network.type.deeper') is None

    def test_set_and_reset(self):
        manager = ConfigurationManager()
        manager.set('staking.fee_rate', 7.0)
        manager.set('extra.nested.value', 1)
        assert manager.get('staking.fee_rate') == 7.0
        assert manager.get('extra.nested.value') == 1

        manager.reset()
        assert manager.get('staking.fee_rate') == 2.0

    def test_global_manager(self):
        first = get_config_manager()
        assert get_config_manager() is first
        assert get_config_manager(profile='regtest') is not first


class TestConfigValidation:
    """Test validation of merged settings."""

    def test_aliases_are_valid(self):
        manager = ConfigurationManager()
        manager.set('network.type', 'mainnet')
        assert manager.validate() == []

    def test_invalid_values(self):
        manager = ConfigurationManager()
        manager.set('network.type', 'litecoin')
        manager.set('network.bitcoin_rpc.host', '')
        manager.set('network.bitcoin_rpc.port', '8332')
        manager.set('staking.fee_rate', True)
        manager.set('staking.selection_policy', 'smallest_first')
        manager.set('cli.output_format', 'xml')

        errors = manager.validate()
        assert len(errors) == 6
        assert any("Invalid network type" in e for e in errors)
        assert any("Fee rate" in e for e in errors)

    @pytest.mark.parametrize("fee_rate", [0, -1, "fast"])
    def test_invalid_fee_rate(self, fee_rate):
        manager = ConfigurationManager()
        manager.set('staking.fee_rate', fee_rate)
        assert manager.validate() == [f"Fee rate must be a positive number: {fee_rate}"]
