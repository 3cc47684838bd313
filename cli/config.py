#!/usr/bin/env python3
"""
Configuration Management Module for the BTC Staking CLI

Handles hierarchical configuration loading (defaults, profile, config file,
environment variables) and validation of the merged settings.
"""

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from crypto.addresses import NETWORK_ALIASES, NETWORKS
from transactions.utxo import SelectionPolicy


# Environment variable prefix; '__' separates nesting levels
ENV_PREFIX = 'BTCSTAKING_'
ENV_NESTING_SEPARATOR = '__'

OUTPUT_FORMATS = ('table', 'json')

# Default configuration values
DEFAULT_CONFIG = {
    'network': {
        'type': 'signet',
        'bitcoin_rpc': {
            'host': 'localhost',
            'port': 38332,  # Default signet port
            'username': None,
            'password': None,
            'cookie_file': None,
            'wallet': None,
            'timeout': 30,
            'max_retries': 0,
        }
    },

    'staking': {
        'params_file': None,
        'fee_rate': 2.0,
        'selection_policy': SelectionPolicy.LARGEST_FIRST.value,
        'address_type': 'taproot',
    },

    'cli': {
        'output_format': 'table',
        'verbose': 0,
    },
}

# Configuration profiles
PROFILES = {
    'mainnet': {
        'network': {'type': 'bitcoin', 'bitcoin_rpc': {'port': 8332}},
        'staking': {'fee_rate': 10.0},
    },
    'signet': {
        'network': {'type': 'signet', 'bitcoin_rpc': {'port': 38332}},
    },
    'regtest': {
        'network': {'type': 'regtest', 'bitcoin_rpc': {'port': 18443}},
        'staking': {'fee_rate': 1.0},
        'cli': {'verbose': 1},
    },
}


class ConfigError(Exception):
    """Raised when a configuration file cannot be loaded."""
    pass


def config_search_paths() -> List[Path]:
    """Configuration file locations in order of precedence (highest to lowest)."""
    return [
        Path.cwd() / '.btc-staking.yml',
        Path.cwd() / '.btc-staking.json',
        Path.home() / '.btc-staking' / 'config.yml',
        Path.home() / '.btc-staking' / 'config.json',
    ]


class ConfigurationManager:
    """Manages hierarchical configuration with environment variable support."""

    def __init__(self, config_file: Optional[str] = None, profile: Optional[str] = None):
        """
        Initialize configuration manager.

        Args:
            config_file: Explicit configuration file path
            profile: Configuration profile to load (mainnet, signet, regtest)
        """
        self.logger = logging.getLogger('btc-staking.config')
        self.config_file = config_file
        self.profile = profile
        self._config_cache = None
        self._config_sources = []

    def load(self) -> Dict[str, Any]:
        """
        Load configuration from all sources in hierarchical order.

        Returns:
            Merged configuration dictionary

        Raises:
            ConfigError: If a configuration file exists but cannot be parsed
        """
        if self._config_cache is not None:
            return self._config_cache

        configs = [copy.deepcopy(DEFAULT_CONFIG)]
        self._config_sources = ["defaults"]

        if self.profile:
            if self.profile not in PROFILES:
                raise ConfigError(f"Unknown profile: {self.profile}")
            configs.append(PROFILES[self.profile])
            self._config_sources.append(f"profile:{self.profile}")
            self.logger.debug(f"Applied profile: {self.profile}")

        if self.config_file:
            configs.append(self._load_config_file(Path(self.config_file)))
            self._config_sources.append(f"file:{self.config_file}")
        else:
            for config_path in config_search_paths():
                if config_path.exists():
                    configs.append(self._load_config_file(config_path))
                    self._config_sources.append(f"file:{config_path}")
                    self.logger.debug(f"Loaded config from {config_path}")
                    break  # Use first found config file

        env_config = self._load_environment_variables()
        if env_config:
            configs.append(env_config)
            self._config_sources.append("environment")

        self._config_cache = self._deep_merge(*configs)
        self._expand_paths(self._config_cache)
        return self._config_cache

    def _load_config_file(self, path: Path) -> Dict[str, Any]:
        """Load configuration from a YAML or JSON file."""
        try:
            with open(path, 'r') as f:
                if path.suffix in ['.yml', '.yaml']:
                    data = yaml.safe_load(f)
                elif path.suffix == '.json':
                    data = json.load(f)
                else:
                    raise ConfigError(f"Unknown config file format: {path}")
        except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigError(f"Failed to load config from {path}: {e}")

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")
        return data

    def _load_environment_variables(self) -> Dict[str, Any]:
        """
        Load configuration from environment variables.

        BTCSTAKING_NETWORK__BITCOIN_RPC__HOST -> {'network': {'bitcoin_rpc': {'host': ...}}}
        """
        env_config = {}

        for key, value in os.environ.items():
            if not key.startswith(ENV_PREFIX):
                continue
            parts = key[len(ENV_PREFIX):].lower().split(ENV_NESTING_SEPARATOR)
            current = env_config
            for part in parts[:-1]:
                current = current.setdefault(part, {})
            current[parts[-1]] = self._parse_env_value(value)

        return env_config

    def _parse_env_value(self, value: str) -> Union[str, int, float, bool, None]:
        """Parse environment variable value to appropriate type."""
        if value.lower() in ['true', 'yes']:
            return True
        if value.lower() in ['false', 'no']:
            return False
        if value.lower() in ['null', 'none']:
            return None

        try:
            if '.' in value:
                return float(value)
            return int(value)
        except ValueError:
            return value

    def _deep_merge(self, *dicts: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge multiple dictionaries."""
        result = {}

        for dictionary in dicts:
            for key, value in dictionary.items():
                if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                    result[key] = self._deep_merge(result[key], value)
                else:
                    result[key] = copy.deepcopy(value)

        return result

    def _expand_paths(self, config: Dict[str, Any]):
        """Expand ~ and environment variables in path values."""
        for key, value in config.items():
            if isinstance(value, dict):
                self._expand_paths(value)
            elif isinstance(value, str) and ('~' in value or '$' in value):
                config[key] = os.path.expanduser(os.path.expandvars(value))

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get configuration value by dot-notation path.

        Args:
            key_path: Dot-separated path (e.g., 'network.bitcoin_rpc.host')
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        current = self.load()

        for key in key_path.split('.'):
            if isinstance(current, dict) and key in current:
                current = current[key]
            else:
                return default

        return current

    def set(self, key_path: str, value: Any):
        """
        Set configuration value by dot-notation path.

        Args:
            key_path: Dot-separated path (e.g., 'staking.fee_rate')
            value: Value to set
        """
        config = self.load()

        keys = key_path.split('.')
        current = config
        for key in keys[:-1]:
            current = current.setdefault(key, {})

        current[keys[-1]] = value

    def validate(self) -> List[str]:
        """
        Validate current configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        config = self.load()
        errors = []

        network_type = config.get('network', {}).get('type')
        if network_type not in NETWORKS and network_type not in NETWORK_ALIASES:
            errors.append(f"Invalid network type: {network_type}")

        rpc_config = config.get('network', {}).get('bitcoin_rpc', {})
        if not rpc_config.get('host'):
            errors.append("Bitcoin RPC host is required")
        if not isinstance(rpc_config.get('port'), int) or rpc_config['port'] <= 0:
            errors.append("Bitcoin RPC port must be a positive integer")

        staking = config.get('staking', {})
        fee_rate = staking.get('fee_rate')
        if not isinstance(fee_rate, (int, float)) or isinstance(fee_rate, bool) or fee_rate <= 0:
            errors.append(f"Fee rate must be a positive number: {fee_rate}")
        policies = [policy.value for policy in SelectionPolicy]
        if staking.get('selection_policy') not in policies:
            errors.append(f"Invalid selection policy: {staking.get('selection_policy')}")

        output_format = config.get('cli', {}).get('output_format')
        if output_format not in OUTPUT_FORMATS:
            errors.append(f"Invalid output format: {output_format}")

        return errors

    def get_sources(self) -> List[str]:
        """Get list of configuration sources that were loaded."""
        self.load()
        return self._config_sources

    def reset(self):
        """Reset configuration cache."""
        self._config_cache = None
        self._config_sources = []


# Global configuration manager instance
_global_config_manager = None


def get_config_manager(config_file: Optional[str] = None,
                       profile: Optional[str] = None) -> ConfigurationManager:
    """
    Get or create global configuration manager.

    Args:
        config_file: Optional configuration file path
        profile: Optional configuration profile

    Returns:
        Configuration manager instance
    """
    global _global_config_manager

    if _global_config_manager is None or config_file or profile:
        _global_config_manager = ConfigurationManager(config_file, profile)

    return _global_config_manager
