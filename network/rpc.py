"""
BTC Staking - Bitcoin Core RPC Client

A small Bitcoin Core JSON-RPC client used as a chain data provider: wallet
UTXOs for staking inputs, fee estimates and the chain tip height. The
staking engine itself never performs I/O; callers fetch data here and pass
plain values into it.
"""

import json
import logging
import os
import time
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import requests
from requests.adapters import HTTPAdapter
from requests.auth import HTTPBasicAuth
from urllib3.util.retry import Retry

from transactions.utxo import UTXO


SATOSHIS_PER_BTC = Decimal(100_000_000)


class RPCError(Exception):
    """Base exception for RPC-related errors."""

    def __init__(self, code: int, message: str, data: Optional[Any] = None):
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"RPC Error {code}: {message}")


class RPCConnectionError(RPCError):
    """Exception for RPC connection failures."""
    pass


class RPCAuthError(RPCError):
    """Exception for RPC authentication failures."""
    pass


class RPCTimeoutError(RPCError):
    """Exception for RPC timeout errors."""
    pass


@dataclass
class RPCConfig:
    """Configuration for Bitcoin Core RPC connection."""
    host: str = "localhost"
    port: int = 18443  # Default regtest port
    username: Optional[str] = None
    password: Optional[str] = None
    cookie_file: Optional[str] = None
    wallet: Optional[str] = None
    timeout: int = 30
    max_retries: int = 0
    backoff_factor: float = 1.0
    use_https: bool = False

    def __post_init__(self):
        """Validate configuration after initialization."""
        if not self.username and not self.cookie_file:
            self.cookie_file = self._find_cookie_file()

        if not self.username and not self.cookie_file:
            raise ValueError("Either username/password or cookie file must be provided")

    def _find_cookie_file(self) -> Optional[str]:
        """Try to find Bitcoin Core cookie file in standard locations."""
        possible_paths = [
            "~/.bitcoin/regtest/.cookie",
            "~/.bitcoin/signet/.cookie",
            "~/.bitcoin/testnet3/.cookie",
            "~/.bitcoin/.cookie",
        ]

        for path in possible_paths:
            expanded_path = Path(path).expanduser()
            if expanded_path.exists():
                return str(expanded_path)

        return None

    @classmethod
    def from_env(cls) -> 'RPCConfig':
        """Create RPC config from environment variables."""
        return cls(
            host=os.getenv("BITCOIN_RPC_HOST", "localhost"),
            port=int(os.getenv("BITCOIN_RPC_PORT", "18443")),
            username=os.getenv("BITCOIN_RPC_USER"),
            password=os.getenv("BITCOIN_RPC_PASSWORD"),
            cookie_file=os.getenv("BITCOIN_RPC_COOKIE_FILE"),
            wallet=os.getenv("BITCOIN_RPC_WALLET"),
            timeout=int(os.getenv("BITCOIN_RPC_TIMEOUT", "30")),
            max_retries=int(os.getenv("BITCOIN_RPC_MAX_RETRIES", "0")),
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RPCConfig':
        """Create RPC config from a configuration section, ignoring unknown keys."""
        known = {name: data[name] for name in cls.__dataclass_fields__ if data.get(name) is not None}
        return cls(**known)


class ConnectionPool:
    """HTTP session for RPC requests."""

    def __init__(self, config: RPCConfig):
        self.config = config
        self.logger = logging.getLogger(__name__)

        self.session = requests.Session()

        retry_strategy = Retry(
            total=config.max_retries,
            backoff_factor=config.backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["POST"]
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

        self._setup_auth()

    def _setup_auth(self):
        """Set up authentication for the session."""
        if self.config.username and self.config.password:
            self.session.auth = HTTPBasicAuth(self.config.username, self.config.password)
            self.logger.debug("Using basic authentication")
            return

        try:
            with open(self.config.cookie_file, 'r') as f:
                cookie_content = f.read().strip()
        except OSError as e:
            raise RPCAuthError(-1, f"Failed to read cookie file: {e}")

        if ':' not in cookie_content:
            raise RPCAuthError(-1, f"Invalid cookie file format: {self.config.cookie_file}")
        username, password = cookie_content.split(':', 1)
        self.session.auth = HTTPBasicAuth(username, password)
        self.logger.debug(f"Using cookie file authentication: {self.config.cookie_file}")

    def get_url(self) -> str:
        """Get the RPC URL, including the wallet path when one is configured."""
        protocol = "https" if self.config.use_https else "http"
        url = f"{protocol}://{self.config.host}:{self.config.port}/"
        if self.config.wallet:
            url += f"wallet/{self.config.wallet}"
        return url

    def request(self, method: str, params: List[Any], request_id: Optional[Union[str, int]] = None) -> Any:
        """
        Make an RPC request and return its result.

        Raises:
            RPCAuthError: On HTTP 401
            RPCConnectionError: On connection failures and unexpected HTTP status
            RPCTimeoutError: When the request times out
            RPCError: On an RPC level error or an unparsable response
        """
        payload = {
            "jsonrpc": "1.0",
            "method": method,
            "params": params,
            "id": request_id or f"req_{int(time.time() * 1000000)}"
        }
        headers = {
            "Content-Type": "application/json",
            "User-Agent": "btc-staking-rpc-client/0.1"
        }

        try:
            response = self.session.post(
                self.get_url(),
                data=json.dumps(payload),
                headers=headers,
                timeout=self.config.timeout,
            )
        except requests.exceptions.Timeout:
            raise RPCTimeoutError(-1, f"Request timed out after {self.config.timeout}s")
        except requests.exceptions.ConnectionError as e:
            raise RPCConnectionError(-1, f"Connection error: {e}")
        except requests.exceptions.RequestException as e:
            raise RPCError(-1, f"Request failed: {e}")

        if response.status_code == 401:
            raise RPCAuthError(response.status_code, "Authentication failed")

        # Bitcoin Core reports RPC errors with HTTP 404/500 and a JSON body
        try:
            response_data = response.json()
        except ValueError as e:
            if response.status_code != 200:
                raise RPCConnectionError(
                    response.status_code, f"HTTP {response.status_code}: {response.reason}"
                )
            raise RPCError(-32700, f"Invalid JSON response: {e}")

        error = response_data.get("error")
        if error:
            raise RPCError(error.get("code"), error.get("message"), error.get("data"))
        if response.status_code != 200:
            raise RPCConnectionError(
                response.status_code, f"HTTP {response.status_code}: {response.reason}"
            )
        return response_data.get("result")

    def close(self):
        """Close the session."""
        if self.session:
            self.session.close()


class BitcoinRPCClient:
    """Bitcoin Core RPC client exposing the calls staking tooling needs."""

    def __init__(self, config: Optional[RPCConfig] = None):
        """
        Initialize Bitcoin RPC client.

        Args:
            config: RPC configuration (uses environment if None)
        """
        self.config = config or RPCConfig.from_env()
        self.pool = ConnectionPool(self.config)
        self.logger = logging.getLogger(__name__)

    def _call(self, method: str, *params) -> Any:
        try:
            return self.pool.request(method, list(params))
        except RPCError as e:
            self.logger.error(f"RPC call {method} failed: {e}")
            raise

    def getblockcount(self) -> int:
        """Get the current block height."""
        return self._call("getblockcount")

    def estimatesmartfee(self, conf_target: int, estimate_mode: str = "CONSERVATIVE") -> Dict[str, Any]:
        """Estimate fee rate (BTC/kvB) for confirmation within conf_target blocks."""
        return self._call("estimatesmartfee", conf_target, estimate_mode)

    def listunspent(self, minconf: int = 1, maxconf: int = 9999999,
                    addresses: Optional[List[str]] = None) -> List[Dict[str, Any]]:
        """List wallet UTXOs, optionally restricted to addresses."""
        if addresses:
            return self._call("listunspent", minconf, maxconf, addresses)
        return self._call("listunspent", minconf, maxconf)

    def close(self):
        """Close the RPC client."""
        self.pool.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def btc_to_satoshis(amount: Union[float, str, Decimal]) -> int:
    """Convert a BTC amount as returned by Bitcoin Core to satoshis."""
    return int((Decimal(str(amount)) * SATOSHIS_PER_BTC).to_integral_value())


def fetch_utxos(client: BitcoinRPCClient, address: str, minconf: int = 1) -> List[UTXO]:
    """
    Fetch the confirmed UTXOs of an address.

    Args:
        client: RPC client of a wallet watching the address
        address: Address whose UTXOs are listed
        minconf: Minimum confirmations

    Returns:
        UTXOs with values in satoshis
    """
    entries = client.listunspent(minconf, 9999999, [address])
    utxos = [
        UTXO(
            txid=entry["txid"],
            vout=entry["vout"],
            script_pubkey=entry["scriptPubKey"],
            value=btc_to_satoshis(entry["amount"]),
        )
        for entry in entries
    ]
    client.logger.debug(f"Fetched {len(utxos)} UTXOs for {address}")
    return utxos


def fetch_fee_rate(client: BitcoinRPCClient, conf_target: int = 6) -> Optional[float]:
    """
    Fee rate in sat/vB estimated by the node, or None when it has no estimate.
    """
    estimate = client.estimatesmartfee(conf_target)
    feerate = estimate.get("feerate")
    if feerate is None:
        return None
    # BTC/kvB -> sat/vB
    return float(Decimal(str(feerate)) * SATOSHIS_PER_BTC / 1000)
