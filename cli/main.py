#!/usr/bin/env python3
"""
BTC Staking - Command Line Interface

Normalize staker keys, print staking scripts, derive staking output
addresses and build unsigned staking transactions from a parameter file and
a UTXO set read from a file or from a Bitcoin Core wallet.
"""

import functools
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import click
import yaml

from cli import __version__
from cli.config import OUTPUT_FORMATS, ConfigurationManager, get_config_manager
from crypto.addresses import native_segwit_address, taproot_key_path_address
from crypto.keys import get_public_key_no_coord
from network.rpc import BitcoinRPCClient, RPCConfig, fetch_fee_rate, fetch_utxos
from params.schema import StakingParams
from staking.core import StakerInfo, Staking
from transactions.utxo import UTXO, SelectionPolicy


# Loggers of the library packages; the CLI owns their handlers
LIBRARY_LOGGERS = ['crypto', 'scripts', 'params', 'transactions', 'staking', 'network']


class CLIContext:
    """Global CLI context for sharing state across commands."""

    def __init__(self):
        self.config_file: Optional[str] = None
        self.profile: Optional[str] = None
        self.output_format: str = "table"
        self.verbose: int = 0
        self.config: Optional[ConfigurationManager] = None
        self.logger: Optional[logging.Logger] = None

    def setup_logging(self):
        """Configure logging based on verbosity level."""
        log_levels = {
            0: logging.WARNING,
            1: logging.INFO,
            2: logging.DEBUG
        }
        level = log_levels.get(min(self.verbose, 2), logging.DEBUG)

        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(formatter)

        self.logger = logging.getLogger('btc-staking')
        for name in ['btc-staking'] + LIBRARY_LOGGERS:
            logger = logging.getLogger(name)
            logger.setLevel(level)
            logger.handlers = [handler]

        # Suppress verbose third-party logs unless in debug mode
        if self.verbose < 2:
            logging.getLogger('requests').setLevel(logging.WARNING)
            logging.getLogger('urllib3').setLevel(logging.WARNING)

    def load_config(self):
        """Load the layered configuration."""
        self.config = get_config_manager(self.config_file, self.profile)
        self.config.load()
        for error in self.config.validate():
            self.logger.warning(f"Configuration: {error}")
        self.logger.info(f"Configuration sources: {', '.join(self.config.get_sources())}")

    def get_config(self, key_path: str, default: Any = None) -> Any:
        """Get configuration value with fallback to default."""
        return self.config.get(key_path, default)

    @property
    def network(self) -> str:
        return self.get_config('network.type', 'signet')

    def output(self, data: Any, format_override: Optional[str] = None):
        """Output data in specified format."""
        format_type = format_override or self.output_format

        if format_type == "json":
            click.echo(json.dumps(data, indent=2, default=str))
        else:
            self._output_table(data)

    def _output_table(self, data: Any):
        """Output data in table format."""
        if isinstance(data, dict):
            for key, value in data.items():
                if isinstance(value, (dict, list)):
                    value = json.dumps(value, default=str)
                click.echo(f"{key:24} {value}")
        elif isinstance(data, list):
            for item in data:
                click.echo(item)
        else:
            click.echo(str(data))


pass_context = click.make_pass_decorator(CLIContext, ensure=True)


def handle_cli_error(func):
    """Decorator to handle CLI errors gracefully."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except click.ClickException:
            raise
        except KeyboardInterrupt:
            click.echo("\nOperation cancelled by user.", err=True)
            sys.exit(130)
        except Exception as e:
            ctx = click.get_current_context(silent=True)
            cli_ctx = ctx.find_object(CLIContext) if ctx else None

            click.echo(f"Error: {e}", err=True)
            if cli_ctx and cli_ctx.verbose >= 2:
                import traceback
                click.echo(traceback.format_exc(), err=True)
            else:
                click.echo("Use -vv for detailed error information.", err=True)
            sys.exit(1)

    return wrapper


def load_data_file(file_path: str) -> Any:
    """Load a JSON or YAML file."""
    path = Path(file_path)
    if not path.exists():
        raise click.FileError(file_path, hint="file not found")

    with open(path, 'r') as f:
        try:
            if path.suffix in ('.yml', '.yaml'):
                return yaml.safe_load(f)
            return json.load(f)
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise click.FileError(file_path, hint=f"invalid content: {e}")


def load_params(ctx: CLIContext, params_file: Optional[str]) -> StakingParams:
    """Load staking parameters from the option or the configured params file."""
    params_file = params_file or ctx.get_config('staking.params_file')
    if not params_file:
        raise click.UsageError("No staking parameters: pass --params-file or set staking.params_file")
    params = StakingParams.model_validate(load_data_file(params_file))
    ctx.logger.debug(f"Loaded staking parameters from {params_file}")
    return params


def load_utxos(file_path: str) -> List[UTXO]:
    """Load UTXOs from a JSON/YAML list."""
    data = load_data_file(file_path)
    if not isinstance(data, list):
        raise click.FileError(file_path, hint="expected a list of UTXOs")
    return [UTXO.from_dict(entry) for entry in data]


def build_staking(ctx: CLIContext, staker_pk: str, fp_pk: str, timelock: int,
                  params_file: Optional[str], staker_address: Optional[str] = None) -> Staking:
    """Construct a Staking instance from command options and configuration."""
    params = load_params(ctx, params_file)
    if staker_address:
        staker_info = StakerInfo(staker_address, get_public_key_no_coord(staker_pk))
    else:
        staker_info = StakerInfo.from_public_key(
            staker_pk, ctx.network, ctx.get_config('staking.address_type', 'taproot')
        )
    return Staking(ctx.network, staker_info, params, get_public_key_no_coord(fp_pk), timelock)


def staking_options(func):
    """Options shared by the commands working on a staking position."""
    func = click.option('--params-file', '-p', type=click.Path(),
                        help='Staking parameters (JSON or YAML)')(func)
    func = click.option('--timelock', '-t', type=int, required=True,
                        help='Staking timelock in blocks')(func)
    func = click.option('--fp-pk', required=True,
                        help='Finality provider public key (hex)')(func)
    func = click.option('--staker-pk', required=True,
                        help='Staker public key (hex, x-only or compressed)')(func)
    return func


@click.group(invoke_without_command=True, context_settings={'help_option_names': ['-h', '--help']})
@click.option('--config-file', '-c',
              help='Path to configuration file')
@click.option('--profile',
              type=click.Choice(['mainnet', 'signet', 'regtest']),
              help='Configuration profile')
@click.option('--output-format', '-o',
              type=click.Choice(list(OUTPUT_FORMATS)),
              help='Output format')
@click.option('--verbose', '-v',
              count=True,
              help='Increase verbosity (-v for INFO, -vv for DEBUG)')
@click.option('--version',
              is_flag=True,
              help='Show version information')
@pass_context
@click.pass_context
@handle_cli_error
def cli(click_ctx: click.Context, ctx: CLIContext, config_file: Optional[str], profile: Optional[str],
        output_format: Optional[str], verbose: int, version: bool):
    """
    BTC Staking Command Line Interface

    Build covenant staking scripts, addresses and unsigned staking transactions.

    Examples:
        btc-staking pubkey 02...
        btc-staking address --staker-pk ... --fp-pk ... -t 150 -p params.json
        btc-staking build --staker-pk ... --fp-pk ... -t 150 -a 100000 --utxos-file utxos.json
    """
    if version:
        click.echo(f"btc-staking v{__version__}")
        sys.exit(0)

    ctx.config_file = config_file
    ctx.profile = profile
    ctx.verbose = verbose
    ctx.setup_logging()
    ctx.load_config()
    ctx.output_format = output_format or ctx.get_config('cli.output_format', 'table')

    if click_ctx.invoked_subcommand is None:
        click.echo(click_ctx.get_help())
        return
    ctx.logger.debug("CLI initialized with context")


@cli.command()
@click.argument('public_key')
@pass_context
@handle_cli_error
def pubkey(ctx: CLIContext, public_key: str):
    """Normalize a public key and show its staker addresses."""
    no_coord = get_public_key_no_coord(public_key)
    result: Dict[str, Any] = {
        'public_key_no_coord': no_coord,
        'taproot_address': taproot_key_path_address(no_coord, ctx.network),
        'native_segwit_address': native_segwit_address(public_key, ctx.network),
    }
    ctx.output(result)


@cli.command()
@staking_options
@pass_context
@handle_cli_error
def scripts(ctx: CLIContext, staker_pk: str, fp_pk: str, timelock: int, params_file: Optional[str]):
    """Print the staking scripts of a position."""
    staking = build_staking(ctx, staker_pk, fp_pk, timelock, params_file)
    ctx.output(staking.build_scripts().to_dict())


@cli.command()
@staking_options
@pass_context
@handle_cli_error
def address(ctx: CLIContext, staker_pk: str, fp_pk: str, timelock: int, params_file: Optional[str]):
    """Derive the staking output address of a position."""
    staking = build_staking(ctx, staker_pk, fp_pk, timelock, params_file)
    ctx.output({'network': staking.network, 'staking_address': staking.staking_address()})


@cli.command()
@staking_options
@click.option('--amount', '-a', type=int, required=True, help='Amount to stake in satoshis')
@click.option('--staker-address', help='Change address (default: derived from the staker key)')
@click.option('--utxos-file', type=click.Path(), help='UTXOs to spend (JSON or YAML list)')
@click.option('--from-rpc', is_flag=True, help='Fetch UTXOs from the configured Bitcoin Core wallet')
@click.option('--fee-rate', type=float, help='Fee rate in sat/vB')
@click.option('--lock-height', type=int, help='Absolute lock height of the transaction')
@click.option('--policy', type=click.Choice([p.value for p in SelectionPolicy]),
              help='UTXO selection order')
@pass_context
@handle_cli_error
def build(ctx: CLIContext, staker_pk: str, fp_pk: str, timelock: int, params_file: Optional[str],
          amount: int, staker_address: Optional[str], utxos_file: Optional[str], from_rpc: bool,
          fee_rate: Optional[float], lock_height: Optional[int], policy: Optional[str]):
    """Build an unsigned staking transaction."""
    if bool(utxos_file) == from_rpc:
        raise click.UsageError("Pass exactly one of --utxos-file or --from-rpc")

    staking = build_staking(ctx, staker_pk, fp_pk, timelock, params_file, staker_address)

    if from_rpc:
        rpc_config = RPCConfig.from_dict(ctx.get_config('network.bitcoin_rpc', {}))
        with BitcoinRPCClient(rpc_config) as client:
            utxos = fetch_utxos(client, staking.staker_info.address)
            if fee_rate is None:
                fee_rate = fetch_fee_rate(client)
    else:
        utxos = load_utxos(utxos_file)

    if fee_rate is None:
        fee_rate = ctx.get_config('staking.fee_rate')
    selection_policy = SelectionPolicy(policy or ctx.get_config('staking.selection_policy'))

    built = staking.create_staking_transaction(
        amount, utxos, fee_rate, lock_height=lock_height, policy=selection_policy
    )
    ctx.logger.info(f"Built staking transaction with {len(built.transaction.inputs)} inputs")

    if ctx.output_format == 'json':
        ctx.output(built.to_dict())
    else:
        ctx.output({
            'txid': built.transaction.txid,
            'fee': built.fee,
            'inputs': len(built.transaction.inputs),
            'outputs': len(built.transaction.outputs),
            'staking_address': staking.staking_address(),
            'hex': built.transaction.to_hex(),
        })


def main():
    """Console script entry point."""
    cli()


if __name__ == '__main__':
    main()
