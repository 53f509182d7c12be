#!/usr/bin/env python3
"""
Hive Chain RPC - Command Line Interface

Issue JSON-RPC calls against a pool of Hive nodes from the shell, with the
same failover and broadcast safety rules the library applies.
"""

import dataclasses
import json
import logging
import sys
from typing import Any, List, Optional, Tuple

import click

from network.errors import RPCError
from network.rpc import Client, ClientConfig, __version__


class CLIContext:
    """Global CLI context for sharing state across commands."""

    def __init__(self):
        self.config_file: Optional[str] = None
        self.nodes: Tuple[str, ...] = ()
        self.timeout_ms: Optional[int] = None
        self.output_format: str = "json"
        self.verbose: int = 0
        self.logger: Optional[logging.Logger] = None
        self._client: Optional[Client] = None

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

        root = logging.getLogger()
        root.setLevel(level)
        root.handlers = [handler]
        self.logger = logging.getLogger('hivechain-cli')

        # Suppress verbose third-party logs unless in debug mode
        if self.verbose < 2:
            logging.getLogger('requests').setLevel(logging.WARNING)
            logging.getLogger('urllib3').setLevel(logging.WARNING)

    def load_config(self) -> ClientConfig:
        """Build client configuration from file or environment, then apply flags."""
        if self.config_file:
            config = ClientConfig.from_file(self.config_file)
            self.logger.info(f"Loaded configuration from {self.config_file}")
        else:
            config = ClientConfig.from_env()

        overrides = {}
        if self.nodes:
            overrides["addresses"] = list(self.nodes)
        if self.timeout_ms is not None:
            overrides["timeout_ms"] = self.timeout_ms
        return dataclasses.replace(config, **overrides) if overrides else config

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = Client(self.load_config())
        return self._client

    def output(self, data: Any):
        """Output data in the selected format."""
        if self.output_format == "json":
            click.echo(json.dumps(data, indent=2, default=str))
        elif isinstance(data, dict):
            for key, value in data.items():
                click.echo(f"{key:30} {value}")
        elif isinstance(data, list):
            for item in data:
                click.echo(json.dumps(item, default=str))
        else:
            click.echo(str(data))


pass_context = click.make_pass_decorator(CLIContext, ensure=True)


@click.group(context_settings={'help_option_names': ['-h', '--help']})
@click.option('--node', '-n', 'nodes', multiple=True,
              help='RPC node URL (repeat for failover)')
@click.option('--timeout-ms', type=int, default=None,
              help='Total time budget per call in ms, 0 to retry forever')
@click.option('--config-file', '-c', type=click.Path(exists=True, dir_okay=False),
              help='Path to JSON configuration file')
@click.option('--output-format', '-o',
              type=click.Choice(['json', 'table']),
              default='json',
              help='Output format')
@click.option('--verbose', '-v', count=True,
              help='Increase verbosity (-v for INFO, -vv for DEBUG)')
@click.version_option(__version__, prog_name='hivechain-rpc')
@pass_context
def cli(ctx: CLIContext, nodes: Tuple[str, ...], timeout_ms: Optional[int],
        config_file: Optional[str], output_format: str, verbose: int):
    """
    Hive JSON-RPC client with multi-node failover.

    Examples:
        hivechain-rpc -n https://api.hive.blog call condenser_api get_accounts '[["alice"]]'
        hivechain-rpc head
    """
    ctx.nodes = nodes
    ctx.timeout_ms = timeout_ms
    ctx.config_file = config_file
    ctx.output_format = output_format
    ctx.verbose = verbose
    ctx.setup_logging()


def _parse_params(params: Optional[str]) -> Any:
    if params is None:
        return []
    try:
        return json.loads(params)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"PARAMS must be JSON: {e}")


def _run(ctx: CLIContext, func):
    """Run a client call, mapping RPC failures to a clean exit."""
    try:
        return func()
    except (RPCError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        if ctx.verbose < 2:
            click.echo("Use -vv for detailed error information.", err=True)
        sys.exit(1)


@cli.command()
@click.argument('api')
@click.argument('method')
@click.argument('params', required=False)
@pass_context
def call(ctx: CLIContext, api: str, method: str, params: Optional[str]):
    """Call API.METHOD with PARAMS (a JSON array or object)."""
    parsed = _parse_params(params)
    result = _run(ctx, lambda: ctx.client.call(api, method, parsed))
    ctx.output(result)


@cli.command()
@click.option('--irreversible', is_flag=True, help='Last irreversible block instead of head')
@pass_context
def head(ctx: CLIContext, irreversible: bool):
    """Print the current head block number."""
    result = _run(ctx, lambda: ctx.client.blockchain.get_current_block_num(irreversible))
    ctx.output(result)


@cli.command()
@click.argument('transaction_file', type=click.File('r'))
@click.option('--async', 'send_async', is_flag=True, help='Do not wait for block inclusion')
@pass_context
def broadcast(ctx: CLIContext, transaction_file, send_async: bool):
    """Broadcast a signed transaction read from a JSON file."""
    try:
        transaction = json.load(transaction_file)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"Invalid JSON in {transaction_file.name}: {e}")

    send = ctx.client.broadcast.send_async if send_async else ctx.client.broadcast.send
    result = _run(ctx, lambda: send(transaction))
    ctx.output(result)


@cli.command()
@pass_context
def health(ctx: CLIContext):
    """Probe every node once and print the health snapshot."""
    client = ctx.client
    nodes: List[str] = client.config.node_list

    for node in nodes:
        probe = Client(
            dataclasses.replace(client.config, addresses=node, timeout_ms=1),
            transport=client.transport,
            health_tracker=client.health_tracker,
        )
        try:
            probe.database.get_dynamic_global_properties()
        except RPCError as e:
            ctx.logger.warning(f"Probe of {node} failed: {e}")

    ctx.output(client.get_health_snapshot())


def main():
    cli(obj=CLIContext())


if __name__ == '__main__':
    main()
