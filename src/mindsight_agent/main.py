"""
Mindsight agent entry point.

Usage:
    mindsight-agent                           Run the agent (same as `run`)
    mindsight-agent run --config agent.yaml   Run with an explicit config file
    mindsight-agent sources                   Print the upstream source list
    mindsight-agent query --url URL 'up'      Run one query against a backend
    mindsight-agent config                    Print the effective configuration
"""

from __future__ import annotations

import logging
import signal

import click

from mindsight_agent import __version__
from mindsight_agent.collector.prometheus_client import PrometheusClient
from mindsight_agent.config import load_config
from mindsight_agent.dashboard.terminal import print_config, print_samples, print_sources
from mindsight_agent.engine.agent import Agent
from mindsight_agent.errors import AgentError, AgentInitError, ConfigError
from mindsight_agent.upstream.api_client import SourceQueryer
from mindsight_agent.upstream.auth import ClientCredentialsGrant


log = logging.getLogger("mindsight_agent")


def _load(ctx, require_credentials: bool = True):
    try:
        return load_config(ctx.obj["config_path"], require_credentials=require_credentials)
    except ConfigError as e:
        log.error("error verifying config: %s", e)
        raise SystemExit(1)


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="mindsight-agent")
@click.option("--config", "config_path", default=None, type=click.Path(dir_okay=False),
              help="Path to mindsight-agent.yaml (default: ./ then /etc/mindsight/)")
@click.option("--verbose", is_flag=True, default=False, help="Enable debug logging")
@click.pass_context
def cli(ctx, config_path: str, verbose: bool):
    """Mindsight agent - scrape time-series backends and forward samples."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path

    # No subcommand means run the agent
    if ctx.invoked_subcommand is None:
        ctx.invoke(run)


@cli.command()
@click.pass_context
def run(ctx):
    """Run the agent until interrupted."""
    config = _load(ctx)
    agent = Agent(config)

    def _handle_signal(signum, frame):
        log.info("Received signal %d, stopping", signum)
        agent.stop()

    signal.signal(signal.SIGTERM, _handle_signal)

    try:
        agent.run()
    except AgentInitError as e:
        log.error("init metrics collector: %s", e)
        raise SystemExit(1)
    except KeyboardInterrupt:
        pass


@cli.command()
@click.pass_context
def sources(ctx):
    """Fetch and print the current source list from the API."""
    config = _load(ctx)
    timeout = config.request_timeout.total_seconds()

    auth = ClientCredentialsGrant(
        client_id=config.client_id,
        client_secret=config.client_secret,
        token_url=config.auth_url,
        audience=config.auth_audience,
        timeout_seconds=timeout,
    )
    try:
        queryer = SourceQueryer(config.api_server, auth, timeout_seconds=timeout)
    except ConfigError as e:
        auth.close()
        log.error("error verifying config: %s", e)
        raise SystemExit(1)

    try:
        result = queryer.query_sources()
    except AgentError as e:
        click.echo(f"Could not fetch sources: {e}", err=True)
        raise SystemExit(1)
    finally:
        queryer.close()
        auth.close()

    print_sources(result)


@cli.command()
@click.option("--url", required=True, help="Backend URL (e.g. http://localhost:9090)")
@click.option("--timeout", default=5.0, help="Request timeout in seconds")
@click.argument("query")
def query(url: str, timeout: float, query: str):
    """Run QUERY once against a backend and print the samples."""
    try:
        backend = PrometheusClient(url, timeout_seconds=timeout)
    except AgentError as e:
        click.echo(str(e), err=True)
        raise SystemExit(1)

    try:
        samples = backend.query(query)
    except AgentError as e:
        click.echo(f"Query failed: {e}", err=True)
        raise SystemExit(1)
    finally:
        backend.close()

    print_samples(samples, title=f"{query} @ {backend.name()}")


@cli.command("config")
@click.pass_context
def show_config(ctx):
    """Print the effective configuration (secret masked)."""
    config = _load(ctx, require_credentials=False)
    print_config(config.describe())


if __name__ == "__main__":
    cli()
