"""
CLI Entry Point for the Nexus scheduler.

Commands:
  run       - Auto-start every wallet and run until interrupted
  gas       - Show current gas price per chain
  wallets   - List discovered keystores
  classify  - Show how a piece of tool output would be classified
  config    - Show current configuration
"""

import asyncio
import logging
import signal

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from nexus_scheduler import __version__
from nexus_scheduler.chain.gas_oracle import (
    GasOracle, GasOracleError, GasReporter, WEI_PER_GWEI,
)
from nexus_scheduler.config import ACTION_TYPES, SUPPORTED_CHAINS, AppConfig, ConfigError
from nexus_scheduler.fleet import FleetScheduler
from nexus_scheduler.trading.classifier import OutcomeClassifier, RuleSet
from nexus_scheduler.wallets import KeystoreDirectory

console = Console()


def _setup_logging(level: str):
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
    )


def _load_config() -> AppConfig:
    cfg = AppConfig()
    try:
        cfg.validate()
    except ConfigError as e:
        raise click.ClickException(str(e))
    return cfg


@click.group()
@click.version_option(version=__version__, prog_name="nexus-scheduler")
def cli():
    """Nexus - per-wallet game action scheduler for PLS and BNB."""
    pass


@cli.command()
@click.option("--action", "actions", multiple=True, type=click.Choice(ACTION_TYPES),
              help="Action types to start (default: AUTOSTART_ACTIONS)")
@click.option("--chain", "chains", multiple=True, type=click.Choice(SUPPORTED_CHAINS),
              help="Chains to start on (default: AUTOSTART_CHAINS)")
def run(actions, chains):
    """Start every discovered wallet and keep scheduling until Ctrl-C."""
    cfg = _load_config()
    _setup_logging(cfg.log_level)

    if not cfg.wallets.global_password:
        console.print("[red]No GLOBAL_PASSWORD configured.[/red] Keystores cannot be unlocked.")
        return

    asyncio.run(_run(cfg, list(actions) or None, list(chains) or None))


async def _run(cfg: AppConfig, actions, chains):
    fleet = FleetScheduler.from_config(cfg)
    wallets = fleet.keystores.list_wallets(cfg.wallets.global_password)
    if not wallets:
        console.print(f"[yellow]No keystores found in {cfg.wallets.keystore_path}[/yellow]")
        return

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    console.print(Panel(
        f"Wallets: [cyan]{len(wallets)}[/cyan]\n"
        f"Actions: {', '.join(actions or cfg.scheduler.autostart_actions)}\n"
        f"Chains: {', '.join(chains or cfg.scheduler.autostart_chains)}\n"
        f"Lock timeout: {cfg.scheduler.lock_timeout_seconds:.0f}s",
        title=f"[bold]Nexus scheduler v{__version__}[/bold]",
    ))

    reporter = GasReporter(fleet.executor.gas_oracle, list(cfg.chains.values()))
    await reporter.report()
    await fleet.start_all(wallets, actions, chains)
    await fleet.run_forever(stop_event, reporter)
    console.print("[green]All schedules stopped.[/green]")


@cli.command()
def gas():
    """Show current gas price per chain against its ceiling."""
    cfg = AppConfig()
    oracle = GasOracle()

    async def read():
        rows = []
        for chain in cfg.chains.values():
            try:
                price = await oracle.current_gas_price(chain)
            except GasOracleError as e:
                rows.append((chain, None, str(e)))
                continue
            rows.append((chain, price, None))
        return rows

    table = Table(title="Gas Prices")
    table.add_column("Chain", style="cyan")
    table.add_column("Current (gwei)")
    table.add_column("Ceiling (gwei)")
    table.add_column("Bid (gwei)")
    table.add_column("Status")

    for chain, price, error in asyncio.run(read()):
        ceiling = chain.max_gas_price_gwei or "none"
        if price is None:
            table.add_row(chain.name.upper(), "?", str(ceiling), str(chain.gas_price_gwei),
                          f"[yellow]unknown[/yellow] {error[:60]}")
            continue
        too_high = chain.max_gas_price_gwei and price > chain.max_gas_price_wei
        table.add_row(
            chain.name.upper(),
            f"{price / WEI_PER_GWEI:.2f}",
            str(ceiling),
            str(chain.gas_price_gwei),
            "[red]too high[/red]" if too_high else "[green]ok[/green]",
        )
    console.print(table)


@cli.command()
def wallets():
    """List the keystores the scheduler would run."""
    cfg = AppConfig()
    found = KeystoreDirectory(cfg.wallets.keystore_path).list_wallets(cfg.wallets.global_password)
    if not found:
        console.print(f"[yellow]No keystores found in {cfg.wallets.keystore_path}[/yellow]")
        return

    table = Table(title=f"{len(found)} Keystore(s)")
    table.add_column("Name", style="cyan")
    table.add_column("Address")
    for wallet in found:
        table.add_row(wallet.name, wallet.address or "[dim]encrypted[/dim]")
    console.print(table)


@cli.command()
@click.argument("text")
@click.option("--exit-code", default=1, show_default=True,
              help="Exit status of the tool run that produced TEXT")
@click.option("--rules", type=click.Path(exists=True, dir_okay=False),
              help="Classification rules file (default: CLASSIFIER_RULES_PATH or built-in)")
def classify(text, exit_code, rules):
    """Show how TEXT from the signing tool would be classified."""
    path = rules or AppConfig().scheduler.classifier_rules_path
    classifier = OutcomeClassifier(RuleSet.load(path) if path else None)
    if exit_code == 0:
        result = classifier.classify_output(text)
    else:
        result = classifier.classify_failure(text)
    console.print(f"[bold]{result.name}[/bold] [dim](rules v{classifier.version})[/dim]")


@cli.command()
def config():
    """Show current scheduler configuration."""
    cfg = AppConfig()
    chain_lines = "\n".join(
        f"{c.name.upper()}: {c.rpc_url} | max {c.max_gas_price_gwei or 'none'} gwei | bid {c.gas_price_gwei} gwei"
        for c in cfg.chains.values()
    )
    console.print(Panel(
        f"{chain_lines}\n"
        f"Keystores: {cfg.wallets.keystore_path}\n"
        f"Password: {'Configured' if cfg.wallets.global_password else 'Not set'}\n"
        f"Autostart: {', '.join(cfg.scheduler.autostart_actions)} on {', '.join(cfg.scheduler.autostart_chains)}\n"
        f"Crime type: {cfg.actions.crime_type} (randomize: {cfg.actions.randomize_crimes})\n"
        f"Kill skill train type: {cfg.actions.kill_skill_train_type}\n"
        f"Travel: city {cfg.actions.start_city} <-> city {cfg.actions.end_city} (type {cfg.actions.travel_type})\n"
        f"Lock timeout: {cfg.scheduler.lock_timeout_seconds:.0f}s\n"
        f"Analytics: {cfg.scheduler.analytics_api_url or 'Not set'}",
        title="[bold]Scheduler Configuration[/bold]",
    ))


def main():
    cli()


if __name__ == "__main__":
    main()
