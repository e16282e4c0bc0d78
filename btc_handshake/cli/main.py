"""
btc-handshake - Command Line Interface
========================================
Esegue l'handshake verso i peer di una rete e mostra il report.

Last Updated: 2026-10-19
Version: 1.0.0

Commands:
- run: Handshake concorrente verso seed/peer
- config: Mostra configurazione effettiva
- verack: Hex del messaggio VERACK per la rete
- version: Versione software
"""

import typer
from typing import Optional, List
from pathlib import Path
from rich.console import Console
from rich.table import Table
from rich.panel import Panel
import asyncio
import json

# Internal imports
from btc_handshake import __version__
from btc_handshake.constants import SOFTWARE_NAME
from btc_handshake.config import HandshakeSettings, DEFAULT_CONFIG_FILE, load_settings
from btc_handshake.errors import HandshakeException
from btc_handshake.logging_setup import setup_logging
from btc_handshake.network.fanout import HandshakeFanOut, HandshakeSummary
from btc_handshake.network.message import MessageFactory, encode_message
from btc_handshake.network.seeds import discover_endpoints
from btc_handshake.utils.serialization import hex_dump


# ============================================================================
# CLI APP
# ============================================================================

app = typer.Typer(
    name="btc-handshake",
    help="Bitcoin P2P handshake CLI",
    add_completion=False
)

console = Console()


def _load(config_file: Optional[Path], **overrides) -> HandshakeSettings:
    """Config da file (se esiste) + environment + override CLI"""
    if config_file is None and DEFAULT_CONFIG_FILE.is_file():
        config_file = DEFAULT_CONFIG_FILE

    try:
        return load_settings(config_file, **overrides)
    except HandshakeException as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        raise typer.Exit(2)


ConfigOption = typer.Option(
    None,
    "--config-file",
    "-c",
    help=f"TOML config file (default: {DEFAULT_CONFIG_FILE} if present)"
)

NetworkOption = typer.Option(
    None,
    "--network",
    "-n",
    help="Network (mainnet/testnet/regtest/signet)"
)


# ============================================================================
# RUN
# ============================================================================

@app.command("run")
def run(
    config_file: Optional[Path] = ConfigOption,
    network: Optional[str] = NetworkOption,
    peers: Optional[List[str]] = typer.Option(
        None,
        "--peer",
        "-p",
        help="Peer host:port (ripetibile); sostituisce il DNS seed"
    ),
    timeout: Optional[float] = typer.Option(None, "--timeout", "-t", help="Deadline per peer (secondi)"),
    max_peers: Optional[int] = typer.Option(None, "--max-peers", help="Numero massimo di peer"),
    retries: Optional[int] = typer.Option(None, "--retries", help="Retry su errori di trasporto"),
    log_level: Optional[str] = typer.Option(None, "--log-level", "-l", help="Log level"),
    json_output: bool = typer.Option(False, "--json", help="Report in JSON"),
):
    """Handshake concorrente verso i peer della rete"""
    settings = _load(
        config_file,
        network=network,
        handshake_timeout=timeout,
        max_peers=max_peers,
        retry_attempts=retries,
        log_level=log_level,
    )

    setup_logging(
        log_level=settings.log_level,
        log_to_file=settings.log_to_file,
        log_dir=settings.log_dir,
        log_format=settings.log_format,
    )

    async def execute() -> Optional[HandshakeSummary]:
        try:
            endpoints = await discover_endpoints(settings, peers)
        except HandshakeException as e:
            console.print(f"[red]Cannot resolve endpoints: {e}[/red]")
            return None

        if not endpoints:
            console.print("[red]No endpoints to connect to.[/red]")
            return None

        fanout = HandshakeFanOut.from_settings(settings)
        return await fanout.run(endpoints)

    summary = asyncio.run(execute())
    if summary is None:
        raise typer.Exit(1)

    if json_output:
        typer.echo(json.dumps(summary.to_dict(), indent=2))
        return

    _print_summary(summary, settings)


def _print_summary(summary: HandshakeSummary, settings: HandshakeSettings) -> None:
    table = Table(title=f"Handshakes ({summary.total})")
    table.add_column("Peer", style="cyan")
    table.add_column("State")
    table.add_column("Attempts", justify="right")
    table.add_column("Time", justify="right", style="dim")
    table.add_column("Details")

    for outcome in sorted(summary.outcomes, key=lambda o: (not o.succeeded, str(o.endpoint))):
        if outcome.succeeded:
            state = f"[green]{outcome.state.value}[/green]"
            agent = outcome.peer_version.user_agent.decode("utf-8", errors="replace")
            details = f"v{outcome.peer_version.version} {agent} height={outcome.peer_version.start_height}"
        else:
            state = f"[red]{outcome.state.value}[/red]"
            details = outcome.error.message if outcome.error else ""

        table.add_row(
            str(outcome.endpoint),
            state,
            str(outcome.attempts),
            f"{outcome.duration:.2f}s",
            details
        )

    console.print(table)

    console.print(Panel.fit(
        f"Network: [cyan]{settings.network}[/cyan] ({settings.start_string})\n"
        f"Succeeded: [green]{summary.succeeded}[/green]\n"
        f"Failed: [red]{summary.failed}[/red]\n"
        f"Total: [cyan]{summary.total}[/cyan]\n"
        f"Duration: [dim]{summary.duration:.2f}s[/dim]",
        title="Summary",
        border_style="green" if summary.failed == 0 else "yellow"
    ))


# ============================================================================
# CONFIG
# ============================================================================

@app.command("config")
def show_config(
    config_file: Optional[Path] = ConfigOption,
    network: Optional[str] = NetworkOption,
):
    """Mostra configurazione effettiva"""
    settings = _load(config_file, network=network)

    table = Table(title="Configuration", show_header=False)
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="green")

    for key, value in settings.to_dict().items():
        table.add_row(key, str(value))

    console.print(table)


# ============================================================================
# VERACK
# ============================================================================

@app.command("verack")
def show_verack(
    config_file: Optional[Path] = ConfigOption,
    network: Optional[str] = NetworkOption,
):
    """Hex del messaggio VERACK per la rete selezionata"""
    settings = _load(config_file, network=network)
    data = encode_message(MessageFactory.create_verack(), settings.magic)

    console.print(f"[cyan]{settings.network}[/cyan] start string {settings.start_string}")
    console.print(hex_dump(data), highlight=False)


# ============================================================================
# VERSION
# ============================================================================

@app.command("version")
def show_version():
    """Versione software"""
    console.print(f"{SOFTWARE_NAME} {__version__}")


if __name__ == "__main__":
    app()
