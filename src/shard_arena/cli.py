"""CLI for Shard Arena."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import structlog
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from shard_arena import __version__
from shard_arena.arena import build_arena
from shard_arena.core.config import ArenaConfig, load_config
from shard_arena.core.errors import ConfigurationError
from shard_arena.ranking import Outcome, RatingEngine, calculate_expected_win_chance

if TYPE_CHECKING:
    from shard_arena.models import Battle
    from shard_arena.services.settlement import SweepResult

# Configure structlog
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

app = typer.Typer(
    name="arena",
    help="Shard Arena - matchmaking, judged battles and Elo ratings for shards",
    add_completion=False,
)
console = Console()

ConfigOption = Annotated[
    Path | None, typer.Option("--config", "-c", help="Path to config YAML file")
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"shard-arena v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option("--version", "-v", callback=version_callback, is_eager=True),
    ] = None,
) -> None:
    """Shard Arena CLI."""


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def _load(config_path: Path | None) -> ArenaConfig:
    try:
        return load_config(config_path) if config_path else ArenaConfig()
    except FileNotFoundError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e
    except ConfigurationError as e:
        console.print(f"[red]{e}")
        raise typer.Exit(1) from e
    except ValueError as e:
        console.print(f"[red]Invalid configuration:[/red] {e}")
        raise typer.Exit(1) from e


@app.command()
def serve(
    config_path: ConfigOption = None,
    host: Annotated[str, typer.Option("--host", help="Bind address")] = "127.0.0.1",
    port: Annotated[int, typer.Option("--port", help="Bind port")] = 8000,
    verbose: Annotated[bool, typer.Option("--verbose", "-V", help="Verbose output")] = False,
) -> None:
    """Serve the REST API with uvicorn."""
    import uvicorn

    from shard_arena.api import create_app

    _setup_logging(verbose)
    config = _load(config_path)
    console.print(f"[bold green]Serving Shard Arena[/bold green] on http://{host}:{port}")
    console.print(f"  Database: {config.database_url}")
    uvicorn.run(create_app(config=config), host=host, port=port)


@app.command()
def match(
    config_path: ConfigOption = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-V", help="Verbose output")] = False,
) -> None:
    """Run one matchmaking pass over the queue."""
    _setup_logging(verbose)
    arena = build_arena(_load(config_path))

    async def _run() -> list[Battle]:
        try:
            return await arena.queue.attempt_matches()
        finally:
            await arena.aclose()

    battles = asyncio.run(_run())
    if not battles:
        console.print("[yellow]No compatible entries to pair.[/yellow]")
        return

    table = Table(title=f"Matched {len(battles)} battle(s)")
    table.add_column("Battle")
    table.add_column("Mode")
    table.add_column("Challenger")
    table.add_column("Defender")
    table.add_column("Stake", justify="right")
    for battle in battles:
        table.add_row(
            battle.id,
            battle.mode.value,
            f"{battle.challenger.shard_id} ({battle.challenger.elo_rating:.0f})",
            f"{battle.defender.shard_id} ({battle.defender.elo_rating:.0f})",
            f"{battle.stake_amount:g}",
        )
    console.print(table)


@app.command("settle-sweep")
def settle_sweep(
    config_path: ConfigOption = None,
    limit: Annotated[
        int | None, typer.Option("--limit", help="Maximum battles to reconcile")
    ] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-V", help="Verbose output")] = False,
) -> None:
    """Reconcile completed staked battles with the escrow ledger."""
    _setup_logging(verbose)
    config = _load(config_path)
    if not config.escrow.base_url:
        console.print("[yellow]No escrow base_url configured; every check will fail.[/yellow]")

    arena = build_arena(config)

    async def _run() -> SweepResult:
        try:
            return await arena.settlement.sweep_outstanding(limit or config.escrow.sweep_limit)
        finally:
            await arena.aclose()

    result = asyncio.run(_run())
    console.print(f"Checked: {result.checked}  Updated: {result.updated}")


@app.command()
def elo(
    rating_challenger: Annotated[float, typer.Argument(help="Challenger rating")],
    rating_defender: Annotated[float, typer.Argument(help="Defender rating")],
    outcome: Annotated[Outcome, typer.Argument(help="Result for the challenger")],
    k_factor: Annotated[float, typer.Option("--k", help="K-factor")] = 32.0,
) -> None:
    """Show the Elo deltas for a battle result."""
    delta_challenger, delta_defender = RatingEngine(k_factor).compute(
        rating_challenger, rating_defender, outcome
    )
    expected = calculate_expected_win_chance(rating_challenger, rating_defender)
    console.print(f"Expected score (challenger): {expected:.3f}")
    for label, rating, delta in (
        ("Challenger", rating_challenger, delta_challenger),
        ("Defender", rating_defender, delta_defender),
    ):
        console.print(f"{label:<11} {rating:.0f} -> {rating + delta:.0f} ({delta:+d})")


@app.command()
def validate(
    config_path: Annotated[Path, typer.Argument(help="Path to config YAML file")],
    require_judge: Annotated[
        bool, typer.Option("--require-judge", help="Fail when no judge API key is set")
    ] = False,
) -> None:
    """Validate a configuration file."""
    config = _load(config_path)
    if require_judge and not config.judge.dry_run:
        try:
            config.judge.get_api_key()
        except ConfigurationError as e:
            console.print(f"[red]{e}")
            raise typer.Exit(1) from e
    console.print("[green]Configuration is valid![/green]")
    console.print(f"  Database: {config.database_url}")
    judge_mode = config.judge.model if config.judge.resolve_api_key() else "fallback only"
    console.print(f"  Judge: {'dry run' if config.judge.dry_run else judge_mode}")
    console.print(f"  Turn limit: {config.battle.turn_time_limit_seconds}s")
    console.print(f"  K-factor: {config.rating.k_factor}")
    console.print(f"  Escrow: {config.escrow.base_url or 'not configured'}")


if __name__ == "__main__":
    app()
