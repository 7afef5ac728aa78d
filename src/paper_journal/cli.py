"""Click CLI entrypoint with Rich terminal output."""

import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable
from typing import Any

import click
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from paper_journal.domain.errors import (
    ExternalSourceError,
    PriceUnavailableError,
    StaleStateError,
    ValidationError,
)
from paper_journal.domain.models import PortfolioState, PortfolioStats, Trade
from paper_journal.logging import console

logger = logging.getLogger(__name__)

_USER_ERRORS = (ValidationError, PriceUnavailableError, ExternalSourceError, StaleStateError)


@click.group()
@click.option("--log-level", default=None, help="Override log level (DEBUG, INFO, WARNING, ERROR)")
@click.option("--user", "user_id", default=None, help="Portfolio owner (defaults to settings)")
@click.pass_context
def cli(ctx: click.Context, log_level: str | None, user_id: str | None) -> None:
    """Paper Journal - Polymarket paper-trading portfolio."""
    from paper_journal.config import get_settings
    from paper_journal.logging import setup_logging

    settings = get_settings()
    setup_logging(settings, cli_log_level=log_level)
    ctx.obj = {"user_id": user_id or settings.default_user_id}


def _run(ctx: click.Context, operation: Callable[[Any, str], Awaitable[Any]]) -> Any:
    """Build the service, run one operation, and turn user-facing errors into exit code 1."""
    from paper_journal.config import get_settings
    from paper_journal.db.models import init_db
    from paper_journal.db.repository import Repository
    from paper_journal.market.polymarket import PolymarketClient
    from paper_journal.portfolio.service import PortfolioService

    async def _main() -> Any:
        settings = get_settings()
        engine = await init_db(str(settings.db_path))
        repo = Repository(engine)
        client = PolymarketClient(
            settings.gamma_api_url,
            settings.clob_api_url,
            timeout=settings.http_timeout_seconds,
        )
        try:
            service = PortfolioService(repo, client, settings=settings)
            return await operation(service, ctx.obj["user_id"])
        finally:
            await client.close()
            await repo.close()

    try:
        return asyncio.run(_main())
    except _USER_ERRORS as e:
        console.print(f"[bold red]Error:[/bold red] [red]{e}[/red]")
        sys.exit(1)


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show balance, totals, and positions."""

    async def _status(service: Any, user_id: str) -> None:
        state = await service.get_snapshot(user_id)
        _print_summary(state)
        _print_positions(state)
        _print_stats(await service.stats(user_id))

    _run(ctx, _status)


@cli.command()
@click.argument("slug")
@click.option("--side", type=click.Choice(["yes", "no"], case_sensitive=False), required=True)
@click.option("--amount", type=float, required=True, help="Dollar amount to spend")
@click.option("--thesis", default=None, help="Why you are taking this position")
@click.pass_context
def buy(ctx: click.Context, slug: str, side: str, amount: float, thesis: str | None) -> None:
    """Buy SIDE of the market identified by SLUG."""

    async def _buy(service: Any, user_id: str) -> None:
        trade = await service.buy(user_id, None, side, amount, thesis, slug=slug)
        _print_trade(trade)

    _run(ctx, _buy)


@cli.command()
@click.argument("slug")
@click.option("--side", type=click.Choice(["yes", "no"], case_sensitive=False), required=True)
@click.option("--amount", type=float, required=True, help="Dollar amount to sell")
@click.option("--thesis", default=None, help="Note attached to the trade")
@click.pass_context
def sell(ctx: click.Context, slug: str, side: str, amount: float, thesis: str | None) -> None:
    """Sell part of an open SIDE position in the market identified by SLUG."""

    async def _sell(service: Any, user_id: str) -> None:
        trade = await service.sell(user_id, None, side, amount, thesis, slug=slug)
        _print_trade(trade)

    _run(ctx, _sell)


@cli.command()
@click.argument("position_id")
@click.pass_context
def close(ctx: click.Context, position_id: str) -> None:
    """Close a whole position at the current bid."""

    async def _close(service: Any, user_id: str) -> None:
        trade = await service.close(user_id, position_id)
        _print_trade(trade)

    _run(ctx, _close)


@cli.command()
@click.argument("position_id")
@click.pass_context
def reopen(ctx: click.Context, position_id: str) -> None:
    """Undo the close of a position."""

    async def _reopen(service: Any, user_id: str) -> None:
        refund = await service.reopen(user_id, position_id)
        console.print(f"[green]Reopened {position_id}[/green] (debited ${refund:,.2f})")

    _run(ctx, _reopen)


@cli.command()
@click.argument("balance", type=float)
@click.option("--yes", "confirmed", is_flag=True, help="Skip the confirmation prompt")
@click.pass_context
def reset(ctx: click.Context, balance: float, confirmed: bool) -> None:
    """Discard all positions and trades and start over with BALANCE."""
    if not confirmed:
        click.confirm(
            f"This deletes every position and trade and sets the balance to ${balance:,.2f}. "
            "Continue?",
            abort=True,
        )

    async def _reset(service: Any, user_id: str) -> None:
        state = await service.reset(user_id, balance)
        console.print(
            Panel(
                f"Balance: [bold]${state.balance:,.2f}[/bold]",
                title="Portfolio reset",
                border_style="yellow",
            )
        )

    _run(ctx, _reset)


@cli.command()
@click.option("--limit", default=50, help="Number of recent trades to show")
@click.pass_context
def history(ctx: click.Context, limit: int) -> None:
    """Show recent trades, newest first."""

    async def _history(service: Any, user_id: str) -> None:
        state = await service.get_snapshot(user_id)
        _print_trades(list(reversed(state.trades))[:limit])

    _run(ctx, _history)


@cli.command()
@click.pass_context
def refresh(ctx: click.Context) -> None:
    """Re-mark open positions from live prices once."""

    async def _refresh(service: Any, user_id: str) -> None:
        state = await service.refresh_prices(user_id)
        _print_summary(state)
        _print_positions(state)

    _run(ctx, _refresh)


@cli.command()
@click.pass_context
def watch(ctx: click.Context) -> None:
    """Refresh prices on an interval until Ctrl+C."""
    from paper_journal.config import get_settings
    from paper_journal.portfolio.refresh import RefreshScheduler

    interval = get_settings().price_refresh_interval_seconds

    async def _watch(service: Any, user_id: str) -> None:
        async def _tick() -> None:
            state = await service.refresh_prices(user_id)
            _print_summary(state)

        scheduler = RefreshScheduler(_tick, interval_seconds=interval)
        scheduler.start()
        try:
            while scheduler.running:
                await asyncio.sleep(1)
        except asyncio.CancelledError:
            logger.info("Watch interrupted")
        finally:
            await scheduler.stop()

    console.print(f"[green]Refreshing prices every {interval}s (Ctrl+C to stop)...[/green]")
    try:
        _run(ctx, _watch)
    except KeyboardInterrupt:
        console.print("[dim]Stopped.[/dim]")


@cli.command()
def config() -> None:
    """Show current configuration."""
    _print_config()


# ── Display helpers ─────────────────────────────────────────────


def _pnl_text(value: float, fmt: str) -> Text:
    return Text(fmt.format(value), style="green" if value >= 0 else "red")


def _print_config() -> None:
    from paper_journal.config import get_settings

    settings = get_settings()

    table = Table(title="Configuration", show_header=True, header_style="bold cyan")
    table.add_column("Setting", style="dim")
    table.add_column("Value")

    table.add_row("Gamma API", settings.gamma_api_url)
    table.add_row("CLOB API", settings.clob_api_url)
    table.add_row("HTTP Timeout", f"{settings.http_timeout_seconds:.1f}s")
    table.add_row("Initial Balance", f"${settings.initial_balance:,.2f}")
    table.add_row("Default User", settings.default_user_id)
    table.add_row("Refresh Interval", f"{settings.price_refresh_interval_seconds}s")
    table.add_row("Database", str(settings.db_path))
    table.add_row("Log Directory", str(settings.log_dir))

    console.print(table)


def _print_summary(state: PortfolioState) -> None:
    table = Table(title=f"Portfolio ({state.user_id})", show_header=True, header_style="bold cyan")
    table.add_column("Field", style="dim")
    table.add_column("Value", justify="right")

    table.add_row("Cash", f"${state.balance:,.2f}")
    table.add_row("Total Value", f"${state.total_value:,.2f}")
    table.add_row("Initial Balance", f"${state.initial_balance:,.2f}")
    table.add_row("Total P&L", _pnl_text(state.total_pnl, "${:+,.2f}"))
    table.add_row("Total P&L %", _pnl_text(state.total_pnl_percent, "{:+.2f}%"))
    table.add_row("Realized P&L", _pnl_text(state.realized_pnl, "${:+,.2f}"))

    console.print(table)


def _print_positions(state: PortfolioState) -> None:
    if not state.positions:
        console.print("[dim]No positions.[/dim]")
        return

    table = Table(title="Positions", show_header=True, header_style="bold cyan")
    table.add_column("ID", style="dim")
    table.add_column("Market", max_width=40)
    table.add_column("Side")
    table.add_column("Shares", justify="right")
    table.add_column("Avg", justify="right")
    table.add_column("Current", justify="right")
    table.add_column("Value", justify="right")
    table.add_column("P&L", justify="right")
    table.add_column("P&L %", justify="right")
    table.add_column("Status")

    for p in state.positions:
        table.add_row(
            p.id,
            p.market_question or p.market_slug or p.market_id,
            p.side.value,
            f"{p.shares:,.2f}",
            f"{p.avg_price:.3f}",
            f"{p.current_price:.3f}",
            f"${p.value:,.2f}",
            _pnl_text(p.pnl, "${:+,.2f}"),
            _pnl_text(p.pnl_percent, "{:+.1f}%"),
            "[dim]closed[/dim]" if p.closed else "[green]open[/green]",
        )

    console.print(table)


def _print_stats(stats: PortfolioStats) -> None:
    if stats.total_trades == 0:
        return
    console.print(
        f"Trades: {stats.total_trades} ({stats.total_buys} buys, {stats.total_sells} sells)  "
        f"Win rate: {stats.win_rate:.0f}%  "
        f"Largest win: ${stats.largest_win:,.2f}  Largest loss: ${stats.largest_loss:,.2f}  "
        f"Volume: ${stats.total_volume:,.2f}"
    )


def _print_trade(trade: Trade) -> None:
    style = "green" if trade.action.value == "BUY" else "red"
    console.print(
        Panel(
            f"[{style}]{trade.action.value}[/{style}] {trade.side.value} "
            f"{trade.shares:,.4f} shares @ {trade.price:.3f} = [bold]${trade.total:,.2f}[/bold]\n"
            f"[dim]{trade.market_question or trade.market_id}[/dim]\n"
            f"[dim]position {trade.position_id}[/dim]",
            title="Trade executed",
            border_style=style,
        )
    )


def _print_trades(trades: list[Trade]) -> None:
    if not trades:
        console.print("[dim]No trades recorded yet.[/dim]")
        return

    table = Table(title="Recent Trades", show_header=True, header_style="bold cyan")
    table.add_column("Time", style="dim")
    table.add_column("Market", max_width=40)
    table.add_column("Action")
    table.add_column("Side")
    table.add_column("Shares", justify="right")
    table.add_column("Price", justify="right")
    table.add_column("Total", justify="right")
    table.add_column("Thesis", max_width=40)

    for t in trades:
        side_style = "green" if t.action.value == "BUY" else "red"
        table.add_row(
            t.timestamp.isoformat()[:19],
            t.market_question or t.market_id,
            Text(t.action.value, style=side_style),
            t.side.value,
            f"{t.shares:,.2f}",
            f"{t.price:.3f}",
            f"${t.total:,.2f}",
            (t.thesis or "")[:40],
        )

    console.print(table)
