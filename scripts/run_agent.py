#!/usr/bin/env python3
"""Trade Agent CLI - Rebalance and recommendation commands.

Commands:
- plan: Show the quoted rebalance plan for a wallet (dry run)
- rebalance: Plan and execute a rebalance session
- recommend: Show ranked strategy recommendations
- status: Agent config, last snapshot and recent trades
- overview: Market trend and top/bottom performers
- schedule: Run the automation loop for the configured wallets

Usage:
    python scripts/run_agent.py plan <WALLET>
    python scripts/run_agent.py rebalance <WALLET> --yes
    python scripts/run_agent.py recommend <WALLET> --execute-top
    python scripts/run_agent.py status <WALLET>
    python scripts/run_agent.py schedule
"""

import asyncio
import signal
import sys
from pathlib import Path
from typing import List, Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from trade_agent.api.agent_api import TradeAgentAPI
from trade_agent.execution.base import RebalanceResult
from trade_agent.orchestration.scheduler import RebalanceScheduler
from trade_agent.portfolio.base import AllocationDeviation, RebalancePlan
from trade_agent.strategy.base import TradeRecommendation
from trade_agent.utils.config import load_config
from trade_agent.utils.exceptions import TradeAgentError
from trade_agent.utils.logging import setup_logging_from_config

console = Console()

STATUS_STYLES = {
    "quoted": "green",
    "succeeded": "green",
    "unquotable": "yellow",
    "not_attempted": "yellow",
    "failed": "red",
}


def create_deviation_table(deviations: List[AllocationDeviation]) -> Table:
    table = Table(title="Allocation", show_header=True, header_style="bold magenta")
    table.add_column("Asset", style="cyan")
    table.add_column("Current %", justify="right")
    table.add_column("Target %", justify="right")
    table.add_column("Difference", justify="right")

    for d in deviations:
        color = "red" if d.difference > 0 else "green" if d.difference < 0 else "white"
        table.add_row(
            d.symbol,
            f"{d.current_percentage:.2f}",
            f"{d.target_percentage:.2f}",
            f"[{color}]{d.difference:+.2f}[/{color}]",
        )
    return table


def create_plan_table(plan: RebalancePlan) -> Table:
    table = Table(
        title=f"Rebalance Plan (${plan.total_value:,.2f})",
        show_header=True,
        header_style="bold magenta",
    )
    table.add_column("#", justify="right")
    table.add_column("Action", style="cyan")
    table.add_column("Amount", justify="right")
    table.add_column("Est. Output", justify="right")
    table.add_column("Impact %", justify="right")
    table.add_column("Status")

    for action in plan:
        style = STATUS_STYLES.get(action.status.value, "white")
        table.add_row(
            str(action.index),
            action.describe(),
            f"{action.amount:.6g} {action.from_symbol}",
            f"{action.estimated_output:.6g} {action.to_symbol}" if action.estimated_output else "-",
            f"{action.price_impact:.3f}" if action.price_impact is not None else "-",
            f"[{style}]{action.status.value}[/{style}]"
            + (f" ({action.error})" if action.error else ""),
        )
    return table


def create_result_panel(result: RebalanceResult) -> Panel:
    lines = [result.summary()]
    for outcome in result.outcomes:
        status = outcome.action.status.value
        style = STATUS_STYLES.get(status, "white")
        line = f"[{style}]{status:>13}[/{style}]  {outcome.action.describe()}"
        if outcome.link:
            line += f"  {outcome.link}"
        elif outcome.error:
            line += f"  ({outcome.error})"
        lines.append(line)

    border = {"completed": "green", "partially_completed": "yellow"}.get(result.state.value, "red")
    return Panel("\n".join(lines), title=f"Session {result.state.value}", border_style=border)


def create_recommendation_table(recommendations: List[TradeRecommendation]) -> Table:
    table = Table(title="Recommendations", show_header=True, header_style="bold magenta")
    table.add_column("#", justify="right")
    table.add_column("Strategy", style="cyan")
    table.add_column("Trade")
    table.add_column("Confidence", justify="right")
    table.add_column("Reason")

    for i, rec in enumerate(recommendations):
        table.add_row(
            str(i),
            rec.strategy_name,
            rec.describe(),
            str(rec.confidence),
            rec.reason or "",
        )
    return table


def run(coro):
    """Run a coroutine, printing agent errors instead of tracebacks."""
    try:
        return asyncio.run(coro)
    except TradeAgentError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)


async def _with_api(config_path: Optional[str], func):
    config = load_config(config_path)
    setup_logging_from_config(config)
    async with TradeAgentAPI.from_config(config) as api:
        return await func(api)


@click.group()
@click.option("--config", "config_path", default=None, help="Path to YAML config")
@click.pass_context
def cli(ctx, config_path: Optional[str]):
    """Trade Agent - Portfolio rebalancing and strategy recommendations."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


@cli.command()
@click.argument("wallet")
@click.pass_context
def plan(ctx, wallet: str):
    """Show the quoted rebalance plan without executing it."""

    async def show(api: TradeAgentAPI):
        console.print(create_deviation_table(await api.analyze(wallet)))
        quoted = await api.plan(wallet)
        if not quoted.actions:
            console.print("[green]Portfolio is within thresholds.[/green]")
            return
        console.print(create_plan_table(quoted))

    run(_with_api(ctx.obj["config_path"], show))


@cli.command()
@click.argument("wallet")
@click.option("--yes", "-y", is_flag=True, help="Execute without confirmation")
@click.pass_context
def rebalance(ctx, wallet: str, yes: bool):
    """Plan and execute a rebalance session."""

    async def execute(api: TradeAgentAPI):
        session = api.new_session()
        async with api.hold_wallet(wallet):
            snapshot = await api.snapshot(wallet)
            config = await api.get_agent_config(wallet)
            quoted = await session.prepare(snapshot, config)
            console.print(create_plan_table(quoted))

            if quoted.actions and not yes:
                if not click.confirm(f"Execute {len(quoted.executable)} swaps?"):
                    console.print("[yellow]Aborted.[/yellow]")
                    return

            loop = asyncio.get_running_loop()
            loop.add_signal_handler(signal.SIGINT, session.cancel)
            try:
                result = await session.execute(api.require_signer(), lock_held=True)
            finally:
                loop.remove_signal_handler(signal.SIGINT)
        console.print(create_result_panel(result))

    run(_with_api(ctx.obj["config_path"], execute))


@cli.command()
@click.argument("wallet")
@click.option("--execute-top", is_flag=True, help="Execute the highest-confidence recommendation")
@click.pass_context
def recommend(ctx, wallet: str, execute_top: bool):
    """Show ranked strategy recommendations."""

    async def show(api: TradeAgentAPI):
        overview = await api.market_overview()
        console.print(
            f"Market trend: [bold]{overview.trend.value}[/bold] "
            f"(benchmark {overview.benchmark_change_24h:+.2f}%, "
            f"volatility {overview.volatility_index:.2f})"
        )
        recommendations = await api.recommend(wallet)
        if not recommendations:
            console.print("[yellow]No recommendations this cycle.[/yellow]")
            return
        console.print(create_recommendation_table(recommendations))

        if execute_top:
            top = recommendations[0]
            if click.confirm(f"Execute '{top.describe()}' ({top.confidence}% confidence)?"):
                result = await api.execute_recommendation(wallet, top)
                console.print(create_result_panel(result))

    run(_with_api(ctx.obj["config_path"], show))


@cli.command()
@click.argument("wallet")
@click.option("--trades", default=10, help="Number of recent trades to show")
@click.pass_context
def status(ctx, wallet: str, trades: int):
    """Show agent config, last snapshot and recent trades."""

    async def show(api: TradeAgentAPI):
        info = await api.status(wallet, trade_limit=trades)
        config = info["config"]

        table = Table(title=f"Agent {wallet}", show_header=True, header_style="bold magenta")
        table.add_column("Property", style="cyan")
        table.add_column("Value", style="green")
        table.add_row("Auto rebalance", str(config.auto_rebalance))
        table.add_row("Threshold", f"{config.rebalance_threshold}%")
        table.add_row("Max slippage", f"{config.max_slippage_bps} bps")
        table.add_row("Risk profile", config.risk_profile.value)
        table.add_row("Strategies", ", ".join(s.name for s in config.active_strategies) or "-")
        if info["total_value"] is not None:
            table.add_row("Last snapshot value", f"${info['total_value']:,.2f}")
        table.add_row("Session running", str(info["busy"]))
        console.print(table)

        history = info["trades"]
        if history.empty:
            console.print("[dim]No trades recorded.[/dim]")
        else:
            console.print(history.to_string())

    run(_with_api(ctx.obj["config_path"], show))


@cli.command()
@click.pass_context
def overview(ctx):
    """Show the market overview for the watchlist."""

    async def show(api: TradeAgentAPI):
        market = await api.market_overview()
        table = Table(title=f"Market ({market.trend.value})", show_header=True, header_style="bold magenta")
        table.add_column("Asset", style="cyan")
        table.add_column("24h %", justify="right")
        table.add_column("7d %", justify="right")
        for metrics in [*market.top_performers, *market.bottom_performers]:
            table.add_row(
                metrics.symbol,
                f"{metrics.price_change_24h:+.2f}",
                f"{metrics.price_change_7d:+.2f}",
            )
        console.print(table)

    run(_with_api(ctx.obj["config_path"], show))


@cli.command()
@click.pass_context
def schedule(ctx):
    """Run the automation loop until interrupted."""

    async def loop_forever(api: TradeAgentAPI):
        config = load_config(ctx.obj["config_path"])
        wallets = config.get("scheduler.wallets") or list(api.agents)
        if not wallets:
            console.print("[yellow]No wallets configured under scheduler.wallets.[/yellow]")
            return

        scheduler = RebalanceScheduler(api.auto_rebalance, config.section("scheduler"))
        scheduler.add_wallets(wallets)
        scheduler.start()
        console.print(
            f"[bold green]Scheduling {len(wallets)} wallets. Press Ctrl+C to exit.[/bold green]"
        )

        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        loop.add_signal_handler(signal.SIGINT, stop.set)
        loop.add_signal_handler(signal.SIGTERM, stop.set)
        await stop.wait()
        scheduler.stop(wait=False)
        console.print("\n[yellow]Scheduler stopped.[/yellow]")

    run(_with_api(ctx.obj["config_path"], loop_forever))


if __name__ == "__main__":
    cli()
