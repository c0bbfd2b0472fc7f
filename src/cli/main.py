"""
CLI entry point: follow | agents | status | orders | cancel-all | health.

Every command loads config from --config (default config.yaml). Trading
commands print what they did and why, and log to the journal.
"""

import logging
import sys

import click
from dotenv import load_dotenv

from config import load_config
from follow_core.errors import FollowError

load_dotenv()

logger = logging.getLogger("follow")


def _setup_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s  %(message)s",
        stream=sys.stderr,
    )


def _load(ctx: click.Context):
    try:
        return load_config(ctx.obj["config_path"])
    except FollowError as e:
        raise click.ClickException(str(e)) from e


def _gateway(cfg):
    from execution import create_gateway

    try:
        return create_gateway(cfg.exchange)
    except FollowError as e:
        raise click.ClickException(str(e)) from e


@click.group()
@click.option("--config", "config_path", default="config.yaml", help="Path to config file.")
@click.pass_context
def cli(ctx: click.Context, config_path: str) -> None:
    """follow: mirror an AI agent's futures positions onto your own account."""
    _setup_logging()
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


# ---------- follow ----------


@cli.command()
@click.argument("agent_id")
@click.option("--interval", type=float, default=None, help="Poll interval in seconds (default: follow.interval_seconds).")
@click.option("--risk-only", is_flag=True, default=False, help="Detect and plan, check margin, but submit no orders.")
@click.option("--price-tolerance", type=float, default=None, help="Skip entries whose price drifted more than this percent.")
@click.option("--total-margin", type=float, default=None, help="Scale entries so total margin stays within this budget.")
@click.option("--once", is_flag=True, default=False, help="Run a single poll and exit.")
@click.option("--max-cycles", type=int, default=None, help="Stop after N polls.")
@click.pass_context
def follow(
    ctx: click.Context,
    agent_id: str,
    interval: float | None,
    risk_only: bool,
    price_tolerance: float | None,
    total_margin: float | None,
    once: bool,
    max_cycles: int | None,
) -> None:
    """Follow AGENT_ID: poll its positions and mirror every change."""
    cfg = _load(ctx)
    from cli.scheduler import FollowSession, run_follow_loop
    from cli.structured_log import StructuredEventLogger
    from data import get_signal_source
    from execution import ExecutionEngine
    from journal import JournalWriter
    from notify import NotificationEmitter, build_notifiers

    interval = interval if interval is not None else cfg.follow.interval_seconds
    risk_only = risk_only or cfg.follow.risk_only
    tolerance = price_tolerance if price_tolerance is not None else cfg.follow.price_tolerance_pct
    margin = total_margin if total_margin is not None else cfg.follow.total_margin
    if once:
        max_cycles = 1

    try:
        notifiers = build_notifiers(cfg.notifications)
    except FollowError as e:
        raise click.ClickException(str(e)) from e

    gateway = _gateway(cfg)
    source = get_signal_source(cfg.source)
    engine = ExecutionEngine(
        gateway,
        fallback_price=cfg.execution.fallback_price,
        margin_warning_ratio=cfg.execution.margin_warning_ratio,
        max_workers=cfg.execution.max_workers,
        dry_run=risk_only,
    )
    events = StructuredEventLogger(
        agent_id,
        enabled=cfg.notifications.structured_logs,
        webhook_url=cfg.notifications.webhook_url,
    )
    emitter = NotificationEmitter(notifiers)
    session = FollowSession(
        agent_id,
        source,
        engine,
        price_tolerance_pct=tolerance,
        total_margin=margin,
        journal=JournalWriter(cfg.journal.path, echo_stdout=cfg.journal.echo_stdout),
        events=events,
        emitter=emitter,
    )

    mode = "RISK-ONLY" if risk_only else "LIVE"
    click.echo(f"Following {agent_id} on {gateway.name} every {interval:g}s [{mode}]  |  Ctrl+C to stop")
    if margin:
        click.echo(f"Margin budget: ${margin:,.2f}")
    events.session_start(gateway.name, interval, risk_only)

    try:
        cycles = run_follow_loop(session, interval, max_cycles=max_cycles)
    except FollowError as e:
        raise click.ClickException(str(e)) from e
    finally:
        events.close()
        emitter.close()
        gateway.close()
    click.echo(f"Stopped after {cycles} cycle(s).")


# ---------- agents ----------


@cli.command()
@click.option("--show", "show_agent", default=None, help="Also print this agent's open positions.")
@click.pass_context
def agents(ctx: click.Context, show_agent: str | None) -> None:
    """List agents the signal source reports."""
    cfg = _load(ctx)
    from cli.output import format_snapshot
    from data import get_signal_source

    source = get_signal_source(cfg.source)
    try:
        ids = source.list_agents()
        click.echo(f"Agents ({len(ids)}):")
        for agent_id in ids:
            click.echo(f"  {agent_id}")
        if show_agent:
            click.echo("")
            click.echo(format_snapshot(source.fetch(show_agent)))
    except FollowError as e:
        raise click.ClickException(str(e)) from e


# ---------- status ----------


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show venue balance and open positions."""
    cfg = _load(ctx)
    from cli.output import format_account
    from execution import ExecutionEngine

    engine = ExecutionEngine(_gateway(cfg))
    try:
        click.echo(format_account(engine.account(), engine.positions()))
    except FollowError as e:
        raise click.ClickException(str(e)) from e
    finally:
        engine.gateway.close()


# ---------- orders ----------


@cli.command()
@click.option("--symbol", default=None, help="Only this symbol (e.g. BTC).")
@click.option("--order-id", default=None, help="Show one order's status (requires --symbol).")
@click.pass_context
def orders(ctx: click.Context, symbol: str | None, order_id: str | None) -> None:
    """Show open orders, or one order's status."""
    cfg = _load(ctx)
    from cli.output import format_orders
    from execution import ExecutionEngine

    if order_id and not symbol:
        raise click.UsageError("--order-id requires --symbol")

    engine = ExecutionEngine(_gateway(cfg))
    try:
        if order_id:
            o = engine.order_status(symbol, order_id)
            click.echo(f"{o.order_id}  {o.symbol}  {o.status}  executed {o.executed_qty} @ {o.avg_price}")
        else:
            click.echo(format_orders(engine.open_orders(symbol)))
    except FollowError as e:
        raise click.ClickException(str(e)) from e
    finally:
        engine.gateway.close()


# ---------- cancel-all ----------


@cli.command("cancel-all")
@click.argument("symbol")
@click.option("--yes", is_flag=True, default=False, help="Do not ask for confirmation.")
@click.pass_context
def cancel_all(ctx: click.Context, symbol: str, yes: bool) -> None:
    """Cancel every open order for SYMBOL."""
    cfg = _load(ctx)
    from execution import ExecutionEngine

    if not yes:
        click.confirm(f"Cancel all open orders for {symbol} on {cfg.exchange.venue}?", abort=True)
    engine = ExecutionEngine(_gateway(cfg))
    try:
        engine.cancel_all(symbol)
    except FollowError as e:
        raise click.ClickException(str(e)) from e
    finally:
        engine.gateway.close()
    click.echo(f"Cancelled all open orders for {symbol}.")


# ---------- health ----------


@cli.command()
@click.pass_context
def health(ctx: click.Context) -> None:
    """Check system health: config, signal source, venue connectivity.

    Exit code 0 = healthy, 1 = unhealthy. Designed for Docker HEALTHCHECK.
    """
    checks: list[tuple[str, bool, str]] = []

    try:
        cfg = load_config(ctx.obj["config_path"])
        checks.append(("config", True, f"loaded (venue={cfg.exchange.venue})"))
    except Exception as e:
        checks.append(("config", False, str(e)))
        _print_health(checks)
        raise SystemExit(1)

    try:
        from notify import build_notifiers
        sinks = build_notifiers(cfg.notifications)
        checks.append(("notifiers", True, ", ".join(s.name for s in sinks) or "none"))
    except Exception as e:
        checks.append(("notifiers", False, str(e)))

    try:
        from data import get_signal_source
        agent_ids = get_signal_source(cfg.source).list_agents()
        checks.append(("source", True, f"{len(agent_ids)} agent(s) at {cfg.source.base_url}"))
    except Exception as e:
        checks.append(("source", False, str(e)))

    try:
        from execution import create_gateway
        gateway = create_gateway(cfg.exchange)
        server_time = gateway.check_connectivity()
        checks.append(("venue", True, f"{gateway.name} reachable (server time {server_time})"))
        gateway.close()
    except Exception as e:
        checks.append(("venue", False, str(e)))

    _print_health(checks)
    healthy = all(ok for _, ok, _ in checks)
    raise SystemExit(0 if healthy else 1)


def _print_health(checks: list[tuple[str, bool, str]]) -> None:
    for name, ok, detail in checks:
        status = "OK" if ok else "FAIL"
        click.echo(f"  [{status}] {name}: {detail}")
    healthy = all(ok for _, ok, _ in checks)
    click.echo(f"\nHealth: {'HEALTHY' if healthy else 'UNHEALTHY'}")


if __name__ == "__main__":
    cli()
