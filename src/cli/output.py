"""
Human-readable follower output for the terminal.

Every poll explains itself: which signals fired, which plans were built or
skipped, and what the venue did with each one. The journal receives the
same data.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from follow_core.contracts import AgentSnapshot

if TYPE_CHECKING:
    from execution.models import AccountInfo, ExecutionResult, OrderResponse, VenuePosition
    from follow_core.pipeline import PipelineResult


def _fmt_num(value: Decimal | None, places: int = 2) -> str:
    if value is None:
        return "-"
    return f"{value:,.{places}f}"


def format_snapshot(snapshot: AgentSnapshot) -> str:
    """Format an agent's open positions."""
    lines = [f"=== Agent {snapshot.agent_id} @ {snapshot.fetched_at.isoformat()} ==="]
    open_positions = snapshot.open_positions()
    if not open_positions:
        lines.append("  flat (no open positions)")
    for p in open_positions:
        tp = _fmt_num(p.exit_plan.profit_target)
        sl = _fmt_num(p.exit_plan.stop_loss)
        lines.append(
            f"  {p.symbol:<6} {p.side.value:<5} {abs(p.quantity)} @ {_fmt_num(p.entry_price)} "
            f"(now {_fmt_num(p.current_price)}, {p.leverage}x)  TP {tp}  SL {sl}  oid {p.entry_oid}"
        )
    lines.append("===")
    return "\n".join(lines)


def format_pipeline(result: PipelineResult) -> str:
    """Format one poll's signals, plans and skips."""
    lines: list[str] = []
    if result.first_poll:
        lines.append("  First poll: every open position is a new entry.")
    if not result.signals:
        lines.append("  Signals: none")
        return "\n".join(lines)

    lines.append(f"  Signals ({len(result.signals)}):")
    for sig in result.signals:
        lines.append(f"    -> {sig.kind.value}({sig.symbol}): {sig.reason}")

    for plan in result.plans:
        protect = ""
        if plan.has_protective_legs:
            protect = f"  TP {_fmt_num(plan.take_profit)}  SL {_fmt_num(plan.stop_loss)}"
        risk = f"  risk {plan.risk.score}" if plan.risk is not None else ""
        lines.append(
            f"  PLAN {plan.plan_id}: {plan.side.value} {plan.quantity} {plan.symbol} "
            f"{plan.leverage}x{protect}{risk}"
        )
        for w in plan.warnings:
            lines.append(f"    ! {w}")
    for skipped in result.skipped:
        lines.append(f"  SKIPPED {skipped.plan.plan_id}: {skipped.reason}")
    return "\n".join(lines)


def format_result(result: ExecutionResult) -> str:
    """Format one ExecutionResult."""
    plan = result.plan
    if result.dry_run:
        head = f"  RISK-ONLY {plan.plan_id}: {'ok' if result.success else 'would fail'}"
    elif result.success:
        head = (
            f"  FILLED {plan.plan_id}: {plan.side.value} {result.executed_quantity} {plan.symbol} "
            f"@ {_fmt_num(result.avg_price)} (order {result.order_id or '-'})"
        )
    else:
        head = f"  FAILED {plan.plan_id}: {result.error_kind}: {result.error}"
    lines = [head]
    if result.required_margin is not None:
        lines.append(f"    margin required: {_fmt_num(result.required_margin)}")
    if result.take_profit_order_id:
        lines.append(f"    take-profit order {result.take_profit_order_id}")
    if result.stop_loss_order_id:
        lines.append(f"    stop-loss order {result.stop_loss_order_id}")
    for err in result.leg_errors:
        lines.append(f"    ✗ {err}")
    for w in result.warnings:
        lines.append(f"    ! {w}")
    return "\n".join(lines)


def format_account(account: AccountInfo, positions: list[VenuePosition]) -> str:
    """Format venue balance and open positions."""
    lines = [
        "=== Account Status ===",
        f"Available    : ${account.available_balance:,.2f}",
        f"Wallet       : ${account.total_wallet_balance:,.2f}",
        f"Unrealized   : ${account.total_unrealized_pnl:+,.2f}",
    ]
    if positions:
        for p in positions:
            side = "LONG" if p.quantity > 0 else "SHORT"
            lines.append(
                f"Position     : {p.symbol} {side} {abs(p.quantity)} @ {_fmt_num(p.entry_price)} "
                f"({p.leverage}x, uPnL {p.unrealized_pnl:+,.2f})"
            )
    else:
        lines.append("Position     : flat (no open positions)")
    lines.append("===")
    return "\n".join(lines)


def format_orders(orders: list[OrderResponse]) -> str:
    if not orders:
        return "No open orders."
    lines = [f"Open orders ({len(orders)}):"]
    for o in orders:
        kind = o.type.value if o.type else "?"
        side = o.side.value if o.side else "?"
        trigger = f" trigger {_fmt_num(o.stop_price)}" if o.stop_price is not None else ""
        lines.append(f"  {o.order_id}  {o.symbol} {side} {kind}{trigger}  [{o.status}]")
    return "\n".join(lines)
