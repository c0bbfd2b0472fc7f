"""TradeEvent: one outbound notification per plan outcome."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

from execution.models import ExecutionResult


@dataclass(frozen=True)
class TradeEvent:
    agent_id: str
    plan_id: str
    symbol: str
    signal_kind: str
    side: str
    quantity: str
    success: bool
    dry_run: bool = False
    order_id: str | None = None
    take_profit_order_id: str | None = None
    stop_loss_order_id: str | None = None
    executed_quantity: str = "0"
    avg_price: str | None = None
    error_kind: str | None = None
    error: str | None = None
    warnings: tuple[str, ...] = ()
    ts: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def title(self) -> str:
        if self.dry_run:
            status = "RISK-ONLY"
        else:
            status = "EXECUTED" if self.success else "FAILED"
        return f"[{status}] {self.signal_kind} {self.side} {self.quantity} {self.symbol}"

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["warnings"] = list(self.warnings)
        return data

    def to_text(self) -> str:
        lines = [self.title, f"Agent: {self.agent_id}"]
        if self.order_id:
            lines.append(f"Order: {self.order_id} filled {self.executed_quantity} @ {self.avg_price or 'market'}")
        if self.take_profit_order_id:
            lines.append(f"Take-profit: {self.take_profit_order_id}")
        if self.stop_loss_order_id:
            lines.append(f"Stop-loss: {self.stop_loss_order_id}")
        if self.error:
            lines.append(f"Error ({self.error_kind}): {self.error}")
        lines.extend(f"Warning: {w}" for w in self.warnings)
        return "\n".join(lines)


def event_from_result(agent_id: str, result: ExecutionResult) -> TradeEvent:
    plan = result.plan
    warnings = list(result.warnings) + [str(e) for e in result.leg_errors]
    return TradeEvent(
        agent_id=agent_id,
        plan_id=plan.plan_id,
        symbol=plan.symbol,
        signal_kind=plan.signal_kind.value,
        side=plan.side.value,
        quantity=str(plan.quantity),
        success=result.success,
        dry_run=result.dry_run,
        order_id=result.order_id,
        take_profit_order_id=result.take_profit_order_id,
        stop_loss_order_id=result.stop_loss_order_id,
        executed_quantity=str(result.executed_quantity),
        avg_price=str(result.avg_price) if result.avg_price is not None else None,
        error_kind=result.error_kind,
        error=str(result.error) if result.error is not None else None,
        warnings=tuple(warnings),
    )
