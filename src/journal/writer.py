"""
Structured journal: append-only JSON lines. One line per detected signal,
built plan, skipped plan and execution outcome.
"""

import json
import threading
from dataclasses import fields, is_dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any

from execution.models import ExecutionResult
from follow_core.contracts import Signal
from follow_core.pipeline import SkippedPlan
from follow_core.plans import TradingPlan


def _serialize(obj: Any) -> Any:
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, BaseException):
        return {"kind": type(obj).__name__, "message": str(obj)}
    if is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: _serialize(getattr(obj, f.name)) for f in fields(obj)}
    if isinstance(obj, dict) or hasattr(obj, "items"):
        return {str(k): _serialize(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_serialize(x) for x in obj]
    return obj


class JournalWriter:
    """Append-only journal. Each line is a JSON object with event type and payload."""

    def __init__(self, path: str | Path, *, echo_stdout: bool = False) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._echo = echo_stdout
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _write(self, event_type: str, payload: dict) -> None:
        record = {"ts_utc": datetime.now(timezone.utc).isoformat(), "event": event_type, **payload}
        line = json.dumps(_serialize(record)) + "\n"
        with self._lock:
            with open(self._path, "a") as f:
                f.write(line)
        if self._echo:
            print(line.rstrip())

    def signal(self, agent_id: str, signal: Signal, **extra: Any) -> None:
        self._write(
            "signal",
            {
                "agent_id": agent_id,
                "kind": signal.kind,
                "symbol": signal.symbol,
                "reason": signal.reason,
                "entry_oid": signal.position.entry_oid,
                "quantity": signal.position.quantity,
                **extra,
            },
        )

    def trade_plan(self, agent_id: str, plan: TradingPlan, **extra: Any) -> None:
        self._write("trade_plan", {"agent_id": agent_id, **_serialize(plan), **extra})

    def skipped(self, agent_id: str, skipped: SkippedPlan, **extra: Any) -> None:
        self._write(
            "plan_skipped",
            {"agent_id": agent_id, "plan_id": skipped.plan.plan_id, "symbol": skipped.plan.symbol, "reason": skipped.reason, **extra},
        )

    def execution(self, agent_id: str, result: ExecutionResult, **extra: Any) -> None:
        self._write(
            "execution",
            {
                "agent_id": agent_id,
                "plan_id": result.plan.plan_id,
                "symbol": result.symbol,
                "success": result.success,
                "dry_run": result.dry_run,
                "order_id": result.order_id,
                "take_profit_order_id": result.take_profit_order_id,
                "stop_loss_order_id": result.stop_loss_order_id,
                "executed_quantity": result.executed_quantity,
                "avg_price": result.avg_price,
                "required_margin": result.required_margin,
                "error": result.error,
                "leg_errors": result.leg_errors,
                "warnings": result.warnings,
                **extra,
            },
        )
