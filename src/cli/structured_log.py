"""
Structured JSON event logger for container observability.

One JSON object per line on stderr, keyed by agent and tagged with the
current poll cycle, for log aggregators (Grafana Loki, CloudWatch, ELK).

Optional webhook: alert-level events (signals_detected, order_rejected,
error) are also POSTed to the URL from a single background worker.
Emitting never waits on delivery.
"""

from __future__ import annotations

import json
import logging
import sys
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Sequence

from notify.sinks import post_json

if TYPE_CHECKING:
    from execution.models import ExecutionResult
    from follow_core.contracts import Signal

logger = logging.getLogger("follow.events")

ALERT_EVENTS = frozenset({"signals_detected", "order_rejected", "error"})


class StructuredEventLogger:
    """Emit structured JSON events to stderr and optional webhook."""

    def __init__(
        self,
        agent_id: str,
        *,
        enabled: bool = True,
        webhook_url: str = "",
        stream: Any = None,
    ) -> None:
        self.agent_id = agent_id
        self.enabled = enabled
        self._webhook_url = webhook_url.strip()
        self._stream = stream or sys.stderr
        self._cycle: int | None = None
        self._pool: ThreadPoolExecutor | None = None
        if self._webhook_url:
            self._pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="follow-events")

    def _emit(self, event_type: str, **fields: Any) -> dict:
        record: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "event": event_type,
            "agent_id": self.agent_id,
        }
        if self._cycle is not None:
            record["cycle"] = self._cycle
        record.update(fields)

        if self.enabled:
            self._stream.write(json.dumps(record, default=str) + "\n")
            self._stream.flush()
        if self._pool is not None and event_type in ALERT_EVENTS:
            try:
                self._pool.submit(self._post, record)
            except RuntimeError as exc:
                # Pool already shut down.
                logger.warning("Webhook POST for %s not scheduled: %s", event_type, exc)
        return record

    def _post(self, record: dict) -> None:
        try:
            post_json(self._webhook_url, record)
        except Exception as exc:
            logger.warning("Webhook POST failed for %s: %s", record["event"], exc)

    def close(self, *, wait: bool = True) -> None:
        """Stop the webhook worker; by default let queued POSTs finish."""
        if self._pool is not None:
            self._pool.shutdown(wait=wait)

    # ---------- session ----------

    def session_start(self, venue: str, interval: float, risk_only: bool) -> dict:
        return self._emit("session_start", venue=venue, interval=interval, risk_only=risk_only)

    def shutdown(self, cycles: int) -> dict:
        return self._emit("shutdown", cycles=cycles)

    # ---------- cycle ----------

    def cycle_start(self, cycle: int) -> dict:
        self._cycle = cycle
        return self._emit("cycle_start")

    def baseline(self, positions: int) -> dict:
        """First poll: every open position is about to be entered."""
        return self._emit("baseline", positions=positions)

    def signals_detected(self, signals: Sequence[Signal], plans: int, skipped: int) -> dict:
        return self._emit(
            "signals_detected",
            signals=[f"{s.kind.value}({s.symbol})" for s in signals],
            plans=plans,
            skipped=skipped,
        )

    def cycle_complete(self, signals: int, executed: int, failed: int) -> dict:
        return self._emit("cycle_complete", signals=signals, executed=executed, failed=failed)

    # ---------- plans ----------

    def plan_executed(self, result: ExecutionResult) -> dict:
        return self._emit(
            "plan_executed",
            plan_id=result.plan.plan_id,
            symbol=result.symbol,
            success=result.success,
            dry_run=result.dry_run,
            order_id=result.order_id,
            executed_qty=str(result.executed_quantity),
            take_profit_order_id=result.take_profit_order_id,
            stop_loss_order_id=result.stop_loss_order_id,
            leg_errors=[e.leg for e in result.leg_errors],
        )

    def order_rejected(self, result: ExecutionResult) -> dict:
        return self._emit(
            "order_rejected",
            plan_id=result.plan.plan_id,
            symbol=result.symbol,
            error_kind=result.error_kind,
            reason=str(result.error),
        )

    def error(self, message: str, detail: str = "") -> dict:
        return self._emit("error", message=message, detail=detail)
