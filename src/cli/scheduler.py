"""
Follow scheduler: cooperative polling loop for one agent.

Each cycle fetches a snapshot, runs the pure pipeline, executes the plans
and commits the advanced session state. A cycle always runs to completion;
an operator stop (Ctrl+C / SIGTERM) is honoured between cycles.
"""

from __future__ import annotations

import logging
import signal
import threading
from dataclasses import dataclass, field
from decimal import Decimal

import click

from data.source import SignalSource
from execution.engine import ExecutionEngine, order_records
from execution.models import ExecutionResult
from follow_core.errors import FollowError, UnknownAgentError
from follow_core.pipeline import PipelineResult, run_pipeline
from follow_core.session import SessionState
from journal.writer import JournalWriter
from notify.emitter import NotificationEmitter
from notify.events import event_from_result

from cli.output import format_pipeline, format_result
from cli.structured_log import StructuredEventLogger

logger = logging.getLogger("follow.scheduler")


@dataclass
class CycleReport:
    cycle: int
    pipeline: PipelineResult | None = None
    results: list[ExecutionResult] = field(default_factory=list)

    @property
    def executed(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success)


class FollowSession:
    """One agent-following session: owns the session state between cycles."""

    def __init__(
        self,
        agent_id: str,
        source: SignalSource,
        engine: ExecutionEngine,
        *,
        price_tolerance_pct: float | None = None,
        total_margin: Decimal | float | None = None,
        journal: JournalWriter | None = None,
        events: StructuredEventLogger | None = None,
        emitter: NotificationEmitter | None = None,
        state: SessionState | None = None,
    ) -> None:
        self.agent_id = agent_id
        self.source = source
        self.engine = engine
        self.price_tolerance_pct = price_tolerance_pct
        self.total_margin = total_margin
        self.journal = journal
        self.events = events or StructuredEventLogger(agent_id, enabled=False)
        self.emitter = emitter
        self._state = state or SessionState()

    @property
    def state(self) -> SessionState:
        return self._state

    def run_cycle(self) -> CycleReport:
        """Fetch, detect, plan, execute, commit.

        Raises
        ------
        UnknownAgentError
            The source does not know the agent.
        FollowError
            Fetch or snapshot failures; session state is left untouched.
        """
        report = CycleReport(cycle=self._state.cycles + 1)
        self.events.cycle_start(report.cycle)

        snapshot = self.source.fetch(self.agent_id)
        pipeline = run_pipeline(
            self._state,
            snapshot,
            price_tolerance_pct=self.price_tolerance_pct,
            total_margin=self.total_margin,
        )
        report.pipeline = pipeline
        if pipeline.first_poll:
            self.events.baseline(len(snapshot.open_positions()))

        if pipeline.signals:
            self.events.signals_detected(
                pipeline.signals,
                plans=len(pipeline.plans),
                skipped=len(pipeline.skipped),
            )
        if self.journal is not None:
            for sig in pipeline.signals:
                self.journal.signal(self.agent_id, sig)
            for plan in pipeline.plans:
                self.journal.trade_plan(self.agent_id, plan)
            for skipped in pipeline.skipped:
                self.journal.skipped(self.agent_id, skipped)

        report.results = self.engine.execute_plans(pipeline.plans, orders=self._state.orders)
        self._state = pipeline.state.with_orders(order_records(report.results))

        for result in report.results:
            try:
                self._record(result)
            except Exception:
                logger.exception("Recording %s failed", result.plan.plan_id)

        self.events.cycle_complete(len(pipeline.signals), report.executed, report.failed)
        return report

    def _record(self, result: ExecutionResult) -> None:
        if self.journal is not None:
            try:
                self.journal.execution(self.agent_id, result)
            except OSError as exc:
                logger.error("Journal write failed for %s: %s", result.plan.plan_id, exc)
        self.events.plan_executed(result)
        if not result.success:
            self.events.order_rejected(result)
        if self.emitter is not None:
            self.emitter.emit(event_from_result(self.agent_id, result))


def _install_stop_handlers(stop: threading.Event) -> dict:
    """Route SIGINT/SIGTERM to *stop*. Main thread only; returns previous handlers."""
    previous = {}
    if threading.current_thread() is not threading.main_thread():
        return previous

    def _handler(signum, frame):
        if stop.is_set():
            raise KeyboardInterrupt
        click.echo("\nStop requested; finishing current cycle...", err=True)
        stop.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        previous[sig] = signal.signal(sig, _handler)
    return previous


def run_follow_loop(
    session: FollowSession,
    interval: float,
    *,
    max_cycles: int | None = None,
    stop: threading.Event | None = None,
    install_signal_handlers: bool = True,
) -> int:
    """
    Poll every *interval* seconds until stopped. Returns cycles run.

    A failed cycle is logged and the loop continues; only UnknownAgentError
    ends the session. A second Ctrl+C aborts immediately.
    """
    stop = stop or threading.Event()
    handlers = _install_stop_handlers(stop) if install_signal_handlers else {}
    cycles = 0

    try:
        while not stop.is_set():
            try:
                report = session.run_cycle()
                if report.pipeline is not None and report.pipeline.signals:
                    click.echo(f"[cycle {report.cycle}]")
                    click.echo(format_pipeline(report.pipeline))
                    for result in report.results:
                        click.echo(format_result(result))
            except UnknownAgentError as exc:
                logger.error("%s", exc)
                session.events.error("unknown agent", str(exc))
                raise
            except FollowError as exc:
                logger.warning("Cycle skipped: %s", exc)
                session.events.error(type(exc).__name__, str(exc))
            except Exception as exc:
                logger.exception("Cycle failed")
                session.events.error("cycle failed", str(exc))

            cycles += 1
            if max_cycles is not None and cycles >= max_cycles:
                break
            stop.wait(interval)
    finally:
        for sig, handler in handlers.items():
            signal.signal(sig, handler)
        session.events.shutdown(cycles)

    return cycles
