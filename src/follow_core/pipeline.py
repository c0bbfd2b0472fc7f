"""
Pipeline orchestrator: chains Detector -> Risk Scorer -> Plan Builder.

Single entry point for processing one polled snapshot through the pure
stages. No I/O; the Execution Engine runs the returned plans.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from decimal import Decimal

from follow_core.capital import Allocation, allocate_margin
from follow_core.contracts import AgentSnapshot, Signal
from follow_core.detector import detect
from follow_core.plans import TradingPlan, build_plans
from follow_core.risk import PriceToleranceCheck, assess_risk, check_price_tolerance
from follow_core.session import SessionState

logger = logging.getLogger("follow.pipeline")


@dataclass(frozen=True)
class SkippedPlan:
    plan: TradingPlan
    reason: str


@dataclass(frozen=True)
class PipelineResult:
    """Complete output of one poll's pure evaluation.

    Every stage's output is preserved for observability and journaling.
    ``state`` is already advanced to the polled snapshot.
    """

    signals: list[Signal] = field(default_factory=list)
    plans: list[TradingPlan] = field(default_factory=list)
    skipped: list[SkippedPlan] = field(default_factory=list)
    allocations: dict[str, Allocation] = field(default_factory=dict)
    state: SessionState = field(default_factory=SessionState)
    first_poll: bool = False


def run_pipeline(
    state: SessionState,
    snapshot: AgentSnapshot,
    *,
    price_tolerance_pct: float | None = None,
    total_margin: Decimal | float | None = None,
) -> PipelineResult:
    """Process one snapshot through the pure stages.

    Stages:
        1. Detector:      previous + new snapshot -> Signal[]
        2. Capital:       optional total-margin budget -> Allocation per symbol
        3. Plan Builder:  Signal[] -> TradingPlan[]
        4. Risk Scorer:   annotate each plan; drop invalid ones
        5. Tolerance:     skip entries whose price drifted past tolerance

    Raises
    ------
    MalformedSnapshotError
        Propagated from the detector; *state* is not advanced.
    """
    detection = detect(state, snapshot)

    allocations: dict[str, Allocation] = {}
    if total_margin is not None and Decimal(str(total_margin)) > 0:
        allocations = allocate_margin(snapshot.open_positions(), Decimal(str(total_margin)))

    by_plan_signal = list(zip(build_plans(detection.signals, allocations=allocations), detection.signals))

    plans: list[TradingPlan] = []
    skipped: list[SkippedPlan] = []
    for plan, signal in by_plan_signal:
        risk = assess_risk(plan.leverage)
        plan = replace(plan, risk=risk).with_warnings(*risk.warnings)
        if not risk.is_valid:
            skipped.append(SkippedPlan(plan, f"Risk score {risk.score} rejected"))
            continue

        if plan.is_entry and price_tolerance_pct is not None:
            check: PriceToleranceCheck = check_price_tolerance(
                plan.reference_price, signal.position.current_price, price_tolerance_pct,
            )
            if not check.within_tolerance:
                logger.warning("%s: skipping entry, %s", plan.symbol, check.reason)
                skipped.append(SkippedPlan(plan, check.reason))
                continue

        plans.append(plan)

    return PipelineResult(
        signals=detection.signals,
        plans=plans,
        skipped=skipped,
        allocations=allocations,
        state=detection.state,
        first_poll=detection.first_poll,
    )
