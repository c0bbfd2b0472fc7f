"""
follow-core: pure position-following engine.

No I/O, no network, no side effects. Consumes agent snapshots, produces
typed signals and ordered TradingPlans. Fully deterministic and unit-testable.
"""

from follow_core.contracts import (
    AgentSnapshot,
    ExitPlan,
    OrderSide,
    Position,
    PositionSide,
    Signal,
    SignalKind,
)
from follow_core.detector import Detection, detect, detect_signals
from follow_core.pipeline import PipelineResult, run_pipeline
from follow_core.plans import PlanKind, TradingPlan, build_plans
from follow_core.risk import RiskAssessment, assess_risk
from follow_core.session import OrderRecord, SessionState

__all__ = [
    "AgentSnapshot",
    "assess_risk",
    "build_plans",
    "detect",
    "detect_signals",
    "Detection",
    "ExitPlan",
    "OrderRecord",
    "OrderSide",
    "PipelineResult",
    "PlanKind",
    "Position",
    "PositionSide",
    "RiskAssessment",
    "run_pipeline",
    "SessionState",
    "Signal",
    "SignalKind",
    "TradingPlan",
]
