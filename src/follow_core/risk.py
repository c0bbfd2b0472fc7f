"""
Risk Scorer: leverage -> bounded risk score + warnings; price tolerance check.

    score = min(20 + leverage * 10, 100)

``is_valid`` is always True today: no trade is rejected on score alone.
Callers that want enforcement apply their own threshold to ``score``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

BASE_SCORE = 20
SCORE_PER_LEVERAGE = 10
MAX_SCORE = 100
HIGH_SCORE_AT = 80
HIGH_LEVERAGE_AT = 10


@dataclass(frozen=True)
class RiskAssessment:
    score: int
    warnings: list[str] = field(default_factory=list)
    is_valid: bool = True


def assess_risk(leverage: int) -> RiskAssessment:
    """Score a proposed trade by its leverage. Pure."""
    score = min(BASE_SCORE + leverage * SCORE_PER_LEVERAGE, MAX_SCORE)
    warnings: list[str] = []
    if score >= HIGH_SCORE_AT:
        warnings.append("High risk score")
    if leverage >= HIGH_LEVERAGE_AT:
        warnings.append("High leverage detected")
    return RiskAssessment(score=score, warnings=warnings, is_valid=score <= MAX_SCORE)


@dataclass(frozen=True)
class PriceToleranceCheck:
    """Drift between the agent's entry price and the price we would get now."""

    entry_price: Decimal
    current_price: Decimal
    difference_pct: Decimal
    tolerance_pct: Decimal
    within_tolerance: bool
    reason: str


def check_price_tolerance(
    entry_price: Decimal,
    current_price: Decimal,
    tolerance_pct: Decimal | float,
) -> PriceToleranceCheck:
    """Compare |current - entry| / entry (in percent) against *tolerance_pct*.

    A non-positive entry price cannot be compared and always passes.
    """
    tolerance = Decimal(str(tolerance_pct))
    if entry_price <= 0:
        return PriceToleranceCheck(
            entry_price, current_price, Decimal(0), tolerance, True,
            "No entry price to compare against",
        )
    diff = abs(current_price - entry_price) / entry_price * 100
    within = diff <= tolerance
    verdict = "within" if within else "exceeds"
    return PriceToleranceCheck(
        entry_price=entry_price,
        current_price=current_price,
        difference_pct=diff,
        tolerance_pct=tolerance,
        within_tolerance=within,
        reason=f"Price drift {diff:.2f}% {verdict} tolerance {tolerance}%",
    )
