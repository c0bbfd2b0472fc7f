"""
Total-margin budget: rescale the agent's position sizes to our own capital.

Each open position receives a share of the budget proportional to the margin
the agent committed to it:

    share_i    = margin_i / sum(margin)
    allocated  = total_margin * share_i
    quantity_i = allocated * leverage_i / entry_price_i

Signs are preserved. Positions with no usable price are left out.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from follow_core.contracts import Position

logger = logging.getLogger("follow.capital")


@dataclass(frozen=True)
class Allocation:
    symbol: str
    allocated_margin: Decimal
    notional: Decimal
    quantity: Decimal             # signed, same direction as the agent's
    share: Decimal


def allocate_margin(positions: Iterable[Position], total_margin: Decimal) -> dict[str, Allocation]:
    """Split *total_margin* across *positions*. Returns symbol -> Allocation."""
    usable = [p for p in positions if p.is_open and p.entry_price > 0 and p.leverage > 0]
    if total_margin <= 0 or not usable:
        return {}

    margins = {p.symbol: p.margin_used() for p in usable}
    total_agent_margin = sum(margins.values(), Decimal(0))
    if total_agent_margin <= 0:
        return {}

    out: dict[str, Allocation] = {}
    for pos in usable:
        share = margins[pos.symbol] / total_agent_margin
        allocated = total_margin * share
        notional = allocated * pos.leverage
        qty = notional / pos.entry_price
        if pos.quantity < 0:
            qty = -qty
        out[pos.symbol] = Allocation(
            symbol=pos.symbol,
            allocated_margin=allocated,
            notional=notional,
            quantity=qty,
            share=share,
        )
    logger.debug(
        "Allocated %s margin across %d position(s): %s",
        total_margin, len(out),
        ", ".join(f"{a.symbol}={a.allocated_margin:.2f}" for a in out.values()),
    )
    return out
