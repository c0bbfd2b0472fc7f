"""
Session state: the explicit "previous snapshot" context of one follow session.

Immutable. Every operation that advances the session returns a new
SessionState; the caller decides when to commit it. Nothing here survives
process exit.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from follow_core.contracts import AgentSnapshot


@dataclass(frozen=True)
class OrderRecord:
    """Venue order ids this session placed for one symbol."""

    symbol: str
    entry_order_id: str | None = None
    take_profit_order_id: str | None = None
    stop_loss_order_id: str | None = None

    def protective_ids(self) -> list[str]:
        return [oid for oid in (self.take_profit_order_id, self.stop_loss_order_id) if oid]


def _freeze(mapping: Mapping) -> Mapping:
    return MappingProxyType(dict(mapping))


@dataclass(frozen=True)
class SessionState:
    """agent_id -> previous AgentSnapshot, plus our own order ids per symbol."""

    snapshots: Mapping[str, AgentSnapshot] = field(default_factory=dict)
    orders: Mapping[str, OrderRecord] = field(default_factory=dict)
    cycles: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "snapshots", _freeze(self.snapshots))
        object.__setattr__(self, "orders", _freeze(self.orders))

    def previous(self, agent_id: str) -> AgentSnapshot | None:
        return self.snapshots.get(agent_id)

    def has_baseline(self, agent_id: str) -> bool:
        return agent_id in self.snapshots

    def with_snapshot(self, snapshot: AgentSnapshot) -> SessionState:
        snapshots = dict(self.snapshots)
        snapshots[snapshot.agent_id] = snapshot
        return SessionState(snapshots=snapshots, orders=self.orders, cycles=self.cycles + 1)

    def with_orders(self, records: Mapping[str, OrderRecord | None]) -> SessionState:
        """Fold per-symbol order outcomes in. A None record forgets the symbol."""
        orders = dict(self.orders)
        for symbol, record in records.items():
            if record is None:
                orders.pop(symbol, None)
            else:
                orders[symbol] = record
        return SessionState(snapshots=self.snapshots, orders=orders, cycles=self.cycles)

    def order_record(self, symbol: str) -> OrderRecord | None:
        return self.orders.get(symbol)
