"""
Signal sources: fetch one AgentSnapshot per poll. Configurable adapter; sync.
"""

from __future__ import annotations

from typing import Any, Mapping, Protocol, Sequence

from follow_core.contracts import AgentSnapshot
from follow_core.errors import UnknownAgentError
from follow_core.snapshot import parse_snapshot


class SignalSource(Protocol):
    """Protocol for signal sources. Implement per provider."""

    def fetch(self, agent_id: str) -> AgentSnapshot:
        """Current positions of *agent_id*.

        Raises UnknownAgentError if the source has no such agent,
        SignalSourceError on transport failure and MalformedSnapshotError
        on a payload that cannot be parsed.
        """
        ...

    def list_agents(self) -> list[str]:
        """Agent ids the source currently reports."""
        ...


class StaticSignalSource:
    """Replays canned payloads; for tests and offline runs.

    Each agent maps to a sequence of raw position mappings (symbol -> raw
    position). Successive ``fetch`` calls step through the sequence and
    keep returning the last one once it is exhausted.
    """

    def __init__(self, payloads: Mapping[str, Sequence[Mapping[str, Any]]]) -> None:
        self._payloads = {agent: list(seq) for agent, seq in payloads.items()}
        self._cursor: dict[str, int] = {}

    def fetch(self, agent_id: str) -> AgentSnapshot:
        seq = self._payloads.get(agent_id)
        if not seq:
            raise UnknownAgentError(agent_id, self.list_agents())
        idx = self._cursor.get(agent_id, 0)
        self._cursor[agent_id] = min(idx + 1, len(seq) - 1)
        return parse_snapshot(agent_id, seq[idx])

    def list_agents(self) -> list[str]:
        return sorted(agent for agent, seq in self._payloads.items() if seq)
