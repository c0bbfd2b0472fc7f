"""
nof1 "account totals" feed: HTTP signal source.

GET {base_url}/account-totals[?lastHourlyMarker=N] returns
{"accountTotals": [{"model_id": ..., "timestamp": ..., "positions": {...}}, ...]}
with one entry per agent per reporting interval. The latest entry per
model_id wins.
"""

from __future__ import annotations

import logging
import random
import time
from typing import Any

import jsonschema
import requests

from follow_core.contracts import AgentSnapshot
from follow_core.errors import MalformedSnapshotError, SignalSourceError, UnknownAgentError
from follow_core.snapshot import parse_snapshot

logger = logging.getLogger("follow.source")

RETRY_STATUS = (408, 429, 500, 502, 503, 504)

ACCOUNT_TOTALS_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["accountTotals"],
    "properties": {
        "accountTotals": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["model_id", "positions"],
                "properties": {
                    "model_id": {"type": "string", "minLength": 1},
                    "timestamp": {"type": ["number", "string", "null"]},
                    "positions": {"type": "object"},
                },
            },
        },
    },
}


def _ts(entry: dict) -> float:
    try:
        return float(entry.get("timestamp") or 0)
    except (TypeError, ValueError):
        return 0.0


def latest_by_agent(payload: dict) -> dict[str, dict]:
    """model_id -> newest entry. Ties go to the entry listed last."""
    latest: dict[str, dict] = {}
    for entry in payload["accountTotals"]:
        model_id = entry["model_id"]
        current = latest.get(model_id)
        if current is None or _ts(entry) >= _ts(current):
            latest[model_id] = entry
    return latest


class NofOneSignalSource:
    """Polls the account-totals endpoint with retry and jittered backoff."""

    def __init__(
        self,
        base_url: str = "https://nof1.ai/api",
        *,
        timeout: float = 10.0,
        retries: int = 2,
        backoff: float = 1.0,
        last_hourly_marker: int | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retries = max(0, retries)
        self.backoff = max(0.0, backoff)
        self.last_hourly_marker = last_hourly_marker
        self._session = session or requests.Session()

    def _get(self) -> dict:
        url = f"{self.base_url}/account-totals"
        params = {}
        if self.last_hourly_marker is not None:
            params["lastHourlyMarker"] = self.last_hourly_marker

        attempt = 0
        while True:
            try:
                resp = self._session.get(
                    url, params=params or None, timeout=self.timeout,
                    headers={"Accept": "application/json"},
                )
            except requests.RequestException as exc:
                if attempt < self.retries:
                    delay = self._delay(attempt)
                    logger.warning("GET %s failed: %s; retrying in %.1fs", url, exc, delay)
                    time.sleep(delay)
                    attempt += 1
                    continue
                raise SignalSourceError(f"GET {url}: {exc}") from exc

            if resp.status_code in RETRY_STATUS and attempt < self.retries:
                delay = self._delay(attempt)
                logger.warning("GET %s -> %s; retrying in %.1fs", url, resp.status_code, delay)
                time.sleep(delay)
                attempt += 1
                continue
            if resp.status_code != 200:
                raise SignalSourceError(f"GET {url} -> HTTP {resp.status_code}")
            try:
                return resp.json()
            except ValueError as exc:
                raise SignalSourceError(f"GET {url}: response is not JSON") from exc

    def _delay(self, attempt: int) -> float:
        return max(0.1, self.backoff * (attempt + 1) * random.uniform(0.85, 1.15))

    def _latest(self) -> dict[str, dict]:
        payload = self._get()
        try:
            jsonschema.validate(instance=payload, schema=ACCOUNT_TOTALS_SCHEMA)
        except jsonschema.ValidationError as exc:
            where = "/".join(str(p) for p in exc.absolute_path) or "<root>"
            raise MalformedSnapshotError(f"account-totals failed validation at {where}: {exc.message}") from exc
        return latest_by_agent(payload)

    def fetch(self, agent_id: str) -> AgentSnapshot:
        latest = self._latest()
        entry = latest.get(agent_id)
        if entry is None:
            raise UnknownAgentError(agent_id, list(latest))
        snapshot = parse_snapshot(agent_id, entry["positions"])
        logger.debug("%s: %d position(s) at ts=%s", agent_id, len(snapshot.positions), entry.get("timestamp"))
        return snapshot

    def list_agents(self) -> list[str]:
        return sorted(self._latest())

    def close(self) -> None:
        self._session.close()
