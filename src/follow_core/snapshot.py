"""
Snapshot parsing: raw signal-feed payload -> AgentSnapshot.

The feed reports numbers as JSON numbers or decimal strings and uses -1 as
the "not set" sentinel for tp_oid / sl_oid. The payload is validated with
JSON Schema before conversion; any failure raises MalformedSnapshotError.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

import jsonschema

from follow_core.contracts import AgentSnapshot, ExitPlan, Position
from follow_core.errors import MalformedSnapshotError

UNSET_OID = -1

_NUMBER = {"type": ["number", "string"]}
_OPTIONAL_NUMBER = {"type": ["number", "string", "null"]}

POSITION_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": [
        "symbol",
        "quantity",
        "entry_oid",
        "entry_price",
        "current_price",
        "leverage",
    ],
    "properties": {
        "symbol": {"type": "string", "minLength": 1},
        "quantity": _NUMBER,
        "entry_oid": {"type": "integer"},
        "entry_price": _NUMBER,
        "current_price": _NUMBER,
        "leverage": {"type": ["integer", "number"], "exclusiveMinimum": 0},
        "exit_plan": {
            "type": ["object", "null"],
            "properties": {
                "profit_target": _OPTIONAL_NUMBER,
                "stop_loss": _OPTIONAL_NUMBER,
            },
        },
        "tp_oid": {"type": ["integer", "null"]},
        "sl_oid": {"type": ["integer", "null"]},
        "margin": _OPTIONAL_NUMBER,
        "unrealized_pnl": _OPTIONAL_NUMBER,
        "confidence": _OPTIONAL_NUMBER,
    },
}

SNAPSHOT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "additionalProperties": POSITION_SCHEMA,
}


def _decimal(value: Any, field_name: str, symbol: str) -> Decimal:
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise MalformedSnapshotError(
            f"{symbol}: field {field_name!r} is not a number: {value!r}"
        ) from exc
    if not result.is_finite():
        raise MalformedSnapshotError(f"{symbol}: field {field_name!r} is not finite: {value!r}")
    return result


def _optional_decimal(value: Any, field_name: str, symbol: str) -> Decimal | None:
    if value is None or value == "":
        return None
    result = _decimal(value, field_name, symbol)
    # Some agents publish 0 for "no threshold".
    if field_name in ("profit_target", "stop_loss") and result <= 0:
        return None
    return result


def _oid(value: Any) -> int | None:
    if value is None or int(value) == UNSET_OID:
        return None
    return int(value)


def parse_position(raw: Mapping[str, Any]) -> Position:
    """Convert one validated raw position dict into a Position."""
    symbol = raw["symbol"]
    leverage_raw = raw["leverage"]
    if int(leverage_raw) != leverage_raw:
        raise MalformedSnapshotError(f"{symbol}: leverage must be an integer, got {leverage_raw!r}")
    exit_raw = raw.get("exit_plan") or {}
    confidence = raw.get("confidence")
    return Position(
        symbol=symbol,
        quantity=_decimal(raw["quantity"], "quantity", symbol),
        entry_oid=int(raw["entry_oid"]),
        entry_price=_decimal(raw["entry_price"], "entry_price", symbol),
        current_price=_decimal(raw["current_price"], "current_price", symbol),
        leverage=int(leverage_raw),
        exit_plan=ExitPlan(
            profit_target=_optional_decimal(exit_raw.get("profit_target"), "profit_target", symbol),
            stop_loss=_optional_decimal(exit_raw.get("stop_loss"), "stop_loss", symbol),
        ),
        tp_oid=_oid(raw.get("tp_oid")),
        sl_oid=_oid(raw.get("sl_oid")),
        margin=_optional_decimal(raw.get("margin"), "margin", symbol),
        unrealized_pnl=_optional_decimal(raw.get("unrealized_pnl"), "unrealized_pnl", symbol),
        confidence=float(confidence) if confidence not in (None, "") else None,
    )


def parse_snapshot(
    agent_id: str,
    raw_positions: Any,
    *,
    fetched_at: datetime | None = None,
) -> AgentSnapshot:
    """Validate and convert a symbol -> raw position mapping.

    Raises
    ------
    MalformedSnapshotError
        If the payload fails schema validation, a number cannot be parsed,
        or a mapping key does not match the position's own symbol.
    """
    try:
        jsonschema.validate(instance=raw_positions, schema=SNAPSHOT_SCHEMA)
    except jsonschema.ValidationError as exc:
        where = "/".join(str(p) for p in exc.absolute_path) or "<root>"
        raise MalformedSnapshotError(
            f"Snapshot for {agent_id} failed validation at {where}: {exc.message}"
        ) from exc

    positions: dict[str, Position] = {}
    for key, raw in raw_positions.items():
        if raw["symbol"] != key:
            raise MalformedSnapshotError(
                f"Snapshot for {agent_id}: key {key!r} holds position for {raw['symbol']!r}"
            )
        positions[key] = parse_position(raw)

    return AgentSnapshot(
        agent_id=agent_id,
        positions=positions,
        fetched_at=fetched_at or datetime.now(timezone.utc),
    )
