"""
Error taxonomy for the follower.

Execution-path errors are carried inside result objects (ExecutionResult,
PipelineResult) rather than raised across component boundaries. Only
MalformedSnapshotError (aborts one cycle) and UnknownAgentError (ends the
session) are raised to the scheduler.
"""

from __future__ import annotations

from decimal import Decimal


class FollowError(Exception):
    """Base class for every error the follower reports."""


class ConfigError(FollowError):
    """Raised when config loading or validation fails."""


class MalformedSnapshotError(FollowError):
    """Snapshot payload is missing required fields or is inconsistent.

    Terminal for the poll cycle; session state is left untouched.
    """


class UnknownAgentError(FollowError):
    """The signal source has no such agent. Terminal for the session."""

    def __init__(self, agent_id: str, available: list[str] | None = None) -> None:
        self.agent_id = agent_id
        self.available = sorted(available or [])
        msg = f"Unknown agent: {agent_id!r}"
        if self.available:
            msg += f" (available: {', '.join(self.available)})"
        super().__init__(msg)


class SignalSourceError(FollowError):
    """Signal source could not be reached or returned garbage."""


class GatewayError(FollowError):
    """Raised by exchange gateways; converted to results by the engine."""

    def __init__(self, message: str, code: int | None = None) -> None:
        self.code = code
        super().__init__(message)


class ConnectivityError(FollowError):
    """Venue unreachable. Plan-scoped; retried implicitly next cycle."""


class InsufficientMarginError(FollowError):
    """Required margin exceeds the available balance."""

    def __init__(self, required: Decimal, available: Decimal) -> None:
        self.required = required
        self.available = available
        self.deficit = required - available
        super().__init__(
            f"Insufficient margin: required {required:.2f}, "
            f"available {available:.2f} (deficit {self.deficit:.2f})"
        )


class LeverageSetError(FollowError):
    """Leverage could not be set. Logged as a warning, never fatal."""


class OrderRejectedError(FollowError):
    """Primary order submission failed."""


class ProtectiveLegError(FollowError):
    """A take-profit or stop-loss leg failed. Never affects the primary."""

    def __init__(self, leg: str, message: str) -> None:
        self.leg = leg
        super().__init__(f"{leg} leg failed: {message}")
