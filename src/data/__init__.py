"""
Signal data: poll a remote feed for an agent's positions and parse them
into AgentSnapshots.

Depends on follow_core for contracts and parsing; no dependency from
follow_core back to data.
"""

from data.source import SignalSource, StaticSignalSource

__all__ = [
    "SignalSource",
    "StaticSignalSource",
    "get_signal_source",
]


def get_signal_source(config) -> SignalSource:
    """Build the HTTP source from a SourceConfig. Lazy import keeps requests off the core path."""
    from data.nof1 import NofOneSignalSource

    return NofOneSignalSource(
        config.base_url,
        timeout=config.timeout,
        retries=config.retries,
        backoff=config.backoff,
        last_hourly_marker=config.last_hourly_marker,
    )
