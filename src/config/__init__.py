"""
Configuration loader.

Reads config.yaml, validates it against a JSON Schema, resolves env vars
for secrets.
"""

from config.loader import (
    AppConfig,
    ExchangeConfig,
    ExecutionConfig,
    FollowConfig,
    JournalConfig,
    NotificationConfig,
    SourceConfig,
    load_config,
)

__all__ = [
    "AppConfig",
    "ExchangeConfig",
    "ExecutionConfig",
    "FollowConfig",
    "JournalConfig",
    "NotificationConfig",
    "SourceConfig",
    "load_config",
]
