"""Configuration loading and validation for conduit.yaml."""

from conduit.config.models import (
    BridgeConfig,
    ConduitConfig,
    ExecutorConfig,
    TelemetryConfig,
)
from conduit.config.parser import ConfigError, load_config

__all__ = [
    "BridgeConfig",
    "ConduitConfig",
    "ConfigError",
    "ExecutorConfig",
    "TelemetryConfig",
    "load_config",
]
