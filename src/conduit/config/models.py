"""Pydantic v2 models for conduit.yaml configuration."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from conduit.constants import DEFAULT_TOOL_DEBOUNCE


class ExecutorConfig(BaseModel):
    """Defaults applied to streamed subprocess invocations."""

    model_config = ConfigDict(extra="forbid")

    timeout: float = Field(
        default=600.0,
        gt=0,
        description="Wall-clock limit in seconds before the child is killed",
    )
    cwd: str | None = Field(
        default=None,
        description="Working directory for spawned commands",
    )
    env: dict[str, str] = Field(
        default_factory=dict,
        description="Environment overrides layered over the host environment",
    )

    @field_validator("env", mode="before")
    @classmethod
    def _stringify_env(cls, value: object) -> object:
        # YAML turns `DEBUG: 1` into an int; environment values are strings.
        if isinstance(value, dict):
            return {str(k): "" if v is None else str(v) for k, v in value.items()}
        return value


class BridgeConfig(BaseModel):
    """Output shaping for in-process agent sessions."""

    model_config = ConfigDict(extra="forbid")

    tool_debounce: float = Field(
        default=DEFAULT_TOOL_DEBOUNCE,
        ge=0,
        description="Quiet period in seconds before tool summaries are sent",
    )
    verbose: Literal["off", "on"] = Field(
        default="off",
        description="Deliver a summary for every finished tool call",
    )

    @field_validator("verbose", mode="before")
    @classmethod
    def _verbose_from_bool(cls, value: object) -> object:
        # Bare `on` / `off` are booleans in YAML 1.1.
        if isinstance(value, bool):
            return "on" if value else "off"
        return value


class TelemetryConfig(BaseModel):
    """Where agent events are recorded."""

    model_config = ConfigDict(extra="forbid")

    events_dir: Path | None = Field(
        default=None,
        description="Directory for JSONL event files; unset disables recording",
    )


class ConduitConfig(BaseModel):
    """Root configuration model for conduit.yaml."""

    model_config = ConfigDict(extra="forbid")

    executor: ExecutorConfig = Field(default_factory=ExecutorConfig)
    bridge: BridgeConfig = Field(default_factory=BridgeConfig)
    telemetry: TelemetryConfig = Field(default_factory=TelemetryConfig)
