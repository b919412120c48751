"""Load and validate conduit.yaml configuration."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from conduit.config.models import ConduitConfig

DEFAULT_CONFIG_NAME = "conduit.yaml"


class ConfigError(Exception):
    """User-facing configuration error."""


def load_config(path: Path | None = None) -> ConduitConfig:
    """Load and validate a conduit.yaml file.

    Args:
        path: Explicit config file path. If None, looks for
              conduit.yaml in the current directory and falls back to
              defaults when there is none.

    Returns:
        A validated ConduitConfig instance.

    Raises:
        ConfigError: On missing explicit file, bad YAML, or validation failure.
    """
    config_path = _resolve_path(path)
    if config_path is None:
        return ConduitConfig()
    raw = _read_yaml(config_path)
    _load_env(config_path.parent)
    config = _validate(raw)
    _resolve_relative_paths(config, config_path.parent)
    return config


def _resolve_path(path: Path | None) -> Path | None:
    if path is not None:
        resolved = Path(path)
        if not resolved.is_file():
            msg = f"Config file not found: {resolved}"
            raise ConfigError(msg)
        return resolved

    default = Path.cwd() / DEFAULT_CONFIG_NAME
    return default if default.is_file() else None


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        msg = f"Cannot read config file: {exc}"
        raise ConfigError(msg) from exc

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        detail = ""
        if hasattr(exc, "problem_mark") and exc.problem_mark is not None:
            mark = exc.problem_mark
            detail = f" (line {mark.line + 1}, column {mark.column + 1})"
        msg = f"Invalid YAML in {path.name}{detail}"
        raise ConfigError(msg) from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        msg = f"Expected a YAML mapping in {path.name}, got {type(data).__name__}"
        raise ConfigError(msg)

    return data


def _load_env(config_dir: Path) -> None:
    # Spawned agents inherit the process environment, .env included.
    env_path = config_dir / ".env"
    if env_path.is_file():
        load_dotenv(env_path)


def _resolve_relative_paths(config: ConduitConfig, base_dir: Path) -> None:
    events_dir = config.telemetry.events_dir
    if events_dir is not None and not events_dir.is_absolute():
        config.telemetry.events_dir = base_dir / events_dir
    cwd = config.executor.cwd
    if cwd is not None and not Path(cwd).is_absolute():
        config.executor.cwd = str(base_dir / cwd)


def _validate(raw: dict[str, Any]) -> ConduitConfig:
    try:
        return ConduitConfig.model_validate(raw)
    except ValidationError as exc:
        parts: list[str] = []
        for err in exc.errors():
            loc = " → ".join(str(s) for s in err["loc"])
            msg = err["msg"]
            if "field required" in msg.lower():
                msg = "This field is required"
            elif "extra inputs are not permitted" in msg.lower():
                msg = "Unknown setting"
            elif "input should be" in msg.lower():
                msg = f"Invalid value: {msg}"
            parts.append(f"  {loc}: {msg}")
        joined = "\n".join(parts)
        msg = f"Config validation failed:\n{joined}"
        raise ConfigError(msg) from exc
