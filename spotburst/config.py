"""TOML-based run configuration.

Loads ~/.spotburst/defaults.toml (global) and spotburst.toml (project),
merges them, and resolves the result into typed settings:

    duration_hours = 2

    [aws]
    region = "us-east-1"
    security_groups = ["ssh"]
    key_name = "ops"

    [ssh]
    username = "ubuntu"
    key_path = "~/.ssh/ops.pem"

    [orchestrator]
    setup_concurrency = 4

    [orchestrator.readiness_poll]
    timeout = 900

    [logging]
    level = "DEBUG"
"""

from __future__ import annotations

import dataclasses
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from spotburst.constants import DEFAULT_DURATION_HOURS
from spotburst.core.exceptions import InvalidConfigError
from spotburst.logging import LogConfig
from spotburst.orchestrator import OrchestratorConfig
from spotburst.providers.aws.config import AWS
from spotburst.providers.ssh import SSHConfig
from spotburst.providers.wait import PollPolicy

type RawConfig = dict[str, Any]

GLOBAL_CONFIG_PATH = Path.home() / ".spotburst" / "defaults.toml"
PROJECT_CONFIG_NAME = "spotburst.toml"


@dataclass(frozen=True, slots=True)
class Settings:
    """Everything a run needs besides the machine groups themselves."""

    aws: AWS = field(default_factory=AWS)
    ssh: SSHConfig = field(default_factory=SSHConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    logging: LogConfig | None = None
    duration_hours: int = DEFAULT_DURATION_HOURS


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise InvalidConfigError(f"{path}: {e}") from e


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> RawConfig:
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    project_path = (project_dir or Path.cwd()) / PROJECT_CONFIG_NAME
    project_cfg = _read_toml(project_path)
    return _deep_merge(global_cfg, project_cfg)


def _table(section: str, raw: Any) -> RawConfig:
    if not isinstance(raw, dict):
        raise InvalidConfigError(f"[{section}] must be a table, got {raw!r}")
    return dict(raw)


def _build[T](cls: type[T], section: str, raw: Any) -> T:
    raw = _table(section, raw)
    known = {f.name for f in dataclasses.fields(cls)}  # type: ignore[arg-type]
    unknown = sorted(set(raw) - known)
    if unknown:
        raise InvalidConfigError(f"Unknown key(s) in [{section}]: {', '.join(unknown)}")
    values = {k: tuple(v) if isinstance(v, list) else v for k, v in raw.items()}
    try:
        return cls(**values)
    except TypeError as e:
        raise InvalidConfigError(f"[{section}]: {e}") from e


def _build_orchestrator(raw: Any) -> OrchestratorConfig:
    raw = _table("orchestrator", raw)
    polls = {
        name: _build(PollPolicy, f"orchestrator.{name}", raw.pop(name))
        for name in ("active_poll", "readiness_poll")
        if name in raw
    }
    return _build(OrchestratorConfig, "orchestrator", {**raw, **polls})


def _build_ssh(raw: Any) -> SSHConfig:
    raw = _table("ssh", raw)
    if raw.get("key_path"):
        raw["key_path"] = os.path.expanduser(raw["key_path"])
    return _build(SSHConfig, "ssh", raw)


def resolve_settings(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> Settings:
    config = dict(load_config(project_dir=project_dir, global_path=global_path))

    sections = {"aws", "ssh", "orchestrator", "logging", "duration_hours"}
    unknown = sorted(set(config) - sections)
    if unknown:
        raise InvalidConfigError(f"Unknown top-level key(s): {', '.join(unknown)}")

    duration = config.get("duration_hours", DEFAULT_DURATION_HOURS)
    if not isinstance(duration, int) or isinstance(duration, bool):
        raise InvalidConfigError(f"duration_hours must be an integer, got {duration!r}")

    raw_logging = config.get("logging")
    return Settings(
        aws=_build(AWS, "aws", config.get("aws", {})),
        ssh=_build_ssh(config.get("ssh", {})),
        orchestrator=_build_orchestrator(config.get("orchestrator", {})),
        logging=_build(LogConfig, "logging", raw_logging) if raw_logging is not None else None,
        duration_hours=duration,
    )
