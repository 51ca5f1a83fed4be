"""Run-scoped loguru setup.

spotburst logs through loguru but stays silent as a library: the
``spotburst`` logger is disabled on import and only switched on while a
``Burst`` configured with ``logging=`` is running.

    burst = Burst(provisioner, sessions, logging=True)
    burst = Burst(provisioner, sessions, logging=LogConfig(level="DEBUG", file="burst.log"))

Each line carries the bound context of the call site (component, group,
instance or request id) after the location, e.g.::

    12:01:07.113 | INFO     | orchestrator | group=web instance_id=i-1 - Configured ec2-...
"""

from __future__ import annotations

import sys
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

from loguru import logger

logger.disable("spotburst")

type LogLevel = Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR"]

# rendered after the component column, in this order
_CONTEXT_KEYS = ("group", "instance_id", "request_id")

_CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[_component]: <12}</cyan>"
    "<dim>{extra[_ctx]}</dim> - "
    "<level>{message}</level>"
)

_FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[_component]: <12} | "
    "{name}:{function}:{line}{extra[_ctx]} - {message}"
)


@dataclass(frozen=True, slots=True)
class LogConfig:
    """Where and how much a run logs.

    Attributes:
        level: Minimum level for the console.
        file: Also write DEBUG and above to this file.
        console: Log to stderr.
        rotation: Rotate the file at this size or age ("50 MB", "1 day").
        retention: Rotated files to keep.
        compression: Archive format applied when a file is rotated or
            closed. ``None`` keeps plain text.
    """

    level: LogLevel = "INFO"
    file: str | None = None
    console: bool = True
    rotation: str = "50 MB"
    retention: int = 10
    compression: str | None = "zip"


def _patch(record: Any) -> None:
    extra = record["extra"]
    extra["_component"] = extra.get("component", record["name"].rsplit(".", 1)[-1])
    context = " ".join(f"{k}={extra[k]}" for k in _CONTEXT_KEYS if k in extra)
    extra["_ctx"] = f" | {context}" if context else ""


def _add_handlers(config: LogConfig) -> list[int]:
    handler_ids: list[int] = []

    if config.console:
        handler_ids.append(
            logger.add(
                sys.stderr,
                level=config.level,
                format=_CONSOLE_FORMAT,
                colorize=True,
                filter="spotburst",
            )
        )

    if config.file:
        Path(config.file).parent.mkdir(parents=True, exist_ok=True)
        handler_ids.append(
            logger.add(
                config.file,
                level="DEBUG",
                format=_FILE_FORMAT,
                rotation=config.rotation,
                retention=config.retention,
                compression=config.compression,
                diagnose=False,
                filter="spotburst",
            )
        )

    return handler_ids


@contextmanager
def run_logging(config: LogConfig | None) -> Iterator[None]:
    """Enable spotburst logging for the body of the ``with`` block.

    ``None`` leaves logging untouched.
    """
    if config is None:
        yield
        return

    logger.configure(patcher=_patch)
    logger.enable("spotburst")
    handler_ids = _add_handlers(config)
    try:
        yield
    finally:
        for hid in handler_ids:
            logger.remove(hid)
        logger.disable("spotburst")
