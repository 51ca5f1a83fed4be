"""Ready-made setup capabilities.

A capability is anything with an ``async setup(session)`` method. These two
cover the common cases:

    >>> MachineSetup("t3.micro", "ami-123", CommandSetup("apt-get update -y"))
    >>> MachineSetup.from_function("t3.micro", "ami-123", install_deps)
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from loguru import logger

from spotburst.types.protocols import Session

log = logger.bind(component="setup")

type SetupFn = Callable[[Session], Awaitable[bool | None] | bool | None]


@dataclass(frozen=True, slots=True)
class FunctionSetup:
    """Adapts a plain function, sync or async, to the capability protocol."""

    fn: SetupFn

    async def setup(self, session: Session) -> bool | None:
        result = self.fn(session)
        if inspect.isawaitable(result):
            result = await result
        return result


@dataclass(frozen=True, slots=True, init=False)
class CommandSetup:
    """Runs shell commands in order, stopping at the first non-zero exit."""

    commands: tuple[str, ...]

    def __init__(self, *commands: str) -> None:
        object.__setattr__(self, "commands", commands)

    async def setup(self, session: Session) -> bool:
        for command in self.commands:
            result = await session.run(command)
            if not result.ok:
                log.warning(
                    "Command exited with {code}: {cmd} ({stderr})",
                    code=result.exit_code,
                    cmd=command,
                    stderr=result.stderr.strip(),
                )
                return False
        return True
