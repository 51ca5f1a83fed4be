"""Descriptor registry and run entry point.

Example:

    from spotburst import Burst, CommandSetup, MachineSetup

    burst = Burst.from_config()
    burst.add_set("web", 2, MachineSetup("t3.micro", "ami-123", CommandSetup("sudo apt-get update")))
    burst.set_duration_budget(2)

    def work(fleet):
        for machine in fleet["web"]:
            print(machine.public_dns)

    burst.run(work)
"""

from __future__ import annotations

import asyncio
from pathlib import Path

from loguru import logger

from spotburst.constants import DEFAULT_DURATION_HOURS, MAX_DURATION_HOURS
from spotburst.core.exceptions import InvalidConfigError, InvalidDescriptorError
from spotburst.fleet import FleetCallback
from spotburst.logging import LogConfig, run_logging
from spotburst.orchestrator import Orchestrator, OrchestratorConfig
from spotburst.types.core import Descriptor, LaunchProfile, MachineSetup, RunConfig, RunReport
from spotburst.types.protocols import Provisioner, SessionClient

log = logger.bind(component="registry")


class Burst:
    """Collects machine groups and a time budget, then runs them.

    Args:
        provisioner: Spot capacity control plane.
        sessions: Opens remote sessions to booted machines.
        profile: Network/security/key settings for every request.
        config: Polling, concurrency and teardown tuning.
        logging: ``True`` for default logging, a ``LogConfig``, or ``False``.
        strict: Reject re-registering an existing group name instead of
            replacing it.
    """

    def __init__(
        self,
        provisioner: Provisioner,
        sessions: SessionClient,
        *,
        profile: LaunchProfile | None = None,
        config: OrchestratorConfig | None = None,
        logging: LogConfig | bool = False,
        strict: bool = False,
    ) -> None:
        self._provisioner = provisioner
        self._sessions = sessions
        self._profile = profile or LaunchProfile()
        self._config = config or OrchestratorConfig()
        self._strict = strict
        self._descriptors: dict[str, Descriptor] = {}
        self._run_config = RunConfig(duration_hours=DEFAULT_DURATION_HOURS)

        match logging:
            case LogConfig():
                self._log_config: LogConfig | None = logging
            case True:
                self._log_config = LogConfig()
            case _:
                self._log_config = None

    @classmethod
    def from_config(
        cls,
        *,
        project_dir: Path | None = None,
        global_path: Path | None = None,
        strict: bool = False,
    ) -> Burst:
        """Build a registry wired to AWS and SSH from ``spotburst.toml``."""
        from spotburst.config import resolve_settings
        from spotburst.providers.ssh import SSHSessionClient

        settings = resolve_settings(project_dir=project_dir, global_path=global_path)
        burst = cls(
            settings.aws.create_provisioner(),
            SSHSessionClient(settings.ssh),
            profile=settings.aws.launch_profile(),
            config=settings.orchestrator,
            logging=settings.logging or False,
            strict=strict,
        )
        burst.set_duration_budget(settings.duration_hours)
        return burst

    @property
    def descriptors(self) -> dict[str, Descriptor]:
        return dict(self._descriptors)

    @property
    def run_config(self) -> RunConfig:
        return self._run_config

    def add_set(self, name: str, count: int, setup: MachineSetup) -> None:
        """Register ``count`` machines built from ``setup`` under ``name``.

        Registering an existing name replaces the previous descriptor
        (last write wins) unless the registry is strict.

        Raises:
            InvalidDescriptorError: Empty name, non-positive count, or a
                duplicate name on a strict registry.
        """
        if not isinstance(name, str) or not name:
            raise InvalidDescriptorError(f"Group name must be a non-empty string, got {name!r}")
        if not isinstance(count, int) or isinstance(count, bool) or count <= 0:
            raise InvalidDescriptorError(f"Group '{name}': count must be a positive integer, got {count!r}")

        if name in self._descriptors:
            if self._strict:
                raise InvalidDescriptorError(f"Group '{name}' is already registered")
            log.warning("Group {group} registered twice; keeping the last descriptor", group=name)

        self._descriptors[name] = Descriptor(name=name, setup=setup, count=count)

    def set_duration_budget(self, hours: int) -> None:
        """Bound how long granted capacity may be held, in whole hours.

        Raises:
            InvalidConfigError: ``hours`` is not an integer in 1..255.
        """
        if not isinstance(hours, int) or isinstance(hours, bool) or not 0 < hours <= MAX_DURATION_HOURS:
            raise InvalidConfigError(
                f"Duration budget must be a whole number of hours in 1..{MAX_DURATION_HOURS}, got {hours!r}"
            )
        self._run_config = RunConfig(duration_hours=hours)

    def orchestrator(self) -> Orchestrator:
        """Snapshot the registered groups into a fresh orchestrator."""
        if not self._descriptors:
            raise InvalidDescriptorError("No machine groups registered")

        return Orchestrator(
            self._descriptors,
            self._run_config,
            provisioner=self._provisioner,
            sessions=self._sessions,
            profile=self._profile,
            config=self._config,
        )

    async def run_async(self, callback: FleetCallback) -> RunReport:
        orchestrator = self.orchestrator()
        with run_logging(self._log_config):
            return await orchestrator.run(callback)

    def run(self, callback: FleetCallback) -> RunReport:
        """Blocking wrapper around ``run_async``."""
        return asyncio.run(self.run_async(callback))

