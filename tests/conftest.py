from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any

import pytest

from spotburst.orchestrator import OrchestratorConfig
from spotburst.providers.wait import PollPolicy
from spotburst.registry import Burst
from spotburst.types.core import CapacityRequest, InstanceMetadata, RequestStatus
from spotburst.types.protocols import CommandResult

type Step = Exception | Callable[[list[str]], Any]


def instance_for(request_id: str) -> str:
    return "i-" + request_id.removeprefix("sir-")


class FakeProvisioner:
    """Scripted provisioner.

    ``request_steps``/``instance_steps`` are consumed one per describe call:
    an exception is raised, a callable builds the response from the ids.
    Once exhausted, every request is active and every instance complete.
    """

    def __init__(self) -> None:
        self.submitted: list[CapacityRequest] = []
        self.submit_errors: dict[int, Exception] = {}
        self.short_by = 0
        self.request_steps: list[Step] = []
        self.instance_steps: list[Step] = []
        self.cancel_errors: list[Exception] = []
        self.terminate_errors: list[Exception] = []

        self.describe_request_calls: list[tuple[str, ...]] = []
        self.describe_instance_calls: list[tuple[str, ...]] = []
        self.cancelled: list[tuple[str, ...]] = []
        self.terminated: list[tuple[str, ...]] = []
        self.terminate_attempts = 0

        self._next_id = 1
        self._type_of: dict[str, str] = {}

    async def submit_capacity_request(self, request: CapacityRequest) -> list[str]:
        index = len(self.submitted)
        self.submitted.append(request)
        if index in self.submit_errors:
            raise self.submit_errors[index]

        ids = []
        for _ in range(request.count - self.short_by):
            rid = f"sir-{self._next_id}"
            self._next_id += 1
            self._type_of[instance_for(rid)] = request.instance_type
            ids.append(rid)
        return ids

    async def describe_requests(self, request_ids: Sequence[str]) -> list[RequestStatus]:
        ids = list(request_ids)
        self.describe_request_calls.append(tuple(ids))
        if self.request_steps:
            step = self.request_steps.pop(0)
            if isinstance(step, Exception):
                raise step
            return step(ids)
        return [RequestStatus(rid, "active", instance_for(rid)) for rid in ids]

    async def cancel_requests(self, request_ids: Sequence[str]) -> None:
        if self.cancel_errors:
            raise self.cancel_errors.pop(0)
        self.cancelled.append(tuple(request_ids))

    async def describe_instances(self, instance_ids: Sequence[str]) -> list[InstanceMetadata | None]:
        ids = list(instance_ids)
        self.describe_instance_calls.append(tuple(ids))
        if self.instance_steps:
            step = self.instance_steps.pop(0)
            if isinstance(step, Exception):
                raise step
            return step(ids)
        return [self.complete(iid) for iid in ids]

    async def terminate_instances(self, instance_ids: Sequence[str]) -> None:
        self.terminate_attempts += 1
        if self.terminate_errors:
            raise self.terminate_errors.pop(0)
        self.terminated.append(tuple(instance_ids))

    def complete(self, instance_id: str) -> InstanceMetadata:
        n = instance_id.removeprefix("i-")
        return InstanceMetadata(
            instance_id=instance_id,
            instance_type=self._type_of.get(instance_id, "t2.micro"),
            private_ip=f"10.0.0.{n}",
            public_dns=f"ec2-{n}.compute.amazonaws.com",
            state="running",
        )


class FakeSession:
    def __init__(self, host: str, failing: set[str]) -> None:
        self.host = host
        self.commands: list[str] = []
        self.closed = False
        self._failing = failing

    async def run(self, command: str, *, check: bool = False) -> CommandResult:
        self.commands.append(command)
        code = 1 if command in self._failing else 0
        return CommandResult(exit_code=code, stdout="", stderr="boom" if code else "")

    async def close(self) -> None:
        self.closed = True


class FakeSessionClient:
    def __init__(self) -> None:
        self.sessions: list[FakeSession] = []
        self.connects: list[tuple[str, int]] = []
        self.unreachable: set[str] = set()
        self.failing_commands: set[str] = set()
        self.port = 22

    async def connect(self, address: str, port: int | None = None) -> FakeSession:
        port = port or self.port
        self.connects.append((address, port))
        if address in self.unreachable:
            raise ConnectionRefusedError(f"{address}:{port} refused")
        session = FakeSession(address, self.failing_commands)
        self.sessions.append(session)
        return session


INSTANT = PollPolicy(base_delay=0.0, max_delay=0.0, jitter=False)


@pytest.fixture
def provisioner() -> FakeProvisioner:
    return FakeProvisioner()


@pytest.fixture
def sessions() -> FakeSessionClient:
    return FakeSessionClient()


@pytest.fixture
def fast_config() -> OrchestratorConfig:
    return OrchestratorConfig(
        active_poll=INSTANT,
        readiness_poll=INSTANT,
        teardown_attempts=3,
        teardown_base_delay=0.0,
        teardown_max_delay=0.0,
    )


@pytest.fixture
def burst(provisioner: FakeProvisioner, sessions: FakeSessionClient, fast_config: OrchestratorConfig) -> Burst:
    return Burst(provisioner, sessions, config=fast_config)
