"""Protocol definitions for the collaborators a run talks to."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from spotburst.types.core import CapacityRequest, InstanceMetadata, RequestStatus

__all__ = [
    "CommandResult",
    "Provisioner",
    "Session",
    "SessionClient",
    "SetupCapability",
]


@dataclass(frozen=True, slots=True)
class CommandResult:
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@runtime_checkable
class Session(Protocol):
    """An open remote command-execution session on one machine."""

    async def run(self, command: str, *, check: bool = False) -> CommandResult: ...

    async def close(self) -> None: ...


@runtime_checkable
class SessionClient(Protocol):
    """Opens sessions to booted machines. Owns credentials and the default port."""

    async def connect(self, address: str, port: int | None = None) -> Session:
        """Open a session to ``address``. ``None`` uses the client's configured port."""
        ...


@runtime_checkable
class SetupCapability(Protocol):
    """Post-boot configuration for one machine.

    Raising, or returning ``False``, marks the machine as failed.
    """

    async def setup(self, session: Session) -> bool | None: ...


@runtime_checkable
class Provisioner(Protocol):
    """Spot capacity control plane.

    Implementations raise ``ProviderError`` subclasses, classified by
    ``ProviderErrorCode``, so callers never parse error messages.
    """

    async def submit_capacity_request(self, request: CapacityRequest) -> list[str]:
        """Submit a request and return one spot request id per machine."""
        ...

    async def describe_requests(self, request_ids: Sequence[str]) -> list[RequestStatus]: ...

    async def cancel_requests(self, request_ids: Sequence[str]) -> None: ...

    async def describe_instances(
        self, instance_ids: Sequence[str],
    ) -> list[InstanceMetadata | None]:
        """Describe instances. Entries are ``None`` for ids the provider did not return."""
        ...

    async def terminate_instances(self, instance_ids: Sequence[str]) -> None: ...
