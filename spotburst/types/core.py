"""Core value types: descriptors, records, machines and the fleet."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from spotburst.constants import DEFAULT_DURATION_HOURS

if TYPE_CHECKING:
    from spotburst.types.protocols import Session, SetupCapability


@dataclass(frozen=True, slots=True)
class MachineSetup:
    """How to boot and configure one machine of a group.

    Args:
        instance_type: Instance shape, e.g. ``"t2.micro"``.
        ami: Boot image id, e.g. ``"ami-123"``.
        setup: Capability run against a fresh remote session.
    """

    instance_type: str
    ami: str
    setup: SetupCapability

    @classmethod
    def from_function(cls, instance_type: str, ami: str, fn: Any) -> MachineSetup:
        """Wrap a plain (sync or async) ``fn(session)`` into a capability."""
        from spotburst.capabilities import FunctionSetup

        return cls(instance_type=instance_type, ami=ami, setup=FunctionSetup(fn))


@dataclass(frozen=True, slots=True)
class Descriptor:
    """A named group of identical machines."""

    name: str
    setup: MachineSetup
    count: int


@dataclass(frozen=True, slots=True)
class RunConfig:
    """Global time budget for a run.

    Expressed in whole hours at the API surface; the provider wants minutes.
    """

    duration_hours: int = DEFAULT_DURATION_HOURS

    @property
    def duration_minutes(self) -> int:
        return self.duration_hours * 60


@dataclass(frozen=True, slots=True)
class LaunchProfile:
    """Network, security and credential settings applied to every request."""

    security_groups: tuple[str, ...] = ()
    security_group_ids: tuple[str, ...] = ()
    key_name: str | None = None
    subnet_id: str | None = None
    max_price: str | None = None


@dataclass(frozen=True, slots=True)
class CapacityRequest:
    """One spot capacity request, as submitted to the provisioner."""

    instance_type: str
    ami: str
    count: int
    duration_minutes: int
    profile: LaunchProfile = field(default_factory=LaunchProfile)


# =============================================================================
# Provider Records
# =============================================================================


@dataclass(frozen=True, slots=True)
class SpotRequestRecord:
    request_id: str
    group: str


@dataclass(frozen=True, slots=True)
class InstanceRecord:
    instance_id: str
    group: str


@dataclass(frozen=True, slots=True)
class RequestStatus:
    """Status of a spot request as reported by the provider."""

    request_id: str
    state: str
    instance_id: str | None = None
    status_code: str | None = None


@dataclass(frozen=True, slots=True)
class InstanceMetadata:
    """Instance description. Fields stay ``None`` until the provider fills them."""

    instance_id: str
    instance_type: str | None = None
    private_ip: str | None = None
    public_dns: str | None = None
    state: str | None = None

    @property
    def is_complete(self) -> bool:
        return all((self.instance_id, self.instance_type, self.private_ip, self.public_dns))


# =============================================================================
# Fleet
# =============================================================================


@dataclass(slots=True)
class Machine:
    """A booted machine. ``session`` is attached once setup succeeded."""

    instance_id: str
    instance_type: str
    private_ip: str
    public_dns: str
    session: Session | None = field(default=None, repr=False, compare=False)


type Fleet = dict[str, list[Machine]]
"""Group name to machines of that group, ordered by instance id."""


class RunState(StrEnum):
    """Where a run is (or ended) in the provisioning lifecycle."""

    PENDING = "pending"
    REQUESTING = "requesting"
    AWAITING_ACTIVE = "awaiting-active"
    CANCELLING_REQUESTS = "cancelling-requests"
    AWAITING_READINESS = "awaiting-readiness"
    CONFIGURING = "configuring"
    HANDED_OFF = "handed-off"
    TEARING_DOWN = "tearing-down"
    COMPLETED = "completed"
    ABORTED = "aborted"
    ABORTED_WITH_CLEANUP = "aborted-with-cleanup"
    TEARDOWN_FAILED = "teardown-failed"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset(
    {
        RunState.COMPLETED,
        RunState.ABORTED,
        RunState.ABORTED_WITH_CLEANUP,
        RunState.TEARDOWN_FAILED,
    }
)


@dataclass(frozen=True, slots=True)
class RunReport:
    """Outcome of a completed run."""

    state: RunState
    request_ids: tuple[str, ...]
    instance_ids: tuple[str, ...]
    result: Any = None
