"""Type definitions for spotburst."""

from spotburst.types.core import (
    CapacityRequest,
    Descriptor,
    Fleet,
    InstanceMetadata,
    InstanceRecord,
    LaunchProfile,
    Machine,
    MachineSetup,
    RequestStatus,
    RunConfig,
    RunReport,
    RunState,
    SpotRequestRecord,
)
from spotburst.types.protocols import (
    CommandResult,
    Provisioner,
    Session,
    SessionClient,
    SetupCapability,
)

__all__ = [
    "CapacityRequest",
    "CommandResult",
    "Descriptor",
    "Fleet",
    "InstanceMetadata",
    "InstanceRecord",
    "LaunchProfile",
    "Machine",
    "MachineSetup",
    "Provisioner",
    "RequestStatus",
    "RunConfig",
    "RunReport",
    "RunState",
    "Session",
    "SessionClient",
    "SetupCapability",
    "SpotRequestRecord",
]
