"""spotburst - Short-lived fleets of spot machines.

Example:

    from spotburst import Burst, CommandSetup, MachineSetup

    burst = Burst.from_config()
    burst.add_set("web", 2, MachineSetup("t3.micro", "ami-123", CommandSetup("uptime")))
    burst.set_duration_budget(1)

    report = burst.run(lambda fleet: [m.public_dns for m in fleet["web"]])
"""

from spotburst.capabilities import CommandSetup, FunctionSetup
from spotburst.config import Settings, load_config, resolve_settings
from spotburst.core.exceptions import (
    CancelFailedError,
    ErrorKind,
    InvalidConfigError,
    InvalidDescriptorError,
    NotYetVisibleError,
    PollFailedError,
    ProviderError,
    ProviderErrorCode,
    ProviderTransportError,
    ProvisioningError,
    SessionError,
    SetupFailedError,
    SpotburstError,
    SubmissionFailedError,
    TeardownFailedError,
    ThrottledError,
)
from spotburst.logging import LogConfig
from spotburst.orchestrator import Orchestrator, OrchestratorConfig
from spotburst.providers.aws import AWS, AWSProvisioner
from spotburst.providers.ssh import SSHConfig, SSHSessionClient
from spotburst.providers.wait import PollPolicy
from spotburst.registry import Burst
from spotburst.types import (
    CapacityRequest,
    Fleet,
    InstanceMetadata,
    LaunchProfile,
    Machine,
    MachineSetup,
    RequestStatus,
    RunConfig,
    RunReport,
    RunState,
)

__all__ = [
    "AWS",
    "AWSProvisioner",
    "Burst",
    "CancelFailedError",
    "CapacityRequest",
    "CommandSetup",
    "ErrorKind",
    "Fleet",
    "FunctionSetup",
    "InstanceMetadata",
    "InvalidConfigError",
    "InvalidDescriptorError",
    "LaunchProfile",
    "LogConfig",
    "Machine",
    "MachineSetup",
    "NotYetVisibleError",
    "Orchestrator",
    "OrchestratorConfig",
    "PollFailedError",
    "PollPolicy",
    "ProviderError",
    "ProviderErrorCode",
    "ProviderTransportError",
    "ProvisioningError",
    "RequestStatus",
    "RunConfig",
    "RunReport",
    "RunState",
    "SSHConfig",
    "SSHSessionClient",
    "SessionError",
    "SetupFailedError",
    "Settings",
    "SpotburstError",
    "SubmissionFailedError",
    "TeardownFailedError",
    "ThrottledError",
    "load_config",
    "resolve_settings",
]
