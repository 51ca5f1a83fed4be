"""Provider implementations: AWS spot capacity and SSH sessions."""

from spotburst.providers.aws import AWS, AWSProvisioner
from spotburst.providers.ssh import SSHConfig, SSHSession, SSHSessionClient

__all__ = [
    "AWS",
    "AWSProvisioner",
    "SSHConfig",
    "SSHSession",
    "SSHSessionClient",
]
