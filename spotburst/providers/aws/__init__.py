"""AWS spot capacity provider."""

from spotburst.providers.aws.clients import AWSModule, EC2ClientFactory
from spotburst.providers.aws.config import AWS
from spotburst.providers.aws.provisioner import AWSProvisioner, classify_error

__all__ = [
    "AWS",
    "AWSModule",
    "AWSProvisioner",
    "EC2ClientFactory",
    "classify_error",
]
