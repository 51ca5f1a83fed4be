"""AWS provider configuration.

Immutable configuration dataclass for the AWS provisioner.
"""

from __future__ import annotations

import typing
from dataclasses import dataclass

from spotburst.constants import DEFAULT_REGION
from spotburst.types.core import LaunchProfile

if typing.TYPE_CHECKING:
    from spotburst.providers.aws.provisioner import AWSProvisioner


@dataclass(frozen=True, slots=True)
class AWS:
    """AWS provider configuration.

    Immutable configuration that defines where spot capacity is requested
    and which network, security and key settings every machine gets.

    Example:
        >>> from spotburst.providers.aws import AWS
        >>> config = AWS(region="us-west-2", security_groups=("ssh",), key_name="ops")

    Args:
        region: AWS region for all requests. Default: us-east-1
        security_groups: Security group names (default VPC).
        security_group_ids: Security group ids (custom VPC / subnet).
        key_name: EC2 key pair installed on every instance.
        subnet_id: Launch into this subnet.
        max_price: Maximum hourly spot price in USD, as a string.
        connect_timeout: Seconds to wait for the EC2 endpoint to accept a connection.
        read_timeout: Seconds to wait for an EC2 response.
    """

    region: str = DEFAULT_REGION
    security_groups: tuple[str, ...] = ()
    security_group_ids: tuple[str, ...] = ()
    key_name: str | None = None
    subnet_id: str | None = None
    max_price: str | None = None
    connect_timeout: float = 10.0
    read_timeout: float = 30.0

    def launch_profile(self) -> LaunchProfile:
        return LaunchProfile(
            security_groups=self.security_groups,
            security_group_ids=self.security_group_ids,
            key_name=self.key_name,
            subnet_id=self.subnet_id,
            max_price=self.max_price,
        )

    def create_provisioner(self) -> AWSProvisioner:
        from spotburst.providers.aws.provisioner import AWSProvisioner

        return AWSProvisioner.create(self)
