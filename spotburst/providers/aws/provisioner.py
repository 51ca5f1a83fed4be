"""EC2 spot request lifecycle: request, describe, cancel, terminate.

Every boto call goes through ``_classified`` so that botocore failures
surface as typed ``ProviderError``s. The orchestrator decides what to retry
from ``ProviderError.code`` alone.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from typing import Any, Final

from botocore.exceptions import ClientError, HTTPClientError
from botocore.exceptions import ConnectionError as BotoConnectionError
from injector import Injector
from loguru import logger

from spotburst.core.exceptions import (
    NotYetVisibleError,
    ProviderError,
    ProviderTransportError,
    ThrottledError,
)
from spotburst.types.core import CapacityRequest, InstanceMetadata, RequestStatus

from .clients import AWSModule, EC2ClientFactory
from .config import AWS

log = logger.bind(component="aws")

NOT_FOUND_CODES: Final = frozenset(
    {
        "InvalidSpotInstanceRequestID.NotFound",
        "InvalidInstanceID.NotFound",
    }
)

THROTTLE_CODES: Final = frozenset(
    {
        "RequestLimitExceeded",
        "Throttling",
        "ThrottlingException",
    }
)


def classify_error(operation: str, error: Exception) -> ProviderError:
    """Map a botocore failure onto the provider error hierarchy."""
    match error:
        case ClientError():
            code = error.response.get("Error", {}).get("Code", "")
            message = f"{operation}: {error}"
            if code in NOT_FOUND_CODES:
                return NotYetVisibleError(message, provider_code=code)
            if code in THROTTLE_CODES:
                return ThrottledError(message, provider_code=code)
            return ProviderError(message, provider_code=code or None)
        case BotoConnectionError() | HTTPClientError():
            return ProviderTransportError(f"{operation}: {error}")
        case _:
            return ProviderError(f"{operation}: {error}")


class AWSProvisioner:
    """Spot capacity through the EC2 API (aioboto3).

    Example:
        >>> provisioner = AWSProvisioner.create(AWS(region="us-east-1"))
        >>> ids = await provisioner.submit_capacity_request(request)
    """

    def __init__(self, ec2: EC2ClientFactory) -> None:
        self._ec2 = ec2

    @classmethod
    def create(cls, config: AWS) -> AWSProvisioner:
        return cls(Injector([AWSModule(config)]).get(EC2ClientFactory))

    @asynccontextmanager
    async def _classified(self, operation: str) -> AsyncIterator[Any]:
        try:
            async with self._ec2() as ec2:
                yield ec2
        except (ClientError, BotoConnectionError, HTTPClientError) as e:
            raise classify_error(operation, e) from e

    # -------------------------------------------------------------------------
    # Spot Requests
    # -------------------------------------------------------------------------

    async def submit_capacity_request(self, request: CapacityRequest) -> list[str]:
        launch: dict[str, Any] = {
            "ImageId": request.ami,
            "InstanceType": request.instance_type,
        }
        profile = request.profile
        if profile.security_groups:
            launch["SecurityGroups"] = list(profile.security_groups)
        if profile.security_group_ids:
            launch["SecurityGroupIds"] = list(profile.security_group_ids)
        if profile.key_name:
            launch["KeyName"] = profile.key_name
        if profile.subnet_id:
            launch["SubnetId"] = profile.subnet_id

        params: dict[str, Any] = {
            "InstanceCount": request.count,
            "BlockDurationMinutes": request.duration_minutes,
            "LaunchSpecification": launch,
        }
        if profile.max_price:
            params["SpotPrice"] = profile.max_price

        async with self._classified("RequestSpotInstances") as ec2:
            response = await ec2.request_spot_instances(**params)

        ids = [
            sir["SpotInstanceRequestId"]
            for sir in response.get("SpotInstanceRequests", [])
            if sir.get("SpotInstanceRequestId")
        ]
        log.debug(
            "Requested {n}x {itype} ({ami}): {ids}",
            n=request.count,
            itype=request.instance_type,
            ami=request.ami,
            ids=ids,
        )
        return ids

    async def describe_requests(self, request_ids: Sequence[str]) -> list[RequestStatus]:
        async with self._classified("DescribeSpotInstanceRequests") as ec2:
            response = await ec2.describe_spot_instance_requests(
                SpotInstanceRequestIds=list(request_ids),
            )

        return [
            RequestStatus(
                request_id=sir["SpotInstanceRequestId"],
                state=sir.get("State", ""),
                instance_id=sir.get("InstanceId"),
                status_code=sir.get("Status", {}).get("Code"),
            )
            for sir in response.get("SpotInstanceRequests", [])
        ]

    async def cancel_requests(self, request_ids: Sequence[str]) -> None:
        if not request_ids:
            return

        async with self._classified("CancelSpotInstanceRequests") as ec2:
            await ec2.cancel_spot_instance_requests(SpotInstanceRequestIds=list(request_ids))

    # -------------------------------------------------------------------------
    # Instances
    # -------------------------------------------------------------------------

    async def describe_instances(self, instance_ids: Sequence[str]) -> list[InstanceMetadata | None]:
        async with self._classified("DescribeInstances") as ec2:
            response = await ec2.describe_instances(InstanceIds=list(instance_ids))

        found: dict[str, InstanceMetadata] = {}
        for reservation in response.get("Reservations", []):
            for i in reservation.get("Instances", []):
                if not i.get("InstanceId"):
                    continue
                found[i["InstanceId"]] = InstanceMetadata(
                    instance_id=i["InstanceId"],
                    instance_type=i.get("InstanceType"),
                    private_ip=i.get("PrivateIpAddress"),
                    # EC2 reports "" until the public name is assigned
                    public_dns=i.get("PublicDnsName") or None,
                    state=i.get("State", {}).get("Name"),
                )

        return [found.get(iid) for iid in instance_ids]

    async def terminate_instances(self, instance_ids: Sequence[str]) -> None:
        if not instance_ids:
            return

        async with self._classified("TerminateInstances") as ec2:
            await ec2.terminate_instances(InstanceIds=list(instance_ids))
        log.info("Terminated {n} instance(s)", n=len(instance_ids))
