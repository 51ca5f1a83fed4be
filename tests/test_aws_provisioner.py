"""Tests for the EC2 provisioner: request mapping and error classification.

Uses an in-memory EC2 client behind the same factory the DI module provides.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

import pytest
from botocore.config import Config
from botocore.exceptions import ClientError, EndpointConnectionError, HTTPClientError
from injector import Injector

from spotburst.core.exceptions import (
    NotYetVisibleError,
    ProviderError,
    ProviderErrorCode,
    ProviderTransportError,
    ThrottledError,
)
from spotburst.providers.aws import AWS, AWSModule, AWSProvisioner, EC2ClientFactory, classify_error
from spotburst.types.core import CapacityRequest, LaunchProfile

pytestmark = [pytest.mark.unit, pytest.mark.xdist_group("unit")]


def client_error(code: str, operation: str = "DescribeSpotInstanceRequests") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": f"{code} happened"}}, operation)


class FakeEC2:
    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.responses: dict[str, Any] = {}
        self.errors: dict[str, Exception] = {}

    def __getattr__(self, name: str):
        async def call(**kwargs: Any) -> Any:
            self.calls.append((name, kwargs))
            if name in self.errors:
                raise self.errors[name]
            return self.responses.get(name, {})

        return call


@pytest.fixture
def ec2() -> FakeEC2:
    return FakeEC2()


@pytest.fixture
def provisioner(ec2: FakeEC2) -> AWSProvisioner:
    @asynccontextmanager
    async def factory():
        yield ec2

    return AWSProvisioner(EC2ClientFactory(factory))


class TestClassifyError:
    @pytest.mark.parametrize(
        ("code", "expected"),
        [
            ("InvalidSpotInstanceRequestID.NotFound", NotYetVisibleError),
            ("InvalidInstanceID.NotFound", NotYetVisibleError),
            ("RequestLimitExceeded", ThrottledError),
            ("Throttling", ThrottledError),
        ],
    )
    def test_transient_client_errors(self, code, expected):
        error = classify_error("DescribeInstances", client_error(code))
        assert type(error) is expected
        assert error.provider_code == code
        assert error.transient

    def test_other_client_error(self):
        error = classify_error("RequestSpotInstances", client_error("InsufficientInstanceCapacity"))
        assert type(error) is ProviderError
        assert error.code is ProviderErrorCode.OTHER
        assert error.provider_code == "InsufficientInstanceCapacity"
        assert str(error).startswith("RequestSpotInstances: ")

    def test_connection_errors_are_transport(self):
        endpoint = EndpointConnectionError(endpoint_url="https://ec2.us-east-1.amazonaws.com/")
        assert isinstance(classify_error("TerminateInstances", endpoint), ProviderTransportError)

        dropped = HTTPClientError(error=ConnectionResetError("connection reset by peer"))
        assert isinstance(classify_error("TerminateInstances", dropped), ProviderTransportError)


class TestSubmit:
    @pytest.mark.asyncio
    async def test_maps_request_and_profile(self, provisioner, ec2):
        ec2.responses["request_spot_instances"] = {
            "SpotInstanceRequests": [
                {"SpotInstanceRequestId": "sir-a"},
                {"SpotInstanceRequestId": "sir-b"},
            ]
        }
        profile = LaunchProfile(
            security_groups=("ssh",),
            security_group_ids=("sg-1",),
            key_name="ops",
            subnet_id="subnet-9",
            max_price="0.10",
        )
        request = CapacityRequest("t2.micro", "ami-123", 2, 120, profile)

        ids = await provisioner.submit_capacity_request(request)

        assert ids == ["sir-a", "sir-b"]
        name, params = ec2.calls[0]
        assert name == "request_spot_instances"
        assert params == {
            "InstanceCount": 2,
            "BlockDurationMinutes": 120,
            "SpotPrice": "0.10",
            "LaunchSpecification": {
                "ImageId": "ami-123",
                "InstanceType": "t2.micro",
                "SecurityGroups": ["ssh"],
                "SecurityGroupIds": ["sg-1"],
                "KeyName": "ops",
                "SubnetId": "subnet-9",
            },
        }

    @pytest.mark.asyncio
    async def test_empty_profile_sends_only_required_fields(self, provisioner, ec2):
        await provisioner.submit_capacity_request(CapacityRequest("t2.micro", "ami-123", 1, 60))

        _, params = ec2.calls[0]
        assert "SpotPrice" not in params
        assert params["LaunchSpecification"] == {"ImageId": "ami-123", "InstanceType": "t2.micro"}

    @pytest.mark.asyncio
    async def test_client_error_is_classified(self, provisioner, ec2):
        ec2.errors["request_spot_instances"] = client_error("InvalidAMIID.Malformed", "RequestSpotInstances")

        with pytest.raises(ProviderError, match="InvalidAMIID.Malformed") as exc:
            await provisioner.submit_capacity_request(CapacityRequest("t2.micro", "bad", 1, 60))

        assert exc.value.code is ProviderErrorCode.OTHER
        assert isinstance(exc.value.__cause__, ClientError)


class TestDescribeRequests:
    @pytest.mark.asyncio
    async def test_maps_states(self, provisioner, ec2):
        ec2.responses["describe_spot_instance_requests"] = {
            "SpotInstanceRequests": [
                {
                    "SpotInstanceRequestId": "sir-a",
                    "State": "active",
                    "InstanceId": "i-1",
                    "Status": {"Code": "fulfilled"},
                },
                {
                    "SpotInstanceRequestId": "sir-b",
                    "State": "open",
                    "Status": {"Code": "pending-evaluation"},
                },
            ]
        }

        statuses = await provisioner.describe_requests(["sir-a", "sir-b"])

        assert [(s.request_id, s.state, s.instance_id, s.status_code) for s in statuses] == [
            ("sir-a", "active", "i-1", "fulfilled"),
            ("sir-b", "open", None, "pending-evaluation"),
        ]
        assert ec2.calls == [
            ("describe_spot_instance_requests", {"SpotInstanceRequestIds": ["sir-a", "sir-b"]}),
        ]

    @pytest.mark.asyncio
    async def test_unknown_id_is_not_yet_visible(self, provisioner, ec2):
        ec2.errors["describe_spot_instance_requests"] = client_error("InvalidSpotInstanceRequestID.NotFound")

        with pytest.raises(NotYetVisibleError):
            await provisioner.describe_requests(["sir-a"])


class TestInstances:
    @pytest.mark.asyncio
    async def test_describe_aligns_with_requested_ids(self, provisioner, ec2):
        ec2.responses["describe_instances"] = {
            "Reservations": [
                {
                    "Instances": [
                        {
                            "InstanceId": "i-2",
                            "InstanceType": "t2.micro",
                            "PrivateIpAddress": "10.0.0.2",
                            "PublicDnsName": "",
                            "State": {"Name": "pending"},
                        },
                        {
                            "InstanceId": "i-1",
                            "InstanceType": "t2.micro",
                            "PrivateIpAddress": "10.0.0.1",
                            "PublicDnsName": "ec2-1.compute.amazonaws.com",
                            "State": {"Name": "running"},
                        },
                    ]
                }
            ]
        }

        metas = await provisioner.describe_instances(["i-1", "i-2", "i-3"])

        assert metas[0].is_complete
        assert metas[0].public_dns == "ec2-1.compute.amazonaws.com"
        assert metas[1].public_dns is None
        assert not metas[1].is_complete
        assert metas[1].state == "pending"
        assert metas[2] is None

    @pytest.mark.asyncio
    async def test_terminate(self, provisioner, ec2):
        await provisioner.terminate_instances(["i-1", "i-2"])
        assert ec2.calls == [("terminate_instances", {"InstanceIds": ["i-1", "i-2"]})]

    @pytest.mark.asyncio
    async def test_terminate_transport_failure(self, provisioner, ec2):
        ec2.errors["terminate_instances"] = EndpointConnectionError(endpoint_url="https://ec2")

        with pytest.raises(ProviderTransportError) as exc:
            await provisioner.terminate_instances(["i-1"])
        assert exc.value.transient

    @pytest.mark.asyncio
    async def test_empty_calls_are_skipped(self, provisioner, ec2):
        await provisioner.terminate_instances([])
        await provisioner.cancel_requests([])
        assert ec2.calls == []

    @pytest.mark.asyncio
    async def test_cancel(self, provisioner, ec2):
        await provisioner.cancel_requests(("sir-a",))
        assert ec2.calls == [("cancel_spot_instance_requests", {"SpotInstanceRequestIds": ["sir-a"]})]


class TestConfig:
    def test_launch_profile_from_config(self):
        config = AWS(region="us-west-2", security_groups=("ssh",), key_name="ops", max_price="0.2")
        assert config.launch_profile() == LaunchProfile(
            security_groups=("ssh",), key_name="ops", max_price="0.2"
        )

    def test_create_wires_client_factory(self):
        provisioner = AWS(region="us-west-2").create_provisioner()
        assert isinstance(provisioner, AWSProvisioner)
        assert isinstance(provisioner._ec2, EC2ClientFactory)

    def test_module_applies_timeouts_and_disables_botocore_retries(self):
        injector = Injector([AWSModule(AWS(connect_timeout=3.0, read_timeout=7.0))])

        botocore_config = injector.get(Config)

        assert botocore_config.connect_timeout == 3.0
        assert botocore_config.read_timeout == 7.0
        assert botocore_config.retries == {"total_max_attempts": 1}
        assert injector.get(EC2ClientFactory) is injector.get(EC2ClientFactory)
