"""Injectable EC2 client factory.

The provisioner never builds boto clients itself: it receives an
``EC2ClientFactory`` from ``AWSModule`` and opens a short-lived client per
call.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any

import aioboto3
from botocore.config import Config
from injector import Binder, Module, provider, singleton

from .config import AWS

type ClientFactory = Callable[[], AbstractAsyncContextManager[Any]]


class EC2ClientFactory:
    """Opens an EC2 client as an async context manager.

    A distinct type so the injector can bind it.
    """

    def __init__(self, factory: ClientFactory) -> None:
        self._factory = factory

    def __call__(self) -> AbstractAsyncContextManager[Any]:
        return self._factory()


class AWSModule(Module):
    """Binds an ``AWS`` config and provides the EC2 client factory for it.

    Usage:
        >>> injector = Injector([AWSModule(AWS(region="eu-west-1"))])
        >>> ec2 = injector.get(EC2ClientFactory)
        >>> async with ec2() as client:
        ...     await client.describe_spot_instance_requests()
    """

    def __init__(self, config: AWS) -> None:
        self._config = config

    def configure(self, binder: Binder) -> None:
        binder.bind(AWS, to=self._config)

    @singleton
    @provider
    def provide_session(self) -> aioboto3.Session:
        return aioboto3.Session()

    @singleton
    @provider
    def provide_botocore_config(self, config: AWS) -> Config:
        # botocore retries off: ProviderErrorCode drives every retry
        return Config(
            connect_timeout=config.connect_timeout,
            read_timeout=config.read_timeout,
            retries={"total_max_attempts": 1},
        )

    @singleton
    @provider
    def provide_ec2(self, session: aioboto3.Session, config: AWS, botocore_config: Config) -> EC2ClientFactory:
        @asynccontextmanager
        async def open_client() -> AsyncIterator[Any]:
            async with session.client("ec2", region_name=config.region, config=botocore_config) as client:
                yield client

        return EC2ClientFactory(open_client)
