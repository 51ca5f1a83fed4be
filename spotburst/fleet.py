"""Fleet assembly and handoff to the caller."""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import Any

from loguru import logger

from spotburst.types.core import Fleet, InstanceMetadata, Machine

log = logger.bind(component="fleet")

type FleetCallback = Callable[[Fleet], Awaitable[Any] | Any]


def build_fleet(
    instances: Iterable[InstanceMetadata],
    owner: Mapping[str, str],
) -> Fleet:
    """Group complete instance descriptions by owning group, sorted by id.

    Instances that are not complete are skipped; callers check completeness
    of the whole batch before building.
    """
    fleet: Fleet = {}
    for meta in sorted(instances, key=lambda m: m.instance_id):
        if not meta.is_complete:
            continue
        machine = Machine(
            instance_id=meta.instance_id,
            instance_type=meta.instance_type or "",
            private_ip=meta.private_ip or "",
            public_dns=meta.public_dns or "",
        )
        fleet.setdefault(owner[meta.instance_id], []).append(machine)
    return fleet


async def hand_off(fleet: Fleet, callback: FleetCallback) -> Any:
    """Invoke the caller's callback with the ready fleet.

    Sync and async callbacks are both accepted. The fleet is only valid
    until this returns: teardown follows immediately.
    """
    log.info(
        "Handing off fleet: {groups}",
        groups=", ".join(f"{name}={len(machines)}" for name, machines in fleet.items()),
    )
    result = callback(fleet)
    if inspect.isawaitable(result):
        result = await result
    return result
