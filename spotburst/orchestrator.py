"""Provisioning state machine.

One ``Orchestrator`` drives one run through its phases:

    request → await active → cancel requests → await readiness
            → remote setup → callback → terminate

Once the first spot request exists, every exit path (success, fatal error,
callback error, cancellation) goes through teardown with every instance id
the run ever saw.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from loguru import logger
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from spotburst.constants import (
    DEAD_INSTANCE_STATES,
    TERMINAL_REQUEST_STATES,
    SpotRequestState,
)
from spotburst.core.exceptions import (
    CancelFailedError,
    InvalidConfigError,
    PollFailedError,
    ProviderError,
    ProviderErrorCode,
    ProvisioningError,
    SetupFailedError,
    SubmissionFailedError,
    TeardownFailedError,
)
from spotburst.fleet import FleetCallback, build_fleet, hand_off
from spotburst.providers.wait import PollPolicy, poll_until
from spotburst.retry import on_provider_code
from spotburst.types.core import (
    CapacityRequest,
    Descriptor,
    Fleet,
    InstanceMetadata,
    InstanceRecord,
    LaunchProfile,
    Machine,
    RequestStatus,
    RunConfig,
    RunReport,
    RunState,
    SpotRequestRecord,
)
from spotburst.types.protocols import Provisioner, Session, SessionClient

log = logger.bind(component="orchestrator")

_POLL_RETRY_CODES = (ProviderErrorCode.NOT_YET_VISIBLE, ProviderErrorCode.THROTTLED)
_TEARDOWN_RETRY_CODES = (ProviderErrorCode.TRANSPORT, ProviderErrorCode.THROTTLED)


@dataclass(frozen=True, slots=True)
class OrchestratorConfig:
    """Tuning for a run.

    Args:
        active_poll: Backoff while waiting for spot requests to become active.
        readiness_poll: Backoff while waiting for instance metadata. Its
            ``timeout`` bounds how long booting instances may take.
        setup_concurrency: Machines configured at the same time. 1 configures
            them one after another.
        teardown_attempts: Termination attempts on transport/throttling errors
            before giving up with ``TeardownFailedError``.
        teardown_base_delay: First delay between termination attempts.
        teardown_max_delay: Cap for delays between termination attempts.
    """

    active_poll: PollPolicy = field(default_factory=PollPolicy)
    readiness_poll: PollPolicy = field(default_factory=PollPolicy)
    setup_concurrency: int = 1
    teardown_attempts: int = 8
    teardown_base_delay: float = 1.0
    teardown_max_delay: float = 30.0

    def __post_init__(self) -> None:
        if self.setup_concurrency < 1:
            raise InvalidConfigError(f"setup_concurrency must be >= 1, got {self.setup_concurrency}")
        if self.teardown_attempts < 1:
            raise InvalidConfigError(f"teardown_attempts must be >= 1, got {self.teardown_attempts}")


class Orchestrator:
    """Drives a single provisioning run. Not reusable."""

    def __init__(
        self,
        descriptors: Mapping[str, Descriptor],
        run_config: RunConfig,
        *,
        provisioner: Provisioner,
        sessions: SessionClient,
        profile: LaunchProfile | None = None,
        config: OrchestratorConfig | None = None,
    ) -> None:
        self._descriptors = dict(descriptors)
        self._run_config = run_config
        self._provisioner = provisioner
        self._sessions = sessions
        self._profile = profile or LaunchProfile()
        self._config = config or OrchestratorConfig()

        self.state = RunState.PENDING
        self._requests: dict[str, SpotRequestRecord] = {}
        self._instances: dict[str, InstanceRecord] = {}
        # every instance id ever assigned, in first-seen order
        self._acquired: dict[str, None] = {}
        self._requests_cancelled = False
        self._fleet: Fleet = {}
        self._started = False
        self._torn_down = False

    @property
    def request_ids(self) -> tuple[str, ...]:
        return tuple(self._requests)

    @property
    def instance_ids(self) -> tuple[str, ...]:
        return tuple(self._acquired)

    @property
    def owners(self) -> dict[str, str]:
        """Identifier to group: request ids before activation, instance ids after."""
        if self._instances:
            return {iid: rec.group for iid, rec in self._instances.items()}
        return {rid: rec.group for rid, rec in self._requests.items()}

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    async def run(self, callback: FleetCallback) -> RunReport:
        """Provision, configure, hand off and tear down.

        Raises:
            ProvisioningError: A phase failed. Teardown already ran; the
                error's ``state`` tells how the run ended.
            TeardownFailedError: Instances may still be running.
        """
        if self._started:
            raise RuntimeError("Orchestrator already ran; create a new one per run")
        self._started = True

        try:
            await self._request_capacity()
            await self._await_active()
            await self._cancel_requests()
            fleet = await self._await_readiness()
            await self._configure(fleet)

            self.state = RunState.HANDED_OFF
            result = await hand_off(fleet, callback)
        except BaseException as e:
            await self._abort(e)
            raise

        await self._teardown()
        self.state = RunState.COMPLETED
        log.info("Run completed")
        return RunReport(
            state=self.state,
            request_ids=self.request_ids,
            instance_ids=self.instance_ids,
            result=result,
        )

    async def _abort(self, error: BaseException) -> None:
        failed_in = self.state
        if not self._requests and not self._acquired:
            self.state = RunState.ABORTED
            log.error("Run aborted during {phase}: {err}", phase=failed_in, err=error)
        else:
            log.error(
                "Run aborted during {phase}: {err}. Releasing capacity",
                phase=failed_in,
                err=error,
            )
            try:
                await self._teardown(original=error)
            except TeardownFailedError:
                if isinstance(error, ProvisioningError):
                    error.state = self.state
                raise
            self.state = RunState.ABORTED_WITH_CLEANUP

        if isinstance(error, ProvisioningError):
            error.state = self.state

    # -------------------------------------------------------------------------
    # Phase A: Request
    # -------------------------------------------------------------------------

    async def _request_capacity(self) -> None:
        self.state = RunState.REQUESTING

        for name, descriptor in self._descriptors.items():
            request = CapacityRequest(
                instance_type=descriptor.setup.instance_type,
                ami=descriptor.setup.ami,
                count=descriptor.count,
                duration_minutes=self._run_config.duration_minutes,
                profile=self._profile,
            )
            try:
                request_ids = await self._provisioner.submit_capacity_request(request)
            except ProviderError as e:
                raise SubmissionFailedError(name, str(e)) from e

            for rid in request_ids:
                self._requests[rid] = SpotRequestRecord(request_id=rid, group=name)

            if len(request_ids) != descriptor.count:
                raise SubmissionFailedError(
                    name,
                    f"provider returned {len(request_ids)} request id(s) for {descriptor.count} machine(s)",
                )

            log.info(
                "Requested {n}x {itype} for group {group}",
                n=descriptor.count,
                itype=descriptor.setup.instance_type,
                group=name,
            )

    # -------------------------------------------------------------------------
    # Phase B: Await Active
    # -------------------------------------------------------------------------

    async def _await_active(self) -> None:
        self.state = RunState.AWAITING_ACTIVE
        request_ids = list(self._requests)

        async def poll() -> list[RequestStatus]:
            statuses = await self._provisioner.describe_requests(request_ids)
            for status in statuses:
                if status.instance_id:
                    self._acquired.setdefault(status.instance_id, None)
            return statuses

        def all_active(statuses: list[RequestStatus]) -> bool:
            return len(statuses) == len(request_ids) and all(
                s.state == SpotRequestState.ACTIVE and s.instance_id for s in statuses
            )

        def dead_requests(statuses: list[RequestStatus]) -> str | None:
            dead = [
                f"{s.request_id} is {s.state}" + (f" ({s.status_code})" if s.status_code else "")
                for s in statuses
                if s.state in TERMINAL_REQUEST_STATES
            ]
            return ", ".join(dead) or None

        try:
            statuses = await poll_until(
                poll,
                all_active,
                policy=self._config.active_poll,
                terminal_check=dead_requests,
                retry_on=_POLL_RETRY_CODES,
                description=f"{len(request_ids)} spot request(s)",
            )
        except ProviderError as e:
            raise PollFailedError(f"Polling spot requests failed: {e}") from e
        except (RuntimeError, TimeoutError) as e:
            raise PollFailedError(str(e)) from e

        self._instances = {
            s.instance_id: InstanceRecord(
                instance_id=s.instance_id,
                group=self._requests[s.request_id].group,
            )
            for s in statuses
            if s.instance_id
        }
        if len(self._instances) != len(self._requests):
            raise PollFailedError(
                f"{len(self._requests)} spot request(s) resolved to {len(self._instances)} instance(s)"
            )

        log.info("All {n} spot request(s) active", n=len(self._instances))

    # -------------------------------------------------------------------------
    # Phase C: Cancel Reservation
    # -------------------------------------------------------------------------

    async def _cancel_requests(self) -> None:
        self.state = RunState.CANCELLING_REQUESTS
        try:
            await self._provisioner.cancel_requests(list(self._requests))
        except ProviderError as e:
            raise CancelFailedError(f"Cancelling satisfied spot requests failed: {e}") from e
        self._requests_cancelled = True

    # -------------------------------------------------------------------------
    # Phase D: Await Instance Readiness
    # -------------------------------------------------------------------------

    async def _await_readiness(self) -> Fleet:
        self.state = RunState.AWAITING_READINESS
        instance_ids = list(self._instances)

        async def poll() -> list[InstanceMetadata | None]:
            return await self._provisioner.describe_instances(instance_ids)

        def all_ready(metas: list[InstanceMetadata | None]) -> bool:
            return len(metas) == len(instance_ids) and all(
                m is not None and m.instance_id == iid and m.is_complete
                for m, iid in zip(metas, instance_ids, strict=True)
            )

        def dead_instances(metas: list[InstanceMetadata | None]) -> str | None:
            dead = [f"{m.instance_id} is {m.state}" for m in metas if m is not None and m.state in DEAD_INSTANCE_STATES]
            return ", ".join(dead) or None

        try:
            metas = await poll_until(
                poll,
                all_ready,
                policy=self._config.readiness_poll,
                terminal_check=dead_instances,
                retry_on=_POLL_RETRY_CODES,
                description=f"{len(instance_ids)} instance(s)",
            )
        except ProviderError as e:
            raise PollFailedError(f"Describing instances failed: {e}") from e
        except (RuntimeError, TimeoutError) as e:
            raise PollFailedError(str(e)) from e

        owner = {iid: rec.group for iid, rec in self._instances.items()}
        self._fleet = build_fleet((m for m in metas if m is not None), owner)
        log.info("All {n} instance(s) reachable", n=len(instance_ids))
        return self._fleet

    # -------------------------------------------------------------------------
    # Phase E: Remote Setup
    # -------------------------------------------------------------------------

    async def _configure(self, fleet: Fleet) -> None:
        self.state = RunState.CONFIGURING
        limit = asyncio.Semaphore(self._config.setup_concurrency)

        async def configure(group: str, machine: Machine) -> None:
            async with limit:
                await self._configure_machine(group, machine)

        tasks = [
            asyncio.create_task(configure(group, machine))
            for group, machines in fleet.items()
            for machine in machines
        ]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _configure_machine(self, group: str, machine: Machine) -> None:
        capability = self._descriptors[group].setup.setup
        ctx = log.bind(group=group, instance_id=machine.instance_id)

        try:
            session = await self._sessions.connect(machine.public_dns)
        except Exception as e:
            raise SetupFailedError(
                group, machine.instance_id, f"connect to {machine.public_dns}: {e}"
            ) from e

        attached = False
        try:
            try:
                result = await capability.setup(session)
            except Exception as e:
                raise SetupFailedError(group, machine.instance_id, f"{type(e).__name__}: {e}") from e
            if result is False:
                raise SetupFailedError(group, machine.instance_id, "setup reported failure")
            machine.session = session
            attached = True
            ctx.info("Configured {host}", host=machine.public_dns)
        finally:
            if not attached:
                await self._close_session(session, machine.instance_id)

    # -------------------------------------------------------------------------
    # Phase G: Teardown
    # -------------------------------------------------------------------------

    async def _teardown(self, original: BaseException | None = None) -> None:
        if self._torn_down:
            return
        self._torn_down = True
        self.state = RunState.TEARING_DOWN

        for machines in self._fleet.values():
            for machine in machines:
                if machine.session is not None:
                    await self._close_session(machine.session, machine.instance_id)
                    machine.session = None

        problems: list[str] = []
        if self._requests and not self._requests_cancelled:
            try:
                await self._release_requests()
            except ProviderError as e:
                problems.append(f"cancelling spot requests: {e}")

        instance_ids = list(self._acquired)
        if instance_ids:
            try:
                await self._terminate(instance_ids)
            except ProviderError as e:
                problems.append(str(e))
        else:
            log.info("No instances were assigned; nothing to terminate")

        if problems:
            self.state = RunState.TEARDOWN_FAILED
            failure = TeardownFailedError(instance_ids, "; ".join(problems), original=original)
            failure.state = self.state
            raise failure

    def _retrying(self, codes: Sequence[ProviderErrorCode]) -> AsyncRetrying:
        cfg = self._config
        return AsyncRetrying(
            stop=stop_after_attempt(cfg.teardown_attempts),
            wait=wait_exponential(multiplier=cfg.teardown_base_delay, max=cfg.teardown_max_delay),
            retry=retry_if_exception(on_provider_code(*codes)),
            before_sleep=lambda rs: log.warning(
                "Teardown attempt {n} failed: {err}",
                n=rs.attempt_number,
                err=rs.outcome.exception() if rs.outcome else None,
            ),
            reraise=True,
        )

    async def _release_requests(self) -> None:
        """Cancel still-open spot requests and collect instances they launched."""
        request_ids = list(self._requests)

        async for attempt in self._retrying(_TEARDOWN_RETRY_CODES + (ProviderErrorCode.NOT_YET_VISIBLE,)):
            with attempt:
                await self._provisioner.cancel_requests(request_ids)
        self._requests_cancelled = True

        async for attempt in self._retrying(_TEARDOWN_RETRY_CODES + (ProviderErrorCode.NOT_YET_VISIBLE,)):
            with attempt:
                statuses = await self._provisioner.describe_requests(request_ids)
        for status in statuses:
            if status.instance_id:
                self._acquired.setdefault(status.instance_id, None)

    async def _terminate(self, instance_ids: list[str]) -> None:
        log.info("Terminating {n} instance(s)", n=len(instance_ids))
        async for attempt in self._retrying(_TEARDOWN_RETRY_CODES):
            with attempt:
                await self._provisioner.terminate_instances(instance_ids)

    async def _close_session(self, session: Session, instance_id: str) -> None:
        try:
            await session.close()
        except Exception as e:
            log.warning("Closing session to {iid} failed: {err}", iid=instance_id, err=e)
