"""Remote sessions over asyncssh.

``SSHSessionClient`` holds the credentials; ``connect`` hands back an
``SSHSession`` bound to one machine. Both satisfy the ``SessionClient`` and
``Session`` protocols the orchestrator talks to.
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass, field

import asyncssh
from loguru import logger

from spotburst.constants import SSH_PORT
from spotburst.core.exceptions import SessionError
from spotburst.retry import retry
from spotburst.types.protocols import CommandResult

log = logger.bind(component="ssh")

_CLOSE_TIMEOUT = 5.0


@dataclass(frozen=True, slots=True)
class SSHConfig:
    """Credentials and connect behaviour.

    A fresh spot instance usually refuses SSH for a while after it reports a
    public address, so ``connect`` keeps trying every ``retry_delay`` seconds
    up to ``retry_max_attempts`` times (about a minute by default).
    """

    username: str = "ubuntu"
    key_path: str | None = None
    port: int = SSH_PORT
    connect_timeout: float = 30.0
    retry_max_attempts: int = 30
    retry_delay: float = 2.0


@dataclass
class SSHSession:
    """An open connection to one machine.

    Example:
        >>> async with await client.connect("ec2-1-2-3-4.compute.amazonaws.com") as session:
        ...     result = await session.run("nproc", check=True)
        ...     print(result.stdout)
    """

    host: str
    _conn: asyncssh.SSHClientConnection | None = field(default=None, repr=False)

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    async def run(self, command: str, *, check: bool = False, timeout: float | None = None) -> CommandResult:
        """Run ``command`` through the remote shell.

        Raises:
            SessionError: The session is closed, the connection broke, or
                ``check`` is set and the command exited non-zero.
        """
        if self._conn is None:
            raise SessionError(f"Session to {self.host} is closed")

        log.debug("{host}$ {cmd}", host=self.host, cmd=command if len(command) <= 80 else command[:77] + "...")
        try:
            completed = await self._conn.run(command, check=False, timeout=timeout)
        except (asyncssh.Error, OSError) as e:
            raise SessionError(f"Running on {self.host} failed: {e}") from e

        result = CommandResult(
            exit_code=completed.exit_status or 0,
            stdout=str(completed.stdout or ""),
            stderr=str(completed.stderr or ""),
        )
        if check and not result.ok:
            raise SessionError(f"{self.host}: exit {result.exit_code}: {result.stderr.strip()}")
        return result

    async def close(self) -> None:
        conn, self._conn = self._conn, None
        if conn is None:
            return
        conn.close()
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(conn.wait_closed(), timeout=_CLOSE_TIMEOUT)

    async def __aenter__(self) -> SSHSession:
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.close()


@dataclass(frozen=True, slots=True)
class SSHSessionClient:
    """Opens ``SSHSession``s with the configured credentials."""

    config: SSHConfig = field(default_factory=SSHConfig)

    async def connect(self, address: str, port: int | None = None) -> SSHSession:
        """Open a session to ``address``, retrying refused or dropped connects.

        Raises the last connect error once ``retry_max_attempts`` is used up.
        """
        cfg = self.config
        port = port or cfg.port
        client_keys = [cfg.key_path] if cfg.key_path else ()

        @retry(
            on=(OSError, asyncssh.Error),
            max_attempts=cfg.retry_max_attempts,
            base_delay=cfg.retry_delay,
            exponential_base=1.0,
            jitter=False,
        )
        async def open_connection() -> asyncssh.SSHClientConnection:
            return await asyncssh.connect(
                address,
                port=port,
                username=cfg.username,
                client_keys=client_keys,
                known_hosts=None,
                connect_timeout=cfg.connect_timeout,
            )

        log.debug("Connecting to {user}@{host}:{port}", user=cfg.username, host=address, port=port)
        session = SSHSession(host=address, _conn=await open_connection())
        log.debug("Connected to {host}", host=address)
        return session
