from __future__ import annotations

from types import SimpleNamespace

import asyncssh
import pytest

from spotburst.core.exceptions import SessionError
from spotburst.providers.ssh import SSHConfig, SSHSession, SSHSessionClient
from spotburst.types.protocols import Session, SessionClient

pytestmark = [pytest.mark.unit, pytest.mark.xdist_group("unit")]


class FakeConnection:
    def __init__(self, results: dict[str, tuple[int, str, str]] | None = None) -> None:
        self.results = results or {}
        self.commands: list[str] = []
        self.closed = False

    async def run(self, command, timeout=None, check=False):
        self.commands.append(command)
        code, out, err = self.results.get(command, (0, "", ""))
        return SimpleNamespace(exit_status=code, stdout=out, stderr=err)

    def close(self):
        self.closed = True

    async def wait_closed(self):
        return None


@pytest.fixture
def connects(monkeypatch):
    calls = []
    failures = []

    async def fake_connect(host, **kwargs):
        calls.append((host, kwargs))
        if failures:
            raise failures.pop(0)
        return FakeConnection({"uname": (0, "Linux\n", ""), "false": (1, "", "nope\n")})

    monkeypatch.setattr(asyncssh, "connect", fake_connect)
    return SimpleNamespace(calls=calls, failures=failures)


class TestSSHSessionClient:
    @pytest.mark.asyncio
    async def test_connects_with_configured_credentials(self, connects):
        client = SSHSessionClient(SSHConfig(username="admin", key_path="/keys/ops.pem", connect_timeout=5.0))

        session = await client.connect("ec2-1.compute.amazonaws.com", 2222)

        assert session.host == "ec2-1.compute.amazonaws.com"
        host, kwargs = connects.calls[0]
        assert host == "ec2-1.compute.amazonaws.com"
        assert kwargs["port"] == 2222
        assert kwargs["username"] == "admin"
        assert kwargs["client_keys"] == ["/keys/ops.pem"]
        assert kwargs["known_hosts"] is None
        assert kwargs["connect_timeout"] == 5.0

    @pytest.mark.asyncio
    async def test_default_port(self, connects):
        await SSHSessionClient(SSHConfig(port=2200)).connect("host")
        assert connects.calls[0][1]["port"] == 2200

    @pytest.mark.asyncio
    async def test_retries_refused_connections(self, connects):
        connects.failures.extend([ConnectionRefusedError("refused"), OSError("no route to host")])
        client = SSHSessionClient(SSHConfig(retry_max_attempts=3, retry_delay=0.0))

        session = await client.connect("host")

        assert session.is_connected
        assert len(connects.calls) == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, connects):
        connects.failures.extend([ConnectionRefusedError("refused")] * 5)
        client = SSHSessionClient(SSHConfig(retry_max_attempts=2, retry_delay=0.0))

        with pytest.raises(ConnectionRefusedError):
            await client.connect("host")
        assert len(connects.calls) == 2

    def test_satisfies_protocol(self):
        assert isinstance(SSHSessionClient(), SessionClient)


class TestSSHSession:
    @pytest.mark.asyncio
    async def test_run_returns_result(self, connects):
        session = await SSHSessionClient().connect("host")

        result = await session.run("uname")

        assert result.ok
        assert result.stdout == "Linux\n"

    @pytest.mark.asyncio
    async def test_failed_command(self, connects):
        session = await SSHSessionClient().connect("host")

        result = await session.run("false")
        assert not result.ok
        assert result.exit_code == 1

        with pytest.raises(SessionError, match="nope"):
            await session.run("false", check=True)

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, connects):
        session = await SSHSessionClient().connect("host")
        conn = session._conn

        await session.close()
        await session.close()

        assert conn.closed
        assert not session.is_connected
        with pytest.raises(SessionError, match="closed"):
            await session.run("uname")

    @pytest.mark.asyncio
    async def test_context_manager_closes(self, connects):
        async with await SSHSessionClient().connect("host") as session:
            assert isinstance(session, Session)
        assert not session.is_connected

    def test_repr_hides_connection(self):
        assert "_conn" not in repr(SSHSession(host="host", _conn=None))
