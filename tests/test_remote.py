from __future__ import annotations

import asyncio
import io
import socket
from typing import Any, List, Optional

import paramiko
import pytest

from hostcraft.models.host import Host
from hostcraft.services import remote
from hostcraft.services.remote import (
    TIMEOUT_EXIT_CODE,
    RemoteConnectionError,
    SSHConnectionPool,
    SSHExecutor,
    SSHTarget,
    with_env,
)


class _Transport:
    def __init__(self) -> None:
        self.active = True

    def is_active(self) -> bool:
        return self.active


class _Stream(io.BytesIO):
    def __init__(self, data: bytes, exit_code: int) -> None:
        super().__init__(data)
        self.channel = self
        self._exit_code = exit_code

    def recv_exit_status(self) -> int:
        return self._exit_code


class FakeClient:
    def __init__(self) -> None:
        self.transport = _Transport()
        self.closed = False
        self.commands: List[str] = []
        self.error: Optional[BaseException] = None
        self.reply = (0, b"ok\n", b"")

    def get_transport(self) -> _Transport:
        return self.transport

    def exec_command(self, command: str, timeout: Optional[float] = None) -> Any:
        self.commands.append(command)
        if self.error is not None:
            raise self.error
        code, out, err = self.reply
        return None, _Stream(out, code), _Stream(err, code)

    def close(self) -> None:
        self.closed = True
        self.transport.active = False


@pytest.fixture
def clients(monkeypatch: pytest.MonkeyPatch) -> List[FakeClient]:
    created: List[FakeClient] = []

    def _connect(target: SSHTarget, timeout_seconds: float) -> FakeClient:
        client = FakeClient()
        created.append(client)
        return client

    monkeypatch.setattr(remote, "_connect", _connect)
    return created


def _host(address: str = "10.0.0.5") -> Host:
    return Host(id="h-1", name="node", address=address, port=22, username="deploy")


TARGET = SSHTarget(address="10.0.0.5", port=22, username="deploy")


@pytest.mark.asyncio
async def test_connection_is_reused_after_checkin(clients: List[FakeClient]) -> None:
    pool = SSHConnectionPool()

    async with pool.acquire(TARGET) as first:
        pass
    async with pool.acquire(TARGET) as second:
        pass

    assert first.client is second.client
    assert len(clients) == 1
    assert pool.idle_count == 1


@pytest.mark.asyncio
async def test_concurrent_callers_get_distinct_connections(clients: List[FakeClient]) -> None:
    pool = SSHConnectionPool()
    entered = asyncio.Event()
    release = asyncio.Event()

    async def _hold() -> None:
        async with pool.acquire(TARGET):
            entered.set()
            await release.wait()

    holder = asyncio.create_task(_hold())
    await entered.wait()
    async with pool.acquire(TARGET):
        pass
    release.set()
    await holder

    assert len(clients) == 2
    assert pool.idle_count == 2


@pytest.mark.asyncio
async def test_connection_is_dropped_when_caller_raises(clients: List[FakeClient]) -> None:
    pool = SSHConnectionPool()

    with pytest.raises(RuntimeError):
        async with pool.acquire(TARGET):
            raise RuntimeError("boom")

    assert clients[0].closed
    assert pool.idle_count == 0


@pytest.mark.asyncio
async def test_idle_connections_are_capped_per_host(clients: List[FakeClient]) -> None:
    pool = SSHConnectionPool(max_idle_per_host=1)

    async with pool.acquire(TARGET):
        async with pool.acquire(TARGET):
            pass

    assert len(clients) == 2
    assert pool.idle_count == 1
    assert sum(client.closed for client in clients) == 1


@pytest.mark.asyncio
async def test_dead_idle_connection_is_replaced(clients: List[FakeClient]) -> None:
    pool = SSHConnectionPool()
    async with pool.acquire(TARGET):
        pass
    clients[0].transport.active = False

    async with pool.acquire(TARGET) as conn:
        assert conn.client is clients[1]


@pytest.mark.asyncio
async def test_closed_pool_refuses_checkout(clients: List[FakeClient]) -> None:
    pool = SSHConnectionPool()
    async with pool.acquire(TARGET):
        pass

    await pool.close()

    assert clients[0].closed
    with pytest.raises(RemoteConnectionError):
        async with pool.acquire(TARGET):
            pass


@pytest.mark.asyncio
async def test_executor_returns_exit_code_and_output(clients: List[FakeClient]) -> None:
    executor = SSHExecutor(SSHConnectionPool())

    result = await executor.execute_command(_host(), "docker ps", env={"A": "1"})

    assert result.ok
    assert result.stdout == "ok"
    assert clients[0].commands == ["A=1 docker ps"]


@pytest.mark.asyncio
async def test_executor_maps_timeout_and_discards_connection(clients: List[FakeClient]) -> None:
    pool = SSHConnectionPool()
    executor = SSHExecutor(pool, command_timeout_seconds=5)
    async with pool.acquire(TARGET):
        pass
    clients[0].error = socket.timeout("timed out")

    result = await executor.execute_command(_host(), "sleep 60")

    assert result.exit_code == TIMEOUT_EXIT_CODE
    assert "timed out after 5s" in result.stderr
    assert clients[0].closed
    assert pool.idle_count == 0


@pytest.mark.asyncio
async def test_executor_wraps_transport_errors(clients: List[FakeClient]) -> None:
    pool = SSHConnectionPool()
    executor = SSHExecutor(pool)
    async with pool.acquire(TARGET):
        pass
    clients[0].error = paramiko.SSHException("channel closed")

    with pytest.raises(RemoteConnectionError) as excinfo:
        await executor.execute_command(_host(), "uptime")

    assert excinfo.value.target == "deploy@10.0.0.5:22"
    assert clients[0].closed


def test_with_env_quotes_values() -> None:
    assert with_env("env", None) == "env"
    assert with_env("env", {"MSG": "hello world", "Q": "it's"}) == (
        "MSG='hello world' Q='it'\"'\"'s' env"
    )


def test_target_from_host_without_key() -> None:
    target = SSHTarget.from_host(_host("192.168.1.9"))

    assert target.pool_key == ("192.168.1.9", 22, "deploy")
    assert target.private_key is None
    assert "192.168.1.9" in target.label
