from __future__ import annotations

import asyncio
import io
import shlex
import socket
import time
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, List, Mapping, Optional, Tuple

import paramiko

from hostcraft.config import get_settings
from hostcraft.logger import get_logger
from hostcraft.metrics import record_remote_command
from hostcraft.models.host import Host
from hostcraft.services.secrets import private_key_material

_logger = get_logger("remote")

TIMEOUT_EXIT_CODE = -1

_KEY_CLASSES = (paramiko.RSAKey, paramiko.Ed25519Key, paramiko.ECDSAKey)


class RemoteConnectionError(RuntimeError):
    def __init__(self, target: str, detail: str) -> None:
        super().__init__(f"{target}: {detail}")
        self.target = target
        self.detail = detail


@dataclass(frozen=True)
class CommandResult:
    exit_code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass(frozen=True)
class SSHTarget:
    address: str
    port: int
    username: str
    private_key: Optional[str] = field(default=None, repr=False)
    passphrase: Optional[str] = field(default=None, repr=False)

    @property
    def pool_key(self) -> Tuple[str, int, str]:
        return self.address, self.port, self.username

    @property
    def label(self) -> str:
        return f"{self.username}@{self.address}:{self.port}"

    @classmethod
    def from_host(cls, host: Host) -> "SSHTarget":
        private_key: Optional[str] = None
        passphrase: Optional[str] = None
        if host.private_key is not None:
            private_key, passphrase = private_key_material(host.private_key)
        return cls(
            address=host.address,
            port=host.port,
            username=host.username,
            private_key=private_key,
            passphrase=passphrase,
        )


def with_env(command: str, env: Optional[Mapping[str, str]]) -> str:
    if not env:
        return command
    exports = " ".join(f"{key}={shlex.quote(value)}" for key, value in env.items())
    return f"{exports} {command}"


class RemoteExecutor(ABC):
    """Single channel to a host: shell commands and file transfer."""

    @abstractmethod
    async def execute_command(
        self,
        host: Host,
        command: str,
        *,
        env: Optional[Mapping[str, str]] = None,
        timeout_seconds: Optional[float] = None,
    ) -> CommandResult:
        raise NotImplementedError

    @abstractmethod
    async def upload_file(self, host: Host, local_path: str, remote_path: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def download_file(self, host: Host, local_path: str, remote_path: str) -> bool:
        raise NotImplementedError

    async def close(self) -> None:
        return None


def _load_pkey(target: SSHTarget) -> Optional[paramiko.PKey]:
    if not target.private_key:
        return None
    for key_cls in _KEY_CLASSES:
        try:
            return key_cls.from_private_key(
                io.StringIO(target.private_key), password=target.passphrase
            )
        except paramiko.SSHException:
            continue
    raise RemoteConnectionError(target.label, "private key format is not supported")


def _connect(target: SSHTarget, timeout_seconds: float) -> paramiko.SSHClient:
    pkey = _load_pkey(target)
    client = paramiko.SSHClient()
    client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
    try:
        client.connect(
            hostname=target.address,
            port=target.port,
            username=target.username,
            pkey=pkey,
            timeout=timeout_seconds,
            banner_timeout=timeout_seconds,
            auth_timeout=timeout_seconds,
            allow_agent=pkey is None,
            look_for_keys=pkey is None,
        )
    except (paramiko.SSHException, OSError) as exc:
        client.close()
        raise RemoteConnectionError(target.label, f"{type(exc).__name__}: {exc}") from exc
    return client


def _is_alive(client: paramiko.SSHClient) -> bool:
    transport = client.get_transport()
    return transport is not None and transport.is_active()


class PooledConnection:
    def __init__(self, client: paramiko.SSHClient) -> None:
        self.client = client
        self.last_used = time.monotonic()
        self.discarded = False

    def discard(self) -> None:
        self.discarded = True

    def close(self) -> None:
        self.discarded = True
        self.client.close()


class SSHConnectionPool:
    """Idle SSH clients keyed by (address, port, username).

    A connection is checked out for the duration of ``acquire()`` and is
    never shared between concurrent callers. Connections that raised, were
    cancelled, or were marked with ``discard()`` are closed instead of being
    returned to the pool.
    """

    def __init__(
        self,
        *,
        max_idle_per_host: int = 2,
        idle_ttl_seconds: float = 300.0,
        connect_timeout_seconds: float = 20.0,
    ) -> None:
        self._max_idle = max(0, max_idle_per_host)
        self._idle_ttl = idle_ttl_seconds
        self._connect_timeout = connect_timeout_seconds
        self._idle: Dict[Tuple[str, int, str], List[PooledConnection]] = {}
        self._lock = asyncio.Lock()
        self._closed = False

    @property
    def idle_count(self) -> int:
        return sum(len(items) for items in self._idle.values())

    async def _checkout(self, target: SSHTarget) -> PooledConnection:
        stale: List[PooledConnection] = []
        reused: Optional[PooledConnection] = None
        async with self._lock:
            if self._closed:
                raise RemoteConnectionError(target.label, "connection pool is closed")
            bucket = self._idle.get(target.pool_key, [])
            now = time.monotonic()
            while bucket:
                candidate = bucket.pop()
                if now - candidate.last_used > self._idle_ttl or not _is_alive(candidate.client):
                    stale.append(candidate)
                    continue
                reused = candidate
                break
        for item in stale:
            item.close()
        if reused is not None:
            _logger.debug("pool.reuse", "Reusing pooled SSH connection", target=target.label)
            return reused

        client = await asyncio.to_thread(_connect, target, self._connect_timeout)
        _logger.debug("pool.connect", "Opened SSH connection", target=target.label)
        return PooledConnection(client)

    async def _checkin(self, target: SSHTarget, conn: PooledConnection) -> None:
        if conn.discarded or not _is_alive(conn.client):
            conn.close()
            return
        conn.last_used = time.monotonic()
        async with self._lock:
            bucket = self._idle.setdefault(target.pool_key, [])
            if self._closed or len(bucket) >= self._max_idle:
                conn.close()
                return
            bucket.append(conn)

    @asynccontextmanager
    async def acquire(self, target: SSHTarget) -> AsyncIterator[PooledConnection]:
        conn = await self._checkout(target)
        try:
            yield conn
        except BaseException:
            conn.close()
            raise
        await self._checkin(target, conn)

    async def close(self) -> None:
        async with self._lock:
            self._closed = True
            buckets = list(self._idle.values())
            self._idle.clear()
        for bucket in buckets:
            for conn in bucket:
                conn.close()


def _exec(client: paramiko.SSHClient, command: str, timeout_seconds: float) -> CommandResult:
    _, stdout, stderr = client.exec_command(command, timeout=timeout_seconds)
    out = stdout.read().decode("utf-8", errors="replace")
    err = stderr.read().decode("utf-8", errors="replace")
    code = stdout.channel.recv_exit_status()
    return CommandResult(exit_code=code, stdout=out.strip(), stderr=err.strip())


def _sftp_put(client: paramiko.SSHClient, local_path: str, remote_path: str) -> None:
    sftp = client.open_sftp()
    try:
        sftp.put(local_path, remote_path)
    finally:
        sftp.close()


def _sftp_get(client: paramiko.SSHClient, local_path: str, remote_path: str) -> None:
    sftp = client.open_sftp()
    try:
        sftp.get(remote_path, local_path)
    finally:
        sftp.close()


class SSHExecutor(RemoteExecutor):
    def __init__(
        self,
        pool: Optional[SSHConnectionPool] = None,
        *,
        command_timeout_seconds: Optional[float] = None,
    ) -> None:
        settings = get_settings()
        self._pool = pool or SSHConnectionPool(
            max_idle_per_host=settings.ssh_pool_max_idle_per_host,
            idle_ttl_seconds=settings.ssh_pool_idle_ttl_seconds,
            connect_timeout_seconds=settings.ssh_connect_timeout_seconds,
        )
        self._command_timeout = command_timeout_seconds or settings.ssh_command_timeout_seconds

    @property
    def pool(self) -> SSHConnectionPool:
        return self._pool

    async def execute_command(
        self,
        host: Host,
        command: str,
        *,
        env: Optional[Mapping[str, str]] = None,
        timeout_seconds: Optional[float] = None,
    ) -> CommandResult:
        target = SSHTarget.from_host(host)
        timeout = timeout_seconds or self._command_timeout
        started = time.perf_counter()
        async with self._pool.acquire(target) as conn:
            try:
                result = await asyncio.to_thread(_exec, conn.client, with_env(command, env), timeout)
            except (socket.timeout, TimeoutError):
                conn.discard()
                result = CommandResult(
                    exit_code=TIMEOUT_EXIT_CODE,
                    stdout="",
                    stderr=f"command timed out after {timeout:g}s",
                )
            except (paramiko.SSHException, EOFError, OSError) as exc:
                conn.discard()
                raise RemoteConnectionError(target.label, f"{type(exc).__name__}: {exc}") from exc
        duration = time.perf_counter() - started
        record_remote_command(result="ok" if result.ok else "error", duration_seconds=duration)
        _logger.debug(
            "remote.exec",
            "Executed remote command",
            target=target.label,
            command=command,
            exit_code=result.exit_code,
            duration_ms=round(duration * 1000, 1),
        )
        return result

    async def upload_file(self, host: Host, local_path: str, remote_path: str) -> bool:
        target = SSHTarget.from_host(host)
        async with self._pool.acquire(target) as conn:
            try:
                await asyncio.to_thread(_sftp_put, conn.client, local_path, remote_path)
            except (paramiko.SSHException, OSError) as exc:
                conn.discard()
                _logger.warning(
                    "remote.upload.fail",
                    "SFTP upload failed",
                    target=target.label,
                    remote_path=remote_path,
                    error=str(exc),
                )
                return False
        return True

    async def download_file(self, host: Host, local_path: str, remote_path: str) -> bool:
        target = SSHTarget.from_host(host)
        async with self._pool.acquire(target) as conn:
            try:
                await asyncio.to_thread(_sftp_get, conn.client, local_path, remote_path)
            except (paramiko.SSHException, OSError) as exc:
                conn.discard()
                _logger.warning(
                    "remote.download.fail",
                    "SFTP download failed",
                    target=target.label,
                    remote_path=remote_path,
                    error=str(exc),
                )
                return False
        return True

    async def close(self) -> None:
        await self._pool.close()
