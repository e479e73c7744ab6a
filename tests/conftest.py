from __future__ import annotations

import asyncio
import os
import stat
import tempfile
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Tuple
from uuid import uuid4

TEST_ENCRYPTION_KEY = "MDEyMzQ1Njc4OWFiY2RlZjAxMjM0NTY3ODlhYmNkZWY="

_DATA_DIR = tempfile.mkdtemp(prefix="hostcraft-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DATA_DIR}/hostcraft.db"
os.environ["ENCRYPTION_KEY"] = TEST_ENCRYPTION_KEY
os.environ["LOG_FILE"] = ""

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker  # noqa: E402

from hostcraft.config import get_settings  # noqa: E402
from hostcraft.dependencies import get_engine, get_sessionmaker  # noqa: E402
from hostcraft.enums import DeploymentMode, HostRole, HostStatus  # noqa: E402
from hostcraft.models import Base, Host, Volume, Workload  # noqa: E402
from hostcraft.services.engine import (  # noqa: E402
    ContainerEngine,
    ContainerInfo,
    ContainerSpec,
    EngineNotFoundError,
    NetworkInfo,
    ServiceInfo,
    ServiceSpec,
    SwarmInfo,
    SystemInfo,
    TaskInfo,
)
from hostcraft.services.remote import CommandResult, RemoteExecutor  # noqa: E402
from hostcraft.services.vault import reset_vault  # noqa: E402


@pytest.fixture(autouse=True)
def fresh_settings() -> Any:
    get_settings.cache_clear()
    reset_vault()
    yield
    get_settings.cache_clear()
    reset_vault()


@pytest_asyncio.fixture
async def sessionmaker(tmp_path: Path) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    url = f"sqlite+aiosqlite:///{tmp_path}/hostcraft.db"
    engine = get_engine(url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield get_sessionmaker(url)
    await engine.dispose()


@pytest_asyncio.fixture
async def session(sessionmaker: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    async with sessionmaker() as db:
        yield db


class FakeEngine(ContainerEngine):
    """In-memory engine; ``failures`` maps a method name to the exception it raises."""

    def __init__(self) -> None:
        self.calls: List[Tuple[Any, ...]] = []
        self.failures: Dict[str, BaseException] = {}
        self.networks: Dict[str, NetworkInfo] = {}
        self.services: Dict[str, ServiceInfo] = {}
        self.containers: Dict[str, ContainerInfo] = {}
        self.tasks: Dict[str, List[TaskInfo]] = {}
        self.reachable = True
        self.info = SystemInfo(
            server_version="24.0.7",
            containers=0,
            containers_running=0,
            swarm_state="inactive",
            swarm_node_id="",
            is_manager=False,
        )

    def _record(self, name: str, *args: Any) -> None:
        self.calls.append((name, *args))
        failure = self.failures.get(name)
        if failure is not None:
            raise failure

    def called(self, name: str) -> List[Tuple[Any, ...]]:
        return [call for call in self.calls if call[0] == name]

    async def validate_connection(self, host: Host) -> bool:
        self._record("validate_connection", host.name)
        return self.reachable

    async def system_info(self, host: Host) -> SystemInfo:
        self._record("system_info", host.name)
        return self.info

    async def create_container(self, host: Host, spec: ContainerSpec) -> str:
        self._record("create_container", spec)
        info = ContainerInfo(
            id=f"ctr-{spec.name}-{uuid4().hex[:6]}", name=spec.name, image=spec.image, state="created"
        )
        self.containers[spec.name] = info
        return info.id

    async def start_container(self, host: Host, name: str) -> None:
        self._record("start_container", name)
        current = self.containers[name]
        self.containers[name] = ContainerInfo(current.id, current.name, current.image, "running")

    async def stop_container(self, host: Host, name: str) -> None:
        self._record("stop_container", name)
        current = self.containers[name]
        self.containers[name] = ContainerInfo(current.id, current.name, current.image, "exited")

    async def remove_container(self, host: Host, name: str) -> None:
        self._record("remove_container", name)
        self.containers.pop(name, None)

    async def inspect_container(self, host: Host, name: str) -> Optional[ContainerInfo]:
        self._record("inspect_container", name)
        return self.containers.get(name)

    async def create_service(self, host: Host, spec: ServiceSpec) -> str:
        self._record("create_service", spec)
        info = ServiceInfo(
            id=f"svc-{spec.name}", name=spec.name, image=spec.image, replicas=spec.replicas
        )
        self.services[spec.name] = info
        return info.id

    async def update_service(
        self,
        host: Host,
        name: str,
        *,
        image: Optional[str] = None,
        replicas: Optional[int] = None,
        force: bool = False,
    ) -> None:
        self._record("update_service", name, image, replicas, force)
        current = self.services[name]
        self.services[name] = ServiceInfo(
            id=current.id,
            name=current.name,
            image=image or current.image,
            replicas=current.replicas if replicas is None else replicas,
            has_previous_spec=True,
        )

    async def rollback_service(self, host: Host, name: str) -> None:
        self._record("rollback_service", name)

    async def remove_service(self, host: Host, name: str) -> None:
        self._record("remove_service", name)
        if name not in self.services:
            raise EngineNotFoundError("service.remove", f"Error: No such service: {name}")
        del self.services[name]

    async def list_services(self, host: Host) -> List[ServiceInfo]:
        self._record("list_services")
        return list(self.services.values())

    async def inspect_service(self, host: Host, name: str) -> Optional[ServiceInfo]:
        self._record("inspect_service", name)
        return self.services.get(name)

    async def list_service_tasks(self, host: Host, name: str) -> List[TaskInfo]:
        self._record("list_service_tasks", name)
        return list(self.tasks.get(name, []))

    async def create_network(
        self,
        host: Host,
        name: str,
        *,
        driver: str,
        attachable: bool,
        labels: Dict[str, str],
    ) -> str:
        self._record("create_network", name, driver, attachable)
        info = NetworkInfo(
            id=f"net-{name}", name=name, driver=driver, attachable=attachable, labels=labels
        )
        self.networks[name] = info
        return info.id

    async def remove_network(self, host: Host, name: str) -> None:
        self._record("remove_network", name)
        self.networks.pop(name, None)

    async def list_networks(self, host: Host) -> List[NetworkInfo]:
        self._record("list_networks")
        return list(self.networks.values())

    async def inspect_network(self, host: Host, name: str) -> Optional[NetworkInfo]:
        self._record("inspect_network", name)
        return self.networks.get(name)

    async def pull_image(self, host: Host, image: str) -> None:
        self._record("pull_image", image)

    async def build_image(
        self, host: Host, *, tag: str, context: str, dockerfile: Optional[str] = None
    ) -> None:
        self._record("build_image", tag, context, dockerfile)

    async def swarm_init(self, host: Host, advertise_addr: str) -> SwarmInfo:
        self._record("swarm_init", advertise_addr)
        return SwarmInfo(id="swarm-1", worker_token="SWMTKN-worker", manager_token="SWMTKN-manager")

    async def swarm_join(self, host: Host, *, token: str, manager_addr: str) -> None:
        self._record("swarm_join", manager_addr)

    async def swarm_leave(self, host: Host, *, force: bool = False) -> None:
        self._record("swarm_leave", force)

    async def swarm_inspect(self, host: Host) -> Optional[SwarmInfo]:
        self._record("swarm_inspect")
        return None


class ScriptedExecutor(RemoteExecutor):
    """Answers commands from ``responses`` (first matching substring wins)."""

    def __init__(self, responses: Optional[Mapping[str, CommandResult]] = None) -> None:
        self.responses: Dict[str, CommandResult] = dict(responses or {})
        self.commands: List[str] = []
        self.envs: List[Optional[Mapping[str, str]]] = []

    async def execute_command(
        self,
        host: Host,
        command: str,
        *,
        env: Optional[Mapping[str, str]] = None,
        timeout_seconds: Optional[float] = None,
    ) -> CommandResult:
        self.commands.append(command)
        self.envs.append(env)
        for fragment, result in self.responses.items():
            if fragment in command:
                return result
        return CommandResult(exit_code=0, stdout="", stderr="")

    async def upload_file(self, host: Host, local_path: str, remote_path: str) -> bool:
        return True

    async def download_file(self, host: Host, local_path: str, remote_path: str) -> bool:
        return True


_FAKE_DOCKER = """#!/bin/sh
root="{root}"
if [ "$1" = "volume" ] && [ "$2" = "inspect" ]; then
  if [ -d "$root/$3" ]; then echo "$root/$3"; exit 0; fi
  echo "Error: No such volume: $3" >&2
  exit 1
fi
if [ "$1" = "volume" ] && [ "$2" = "create" ]; then
  mkdir -p "$root/$3" && echo "$3"
  exit $?
fi
echo "unsupported docker call: $*" >&2
exit 1
"""


class LocalShellExecutor(RemoteExecutor):
    """Runs commands on this machine with a ``docker`` stub that maps volumes to directories."""

    def __init__(self, root: Path) -> None:
        self.volume_root = root / "docker-volumes"
        self.volume_root.mkdir(parents=True, exist_ok=True)
        bin_dir = root / "bin"
        bin_dir.mkdir(parents=True, exist_ok=True)
        docker = bin_dir / "docker"
        docker.write_text(_FAKE_DOCKER.format(root=self.volume_root))
        docker.chmod(docker.stat().st_mode | stat.S_IEXEC)
        self._path = f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}"
        self.commands: List[str] = []

    def volume(self, name: str) -> Path:
        path = self.volume_root / name
        path.mkdir(parents=True, exist_ok=True)
        return path

    async def execute_command(
        self,
        host: Host,
        command: str,
        *,
        env: Optional[Mapping[str, str]] = None,
        timeout_seconds: Optional[float] = None,
    ) -> CommandResult:
        self.commands.append(command)
        proc_env = {**os.environ, "PATH": self._path, **(env or {})}
        proc = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=proc_env,
        )
        out, err = await proc.communicate()
        return CommandResult(
            exit_code=proc.returncode if proc.returncode is not None else -1,
            stdout=out.decode("utf-8", errors="replace").strip(),
            stderr=err.decode("utf-8", errors="replace").strip(),
        )

    async def upload_file(self, host: Host, local_path: str, remote_path: str) -> bool:
        return True

    async def download_file(self, host: Host, local_path: str, remote_path: str) -> bool:
        return True


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine()


async def make_host(
    session: AsyncSession,
    *,
    name: str = "node-1",
    role: HostRole = HostRole.STANDALONE,
    status: HostStatus = HostStatus.ONLINE,
) -> Host:
    host = Host(
        id=str(uuid4()),
        name=name,
        address="10.0.0.10",
        port=22,
        username="root",
        role=role.value,
        status=status.value,
    )
    session.add(host)
    await session.commit()
    await session.refresh(host)
    return host


async def make_workload(
    session: AsyncSession,
    host: Host,
    *,
    name: str = "web",
    mode: DeploymentMode = DeploymentMode.CONTAINER,
    volumes: Optional[Mapping[str, str]] = None,
    **overrides: Any,
) -> Workload:
    values: Dict[str, Any] = {
        "id": str(uuid4()),
        "name": name,
        "project_name": "shop",
        "host_id": host.id,
        "image": "nginx:1.25",
        "deployment_mode": mode.value,
        "swarm_networks": [],
        "volumes": [
            Volume(id=str(uuid4()), name=volume, mount_path=mount)
            for volume, mount in (volumes or {}).items()
        ],
    }
    values.update(overrides)
    workload = Workload(**values)
    session.add(workload)
    await session.commit()
    await session.refresh(workload)
    return workload

