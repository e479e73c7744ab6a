from __future__ import annotations

import json
import re
import shlex
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from hostcraft.logger import get_logger
from hostcraft.metrics import record_engine_operation
from hostcraft.models.host import Host
from hostcraft.services.remote import CommandResult, RemoteExecutor

_logger = get_logger("engine")
_JSON_FORMAT = "{{json .}}"
_NOT_FOUND_RE = re.compile(r"no such|not found", re.IGNORECASE)


class EngineOperationError(RuntimeError):
    def __init__(self, action: str, detail: str) -> None:
        super().__init__(f"{action}: {detail}")
        self.action = action
        self.detail = detail


class EngineNotFoundError(EngineOperationError):
    pass


@dataclass(frozen=True)
class ContainerSpec:
    name: str
    image: str
    network: Optional[str] = None
    ports: Sequence[str] = ()
    env: Dict[str, str] = field(default_factory=dict)
    labels: Dict[str, str] = field(default_factory=dict)
    volumes: Sequence[str] = ()
    restart_policy: str = "unless-stopped"


@dataclass(frozen=True)
class ServiceSpec:
    name: str
    image: str
    replicas: int
    networks: Sequence[str] = ()
    env: Dict[str, str] = field(default_factory=dict)
    labels: Dict[str, str] = field(default_factory=dict)
    mounts: Sequence[str] = ()
    published_ports: Sequence[str] = ()


@dataclass(frozen=True)
class ContainerInfo:
    id: str
    name: str
    image: str
    state: str


@dataclass(frozen=True)
class ServiceInfo:
    id: str
    name: str
    image: str
    replicas: int
    has_previous_spec: bool = False


@dataclass(frozen=True)
class TaskInfo:
    id: str
    node: str
    desired_state: str
    current_state: str
    error: str = ""
    slot: str = ""

    @property
    def is_running(self) -> bool:
        return self.current_state.lower().startswith("running")

    @property
    def is_failed(self) -> bool:
        state = self.current_state.lower()
        return state.startswith("failed") or state.startswith("rejected")


@dataclass(frozen=True)
class NetworkInfo:
    id: str
    name: str
    driver: str
    attachable: bool = False
    scope: str = ""
    labels: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class SystemInfo:
    server_version: str
    containers: int
    containers_running: int
    swarm_state: str
    swarm_node_id: str
    is_manager: bool


@dataclass(frozen=True)
class SwarmInfo:
    id: str
    worker_token: str
    manager_token: str


class ContainerEngine(ABC):
    """Operations the control plane needs from a remote container engine."""

    @abstractmethod
    async def validate_connection(self, host: Host) -> bool: ...

    @abstractmethod
    async def system_info(self, host: Host) -> SystemInfo: ...

    @abstractmethod
    async def create_container(self, host: Host, spec: ContainerSpec) -> str: ...

    @abstractmethod
    async def start_container(self, host: Host, name: str) -> None: ...

    @abstractmethod
    async def stop_container(self, host: Host, name: str) -> None: ...

    @abstractmethod
    async def remove_container(self, host: Host, name: str) -> None: ...

    @abstractmethod
    async def inspect_container(self, host: Host, name: str) -> Optional[ContainerInfo]: ...

    @abstractmethod
    async def create_service(self, host: Host, spec: ServiceSpec) -> str: ...

    @abstractmethod
    async def update_service(
        self,
        host: Host,
        name: str,
        *,
        image: Optional[str] = None,
        replicas: Optional[int] = None,
        force: bool = False,
    ) -> None: ...

    async def restart_service(self, host: Host, name: str) -> None:
        await self.update_service(host, name, force=True)

    @abstractmethod
    async def rollback_service(self, host: Host, name: str) -> None: ...

    @abstractmethod
    async def remove_service(self, host: Host, name: str) -> None: ...

    @abstractmethod
    async def list_services(self, host: Host) -> List[ServiceInfo]: ...

    @abstractmethod
    async def inspect_service(self, host: Host, name: str) -> Optional[ServiceInfo]: ...

    @abstractmethod
    async def list_service_tasks(self, host: Host, name: str) -> List[TaskInfo]: ...

    @abstractmethod
    async def create_network(
        self,
        host: Host,
        name: str,
        *,
        driver: str,
        attachable: bool,
        labels: Dict[str, str],
    ) -> str: ...

    @abstractmethod
    async def remove_network(self, host: Host, name: str) -> None: ...

    @abstractmethod
    async def list_networks(self, host: Host) -> List[NetworkInfo]: ...

    @abstractmethod
    async def inspect_network(self, host: Host, name: str) -> Optional[NetworkInfo]: ...

    @abstractmethod
    async def pull_image(self, host: Host, image: str) -> None: ...

    @abstractmethod
    async def build_image(
        self, host: Host, *, tag: str, context: str, dockerfile: Optional[str] = None
    ) -> None: ...

    @abstractmethod
    async def swarm_init(self, host: Host, advertise_addr: str) -> SwarmInfo: ...

    @abstractmethod
    async def swarm_join(self, host: Host, *, token: str, manager_addr: str) -> None: ...

    @abstractmethod
    async def swarm_leave(self, host: Host, *, force: bool = False) -> None: ...

    @abstractmethod
    async def swarm_inspect(self, host: Host) -> Optional[SwarmInfo]: ...


def _json_lines(raw: str) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []
    for line in raw.splitlines():
        line = line.strip()
        if not line:
            continue
        payload = json.loads(line)
        if isinstance(payload, dict):
            rows.append(payload)
        elif isinstance(payload, list):
            rows.extend(item for item in payload if isinstance(item, dict))
    return rows


def _json_object(raw: str) -> Dict[str, Any]:
    rows = _json_lines(raw)
    return rows[0] if rows else {}


def _parse_replicas(value: Any) -> int:
    # `docker service ls` reports "running/desired", e.g. "2/3".
    if isinstance(value, int):
        return value
    text = str(value or "").split("(")[0].strip()
    if "/" in text:
        text = text.split("/", 1)[1]
    try:
        return int(text)
    except ValueError:
        return 0


def _label_args(flag: str, labels: Dict[str, str]) -> List[str]:
    args: List[str] = []
    for key, value in labels.items():
        args.extend([flag, f"{key}={value}"])
    return args


def _service_from_inspect(payload: Dict[str, Any]) -> ServiceInfo:
    spec = payload.get("Spec") if isinstance(payload.get("Spec"), dict) else {}
    mode = spec.get("Mode") if isinstance(spec.get("Mode"), dict) else {}
    replicated = mode.get("Replicated") if isinstance(mode.get("Replicated"), dict) else {}
    task_template = spec.get("TaskTemplate") if isinstance(spec.get("TaskTemplate"), dict) else {}
    container_spec = task_template.get("ContainerSpec") or {}
    return ServiceInfo(
        id=str(payload.get("ID", "")),
        name=str(spec.get("Name", "")),
        image=str(container_spec.get("Image", "")),
        replicas=int(replicated.get("Replicas", 0) or 0),
        has_previous_spec=bool(payload.get("PreviousSpec")),
    )


class DockerCliEngine(ContainerEngine):
    """Drives the docker CLI on the host through the remote executor."""

    def __init__(self, executor: RemoteExecutor) -> None:
        self._executor = executor

    async def _run(self, host: Host, args: Iterable[str]) -> CommandResult:
        return await self._executor.execute_command(host, shlex.join(["docker", *args]))

    async def _run_checked(self, host: Host, args: Iterable[str], *, action: str) -> str:
        arg_list = list(args)
        result = await self._run(host, arg_list)
        if not result.ok:
            record_engine_operation(action=action, ok=False)
            _logger.warning(
                "engine.command.fail",
                "Engine command failed",
                action=action,
                host=host.name,
                args=" ".join(arg_list[:3]),
                exit_code=result.exit_code,
                stderr=result.stderr,
            )
            detail = result.stderr or result.stdout or f"exit_{result.exit_code}"
            if _NOT_FOUND_RE.search(detail):
                raise EngineNotFoundError(action, detail)
            raise EngineOperationError(action, detail)
        record_engine_operation(action=action, ok=True)
        return result.stdout

    async def validate_connection(self, host: Host) -> bool:
        result = await self._run(host, ["version", "--format", _JSON_FORMAT])
        return result.ok

    async def system_info(self, host: Host) -> SystemInfo:
        out = await self._run_checked(host, ["info", "--format", _JSON_FORMAT], action="system.info")
        payload = _json_object(out)
        swarm = payload.get("Swarm") if isinstance(payload.get("Swarm"), dict) else {}
        return SystemInfo(
            server_version=str(payload.get("ServerVersion", "")),
            containers=int(payload.get("Containers", 0) or 0),
            containers_running=int(payload.get("ContainersRunning", 0) or 0),
            swarm_state=str(swarm.get("LocalNodeState", "inactive")),
            swarm_node_id=str(swarm.get("NodeID", "")),
            is_manager=bool(swarm.get("ControlAvailable", False)),
        )

    async def create_container(self, host: Host, spec: ContainerSpec) -> str:
        args = ["create", "--name", spec.name, "--restart", spec.restart_policy]
        if spec.network:
            args.extend(["--network", spec.network])
        for port in spec.ports:
            args.extend(["-p", port])
        for volume in spec.volumes:
            args.extend(["-v", volume])
        args.extend(_label_args("--env", spec.env))
        args.extend(_label_args("--label", spec.labels))
        args.append(spec.image)
        out = await self._run_checked(host, args, action="container.create")
        return out.splitlines()[-1].strip() if out else ""

    async def start_container(self, host: Host, name: str) -> None:
        await self._run_checked(host, ["start", name], action="container.start")

    async def stop_container(self, host: Host, name: str) -> None:
        await self._run_checked(host, ["stop", name], action="container.stop")

    async def remove_container(self, host: Host, name: str) -> None:
        await self._run_checked(host, ["rm", "-f", name], action="container.remove")

    async def inspect_container(self, host: Host, name: str) -> Optional[ContainerInfo]:
        result = await self._run(host, ["inspect", "--type", "container", "--format", _JSON_FORMAT, name])
        if not result.ok:
            return None
        payload = _json_object(result.stdout)
        state = payload.get("State") if isinstance(payload.get("State"), dict) else {}
        config = payload.get("Config") if isinstance(payload.get("Config"), dict) else {}
        return ContainerInfo(
            id=str(payload.get("Id", "")),
            name=str(payload.get("Name", name)).lstrip("/"),
            image=str(config.get("Image", "")),
            state=str(state.get("Status", "unknown")).lower(),
        )

    async def create_service(self, host: Host, spec: ServiceSpec) -> str:
        args = [
            "service",
            "create",
            "--detach",
            "--with-registry-auth",
            "--name",
            spec.name,
            "--replicas",
            str(spec.replicas),
        ]
        for network in spec.networks:
            args.extend(["--network", network])
        for port in spec.published_ports:
            args.extend(["--publish", port])
        for mount in spec.mounts:
            args.extend(["--mount", mount])
        args.extend(_label_args("--env", spec.env))
        args.extend(_label_args("--label", spec.labels))
        args.append(spec.image)
        out = await self._run_checked(host, args, action="service.create")
        return out.splitlines()[-1].strip() if out else ""

    async def update_service(
        self,
        host: Host,
        name: str,
        *,
        image: Optional[str] = None,
        replicas: Optional[int] = None,
        force: bool = False,
    ) -> None:
        args = ["service", "update", "--detach"]
        if image:
            args.extend(["--with-registry-auth", "--image", image])
        if replicas is not None:
            args.extend(["--replicas", str(replicas)])
        if force:
            args.append("--force")
        args.append(name)
        await self._run_checked(host, args, action="service.update")

    async def rollback_service(self, host: Host, name: str) -> None:
        await self._run_checked(
            host, ["service", "rollback", "--detach", name], action="service.rollback"
        )

    async def remove_service(self, host: Host, name: str) -> None:
        await self._run_checked(host, ["service", "rm", name], action="service.remove")

    async def list_services(self, host: Host) -> List[ServiceInfo]:
        out = await self._run_checked(
            host, ["service", "ls", "--format", _JSON_FORMAT], action="service.list"
        )
        return [
            ServiceInfo(
                id=str(row.get("ID", "")),
                name=str(row.get("Name", "")),
                image=str(row.get("Image", "")),
                replicas=_parse_replicas(row.get("Replicas")),
            )
            for row in _json_lines(out)
        ]

    async def inspect_service(self, host: Host, name: str) -> Optional[ServiceInfo]:
        result = await self._run(host, ["service", "inspect", "--format", _JSON_FORMAT, name])
        if not result.ok:
            if _NOT_FOUND_RE.search(result.stderr):
                return None
            raise EngineOperationError("service.inspect", result.stderr or f"exit_{result.exit_code}")
        return _service_from_inspect(_json_object(result.stdout))

    async def list_service_tasks(self, host: Host, name: str) -> List[TaskInfo]:
        # Includes task history; each slot lists its newest task first.
        out = await self._run_checked(
            host,
            [
                "service",
                "ps",
                "--no-trunc",
                "--format",
                _JSON_FORMAT,
                name,
            ],
            action="service.tasks",
        )
        return [
            TaskInfo(
                id=str(row.get("ID", "")),
                node=str(row.get("Node", "")),
                desired_state=str(row.get("DesiredState", "")),
                current_state=str(row.get("CurrentState", "")),
                error=str(row.get("Error", "")),
                slot=str(row.get("Name", "")).replace("\\_", "").strip(),
            )
            for row in _json_lines(out)
        ]

    async def create_network(
        self,
        host: Host,
        name: str,
        *,
        driver: str,
        attachable: bool,
        labels: Dict[str, str],
    ) -> str:
        args = ["network", "create", "--driver", driver]
        if attachable:
            args.append("--attachable")
        args.extend(_label_args("--label", labels))
        args.append(name)
        out = await self._run_checked(host, args, action="network.create")
        return out.strip()

    async def remove_network(self, host: Host, name: str) -> None:
        await self._run_checked(host, ["network", "rm", name], action="network.remove")

    async def list_networks(self, host: Host) -> List[NetworkInfo]:
        out = await self._run_checked(
            host, ["network", "ls", "--format", _JSON_FORMAT], action="network.list"
        )
        return [
            NetworkInfo(
                id=str(row.get("ID", "")),
                name=str(row.get("Name", "")),
                driver=str(row.get("Driver", "")),
                scope=str(row.get("Scope", "")),
            )
            for row in _json_lines(out)
        ]

    async def inspect_network(self, host: Host, name: str) -> Optional[NetworkInfo]:
        result = await self._run(host, ["network", "inspect", "--format", _JSON_FORMAT, name])
        if not result.ok:
            if _NOT_FOUND_RE.search(result.stderr):
                return None
            raise EngineOperationError("network.inspect", result.stderr or f"exit_{result.exit_code}")
        payload = _json_object(result.stdout)
        labels = payload.get("Labels") if isinstance(payload.get("Labels"), dict) else {}
        return NetworkInfo(
            id=str(payload.get("Id", "")),
            name=str(payload.get("Name", name)),
            driver=str(payload.get("Driver", "")),
            attachable=bool(payload.get("Attachable", False)),
            scope=str(payload.get("Scope", "")),
            labels={str(k): str(v) for k, v in labels.items()},
        )

    async def pull_image(self, host: Host, image: str) -> None:
        await self._run_checked(host, ["pull", image], action="image.pull")

    async def build_image(
        self, host: Host, *, tag: str, context: str, dockerfile: Optional[str] = None
    ) -> None:
        args = ["build", "-t", tag]
        if dockerfile:
            args.extend(["-f", dockerfile])
        args.append(context)
        await self._run_checked(host, args, action="image.build")

    async def swarm_init(self, host: Host, advertise_addr: str) -> SwarmInfo:
        await self._run_checked(
            host, ["swarm", "init", "--advertise-addr", advertise_addr], action="swarm.init"
        )
        info = await self.swarm_inspect(host)
        if info is None:
            raise EngineOperationError("swarm.init", "swarm initialised but could not be inspected")
        return info

    async def swarm_join(self, host: Host, *, token: str, manager_addr: str) -> None:
        await self._run_checked(
            host, ["swarm", "join", "--token", token, manager_addr], action="swarm.join"
        )

    async def swarm_leave(self, host: Host, *, force: bool = False) -> None:
        args = ["swarm", "leave"]
        if force:
            args.append("--force")
        await self._run_checked(host, args, action="swarm.leave")

    async def swarm_inspect(self, host: Host) -> Optional[SwarmInfo]:
        result = await self._run(host, ["info", "--format", "{{json .Swarm}}"])
        if not result.ok:
            return None
        payload = _json_object(result.stdout)
        if str(payload.get("LocalNodeState", "")).lower() != "active":
            return None
        cluster = payload.get("Cluster") if isinstance(payload.get("Cluster"), dict) else {}
        tokens: Dict[str, str] = {}
        # Join tokens are only readable on managers; workers report empty tokens.
        if payload.get("ControlAvailable"):
            for role in ("worker", "manager"):
                token = await self._run(host, ["swarm", "join-token", "-q", role])
                tokens[role] = token.stdout.strip() if token.ok else ""
        return SwarmInfo(
            id=str(cluster.get("ID", "")),
            worker_token=tokens.get("worker", ""),
            manager_token=tokens.get("manager", ""),
        )
