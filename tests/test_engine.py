from __future__ import annotations

import json
import shlex

import pytest

from conftest import ScriptedExecutor
from hostcraft.models.host import Host
from hostcraft.services.engine import (
    ContainerSpec,
    DockerCliEngine,
    EngineNotFoundError,
    EngineOperationError,
    _parse_replicas,
)
from hostcraft.services.remote import CommandResult

HOST = Host(id="h-1", name="node-1", address="10.0.0.1", port=22, username="root")


def _ok(payload: object) -> CommandResult:
    return CommandResult(0, json.dumps(payload), "")


@pytest.mark.parametrize(("raw", "expected"), [("2/3", 3), ("1/1 (max 1 per node)", 1), (4, 4), ("", 0)])
def test_parse_replicas_reads_desired_count(raw: object, expected: int) -> None:
    assert _parse_replicas(raw) == expected


@pytest.mark.asyncio
async def test_list_services_parses_json_lines() -> None:
    rows = [
        {"ID": "a1", "Name": "web", "Image": "nginx:1.25", "Replicas": "2/3"},
        {"ID": "b2", "Name": "api", "Image": "api:7", "Replicas": "1/1"},
    ]
    executor = ScriptedExecutor(
        {"docker service ls": CommandResult(0, "\n".join(json.dumps(row) for row in rows), "")}
    )

    services = await DockerCliEngine(executor).list_services(HOST)

    assert [(svc.name, svc.replicas) for svc in services] == [("web", 3), ("api", 1)]
    assert executor.commands == ["docker service ls --format '{{json .}}'"]


@pytest.mark.asyncio
async def test_inspect_service_reports_previous_spec() -> None:
    executor = ScriptedExecutor(
        {
            "docker service inspect": _ok(
                {
                    "ID": "svc1",
                    "Spec": {
                        "Name": "web",
                        "Mode": {"Replicated": {"Replicas": 2}},
                        "TaskTemplate": {"ContainerSpec": {"Image": "nginx:1.26@sha256:abc"}},
                    },
                    "PreviousSpec": {"Name": "web"},
                }
            )
        }
    )

    service = await DockerCliEngine(executor).inspect_service(HOST, "web")

    assert service is not None
    assert service.replicas == 2
    assert service.image == "nginx:1.26@sha256:abc"
    assert service.has_previous_spec


@pytest.mark.asyncio
async def test_inspect_missing_service_returns_none() -> None:
    executor = ScriptedExecutor(
        {"docker service inspect": CommandResult(1, "", "Error: no such service: web")}
    )
    assert await DockerCliEngine(executor).inspect_service(HOST, "web") is None


@pytest.mark.asyncio
async def test_service_tasks_are_parsed() -> None:
    lines = [
        {
            "ID": "t1",
            "Name": "web.1",
            "Node": "n1",
            "DesiredState": "Running",
            "CurrentState": "Running 5 minutes ago",
        },
        {
            "ID": "t2",
            "Name": "\\_ web.1",
            "Node": "n2",
            "DesiredState": "Running",
            "CurrentState": "Rejected 1 second ago",
            "Error": "no suitable node",
        },
    ]
    executor = ScriptedExecutor(
        {"docker service ps": CommandResult(0, "\n".join(json.dumps(line) for line in lines), "")}
    )

    tasks = await DockerCliEngine(executor).list_service_tasks(HOST, "web")

    assert [task.is_running for task in tasks] == [True, False]
    assert [task.is_failed for task in tasks] == [False, True]
    assert tasks[1].error == "no suitable node"
    assert [task.slot for task in tasks] == ["web.1", "web.1"]


@pytest.mark.asyncio
async def test_create_container_builds_cli_arguments() -> None:
    executor = ScriptedExecutor({"docker create": CommandResult(0, "deadbeef\n", "")})
    spec = ContainerSpec(
        name="web",
        image="nginx:1.25",
        network="hostcraft-apps",
        ports=["8080:8080"],
        env={"MODE": "prod"},
        labels={"hostcraft.workload": "web"},
        volumes=["shop-data:/data"],
    )

    container_id = await DockerCliEngine(executor).create_container(HOST, spec)

    assert container_id == "deadbeef"
    assert shlex.split(executor.commands[0]) == [
        "docker",
        "create",
        "--name",
        "web",
        "--restart",
        "unless-stopped",
        "--network",
        "hostcraft-apps",
        "-p",
        "8080:8080",
        "-v",
        "shop-data:/data",
        "--env",
        "MODE=prod",
        "--label",
        "hostcraft.workload=web",
        "nginx:1.25",
    ]


@pytest.mark.asyncio
async def test_failures_are_classified() -> None:
    executor = ScriptedExecutor(
        {
            "docker service rm": CommandResult(1, "", "Error: No such service: web"),
            "docker pull": CommandResult(1, "", "denied: requested access to the resource is denied"),
        }
    )
    engine = DockerCliEngine(executor)

    with pytest.raises(EngineNotFoundError):
        await engine.remove_service(HOST, "web")
    with pytest.raises(EngineOperationError) as excinfo:
        await engine.pull_image(HOST, "private/app:1")
    assert not isinstance(excinfo.value, EngineNotFoundError)
    assert excinfo.value.action == "image.pull"


@pytest.mark.asyncio
async def test_system_info_reads_swarm_block() -> None:
    executor = ScriptedExecutor(
        {
            "docker info": _ok(
                {
                    "ServerVersion": "24.0.7",
                    "Containers": 5,
                    "ContainersRunning": 3,
                    "Swarm": {"LocalNodeState": "active", "NodeID": "n1", "ControlAvailable": True},
                }
            )
        }
    )

    info = await DockerCliEngine(executor).system_info(HOST)

    assert info.server_version == "24.0.7"
    assert info.containers_running == 3
    assert info.swarm_state == "active"
    assert info.is_manager


@pytest.mark.asyncio
async def test_inspect_missing_container_returns_none() -> None:
    executor = ScriptedExecutor({"docker inspect": CommandResult(1, "", "Error: No such container: web")})
    assert await DockerCliEngine(executor).inspect_container(HOST, "web") is None


@pytest.mark.asyncio
async def test_inspect_container_normalises_name_and_state() -> None:
    executor = ScriptedExecutor(
        {
            "docker inspect": _ok(
                {"Id": "c1", "Name": "/web", "Config": {"Image": "nginx"}, "State": {"Status": "Running"}}
            )
        }
    )

    info = await DockerCliEngine(executor).inspect_container(HOST, "web")

    assert info is not None
    assert (info.name, info.state) == ("web", "running")


@pytest.mark.asyncio
async def test_swarm_inspect_is_none_when_inactive() -> None:
    executor = ScriptedExecutor({"docker info": _ok({"LocalNodeState": "inactive"})})
    assert await DockerCliEngine(executor).swarm_inspect(HOST) is None


@pytest.mark.asyncio
async def test_swarm_inspect_reads_join_tokens_on_manager() -> None:
    executor = ScriptedExecutor(
        {
            "docker info": _ok(
                {"LocalNodeState": "active", "ControlAvailable": True, "Cluster": {"ID": "cluster-1"}}
            ),
            "join-token -q worker": CommandResult(0, "SWMTKN-w\n", ""),
            "join-token -q manager": CommandResult(0, "SWMTKN-m\n", ""),
        }
    )

    info = await DockerCliEngine(executor).swarm_inspect(HOST)

    assert info is not None
    assert (info.id, info.worker_token, info.manager_token) == ("cluster-1", "SWMTKN-w", "SWMTKN-m")
