from __future__ import annotations

from pathlib import Path
from typing import Any, AsyncIterator, Iterator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from conftest import FakeEngine
from hostcraft.dependencies import get_container_engine, get_db_session, get_db_sessionmaker
from hostcraft.logger import MASKED_VALUE
from hostcraft.main import app
from hostcraft.models import Base


@pytest.fixture
def client(tmp_path: Path) -> Iterator[Any]:
    db_path = tmp_path / "api.db"
    sync_engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(sync_engine)
    sync_engine.dispose()

    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool)
    maker = async_sessionmaker(bind=engine, expire_on_commit=False)
    fake = FakeEngine()

    async def _session() -> AsyncIterator[AsyncSession]:
        async with maker() as session:
            yield session

    app.dependency_overrides[get_db_session] = _session
    app.dependency_overrides[get_db_sessionmaker] = lambda: maker
    app.dependency_overrides[get_container_engine] = lambda: fake
    try:
        with TestClient(app) as test_client:
            test_client.fake_engine = fake
            yield test_client
    finally:
        app.dependency_overrides.clear()


def _create_host(client: Any, name: str = "node-1") -> dict:
    response = client.post("/hosts", json={"name": name, "address": "10.0.0.2"})
    assert response.status_code == 201, response.text
    return response.json()


def _create_workload(client: Any, host_id: str, **fields: Any) -> dict:
    body = {"name": "web", "host_id": host_id, "image": "nginx:1.25", **fields}
    response = client.post("/workloads", json=body)
    assert response.status_code == 201, response.text
    return response.json()


def test_health_endpoint(client: Any) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.headers["X-Request-ID"]


def test_host_and_workload_lifecycle(client: Any) -> None:
    host = _create_host(client)
    assert host["status"] == "validating"
    assert client.post("/hosts", json={"name": "node-1", "address": "10.0.0.3"}).status_code == 409

    workload = _create_workload(client, host["id"], volumes=[{"name": "data", "mount_path": "/data"}])
    assert workload["deployment_mode"] == "container"
    assert client.get(f"/workloads/{workload['id']}").json()["name"] == "web"

    validated = client.post(f"/hosts/{host['id']}/validate")
    assert validated.status_code == 200
    assert validated.json()["status"] == "online"


def test_secret_env_values_are_masked(client: Any) -> None:
    host = _create_host(client)
    workload = _create_workload(client, host["id"])

    response = client.put(
        f"/workloads/{workload['id']}/env", json={"key": "TOKEN", "value": "abc", "is_secret": True}
    )

    assert response.status_code == 200
    assert response.json()["value"] == MASKED_VALUE
    listed = client.get(f"/workloads/{workload['id']}/env").json()
    assert [item["value"] for item in listed] == [MASKED_VALUE]


def test_unknown_ids_return_404(client: Any) -> None:
    assert client.get("/hosts/missing").status_code == 404
    assert client.get("/workloads/missing").status_code == 404
    assert client.post("/workloads", json={"name": "x", "host_id": "missing"}).status_code == 404


def test_scaling_container_workload_is_rejected(client: Any) -> None:
    host = _create_host(client)
    workload = _create_workload(client, host["id"])

    response = client.post(f"/workloads/{workload['id']}/deployments/scale", json={"replicas": 3})

    assert response.status_code == 422
    assert client.post(
        f"/workloads/{workload['id']}/deployments/scale", json={"replicas": -1}
    ).status_code == 422


def test_deploy_container_through_api(client: Any) -> None:
    host = _create_host(client)
    workload = _create_workload(client, host["id"])

    response = client.post(f"/workloads/{workload['id']}/deployments", json={"image_tag": "nginx:1.26"})

    assert response.status_code == 200, response.text
    assert response.json()["success"]
    history = client.get(f"/workloads/{workload['id']}/deployments").json()
    assert history[0]["status"] == "success"
    assert client.fake_engine.called("start_container")


def test_history_prune_endpoints_report_counts(client: Any) -> None:
    _create_host(client)

    assert client.post("/monitor/prune").json() == {"deleted": 0}
    assert client.post("/events/prune?retention_days=30").json() == {"deleted": 0}
