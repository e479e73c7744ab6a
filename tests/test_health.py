from __future__ import annotations

import asyncio
import socket
import urllib.error
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy import select

from conftest import FakeEngine, make_host, make_workload
from hostcraft.enums import DeploymentMode, HealthStatus, HostRole, HostStatus
from hostcraft.models.event import Event
from hostcraft.models.health_check import HealthCheck
from hostcraft.models.host import Host
from hostcraft.models.workload import Workload
from hostcraft.services import health
from hostcraft.services.engine import ContainerInfo, EngineOperationError, ServiceInfo, TaskInfo
from hostcraft.services.leases import try_acquire


@pytest.mark.parametrize(
    ("code", "expected"),
    [
        (200, HealthStatus.HEALTHY),
        (204, HealthStatus.HEALTHY),
        (301, HealthStatus.DEGRADED),
        (404, HealthStatus.DEGRADED),
        (500, HealthStatus.UNHEALTHY),
        (503, HealthStatus.UNHEALTHY),
    ],
)
def test_classify_http_status(code: int, expected: HealthStatus) -> None:
    assert health.classify_http_status(code) is expected


def test_failure_count_grows_on_any_unhealthy_sample() -> None:
    assert health.apply_failure_count(2, HealthStatus.UNHEALTHY) == 3
    assert health.apply_failure_count(2, HealthStatus.DEGRADED) == 3
    assert health.apply_failure_count(2, HealthStatus.UNKNOWN) == 2
    assert health.apply_failure_count(2, HealthStatus.HEALTHY) == 0


@pytest.mark.asyncio
async def test_probe_http_maps_status_and_timeout(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(health, "_http_get", lambda url, timeout: (503, "HTTPError: Service Unavailable"))
    result = await health.probe_http("http://app.local/health", 1.0)
    assert result.status is HealthStatus.UNHEALTHY
    assert result.status_code == 503

    def _timeout(url: str, timeout: float):
        raise TimeoutError("timed out")

    monkeypatch.setattr(health, "_http_get", _timeout)
    result = await health.probe_http("http://app.local/health", 1.0)
    assert result.status is HealthStatus.UNHEALTHY
    assert result.error == health.TIMEOUT_ERROR


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [socket.timeout("timed out"), urllib.error.URLError(socket.timeout("timed out"))],
)
async def test_probe_http_reports_socket_timeouts(monkeypatch: pytest.MonkeyPatch, error: Exception) -> None:
    def _raise(url: str, timeout: float):
        raise error

    monkeypatch.setattr(health, "_http_get", _raise)
    result = await health.probe_http("http://app.local/health", 1.0)

    assert result.status is HealthStatus.UNHEALTHY
    assert result.error == health.TIMEOUT_ERROR


@pytest.mark.asyncio
async def test_probe_tcp_against_local_listener() -> None:
    server = await asyncio.start_server(lambda reader, writer: writer.close(), "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    try:
        result = await health.probe_tcp("127.0.0.1", port, 2.0)
    finally:
        server.close()
        await server.wait_closed()
    assert result.status is HealthStatus.HEALTHY

    refused = await health.probe_tcp("127.0.0.1", port, 2.0)
    assert refused.status is HealthStatus.UNHEALTHY
    assert refused.error


@pytest.mark.asyncio
async def test_container_probe_updates_failure_count_and_events(session, fake_engine: FakeEngine) -> None:
    host = await make_host(session)
    workload = await make_workload(session, host)

    first = await health.check_application_health(session, workload, engine=fake_engine)
    assert first.status == HealthStatus.UNHEALTHY.value
    assert workload.consecutive_failures == 1

    fake_engine.containers["web"] = ContainerInfo(id="c1", name="web", image="nginx", state="paused")
    degraded = await health.check_application_health(session, workload, engine=fake_engine)
    assert degraded.status == HealthStatus.DEGRADED.value
    assert workload.consecutive_failures == 2

    fake_engine.containers["web"] = ContainerInfo(id="c1", name="web", image="nginx", state="running")
    healthy = await health.check_application_health(session, workload, engine=fake_engine)
    assert healthy.status == HealthStatus.HEALTHY.value
    assert workload.consecutive_failures == 0

    events = (
        await session.execute(select(Event).where(Event.name == "application.status_changed"))
    ).scalars().all()
    assert len(events) == 3


@pytest.mark.asyncio
async def test_service_probe_uses_task_counts(session, fake_engine: FakeEngine) -> None:
    host = await make_host(session, role=HostRole.SWARM_MANAGER)
    workload = await make_workload(session, host, mode=DeploymentMode.SERVICE)
    fake_engine.services["web"] = ServiceInfo(id="svc", name="web", image="nginx", replicas=2)
    fake_engine.tasks["web"] = [
        TaskInfo(id="t1", node="n1", desired_state="Running", current_state="Running 1 second ago")
    ]

    sample = await health.check_application_health(session, workload, engine=fake_engine)

    assert sample.status == HealthStatus.DEGRADED.value
    assert sample.probe == "service"
    assert "1/2 replicas running" in (sample.error or "")


@pytest.mark.asyncio
async def test_uptime_is_none_without_samples(session) -> None:
    assert await health.get_uptime_percentage(session, "missing") is None


@pytest.mark.asyncio
async def test_uptime_counts_healthy_share_within_window(session) -> None:
    host = await make_host(session)
    workload = await make_workload(session, host)
    now = datetime.now(timezone.utc)
    statuses = [HealthStatus.HEALTHY, HealthStatus.HEALTHY, HealthStatus.HEALTHY, HealthStatus.UNHEALTHY]
    for offset, status in enumerate(statuses):
        session.add(
            HealthCheck(
                id=str(uuid4()),
                workload_id=workload.id,
                status=status.value,
                checked_at=now - timedelta(minutes=offset),
            )
        )
    session.add(
        HealthCheck(
            id=str(uuid4()),
            workload_id=workload.id,
            status=HealthStatus.UNHEALTHY.value,
            checked_at=now - timedelta(days=3),
        )
    )
    await session.commit()

    assert await health.get_uptime_percentage(session, workload.id, now=now) == 75.0
    assert await health.get_uptime_percentage(
        session, workload.id, period=timedelta(days=7), now=now
    ) == 60.0


@pytest.mark.asyncio
async def test_prune_drops_only_samples_past_retention(session) -> None:
    host = await make_host(session)
    workload = await make_workload(session, host)
    now = datetime.now(timezone.utc)
    for age in (timedelta(hours=1), timedelta(days=20), timedelta(days=40)):
        session.add(
            HealthCheck(
                id=str(uuid4()),
                workload_id=workload.id,
                status=HealthStatus.HEALTHY.value,
                checked_at=now - age,
            )
        )
    await session.commit()

    assert await health.prune_health_checks(session, retention_days=14) == 2
    remaining = await health.list_health_checks(session, workload_id=workload.id)
    assert len(remaining) == 1


@pytest.mark.asyncio
async def test_recovery_respects_disabled_policy(session, fake_engine: FakeEngine) -> None:
    host = await make_host(session)
    workload = await make_workload(session, host, auto_restart=False, auto_rollback=False)

    outcome = await health.attempt_recovery(session, workload, engine=fake_engine)

    assert not outcome.attempted
    assert fake_engine.calls == []


@pytest.mark.asyncio
async def test_recovery_restarts_container(session, fake_engine: FakeEngine) -> None:
    host = await make_host(session)
    workload = await make_workload(session, host)
    fake_engine.containers["web"] = ContainerInfo(id="c1", name="web", image="nginx", state="exited")

    outcome = await health.attempt_recovery(session, workload, engine=fake_engine)

    assert outcome.attempted and outcome.success
    assert outcome.action == "restart"
    assert fake_engine.called("start_container") == [("start_container", "web")]


@pytest.mark.asyncio
async def test_recovery_falls_back_to_rollback(session, fake_engine: FakeEngine) -> None:
    host = await make_host(session)
    workload = await make_workload(session, host)

    outcome = await health.attempt_recovery(session, workload, engine=fake_engine)

    # No container to restart and no earlier image to roll back to.
    assert outcome.attempted
    assert not outcome.success
    assert outcome.action == "rollback"


@pytest.mark.asyncio
async def test_recovery_yields_to_busy_workload(session, fake_engine: FakeEngine) -> None:
    host = await make_host(session)
    workload = await make_workload(session, host)
    assert await try_acquire(session, workload.id, "deploy:other")

    outcome = await health.attempt_recovery(session, workload, engine=fake_engine)

    assert not outcome.attempted
    assert "busy" in outcome.message


@pytest.mark.asyncio
async def test_monitor_triggers_recovery_at_threshold(sessionmaker, fake_engine: FakeEngine) -> None:
    async with sessionmaker() as session:
        host = await make_host(session)
        failing = await make_workload(session, host, name="api", max_consecutive_failures=2)
        healthy = await make_workload(session, host, name="web")
        failing_id, healthy_id = failing.id, healthy.id
    fake_engine.containers["web"] = ContainerInfo(id="c1", name="web", image="nginx", state="running")

    first = {item.target_id: item for item in await health.monitor_all_applications(sessionmaker, engine=fake_engine)}
    assert first[failing_id].status is HealthStatus.UNHEALTHY
    assert first[failing_id].recovery is None
    assert first[healthy_id].status is HealthStatus.HEALTHY

    second = {item.target_id: item for item in await health.monitor_all_applications(sessionmaker, engine=fake_engine)}
    assert second[failing_id].recovery is not None
    assert second[failing_id].recovery.attempted

    async with sessionmaker() as session:
        stored = await session.get(Workload, failing_id)
        assert stored.consecutive_failures == 2


@pytest.mark.asyncio
async def test_monitor_recovers_persistently_degraded_workload(sessionmaker, fake_engine: FakeEngine) -> None:
    async with sessionmaker() as session:
        host = await make_host(session)
        workload = await make_workload(session, host, max_consecutive_failures=2)
        workload_id = workload.id
    fake_engine.containers["web"] = ContainerInfo(id="c1", name="web", image="nginx", state="paused")

    first = (await health.monitor_all_applications(sessionmaker, engine=fake_engine))[0]
    assert first.status is HealthStatus.DEGRADED
    assert first.recovery is None

    second = (await health.monitor_all_applications(sessionmaker, engine=fake_engine))[0]
    assert second.status is HealthStatus.DEGRADED
    assert second.recovery is not None
    assert second.recovery.attempted and second.recovery.action == "restart"
    assert fake_engine.called("start_container") == [("start_container", "web")]

    async with sessionmaker() as session:
        stored = await session.get(Workload, workload_id)
        assert stored.consecutive_failures == 2


@pytest.mark.asyncio
async def test_server_health_distinguishes_offline_from_error(session, fake_engine: FakeEngine) -> None:
    host = await make_host(session)
    fake_engine.failures["system_info"] = EngineOperationError("system.info", "daemon not running")

    sample = await health.check_server_health(session, host, engine=fake_engine)
    assert sample.status == HealthStatus.UNHEALTHY.value
    assert host.status == HostStatus.ERROR.value
    assert host.consecutive_failures == 1

    fake_engine.reachable = False
    await health.check_server_health(session, host, engine=fake_engine)
    assert host.status == HostStatus.OFFLINE.value
    assert host.consecutive_failures == 2

    del fake_engine.failures["system_info"]
    recovered = await health.check_server_health(session, host, engine=fake_engine)
    assert recovered.status == HealthStatus.HEALTHY.value
    assert host.status == HostStatus.ONLINE.value
    assert host.consecutive_failures == 0


@pytest.mark.asyncio
async def test_swarm_host_with_inactive_swarm_is_degraded(session, fake_engine: FakeEngine) -> None:
    host = await make_host(session, role=HostRole.SWARM_MANAGER)

    sample = await health.check_server_health(session, host, engine=fake_engine)

    assert sample.status == HealthStatus.DEGRADED.value
    assert "inactive" in (sample.error or "")


@pytest.mark.asyncio
async def test_monitor_servers_isolates_each_host(sessionmaker, fake_engine: FakeEngine) -> None:
    async with sessionmaker() as session:
        await make_host(session, name="a")
        await make_host(session, name="b")

    outcomes = await health.monitor_all_servers(sessionmaker, engine=fake_engine)

    assert [item.status for item in outcomes] == [HealthStatus.HEALTHY, HealthStatus.HEALTHY]
    async with sessionmaker() as session:
        hosts = (await session.execute(select(Host))).scalars().all()
        assert {host.status for host in hosts} == {HostStatus.ONLINE.value}
