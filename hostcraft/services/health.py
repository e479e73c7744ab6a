from __future__ import annotations

import asyncio
import socket
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple
from uuid import uuid4

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hostcraft.enums import DeploymentTarget, HealthStatus, HostStatus, ServiceState
from hostcraft.logger import get_logger
from hostcraft.metrics import record_health_check, record_recovery
from hostcraft.models.health_check import HealthCheck
from hostcraft.models.host import Host
from hostcraft.models.workload import Workload
from hostcraft.services import orchestrator, swarm
from hostcraft.services.deployments import describe_error
from hostcraft.services.engine import ContainerEngine
from hostcraft.services.events import record_event
from hostcraft.services.leases import WorkloadBusyError

_logger = get_logger("services.health")

TIMEOUT_ERROR = "TIMEOUT"

_SERVICE_STATE_HEALTH = {
    ServiceState.RUNNING: HealthStatus.HEALTHY,
    ServiceState.DEGRADED: HealthStatus.DEGRADED,
    ServiceState.DOWN: HealthStatus.UNHEALTHY,
}
_DEGRADED_CONTAINER_STATES = {"paused", "restarting"}


@dataclass(frozen=True)
class ProbeResult:
    status: HealthStatus
    probe: str
    response_time_ms: Optional[int] = None
    status_code: Optional[int] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class RecoveryResult:
    attempted: bool
    success: bool
    message: str
    action: Optional[str] = None
    deployment_id: Optional[str] = None


@dataclass(frozen=True)
class MonitorOutcome:
    target_id: str
    status: HealthStatus
    health_check_id: Optional[str] = None
    recovery: Optional[RecoveryResult] = None
    error: Optional[str] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _elapsed_ms(started: float) -> int:
    return int(round((time.perf_counter() - started) * 1000))


def classify_http_status(status_code: int) -> HealthStatus:
    if 200 <= status_code < 300:
        return HealthStatus.HEALTHY
    if status_code >= 500:
        return HealthStatus.UNHEALTHY
    return HealthStatus.DEGRADED


def _http_get(url: str, timeout_seconds: float) -> Tuple[int, str]:
    request = urllib.request.Request(url=url, method="GET")
    try:
        with urllib.request.urlopen(request, timeout=timeout_seconds) as resp:
            return int(getattr(resp, "status", 0) or 0), ""
    except urllib.error.HTTPError as exc:
        return int(getattr(exc, "code", 0) or 0), f"HTTPError: {exc.reason}"


async def probe_http(url: str, timeout_seconds: float) -> ProbeResult:
    started = time.perf_counter()
    try:
        status_code, error = await asyncio.to_thread(_http_get, url, timeout_seconds)
    except (socket.timeout, TimeoutError):
        return ProbeResult(
            HealthStatus.UNHEALTHY, "http", _elapsed_ms(started), error=TIMEOUT_ERROR
        )
    except urllib.error.URLError as exc:
        if isinstance(exc.reason, (socket.timeout, TimeoutError)):
            return ProbeResult(
                HealthStatus.UNHEALTHY, "http", _elapsed_ms(started), error=TIMEOUT_ERROR
            )
        return ProbeResult(
            HealthStatus.UNHEALTHY, "http", _elapsed_ms(started), error=f"URLError: {exc.reason}"
        )
    except OSError as exc:
        return ProbeResult(
            HealthStatus.UNHEALTHY, "http", _elapsed_ms(started), error=f"{type(exc).__name__}: {exc}"
        )
    return ProbeResult(
        classify_http_status(status_code),
        "http",
        _elapsed_ms(started),
        status_code=status_code,
        error=error or None,
    )


async def probe_tcp(address: str, port: int, timeout_seconds: float) -> ProbeResult:
    started = time.perf_counter()
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(address, port), timeout=timeout_seconds
        )
    except asyncio.TimeoutError:
        return ProbeResult(HealthStatus.UNHEALTHY, "tcp", _elapsed_ms(started), error=TIMEOUT_ERROR)
    except OSError as exc:
        return ProbeResult(
            HealthStatus.UNHEALTHY, "tcp", _elapsed_ms(started), error=f"{type(exc).__name__}: {exc}"
        )
    writer.close()
    await writer.wait_closed()
    return ProbeResult(HealthStatus.HEALTHY, "tcp", _elapsed_ms(started))


async def probe_engine(
    session: AsyncSession, workload: Workload, *, engine: ContainerEngine
) -> ProbeResult:
    started = time.perf_counter()
    host = await swarm.load_host(session, workload)
    if orchestrator.deployment_target(workload, host) is DeploymentTarget.SERVICE:
        health = await swarm.get_service_health(session, workload, engine=engine)
        error = None
        if health.status is not ServiceState.RUNNING:
            error = (
                f"{health.running_replicas}/{health.desired_replicas} replicas running, "
                f"{health.failed_tasks} failed tasks"
            )
        return ProbeResult(
            _SERVICE_STATE_HEALTH[health.status], "service", _elapsed_ms(started), error=error
        )

    info = await engine.inspect_container(host, workload.name)
    if info is None:
        return ProbeResult(
            HealthStatus.UNHEALTHY,
            "container",
            _elapsed_ms(started),
            error=f"container {workload.name} not found",
        )
    if info.state == "running":
        return ProbeResult(HealthStatus.HEALTHY, "container", _elapsed_ms(started))
    status = (
        HealthStatus.DEGRADED if info.state in _DEGRADED_CONTAINER_STATES else HealthStatus.UNHEALTHY
    )
    return ProbeResult(status, "container", _elapsed_ms(started), error=f"container is {info.state}")


async def _probe_application(
    session: AsyncSession, workload: Workload, *, engine: ContainerEngine
) -> ProbeResult:
    timeout = float(workload.health_check_timeout_seconds or 10)
    if workload.health_check_url:
        return await probe_http(workload.health_check_url, timeout)
    if workload.domain and workload.port:
        return await probe_tcp(workload.domain, workload.port, timeout)
    try:
        return await probe_engine(session, workload, engine=engine)
    except Exception as exc:  # noqa: BLE001
        return ProbeResult(HealthStatus.UNHEALTHY, "engine", error=describe_error(exc))


def _sample(
    result: ProbeResult, *, workload_id: Optional[str] = None, host_id: Optional[str] = None
) -> HealthCheck:
    return HealthCheck(
        id=str(uuid4()),
        workload_id=workload_id,
        host_id=host_id,
        status=result.status.value,
        probe=result.probe,
        response_time_ms=result.response_time_ms,
        status_code=result.status_code,
        error=result.error,
        checked_at=_utcnow(),
    )


def apply_failure_count(current: int, status: HealthStatus) -> int:
    if status is HealthStatus.HEALTHY:
        return 0
    if status in (HealthStatus.UNHEALTHY, HealthStatus.DEGRADED):
        return current + 1
    return current


async def check_application_health(
    session: AsyncSession, workload: Workload, *, engine: ContainerEngine
) -> HealthCheck:
    result = await _probe_application(session, workload, engine=engine)
    sample = _sample(result, workload_id=workload.id)
    session.add(sample)

    previous = workload.health_status
    workload.health_status = result.status.value
    workload.last_health_check_at = sample.checked_at
    workload.consecutive_failures = apply_failure_count(
        workload.consecutive_failures or 0, result.status
    )
    record_health_check(target="application", status=result.status.value)

    if previous != result.status.value:
        level = "WARNING" if result.status is not HealthStatus.HEALTHY else "INFO"
        await record_event(
            session,
            category="health",
            name="application.status_changed",
            level=level,
            fields={
                "previous": previous,
                "status": result.status.value,
                "probe": result.probe,
                "error": result.error or "",
            },
            workload_id=workload.id,
        )
        log = _logger.info if result.status is HealthStatus.HEALTHY else _logger.warning
        log(
            "health.application.transition",
            "Application health changed",
            workload=workload.name,
            previous=previous,
            status=result.status.value,
            error=result.error,
        )
    await session.commit()
    await session.refresh(sample)
    return sample


async def check_server_health(
    session: AsyncSession, host: Host, *, engine: ContainerEngine
) -> HealthCheck:
    started = time.perf_counter()
    now = _utcnow()
    previous = host.status
    try:
        info = await engine.system_info(host)
    except Exception as exc:  # noqa: BLE001
        error = describe_error(exc)
        reachable = await _reachable(engine, host)
        result = ProbeResult(HealthStatus.UNHEALTHY, "engine", _elapsed_ms(started), error=error)
        host.status = (HostStatus.ERROR if reachable else HostStatus.OFFLINE).value
        host.error = error[:1024]
        host.consecutive_failures = (host.consecutive_failures or 0) + 1
        host.last_failure_at = now
    else:
        status = HealthStatus.HEALTHY
        error = None
        if host.host_role.is_swarm and info.swarm_state.lower() != "active":
            status = HealthStatus.DEGRADED
            error = f"swarm state is {info.swarm_state}"
        result = ProbeResult(status, "engine", _elapsed_ms(started), error=error)
        host.status = HostStatus.ONLINE.value
        host.engine_version = info.server_version or host.engine_version
        host.error = error
        host.consecutive_failures = 0

    host.last_checked_at = now
    sample = _sample(result, host_id=host.id)
    session.add(sample)
    record_health_check(target="server", status=result.status.value)
    if previous != host.status:
        await record_event(
            session,
            category="health",
            name="server.status_changed",
            level="INFO" if host.status == HostStatus.ONLINE.value else "WARNING",
            fields={"host_id": host.id, "previous": previous, "status": host.status},
        )
    await session.commit()
    await session.refresh(sample)
    return sample


async def _reachable(engine: ContainerEngine, host: Host) -> bool:
    try:
        return await engine.validate_connection(host)
    except Exception:  # noqa: BLE001
        return False


async def attempt_recovery(
    session: AsyncSession, workload: Workload, *, engine: ContainerEngine
) -> RecoveryResult:
    if not workload.auto_restart and not workload.auto_rollback:
        _logger.info(
            "recovery.skip",
            "Recovery disabled by workload policy",
            workload=workload.name,
        )
        return RecoveryResult(attempted=False, success=False, message="recovery disabled by policy")

    async with _logger.operation(
        "health.recovery",
        "Attempting automatic recovery",
        workload=workload.name,
        consecutive_failures=workload.consecutive_failures,
    ) as op:
        last = RecoveryResult(attempted=False, success=False, message="no recovery action ran")
        steps = []
        if workload.auto_restart:
            steps.append(("restart", orchestrator.restart_workload))
        if workload.auto_rollback:
            steps.append(("rollback", orchestrator.rollback_workload))

        for action, run in steps:
            try:
                outcome = await run(session, workload, engine=engine)
            except WorkloadBusyError as exc:
                op.step_warning("recovery.busy", str(exc))
                return RecoveryResult(
                    attempted=False, success=False, message=str(exc), action=action
                )
            record_recovery(action=action, ok=outcome.success)
            last = RecoveryResult(
                attempted=True,
                success=outcome.success,
                message=outcome.message if outcome.success else (outcome.error or outcome.message),
                action=action,
                deployment_id=outcome.deployment_id,
            )
            await record_event(
                session,
                category="health",
                name=f"recovery.{action}",
                level="INFO" if outcome.success else "ERROR",
                fields={"deployment_id": outcome.deployment_id or "", "success": outcome.success},
                workload_id=workload.id,
            )
            await session.commit()
            if outcome.success:
                op.step("recovery.done", "Recovery action succeeded", action=action)
                return last
            op.step_warning("recovery.fail", "Recovery action failed", action=action, error=outcome.error)
        return last


async def _monitor_application(
    sessionmaker: async_sessionmaker[AsyncSession],
    workload_id: str,
    *,
    engine: ContainerEngine,
    recover: bool,
) -> MonitorOutcome:
    async with sessionmaker() as session:
        try:
            workload = await session.get(Workload, workload_id)
            if workload is None:
                return MonitorOutcome(workload_id, HealthStatus.UNKNOWN, error="workload not found")
            sample = await check_application_health(session, workload, engine=engine)
            recovery = None
            threshold = workload.max_consecutive_failures or 0
            if recover and threshold > 0 and workload.consecutive_failures >= threshold:
                recovery = await attempt_recovery(session, workload, engine=engine)
            return MonitorOutcome(
                workload_id, HealthStatus(sample.status), health_check_id=sample.id, recovery=recovery
            )
        except Exception as exc:  # noqa: BLE001
            _logger.warning(
                "monitor.application.fail",
                "Monitoring application failed",
                workload_id=workload_id,
                error=describe_error(exc),
            )
            return MonitorOutcome(workload_id, HealthStatus.UNKNOWN, error=describe_error(exc))


async def monitor_all_applications(
    sessionmaker: async_sessionmaker[AsyncSession],
    *,
    engine: ContainerEngine,
    recover: bool = True,
) -> List[MonitorOutcome]:
    async with sessionmaker() as session:
        ids = list((await session.execute(select(Workload.id).order_by(Workload.name))).scalars())
    outcomes = await asyncio.gather(
        *(
            _monitor_application(sessionmaker, workload_id, engine=engine, recover=recover)
            for workload_id in ids
        )
    )
    _logger.info(
        "monitor.applications",
        "Application monitoring pass complete",
        targets=len(outcomes),
        unhealthy=sum(1 for item in outcomes if item.status is HealthStatus.UNHEALTHY),
    )
    return list(outcomes)


async def _monitor_server(
    sessionmaker: async_sessionmaker[AsyncSession], host_id: str, *, engine: ContainerEngine
) -> MonitorOutcome:
    async with sessionmaker() as session:
        try:
            host = await session.get(Host, host_id)
            if host is None:
                return MonitorOutcome(host_id, HealthStatus.UNKNOWN, error="host not found")
            sample = await check_server_health(session, host, engine=engine)
            return MonitorOutcome(host_id, HealthStatus(sample.status), health_check_id=sample.id)
        except Exception as exc:  # noqa: BLE001
            _logger.warning(
                "monitor.server.fail",
                "Monitoring server failed",
                host_id=host_id,
                error=describe_error(exc),
            )
            return MonitorOutcome(host_id, HealthStatus.UNKNOWN, error=describe_error(exc))


async def monitor_all_servers(
    sessionmaker: async_sessionmaker[AsyncSession], *, engine: ContainerEngine
) -> List[MonitorOutcome]:
    async with sessionmaker() as session:
        ids = list((await session.execute(select(Host.id).order_by(Host.name))).scalars())
    outcomes = await asyncio.gather(
        *(_monitor_server(sessionmaker, host_id, engine=engine) for host_id in ids)
    )
    _logger.info(
        "monitor.servers",
        "Server monitoring pass complete",
        targets=len(outcomes),
        unhealthy=sum(1 for item in outcomes if item.status is HealthStatus.UNHEALTHY),
    )
    return list(outcomes)


async def get_uptime_percentage(
    session: AsyncSession,
    workload_id: str,
    *,
    period: timedelta = timedelta(days=1),
    now: Optional[datetime] = None,
) -> Optional[float]:
    """Share of healthy samples in the window, or None when there are no samples."""
    since = (now or _utcnow()) - period
    total, healthy = (
        await session.execute(
            select(
                func.count(HealthCheck.id),
                func.count(HealthCheck.id).filter(HealthCheck.status == HealthStatus.HEALTHY.value),
            ).where(HealthCheck.workload_id == workload_id, HealthCheck.checked_at >= since)
        )
    ).one()
    if not total:
        return None
    return round(healthy * 100.0 / total, 2)


async def list_health_checks(
    session: AsyncSession,
    *,
    workload_id: Optional[str] = None,
    host_id: Optional[str] = None,
    limit: int = 100,
) -> List[HealthCheck]:
    stmt = select(HealthCheck).order_by(HealthCheck.checked_at.desc()).limit(limit)
    if workload_id is not None:
        stmt = stmt.where(HealthCheck.workload_id == workload_id)
    if host_id is not None:
        stmt = stmt.where(HealthCheck.host_id == host_id)
    return list((await session.execute(stmt)).scalars().all())


async def prune_health_checks(session: AsyncSession, *, retention_days: int) -> int:
    cutoff = _utcnow() - timedelta(days=retention_days)
    result = await session.execute(delete(HealthCheck).where(HealthCheck.checked_at < cutoff))
    await session.commit()
    deleted = result.rowcount or 0
    _logger.info("health.prune", "Pruned health check samples", deleted=deleted)
    return deleted
