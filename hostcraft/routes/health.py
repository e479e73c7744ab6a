from __future__ import annotations

from datetime import timedelta
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hostcraft.config import get_settings
from hostcraft.dependencies import get_container_engine, get_db_session, get_db_sessionmaker
from hostcraft.routes.errors import DOMAIN_ERRORS, http_error
from hostcraft.routes.workloads import require_workload
from hostcraft.schemas.health import (
    HealthCheckOut,
    MonitorOutcomeOut,
    RecoveryResultOut,
    UptimeOut,
)
from hostcraft.services import health as health_service
from hostcraft.services.engine import ContainerEngine
from hostcraft.services.health import MonitorOutcome

router = APIRouter(tags=["health"])


def _outcome_out(outcome: MonitorOutcome) -> MonitorOutcomeOut:
    return MonitorOutcomeOut(
        target_id=outcome.target_id,
        status=outcome.status.value,
        health_check_id=outcome.health_check_id,
        recovery=(
            RecoveryResultOut.model_validate(outcome.recovery) if outcome.recovery else None
        ),
        error=outcome.error,
    )


@router.post("/workloads/{workload_id}/health/check", response_model=HealthCheckOut)
async def check_workload(
    workload_id: str,
    session: AsyncSession = Depends(get_db_session),
    engine: ContainerEngine = Depends(get_container_engine),
) -> HealthCheckOut:
    workload = await require_workload(session, workload_id)
    sample = await health_service.check_application_health(session, workload, engine=engine)
    return HealthCheckOut.model_validate(sample)


@router.post("/workloads/{workload_id}/health/recover", response_model=RecoveryResultOut)
async def recover_workload(
    workload_id: str,
    session: AsyncSession = Depends(get_db_session),
    engine: ContainerEngine = Depends(get_container_engine),
) -> RecoveryResultOut:
    workload = await require_workload(session, workload_id)
    try:
        result = await health_service.attempt_recovery(session, workload, engine=engine)
    except DOMAIN_ERRORS as exc:
        raise http_error(exc) from exc
    return RecoveryResultOut.model_validate(result)


@router.get("/workloads/{workload_id}/health/uptime", response_model=UptimeOut)
async def workload_uptime(
    workload_id: str,
    hours: int = Query(default=24, ge=1, le=24 * 90),
    session: AsyncSession = Depends(get_db_session),
) -> UptimeOut:
    await require_workload(session, workload_id)
    percentage = await health_service.get_uptime_percentage(
        session, workload_id, period=timedelta(hours=hours)
    )
    return UptimeOut(workload_id=workload_id, period_hours=hours, uptime_percentage=percentage)


@router.get("/workloads/{workload_id}/health", response_model=List[HealthCheckOut])
async def list_workload_checks(
    workload_id: str,
    limit: int = 100,
    session: AsyncSession = Depends(get_db_session),
) -> List[HealthCheckOut]:
    await require_workload(session, workload_id)
    rows = await health_service.list_health_checks(
        session, workload_id=workload_id, limit=max(1, min(limit, 1000))
    )
    return [HealthCheckOut.model_validate(row) for row in rows]


@router.post("/monitor/applications", response_model=List[MonitorOutcomeOut])
async def monitor_applications(
    recover: bool = True,
    sessionmaker: async_sessionmaker[AsyncSession] = Depends(get_db_sessionmaker),
    engine: ContainerEngine = Depends(get_container_engine),
) -> List[MonitorOutcomeOut]:
    outcomes = await health_service.monitor_all_applications(
        sessionmaker, engine=engine, recover=recover
    )
    return [_outcome_out(outcome) for outcome in outcomes]


@router.post("/monitor/servers", response_model=List[MonitorOutcomeOut])
async def monitor_servers(
    sessionmaker: async_sessionmaker[AsyncSession] = Depends(get_db_sessionmaker),
    engine: ContainerEngine = Depends(get_container_engine),
) -> List[MonitorOutcomeOut]:
    outcomes = await health_service.monitor_all_servers(sessionmaker, engine=engine)
    return [_outcome_out(outcome) for outcome in outcomes]


@router.post("/monitor/prune")
async def prune_checks(
    retention_days: Optional[int] = None,
    session: AsyncSession = Depends(get_db_session),
) -> Dict[str, int]:
    days = (
        retention_days
        if retention_days is not None
        else get_settings().health_check_retention_days
    )
    deleted = await health_service.prune_health_checks(session, retention_days=days)
    return {"deleted": deleted}
