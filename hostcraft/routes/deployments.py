from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from hostcraft.dependencies import get_container_engine, get_db_session
from hostcraft.routes.errors import DOMAIN_ERRORS, http_error
from hostcraft.routes.workloads import require_workload
from hostcraft.schemas.deployments import (
    DeploymentOut,
    DeploymentResultOut,
    DeployRequest,
    ScaleRequest,
    ServiceHealthOut,
)
from hostcraft.services import deployments as deployment_service
from hostcraft.services import orchestrator, swarm
from hostcraft.services.engine import ContainerEngine

router = APIRouter(prefix="/workloads/{workload_id}/deployments", tags=["deployments"])


@router.get("", response_model=List[DeploymentOut])
async def list_deployments(
    workload_id: str,
    limit: int = 50,
    session: AsyncSession = Depends(get_db_session),
) -> List[DeploymentOut]:
    await require_workload(session, workload_id)
    rows = await deployment_service.list_deployments(
        session, workload_id, limit=max(1, min(limit, 500))
    )
    return [DeploymentOut.model_validate(row) for row in rows]


@router.get("/service-health", response_model=ServiceHealthOut)
async def service_health(
    workload_id: str,
    session: AsyncSession = Depends(get_db_session),
    engine: ContainerEngine = Depends(get_container_engine),
) -> ServiceHealthOut:
    workload = await require_workload(session, workload_id)
    try:
        health = await swarm.get_service_health(session, workload, engine=engine)
    except DOMAIN_ERRORS as exc:
        raise http_error(exc) from exc
    return ServiceHealthOut(
        desired_replicas=health.desired_replicas,
        running_replicas=health.running_replicas,
        failed_tasks=health.failed_tasks,
        status=health.status.value,
    )


@router.get("/{deployment_id}", response_model=DeploymentOut)
async def get_deployment(
    workload_id: str,
    deployment_id: str,
    session: AsyncSession = Depends(get_db_session),
) -> DeploymentOut:
    deployment = await deployment_service.get_deployment(session, deployment_id)
    if deployment is None or deployment.workload_id != workload_id:
        raise HTTPException(status_code=404, detail="Deployment not found")
    return DeploymentOut.model_validate(deployment)


@router.post("", response_model=DeploymentResultOut)
async def deploy(
    workload_id: str,
    payload: DeployRequest,
    session: AsyncSession = Depends(get_db_session),
    engine: ContainerEngine = Depends(get_container_engine),
) -> DeploymentResultOut:
    workload = await require_workload(session, workload_id)
    try:
        result = await orchestrator.deploy_workload(
            session,
            workload,
            payload.image_tag,
            engine=engine,
            commit_hash=payload.commit_hash,
        )
    except DOMAIN_ERRORS as exc:
        raise http_error(exc) from exc
    return DeploymentResultOut.model_validate(result)


@router.post("/scale", response_model=DeploymentResultOut)
async def scale(
    workload_id: str,
    payload: ScaleRequest,
    session: AsyncSession = Depends(get_db_session),
    engine: ContainerEngine = Depends(get_container_engine),
) -> DeploymentResultOut:
    workload = await require_workload(session, workload_id)
    try:
        result = await orchestrator.scale_workload(session, workload, payload.replicas, engine=engine)
    except DOMAIN_ERRORS as exc:
        raise http_error(exc) from exc
    return DeploymentResultOut.model_validate(result)


@router.post("/rollback", response_model=DeploymentResultOut)
async def rollback(
    workload_id: str,
    session: AsyncSession = Depends(get_db_session),
    engine: ContainerEngine = Depends(get_container_engine),
) -> DeploymentResultOut:
    workload = await require_workload(session, workload_id)
    try:
        result = await orchestrator.rollback_workload(session, workload, engine=engine)
    except DOMAIN_ERRORS as exc:
        raise http_error(exc) from exc
    return DeploymentResultOut.model_validate(result)


@router.post("/restart", response_model=DeploymentResultOut)
async def restart(
    workload_id: str,
    session: AsyncSession = Depends(get_db_session),
    engine: ContainerEngine = Depends(get_container_engine),
) -> DeploymentResultOut:
    workload = await require_workload(session, workload_id)
    try:
        result = await orchestrator.restart_workload(session, workload, engine=engine)
    except DOMAIN_ERRORS as exc:
        raise http_error(exc) from exc
    return DeploymentResultOut.model_validate(result)


@router.post("/remove", response_model=DeploymentResultOut)
async def remove(
    workload_id: str,
    session: AsyncSession = Depends(get_db_session),
    engine: ContainerEngine = Depends(get_container_engine),
) -> DeploymentResultOut:
    workload = await require_workload(session, workload_id)
    try:
        result = await orchestrator.remove_workload(session, workload, engine=engine)
    except DOMAIN_ERRORS as exc:
        raise http_error(exc) from exc
    return DeploymentResultOut.model_validate(result)
