from __future__ import annotations

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from hostcraft.enums import DeploymentMode, DeploymentTarget, HostRole
from hostcraft.logger import get_logger
from hostcraft.models.host import Host
from hostcraft.models.workload import Workload
from hostcraft.services import containers, swarm
from hostcraft.services.deployments import DeploymentResult
from hostcraft.services.engine import ContainerEngine

_logger = get_logger("services.orchestrator")


class UnsupportedTargetError(RuntimeError):
    pass


def deployment_target(workload: Workload, host: Host) -> DeploymentTarget:
    if (
        DeploymentMode(workload.deployment_mode) is DeploymentMode.SERVICE
        and host.host_role is HostRole.SWARM_MANAGER
    ):
        return DeploymentTarget.SERVICE
    return DeploymentTarget.CONTAINER


async def resolve_target(session: AsyncSession, workload: Workload) -> DeploymentTarget:
    host = await swarm.load_host(session, workload)
    return deployment_target(workload, host)


def _image_for(workload: Workload, image_tag: Optional[str]) -> str:
    tag = image_tag or workload.image
    if not tag:
        raise ValueError(f"workload {workload.name} has no image to deploy")
    return tag


async def deploy_workload(
    session: AsyncSession,
    workload: Workload,
    image_tag: Optional[str] = None,
    *,
    engine: ContainerEngine,
    commit_hash: Optional[str] = None,
) -> DeploymentResult:
    tag = _image_for(workload, image_tag)
    target = await resolve_target(session, workload)
    _logger.info(
        "deploy.dispatch",
        "Dispatching deployment",
        workload=workload.name,
        target=target.value,
        image=tag,
    )
    if target is DeploymentTarget.SERVICE:
        return await swarm.deploy_to_swarm(
            session, workload, tag, engine=engine, commit_hash=commit_hash
        )
    return await containers.deploy_container(
        session, workload, tag, engine=engine, commit_hash=commit_hash
    )


async def restart_workload(
    session: AsyncSession, workload: Workload, *, engine: ContainerEngine
) -> DeploymentResult:
    if await resolve_target(session, workload) is DeploymentTarget.SERVICE:
        return await swarm.restart_service(session, workload, engine=engine)
    return await containers.restart_container(session, workload, engine=engine)


async def rollback_workload(
    session: AsyncSession, workload: Workload, *, engine: ContainerEngine
) -> DeploymentResult:
    if await resolve_target(session, workload) is DeploymentTarget.SERVICE:
        return await swarm.rollback_service(session, workload, engine=engine)
    return await containers.rollback_container(session, workload, engine=engine)


async def remove_workload(
    session: AsyncSession, workload: Workload, *, engine: ContainerEngine
) -> DeploymentResult:
    if await resolve_target(session, workload) is DeploymentTarget.SERVICE:
        return await swarm.remove_service(session, workload, engine=engine)
    return await containers.remove_container(session, workload, engine=engine)


async def scale_workload(
    session: AsyncSession, workload: Workload, replicas: int, *, engine: ContainerEngine
) -> DeploymentResult:
    if await resolve_target(session, workload) is not DeploymentTarget.SERVICE:
        raise UnsupportedTargetError(
            f"workload {workload.name} runs as a standalone container and cannot be scaled"
        )
    return await swarm.scale_service(session, workload, replicas, engine=engine)
