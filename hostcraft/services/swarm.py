from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from hostcraft.enums import DeploymentAction, DeploymentStatus, HostRole, ServiceState
from hostcraft.logger import Operation, get_logger
from hostcraft.models.deployment import Deployment
from hostcraft.models.host import Host
from hostcraft.models.workload import Workload
from hostcraft.services import deployments as deployment_service
from hostcraft.services.deployments import DeploymentResult, describe_error
from hostcraft.services.engine import (
    ContainerEngine,
    EngineNotFoundError,
    EngineOperationError,
    ServiceInfo,
    ServiceSpec,
    TaskInfo,
)
from hostcraft.services.leases import workload_lease
from hostcraft.services.network import ensure_network_exists
from hostcraft.services.secrets import plain_environment

_logger = get_logger("services.swarm")


class SwarmRoleError(RuntimeError):
    pass


@dataclass(frozen=True)
class ServiceHealth:
    desired_replicas: int
    running_replicas: int
    failed_tasks: int
    status: ServiceState


def derive_service_status(desired: int, running: int, failed_tasks: int) -> ServiceState:
    if running == desired and failed_tasks == 0:
        return ServiceState.RUNNING
    if running == 0:
        return ServiceState.DOWN
    return ServiceState.DEGRADED


def count_task_states(tasks: Sequence[TaskInfo]) -> Tuple[int, int]:
    """Return (running tasks, failing slots).

    A slot is failing when its newest task is not running and that task or the
    previous one in the slot failed.
    """
    slots: Dict[str, List[TaskInfo]] = {}
    for task in tasks:
        slots.setdefault(task.slot or task.id, []).append(task)
    running = sum(
        1 for task in tasks if task.is_running and task.desired_state.lower() == "running"
    )
    failed = 0
    for history in slots.values():
        newest = history[0]
        if not newest.is_running and any(task.is_failed for task in history[:2]):
            failed += 1
    return running, failed


async def load_host(session: AsyncSession, workload: Workload) -> Host:
    host = await session.get(Host, workload.host_id)
    if host is None:
        raise LookupError(f"host {workload.host_id} for workload {workload.name} not found")
    return host


async def _manager_host(session: AsyncSession, workload: Workload) -> Host:
    host = await load_host(session, workload)
    if host.host_role is not HostRole.SWARM_MANAGER:
        raise SwarmRoleError(
            f"host {host.name} is {host.role}; only swarm managers can run service operations"
        )
    return host


def service_networks(workload: Workload) -> List[str]:
    networks = [item.strip() for item in (workload.swarm_networks or []) if item and item.strip()]
    if networks:
        return networks
    return [f"{workload.project_name}-network"]


def service_labels(workload: Workload) -> Dict[str, str]:
    labels = {
        "hostcraft.managed": "true",
        "hostcraft.workload.id": workload.id,
        "hostcraft.workload.name": workload.name,
        "hostcraft.project.name": workload.project_name,
        "com.docker.stack.namespace": workload.project_name,
    }
    if workload.domain:
        router = workload.name
        labels["traefik.enable"] = "true"
        labels[f"traefik.http.routers.{router}.rule"] = f"Host(`{workload.domain}`)"
        labels[f"traefik.http.services.{router}.loadbalancer.server.port"] = str(workload.port or 80)
        if workload.enable_https:
            labels[f"traefik.http.routers.{router}.entrypoints"] = "websecure"
            labels[f"traefik.http.routers.{router}.tls"] = "true"
            labels[f"traefik.http.routers.{router}.tls.certresolver"] = "letsencrypt"
    return labels


async def build_service_spec(
    session: AsyncSession, workload: Workload, image_tag: str
) -> ServiceSpec:
    return ServiceSpec(
        name=workload.service_name,
        image=image_tag,
        replicas=workload.desired_replicas,
        networks=service_networks(workload),
        env=await plain_environment(session, workload.id),
        labels=service_labels(workload),
        mounts=[
            f"type=volume,source={volume.name},target={volume.mount_path}"
            for volume in workload.volumes
        ],
    )


def _find_service(services: List[ServiceInfo], name: str) -> Optional[ServiceInfo]:
    for service in services:
        if service.name == name:
            return service
    return None


async def _rolling_update(
    session: AsyncSession,
    deployment: Deployment,
    workload: Workload,
    host: Host,
    image_tag: str,
    *,
    engine: ContainerEngine,
    op: Operation,
) -> DeploymentResult:
    try:
        await engine.update_service(host, workload.service_name, image=image_tag)
    except EngineOperationError as exc:
        if not workload.auto_rollback:
            raise
        op.step_warning("service.update", "Rolling update rejected; rolling back", error=exc.detail)
        await deployment_service.advance(
            session, deployment, DeploymentStatus.ROLLING_BACK, error=exc.detail
        )
        try:
            await engine.rollback_service(host, workload.service_name)
            note = "update failed; service rolled back to its previous spec"
        except EngineOperationError as rollback_exc:
            note = f"update failed; rollback also failed: {rollback_exc.detail}"
        op.step_warning("service.rollback", note)
        return await deployment_service.fail_deployment(session, deployment, exc.detail, note=note)

    workload.current_image = image_tag
    await deployment_service.advance(
        session, deployment, DeploymentStatus.SUCCESS, note="rolling update accepted"
    )
    op.step("service.update", "Rolling update accepted", image=image_tag)
    return DeploymentResult(
        success=True,
        message="Service updated",
        deployment_id=deployment.id,
        service_id=deployment.service_id,
    )


async def deploy_to_swarm(
    session: AsyncSession,
    workload: Workload,
    image_tag: str,
    *,
    engine: ContainerEngine,
    commit_hash: Optional[str] = None,
) -> DeploymentResult:
    async with workload_lease(session, workload, "deploy"):
        deployment = await deployment_service.create_deployment(
            session,
            workload,
            DeploymentAction.DEPLOY,
            image_tag=image_tag,
            commit_hash=commit_hash,
        )
        async with _logger.operation(
            "swarm.deploy",
            "Deploying workload as swarm service",
            workload=workload.name,
            image=image_tag,
            deployment_id=deployment.id,
        ) as op:
            try:
                await deployment_service.advance(session, deployment, DeploymentStatus.RUNNING)
                host = await _manager_host(session, workload)

                networks = service_networks(workload)
                for network in networks:
                    await ensure_network_exists(engine, host, network)
                op.step("network.ensure", "Overlay networks ready", networks=",".join(networks))

                existing = _find_service(await engine.list_services(host), workload.service_name)
                if existing is not None:
                    deployment.service_id = existing.id
                    workload.swarm_service_id = existing.id
                    op.step("service.exists", "Service exists; performing rolling update")
                    return await _rolling_update(
                        session, deployment, workload, host, image_tag, engine=engine, op=op
                    )

                spec = await build_service_spec(session, workload, image_tag)
                service_id = await engine.create_service(host, spec)
                op.step("service.create", "Created service", service_id=service_id)

                deployment.service_id = service_id
                workload.swarm_service_id = service_id
                workload.current_image = image_tag
                await deployment_service.advance(
                    session, deployment, DeploymentStatus.SUCCESS, note="service created"
                )
                return DeploymentResult(
                    success=True,
                    message="Service created",
                    deployment_id=deployment.id,
                    service_id=service_id,
                )
            except asyncio.CancelledError:
                await deployment_service.cancel_deployment(session, deployment)
                raise
            except Exception as exc:  # noqa: BLE001
                op.step_warning("deploy.fail", "Swarm deployment failed", error=describe_error(exc))
                return await deployment_service.fail_deployment(
                    session, deployment, describe_error(exc)
                )


async def update_swarm_service(
    session: AsyncSession,
    workload: Workload,
    image_tag: str,
    *,
    engine: ContainerEngine,
) -> DeploymentResult:
    async with workload_lease(session, workload, "update"):
        deployment = await deployment_service.create_deployment(
            session, workload, DeploymentAction.UPDATE, image_tag=image_tag
        )
        async with _logger.operation(
            "swarm.update",
            "Updating swarm service image",
            workload=workload.name,
            image=image_tag,
            deployment_id=deployment.id,
        ) as op:
            try:
                await deployment_service.advance(session, deployment, DeploymentStatus.RUNNING)
                host = await _manager_host(session, workload)
                service = await engine.inspect_service(host, workload.service_name)
                if service is None:
                    return await deployment_service.fail_deployment(
                        session, deployment, f"service {workload.service_name} does not exist"
                    )
                deployment.service_id = service.id
                return await _rolling_update(
                    session, deployment, workload, host, image_tag, engine=engine, op=op
                )
            except asyncio.CancelledError:
                await deployment_service.cancel_deployment(session, deployment)
                raise
            except Exception as exc:  # noqa: BLE001
                return await deployment_service.fail_deployment(
                    session, deployment, describe_error(exc)
                )


async def scale_service(
    session: AsyncSession,
    workload: Workload,
    replicas: int,
    *,
    engine: ContainerEngine,
) -> DeploymentResult:
    if replicas < 0:
        raise ValueError(f"replicas must be >= 0, got {replicas}")
    async with workload_lease(session, workload, "scale"):
        deployment = await deployment_service.create_deployment(
            session, workload, DeploymentAction.SCALE, replicas=replicas
        )
        async with _logger.operation(
            "swarm.scale",
            "Scaling swarm service",
            workload=workload.name,
            replicas=replicas,
            deployment_id=deployment.id,
        ) as op:
            try:
                await deployment_service.advance(session, deployment, DeploymentStatus.RUNNING)
                host = await _manager_host(session, workload)
                await engine.update_service(host, workload.service_name, replicas=replicas)
                op.step("service.scale", "Replica count accepted", replicas=replicas)
                workload.swarm_replicas = replicas
                deployment.service_id = workload.swarm_service_id
                await deployment_service.advance(session, deployment, DeploymentStatus.SUCCESS)
                return DeploymentResult(
                    success=True,
                    message=f"Service scaled to {replicas} replicas",
                    deployment_id=deployment.id,
                    service_id=workload.swarm_service_id,
                )
            except asyncio.CancelledError:
                await deployment_service.cancel_deployment(session, deployment)
                raise
            except Exception as exc:  # noqa: BLE001
                return await deployment_service.fail_deployment(
                    session, deployment, describe_error(exc)
                )


async def rollback_service(
    session: AsyncSession,
    workload: Workload,
    *,
    engine: ContainerEngine,
) -> DeploymentResult:
    async with workload_lease(session, workload, "rollback"):
        deployment = await deployment_service.create_deployment(
            session, workload, DeploymentAction.ROLLBACK
        )
        async with _logger.operation(
            "swarm.rollback",
            "Rolling back swarm service",
            workload=workload.name,
            deployment_id=deployment.id,
        ) as op:
            try:
                await deployment_service.advance(session, deployment, DeploymentStatus.RUNNING)
                host = await _manager_host(session, workload)
                service = await engine.inspect_service(host, workload.service_name)
                if service is None:
                    return await deployment_service.fail_deployment(
                        session, deployment, f"service {workload.service_name} does not exist"
                    )
                deployment.service_id = service.id
                if not service.has_previous_spec:
                    op.step_warning("service.rollback", "No previous spec to roll back to")
                    return await deployment_service.fail_deployment(
                        session,
                        deployment,
                        f"service {workload.service_name} has no previous spec to roll back to",
                    )

                await deployment_service.advance(session, deployment, DeploymentStatus.ROLLING_BACK)
                await engine.rollback_service(host, workload.service_name)
                reverted = await engine.inspect_service(host, workload.service_name)
                if reverted is not None:
                    workload.current_image = reverted.image or workload.current_image
                    workload.swarm_replicas = reverted.replicas
                    deployment.image_tag = reverted.image or None
                op.step("service.rollback", "Service reverted to previous spec")
                await deployment_service.advance(session, deployment, DeploymentStatus.SUCCESS)
                return DeploymentResult(
                    success=True,
                    message="Service rolled back",
                    deployment_id=deployment.id,
                    service_id=service.id,
                )
            except asyncio.CancelledError:
                await deployment_service.cancel_deployment(session, deployment)
                raise
            except Exception as exc:  # noqa: BLE001
                return await deployment_service.fail_deployment(
                    session, deployment, describe_error(exc)
                )


async def remove_service(
    session: AsyncSession,
    workload: Workload,
    *,
    engine: ContainerEngine,
) -> DeploymentResult:
    async with workload_lease(session, workload, "remove"):
        deployment = await deployment_service.create_deployment(
            session, workload, DeploymentAction.REMOVE
        )
        try:
            await deployment_service.advance(session, deployment, DeploymentStatus.RUNNING)
            host = await _manager_host(session, workload)
            note: Optional[str] = None
            try:
                await engine.remove_service(host, workload.service_name)
            except EngineNotFoundError:
                note = "service was already absent"
            deployment.service_id = workload.swarm_service_id
            workload.swarm_service_id = None
            workload.current_image = None
            await deployment_service.advance(
                session, deployment, DeploymentStatus.SUCCESS, note=note
            )
            _logger.info("swarm.remove", "Removed swarm service", workload=workload.name)
            return DeploymentResult(
                success=True,
                message="Service removed",
                deployment_id=deployment.id,
                service_id=deployment.service_id,
            )
        except asyncio.CancelledError:
            await deployment_service.cancel_deployment(session, deployment)
            raise
        except Exception as exc:  # noqa: BLE001
            return await deployment_service.fail_deployment(session, deployment, describe_error(exc))


async def restart_service(
    session: AsyncSession,
    workload: Workload,
    *,
    engine: ContainerEngine,
) -> DeploymentResult:
    async with workload_lease(session, workload, "restart"):
        deployment = await deployment_service.create_deployment(
            session, workload, DeploymentAction.RESTART
        )
        try:
            await deployment_service.advance(session, deployment, DeploymentStatus.RUNNING)
            host = await _manager_host(session, workload)
            await engine.restart_service(host, workload.service_name)
            deployment.service_id = workload.swarm_service_id
            await deployment_service.advance(session, deployment, DeploymentStatus.SUCCESS)
            return DeploymentResult(
                success=True,
                message="Service tasks restarted",
                deployment_id=deployment.id,
                service_id=workload.swarm_service_id,
            )
        except asyncio.CancelledError:
            await deployment_service.cancel_deployment(session, deployment)
            raise
        except Exception as exc:  # noqa: BLE001
            return await deployment_service.fail_deployment(session, deployment, describe_error(exc))


async def get_service_health(
    session: AsyncSession,
    workload: Workload,
    *,
    engine: ContainerEngine,
) -> ServiceHealth:
    host = await _manager_host(session, workload)
    service = await engine.inspect_service(host, workload.service_name)
    if service is None:
        return ServiceHealth(
            desired_replicas=workload.desired_replicas,
            running_replicas=0,
            failed_tasks=0,
            status=ServiceState.DOWN,
        )
    tasks = await engine.list_service_tasks(host, workload.service_name)
    running, failed = count_task_states(tasks)
    return ServiceHealth(
        desired_replicas=service.replicas,
        running_replicas=running,
        failed_tasks=failed,
        status=derive_service_status(service.replicas, running, failed),
    )
