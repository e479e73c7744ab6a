from __future__ import annotations

import asyncio
from typing import Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from hostcraft.enums import DeploymentAction, DeploymentStatus, SourceType
from hostcraft.logger import get_logger
from hostcraft.models.host import Host
from hostcraft.models.workload import Workload
from hostcraft.services import deployments as deployment_service
from hostcraft.services.deployments import DeploymentResult, describe_error
from hostcraft.services.engine import ContainerEngine, ContainerSpec
from hostcraft.services.leases import workload_lease
from hostcraft.services.network import application_network_name, ensure_network_exists
from hostcraft.services.secrets import plain_environment

_logger = get_logger("services.containers")


class UnsupportedSourceError(RuntimeError):
    pass


def container_labels(workload: Workload) -> Dict[str, str]:
    labels = {
        "hostcraft.managed": "true",
        "hostcraft.workload.id": workload.id,
        "hostcraft.workload.name": workload.name,
        "hostcraft.project.name": workload.project_name,
    }
    if workload.domain:
        router = workload.name
        labels["traefik.enable"] = "true"
        labels[f"traefik.http.routers.{router}.rule"] = f"Host(`{workload.domain}`)"
        labels[f"traefik.http.services.{router}.loadbalancer.server.port"] = str(workload.port or 80)
        if workload.enable_https:
            labels[f"traefik.http.routers.{router}.entrypoints"] = "websecure"
            labels[f"traefik.http.routers.{router}.tls.certresolver"] = "letsencrypt"
    return labels


def _published_ports(workload: Workload) -> List[str]:
    # Domain-routed workloads are reached through the proxy, not a host port.
    if workload.port and not workload.domain:
        return [f"{workload.port}:{workload.port}"]
    return []


async def _prepare_image(
    engine: ContainerEngine, host: Host, workload: Workload, image_tag: str
) -> None:
    source = SourceType(workload.source_type)
    if source is SourceType.IMAGE:
        await engine.pull_image(host, image_tag)
        return
    if source is SourceType.REPOSITORY:
        await engine.build_image(
            host,
            tag=image_tag,
            context=workload.build_context or ".",
            dockerfile=workload.dockerfile,
        )
        return
    raise UnsupportedSourceError(
        f"workload {workload.name} uses a compose source; compose deployments are not supported"
    )


async def deploy_container(
    session: AsyncSession,
    workload: Workload,
    image_tag: str,
    *,
    engine: ContainerEngine,
    action: DeploymentAction = DeploymentAction.DEPLOY,
    commit_hash: Optional[str] = None,
) -> DeploymentResult:
    async with workload_lease(session, workload, action.value):
        return await _deploy_container_locked(
            session, workload, image_tag, engine=engine, action=action, commit_hash=commit_hash
        )


async def _deploy_container_locked(
    session: AsyncSession,
    workload: Workload,
    image_tag: str,
    *,
    engine: ContainerEngine,
    action: DeploymentAction,
    commit_hash: Optional[str] = None,
) -> DeploymentResult:
    deployment = await deployment_service.create_deployment(
        session, workload, action, image_tag=image_tag, commit_hash=commit_hash
    )
    async with _logger.operation(
        "container.deploy",
        "Deploying workload as standalone container",
        workload=workload.name,
        image=image_tag,
        deployment_id=deployment.id,
    ) as op:
        try:
            await deployment_service.advance(session, deployment, DeploymentStatus.RUNNING)
            host = await session.get(Host, workload.host_id)
            if host is None:
                raise LookupError(f"host {workload.host_id} not found")

            network = application_network_name()
            await ensure_network_exists(engine, host, network)
            op.step("network.ensure", "Application network ready", network=network)

            await _prepare_image(engine, host, workload, image_tag)
            op.step("image.ready", "Image available on host", image=image_tag)

            existing = await engine.inspect_container(host, workload.name)
            if existing is not None:
                if existing.state == "running":
                    await engine.stop_container(host, workload.name)
                await engine.remove_container(host, workload.name)
                op.step("container.replace", "Removed previous container", container_id=existing.id)

            spec = ContainerSpec(
                name=workload.name,
                image=image_tag,
                network=network,
                ports=_published_ports(workload),
                env=await plain_environment(session, workload.id),
                labels=container_labels(workload),
                volumes=[f"{volume.name}:{volume.mount_path}" for volume in workload.volumes],
            )
            container_id = await engine.create_container(host, spec)
            await engine.start_container(host, workload.name)
            op.step("container.start", "Container started", container_id=container_id)

            deployment.container_id = container_id
            workload.container_id = container_id
            workload.current_image = image_tag
            await deployment_service.advance(session, deployment, DeploymentStatus.SUCCESS)
            return DeploymentResult(
                success=True,
                message="Container deployed",
                deployment_id=deployment.id,
                container_id=container_id,
            )
        except asyncio.CancelledError:
            await deployment_service.cancel_deployment(session, deployment)
            raise
        except Exception as exc:  # noqa: BLE001
            op.step_warning("deploy.fail", "Container deployment failed", error=describe_error(exc))
            return await deployment_service.fail_deployment(session, deployment, describe_error(exc))


async def restart_container(
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
            host = await session.get(Host, workload.host_id)
            if host is None:
                raise LookupError(f"host {workload.host_id} not found")
            existing = await engine.inspect_container(host, workload.name)
            if existing is None:
                return await deployment_service.fail_deployment(
                    session, deployment, f"container {workload.name} does not exist"
                )
            if existing.state == "running":
                await engine.stop_container(host, workload.name)
            await engine.start_container(host, workload.name)
            deployment.container_id = existing.id
            await deployment_service.advance(session, deployment, DeploymentStatus.SUCCESS)
            _logger.info("container.restart", "Restarted container", workload=workload.name)
            return DeploymentResult(
                success=True,
                message="Container restarted",
                deployment_id=deployment.id,
                container_id=existing.id,
            )
        except asyncio.CancelledError:
            await deployment_service.cancel_deployment(session, deployment)
            raise
        except Exception as exc:  # noqa: BLE001
            return await deployment_service.fail_deployment(session, deployment, describe_error(exc))


async def rollback_container(
    session: AsyncSession,
    workload: Workload,
    *,
    engine: ContainerEngine,
) -> DeploymentResult:
    """Redeploy the last successfully deployed image that differs from the current one."""
    async with workload_lease(session, workload, "rollback"):
        previous = await deployment_service.previous_successful_image(session, workload)
        if previous is None:
            deployment = await deployment_service.create_deployment(
                session, workload, DeploymentAction.ROLLBACK
            )
            await deployment_service.advance(session, deployment, DeploymentStatus.RUNNING)
            return await deployment_service.fail_deployment(
                session, deployment, f"no previous image recorded for {workload.name}"
            )
        return await _deploy_container_locked(
            session, workload, previous, engine=engine, action=DeploymentAction.ROLLBACK
        )


async def remove_container(
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
            host = await session.get(Host, workload.host_id)
            if host is None:
                raise LookupError(f"host {workload.host_id} not found")
            note: Optional[str] = None
            if await engine.inspect_container(host, workload.name) is None:
                note = "container was already absent"
            else:
                await engine.remove_container(host, workload.name)
            deployment.container_id = workload.container_id
            workload.container_id = None
            workload.current_image = None
            await deployment_service.advance(
                session, deployment, DeploymentStatus.SUCCESS, note=note
            )
            return DeploymentResult(
                success=True,
                message="Container removed",
                deployment_id=deployment.id,
                container_id=deployment.container_id,
            )
        except asyncio.CancelledError:
            await deployment_service.cancel_deployment(session, deployment)
            raise
        except Exception as exc:  # noqa: BLE001
            return await deployment_service.fail_deployment(session, deployment, describe_error(exc))
