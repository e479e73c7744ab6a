from __future__ import annotations

from typing import List, Optional
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hostcraft.config import get_settings
from hostcraft.logger import get_logger
from hostcraft.models.workload import Volume, Workload
from hostcraft.schemas.workloads import VolumeCreate, WorkloadCreate
from hostcraft.services.events import record_event

_logger = get_logger("services.workloads")


async def list_workloads(
    session: AsyncSession, *, host_id: Optional[str] = None, limit: int = 100
) -> List[Workload]:
    stmt = select(Workload).order_by(Workload.name).limit(limit)
    if host_id is not None:
        stmt = stmt.where(Workload.host_id == host_id)
    return list((await session.execute(stmt)).scalars().all())


async def get_workload(session: AsyncSession, workload_id: str) -> Optional[Workload]:
    return await session.get(Workload, workload_id)


async def get_workload_by_name(session: AsyncSession, name: str) -> Optional[Workload]:
    result = await session.execute(select(Workload).where(Workload.name == name))
    return result.scalar_one_or_none()


async def create_workload(session: AsyncSession, payload: WorkloadCreate) -> Workload:
    settings = get_settings()
    async with _logger.operation(
        "workload.create", "Creating workload", workload=payload.name, host_id=payload.host_id
    ) as op:
        workload = Workload(
            id=str(uuid4()),
            name=payload.name,
            project_name=payload.project_name,
            host_id=payload.host_id,
            source_type=payload.source_type.value,
            image=payload.image,
            compose_file=payload.compose_file,
            repository_url=payload.repository_url,
            repository_branch=payload.repository_branch,
            dockerfile=payload.dockerfile,
            build_context=payload.build_context,
            domain=payload.domain,
            port=payload.port,
            enable_https=payload.enable_https,
            replicas=payload.replicas,
            deployment_mode=payload.deployment_mode.value,
            swarm_networks=list(payload.swarm_networks),
            health_check_url=payload.health_check_url,
            health_check_interval_seconds=(
                payload.health_check_interval_seconds or settings.health_default_interval_seconds
            ),
            health_check_timeout_seconds=(
                payload.health_check_timeout_seconds or settings.health_default_timeout_seconds
            ),
            max_consecutive_failures=(
                payload.max_consecutive_failures or settings.health_max_consecutive_failures
            ),
            auto_restart=payload.auto_restart,
            auto_rollback=payload.auto_rollback,
            backup_schedule=payload.backup_schedule,
            backup_retention_days=(
                payload.backup_retention_days
                if payload.backup_retention_days is not None
                else settings.backup_retention_days
            ),
            volumes=[
                Volume(id=str(uuid4()), name=item.name, mount_path=item.mount_path)
                for item in payload.volumes
            ],
        )
        session.add(workload)
        op.step("db.insert", "Prepared workload row", volumes=len(payload.volumes))
        await record_event(
            session,
            category="workloads",
            name="workload.create",
            fields={"name": workload.name, "mode": workload.deployment_mode},
            workload_id=workload.id,
        )
        await session.commit()
        await session.refresh(workload)
        return workload


async def delete_workload(session: AsyncSession, workload: Workload) -> None:
    await record_event(
        session,
        category="workloads",
        name="workload.delete",
        fields={"name": workload.name},
    )
    await session.delete(workload)
    await session.commit()


async def add_volume(session: AsyncSession, workload: Workload, payload: VolumeCreate) -> Volume:
    volume = Volume(
        id=str(uuid4()),
        workload_id=workload.id,
        name=payload.name,
        mount_path=payload.mount_path,
    )
    workload.volumes.append(volume)
    await record_event(
        session,
        category="workloads",
        name="volume.add",
        fields={"volume": payload.name, "mount_path": payload.mount_path},
        workload_id=workload.id,
    )
    await session.commit()
    await session.refresh(volume)
    return volume


async def remove_volume(session: AsyncSession, workload: Workload, name: str) -> bool:
    for volume in list(workload.volumes):
        if volume.name == name:
            workload.volumes.remove(volume)
            await record_event(
                session,
                category="workloads",
                name="volume.remove",
                fields={"volume": name},
                workload_id=workload.id,
            )
            await session.commit()
            return True
    return False
