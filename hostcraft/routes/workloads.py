from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from hostcraft.dependencies import get_db_session
from hostcraft.models.workload import Workload
from hostcraft.schemas.workloads import (
    EnvVarOut,
    EnvVarSet,
    VolumeCreate,
    VolumeOut,
    WorkloadCreate,
    WorkloadOut,
)
from hostcraft.services import hosts as host_service
from hostcraft.services import secrets as secret_service
from hostcraft.services import workloads as workload_service

router = APIRouter(prefix="/workloads", tags=["workloads"])


async def require_workload(session: AsyncSession, workload_id: str) -> Workload:
    workload = await workload_service.get_workload(session, workload_id)
    if workload is None:
        raise HTTPException(status_code=404, detail="Workload not found")
    return workload


@router.get("", response_model=List[WorkloadOut])
async def list_workloads(
    session: AsyncSession = Depends(get_db_session),
) -> List[WorkloadOut]:
    workloads = await workload_service.list_workloads(session)
    return [WorkloadOut.model_validate(workload) for workload in workloads]


@router.post("", response_model=WorkloadOut, status_code=status.HTTP_201_CREATED)
async def create_workload(
    payload: WorkloadCreate,
    session: AsyncSession = Depends(get_db_session),
) -> WorkloadOut:
    if await host_service.get_host(session, payload.host_id) is None:
        raise HTTPException(status_code=404, detail="Host not found")
    if await workload_service.get_workload_by_name(session, payload.name):
        raise HTTPException(status_code=409, detail="Workload name already exists")
    workload = await workload_service.create_workload(session, payload)
    return WorkloadOut.model_validate(workload)


@router.get("/{workload_id}", response_model=WorkloadOut)
async def get_workload(
    workload_id: str,
    session: AsyncSession = Depends(get_db_session),
) -> WorkloadOut:
    return WorkloadOut.model_validate(await require_workload(session, workload_id))


@router.delete("/{workload_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_workload(
    workload_id: str,
    session: AsyncSession = Depends(get_db_session),
) -> None:
    workload = await require_workload(session, workload_id)
    await workload_service.delete_workload(session, workload)


@router.get("/{workload_id}/env", response_model=List[EnvVarOut])
async def list_env_vars(
    workload_id: str,
    session: AsyncSession = Depends(get_db_session),
) -> List[EnvVarOut]:
    await require_workload(session, workload_id)
    entries = await secret_service.list_env_vars(session, workload_id=workload_id)
    return [EnvVarOut.model_validate(entry) for entry in entries]


@router.put("/{workload_id}/env", response_model=EnvVarOut)
async def set_env_var(
    workload_id: str,
    payload: EnvVarSet,
    session: AsyncSession = Depends(get_db_session),
) -> EnvVarOut:
    await require_workload(session, workload_id)
    await secret_service.set_env_var(
        session,
        workload_id=workload_id,
        key=payload.key,
        value=payload.value,
        is_secret=payload.is_secret,
    )
    entries = await secret_service.list_env_vars(session, workload_id=workload_id)
    entry = next(item for item in entries if item.key == payload.key.strip())
    return EnvVarOut.model_validate(entry)


@router.delete("/{workload_id}/env/{key}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_env_var(
    workload_id: str,
    key: str,
    session: AsyncSession = Depends(get_db_session),
) -> None:
    await require_workload(session, workload_id)
    if not await secret_service.delete_env_var(session, workload_id=workload_id, key=key):
        raise HTTPException(status_code=404, detail="Environment variable not found")


@router.post(
    "/{workload_id}/volumes", response_model=VolumeOut, status_code=status.HTTP_201_CREATED
)
async def add_volume(
    workload_id: str,
    payload: VolumeCreate,
    session: AsyncSession = Depends(get_db_session),
) -> VolumeOut:
    workload = await require_workload(session, workload_id)
    if any(volume.name == payload.name for volume in workload.volumes):
        raise HTTPException(status_code=409, detail="Volume already attached")
    volume = await workload_service.add_volume(session, workload, payload)
    return VolumeOut.model_validate(volume)


@router.delete("/{workload_id}/volumes/{name}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_volume(
    workload_id: str,
    name: str,
    session: AsyncSession = Depends(get_db_session),
) -> None:
    workload = await require_workload(session, workload_id)
    if not await workload_service.remove_volume(session, workload, name):
        raise HTTPException(status_code=404, detail="Volume not found")
