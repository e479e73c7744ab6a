from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from hostcraft.dependencies import get_container_engine, get_db_session
from hostcraft.models.host import Host
from hostcraft.schemas.health import HealthCheckOut
from hostcraft.schemas.hosts import HostCreate, HostOut, HostUpdate
from hostcraft.services import health as health_service
from hostcraft.services import hosts as host_service
from hostcraft.services.engine import ContainerEngine

router = APIRouter(prefix="/hosts", tags=["hosts"])


async def _require_host(session: AsyncSession, host_id: str) -> Host:
    host = await host_service.get_host(session, host_id)
    if host is None:
        raise HTTPException(status_code=404, detail="Host not found")
    return host


@router.get("", response_model=List[HostOut])
async def list_hosts(
    session: AsyncSession = Depends(get_db_session),
) -> List[HostOut]:
    hosts = await host_service.list_hosts(session)
    return [HostOut.model_validate(host) for host in hosts]


@router.post("", response_model=HostOut, status_code=status.HTTP_201_CREATED)
async def create_host(
    payload: HostCreate,
    session: AsyncSession = Depends(get_db_session),
) -> HostOut:
    if await host_service.get_host_by_name(session, payload.name):
        raise HTTPException(status_code=409, detail="Host name already exists")
    host = await host_service.create_host(session, payload)
    return HostOut.model_validate(host)


@router.get("/{host_id}", response_model=HostOut)
async def get_host(
    host_id: str,
    session: AsyncSession = Depends(get_db_session),
) -> HostOut:
    return HostOut.model_validate(await _require_host(session, host_id))


@router.patch("/{host_id}", response_model=HostOut)
async def update_host(
    host_id: str,
    payload: HostUpdate,
    session: AsyncSession = Depends(get_db_session),
) -> HostOut:
    host = await _require_host(session, host_id)
    return HostOut.model_validate(await host_service.update_host(session, host, payload))


@router.delete("/{host_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_host(
    host_id: str,
    session: AsyncSession = Depends(get_db_session),
) -> None:
    host = await _require_host(session, host_id)
    await host_service.delete_host(session, host)


@router.post("/{host_id}/validate", response_model=HostOut)
async def validate_host(
    host_id: str,
    session: AsyncSession = Depends(get_db_session),
    engine: ContainerEngine = Depends(get_container_engine),
) -> HostOut:
    host = await _require_host(session, host_id)
    validated = await host_service.validate_host(session, host, engine=engine)
    return HostOut.model_validate(validated)


@router.post("/{host_id}/check", response_model=HealthCheckOut)
async def check_host(
    host_id: str,
    session: AsyncSession = Depends(get_db_session),
    engine: ContainerEngine = Depends(get_container_engine),
) -> HealthCheckOut:
    host = await _require_host(session, host_id)
    sample = await health_service.check_server_health(session, host, engine=engine)
    return HealthCheckOut.model_validate(sample)
