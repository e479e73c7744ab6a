from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hostcraft.enums import HostRole, HostStatus
from hostcraft.logger import get_logger
from hostcraft.models.host import Host
from hostcraft.schemas.hosts import HostCreate, HostUpdate
from hostcraft.services.deployments import describe_error
from hostcraft.services.engine import ContainerEngine, SystemInfo
from hostcraft.services.events import record_event

_logger = get_logger("services.hosts")


async def list_hosts(session: AsyncSession, limit: int = 100) -> List[Host]:
    result = await session.execute(select(Host).order_by(Host.name).limit(limit))
    return list(result.scalars().all())


async def get_host(session: AsyncSession, host_id: str) -> Optional[Host]:
    return await session.get(Host, host_id)


async def get_host_by_name(session: AsyncSession, name: str) -> Optional[Host]:
    result = await session.execute(select(Host).where(Host.name == name))
    return result.scalar_one_or_none()


async def create_host(session: AsyncSession, payload: HostCreate) -> Host:
    host = Host(
        id=str(uuid4()),
        name=payload.name,
        address=payload.address,
        port=payload.port,
        username=payload.username,
        private_key_id=payload.private_key_id,
        role=payload.role.value,
        status=HostStatus.VALIDATING.value,
    )
    session.add(host)
    await record_event(
        session,
        category="hosts",
        name="host.create",
        fields={"host_id": host.id, "name": host.name, "role": host.role},
    )
    await session.commit()
    await session.refresh(host)
    _logger.info("hosts.create", "Created host", host_id=host.id, name=host.name, role=host.role)
    return host


async def update_host(session: AsyncSession, host: Host, payload: HostUpdate) -> Host:
    data = payload.model_dump(exclude_none=True)
    if "role" in data:
        data["role"] = HostRole(data["role"]).value
    for key, value in data.items():
        setattr(host, key, value)
    await record_event(
        session,
        category="hosts",
        name="host.update",
        fields={"host_id": host.id, "changed": ",".join(sorted(data))},
    )
    await session.commit()
    await session.refresh(host)
    return host


async def delete_host(session: AsyncSession, host: Host) -> None:
    await record_event(
        session, category="hosts", name="host.delete", fields={"host_id": host.id, "name": host.name}
    )
    await session.delete(host)
    await session.commit()


def detect_role(info: SystemInfo) -> HostRole:
    if info.swarm_state.lower() != "active":
        return HostRole.STANDALONE
    return HostRole.SWARM_MANAGER if info.is_manager else HostRole.SWARM_WORKER


async def validate_host(session: AsyncSession, host: Host, *, engine: ContainerEngine) -> Host:
    async with _logger.operation(
        "host.validate", "Validating host", host=host.name, address=host.address
    ) as op:
        host.status = HostStatus.VALIDATING.value
        await session.commit()
        now = datetime.now(timezone.utc)
        try:
            if not await engine.validate_connection(host):
                raise RuntimeError("container engine did not respond on host")
            op.step("engine.connect", "Engine reachable")
            info = await engine.system_info(host)
        except Exception as exc:  # noqa: BLE001
            error = describe_error(exc)
            host.status = HostStatus.ERROR.value
            host.error = error[:1024]
            host.last_failure_at = now
            host.consecutive_failures = (host.consecutive_failures or 0) + 1
            op.step_warning("host.error", "Host validation failed", error=error)
        else:
            detected = detect_role(info)
            if detected.value != host.role:
                op.step_warning(
                    "role.detect",
                    "Configured role differs from engine state; using detected role",
                    configured=host.role,
                    detected=detected.value,
                )
            host.role = detected.value
            host.status = HostStatus.ONLINE.value
            host.engine_version = info.server_version or None
            host.error = None
            host.consecutive_failures = 0
            op.step("host.online", "Host online", engine_version=info.server_version, role=host.role)
        host.last_checked_at = now
        await record_event(
            session,
            category="hosts",
            name="host.validate",
            level="INFO" if host.status == HostStatus.ONLINE.value else "ERROR",
            fields={"host_id": host.id, "status": host.status, "error": host.error or ""},
        )
        await session.commit()
        await session.refresh(host)
        return host
