from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Optional
from uuid import uuid4

from sqlalchemy import or_, update
from sqlalchemy.ext.asyncio import AsyncSession

from hostcraft.config import get_settings
from hostcraft.logger import get_logger
from hostcraft.models.workload import Workload

_logger = get_logger("services.leases")


class WorkloadBusyError(RuntimeError):
    def __init__(self, workload_id: str, operation: str) -> None:
        super().__init__(f"workload {workload_id} is busy; {operation} rejected")
        self.workload_id = workload_id
        self.operation = operation


async def try_acquire(
    session: AsyncSession,
    workload_id: str,
    owner: str,
    *,
    ttl_seconds: Optional[int] = None,
) -> bool:
    ttl = ttl_seconds or get_settings().workload_lease_ttl_seconds
    now = datetime.now(timezone.utc)
    result = await session.execute(
        update(Workload)
        .where(
            Workload.id == workload_id,
            or_(
                Workload.lease_owner.is_(None),
                Workload.lease_owner == owner,
                Workload.lease_expires_at.is_(None),
                Workload.lease_expires_at < now,
            ),
        )
        .values(lease_owner=owner, lease_expires_at=now + timedelta(seconds=ttl))
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    return (result.rowcount or 0) == 1


async def release(session: AsyncSession, workload_id: str, owner: str) -> None:
    await session.execute(
        update(Workload)
        .where(Workload.id == workload_id, Workload.lease_owner == owner)
        .values(lease_owner=None, lease_expires_at=None)
        .execution_options(synchronize_session=False)
    )
    await session.commit()


@asynccontextmanager
async def workload_lease(
    session: AsyncSession,
    workload: Workload,
    operation: str,
    *,
    ttl_seconds: Optional[int] = None,
) -> AsyncIterator[str]:
    owner = f"{operation}:{uuid4().hex[:12]}"
    if not await try_acquire(session, workload.id, owner, ttl_seconds=ttl_seconds):
        _logger.warning(
            "lease.busy",
            "Workload lease held by another operation",
            workload_id=workload.id,
            operation=operation,
        )
        raise WorkloadBusyError(workload.id, operation)
    _logger.debug("lease.acquire", "Acquired workload lease", workload_id=workload.id, owner=owner)
    try:
        yield owner
    finally:
        await release(session, workload.id, owner)
        _logger.debug("lease.release", "Released workload lease", workload_id=workload.id, owner=owner)
