from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from hostcraft.logger import get_logger, mask_fields
from hostcraft.models.event import Event

_logger = get_logger("services.events")


async def list_events(
    session: AsyncSession,
    limit: int = 200,
    category: Optional[str] = None,
    workload_id: Optional[str] = None,
) -> List[Event]:
    query = select(Event).order_by(Event.created_at.desc())
    if category:
        query = query.where(Event.category == category)
    if workload_id:
        query = query.where(Event.workload_id == workload_id)
    result = await session.execute(query.limit(limit))
    return list(result.scalars().all())


async def record_event(
    session: AsyncSession,
    category: str,
    name: str,
    level: str = "INFO",
    fields: Optional[Dict[str, Any]] = None,
    *,
    workload_id: Optional[str] = None,
    event_id: Optional[str] = None,
) -> Event:
    event = Event(
        id=event_id or str(uuid4()),
        category=category,
        name=name,
        level=level,
        workload_id=workload_id,
        fields=mask_fields(fields or {}),
    )
    session.add(event)
    _logger.debug(
        "events.record",
        "Recorded event",
        event_id=event.id,
        category=category,
        name=name,
        level=level,
    )
    return event


async def prune_old_events(
    session: AsyncSession,
    *,
    retention_days: int,
    batch_size: int = 5000,
) -> int:
    if retention_days <= 0:
        return 0
    cutoff = datetime.now(timezone.utc) - timedelta(days=retention_days)
    capped_batch = max(100, min(batch_size, 100000))

    total_deleted = 0
    while True:
        id_rows = await session.execute(
            select(Event.id).where(Event.created_at < cutoff).limit(capped_batch)
        )
        ids = [str(row[0]) for row in id_rows.all()]
        if not ids:
            break
        await session.execute(
            delete(Event).where(Event.id.in_(ids)).execution_options(synchronize_session=False)
        )
        await session.commit()
        total_deleted += len(ids)
        if len(ids) < capped_batch:
            break

    if total_deleted:
        _logger.info(
            "events.prune",
            "Pruned old events by retention policy",
            retention_days=retention_days,
            deleted=total_deleted,
        )
    return total_deleted
