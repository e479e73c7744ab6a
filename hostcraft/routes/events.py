from __future__ import annotations

from typing import Dict, List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from hostcraft.config import get_settings
from hostcraft.dependencies import get_db_session
from hostcraft.schemas.events import EventOut
from hostcraft.services import events as event_service

router = APIRouter(prefix="/events", tags=["events"])


@router.get("", response_model=List[EventOut])
async def list_events(
    limit: int = 200,
    category: Optional[str] = None,
    workload_id: Optional[str] = None,
    session: AsyncSession = Depends(get_db_session),
) -> List[EventOut]:
    bounded_limit = max(1, min(limit, 1000))
    events = await event_service.list_events(
        session, limit=bounded_limit, category=category, workload_id=workload_id
    )
    return [EventOut.model_validate(event) for event in events]


@router.post("/prune")
async def prune_events(
    retention_days: Optional[int] = None,
    session: AsyncSession = Depends(get_db_session),
) -> Dict[str, int]:
    days = retention_days if retention_days is not None else get_settings().event_retention_days
    deleted = await event_service.prune_old_events(session, retention_days=days)
    return {"deleted": deleted}
