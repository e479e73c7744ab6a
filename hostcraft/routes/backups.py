from __future__ import annotations

from typing import Dict, List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from hostcraft.dependencies import get_db_session, get_executor
from hostcraft.models.backup import Backup
from hostcraft.routes.errors import DOMAIN_ERRORS, http_error
from hostcraft.routes.workloads import require_workload
from hostcraft.schemas.backups import (
    BackupOut,
    BackupRequest,
    PruneResultOut,
    RestoreRequest,
    RestoreResultOut,
)
from hostcraft.services import backups as backup_service
from hostcraft.services.remote import RemoteExecutor

router = APIRouter(tags=["backups"])


async def _require_backup(session: AsyncSession, backup_id: str) -> Backup:
    backup = await backup_service.get_backup(session, backup_id)
    if backup is None:
        raise HTTPException(status_code=404, detail="Backup not found")
    return backup


@router.post(
    "/workloads/{workload_id}/backups",
    response_model=BackupOut,
    status_code=status.HTTP_201_CREATED,
)
async def run_backup(
    workload_id: str,
    payload: BackupRequest,
    session: AsyncSession = Depends(get_db_session),
    executor: RemoteExecutor = Depends(get_executor),
) -> BackupOut:
    workload = await require_workload(session, workload_id)
    try:
        backup = await backup_service.run_backup(session, workload, payload.type, executor=executor)
    except DOMAIN_ERRORS as exc:
        raise http_error(exc) from exc
    return BackupOut.model_validate(backup)


@router.get("/workloads/{workload_id}/backups", response_model=List[BackupOut])
async def list_backups(
    workload_id: str,
    limit: int = 100,
    session: AsyncSession = Depends(get_db_session),
) -> List[BackupOut]:
    await require_workload(session, workload_id)
    rows = await backup_service.list_backups(
        session, workload_id=workload_id, limit=max(1, min(limit, 1000))
    )
    return [BackupOut.model_validate(row) for row in rows]


@router.post("/backups/prune", response_model=PruneResultOut)
async def prune_backups(
    session: AsyncSession = Depends(get_db_session),
    executor: RemoteExecutor = Depends(get_executor),
) -> PruneResultOut:
    result = await backup_service.prune_expired_backups(session, executor=executor)
    return PruneResultOut.model_validate(result)


@router.get("/backups/{backup_id}", response_model=BackupOut)
async def get_backup(
    backup_id: str,
    session: AsyncSession = Depends(get_db_session),
) -> BackupOut:
    return BackupOut.model_validate(await _require_backup(session, backup_id))


@router.post("/backups/{backup_id}/upload", response_model=BackupOut)
async def upload_backup(
    backup_id: str,
    session: AsyncSession = Depends(get_db_session),
    executor: RemoteExecutor = Depends(get_executor),
) -> BackupOut:
    backup = await _require_backup(session, backup_id)
    try:
        updated = await backup_service.upload_to_s3(session, backup, executor=executor)
    except DOMAIN_ERRORS as exc:
        raise http_error(exc) from exc
    return BackupOut.model_validate(updated)


@router.post("/backups/{backup_id}/download")
async def download_backup(
    backup_id: str,
    session: AsyncSession = Depends(get_db_session),
    executor: RemoteExecutor = Depends(get_executor),
) -> Dict[str, str]:
    backup = await _require_backup(session, backup_id)
    try:
        path = await backup_service.download_from_s3(session, backup, executor=executor)
    except DOMAIN_ERRORS as exc:
        raise http_error(exc) from exc
    return {"backup_id": backup.id, "storage_path": path}


@router.post("/backups/{backup_id}/restore", response_model=RestoreResultOut)
async def restore_backup(
    backup_id: str,
    payload: RestoreRequest,
    session: AsyncSession = Depends(get_db_session),
    executor: RemoteExecutor = Depends(get_executor),
) -> RestoreResultOut:
    backup = await _require_backup(session, backup_id)
    try:
        result = await backup_service.restore_backup(
            session, backup, executor=executor, target_host_id=payload.target_host_id
        )
    except DOMAIN_ERRORS as exc:
        raise http_error(exc) from exc
    return RestoreResultOut.model_validate(result)


@router.delete("/backups/{backup_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_backup(
    backup_id: str,
    session: AsyncSession = Depends(get_db_session),
    executor: RemoteExecutor = Depends(get_executor),
) -> None:
    backup = await _require_backup(session, backup_id)
    try:
        await backup_service.delete_backup(session, backup, executor=executor)
    except DOMAIN_ERRORS as exc:
        raise http_error(exc) from exc
