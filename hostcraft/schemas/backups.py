from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from hostcraft.enums import BackupType


class BackupRequest(BaseModel):
    type: BackupType = BackupType.FULL


class RestoreRequest(BaseModel):
    target_host_id: Optional[str] = None


class BackupOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    workload_id: str
    host_id: str
    type: str
    status: str
    storage_path: Optional[str]
    size_bytes: int
    s3_bucket: Optional[str]
    s3_key: Optional[str]
    retention_days: int
    expires_at: Optional[datetime]
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    error: Optional[str]
    note: Optional[str]
    created_at: datetime


class RestoreResultOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    success: bool
    message: str
    backup_id: str
    restored_volumes: List[str] = Field(default_factory=list)
    error: Optional[str] = None


class PruneResultOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    pruned: int
    failed: int
    errors: List[str] = Field(default_factory=list)
