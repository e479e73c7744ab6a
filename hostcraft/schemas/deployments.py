from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class DeployRequest(BaseModel):
    image_tag: Optional[str] = None
    commit_hash: Optional[str] = None


class ScaleRequest(BaseModel):
    replicas: int = Field(ge=0)


class DeploymentResultOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    success: bool
    message: str
    deployment_id: Optional[str] = None
    service_id: Optional[str] = None
    container_id: Optional[str] = None
    error: Optional[str] = None


class DeploymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    workload_id: str
    action: str
    status: str
    commit_hash: Optional[str]
    image_tag: Optional[str]
    replicas: Optional[int]
    container_id: Optional[str]
    service_id: Optional[str]
    error: Optional[str]
    note: Optional[str]
    started_at: Optional[datetime]
    finished_at: Optional[datetime]
    created_at: datetime


class ServiceHealthOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    desired_replicas: int
    running_replicas: int
    failed_tasks: int
    status: str
