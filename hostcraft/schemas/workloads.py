from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from hostcraft.enums import DeploymentMode, SourceType


class VolumeCreate(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    mount_path: str = Field(min_length=1)


class VolumeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    mount_path: str


class EnvVarSet(BaseModel):
    key: str = Field(min_length=1, max_length=255)
    value: str
    is_secret: bool = False


class EnvVarOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    key: str
    value: str
    is_secret: bool


class WorkloadCreate(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    project_name: str = "default"
    host_id: str
    source_type: SourceType = SourceType.IMAGE
    image: Optional[str] = None
    compose_file: Optional[str] = None
    repository_url: Optional[str] = None
    repository_branch: Optional[str] = None
    dockerfile: Optional[str] = None
    build_context: Optional[str] = None
    domain: Optional[str] = None
    port: Optional[int] = Field(default=None, ge=1, le=65535)
    enable_https: bool = False
    replicas: int = Field(default=1, ge=0)
    deployment_mode: DeploymentMode = DeploymentMode.CONTAINER
    swarm_networks: List[str] = Field(default_factory=list)
    health_check_url: Optional[str] = None
    health_check_interval_seconds: Optional[int] = Field(default=None, ge=1)
    health_check_timeout_seconds: Optional[int] = Field(default=None, ge=1)
    max_consecutive_failures: Optional[int] = Field(default=None, ge=1)
    auto_restart: bool = True
    auto_rollback: bool = True
    backup_schedule: Optional[str] = None
    backup_retention_days: Optional[int] = Field(default=None, ge=0)
    volumes: List[VolumeCreate] = Field(default_factory=list)


class WorkloadOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    project_name: str
    host_id: str
    source_type: str
    image: Optional[str]
    domain: Optional[str]
    port: Optional[int]
    enable_https: bool
    replicas: int
    swarm_replicas: Optional[int]
    deployment_mode: str
    swarm_networks: List[str]
    health_check_url: Optional[str]
    health_check_interval_seconds: int
    health_check_timeout_seconds: int
    max_consecutive_failures: int
    consecutive_failures: int
    health_status: str
    last_health_check_at: Optional[datetime]
    auto_restart: bool
    auto_rollback: bool
    backup_schedule: Optional[str]
    backup_retention_days: int
    swarm_service_id: Optional[str]
    container_id: Optional[str]
    current_image: Optional[str]
    volumes: List[VolumeOut] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
