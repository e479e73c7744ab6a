from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from hostcraft.enums import HostRole


class PrivateKeyCreate(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    key_data: str = Field(min_length=1)
    passphrase: Optional[str] = None


class PrivateKeyOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    created_at: datetime


class HostCreate(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    address: str = Field(min_length=1)
    port: int = Field(default=22, ge=1, le=65535)
    username: str = "root"
    private_key_id: Optional[str] = None
    role: HostRole = HostRole.STANDALONE


class HostUpdate(BaseModel):
    address: Optional[str] = None
    port: Optional[int] = Field(default=None, ge=1, le=65535)
    username: Optional[str] = None
    private_key_id: Optional[str] = None
    role: Optional[HostRole] = None


class HostOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    address: str
    port: int
    username: str
    private_key_id: Optional[str]
    role: str
    status: str
    consecutive_failures: int
    last_failure_at: Optional[datetime]
    last_checked_at: Optional[datetime]
    engine_version: Optional[str]
    error: Optional[str]
    created_at: datetime
    updated_at: datetime
