from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class HealthCheckOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    workload_id: Optional[str]
    host_id: Optional[str]
    status: str
    probe: str
    response_time_ms: Optional[int]
    status_code: Optional[int]
    error: Optional[str]
    checked_at: datetime


class RecoveryResultOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    attempted: bool
    success: bool
    message: str
    action: Optional[str] = None
    deployment_id: Optional[str] = None


class MonitorOutcomeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    target_id: str
    status: str
    health_check_id: Optional[str] = None
    recovery: Optional[RecoveryResultOut] = None
    error: Optional[str] = None


class UptimeOut(BaseModel):
    workload_id: str
    period_hours: int
    # None when there are no samples in the window.
    uptime_percentage: Optional[float]
