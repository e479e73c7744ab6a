from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from hostcraft.models.base import Base, TimestampMixin


class HealthCheck(TimestampMixin, Base):
    __tablename__ = "health_checks"
    __table_args__ = (
        Index("ix_health_checks_workload_checked", "workload_id", "checked_at"),
        Index("ix_health_checks_host_checked", "host_id", "checked_at"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    workload_id: Mapped[Optional[str]] = mapped_column(
        String(64), ForeignKey("workloads.id", ondelete="CASCADE"), nullable=True
    )
    host_id: Mapped[Optional[str]] = mapped_column(
        String(64), ForeignKey("hosts.id", ondelete="CASCADE"), nullable=True
    )
    status: Mapped[str] = mapped_column(String(32))
    probe: Mapped[str] = mapped_column(String(32), default="engine")
    response_time_ms: Mapped[Optional[int]] = mapped_column(nullable=True)
    status_code: Mapped[Optional[int]] = mapped_column(nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    checked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
