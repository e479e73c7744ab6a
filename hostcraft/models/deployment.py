from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from hostcraft.enums import DeploymentAction, DeploymentStatus
from hostcraft.models.base import Base, TimestampMixin


class Deployment(TimestampMixin, Base):
    __tablename__ = "deployments"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    workload_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("workloads.id", ondelete="CASCADE"), index=True
    )
    action: Mapped[str] = mapped_column(String(32), default=DeploymentAction.DEPLOY.value)
    status: Mapped[str] = mapped_column(String(32), default=DeploymentStatus.QUEUED.value)
    commit_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    image_tag: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    replicas: Mapped[Optional[int]] = mapped_column(nullable=True)
    container_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    service_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    note: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
