from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from hostcraft.enums import BackupStatus
from hostcraft.models.base import Base, TimestampMixin


class Backup(TimestampMixin, Base):
    __tablename__ = "backups"
    __table_args__ = (Index("ix_backups_expires_at", "expires_at"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    workload_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("workloads.id", ondelete="CASCADE"), index=True
    )
    # The host the artifact lives on; restores are only valid there.
    host_id: Mapped[str] = mapped_column(String(64), ForeignKey("hosts.id", ondelete="CASCADE"))
    type: Mapped[str] = mapped_column(String(32))
    status: Mapped[str] = mapped_column(String(32), default=BackupStatus.QUEUED.value)
    storage_path: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    size_bytes: Mapped[int] = mapped_column(BigInteger, default=0)
    s3_bucket: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    s3_key: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    retention_days: Mapped[int] = mapped_column(default=30)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    note: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
