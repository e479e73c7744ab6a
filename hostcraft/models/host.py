from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hostcraft.enums import HostRole, HostStatus
from hostcraft.models.base import Base, TimestampMixin
from hostcraft.models.private_key import PrivateKey


class Host(TimestampMixin, Base):
    __tablename__ = "hosts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(128), unique=True, index=True)
    address: Mapped[str] = mapped_column(String(255))
    port: Mapped[int] = mapped_column(default=22)
    username: Mapped[str] = mapped_column(String(64), default="root")
    private_key_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        ForeignKey("private_keys.id", ondelete="SET NULL"),
        nullable=True,
    )
    role: Mapped[str] = mapped_column(String(32), default=HostRole.STANDALONE.value)
    status: Mapped[str] = mapped_column(String(32), default=HostStatus.VALIDATING.value)
    consecutive_failures: Mapped[int] = mapped_column(default=0)
    last_failure_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_checked_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    engine_version: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    error: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)

    private_key: Mapped[Optional[PrivateKey]] = relationship(lazy="selectin")

    @property
    def host_role(self) -> HostRole:
        return HostRole(self.role)
