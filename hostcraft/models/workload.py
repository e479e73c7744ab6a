from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import JSON, DateTime, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hostcraft.enums import DeploymentMode, HealthStatus, SourceType
from hostcraft.models.base import Base, TimestampMixin


class Workload(TimestampMixin, Base):
    __tablename__ = "workloads"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(128), unique=True, index=True)
    project_name: Mapped[str] = mapped_column(String(128), default="default")
    host_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("hosts.id", ondelete="CASCADE"), index=True
    )

    source_type: Mapped[str] = mapped_column(String(32), default=SourceType.IMAGE.value)
    image: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    compose_file: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    repository_url: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    repository_branch: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    dockerfile: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    build_context: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    domain: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    port: Mapped[Optional[int]] = mapped_column(nullable=True)
    enable_https: Mapped[bool] = mapped_column(default=False)

    replicas: Mapped[int] = mapped_column(default=1)
    swarm_replicas: Mapped[Optional[int]] = mapped_column(nullable=True)
    deployment_mode: Mapped[str] = mapped_column(
        String(32), default=DeploymentMode.CONTAINER.value
    )
    swarm_networks: Mapped[List[str]] = mapped_column(JSON, default=list)

    health_check_url: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    health_check_interval_seconds: Mapped[int] = mapped_column(default=60)
    health_check_timeout_seconds: Mapped[int] = mapped_column(default=10)
    max_consecutive_failures: Mapped[int] = mapped_column(default=3)
    consecutive_failures: Mapped[int] = mapped_column(default=0)
    health_status: Mapped[str] = mapped_column(String(32), default=HealthStatus.UNKNOWN.value)
    last_health_check_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    auto_restart: Mapped[bool] = mapped_column(default=True)
    auto_rollback: Mapped[bool] = mapped_column(default=True)

    backup_schedule: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    backup_retention_days: Mapped[int] = mapped_column(default=30)

    swarm_service_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    container_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    current_image: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    lease_owner: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    lease_expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    volumes: Mapped[List["Volume"]] = relationship(
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="Volume.name",
    )
    environment: Mapped[List["EnvironmentVariable"]] = relationship(
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="EnvironmentVariable.key",
    )

    @property
    def desired_replicas(self) -> int:
        if self.swarm_replicas is not None:
            return self.swarm_replicas
        return self.replicas

    @property
    def service_name(self) -> str:
        return self.name


class Volume(TimestampMixin, Base):
    __tablename__ = "volumes"
    __table_args__ = (UniqueConstraint("workload_id", "name", name="uq_volumes_workload_name"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    workload_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("workloads.id", ondelete="CASCADE"), index=True
    )
    name: Mapped[str] = mapped_column(String(128))
    mount_path: Mapped[str] = mapped_column(String(512))


class EnvironmentVariable(TimestampMixin, Base):
    __tablename__ = "environment_variables"
    __table_args__ = (UniqueConstraint("workload_id", "key", name="uq_env_workload_key"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    workload_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("workloads.id", ondelete="CASCADE"), index=True
    )
    key: Mapped[str] = mapped_column(String(255))
    # Secret values are stored as vault ciphertext.
    value: Mapped[str] = mapped_column(Text, default="")
    is_secret: Mapped[bool] = mapped_column(default=False)
