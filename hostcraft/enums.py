from __future__ import annotations

from enum import Enum


class HostRole(str, Enum):
    STANDALONE = "standalone"
    SWARM_MANAGER = "swarm_manager"
    SWARM_WORKER = "swarm_worker"

    @property
    def is_swarm(self) -> bool:
        return self is not HostRole.STANDALONE


class HostStatus(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    ERROR = "error"
    VALIDATING = "validating"


class NetworkType(str, Enum):
    BRIDGE = "bridge"
    OVERLAY = "overlay"
    HOST = "host"
    NONE = "none"


class SourceType(str, Enum):
    IMAGE = "image"
    COMPOSE = "compose"
    REPOSITORY = "repository"


class DeploymentMode(str, Enum):
    CONTAINER = "container"
    SERVICE = "service"


class DeploymentTarget(str, Enum):
    CONTAINER = "container"
    SERVICE = "service"


class DeploymentAction(str, Enum):
    DEPLOY = "deploy"
    UPDATE = "update"
    SCALE = "scale"
    ROLLBACK = "rollback"
    REMOVE = "remove"
    RESTART = "restart"


class DeploymentStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"
    ROLLING_BACK = "rolling_back"


class BackupType(str, Enum):
    CONFIGURATION = "configuration"
    VOLUME = "volume"
    DATABASE = "database"
    FULL = "full"


class BackupStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    UPLOADING = "uploading"
    EXPIRED = "expired"


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


class ServiceState(str, Enum):
    RUNNING = "running"
    DEGRADED = "degraded"
    DOWN = "down"
