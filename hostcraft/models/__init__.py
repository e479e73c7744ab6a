from hostcraft.models.backup import Backup
from hostcraft.models.base import Base
from hostcraft.models.deployment import Deployment
from hostcraft.models.event import Event
from hostcraft.models.health_check import HealthCheck
from hostcraft.models.host import Host
from hostcraft.models.private_key import PrivateKey
from hostcraft.models.workload import EnvironmentVariable, Volume, Workload

__all__ = [
    "Backup",
    "Base",
    "Deployment",
    "EnvironmentVariable",
    "Event",
    "HealthCheck",
    "Host",
    "PrivateKey",
    "Volume",
    "Workload",
]
