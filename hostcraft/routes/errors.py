from __future__ import annotations

from fastapi import HTTPException

from hostcraft.services.backups import BackupCommandError, BackupValidationError
from hostcraft.services.containers import UnsupportedSourceError
from hostcraft.services.deployments import InvalidStateTransition
from hostcraft.services.leases import WorkloadBusyError
from hostcraft.services.network import NetworkTypeMismatch
from hostcraft.services.orchestrator import UnsupportedTargetError
from hostcraft.services.remote import RemoteConnectionError
from hostcraft.services.swarm import SwarmRoleError
from hostcraft.services.vault import VaultError

_STATUS_BY_TYPE: tuple[tuple[type[BaseException], int], ...] = (
    (WorkloadBusyError, 409),
    (InvalidStateTransition, 409),
    (BackupValidationError, 409),
    (NetworkTypeMismatch, 409),
    (SwarmRoleError, 422),
    (UnsupportedTargetError, 422),
    (UnsupportedSourceError, 422),
    (VaultError, 422),
    (RemoteConnectionError, 502),
    (BackupCommandError, 502),
    (LookupError, 404),
    (ValueError, 422),
)


def http_error(exc: Exception) -> HTTPException:
    for exc_type, status_code in _STATUS_BY_TYPE:
        if isinstance(exc, exc_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


DOMAIN_ERRORS = tuple(exc_type for exc_type, _ in _STATUS_BY_TYPE)
