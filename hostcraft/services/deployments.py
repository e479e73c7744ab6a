from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, FrozenSet, List, Optional
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hostcraft.enums import DeploymentAction, DeploymentStatus
from hostcraft.logger import get_logger
from hostcraft.metrics import record_deployment
from hostcraft.models.deployment import Deployment
from hostcraft.models.workload import Workload
from hostcraft.services.engine import EngineOperationError
from hostcraft.services.events import record_event
from hostcraft.services.remote import RemoteConnectionError

_logger = get_logger("services.deployments")

ALLOWED_TRANSITIONS: Dict[DeploymentStatus, FrozenSet[DeploymentStatus]] = {
    DeploymentStatus.QUEUED: frozenset(
        {DeploymentStatus.RUNNING, DeploymentStatus.FAILED, DeploymentStatus.CANCELLED}
    ),
    DeploymentStatus.RUNNING: frozenset(
        {
            DeploymentStatus.SUCCESS,
            DeploymentStatus.FAILED,
            DeploymentStatus.CANCELLED,
            DeploymentStatus.ROLLING_BACK,
        }
    ),
    DeploymentStatus.ROLLING_BACK: frozenset({DeploymentStatus.SUCCESS, DeploymentStatus.FAILED}),
}

TERMINAL_STATUSES = frozenset(
    {DeploymentStatus.SUCCESS, DeploymentStatus.FAILED, DeploymentStatus.CANCELLED}
)


class InvalidStateTransition(RuntimeError):
    def __init__(self, current: str, requested: str, *, record: str = "deployment") -> None:
        super().__init__(f"cannot transition {record} from {current} to {requested}")
        self.record = record
        self.current = current
        self.requested = requested


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def transition(
    deployment: Deployment,
    new_status: DeploymentStatus,
    *,
    error: Optional[str] = None,
    note: Optional[str] = None,
) -> Deployment:
    current = DeploymentStatus(deployment.status)
    if new_status not in ALLOWED_TRANSITIONS.get(current, frozenset()):
        raise InvalidStateTransition(current.value, new_status.value)

    deployment.status = new_status.value
    now = _utcnow()
    if new_status is DeploymentStatus.RUNNING:
        deployment.started_at = now
    if new_status in TERMINAL_STATUSES:
        deployment.finished_at = now
        record_deployment(action=deployment.action, status=new_status.value)
    if error is not None:
        deployment.error = error
    if note is not None:
        deployment.note = note
    return deployment


async def create_deployment(
    session: AsyncSession,
    workload: Workload,
    action: DeploymentAction,
    *,
    image_tag: Optional[str] = None,
    replicas: Optional[int] = None,
    commit_hash: Optional[str] = None,
) -> Deployment:
    deployment = Deployment(
        id=str(uuid4()),
        workload_id=workload.id,
        action=action.value,
        status=DeploymentStatus.QUEUED.value,
        image_tag=image_tag,
        replicas=replicas,
        commit_hash=commit_hash,
        created_at=_utcnow(),
    )
    session.add(deployment)
    await record_event(
        session,
        category="deployments",
        name=f"{action.value}.queued",
        fields={"deployment_id": deployment.id, "image_tag": image_tag or ""},
        workload_id=workload.id,
    )
    await session.commit()
    await session.refresh(deployment)
    return deployment


async def advance(
    session: AsyncSession,
    deployment: Deployment,
    new_status: DeploymentStatus,
    *,
    error: Optional[str] = None,
    note: Optional[str] = None,
) -> Deployment:
    previous = deployment.status
    transition(deployment, new_status, error=error, note=note)
    _logger.info(
        "deployment.transition",
        "Deployment status changed",
        deployment_id=deployment.id,
        action=deployment.action,
        previous=previous,
        status=deployment.status,
    )
    level = "ERROR" if new_status is DeploymentStatus.FAILED else "INFO"
    fields: Dict[str, object] = {"deployment_id": deployment.id, "status": deployment.status}
    if error:
        fields["error"] = error
    await record_event(
        session,
        category="deployments",
        name=f"{deployment.action}.{new_status.value}",
        level=level,
        fields=fields,
        workload_id=deployment.workload_id,
    )
    await session.commit()
    await session.refresh(deployment)
    return deployment


async def list_deployments(
    session: AsyncSession, workload_id: str, limit: int = 50
) -> List[Deployment]:
    result = await session.execute(
        select(Deployment)
        .where(Deployment.workload_id == workload_id)
        .order_by(Deployment.created_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def get_deployment(session: AsyncSession, deployment_id: str) -> Optional[Deployment]:
    return await session.get(Deployment, deployment_id)


async def previous_successful_image(session: AsyncSession, workload: Workload) -> Optional[str]:
    """Image of the last successful deploy that differs from what is running now."""
    result = await session.execute(
        select(Deployment)
        .where(
            Deployment.workload_id == workload.id,
            Deployment.status == DeploymentStatus.SUCCESS.value,
            Deployment.action.in_(
                [DeploymentAction.DEPLOY.value, DeploymentAction.UPDATE.value]
            ),
            Deployment.image_tag.is_not(None),
        )
        .order_by(Deployment.finished_at.desc())
    )
    for row in result.scalars().all():
        if row.image_tag and row.image_tag != workload.current_image:
            return row.image_tag
    return None


@dataclass(frozen=True)
class DeploymentResult:
    success: bool
    message: str
    deployment_id: Optional[str] = None
    service_id: Optional[str] = None
    container_id: Optional[str] = None
    error: Optional[str] = None


def describe_error(exc: BaseException) -> str:
    if isinstance(exc, EngineOperationError):
        # Remote stderr, verbatim.
        return exc.detail
    if isinstance(exc, RemoteConnectionError):
        return f"connection to {exc.target} failed: {exc.detail}"
    text = str(exc)
    return f"{type(exc).__name__}: {text}" if text else type(exc).__name__


async def fail_deployment(
    session: AsyncSession,
    deployment: Deployment,
    error: str,
    *,
    note: Optional[str] = None,
) -> DeploymentResult:
    if DeploymentStatus(deployment.status) not in TERMINAL_STATUSES:
        await advance(session, deployment, DeploymentStatus.FAILED, error=error, note=note)
    return DeploymentResult(
        success=False,
        message=f"{deployment.action} failed",
        deployment_id=deployment.id,
        service_id=deployment.service_id,
        container_id=deployment.container_id,
        error=error,
    )


async def cancel_deployment(session: AsyncSession, deployment: Deployment) -> None:
    status = DeploymentStatus(deployment.status)
    if status in TERMINAL_STATUSES:
        return
    if status is DeploymentStatus.ROLLING_BACK:
        await advance(
            session,
            deployment,
            DeploymentStatus.FAILED,
            error="cancelled while rolling back; remote state may be partially reverted",
        )
        return
    await advance(
        session,
        deployment,
        DeploymentStatus.CANCELLED,
        note="cancelled by caller; remote changes already accepted are not undone",
    )
