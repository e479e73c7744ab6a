from __future__ import annotations

import asyncio
import json
import shlex
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, FrozenSet, List, Mapping, Optional
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hostcraft.config import get_settings
from hostcraft.enums import BackupStatus, BackupType
from hostcraft.logger import get_logger
from hostcraft.metrics import record_backup
from hostcraft.models.backup import Backup
from hostcraft.models.host import Host
from hostcraft.models.workload import Workload
from hostcraft.services.deployments import InvalidStateTransition, describe_error
from hostcraft.services.events import record_event
from hostcraft.services.leases import workload_lease
from hostcraft.services.remote import RemoteExecutor
from hostcraft.services.secrets import plain_environment
from hostcraft.services.vault import get_vault

_logger = get_logger("services.backups")

HEREDOC_MARKER = "HOSTCRAFT_BACKUP_EOF"
TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"

BACKUP_TRANSITIONS: Dict[BackupStatus, FrozenSet[BackupStatus]] = {
    BackupStatus.QUEUED: frozenset({BackupStatus.RUNNING}),
    BackupStatus.RUNNING: frozenset({BackupStatus.SUCCESS, BackupStatus.FAILED}),
    BackupStatus.SUCCESS: frozenset({BackupStatus.UPLOADING, BackupStatus.EXPIRED}),
    BackupStatus.UPLOADING: frozenset({BackupStatus.SUCCESS, BackupStatus.FAILED}),
    BackupStatus.FAILED: frozenset({BackupStatus.EXPIRED}),
}

_IN_FLIGHT = (BackupStatus.QUEUED.value, BackupStatus.RUNNING.value, BackupStatus.UPLOADING.value)


class BackupValidationError(RuntimeError):
    pass


class CrossHostRestoreUnsupported(BackupValidationError):
    def __init__(self, backup_id: str, source_host_id: str, target_host_id: str) -> None:
        super().__init__(
            f"backup {backup_id} was taken on host {source_host_id}; "
            f"restoring onto host {target_host_id} is not supported"
        )
        self.backup_id = backup_id
        self.source_host_id = source_host_id
        self.target_host_id = target_host_id


class BackupCommandError(RuntimeError):
    def __init__(self, action: str, detail: str) -> None:
        super().__init__(f"{action}: {detail}")
        self.action = action
        self.detail = detail


@dataclass(frozen=True)
class RestoreResult:
    success: bool
    message: str
    backup_id: str
    restored_volumes: List[str] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class PruneResult:
    pruned: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def backup_timestamp(moment: datetime) -> str:
    return moment.strftime(TIMESTAMP_FORMAT)


def artifact_stem(kind: str, moment: datetime, backup_id: str) -> str:
    return f"{kind}-{backup_timestamp(moment)}-{backup_id[:8]}"


def backup_directory(workload_id: str) -> str:
    return f"{get_settings().backup_root.rstrip('/')}/{workload_id}"


def restore_directory(backup_id: str) -> str:
    return f"{get_settings().restore_scratch_root.rstrip('/')}/hostcraft-restore-{backup_id}"


def s3_object_key(workload_id: str, filename: str) -> str:
    prefix = get_settings().s3_prefix.strip("/")
    return f"{prefix}/{workload_id}/{filename}" if prefix else f"{workload_id}/{filename}"


def _error_text(exc: BaseException) -> str:
    if isinstance(exc, BackupCommandError):
        return exc.detail
    return describe_error(exc)


async def _run_checked(
    executor: RemoteExecutor,
    host: Host,
    command: str,
    *,
    action: str,
    env: Optional[Mapping[str, str]] = None,
) -> str:
    result = await executor.execute_command(host, command, env=env)
    if not result.ok:
        _logger.warning(
            "backups.command.fail",
            "Backup command failed",
            action=action,
            host=host.name,
            exit_code=result.exit_code,
            stderr=result.stderr,
        )
        raise BackupCommandError(action, result.stderr or result.stdout or f"exit_{result.exit_code}")
    return result.stdout


async def _remote_size(executor: RemoteExecutor, host: Host, path: str) -> int:
    result = await executor.execute_command(
        host, f"stat -c%s {shlex.quote(path)} 2>/dev/null || echo 0"
    )
    try:
        return int((result.stdout or "0").strip().splitlines()[-1])
    except (ValueError, IndexError):
        return 0


async def _remote_exists(executor: RemoteExecutor, host: Host, path: str) -> bool:
    result = await executor.execute_command(host, f"test -f {shlex.quote(path)}")
    return result.ok


async def volume_mountpoint(executor: RemoteExecutor, host: Host, volume: str) -> Optional[str]:
    result = await executor.execute_command(
        host, shlex.join(["docker", "volume", "inspect", volume, "--format", "{{.Mountpoint}}"])
    )
    if not result.ok:
        return None
    mountpoint = result.stdout.strip()
    return mountpoint or None


def _heredoc(path: str, content: str) -> str:
    return f"cat > {shlex.quote(path)} << '{HEREDOC_MARKER}'\n{content}\n{HEREDOC_MARKER}"


async def configuration_document(session: AsyncSession, workload: Workload) -> Dict[str, Any]:
    """Workload settings and non-secret environment, as written to config backups."""
    return {
        "workload_id": workload.id,
        "name": workload.name,
        "project_name": workload.project_name,
        "source_type": workload.source_type,
        "image": workload.image,
        "current_image": workload.current_image,
        "repository_url": workload.repository_url,
        "repository_branch": workload.repository_branch,
        "dockerfile": workload.dockerfile,
        "build_context": workload.build_context,
        "domain": workload.domain,
        "port": workload.port,
        "enable_https": workload.enable_https,
        "replicas": workload.replicas,
        "swarm_replicas": workload.swarm_replicas,
        "deployment_mode": workload.deployment_mode,
        "swarm_networks": list(workload.swarm_networks or []),
        "health_check_url": workload.health_check_url,
        "health_check_interval_seconds": workload.health_check_interval_seconds,
        "health_check_timeout_seconds": workload.health_check_timeout_seconds,
        "max_consecutive_failures": workload.max_consecutive_failures,
        "auto_restart": workload.auto_restart,
        "auto_rollback": workload.auto_rollback,
        "volumes": [{"name": v.name, "mount_path": v.mount_path} for v in workload.volumes],
        "environment": await plain_environment(session, workload.id),
    }


async def _set_status(
    session: AsyncSession,
    backup: Backup,
    status: BackupStatus,
    *,
    error: Optional[str] = None,
    note: Optional[str] = None,
) -> Backup:
    current = BackupStatus(backup.status)
    if status not in BACKUP_TRANSITIONS.get(current, frozenset()):
        raise InvalidStateTransition(current.value, status.value, record="backup")
    backup.status = status.value
    now = _utcnow()
    if status is BackupStatus.RUNNING:
        backup.started_at = now
    if current is BackupStatus.RUNNING and status in (BackupStatus.SUCCESS, BackupStatus.FAILED):
        backup.completed_at = now
        record_backup(backup_type=backup.type, status=status.value)
    if error is not None:
        backup.error = error
    if note is not None:
        backup.note = note
    fields: Dict[str, Any] = {"backup_id": backup.id, "type": backup.type, "status": status.value}
    if error:
        fields["error"] = error
    await record_event(
        session,
        category="backups",
        name=f"backup.{status.value}",
        level="ERROR" if status is BackupStatus.FAILED else "INFO",
        fields=fields,
        workload_id=backup.workload_id,
    )
    await session.commit()
    await session.refresh(backup)
    return backup


async def _queue_backup(
    session: AsyncSession, workload: Workload, backup_type: BackupType
) -> Backup:
    now = _utcnow()
    retention = workload.backup_retention_days
    if retention is None:
        retention = get_settings().backup_retention_days
    backup = Backup(
        id=str(uuid4()),
        workload_id=workload.id,
        host_id=workload.host_id,
        type=backup_type.value,
        status=BackupStatus.QUEUED.value,
        retention_days=retention,
        created_at=now,
        expires_at=now + timedelta(days=retention),
    )
    session.add(backup)
    await record_event(
        session,
        category="backups",
        name="backup.queued",
        fields={"backup_id": backup.id, "type": backup_type.value},
        workload_id=workload.id,
    )
    await session.commit()
    await session.refresh(backup)
    return backup


async def _load_host(session: AsyncSession, host_id: str) -> Host:
    host = await session.get(Host, host_id)
    if host is None:
        raise BackupValidationError(f"host {host_id} not found")
    return host


async def _complete(
    session: AsyncSession,
    backup: Backup,
    executor: RemoteExecutor,
    host: Host,
    path: Optional[str],
    *,
    note: Optional[str] = None,
) -> Backup:
    backup.storage_path = path
    backup.size_bytes = await _remote_size(executor, host, path) if path else 0
    return await _set_status(session, backup, BackupStatus.SUCCESS, note=note)


async def _resolve_mounts(
    executor: RemoteExecutor, host: Host, workload: Workload
) -> tuple[Dict[str, str], List[str]]:
    resolved: Dict[str, str] = {}
    missing: List[str] = []
    for volume in workload.volumes:
        mountpoint = await volume_mountpoint(executor, host, volume.name)
        if mountpoint is None:
            missing.append(volume.name)
        else:
            resolved[volume.name] = mountpoint
    return resolved, missing


def _stage_volume_links(staging: str, mounts: Mapping[str, str]) -> List[str]:
    commands = [f"mkdir -p {shlex.quote(staging + '/volumes')}"]
    for name, mountpoint in mounts.items():
        commands.append(
            f"ln -s {shlex.quote(mountpoint)} {shlex.quote(f'{staging}/volumes/{name}')}"
        )
    return commands


async def _run_job(
    session: AsyncSession,
    workload: Workload,
    backup_type: BackupType,
    executor: RemoteExecutor,
) -> Backup:
    async with workload_lease(session, workload, f"backup.{backup_type.value}"):
        backup = await _queue_backup(session, workload, backup_type)
        async with _logger.operation(
            "backup.run",
            "Running backup",
            workload=workload.name,
            backup_id=backup.id,
            type=backup_type.value,
        ) as op:
            try:
                await _set_status(session, backup, BackupStatus.RUNNING)
                host = await _load_host(session, workload.host_id)
                moment = backup.created_at or _utcnow()
                if backup_type is BackupType.CONFIGURATION:
                    await _configuration_job(session, backup, workload, host, executor, moment)
                elif backup_type is BackupType.VOLUME:
                    await _volume_job(session, backup, workload, host, executor, moment)
                elif backup_type is BackupType.FULL:
                    await _full_job(session, backup, workload, host, executor, moment)
                else:
                    raise BackupValidationError(f"{backup_type.value} backups are not supported")
                op.step("backup.done", "Backup stored", path=backup.storage_path, size=backup.size_bytes)
                return backup
            except asyncio.CancelledError:
                await _set_status(session, backup, BackupStatus.FAILED, error="backup cancelled")
                raise
            except Exception as exc:  # noqa: BLE001
                error = _error_text(exc)
                op.step_warning("backup.fail", "Backup failed", error=error)
                return await _set_status(session, backup, BackupStatus.FAILED, error=error)


async def _configuration_job(
    session: AsyncSession,
    backup: Backup,
    workload: Workload,
    host: Host,
    executor: RemoteExecutor,
    moment: datetime,
) -> None:
    directory = backup_directory(workload.id)
    path = f"{directory}/{artifact_stem('config', moment, backup.id)}.json"
    document = json.dumps(await configuration_document(session, workload), indent=2, default=str)
    await _run_checked(
        executor,
        host,
        f"mkdir -p {shlex.quote(directory)} && {_heredoc(path, document)}",
        action="backup.config.write",
    )
    await _complete(session, backup, executor, host, path)


async def _volume_job(
    session: AsyncSession,
    backup: Backup,
    workload: Workload,
    host: Host,
    executor: RemoteExecutor,
    moment: datetime,
) -> None:
    if not workload.volumes:
        await _complete(session, backup, executor, host, None, note="workload has no volumes")
        return
    mounts, missing = await _resolve_mounts(executor, host, workload)
    if not mounts:
        await _complete(
            session,
            backup,
            executor,
            host,
            None,
            note=f"no volume mount points could be resolved: {', '.join(missing)}",
        )
        return

    directory = backup_directory(workload.id)
    staging = f"{directory}/{artifact_stem('temp', moment, backup.id)}"
    archive = f"{directory}/{artifact_stem('volumes', moment, backup.id)}.tar.gz"
    try:
        commands = _stage_volume_links(staging, mounts)
        commands.append(f"tar -czhf {shlex.quote(archive)} -C {shlex.quote(staging)} volumes")
        await _run_checked(executor, host, " && ".join(commands), action="backup.volumes.archive")
    finally:
        await executor.execute_command(host, f"rm -rf {shlex.quote(staging)}")
    note = f"skipped unresolved volumes: {', '.join(missing)}" if missing else None
    await _complete(session, backup, executor, host, archive, note=note)


async def _full_job(
    session: AsyncSession,
    backup: Backup,
    workload: Workload,
    host: Host,
    executor: RemoteExecutor,
    moment: datetime,
) -> None:
    directory = backup_directory(workload.id)
    staging = f"{directory}/{artifact_stem('temp', moment, backup.id)}"
    archive = f"{directory}/{artifact_stem('full', moment, backup.id)}.tar.gz"
    mounts, missing = await _resolve_mounts(executor, host, workload)
    document = json.dumps(await configuration_document(session, workload), indent=2, default=str)
    try:
        commands = _stage_volume_links(staging, mounts)
        commands.append(_heredoc(f"{staging}/config.json", document))
        await _run_checked(executor, host, " && ".join(commands), action="backup.full.stage")
        await _run_checked(
            executor,
            host,
            f"tar -czhf {shlex.quote(archive)} -C {shlex.quote(staging)} config.json volumes",
            action="backup.full.archive",
        )
    finally:
        await executor.execute_command(host, f"rm -rf {shlex.quote(staging)}")
    note = f"skipped unresolved volumes: {', '.join(missing)}" if missing else None
    await _complete(session, backup, executor, host, archive, note=note)


async def backup_configuration(
    session: AsyncSession, workload: Workload, *, executor: RemoteExecutor
) -> Backup:
    return await _run_job(session, workload, BackupType.CONFIGURATION, executor)


async def backup_volumes(
    session: AsyncSession, workload: Workload, *, executor: RemoteExecutor
) -> Backup:
    return await _run_job(session, workload, BackupType.VOLUME, executor)


async def create_full_backup(
    session: AsyncSession, workload: Workload, *, executor: RemoteExecutor
) -> Backup:
    return await _run_job(session, workload, BackupType.FULL, executor)


async def run_backup(
    session: AsyncSession,
    workload: Workload,
    backup_type: BackupType,
    *,
    executor: RemoteExecutor,
) -> Backup:
    if backup_type is BackupType.DATABASE:
        raise BackupValidationError("database backups are not supported")
    return await _run_job(session, workload, backup_type, executor)


def _s3_settings() -> tuple[str, Dict[str, str], List[str]]:
    settings = get_settings()
    if not settings.s3_bucket:
        raise BackupValidationError("S3 bucket is not configured")
    vault = get_vault()
    env: Dict[str, str] = {}
    if settings.s3_access_key:
        env["AWS_ACCESS_KEY_ID"] = vault.decrypt(settings.s3_access_key)
    if settings.s3_secret_key:
        env["AWS_SECRET_ACCESS_KEY"] = vault.decrypt(settings.s3_secret_key)
    flags = ["--region", settings.s3_region or "us-east-1"]
    if settings.s3_endpoint_url:
        flags.extend(["--endpoint-url", settings.s3_endpoint_url])
    return settings.s3_bucket, env, flags


def _filename(path: str) -> str:
    return path.rstrip("/").rsplit("/", 1)[-1]


async def upload_to_s3(
    session: AsyncSession, backup: Backup, *, executor: RemoteExecutor
) -> Backup:
    if backup.status != BackupStatus.SUCCESS.value or not backup.storage_path:
        raise BackupValidationError(
            f"backup {backup.id} is {backup.status}; only successful backups with an artifact can be uploaded"
        )
    bucket, env, flags = _s3_settings()
    host = await _load_host(session, backup.host_id)
    key = s3_object_key(backup.workload_id, _filename(backup.storage_path))
    await _set_status(session, backup, BackupStatus.UPLOADING)
    async with _logger.operation(
        "backup.s3.upload", "Uploading backup to S3", backup_id=backup.id, bucket=bucket, key=key
    ):
        try:
            await _run_checked(
                executor,
                host,
                shlex.join(["aws", "s3", "cp", backup.storage_path, f"s3://{bucket}/{key}", *flags]),
                action="backup.s3.upload",
                env=env,
            )
        except asyncio.CancelledError:
            await _set_status(session, backup, BackupStatus.FAILED, error="upload cancelled")
            raise
        except Exception as exc:  # noqa: BLE001
            detail = f"S3 upload failed: {_error_text(exc)}"
            error = f"{backup.error}; {detail}" if backup.error else detail
            return await _set_status(session, backup, BackupStatus.FAILED, error=error)
        backup.s3_bucket = bucket
        backup.s3_key = key
        return await _set_status(session, backup, BackupStatus.SUCCESS)


async def download_from_s3(
    session: AsyncSession, backup: Backup, *, executor: RemoteExecutor
) -> str:
    """Fetch the S3 copy back to the backup's storage path on its host."""
    if not backup.s3_key:
        raise BackupValidationError(f"backup {backup.id} has no S3 copy")
    _, env, flags = _s3_settings()
    bucket = backup.s3_bucket or get_settings().s3_bucket
    host = await _load_host(session, backup.host_id)
    path = backup.storage_path or f"{backup_directory(backup.workload_id)}/{_filename(backup.s3_key)}"
    directory = path.rsplit("/", 1)[0]
    await _run_checked(executor, host, f"mkdir -p {shlex.quote(directory)}", action="backup.s3.prepare")
    await _run_checked(
        executor,
        host,
        shlex.join(["aws", "s3", "cp", f"s3://{bucket}/{backup.s3_key}", path, *flags]),
        action="backup.s3.download",
        env=env,
    )
    if backup.storage_path != path:
        backup.storage_path = path
        await session.commit()
    _logger.info("backup.s3.download", "Downloaded backup from S3", backup_id=backup.id, path=path)
    return path


async def _delete_s3_object(executor: RemoteExecutor, host: Host, backup: Backup) -> None:
    _, env, flags = _s3_settings()
    bucket = backup.s3_bucket or get_settings().s3_bucket
    await _run_checked(
        executor,
        host,
        shlex.join(["aws", "s3", "rm", f"s3://{bucket}/{backup.s3_key}", *flags]),
        action="backup.s3.delete",
        env=env,
    )


async def _delete_artifacts(executor: RemoteExecutor, host: Host, backup: Backup) -> None:
    if backup.storage_path:
        await _run_checked(
            executor, host, f"rm -f {shlex.quote(backup.storage_path)}", action="backup.delete"
        )
    if backup.s3_key:
        await _delete_s3_object(executor, host, backup)


async def prune_expired_backups(
    session: AsyncSession,
    *,
    executor: RemoteExecutor,
    now: Optional[datetime] = None,
) -> PruneResult:
    cutoff = now or _utcnow()
    rows = (
        await session.execute(
            select(Backup)
            .where(
                Backup.expires_at.is_not(None),
                Backup.expires_at < cutoff,
                Backup.status != BackupStatus.EXPIRED.value,
                Backup.status.not_in(_IN_FLIGHT),
            )
            .order_by(Backup.expires_at)
        )
    ).scalars().all()

    result = PruneResult()
    async with _logger.operation("backup.prune", "Pruning expired backups", candidates=len(rows)) as op:
        for backup in rows:
            try:
                host = await _load_host(session, backup.host_id)
                await _delete_artifacts(executor, host, backup)
                await _set_status(session, backup, BackupStatus.EXPIRED)
                result.pruned += 1
                op.child("backup.expire", backup.id, "Backup expired", path=backup.storage_path)
            except Exception as exc:  # noqa: BLE001
                error = f"{backup.id}: {_error_text(exc)}"
                result.failed += 1
                result.errors.append(error)
                op.step_warning("backup.expire", "Failed to prune backup", backup_id=backup.id, error=error)
        op.step("prune.done", "Prune pass complete", pruned=result.pruned, failed=result.failed)
    return result


def _validate_restorable(backup: Backup, target_host_id: Optional[str]) -> None:
    if backup.status != BackupStatus.SUCCESS.value:
        raise BackupValidationError(
            f"backup {backup.id} is {backup.status}; only successful backups can be restored"
        )
    if not backup.storage_path:
        raise BackupValidationError(f"backup {backup.id} has no stored artifact")
    if backup.type == BackupType.CONFIGURATION.value:
        raise BackupValidationError("configuration backups are not restorable archives")
    if target_host_id is not None and target_host_id != backup.host_id:
        raise CrossHostRestoreUnsupported(backup.id, backup.host_id, target_host_id)


async def _ensure_volume(executor: RemoteExecutor, host: Host, name: str) -> str:
    mountpoint = await volume_mountpoint(executor, host, name)
    if mountpoint is not None:
        return mountpoint
    await _run_checked(
        executor, host, shlex.join(["docker", "volume", "create", name]), action="restore.volume.create"
    )
    mountpoint = await volume_mountpoint(executor, host, name)
    if mountpoint is None:
        raise BackupCommandError("restore.volume.inspect", f"volume {name} has no mount point")
    return mountpoint


async def restore_backup(
    session: AsyncSession,
    backup: Backup,
    *,
    executor: RemoteExecutor,
    target_host_id: Optional[str] = None,
) -> RestoreResult:
    _validate_restorable(backup, target_host_id)
    workload = await session.get(Workload, backup.workload_id)
    if workload is None:
        raise BackupValidationError(f"workload {backup.workload_id} not found")
    host = await _load_host(session, backup.host_id)

    async with workload_lease(session, workload, "restore"):
        if not await _remote_exists(executor, host, backup.storage_path):
            if not backup.s3_key:
                raise BackupValidationError(
                    f"backup artifact {backup.storage_path} is missing on host {host.name}"
                )
            await download_from_s3(session, backup, executor=executor)

        scratch = restore_directory(backup.id)
        restored: List[str] = []
        async with _logger.operation(
            "backup.restore", "Restoring backup", backup_id=backup.id, host=host.name
        ) as op:
            try:
                await _run_checked(
                    executor,
                    host,
                    f"mkdir -p {shlex.quote(scratch)} && "
                    f"tar -xzf {shlex.quote(backup.storage_path)} -C {shlex.quote(scratch)}",
                    action="restore.extract",
                )
                listing = await executor.execute_command(
                    host, f"ls -1 {shlex.quote(scratch + '/volumes')} 2>/dev/null"
                )
                names = [line.strip() for line in listing.stdout.splitlines() if line.strip()]
                for name in names:
                    mountpoint = await _ensure_volume(executor, host, name)
                    await _run_checked(
                        executor,
                        host,
                        f"cp -a {shlex.quote(f'{scratch}/volumes/{name}')}/. {shlex.quote(mountpoint)}/",
                        action="restore.volume.copy",
                    )
                    restored.append(name)
                    op.child("restore.volume", name, "Volume repopulated", mountpoint=mountpoint)
            except Exception as exc:  # noqa: BLE001
                error = _error_text(exc)
                op.step_warning("restore.fail", "Restore failed", error=error)
                await record_event(
                    session,
                    category="backups",
                    name="restore.failed",
                    level="ERROR",
                    fields={"backup_id": backup.id, "error": error, "restored": ",".join(restored)},
                    workload_id=backup.workload_id,
                )
                await session.commit()
                return RestoreResult(
                    success=False,
                    message="Restore failed",
                    backup_id=backup.id,
                    restored_volumes=restored,
                    error=error,
                )
            finally:
                await executor.execute_command(host, f"rm -rf {shlex.quote(scratch)}")

        await record_event(
            session,
            category="backups",
            name="restore.success",
            fields={"backup_id": backup.id, "restored": ",".join(restored)},
            workload_id=backup.workload_id,
        )
        await session.commit()
        return RestoreResult(
            success=True,
            message=f"Restored {len(restored)} volume(s)",
            backup_id=backup.id,
            restored_volumes=restored,
        )


async def list_backups(
    session: AsyncSession, *, workload_id: Optional[str] = None, limit: int = 100
) -> List[Backup]:
    stmt = select(Backup).order_by(Backup.created_at.desc()).limit(limit)
    if workload_id is not None:
        stmt = stmt.where(Backup.workload_id == workload_id)
    return list((await session.execute(stmt)).scalars().all())


async def get_backup(session: AsyncSession, backup_id: str) -> Optional[Backup]:
    return await session.get(Backup, backup_id)


async def delete_backup(
    session: AsyncSession, backup: Backup, *, executor: RemoteExecutor
) -> None:
    if backup.status in _IN_FLIGHT:
        raise BackupValidationError(f"backup {backup.id} is {backup.status} and cannot be deleted")
    host = await _load_host(session, backup.host_id)
    await _delete_artifacts(executor, host, backup)
    await record_event(
        session,
        category="backups",
        name="backup.deleted",
        fields={"backup_id": backup.id, "path": backup.storage_path or ""},
        workload_id=backup.workload_id,
    )
    await session.delete(backup)
    await session.commit()
    _logger.info("backup.delete", "Deleted backup", backup_id=backup.id)
