from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hostcraft.config import get_settings
from hostcraft.logger import MASKED_VALUE, get_logger
from hostcraft.models.private_key import PrivateKey
from hostcraft.models.workload import EnvironmentVariable
from hostcraft.services.events import record_event
from hostcraft.services.vault import (
    DecryptionFailed,
    SecretVault,
    activate_vault,
    get_vault,
    is_encrypted,
)

_logger = get_logger("services.secrets")


@dataclass(frozen=True)
class EnvironmentEntry:
    id: str
    key: str
    value: str
    is_secret: bool


@dataclass
class RotationResult:
    rotated: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)
    # Encrypted settings values re-encrypted under the new key; the operator
    # must write them back to the environment before the old key is dropped.
    unrotated_settings: Dict[str, str] = field(default_factory=dict)


async def _get_env_row(
    session: AsyncSession, workload_id: str, key: str
) -> Optional[EnvironmentVariable]:
    result = await session.execute(
        select(EnvironmentVariable).where(
            EnvironmentVariable.workload_id == workload_id,
            EnvironmentVariable.key == key,
        )
    )
    return result.scalar_one_or_none()


async def _env_rows(session: AsyncSession, workload_id: str) -> List[EnvironmentVariable]:
    result = await session.execute(
        select(EnvironmentVariable)
        .where(EnvironmentVariable.workload_id == workload_id)
        .order_by(EnvironmentVariable.key)
    )
    return list(result.scalars().all())


async def set_env_var(
    session: AsyncSession,
    *,
    workload_id: str,
    key: str,
    value: str,
    is_secret: bool = False,
) -> EnvironmentVariable:
    key = key.strip()
    if not key:
        raise ValueError("environment variable key must not be empty")
    vault = get_vault()
    stored = vault.encrypt(value) if is_secret else value

    row = await _get_env_row(session, workload_id, key)
    if row is None:
        row = EnvironmentVariable(
            id=str(uuid4()),
            workload_id=workload_id,
            key=key,
            value=stored or "",
            is_secret=is_secret,
        )
        session.add(row)
    else:
        row.value = stored or ""
        row.is_secret = is_secret
    await record_event(
        session,
        category="secrets",
        name="env.set",
        fields={"key": key, "is_secret": is_secret},
        workload_id=workload_id,
    )
    await session.commit()
    await session.refresh(row)
    _logger.info("env.set", "Stored environment variable", key=key, is_secret=is_secret)
    return row


async def get_env_var_value(
    session: AsyncSession, *, workload_id: str, key: str
) -> Optional[str]:
    row = await _get_env_row(session, workload_id, key)
    if row is None:
        return None
    if row.is_secret:
        return get_vault().decrypt(row.value)
    return row.value


async def list_env_vars(
    session: AsyncSession,
    *,
    workload_id: str,
    reveal: bool = False,
) -> List[EnvironmentEntry]:
    vault = get_vault()
    entries: List[EnvironmentEntry] = []
    for row in await _env_rows(session, workload_id):
        if row.is_secret:
            value = (vault.decrypt(row.value) or "") if reveal else MASKED_VALUE
        else:
            value = row.value
        entries.append(
            EnvironmentEntry(id=row.id, key=row.key, value=value, is_secret=row.is_secret)
        )
    return entries


async def delete_env_var(session: AsyncSession, *, workload_id: str, key: str) -> bool:
    row = await _get_env_row(session, workload_id, key)
    if row is None:
        return False
    await session.delete(row)
    await record_event(
        session,
        category="secrets",
        name="env.delete",
        fields={"key": key},
        workload_id=workload_id,
    )
    await session.commit()
    return True


async def plain_environment(session: AsyncSession, workload_id: str) -> Dict[str, str]:
    """Non-secret variables only; secret values never leave the vault this way."""
    return {row.key: row.value for row in await _env_rows(session, workload_id) if not row.is_secret}


async def set_private_key(
    session: AsyncSession,
    *,
    name: str,
    key_data: str,
    passphrase: Optional[str] = None,
) -> PrivateKey:
    vault = get_vault()
    result = await session.execute(select(PrivateKey).where(PrivateKey.name == name))
    row = result.scalar_one_or_none()
    if row is None:
        row = PrivateKey(id=str(uuid4()), name=name, key_data="")
        session.add(row)
    row.key_data = vault.encrypt(key_data) or ""
    row.passphrase = vault.encrypt(passphrase) if passphrase else None
    await record_event(session, category="secrets", name="private_key.set", fields={"name": name})
    await session.commit()
    await session.refresh(row)
    return row


def private_key_material(row: PrivateKey) -> Tuple[str, Optional[str]]:
    vault = get_vault()
    return vault.decrypt(row.key_data) or "", vault.decrypt(row.passphrase)


async def delete_private_key(session: AsyncSession, key_id: str) -> bool:
    row = await session.get(PrivateKey, key_id)
    if row is None:
        return False
    await session.delete(row)
    await record_event(
        session, category="secrets", name="private_key.delete", fields={"name": row.name}
    )
    await session.commit()
    return True


def _decrypts(vault: SecretVault, value: str) -> bool:
    try:
        vault.decrypt(value)
    except DecryptionFailed:
        return False
    return True


def _rotate_settings_values(
    transitional: SecretVault, target: SecretVault, outcome: RotationResult
) -> None:
    settings = get_settings()
    configured = {
        "S3_ACCESS_KEY": settings.s3_access_key,
        "S3_SECRET_KEY": settings.s3_secret_key,
    }
    for env_name, value in configured.items():
        if not is_encrypted(value) or _decrypts(target, value):
            continue
        try:
            outcome.unrotated_settings[env_name] = target.encrypt(transitional.decrypt(value)) or ""
        except Exception as exc:  # noqa: BLE001
            outcome.failed += 1
            outcome.errors.append(f"setting {env_name}: {type(exc).__name__}: {exc}")


async def rotate_encryption_key(
    session: AsyncSession,
    *,
    old_key: str,
    new_key: str,
) -> RotationResult:
    # Records already under the new key (an interrupted earlier pass) still decrypt.
    transitional = SecretVault(new_key, fallback_keys=[old_key])
    target = SecretVault(new_key)
    outcome = RotationResult()

    async with _logger.operation("vault.rotate", "Rotating encryption key") as op:
        env_result = await session.execute(
            select(EnvironmentVariable).where(EnvironmentVariable.is_secret.is_(True))
        )
        env_rows = list(env_result.scalars().all())
        for row in env_rows:
            try:
                row.value = target.encrypt(transitional.decrypt(row.value)) or ""
                outcome.rotated += 1
            except Exception as exc:  # noqa: BLE001
                outcome.failed += 1
                outcome.errors.append(f"env {row.workload_id}/{row.key}: {type(exc).__name__}: {exc}")
        op.step("env.rotate", "Re-encrypted secret environment values", count=len(env_rows))

        key_result = await session.execute(select(PrivateKey))
        key_rows = list(key_result.scalars().all())
        for key_row in key_rows:
            try:
                key_data = target.encrypt(transitional.decrypt(key_row.key_data)) or ""
                passphrase = target.encrypt(transitional.decrypt(key_row.passphrase))
            except Exception as exc:  # noqa: BLE001
                outcome.failed += 1
                outcome.errors.append(f"private_key {key_row.name}: {type(exc).__name__}: {exc}")
                continue
            key_row.key_data = key_data
            key_row.passphrase = passphrase
            outcome.rotated += 1
        op.step("private_key.rotate", "Re-encrypted private keys", count=len(key_rows))

        _rotate_settings_values(transitional, target, outcome)
        if outcome.unrotated_settings:
            op.step_warning(
                "settings.rotate",
                "Encrypted settings values still use the old key",
                settings=sorted(outcome.unrotated_settings),
            )

        await record_event(
            session,
            category="secrets",
            name="vault.rotated",
            level="WARNING" if outcome.failed or outcome.unrotated_settings else "INFO",
            fields={
                "rotated": outcome.rotated,
                "failed": outcome.failed,
                "pending_settings": ",".join(sorted(outcome.unrotated_settings)),
            },
        )
        await session.commit()
        op.step("db.commit", "Committed re-encrypted records")

        if outcome.failed or outcome.unrotated_settings:
            activate_vault(transitional)
            op.step_warning(
                "vault.swap",
                "Activated new key with old key kept for unrotated records",
                failed=outcome.failed,
                pending_settings=len(outcome.unrotated_settings),
            )
        else:
            activate_vault(target)
            op.step("vault.swap", "Activated new key")
    return outcome
