from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from hostcraft.dependencies import get_db_session
from hostcraft.routes.errors import http_error
from hostcraft.schemas.hosts import PrivateKeyCreate, PrivateKeyOut
from hostcraft.schemas.secrets import KeyRotationOut, KeyRotationRequest
from hostcraft.services import secrets as secret_service
from hostcraft.services.vault import VaultError, decode_key

router = APIRouter(prefix="/secrets", tags=["secrets"])


@router.post("/keys", response_model=PrivateKeyOut, status_code=status.HTTP_201_CREATED)
async def store_private_key(
    payload: PrivateKeyCreate,
    session: AsyncSession = Depends(get_db_session),
) -> PrivateKeyOut:
    row = await secret_service.set_private_key(
        session, name=payload.name, key_data=payload.key_data, passphrase=payload.passphrase
    )
    return PrivateKeyOut.model_validate(row)


@router.delete("/keys/{key_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_private_key(
    key_id: str,
    session: AsyncSession = Depends(get_db_session),
) -> None:
    if not await secret_service.delete_private_key(session, key_id):
        raise HTTPException(status_code=404, detail="Private key not found")


@router.post("/rotate", response_model=KeyRotationOut)
async def rotate_key(
    payload: KeyRotationRequest,
    session: AsyncSession = Depends(get_db_session),
) -> KeyRotationOut:
    try:
        decode_key(payload.old_key)
        decode_key(payload.new_key)
    except VaultError as exc:
        raise http_error(exc) from exc
    result = await secret_service.rotate_encryption_key(
        session, old_key=payload.old_key, new_key=payload.new_key
    )
    return KeyRotationOut.model_validate(result)
