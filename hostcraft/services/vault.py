from __future__ import annotations

import base64
import binascii
import os
import threading
from typing import Iterable, Optional, Sequence

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from hostcraft.config import ENCRYPTION_KEY_BYTES, get_settings
from hostcraft.logger import get_logger

ENCRYPTED_PREFIX = "ENC:"
NONCE_BYTES = 12
TAG_BYTES = 16

_logger = get_logger("services.vault")


class VaultError(RuntimeError):
    pass


class InvalidKeyError(VaultError):
    pass


class DecryptionFailed(VaultError):
    pass


def generate_key() -> str:
    return base64.b64encode(os.urandom(ENCRYPTION_KEY_BYTES)).decode("ascii")


def decode_key(key: str) -> bytes:
    try:
        raw = base64.b64decode(key.strip(), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidKeyError("encryption key is not valid base64") from exc
    if len(raw) != ENCRYPTION_KEY_BYTES:
        raise InvalidKeyError(
            f"encryption key must decode to {ENCRYPTION_KEY_BYTES} bytes, got {len(raw)}"
        )
    return raw


def is_encrypted(value: Optional[str]) -> bool:
    return bool(value) and value.startswith(ENCRYPTED_PREFIX)  # type: ignore[union-attr]


class SecretVault:
    """AES-256-GCM envelope for values stored at rest.

    Ciphertext is ``ENC:`` followed by base64(nonce | tag | ciphertext).
    Encrypt is a no-op on already-marked values and decrypt passes unmarked
    values through unchanged. Fallback keys are decrypt-only.
    """

    def __init__(self, key: str, fallback_keys: Sequence[str] = ()) -> None:
        self._primary = AESGCM(decode_key(key))
        self._key = key
        self._fallbacks = [AESGCM(decode_key(item)) for item in fallback_keys if item != key]
        self._fallback_keys = [item for item in fallback_keys if item != key]

    @property
    def key(self) -> str:
        return self._key

    @property
    def fallback_keys(self) -> list[str]:
        return list(self._fallback_keys)

    def is_encrypted(self, value: Optional[str]) -> bool:
        return is_encrypted(value)

    def encrypt(self, plaintext: Optional[str]) -> Optional[str]:
        if not plaintext:
            return plaintext
        if is_encrypted(plaintext):
            return plaintext
        nonce = os.urandom(NONCE_BYTES)
        sealed = self._primary.encrypt(nonce, plaintext.encode("utf-8"), None)
        # AESGCM appends the tag; stored layout puts it ahead of the ciphertext.
        ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
        payload = base64.b64encode(nonce + tag + ciphertext).decode("ascii")
        return f"{ENCRYPTED_PREFIX}{payload}"

    def decrypt(self, value: Optional[str]) -> Optional[str]:
        if not value:
            return value
        if not is_encrypted(value):
            return value
        try:
            raw = base64.b64decode(value[len(ENCRYPTED_PREFIX) :], validate=True)
        except (binascii.Error, ValueError) as exc:
            raise DecryptionFailed("ciphertext is not valid base64") from exc
        if len(raw) < NONCE_BYTES + TAG_BYTES:
            raise DecryptionFailed("ciphertext is truncated")

        nonce = raw[:NONCE_BYTES]
        tag = raw[NONCE_BYTES : NONCE_BYTES + TAG_BYTES]
        ciphertext = raw[NONCE_BYTES + TAG_BYTES :]
        for cipher in self._ciphers():
            try:
                plaintext = cipher.decrypt(nonce, ciphertext + tag, None)
            except InvalidTag:
                continue
            try:
                return plaintext.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise DecryptionFailed("decrypted payload is not valid UTF-8") from exc
        raise DecryptionFailed("ciphertext failed authentication (corrupted data or wrong key)")

    def reencrypt(self, value: Optional[str]) -> Optional[str]:
        if not is_encrypted(value):
            return self.encrypt(value)
        return self.encrypt(self.decrypt(value))

    def _ciphers(self) -> Iterable[AESGCM]:
        yield self._primary
        yield from self._fallbacks


_active_vault: Optional[SecretVault] = None
_vault_lock = threading.Lock()


def get_vault() -> SecretVault:
    global _active_vault
    with _vault_lock:
        if _active_vault is None:
            settings = get_settings()
            key = settings.encryption_key
            if not key:
                key = generate_key()
                _logger.warning(
                    "vault.key.ephemeral",
                    "ENCRYPTION_KEY is not configured; using a temporary key. "
                    "Secrets written now will be unreadable after restart.",
                )
            _active_vault = SecretVault(key)
        return _active_vault


def activate_vault(vault: SecretVault) -> None:
    global _active_vault
    with _vault_lock:
        _active_vault = vault
    _logger.info(
        "vault.key.activate",
        "Activated encryption key",
        fallback_keys=len(vault.fallback_keys),
    )


def reset_vault() -> None:
    global _active_vault
    with _vault_lock:
        _active_vault = None
