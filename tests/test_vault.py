from __future__ import annotations

import base64

import pytest

from conftest import TEST_ENCRYPTION_KEY
from hostcraft.services.vault import (
    ENCRYPTED_PREFIX,
    DecryptionFailed,
    InvalidKeyError,
    SecretVault,
    decode_key,
    generate_key,
    get_vault,
)


def test_round_trip_marks_ciphertext() -> None:
    vault = SecretVault(TEST_ENCRYPTION_KEY)

    sealed = vault.encrypt("postgres://app:pw@db/shop")

    assert sealed.startswith(ENCRYPTED_PREFIX)
    assert "pw@db" not in sealed
    assert vault.decrypt(sealed) == "postgres://app:pw@db/shop"


def test_encrypt_is_idempotent_and_decrypt_passes_plaintext() -> None:
    vault = SecretVault(TEST_ENCRYPTION_KEY)
    sealed = vault.encrypt("token")

    assert vault.encrypt(sealed) == sealed
    assert vault.decrypt("legacy plaintext") == "legacy plaintext"
    assert vault.encrypt("") == ""
    assert vault.decrypt(None) is None


def test_same_plaintext_gets_fresh_nonce() -> None:
    vault = SecretVault(TEST_ENCRYPTION_KEY)
    assert vault.encrypt("same") != vault.encrypt("same")


def test_wrong_key_fails_loudly() -> None:
    sealed = SecretVault(TEST_ENCRYPTION_KEY).encrypt("secret")

    with pytest.raises(DecryptionFailed):
        SecretVault(generate_key()).decrypt(sealed)


def test_fallback_key_decrypts_but_new_writes_use_primary() -> None:
    old_key = TEST_ENCRYPTION_KEY
    new_key = generate_key()
    sealed_old = SecretVault(old_key).encrypt("secret")
    transitional = SecretVault(new_key, fallback_keys=[old_key])

    assert transitional.decrypt(sealed_old) == "secret"
    assert SecretVault(new_key).decrypt(transitional.reencrypt(sealed_old)) == "secret"


def test_tampered_ciphertext_is_rejected() -> None:
    vault = SecretVault(TEST_ENCRYPTION_KEY)
    raw = bytearray(base64.b64decode(vault.encrypt("secret")[len(ENCRYPTED_PREFIX):]))
    raw[-1] ^= 0x01
    tampered = ENCRYPTED_PREFIX + base64.b64encode(bytes(raw)).decode("ascii")

    with pytest.raises(DecryptionFailed):
        vault.decrypt(tampered)
    with pytest.raises(DecryptionFailed):
        vault.decrypt(ENCRYPTED_PREFIX + "c2hvcnQ=")


@pytest.mark.parametrize("key", ["not base64!", base64.b64encode(b"short").decode("ascii")])
def test_invalid_keys_are_rejected(key: str) -> None:
    with pytest.raises(InvalidKeyError):
        SecretVault(key)


def test_generated_key_is_32_bytes() -> None:
    assert len(decode_key(generate_key())) == 32


def test_process_vault_uses_configured_key() -> None:
    sealed = SecretVault(TEST_ENCRYPTION_KEY).encrypt("value")
    assert get_vault().decrypt(sealed) == "value"
