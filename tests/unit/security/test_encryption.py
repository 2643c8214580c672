"""Security tests: encryption round-trip; wrong key and missing key fail without leaking material."""

import pytest

from opsguard.security.encryption import EncryptionService, derive_key, generate_salt, try_decrypt
from opsguard.security.exceptions import EncryptionError

SECRET = "test-master-key-long-enough"
SALT = b"0123456789abcdef"


def test_encryption_round_trip_works():
    svc = EncryptionService(SECRET, SALT, iterations=1000)
    encrypted = svc.encrypt("sensitive data")
    assert encrypted != "sensitive data"
    assert svc.decrypt(encrypted) == "sensitive data"


def test_encryption_fails_with_wrong_key():
    encrypted = EncryptionService(SECRET, SALT, iterations=1000).encrypt("secret")
    other = EncryptionService("another-master-key-entirely", SALT, iterations=1000)
    with pytest.raises(EncryptionError) as exc_info:
        other.decrypt(encrypted)
    assert "wrong key" in exc_info.value.message
    assert "another-master-key-entirely" not in exc_info.value.message
    assert exc_info.value.__cause__ is None
    assert try_decrypt(other, encrypted) is None


def test_encryption_fails_if_key_missing():
    with pytest.raises(EncryptionError):
        EncryptionService("  ", SALT, iterations=1000)


def test_key_derivation_depends_on_salt():
    assert derive_key(SECRET, SALT, 1000) == derive_key(SECRET, SALT, 1000)
    assert derive_key(SECRET, SALT, 1000) != derive_key(SECRET, generate_salt(), 1000)
    assert len(generate_salt()) == 16
