"""Fernet encryption keyed from a master secret via PBKDF2. No global state, no key in errors."""

import base64
import os
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from opsguard.security.exceptions import EncryptionError

SALT_BYTES = 16
DEFAULT_ITERATIONS = 480000


def generate_salt() -> bytes:
    return os.urandom(SALT_BYTES)


def derive_key(secret: str, salt: bytes, iterations: int = DEFAULT_ITERATIONS) -> bytes:
    """Derive a 32-byte urlsafe-base64 Fernet key from a variable-length secret."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=iterations,
    )
    return base64.urlsafe_b64encode(kdf.derive(secret.encode("utf-8")))


class EncryptionService:
    """
    AES-based encryption (Fernet). The key is derived once and held only in
    this object; callers decide where the secret and salt come from.
    """

    def __init__(
        self,
        secret: str,
        salt: bytes,
        iterations: int = DEFAULT_ITERATIONS,
    ) -> None:
        if not secret or not secret.strip():
            raise EncryptionError("Encryption key is required")
        self._fernet = Fernet(derive_key(secret, salt, iterations))

    def encrypt(self, data: str) -> str:
        """Encrypt string; return Fernet token text."""
        try:
            return self._fernet.encrypt(data.encode("utf-8")).decode("ascii")
        except Exception as e:
            raise EncryptionError(f"Encryption failed ({type(e).__name__})") from None

    def decrypt(self, token: str) -> str:
        """Decrypt a Fernet token. Raises EncryptionError if wrong key/corrupt."""
        try:
            return self._fernet.decrypt(token.encode("ascii")).decode("utf-8")
        except InvalidToken:
            raise EncryptionError("Decryption failed: invalid token or wrong key") from None
        except Exception as e:
            raise EncryptionError(f"Decryption failed ({type(e).__name__})") from None


def try_decrypt(service: EncryptionService, token: str) -> Optional[str]:
    """Decrypt or return None. Used for key checks where failure is an answer, not an error."""
    try:
        return service.decrypt(token)
    except EncryptionError:
        return None
