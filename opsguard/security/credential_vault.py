"""Encrypted credential store. Plaintext exists only in store()/rotate() arguments and retrieve() results."""

import asyncio
import base64
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from opsguard.core.clock import Clock, utc_now
from opsguard.domain.exceptions import ValidationError
from opsguard.infrastructure.storage.interface import StorageBackend
from opsguard.security.encryption import (
    DEFAULT_ITERATIONS,
    EncryptionService,
    generate_salt,
    try_decrypt,
)
from opsguard.security.exceptions import (
    CredentialNotFoundError,
    EncryptionError,
    VaultNotInitializedError,
)

logger = logging.getLogger(__name__)

CREDENTIALS_COLLECTION = "credentials"
VAULT_META_COLLECTION = "vault-meta"
VAULT_META_ID = "master"
MIN_MASTER_KEY_LENGTH = 16
_CHECK_PLAINTEXT = "opsguard-vault-check"


@dataclass(frozen=True)
class Credential:
    id: str
    label: str
    ciphertext: str
    created_at: datetime
    rotated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "ciphertext": self.ciphertext,
            "created_at": self.created_at.isoformat(),
            "rotated_at": self.rotated_at.isoformat() if self.rotated_at else None,
        }

    def metadata(self) -> Dict[str, Any]:
        """Safe to expose: everything except the ciphertext."""
        data = self.to_dict()
        del data["ciphertext"]
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Credential":
        rotated_at = data.get("rotated_at")
        return cls(
            id=data["id"],
            label=data["label"],
            ciphertext=data["ciphertext"],
            created_at=datetime.fromisoformat(data["created_at"]),
            rotated_at=datetime.fromisoformat(rotated_at) if rotated_at else None,
        )

    def __repr__(self) -> str:
        return f"Credential(id={self.id!r}, label={self.label!r})"


class CredentialVault:
    """
    Key/value secret store encrypted with a master key that lives only in
    process memory. The vault persists a salt and an encrypted check token so
    a later initialize() with a different master key is rejected instead of
    producing undecryptable credentials.
    """

    def __init__(
        self,
        storage: StorageBackend,
        *,
        kdf_iterations: int = DEFAULT_ITERATIONS,
        clock: Clock = utc_now,
    ) -> None:
        self._storage = storage
        self._iterations = kdf_iterations
        self._clock = clock
        self._cipher: Optional[EncryptionService] = None
        self._credentials: Dict[str, Credential] = {}
        self._lock = asyncio.Lock()

    @property
    def is_initialized(self) -> bool:
        return self._cipher is not None

    async def initialize(self, master_key: str) -> None:
        if not master_key or len(master_key) < MIN_MASTER_KEY_LENGTH:
            raise ValidationError(
                f"Master key must be at least {MIN_MASTER_KEY_LENGTH} characters"
            )
        async with self._lock:
            meta = await self._storage.get(VAULT_META_COLLECTION, VAULT_META_ID)
            if meta is None:
                salt = generate_salt()
                cipher = await asyncio.to_thread(
                    EncryptionService, master_key, salt, self._iterations
                )
                await self._storage.put(
                    VAULT_META_COLLECTION,
                    VAULT_META_ID,
                    {
                        "salt": base64.b64encode(salt).decode("ascii"),
                        "iterations": self._iterations,
                        "check": cipher.encrypt(_CHECK_PLAINTEXT),
                        "created_at": self._clock().isoformat(),
                    },
                )
                created = True
            else:
                salt = base64.b64decode(meta["salt"])
                cipher = await asyncio.to_thread(
                    EncryptionService, master_key, salt, meta.get("iterations", self._iterations)
                )
                if try_decrypt(cipher, meta["check"]) != _CHECK_PLAINTEXT:
                    logger.warning("vault_master_key_rejected")
                    raise EncryptionError("Master key does not match this vault")
                created = False

            records = await self._storage.list(CREDENTIALS_COLLECTION)
            self._credentials = {r["id"]: Credential.from_dict(r) for r in records}
            self._cipher = cipher
        logger.info(
            "vault_initialized",
            extra={"created": created, "credential_count": len(self._credentials)},
        )

    async def store(self, label: str, plaintext: str) -> str:
        cipher = self._require_cipher()
        if not label or not label.strip():
            raise ValidationError("Credential label is required")
        credential = Credential(
            id=f"cred-{uuid.uuid4().hex[:12]}",
            label=label.strip(),
            ciphertext=cipher.encrypt(plaintext),
            created_at=self._clock(),
        )
        async with self._lock:
            await self._storage.put(CREDENTIALS_COLLECTION, credential.id, credential.to_dict())
            self._credentials[credential.id] = credential
        logger.info("credential_stored", extra={"credential_id": credential.id, "label": credential.label})
        return credential.id

    async def retrieve(self, credential_id: str) -> str:
        cipher = self._require_cipher()
        async with self._lock:
            credential = self._credentials.get(credential_id)
        if credential is None:
            raise CredentialNotFoundError(f"Credential not found: {credential_id}")
        return cipher.decrypt(credential.ciphertext)

    async def delete(self, credential_id: str) -> bool:
        self._require_cipher()
        async with self._lock:
            if credential_id not in self._credentials:
                return False
            await self._storage.delete(CREDENTIALS_COLLECTION, credential_id)
            del self._credentials[credential_id]
        logger.info("credential_deleted", extra={"credential_id": credential_id})
        return True

    async def rotate(self, credential_id: str, plaintext: str) -> Credential:
        """Replace the secret behind an id, keeping its label and creation time."""
        cipher = self._require_cipher()
        async with self._lock:
            existing = self._credentials.get(credential_id)
            if existing is None:
                raise CredentialNotFoundError(f"Credential not found: {credential_id}")
            rotated = Credential(
                id=existing.id,
                label=existing.label,
                ciphertext=cipher.encrypt(plaintext),
                created_at=existing.created_at,
                rotated_at=self._clock(),
            )
            await self._storage.put(CREDENTIALS_COLLECTION, rotated.id, rotated.to_dict())
            self._credentials[rotated.id] = rotated
        logger.info("credential_rotated", extra={"credential_id": credential_id})
        return rotated

    async def list_credentials(self) -> List[Dict[str, Any]]:
        """Metadata only, oldest first."""
        self._require_cipher()
        async with self._lock:
            credentials = sorted(self._credentials.values(), key=lambda c: c.created_at)
        return [c.metadata() for c in credentials]

    def _require_cipher(self) -> EncryptionService:
        if self._cipher is None:
            raise VaultNotInitializedError("Vault is not initialized")
        return self._cipher
