"""Security-layer exceptions. Typed, no HTTP. Messages never carry plaintext, ciphertext or key material."""

from opsguard.domain.exceptions import GovernanceError, NotFoundError


class SecurityError(GovernanceError):
    """Base for all security-layer errors."""

    code = "security_error"


class VaultNotInitializedError(SecurityError):
    """Raised for any vault operation attempted before a master key was supplied."""

    code = "vault_not_initialized"


class CredentialNotFoundError(NotFoundError):
    """Raised when a credential id is unknown to the vault."""


class EncryptionError(SecurityError):
    """Raised when encryption/decryption fails (e.g. missing key, wrong key)."""

    code = "encryption_error"
