"""Security: credential vault, encryption, anomaly detection. No FastAPI."""

from opsguard.security.anomaly_detector import AnomalyDetector, AnomalyEvent
from opsguard.security.credential_vault import Credential, CredentialVault
from opsguard.security.encryption import EncryptionService

__all__ = [
    "AnomalyDetector",
    "AnomalyEvent",
    "Credential",
    "CredentialVault",
    "EncryptionService",
]
