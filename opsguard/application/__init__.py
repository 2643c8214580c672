# Application layer: services that orchestrate governance, security and storage.

from opsguard.application.governance_service import GovernanceService, Storages, create_storages

__all__ = [
    "GovernanceService",
    "Storages",
    "create_storages",
]
