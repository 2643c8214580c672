"""Domain layer: models, validators, exceptions. Pure business logic only."""

from opsguard.domain.exceptions import (
    AlreadyResolvedError,
    ApprovalExpiredError,
    GovernanceError,
    NotFoundError,
    ValidationError,
)
from opsguard.domain.models import (
    AuditResult,
    Decision,
    DecisionResult,
    Operation,
    Severity,
)
from opsguard.domain.validators.operation_validator import validate_actor, validate_operation

__all__ = [
    "AlreadyResolvedError",
    "ApprovalExpiredError",
    "AuditResult",
    "Decision",
    "DecisionResult",
    "GovernanceError",
    "NotFoundError",
    "Operation",
    "Severity",
    "ValidationError",
    "validate_actor",
    "validate_operation",
]
