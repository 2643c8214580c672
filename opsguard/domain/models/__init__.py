"""Domain models. Pure business entities."""

from opsguard.domain.models.operation import (
    AuditResult,
    Decision,
    DecisionResult,
    Operation,
    Severity,
)

__all__ = [
    "AuditResult",
    "Decision",
    "DecisionResult",
    "Operation",
    "Severity",
]
