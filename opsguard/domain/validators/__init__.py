"""Domain validators. Pure validation functions."""

from opsguard.domain.validators.operation_validator import validate_actor, validate_operation

__all__ = ["validate_actor", "validate_operation"]
