"""Operation validation. Raises ValidationError before any audit write or state mutation."""

import json

from opsguard.domain.exceptions import ValidationError
from opsguard.domain.models.operation import Operation


def validate_operation(operation: Operation) -> None:
    """Category, action and source must be non-empty strings; context must be JSON-serializable."""
    for name in ("category", "action", "source"):
        value = getattr(operation, name)
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(f"Operation {name} must be a non-empty string")
    try:
        json.dumps(dict(operation.context))
    except (TypeError, ValueError) as e:
        raise ValidationError("Operation context must be JSON-serializable") from e


def validate_actor(actor: str, field_name: str = "actor") -> str:
    """Return the stripped actor identity or raise ValidationError."""
    if not isinstance(actor, str) or not actor.strip():
        raise ValidationError(f"{field_name} must be a non-empty string")
    return actor.strip()
