"""Domain-specific exceptions. Pure domain layer. No infrastructure.

Every error carries a stable ``code`` so callers can branch on it without
parsing messages. Messages never include secret material.
"""


class GovernanceError(Exception):
    """Base for all governance errors."""

    code = "governance_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ValidationError(GovernanceError):
    """Raised when an Operation or request is malformed. Rejected before any state change."""

    code = "validation_error"


class NotFoundError(GovernanceError):
    """Raised when an approval, anomaly or credential id is unknown."""

    code = "not_found"


class AlreadyResolvedError(GovernanceError):
    """Raised when an approval is already terminal. No state change."""

    code = "already_resolved"


class ApprovalExpiredError(AlreadyResolvedError):
    """Raised when an approval passed its expiry before it was resolved."""

    code = "approval_expired"
