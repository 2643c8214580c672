"""Governance-layer exceptions. Typed, no HTTP."""

from typing import Optional

from opsguard.domain.exceptions import GovernanceError


class PersistenceDegradedError(GovernanceError):
    """
    Raised when an audit write failed or timed out. The Decision already
    computed is still honoured; the failure is logged and counted.
    """

    code = "persistence_degraded"


class ChainIntegrityError(GovernanceError):
    """Raised when ledger verification finds a broken hash chain. Never auto-repaired."""

    code = "chain_integrity"

    def __init__(self, message: str, broken_at_sequence: Optional[int] = None) -> None:
        self.broken_at_sequence = broken_at_sequence
        super().__init__(message)


class InvalidRuleTableError(GovernanceError):
    """Raised at startup when the policy rule table has missing or duplicate keys."""

    code = "invalid_rule_table"
