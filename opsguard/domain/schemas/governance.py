"""Pydantic schemas for the governance API. Strict validation, no storage or infrastructure."""

import json
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, SecretStr, field_validator

from opsguard.domain.models.operation import Decision, DecisionResult, Operation
from opsguard.governance.operation_overrides import OverrideAction


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class OperationRequest(BaseModel):
    """An operation submitted for a governance decision."""

    category: str = Field(..., min_length=1)
    action: str = Field(..., min_length=1)
    source: str = Field(..., min_length=1, description="Component or agent submitting the operation")
    target: Optional[str] = None
    user_id: Optional[str] = None
    agent_id: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("context")
    @classmethod
    def context_must_be_json_serializable(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        try:
            json.dumps(v)
        except (TypeError, ValueError) as e:
            raise ValueError("context must be JSON-serializable") from e
        return v

    def to_operation(self) -> Operation:
        return Operation(
            category=self.category,
            action=self.action,
            source=self.source,
            target=self.target,
            user_id=self.user_id,
            agent_id=self.agent_id,
            context=self.context,
        )


class ActorRequest(BaseModel):
    """Identity performing a control-plane action. Falls back to the X-Operator-ID header, then "dashboard"."""

    actor: Optional[str] = Field(None, min_length=1)


class ApprovalDecisionRequest(BaseModel):
    actor: Optional[str] = Field(None, min_length=1)
    reason: Optional[str] = Field(None, max_length=1000)


class VaultInitializeRequest(BaseModel):
    master_key: SecretStr = Field(..., min_length=16)


class CredentialStoreRequest(BaseModel):
    label: str = Field(..., min_length=1, max_length=200)
    value: SecretStr = Field(..., min_length=1)


class CredentialRotateRequest(BaseModel):
    value: SecretStr = Field(..., min_length=1)


class OverrideCreateRequest(BaseModel):
    operation: str = Field(..., min_length=3, description="'category:action'")
    action: OverrideAction
    target: Optional[str] = None
    agent_id: Optional[str] = None
    source: Optional[str] = None
    expires_at: Optional[datetime] = None
    reason: Optional[str] = Field(None, max_length=1000)


class PermissionGrantRequest(BaseModel):
    operation: str = Field(..., min_length=3, description="'category:action' or 'category:*'")
    duration_minutes: int = Field(..., ge=1, le=10080)
    reason: str = Field(..., min_length=1, max_length=1000)
    target: Optional[str] = None
    agent_id: Optional[str] = None
    max_uses: Optional[int] = Field(None, ge=1)
    granted_by: Optional[str] = Field(None, min_length=1)


class PermissionRevokeRequest(BaseModel):
    revoked_by: Optional[str] = Field(None, min_length=1)
    reason: Optional[str] = Field(None, max_length=1000)


class PermissionCheckRequest(BaseModel):
    operation: str = Field(..., min_length=3)
    target: Optional[str] = None
    agent_id: Optional[str] = None


class ApplySuggestionRequest(BaseModel):
    suggestion_id: str = Field(..., min_length=1)
    hours: int = 24
    operator_id: Optional[str] = Field(None, min_length=1)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class DecisionResponse(BaseModel):
    result: DecisionResult
    allowed: bool
    reason: str
    approval_id: Optional[str] = None
    audit_degraded: bool = False
    sanitized_content: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)

    @classmethod
    def from_decision(cls, decision: Decision) -> "DecisionResponse":
        return cls(
            result=decision.result,
            allowed=decision.allowed,
            reason=decision.reason,
            approval_id=decision.approval_id,
            audit_degraded=decision.audit_degraded,
            sanitized_content=decision.sanitized_content,
            warnings=list(decision.warnings),
        )


class SwitchResponse(BaseModel):
    changed: bool
    is_paused: bool


class StatsResponse(BaseModel):
    total_operations: int
    allowed: int
    blocked: int
    pending_approvals: int
    anomalies: int
    is_paused: bool
    approval_requests: int
    approved: int
    denied: int
    expired: int
    audit_failures: int


class ItemsResponse(BaseModel):
    """Generic list envelope: items plus their count."""

    items: List[Dict[str, Any]]
    count: int

    @classmethod
    def of(cls, items: List[Dict[str, Any]]) -> "ItemsResponse":
        return cls(items=items, count=len(items))
