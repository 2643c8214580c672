"""Governance API router: /security/*. Thin; every route calls one GovernanceService verb."""

from dataclasses import asdict
from datetime import datetime
from typing import Annotated, Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from opsguard.api.dependencies import (
    get_governance_service,
    get_operator_id,
    resolve_actor,
)
from opsguard.application.governance_service import GovernanceService
from opsguard.domain.exceptions import NotFoundError
from opsguard.domain.models.operation import AuditResult
from opsguard.domain.schemas.governance import (
    ActorRequest,
    ApplySuggestionRequest,
    ApprovalDecisionRequest,
    CredentialRotateRequest,
    CredentialStoreRequest,
    DecisionResponse,
    ItemsResponse,
    OperationRequest,
    OverrideCreateRequest,
    PermissionCheckRequest,
    PermissionGrantRequest,
    PermissionRevokeRequest,
    StatsResponse,
    SwitchResponse,
    VaultInitializeRequest,
)
from opsguard.governance.approval_workflow import ApprovalStatus

router = APIRouter()

Service = Annotated[GovernanceService, Depends(get_governance_service)]
OperatorId = Annotated[Optional[str], Depends(get_operator_id)]


# --- Decisions and the pause switch ---

@router.post("/evaluate", response_model=DecisionResponse)
async def evaluate(body: OperationRequest, service: Service):
    """Decide one operation. The decision is audited before it is returned."""
    decision = await service.evaluate(body.to_operation())
    return DecisionResponse.from_decision(decision)


@router.post("/pause", response_model=SwitchResponse)
async def pause(service: Service, operator_id: OperatorId, body: Optional[ActorRequest] = None):
    changed = await service.pause(resolve_actor(body.actor if body else None, operator_id))
    return SwitchResponse(changed=changed, is_paused=True)


@router.post("/resume", response_model=SwitchResponse)
async def resume(service: Service, operator_id: OperatorId, body: Optional[ActorRequest] = None):
    changed = await service.resume(resolve_actor(body.actor if body else None, operator_id))
    return SwitchResponse(changed=changed, is_paused=False)


@router.get("/stats", response_model=StatsResponse)
async def stats(service: Service):
    return StatsResponse(**(await service.get_stats()).to_dict())


# --- Approvals ---

@router.get("/approvals", response_model=ItemsResponse)
async def list_approvals(service: Service, status: Optional[ApprovalStatus] = None):
    approvals = await service.list_approvals(status)
    return ItemsResponse.of([a.to_dict() for a in approvals])


@router.get("/approvals/pending", response_model=ItemsResponse)
async def pending_approvals(service: Service):
    approvals = await service.get_pending_approvals()
    return ItemsResponse.of([a.to_dict() for a in approvals])


@router.post("/approvals/{approval_id}/approve")
async def approve(
    approval_id: str,
    service: Service,
    operator_id: OperatorId,
    body: Optional[ApprovalDecisionRequest] = None,
) -> Dict[str, Any]:
    """404 when unknown, 409 when already resolved or expired."""
    approval = await service.resolve_approval(
        approval_id,
        approved=True,
        actor=resolve_actor(body.actor if body else None, operator_id),
        reason=body.reason if body else None,
    )
    return approval.to_dict()


@router.post("/approvals/{approval_id}/deny")
async def deny(
    approval_id: str,
    service: Service,
    operator_id: OperatorId,
    body: Optional[ApprovalDecisionRequest] = None,
) -> Dict[str, Any]:
    approval = await service.resolve_approval(
        approval_id,
        approved=False,
        actor=resolve_actor(body.actor if body else None, operator_id),
        reason=body.reason if body else None,
    )
    return approval.to_dict()


# --- Audit views ---

@router.get("/audit", response_model=ItemsResponse)
async def audit_log(
    service: Service,
    since: Optional[datetime] = None,
    result: Optional[AuditResult] = None,
    user_id: Optional[str] = None,
    agent_id: Optional[str] = None,
    limit: int = 100,
):
    entries = service.get_audit_log(
        since=since, result=result, user_id=user_id, agent_id=agent_id, limit=limit
    )
    return ItemsResponse.of([e.to_dict() for e in entries])


@router.get("/immutable-audit/recent", response_model=ItemsResponse)
async def immutable_audit_recent(service: Service, limit: int = 50):
    entries = await service.read_recent_audit(limit)
    return ItemsResponse.of([e.to_dict() for e in entries])


@router.get("/immutable-audit/verify")
async def immutable_audit_verify(service: Service) -> Dict[str, Any]:
    """Reports a broken chain in the body; never repairs it."""
    return (await service.verify_audit_chain()).to_dict()


@router.get("/immutable-audit/stats")
async def immutable_audit_stats(service: Service) -> Dict[str, Any]:
    return asdict(await service.get_audit_stats())


# --- Anomalies ---

@router.get("/anomalies", response_model=ItemsResponse)
async def anomalies(
    service: Service,
    since: Optional[datetime] = None,
    hours: Optional[int] = None,
):
    events = await service.get_anomalies(since=since, hours=hours)
    return ItemsResponse.of([e.to_dict() for e in events])


@router.post("/anomalies/{anomaly_id}/review")
async def review_anomaly(anomaly_id: str, service: Service) -> Dict[str, Any]:
    if not await service.mark_anomaly_reviewed(anomaly_id):
        raise NotFoundError(f"No unreviewed anomaly with id {anomaly_id}")
    return {"id": anomaly_id, "reviewed": True}


# --- Vault (no retrieve route: plaintext never leaves the process over HTTP) ---

@router.post("/vault/initialize")
async def vault_initialize(body: VaultInitializeRequest, service: Service) -> Dict[str, Any]:
    await service.initialize_vault(body.master_key.get_secret_value())
    return {"initialized": True}


@router.get("/vault", response_model=ItemsResponse)
async def vault_list(service: Service):
    return ItemsResponse.of(await service.list_credentials())


@router.post("/vault", status_code=201)
async def vault_store(body: CredentialStoreRequest, service: Service) -> Dict[str, Any]:
    credential_id = await service.store_credential(body.label, body.value.get_secret_value())
    return {"id": credential_id, "label": body.label}


@router.put("/vault/{credential_id}")
async def vault_rotate(
    credential_id: str, body: CredentialRotateRequest, service: Service
) -> Dict[str, Any]:
    return await service.rotate_credential(credential_id, body.value.get_secret_value())


@router.delete("/vault/{credential_id}")
async def vault_delete(credential_id: str, service: Service) -> Dict[str, Any]:
    if not await service.delete_credential(credential_id):
        raise NotFoundError(f"Credential not found: {credential_id}")
    return {"id": credential_id, "deleted": True}


# --- Overrides ---

@router.get("/overrides", response_model=ItemsResponse)
async def list_overrides(service: Service):
    return ItemsResponse.of([o.to_dict() for o in service.list_overrides()])


@router.post("/overrides", status_code=201)
async def add_override(
    body: OverrideCreateRequest, service: Service, operator_id: OperatorId
) -> Dict[str, Any]:
    override = await service.add_override(
        operation=body.operation,
        action=body.action,
        target=body.target,
        agent_id=body.agent_id,
        source=body.source,
        expires_at=body.expires_at,
        reason=body.reason,
        operator_id=operator_id,
    )
    return override.to_dict()


@router.delete("/overrides/{override_id}")
async def remove_override(override_id: str, service: Service) -> Dict[str, Any]:
    if not await service.remove_override(override_id):
        raise NotFoundError(f"Override not found: {override_id}")
    return {"id": override_id, "deleted": True}


# --- Timed permissions ---

@router.get("/permissions", response_model=ItemsResponse)
async def list_permissions(
    service: Service,
    agent_id: Optional[str] = None,
    include_all: Annotated[bool, Query(alias="all")] = False,
):
    """Active grants; all=true includes expired and revoked ones. Expired grants are swept first."""
    permissions = await service.list_permissions(agent_id, include_inactive=include_all)
    return ItemsResponse.of([p.to_dict() for p in permissions])


@router.post("/permissions", status_code=201)
async def grant_permission(
    body: PermissionGrantRequest, service: Service, operator_id: OperatorId
) -> Dict[str, Any]:
    permission = await service.grant_permission(
        operation=body.operation,
        duration_minutes=body.duration_minutes,
        granted_by=resolve_actor(body.granted_by, operator_id),
        reason=body.reason,
        target=body.target,
        agent_id=body.agent_id,
        max_uses=body.max_uses,
    )
    return permission.to_dict()


@router.post("/permissions/check")
async def check_permission(body: PermissionCheckRequest, service: Service) -> Dict[str, Any]:
    check = service.check_permission(body.operation, body.target, body.agent_id)
    return {
        "granted": check.granted,
        "permission": check.permission.to_dict() if check.permission else None,
        "reason": check.reason,
    }


@router.post("/permissions/sweep")
async def sweep_permissions(service: Service) -> Dict[str, int]:
    return {"swept": await service.sweep_expired_permissions()}


@router.post("/permissions/{permission_id}/revoke")
async def revoke_permission(
    permission_id: str,
    service: Service,
    operator_id: OperatorId,
    body: Optional[PermissionRevokeRequest] = None,
) -> Dict[str, Any]:
    revoked_by = resolve_actor(body.revoked_by if body else None, operator_id)
    if not await service.revoke_permission(permission_id, revoked_by, body.reason if body else None):
        raise NotFoundError(f"Active permission not found: {permission_id}")
    return {"id": permission_id, "revoked": True}


# --- Derived signals ---

@router.get("/trust-scores", response_model=ItemsResponse)
async def trust_scores(service: Service, window_hours: int = 168):
    scores = await service.get_trust_scores(window_hours)
    return ItemsResponse.of([s.to_dict() for s in scores])


@router.get("/suggestions", response_model=ItemsResponse)
async def suggestions(service: Service, hours: int = 24):
    return ItemsResponse.of([s.to_dict() for s in service.get_suggested_guardrails(hours)])


@router.post("/suggestions/apply", status_code=201)
async def apply_suggestion(
    body: ApplySuggestionRequest, service: Service, operator_id: OperatorId
) -> Dict[str, Any]:
    """Explicit operator action; suggestions are never applied automatically."""
    override = await service.apply_suggestion(
        body.suggestion_id,
        resolve_actor(body.operator_id, operator_id),
        body.hours,
    )
    return override.to_dict()


@router.get("/fingerprint")
async def fingerprint(
    service: Service,
    operator: OperatorId,
    operator_id: Annotated[Optional[str], Query()] = None,
    hours: int = 720,
) -> Dict[str, Any]:
    return service.get_fingerprint(resolve_actor(operator_id, operator), hours).to_dict()


@router.get("/risk-report")
async def risk_report(service: Service, hours: int = 24) -> Dict[str, Any]:
    return (await service.get_risk_report(hours)).to_dict()


@router.get("/metrics")
async def metrics(service: Service) -> Dict[str, Any]:
    return service.get_metrics()
