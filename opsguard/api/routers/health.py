"""Health router: liveness plus pause state and ledger validity."""

from typing import Annotated

from fastapi import APIRouter, Depends, Request

from opsguard.api.dependencies import get_governance_service
from opsguard.application.governance_service import GovernanceService
from opsguard.config.settings import get_settings

router = APIRouter()


@router.get("/health")
async def health(
    request: Request,
    service: Annotated[GovernanceService, Depends(get_governance_service)],
):
    """Health check with correlation ID from request state."""
    settings = get_settings()
    stats = await service.get_stats()
    verification = await service.verify_audit_chain()
    return {
        "status": "ok" if verification.valid else "degraded",
        "is_paused": stats.is_paused,
        "chain_valid": verification.valid,
        "correlation_id": request.state.correlation_id,
        "environment": settings.environment,
        "version": settings.version,
    }
