"""FastAPI dependency injection: governance service singleton and operator identity."""

import asyncio
from typing import Optional

from fastapi import Request

from opsguard.application.governance_service import GovernanceService
from opsguard.config.settings import get_settings

DEFAULT_ACTOR = "dashboard"

_service: Optional[GovernanceService] = None
_service_lock = asyncio.Lock()


async def get_governance_service() -> GovernanceService:
    """Return the process-wide GovernanceService, creating and restoring it on first use."""
    global _service
    if _service is None:
        async with _service_lock:
            if _service is None:
                _service = await GovernanceService.create(get_settings())
    return _service


def set_governance_service(service: Optional[GovernanceService]) -> None:
    """Install (or clear) the singleton. Used at startup and by tests."""
    global _service
    _service = service


def get_operator_id(request: Request) -> Optional[str]:
    """Operator identity from request.state (set by middleware), if any."""
    return getattr(request.state, "operator_id", None)


def resolve_actor(explicit: Optional[str], operator_id: Optional[str]) -> str:
    """Body-supplied actor, else the operator header, else the dashboard identity."""
    return explicit or operator_id or DEFAULT_ACTOR
