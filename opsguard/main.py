# opsguard/main.py

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from opsguard.api import dependencies
from opsguard.api.middleware import (
    CorrelationIdMiddleware,
    OperatorContextMiddleware,
    RequestAuditMiddleware,
)
from opsguard.api.routers import health, security
from opsguard.application.governance_service import GovernanceService
from opsguard.config.logging import configure_logging
from opsguard.config.settings import get_settings
from opsguard.domain.exceptions import (
    AlreadyResolvedError,
    GovernanceError,
    NotFoundError,
    ValidationError,
)
from opsguard.governance.exceptions import (
    ChainIntegrityError,
    InvalidRuleTableError,
    PersistenceDegradedError,
)
from opsguard.infrastructure.storage.interface import StorageError
from opsguard.security.exceptions import EncryptionError, VaultNotInitializedError

logger = logging.getLogger(__name__)

settings = get_settings()
configure_logging(settings.log_level)

# Most specific class wins: the handler walks the exception's MRO.
ERROR_STATUS = {
    ValidationError: 422,
    NotFoundError: 404,
    AlreadyResolvedError: 409,
    VaultNotInitializedError: 503,
    EncryptionError: 400,
    PersistenceDegradedError: 503,
    ChainIntegrityError: 500,
    InvalidRuleTableError: 500,
    GovernanceError: 400,
}


def status_for(exc: GovernanceError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return 400


@asynccontextmanager
async def lifespan(app: FastAPI):
    dependencies.set_governance_service(await GovernanceService.create(settings))
    yield
    dependencies.set_governance_service(None)


app = FastAPI(
    title=settings.app_name,
    version=settings.version,
    debug=settings.debug,
    lifespan=lifespan,
)

# Middleware order: last added runs first (outermost). Request flow: CorrelationId -> OperatorContext -> RequestAudit.
app.add_middleware(RequestAuditMiddleware)
app.add_middleware(OperatorContextMiddleware)
app.add_middleware(CorrelationIdMiddleware)


@app.exception_handler(GovernanceError)
async def governance_error_handler(request, exc: GovernanceError):
    return JSONResponse(status_code=status_for(exc), content={"code": exc.code, "detail": exc.message})


@app.exception_handler(StorageError)
async def storage_error_handler(request, exc: StorageError):
    logger.error("storage_unavailable", extra={"error_type": type(exc).__name__})
    return JSONResponse(
        status_code=503,
        content={"code": "storage_unavailable", "detail": "Storage unavailable"},
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request, exc: Exception):
    logger.error("unexpected_error", extra={"error_type": type(exc).__name__})
    return JSONResponse(
        status_code=500,
        content={"code": "internal_error", "detail": "Internal server error"},
    )


# Routers: /health, /security
app.include_router(health.router)
app.include_router(security.router, prefix="/security")
