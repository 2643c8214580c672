"""API middleware: correlation ID, operator identity, request audit log."""

import logging
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from opsguard.core.context import correlation_id_ctx, operator_id_ctx

logger = logging.getLogger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"
OPERATOR_HEADER = "X-Operator-ID"


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Generate or preserve correlation ID; attach to request.state, response header, and logging context."""

    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        request.state.correlation_id = correlation_id
        correlation_id_ctx.set(correlation_id)

        response = await call_next(request)
        response.headers[CORRELATION_HEADER] = correlation_id
        return response


class OperatorContextMiddleware(BaseHTTPMiddleware):
    """Attach the X-Operator-ID identity (resolved upstream) to request.state and the logging context. Optional."""

    async def dispatch(self, request: Request, call_next) -> Response:
        operator_id = (request.headers.get(OPERATOR_HEADER) or "").strip() or None
        request.state.operator_id = operator_id
        operator_id_ctx.set(operator_id)
        return await call_next(request)


class RequestAuditMiddleware(BaseHTTPMiddleware):
    """After response: log one structured request_audit record. Bodies are never logged."""

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)
        logger.info(
            "request_audit",
            extra={
                "path": request.url.path,
                "method": request.method,
                "status_code": response.status_code,
            },
        )
        return response
