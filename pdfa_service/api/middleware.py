from __future__ import annotations

from uuid import uuid4

from fastapi import Request, status
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response
from starlette.types import ASGIApp

from pdfa_service.core.config import get_settings


CORRELATION_ID_HEADER = "X-Correlation-ID"


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Tag every request with a correlation id.

    The id comes from the ``X-Correlation-ID`` request header or is generated,
    is echoed on the response, and is bound to all log records emitted while the
    request is handled.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        correlation_id = request.headers.get(CORRELATION_ID_HEADER) or str(uuid4())
        request.state.correlation_id = correlation_id
        with logger.contextualize(correlation_id=correlation_id):
            response = await call_next(request)
        response.headers[CORRELATION_ID_HEADER] = correlation_id
        return response


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Reject bodies whose declared ``Content-Length`` exceeds the limit.

    The check runs before the body is read, so an oversized upload is never
    buffered or parsed. ``max_bytes=None`` reads the limit from settings.
    """

    def __init__(self, app: ASGIApp, max_bytes: int | None = None) -> None:
        super().__init__(app)
        self._max_bytes = max_bytes

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        max_bytes = self._max_bytes if self._max_bytes is not None else get_settings().max_request_bytes
        declared = request.headers.get("content-length")
        if declared is not None and declared.isdigit() and int(declared) > max_bytes:
            logger.warning("Rejected request body of {} bytes (limit {})", declared, max_bytes)
            return JSONResponse(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                content={
                    "success": False,
                    "base64PdfA": "",
                    "errorMessage": f"Request body exceeds maximum allowed size ({max_bytes // 1024 // 1024} MB)",
                },
            )
        return await call_next(request)
