import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from config import settings
from exceptions import CodecFailureError, ToolError

# Error details that only development responses may carry
_INTERNAL_DETAIL_KEYS = ("detail",)


def error_response(exc: ToolError, request_id: str | None = None) -> JSONResponse:
    """Structured JSON body for a ToolError."""
    details = dict(exc.details)
    if isinstance(exc, CodecFailureError) and not settings.is_development:
        for key in _INTERNAL_DETAIL_KEYS:
            details.pop(key, None)

    headers = {}
    if request_id:
        headers["X-Request-ID"] = request_id

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error": exc.error_code,
            "message": exc.message,
            **details,
        },
        headers=headers,
    )


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Request ID injection and last-resort ToolError conversion.

    Order of operations per request:
    1. Reuse the caller's X-Request-ID or mint a UUID
    2. Process request
    3. Convert any ToolError that escaped the route handlers
    4. Add X-Request-ID to response
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        try:
            response = await call_next(request)
        except ToolError as exc:
            response = error_response(exc)

        response.headers["X-Request-ID"] = request_id
        return response
