"""Error handling middleware."""

from fastapi import HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.status import (
    HTTP_400_BAD_REQUEST,
    HTTP_404_NOT_FOUND,
    HTTP_405_METHOD_NOT_ALLOWED,
    HTTP_409_CONFLICT,
    HTTP_422_UNPROCESSABLE_ENTITY,
    HTTP_500_INTERNAL_SERVER_ERROR,
)
from starlette.types import ASGIApp

from dealbridge.core.errors import (
    CONFLICT,
    INTERNAL,
    INVALID_INPUT,
    NOT_FOUND,
    DealBridgeError,
)
from dealbridge.core.logging import get_logger

logger = get_logger(__name__)

# Error kinds for plain HTTP errors raised by routing or validation
STATUS_KINDS: dict[int, str] = {
    HTTP_400_BAD_REQUEST: INVALID_INPUT,
    HTTP_404_NOT_FOUND: NOT_FOUND,
    HTTP_405_METHOD_NOT_ALLOWED: "MethodNotAllowed",
    HTTP_409_CONFLICT: CONFLICT,
    HTTP_422_UNPROCESSABLE_ENTITY: INVALID_INPUT,
}

STATUS_MESSAGES: dict[int, str] = {
    HTTP_404_NOT_FOUND: "Not Found",
    HTTP_405_METHOD_NOT_ALLOWED: "Method Not Allowed",
}


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Middleware to handle errors and provide consistent error responses.

    Every error is rendered as ``{error, message, status_code,
    correlation_id}`` where ``error`` is the failure kind a client can act
    on (e.g. ``Transient`` means try again later).
    """

    def __init__(self, app: ASGIApp) -> None:
        """
        Initialize middleware.

        Args:
        ----
            app: The ASGI application
        """
        super().__init__(app)

    def _get_error_detail(self, exc: Exception) -> tuple[str, str, int]:
        """Get error kind, detail and status code from an exception."""
        if isinstance(exc, DealBridgeError):
            return exc.kind, exc.message, exc.status_code
        if isinstance(exc, HTTPException):
            kind = STATUS_KINDS.get(exc.status_code, "HTTPException")
            return kind, str(exc.detail), exc.status_code
        if isinstance(exc, RequestValidationError):
            return INVALID_INPUT, str(exc.errors()), HTTP_422_UNPROCESSABLE_ENTITY
        return INTERNAL, "Internal server error", HTTP_500_INTERNAL_SERVER_ERROR

    def _create_error_response(
        self,
        error_kind: str,
        detail: str,
        status_code: int,
        correlation_id: str | None,
    ) -> JSONResponse:
        """Create JSON error response with optional correlation ID."""
        response = JSONResponse(
            status_code=status_code,
            content={
                "error": error_kind,
                "message": detail,
                "status_code": status_code,
                "correlation_id": correlation_id if correlation_id else "unknown",
            },
            media_type="application/json",
        )
        if correlation_id:
            response.headers["X-Request-ID"] = correlation_id
        return response

    def _log_error(
        self,
        request: Request,
        exc: Exception,
        error_kind: str,
        detail: str,
        status_code: int,
        correlation_id: str | None,
    ) -> None:
        """Log error details."""
        if status_code >= HTTP_500_INTERNAL_SERVER_ERROR:
            log = logger.error
        else:
            log = logger.warning
        log(
            "request_error",
            error_kind=error_kind,
            error_type=type(exc).__name__,
            error_message=detail if error_kind != INTERNAL else str(exc),
            status_code=status_code,
            path=request.url.path,
            method=request.method,
            correlation_id=correlation_id,
            exc_info=error_kind == INTERNAL,
        )

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        """
        Process the request/response cycle and handle errors.

        Args:
        ----
            request: The incoming request
            call_next: The next handler in the middleware chain

        Returns:
        -------
            The response from downstream handlers or error response
        """
        try:
            response = await call_next(request)

            # Only handle plain error responses from routing
            if response.status_code not in STATUS_MESSAGES:
                return response

            raise HTTPException(
                status_code=response.status_code,
                detail=STATUS_MESSAGES[response.status_code],
            )

        except Exception as exc:
            correlation_id = getattr(request.state, "correlation_id", None)
            error_kind, detail, status_code = self._get_error_detail(exc)

            self._log_error(
                request, exc, error_kind, detail, status_code, correlation_id
            )
            return self._create_error_response(
                error_kind, detail, status_code, correlation_id
            )
