"""Request metrics middleware for Prometheus monitoring."""

import time

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from dealbridge.core.events import REQUESTS_TOTAL, RESPONSES_TOTAL
from dealbridge.core.logging import get_logger

logger = get_logger(__name__)


def route_path(request: Request) -> str:
    """Path template of the matched route (``/put/{cid}``), or the raw path.

    Labelling by template keeps one time series per endpoint instead of one
    per CID.
    """
    route = request.scope.get("route")
    template = getattr(route, "path", None)
    if template:
        return str(template)
    return str(request.url.path).rstrip("/") or "/"


class MetricsMiddleware(BaseHTTPMiddleware):
    """
    Middleware to collect request/response metrics.

    Records:
    - Total requests by method and route
    - Total responses by status code
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        """
        Process the request/response cycle and record metrics.

        Args:
        ----
            request: The incoming request
            call_next: The next handler in the middleware chain

        Returns:
        -------
            The response from downstream handlers
        """
        start_time = time.monotonic()
        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "request_failed",
                method=request.method,
                path=request.url.path,
                error=str(e),
            )
            raise

        duration = time.monotonic() - start_time
        REQUESTS_TOTAL.labels(method=request.method, path=route_path(request)).inc()
        RESPONSES_TOTAL.labels(status_code=str(response.status_code)).inc()

        logger.info(
            "request_processed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration=round(duration, 4),
        )
        return response
