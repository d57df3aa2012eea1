"""Application metrics and startup/shutdown events."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from prometheus_client import Counter, Gauge, Histogram

from dealbridge.core.logging import get_logger

logger = get_logger(__name__)

# Prometheus metrics
REQUESTS_TOTAL = Counter(
    "dealbridge_http_requests_total",
    "Total number of HTTP requests",
    labelnames=["method", "path"],
)

RESPONSES_TOTAL = Counter(
    "dealbridge_http_responses_total",
    "Total number of HTTP responses",
    labelnames=["status_code"],
)

PIPELINE_STAGE_TOTAL = Counter(
    "dealbridge_pipeline_stage_total",
    "Pipeline stage transitions",
    labelnames=["stage"],
)

PIPELINE_FAILURES_TOTAL = Counter(
    "dealbridge_pipeline_failures_total",
    "Pipeline runs ending in failure",
    labelnames=["kind", "stage"],
)

PIPELINE_RETRIES_TOTAL = Counter(
    "dealbridge_pipeline_retries_total",
    "Retried pipeline stages",
    labelnames=["stage"],
)

DEALS_SUBMITTED_TOTAL = Counter(
    "dealbridge_deals_submitted_total",
    "Deals proposed to a storage provider",
    labelnames=["provider"],
)

PIPELINE_DURATION = Histogram(
    "dealbridge_pipeline_duration_seconds",
    "Duration of successful pipeline runs",
    buckets=(1, 5, 15, 30, 60, 120, 300, 600, 1800),
)

IN_FLIGHT_DEALS = Gauge(
    "dealbridge_in_flight_deals",
    "Number of CIDs with a pipeline currently running",
)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start background services on startup and stop them on shutdown.

    Expects ``app.state.poller`` to be set by the application factory; a
    value of None means status polling is disabled.
    """
    poller = getattr(app.state, "poller", None)
    if poller is not None:
        poller.start()
        logger.info("status_poller_started", interval=poller.interval)
    try:
        yield
    finally:
        if poller is not None:
            await poller.stop()
            logger.info("status_poller_stopped")
