"""Main FastAPI application module."""

import httpx
from fastapi import FastAPI, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from dealbridge.api.v1.router import router as v1_router
from dealbridge.chain.lotus import LotusClient
from dealbridge.commp.calculator import PieceCommitmentCalculator
from dealbridge.content.fetcher import ContentFetcher
from dealbridge.core.config import Settings
from dealbridge.core.events import lifespan
from dealbridge.deals.boost import BoostClient, DealClient
from dealbridge.deals.orchestrator import Orchestrator
from dealbridge.deals.poller import DealStatusPoller
from dealbridge.deals.registry import DealRegistry
from dealbridge.deals.resolver import DealParameterResolver
from dealbridge.deals.retry import RetryPolicy
from dealbridge.deals.submitter import DealSubmitter
from dealbridge.middleware.correlation import CorrelationMiddleware
from dealbridge.middleware.errors import ErrorHandlingMiddleware
from dealbridge.middleware.metrics import MetricsMiddleware


def build_orchestrator(
    settings: Settings,
    registry: DealRegistry,
    deal_client: DealClient,
    http_client: httpx.AsyncClient | None = None,
    retry_policy: RetryPolicy | None = None,
) -> Orchestrator:
    """Wire the pipeline components from settings.

    Args:
        settings: Application settings
        registry: Registry shared with the API and the status poller
        deal_client: Deal-making client used for proposals
        http_client: Optional shared client for gateway and chain calls
        retry_policy: Overrides the retry policy derived from settings
    """
    fetcher = ContentFetcher(
        gateway=settings.IPFS_GATEWAY,
        timeout=settings.GATEWAY_TIMEOUT,
        chunk_size=settings.COMMP_CHUNK_SIZE,
        client=http_client,
    )
    chain = LotusClient(
        api_url=settings.LOTUS_API_URL,
        token=settings.LOTUS_API_TOKEN,
        timeout=settings.CHAIN_TIMEOUT,
        client=http_client,
    )
    if retry_policy is None:
        retry_policy = RetryPolicy(
            max_attempts=settings.RETRY_MAX_ATTEMPTS,
            base_delay=settings.RETRY_BASE_DELAY,
            max_delay=settings.RETRY_MAX_DELAY,
            backoff_factor=settings.RETRY_BACKOFF_FACTOR,
        )
    miner_id = settings.MINER_ID
    return Orchestrator(
        registry=registry,
        fetcher=fetcher,
        calculator=PieceCommitmentCalculator(),
        resolver=DealParameterResolver(chain, client_wallet=settings.CLIENT_WALLET),
        submitter=DealSubmitter(
            deal_client, price_adjust_attempts=settings.PRICE_ADJUST_ATTEMPTS
        ),
        miner_id=miner_id,
        policy=settings.policy_for(miner_id or ""),
        retry_policy=retry_policy,
    )


def create_app(
    settings: Settings | None = None,
    deal_client: DealClient | None = None,
    http_client: httpx.AsyncClient | None = None,
    retry_policy: RetryPolicy | None = None,
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        settings: Application settings; loaded from the environment if omitted
        deal_client: Deal-making client; a ``BoostClient`` if omitted
        http_client: Optional shared HTTP client for outbound calls
        retry_policy: Optional retry policy override

    Returns:
        Configured application
    """
    settings = settings or Settings()
    deal_client = deal_client or BoostClient(
        binary=settings.BOOST_BIN, timeout=settings.DEAL_TIMEOUT
    )
    registry = DealRegistry()

    app = FastAPI(
        title=settings.app_name,
        description="Turns IPFS CIDs into Filecoin storage deal proposals",
        version=settings.version,
        docs_url="/docs",
        redoc_url=None,
        openapi_url="/openapi.json",
        default_response_class=JSONResponse,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.registry = registry
    app.state.orchestrator = build_orchestrator(
        settings, registry, deal_client, http_client, retry_policy
    )
    app.state.poller = (
        DealStatusPoller(registry, deal_client, settings.STATUS_POLL_INTERVAL)
        if settings.STATUS_POLL_INTERVAL > 0
        else None
    )

    # Add middleware in order (inside -> out):
    # 1. Correlation (outermost, adds request ID to logs)
    # 2. Metrics (tracks all requests)
    # 3. Error handling (innermost - handles all errors)
    app.add_middleware(ErrorHandlingMiddleware)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(CorrelationMiddleware)

    @app.get("/metrics", include_in_schema=False)
    async def metrics() -> Response:
        """Expose Prometheus metrics."""
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(v1_router)
    return app


app = create_app()
