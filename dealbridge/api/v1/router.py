"""Deal API endpoints."""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from dealbridge.api.v1.models import (
    DealResponse,
    DealStatusResponse,
    ErrorResponse,
    HealthResponse,
)
from dealbridge.content.cid import validate_cid
from dealbridge.deals.orchestrator import Orchestrator
from dealbridge.deals.registry import DealRegistry

router = APIRouter(default_response_class=JSONResponse)

ERROR_RESPONSES: dict[int | str, dict[str, object]] = {
    400: {"model": ErrorResponse, "description": "Malformed CID or empty content"},
    404: {"model": ErrorResponse, "description": "Content or deal not found"},
    409: {"model": ErrorResponse, "description": "A deal for the CID is in flight"},
    422: {"model": ErrorResponse, "description": "Deal terms or wallet rejected"},
    502: {"model": ErrorResponse, "description": "Upstream service unavailable"},
}


def get_orchestrator(request: Request) -> Orchestrator:
    return request.app.state.orchestrator


def get_registry(request: Request) -> DealRegistry:
    return request.app.state.registry


@router.post(
    "/put/{cid}",
    response_model=DealResponse,
    responses=ERROR_RESPONSES,
    tags=["deals"],
)
async def put_cid(cid: str, request: Request) -> DealResponse:
    """
    Make a storage deal for the content behind a CID.

    Streams the CAR export from the gateway, computes the piece commitment,
    resolves deal parameters from the chain and proposes the deal to the
    configured storage provider. Only one request per CID runs at a time;
    concurrent requests for the same CID get ``409 Conflict``.
    """
    record = await get_orchestrator(request).run(cid)
    return DealResponse.from_record(record)


@router.get(
    "/deals/{cid}",
    response_model=DealStatusResponse,
    responses=ERROR_RESPONSES,
    tags=["deals"],
)
async def get_deal(cid: str, request: Request) -> DealStatusResponse:
    """Latest recorded deal for a CID, with its last known status."""
    validate_cid(cid)
    record = get_registry(request).lookup(cid)
    return DealStatusResponse.from_record(record)


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(request: Request) -> HealthResponse:
    """Report service liveness and the configured storage provider."""
    settings = request.app.state.settings
    return HealthResponse(
        status="healthy",
        version=settings.version,
        miner_id=settings.MINER_ID,
        in_flight=get_registry(request).in_flight_count(),
    )
