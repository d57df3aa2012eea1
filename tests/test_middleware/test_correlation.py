"""Correlation ID middleware tests."""

from typing import AsyncGenerator, cast
from uuid import UUID, uuid4

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from httpx import ASGITransport, AsyncClient
from pytest import fixture, mark
from pytest_asyncio import fixture as asyncio_fixture
from starlette.types import ASGIApp

from dealbridge.middleware.correlation import (
    CorrelationMiddleware,
    is_valid_correlation_id,
)


@fixture
def correlation_app() -> FastAPI:
    """Get test application with correlation ID middleware.

    Returns:
        FastAPI application for testing
    """
    app = FastAPI()

    @app.get("/test")
    async def test_endpoint(request: Request) -> JSONResponse:
        """Test endpoint that returns correlation ID."""
        return JSONResponse(
            {
                "correlation_id": request.state.correlation_id,
                "log_context": structlog.contextvars.get_contextvars(),
            }
        )

    app.add_middleware(CorrelationMiddleware)
    return app


@asyncio_fixture
async def correlation_client(
    correlation_app: FastAPI,
) -> AsyncGenerator[AsyncClient, None]:
    """Get test client for correlation tests.

    Args:
        correlation_app: FastAPI application for testing

    Yields:
        Test client for making requests
    """
    transport = ASGITransport(app=cast(ASGIApp, correlation_app))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@mark.asyncio
async def test_generates_correlation_id(correlation_client: AsyncClient) -> None:
    """Test a correlation ID is generated when none is sent."""
    response = await correlation_client.get("/test")

    assert response.status_code == 200
    correlation_id = response.headers["X-Request-ID"]
    UUID(correlation_id)
    assert response.json()["correlation_id"] == correlation_id


@mark.asyncio
async def test_reuses_valid_correlation_id(correlation_client: AsyncClient) -> None:
    """Test a valid incoming ID is kept."""
    incoming = str(uuid4())
    response = await correlation_client.get("/test", headers={"X-Request-ID": incoming})

    assert response.headers["X-Request-ID"] == incoming
    assert response.json()["correlation_id"] == incoming


@mark.asyncio
async def test_replaces_invalid_correlation_id(correlation_client: AsyncClient) -> None:
    """Test a malformed incoming ID is replaced."""
    response = await correlation_client.get(
        "/test", headers={"X-Request-ID": "not a uuid; drop table"}
    )

    correlation_id = response.headers["X-Request-ID"]
    assert correlation_id != "not a uuid; drop table"
    UUID(correlation_id)


@mark.asyncio
async def test_binds_correlation_id_to_log_context(
    correlation_client: AsyncClient,
) -> None:
    """Test log lines emitted during the request carry the ID."""
    response = await correlation_client.get(
        "/test", headers={"X-Request-ID": "test-log-context"}
    )

    assert response.json()["log_context"] == {"correlation_id": "test-log-context"}


def test_is_valid_correlation_id() -> None:
    """Test accepted correlation ID formats."""
    assert is_valid_correlation_id(str(uuid4()))
    assert is_valid_correlation_id("test-anything")
    assert not is_valid_correlation_id("")
    assert not is_valid_correlation_id(None)
    assert not is_valid_correlation_id("12345")
