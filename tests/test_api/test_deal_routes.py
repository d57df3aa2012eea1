"""Tests for the deal API endpoints."""

import asyncio
from typing import cast

import pytest
from httpx import ASGITransport, AsyncClient
from starlette.types import ASGIApp

from dealbridge.core.config import Settings
from dealbridge.deals.retry import RetryPolicy
from dealbridge.main import create_app
from tests.fixtures.pipeline import (
    CID_A,
    CID_B,
    CID_MISSING,
    CLIENT_WALLET,
    GATEWAY_URL,
    MINER_ID,
    FakeDealClient,
    FakeGateway,
    FakeLotus,
    sample_payload,
)

DEAL_FIELDS = {
    "deal_uuid",
    "storage_provider",
    "client_wallet",
    "payload_cid",
    "url",
    "commp",
    "start_epoch",
    "end_epoch",
    "provider_collateral",
}


@pytest.fixture(autouse=True)
def gateway_content(fake_gateway: FakeGateway) -> None:
    """Serve content for two CIDs."""
    fake_gateway.contents[CID_A] = sample_payload(1 << 20)
    fake_gateway.contents[CID_B] = sample_payload(500)


class TestPutCid:
    """Test POST /put/{cid}."""

    @pytest.mark.asyncio
    async def test_should_make_deal(
        self, test_app_async_client: AsyncClient, fake_lotus: FakeLotus
    ):
        """Test a deal is made and its metadata returned."""
        # Act
        response = await test_app_async_client.post(f"/put/{CID_A}")

        # Assert
        assert response.status_code == 200
        data = response.json()
        assert set(data) == DEAL_FIELDS
        assert data["payload_cid"] == CID_A
        assert data["storage_provider"] == MINER_ID
        assert data["client_wallet"] == CLIENT_WALLET
        assert data["url"] == f"{GATEWAY_URL}/api/v0/dag/export?arg={CID_A}"
        assert (
            data["commp"]
            == "baga6ea4seaqf6dw7bhx3c65s4nepiic2qtgzdfyywllbkmiz6vbchd2m3oboshi"
        )
        assert data["start_epoch"] == fake_lotus.height + 5760
        assert data["start_epoch"] < data["end_epoch"]
        assert data["provider_collateral"] == "6000"
        assert "X-Request-ID" in response.headers

    @pytest.mark.asyncio
    async def test_should_propose_padded_piece_size(
        self, test_app_async_client: AsyncClient, fake_deal_client: FakeDealClient
    ):
        """Test the proposal uses the padded piece and CAR sizes."""
        await test_app_async_client.post(f"/put/{CID_A}")

        [request] = fake_deal_client.proposals
        assert request.piece_size == 2 << 20
        assert request.car_size == 1 << 20

    @pytest.mark.asyncio
    async def test_concurrent_same_cid_conflicts(
        self, test_app_async_client: AsyncClient, fake_deal_client: FakeDealClient
    ):
        """Test a second request for an in-flight CID gets 409."""
        fake_deal_client.gate = asyncio.Event()
        first = asyncio.create_task(test_app_async_client.post(f"/put/{CID_A}"))
        for _ in range(2000):
            if fake_deal_client.proposals:
                break
            await asyncio.sleep(0.001)

        second = await test_app_async_client.post(f"/put/{CID_A}")
        fake_deal_client.gate.set()
        first_response = await first

        assert first_response.status_code == 200
        assert second.status_code == 409
        assert second.json()["error"] == "Conflict"
        assert len(fake_deal_client.proposals) == 1

    @pytest.mark.asyncio
    async def test_different_cids_are_independent(
        self, test_app_async_client: AsyncClient
    ):
        """Test concurrent requests for different CIDs both succeed."""
        response_a, response_b = await asyncio.gather(
            test_app_async_client.post(f"/put/{CID_A}"),
            test_app_async_client.post(f"/put/{CID_B}"),
        )

        assert response_a.status_code == 200
        assert response_b.status_code == 200
        assert response_a.json()["payload_cid"] == CID_A
        assert response_b.json()["payload_cid"] == CID_B

    @pytest.mark.asyncio
    async def test_missing_content(self, test_app_async_client: AsyncClient):
        """Test a CID the gateway does not have is 404 NotFound."""
        response = await test_app_async_client.post(f"/put/{CID_MISSING}")

        assert response.status_code == 404
        data = response.json()
        assert data["error"] == "NotFound"
        assert data["status_code"] == 404
        assert data["correlation_id"] == response.headers["X-Request-ID"]

    @pytest.mark.asyncio
    async def test_malformed_cid(
        self, test_app_async_client: AsyncClient, fake_gateway: FakeGateway
    ):
        """Test a malformed CID is 400 without contacting the gateway."""
        response = await test_app_async_client.post("/put/not-a-cid")

        assert response.status_code == 400
        assert response.json()["error"] == "InvalidInput"
        assert fake_gateway.requests == []

    @pytest.mark.asyncio
    async def test_gateway_unreachable(
        self, test_app_async_client: AsyncClient, fake_gateway: FakeGateway
    ):
        """Test an unreachable gateway is a transient 502."""
        fake_gateway.unreachable = True

        response = await test_app_async_client.post(f"/put/{CID_A}")

        assert response.status_code == 502
        assert response.json()["error"] == "Transient"

    @pytest.mark.asyncio
    async def test_unknown_miner(
        self, test_app_async_client: AsyncClient, fake_lotus: FakeLotus
    ):
        """Test a miner without an on-chain actor is 422 PolicyRejected."""
        fake_lotus.miners = set()

        response = await test_app_async_client.post(f"/put/{CID_A}")

        assert response.status_code == 422
        assert response.json()["error"] == "PolicyRejected"

    @pytest.mark.asyncio
    async def test_wrong_method(self, test_app_async_client: AsyncClient):
        """Test only POST is accepted."""
        response = await test_app_async_client.get(f"/put/{CID_A}")

        assert response.status_code == 405

    @pytest.mark.asyncio
    async def test_without_configured_miner(
        self,
        test_settings: Settings,
        fake_deal_client: FakeDealClient,
        upstream_client: AsyncClient,
        fast_retry: RetryPolicy,
    ):
        """Test requests are refused when no miner is configured."""
        settings = test_settings.model_copy(update={"MINER_ID": None})
        app = create_app(
            settings,
            deal_client=fake_deal_client,
            http_client=upstream_client,
            retry_policy=fast_retry,
        )
        transport = ASGITransport(app=cast(ASGIApp, app))

        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.post(f"/put/{CID_A}")

        assert response.status_code == 422
        assert response.json()["error"] == "PolicyRejected"
        assert fake_deal_client.proposals == []


class TestGetDeal:
    """Test GET /deals/{cid}."""

    @pytest.mark.asyncio
    async def test_should_return_recorded_deal(
        self, test_app_async_client: AsyncClient
    ):
        """Test the last deal for a CID is returned with its status."""
        put = await test_app_async_client.post(f"/put/{CID_B}")

        response = await test_app_async_client.get(f"/deals/{CID_B}")

        assert response.status_code == 200
        data = response.json()
        assert data["deal_uuid"] == put.json()["deal_uuid"]
        assert data["status"] == "proposed"
        assert data["piece_size"] == 512
        assert data["car_size"] == 500
        assert data["price_per_epoch"] == 0
        assert "created_at" in data

    @pytest.mark.asyncio
    async def test_unknown_deal(self, test_app_async_client: AsyncClient):
        """Test a CID without a deal is 404."""
        response = await test_app_async_client.get(f"/deals/{CID_A}")

        assert response.status_code == 404
        assert response.json()["error"] == "NotFound"

    @pytest.mark.asyncio
    async def test_malformed_cid(self, test_app_async_client: AsyncClient):
        """Test lookups validate the CID."""
        response = await test_app_async_client.get("/deals/nope")

        assert response.status_code == 400


class TestServiceEndpoints:
    """Test health and metrics."""

    @pytest.mark.asyncio
    async def test_health(self, test_app_async_client: AsyncClient):
        """Test the health endpoint reports the configured miner."""
        response = await test_app_async_client.get("/health")

        assert response.status_code == 200
        assert response.json() == {
            "status": "healthy",
            "version": "0.1.0",
            "miner_id": MINER_ID,
            "in_flight": 0,
        }

    @pytest.mark.asyncio
    async def test_metrics(self, test_app_async_client: AsyncClient):
        """Test Prometheus metrics are exposed."""
        await test_app_async_client.post(f"/put/{CID_B}")

        response = await test_app_async_client.get("/metrics")

        assert response.status_code == 200
        assert "dealbridge_pipeline_stage_total" in response.text
        assert "dealbridge_deals_submitted_total" in response.text

    @pytest.mark.asyncio
    async def test_unknown_route(self, test_app_async_client: AsyncClient):
        """Test unknown paths use the error body."""
        response = await test_app_async_client.get("/nowhere")

        assert response.status_code == 404
        assert response.json()["error"] == "NotFound"
