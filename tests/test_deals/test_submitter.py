"""Tests for deal submission."""

import pytest

from dealbridge.commp import PieceCommitmentCalculator
from dealbridge.commp.calculator import PieceCommitment
from dealbridge.core.errors import DealRejected, WalletError
from dealbridge.deals.boost import DealRequest, PriceTooLow
from dealbridge.deals.models import DealParameters
from dealbridge.deals.submitter import DealSubmitter
from tests.fixtures.pipeline import CID_A, CLIENT_WALLET, MINER_ID, FakeDealClient

PAYLOAD_URL = f"http://gateway.test/api/v0/dag/export?arg={CID_A}"


@pytest.fixture
def commitment() -> PieceCommitment:
    return PieceCommitmentCalculator().compute_bytes([bytes(127)])


@pytest.fixture
def params() -> DealParameters:
    return DealParameters(
        miner_id=MINER_ID,
        client_wallet=CLIENT_WALLET,
        start_epoch=1_005_760,
        end_epoch=1_524_160,
        provider_collateral=6000,
        price_per_epoch=0,
    )


async def _submit(
    submitter: DealSubmitter,
    commitment: PieceCommitment,
    params: DealParameters,
    wallet: str | None = CLIENT_WALLET,
):
    return await submitter.submit(
        MINER_ID, wallet, commitment, params, PAYLOAD_URL, CID_A
    )


@pytest.mark.asyncio
async def test_submit_builds_request(
    fake_deal_client: FakeDealClient,
    commitment: PieceCommitment,
    params: DealParameters,
) -> None:
    """Test the proposal carries the commitment and parameters."""
    result = await _submit(DealSubmitter(fake_deal_client), commitment, params)

    [request] = fake_deal_client.proposals
    assert request.provider == MINER_ID
    assert request.http_url == PAYLOAD_URL
    assert request.payload_cid == CID_A
    assert request.commp == commitment.piece_cid
    assert request.car_size == 127
    assert request.piece_size == 128
    assert request.start_epoch == 1_005_760
    assert request.duration == 518_400
    assert request.provider_collateral == 6000
    assert request.wallet == CLIENT_WALLET

    assert result.deal_uuid
    assert result.commp == commitment.piece_cid
    assert result.start_epoch == 1_005_760
    assert result.end_epoch == 1_524_160
    assert result.client_wallet == CLIENT_WALLET
    assert result.price_per_epoch == 0


@pytest.mark.asyncio
async def test_resubmits_at_asking_price(
    fake_deal_client: FakeDealClient,
    commitment: PieceCommitment,
    params: DealParameters,
) -> None:
    """Test a price rejection is retried at the provider's asking price."""
    fake_deal_client.failures = [PriceTooLow(31250, "less than asking price: 0 < 31250")]

    result = await _submit(DealSubmitter(fake_deal_client), commitment, params)

    assert [r.storage_price_per_epoch for r in fake_deal_client.proposals] == [0, 31250]
    assert result.price_per_epoch == 31250


@pytest.mark.asyncio
async def test_price_adjustment_is_bounded(
    fake_deal_client: FakeDealClient,
    commitment: PieceCommitment,
    params: DealParameters,
) -> None:
    """Test a provider that keeps raising its price is eventually rejected."""
    fake_deal_client.failures = [
        PriceTooLow(100, "asking 100"),
        PriceTooLow(200, "asking 200"),
    ]

    with pytest.raises(DealRejected, match="asks 200"):
        await _submit(
            DealSubmitter(fake_deal_client, price_adjust_attempts=1), commitment, params
        )

    assert len(fake_deal_client.proposals) == 2


@pytest.mark.asyncio
async def test_price_adjustment_disabled(
    fake_deal_client: FakeDealClient,
    commitment: PieceCommitment,
    params: DealParameters,
) -> None:
    """Test no resubmission when adjustments are turned off."""
    fake_deal_client.failures = [PriceTooLow(100, "asking 100")]

    with pytest.raises(DealRejected):
        await _submit(
            DealSubmitter(fake_deal_client, price_adjust_attempts=0), commitment, params
        )

    assert len(fake_deal_client.proposals) == 1


@pytest.mark.asyncio
async def test_asking_price_not_higher_is_rejected(
    fake_deal_client: FakeDealClient,
    commitment: PieceCommitment,
    params: DealParameters,
) -> None:
    """Test a nonsensical asking price does not loop."""
    fake_deal_client.failures = [PriceTooLow(50, "asking 50")]

    with pytest.raises(DealRejected):
        await _submit(
            DealSubmitter(fake_deal_client), commitment, params.with_price(100)
        )

    assert len(fake_deal_client.proposals) == 1


@pytest.mark.asyncio
async def test_other_failures_propagate(
    fake_deal_client: FakeDealClient,
    commitment: PieceCommitment,
    params: DealParameters,
) -> None:
    """Test non-price failures are not retried by the submitter."""
    fake_deal_client.failures = [WalletError("Wallet error: insufficient funds")]

    with pytest.raises(WalletError):
        await _submit(DealSubmitter(fake_deal_client), commitment, params)

    assert len(fake_deal_client.proposals) == 1


class _SilentClient:
    def __init__(self, fields: dict[str, str]) -> None:
        self.fields = fields

    async def propose(self, request: DealRequest) -> dict[str, str]:
        return self.fields

    async def deal_status(self, provider: str, deal_uuid: str) -> str:
        return "proposed"


@pytest.mark.asyncio
async def test_missing_deal_uuid_is_rejection(
    commitment: PieceCommitment, params: DealParameters
) -> None:
    """Test output without a deal uuid is not a deal."""
    with pytest.raises(DealRejected, match="deal uuid"):
        await _submit(DealSubmitter(_SilentClient({})), commitment, params)


@pytest.mark.asyncio
async def test_missing_fields_fall_back_to_parameters(
    commitment: PieceCommitment, params: DealParameters
) -> None:
    """Test fields boost did not print are filled from the request."""
    client = _SilentClient({"deal uuid": "abc", "start epoch": "not-a-number"})

    result = await _submit(DealSubmitter(client), commitment, params, wallet=None)

    assert result.deal_uuid == "abc"
    assert result.start_epoch == params.start_epoch
    assert result.end_epoch == params.end_epoch
    assert result.provider_collateral == "6000"
    assert result.commp == commitment.piece_cid
    assert result.client_wallet == ""


@pytest.mark.asyncio
async def test_reported_commp_is_kept(
    commitment: PieceCommitment, params: DealParameters
) -> None:
    """Test the commitment reported by boost is returned even if it differs."""
    other = "baga6ea4seaqf6dw7bhx3c65s4nepiic2qtgzdfyywllbkmiz6vbchd2m3oboshi"
    client = _SilentClient({"deal uuid": "abc", "commp": other})

    result = await _submit(DealSubmitter(client), commitment, params)

    assert result.commp == other
