"""Proposes deals through the deal-making client."""

from dealbridge.commp.calculator import PieceCommitment
from dealbridge.commp.cid import commp_from_piece_cid
from dealbridge.core.errors import DealRejected, InvalidCID
from dealbridge.core.logging import get_logger
from dealbridge.deals.boost import DealClient, DealRequest, PriceTooLow
from dealbridge.deals.models import DealParameters, DealProposalResult

logger = get_logger(__name__)


class DealSubmitter:
    """Turns a commitment and resolved parameters into a deal proposal.

    Proposals are not idempotent; callers must make sure a CID is submitted
    by one pipeline at a time.
    """

    def __init__(self, client: DealClient, price_adjust_attempts: int = 3) -> None:
        """Initialize the submitter.

        Args:
            client: Deal-making client used to send proposals
            price_adjust_attempts: How many times a proposal is re-sent at
                the provider's asking price after a price rejection
        """
        self.client = client
        self.price_adjust_attempts = price_adjust_attempts

    async def submit(
        self,
        miner_id: str,
        client_wallet: str | None,
        commitment: PieceCommitment,
        params: DealParameters,
        payload_url: str,
        payload_cid: str,
    ) -> DealProposalResult:
        """Propose a deal and return what the client reported.

        Raises:
            DealRejected: If the provider declined the terms
            WalletError: If the wallet is missing or underfunded
            ClientUnavailable: If the deal client cannot be reached
            DealTimeout: If the deal client did not answer in time
        """
        price = params.price_per_epoch
        adjustments = 0
        while True:
            request = DealRequest(
                provider=miner_id,
                http_url=payload_url,
                commp=commitment.piece_cid,
                car_size=commitment.payload_size,
                piece_size=commitment.padded_piece_size,
                payload_cid=payload_cid,
                start_epoch=params.start_epoch,
                duration=params.duration_epochs,
                provider_collateral=params.provider_collateral,
                storage_price_per_epoch=price,
                verified=params.verified,
                wallet=client_wallet,
            )
            try:
                fields = await self.client.propose(request)
            except PriceTooLow as e:
                if adjustments >= self.price_adjust_attempts or e.asking_price <= price:
                    raise DealRejected(
                        f"Provider {miner_id} asks {e.asking_price} per epoch: {e}"
                    ) from e
                adjustments += 1
                logger.info(
                    "deal_price_adjusted",
                    miner_id=miner_id,
                    offered=price,
                    asking=e.asking_price,
                    attempt=adjustments,
                )
                price = e.asking_price
                continue
            break

        return self._to_result(fields, commitment, params, client_wallet, price)

    def _to_result(
        self,
        fields: dict[str, str],
        commitment: PieceCommitment,
        params: DealParameters,
        client_wallet: str | None,
        price: int,
    ) -> DealProposalResult:
        deal_uuid = fields.get("deal uuid")
        if not deal_uuid:
            raise DealRejected("Deal client did not report a deal uuid")

        commp = fields.get("commp", commitment.piece_cid)
        try:
            if commp_from_piece_cid(commp) != commitment.commp:
                logger.warning(
                    "deal_commp_mismatch",
                    deal_uuid=deal_uuid,
                    reported=commp,
                    computed=commitment.piece_cid,
                )
        except (InvalidCID, ValueError):
            logger.warning("deal_commp_unparseable", deal_uuid=deal_uuid, reported=commp)

        return DealProposalResult(
            deal_uuid=deal_uuid,
            client_wallet=fields.get("client wallet") or client_wallet or "",
            commp=commp,
            start_epoch=_int_field(fields, "start epoch", params.start_epoch),
            end_epoch=_int_field(fields, "end epoch", params.end_epoch),
            provider_collateral=fields.get(
                "provider collateral", str(params.provider_collateral)
            ),
            price_per_epoch=price,
        )


def _int_field(fields: dict[str, str], key: str, default: int) -> int:
    try:
        return int(fields[key])
    except (KeyError, ValueError):
        return default
