"""Derives deal parameters from chain state and the configured policy."""

from dealbridge.chain.lotus import LotusClient
from dealbridge.core.config import DealPolicy
from dealbridge.core.errors import UnknownMiner
from dealbridge.core.logging import get_logger
from dealbridge.deals.models import DealParameters

logger = get_logger(__name__)

# Collateral markup over the chain minimum, as a fraction (6/5 = +20%)
COLLATERAL_MARKUP = (6, 5)


class DealParameterResolver:
    """Resolves start/end epochs, collateral and price for a deal.

    Nothing is cached: the chain height is read on every call.
    """

    def __init__(self, chain: LotusClient, client_wallet: str | None = None) -> None:
        self.chain = chain
        self.client_wallet = client_wallet

    async def resolve(
        self, miner_id: str, padded_piece_size: int, policy: DealPolicy
    ) -> DealParameters:
        """Resolve the parameters of a deal with ``miner_id``.

        Raises:
            UnknownMiner: If the miner has no on-chain actor
            ChainUnreachable: If chain state cannot be read
        """
        if not miner_id:
            raise UnknownMiner("No storage provider given")

        await self.chain.miner_info(miner_id)
        height = await self.chain.chain_head_height()

        start_epoch = height + policy.start_lead_epochs
        end_epoch = start_epoch + policy.duration_epochs

        collateral = policy.provider_collateral
        if collateral is None:
            minimum, _maximum = await self.chain.provider_collateral_bounds(
                padded_piece_size, policy.verified
            )
            numerator, denominator = COLLATERAL_MARKUP
            collateral = minimum * numerator // denominator

        params = DealParameters(
            miner_id=miner_id,
            client_wallet=self.client_wallet,
            start_epoch=start_epoch,
            end_epoch=end_epoch,
            provider_collateral=collateral,
            price_per_epoch=policy.price_per_epoch,
            verified=policy.verified,
        )
        logger.info(
            "deal_parameters_resolved",
            miner_id=miner_id,
            chain_height=height,
            start_epoch=start_epoch,
            end_epoch=end_epoch,
            provider_collateral=str(collateral),
            price_per_epoch=policy.price_per_epoch,
        )
        return params
