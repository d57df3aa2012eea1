"""End-to-end deal pipeline for one CID.

Stages run strictly in order: fetch the CAR export, fold it into a piece
commitment, resolve deal parameters, submit the proposal, record the deal.
The CID lease is held for the whole run and released however it ends.
"""

import time

from structlog.stdlib import BoundLogger

from dealbridge.commp.calculator import PieceCommitment, PieceCommitmentCalculator
from dealbridge.content.cid import validate_cid
from dealbridge.content.fetcher import ContentFetcher
from dealbridge.core.config import DealPolicy
from dealbridge.core.errors import (
    ClientUnavailable,
    DealBridgeError,
    MinerNotConfigured,
)
from dealbridge.core.events import (
    DEALS_SUBMITTED_TOTAL,
    IN_FLIGHT_DEALS,
    PIPELINE_DURATION,
    PIPELINE_FAILURES_TOTAL,
    PIPELINE_STAGE_TOTAL,
)
from dealbridge.core.logging import get_logger
from dealbridge.deals.models import (
    DealParameters,
    DealProposalResult,
    DealRecord,
    PipelineStage,
)
from dealbridge.deals.registry import DealRegistry
from dealbridge.deals.resolver import DealParameterResolver
from dealbridge.deals.retry import RetryPolicy
from dealbridge.deals.submitter import DealSubmitter

logger = get_logger(__name__)


def _submit_retryable(exc: BaseException) -> bool:
    # Only failures that prove nothing reached the provider
    return isinstance(exc, ClientUnavailable)


class Orchestrator:
    """Coordinates the pipeline components for incoming requests."""

    def __init__(
        self,
        registry: DealRegistry,
        fetcher: ContentFetcher,
        calculator: PieceCommitmentCalculator,
        resolver: DealParameterResolver,
        submitter: DealSubmitter,
        miner_id: str | None,
        policy: DealPolicy,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self.registry = registry
        self.fetcher = fetcher
        self.calculator = calculator
        self.resolver = resolver
        self.submitter = submitter
        self.miner_id = miner_id
        self.policy = policy
        self.retry_policy = retry_policy or RetryPolicy()

    async def run(self, cid: str) -> DealRecord:
        """Run the pipeline for a CID and return the recorded deal.

        Raises:
            InvalidCID: If the CID is malformed (before taking the lease)
            AlreadyInFlight: If another pipeline holds the CID
            DealBridgeError: The failure of whichever stage failed
        """
        validate_cid(cid)
        if not self.miner_id:
            raise MinerNotConfigured("No storage provider (MINER_ID) configured")

        lease = self.registry.try_acquire(cid)
        IN_FLIGHT_DEALS.inc()
        log = logger.bind(cid=cid, miner_id=self.miner_id)
        stage = PipelineStage.PENDING
        started = time.monotonic()
        try:
            stage = self._enter(log, PipelineStage.FETCHING)
            commitment = await self.retry_policy.call(
                lambda: self._fetch_and_commit(log, cid), stage=stage.value
            )

            stage = self._enter(log, PipelineStage.RESOLVING)
            params = await self.retry_policy.call(
                lambda: self.resolver.resolve(
                    self.miner_id or "", commitment.padded_piece_size, self.policy
                ),
                stage=stage.value,
            )

            stage = self._enter(log, PipelineStage.SUBMITTING)
            payload_url = self.fetcher.export_url(cid)
            result = await self.retry_policy.call(
                lambda: self.submitter.submit(
                    self.miner_id or "",
                    params.client_wallet,
                    commitment,
                    params,
                    payload_url,
                    cid,
                ),
                stage=stage.value,
                retry_on=_submit_retryable,
            )
            DEALS_SUBMITTED_TOTAL.labels(provider=self.miner_id).inc()

            record = self._build_record(cid, payload_url, commitment, params, result)
            self.registry.record_success(cid, record)
            stage = self._enter(log, PipelineStage.RECORDED)
            PIPELINE_DURATION.observe(time.monotonic() - started)
            log.info(
                "deal_recorded",
                deal_uuid=record.deal_uuid,
                commp=record.commp,
                piece_size=record.piece_size,
                start_epoch=record.start_epoch,
                end_epoch=record.end_epoch,
                price_per_epoch=record.price_per_epoch,
            )
            return record
        except DealBridgeError as e:
            PIPELINE_FAILURES_TOTAL.labels(kind=e.kind, stage=stage.value).inc()
            log.warning(
                "pipeline_failed",
                stage=stage.value,
                kind=e.kind,
                error_type=type(e).__name__,
                error=e.message,
            )
            raise
        except BaseException as e:
            # Includes cancellation on client disconnect
            PIPELINE_FAILURES_TOTAL.labels(kind="Internal", stage=stage.value).inc()
            log.error("pipeline_aborted", stage=stage.value, error_type=type(e).__name__)
            raise
        finally:
            self.registry.release(lease)
            IN_FLIGHT_DEALS.dec()

    def _enter(self, log: BoundLogger, stage: PipelineStage) -> PipelineStage:
        PIPELINE_STAGE_TOTAL.labels(stage=stage.value).inc()
        log.info("pipeline_stage", stage=stage.value)
        return stage

    async def _fetch_and_commit(self, log: BoundLogger, cid: str) -> PieceCommitment:
        # A stream cannot be resumed, so a retry restarts both stages
        async with self.fetcher.fetch(cid) as stream:
            self._enter(log, PipelineStage.COMMITTING)
            commitment = await self.calculator.compute(stream)
        log.info(
            "piece_commitment_computed",
            commp=commitment.piece_cid,
            piece_size=commitment.padded_piece_size,
            car_size=commitment.payload_size,
        )
        return commitment

    def _build_record(
        self,
        cid: str,
        payload_url: str,
        commitment: PieceCommitment,
        params: DealParameters,
        result: DealProposalResult,
    ) -> DealRecord:
        return DealRecord(
            deal_uuid=result.deal_uuid,
            cid=cid,
            payload_cid=cid,
            storage_provider=params.miner_id,
            client_wallet=result.client_wallet,
            commp=result.commp,
            piece_size=commitment.padded_piece_size,
            car_size=commitment.payload_size,
            start_epoch=result.start_epoch,
            end_epoch=result.end_epoch,
            provider_collateral=result.provider_collateral,
            url=payload_url,
            price_per_epoch=result.price_per_epoch,
        )
