"""Data models for the deal pipeline."""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PipelineStage(str, Enum):
    """States of one pipeline run."""

    PENDING = "pending"
    FETCHING = "fetching"
    COMMITTING = "committing"
    RESOLVING = "resolving"
    SUBMITTING = "submitting"
    RECORDED = "recorded"
    FAILED = "failed"


# Deal statuses after which the status poller stops asking. boost reports
# "Complete" once the deal is done, "Sealer: Proving" once the sector is
# sealed and "Error: <reason>" for failed deals.
TERMINAL_DEAL_STATUSES = frozenset(
    {
        "complete",
        "sealer: proving",
        "active",
        "sealed",
        "failed",
        "error",
        "rejected",
        "expired",
        "slashed",
    }
)
TERMINAL_STATUS_PREFIXES = ("error", "failed", "rejected")

PROPOSED_STATUS = "proposed"


def is_terminal_status(status: str) -> bool:
    """Whether a deal status means the deal will not change any more."""
    normalized = " ".join(status.lower().split())
    return normalized in TERMINAL_DEAL_STATUSES or normalized.startswith(
        TERMINAL_STATUS_PREFIXES
    )


@dataclass(frozen=True)
class DealParameters:
    """Economics of one deal proposal, resolved fresh for every request."""

    miner_id: str
    client_wallet: str | None
    start_epoch: int
    end_epoch: int
    provider_collateral: int
    price_per_epoch: int
    verified: bool = False

    def __post_init__(self) -> None:
        if self.start_epoch >= self.end_epoch:
            raise ValueError(
                f"start_epoch {self.start_epoch} must be before end_epoch {self.end_epoch}"
            )

    @property
    def duration_epochs(self) -> int:
        return self.end_epoch - self.start_epoch

    def with_price(self, price_per_epoch: int) -> "DealParameters":
        return replace(self, price_per_epoch=price_per_epoch)


@dataclass(frozen=True)
class DealProposalResult:
    """What the deal client reported back for an accepted proposal."""

    deal_uuid: str
    client_wallet: str
    commp: str
    start_epoch: int
    end_epoch: int
    provider_collateral: str
    price_per_epoch: int


@dataclass
class DealRecord:
    """Latest successful deal for a CID."""

    deal_uuid: str
    cid: str
    payload_cid: str
    storage_provider: str
    client_wallet: str
    commp: str
    piece_size: int
    car_size: int
    start_epoch: int
    end_epoch: int
    provider_collateral: str
    url: str
    price_per_epoch: int = 0
    status: str = PROPOSED_STATUS
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return is_terminal_status(self.status)


@dataclass(frozen=True)
class Lease:
    """Marker for a CID with a pipeline in flight."""

    cid: str
    token: str = field(default_factory=lambda: uuid.uuid4().hex)
    acquired_at: datetime = field(default_factory=utcnow)
