"""Pydantic models for the deal API."""

from datetime import datetime

from pydantic import BaseModel, Field

from dealbridge.deals.models import DealRecord


class DealResponse(BaseModel):
    """Deal metadata returned by ``POST /put/{cid}``."""

    deal_uuid: str
    storage_provider: str
    client_wallet: str
    payload_cid: str
    url: str
    commp: str
    start_epoch: int
    end_epoch: int
    provider_collateral: str = Field(
        ..., description="Provider collateral as reported by the deal client"
    )

    @classmethod
    def from_record(cls, record: DealRecord) -> "DealResponse":
        return cls(
            deal_uuid=record.deal_uuid,
            storage_provider=record.storage_provider,
            client_wallet=record.client_wallet,
            payload_cid=record.payload_cid,
            url=record.url,
            commp=record.commp,
            start_epoch=record.start_epoch,
            end_epoch=record.end_epoch,
            provider_collateral=record.provider_collateral,
        )


class DealStatusResponse(DealResponse):
    """Recorded deal including its mirrored status."""

    piece_size: int
    car_size: int
    price_per_epoch: int = Field(
        0, description="Agreed storage price in attoFIL per epoch"
    )
    status: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, record: DealRecord) -> "DealStatusResponse":
        return cls(
            **DealResponse.from_record(record).model_dump(),
            piece_size=record.piece_size,
            car_size=record.car_size,
            price_per_epoch=record.price_per_epoch,
            status=record.status,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


class ErrorResponse(BaseModel):
    """Body of every non-200 response."""

    error: str
    message: str
    status_code: int
    correlation_id: str


class HealthResponse(BaseModel):
    status: str
    version: str
    miner_id: str | None
    in_flight: int
