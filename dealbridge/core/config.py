"""Application configuration."""

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ProviderPolicy(BaseModel):
    """Per-provider overrides of the default deal policy.

    Any field left as None falls back to the global setting.
    """

    duration_epochs: int | None = Field(default=None, gt=0)
    start_lead_epochs: int | None = Field(default=None, ge=1)
    provider_collateral: int | None = Field(default=None, ge=0)
    price_per_epoch: int | None = Field(default=None, ge=0)
    verified: bool | None = None


class DealPolicy(BaseModel):
    """Effective deal policy for one storage provider."""

    duration_epochs: int = Field(gt=0)
    start_lead_epochs: int = Field(ge=1)
    provider_collateral: int | None = Field(default=None, ge=0)
    price_per_epoch: int = Field(default=0, ge=0)
    verified: bool = False


class Settings(BaseSettings):
    """
    Application settings.

    Environment variables will be loaded and validated using Pydantic.
    """

    app_name: str = "dealbridge"
    version: str = "0.1.0"

    # Server Settings
    LISTEN_ADDR: str = "0.0.0.0:8888"

    # Content gateway
    IPFS_GATEWAY: str = "https://ipfs.io"
    GATEWAY_TIMEOUT: float = Field(default=300.0, gt=0)
    COMMP_CHUNK_SIZE: int = Field(default=1 << 20, gt=0)

    # Storage provider and wallet
    MINER_ID: str | None = None
    CLIENT_WALLET: str | None = None

    # Chain API (Lotus JSON-RPC)
    LOTUS_API_URL: str = "http://127.0.0.1:1234/rpc/v1"
    LOTUS_API_TOKEN: str | None = None
    CHAIN_TIMEOUT: float = Field(default=30.0, gt=0)

    # Deal client (boost)
    BOOST_BIN: str = "boost"
    DEAL_TIMEOUT: float = Field(default=120.0, gt=0)
    PRICE_ADJUST_ATTEMPTS: int = Field(default=3, ge=0)

    # Deal policy defaults
    DEAL_DURATION_EPOCHS: int = Field(default=518400, gt=0)  # ~180 days
    DEAL_START_LEAD_EPOCHS: int = Field(default=5760, ge=1)  # ~48 hours
    PROVIDER_COLLATERAL: int | None = Field(default=None, ge=0)
    PRICE_PER_EPOCH: int = Field(default=0, ge=0)
    VERIFIED_DEAL: bool = False
    PROVIDER_POLICIES: dict[str, ProviderPolicy] = Field(default_factory=dict)

    # Retry policy for transient failures
    RETRY_MAX_ATTEMPTS: int = Field(default=3, ge=1)
    RETRY_BASE_DELAY: float = Field(default=0.5, ge=0)
    RETRY_MAX_DELAY: float = Field(default=5.0, ge=0)
    RETRY_BACKOFF_FACTOR: float = Field(default=2.0, ge=1)

    # Status reconciliation (0 disables polling)
    STATUS_POLL_INTERVAL: float = Field(default=300.0, ge=0)

    # Logging Settings
    LOG_LEVEL: str = "INFO"
    JSON_LOGS: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="allow",  # Allow extra fields in environment
    )

    @field_validator("IPFS_GATEWAY")
    @classmethod
    def strip_gateway_slash(cls, value: str) -> str:
        """Normalize the gateway base URL."""
        return value.rstrip("/")

    @field_validator("MINER_ID", "CLIENT_WALLET", "LOTUS_API_TOKEN")
    @classmethod
    def empty_as_none(cls, value: str | None) -> str | None:
        """Treat blank strings from the environment as unset."""
        if value is not None and not value.strip():
            return None
        return value

    @model_validator(mode="after")
    def validate_listen_addr(self) -> "Settings":
        """Validate the listen address has a host and numeric port."""
        self.listen_host_port()
        return self

    def listen_host_port(self) -> tuple[str, int]:
        """Split LISTEN_ADDR into host and port.

        Raises:
            ValueError: If the address is not ``host:port``
        """
        host, sep, port = self.LISTEN_ADDR.rpartition(":")
        if not sep or not host or not port.isdigit():
            raise ValueError(f"Invalid listen address: {self.LISTEN_ADDR!r}")
        return host.strip("[]"), int(port)

    def policy_for(self, miner_id: str) -> DealPolicy:
        """Get the deal policy for a provider, applying its overrides."""
        override = self.PROVIDER_POLICIES.get(miner_id, ProviderPolicy())
        return DealPolicy(
            duration_epochs=(
                override.duration_epochs
                if override.duration_epochs is not None
                else self.DEAL_DURATION_EPOCHS
            ),
            start_lead_epochs=(
                override.start_lead_epochs
                if override.start_lead_epochs is not None
                else self.DEAL_START_LEAD_EPOCHS
            ),
            provider_collateral=(
                override.provider_collateral
                if override.provider_collateral is not None
                else self.PROVIDER_COLLATERAL
            ),
            price_per_epoch=(
                override.price_per_epoch
                if override.price_per_epoch is not None
                else self.PRICE_PER_EPOCH
            ),
            verified=(
                override.verified
                if override.verified is not None
                else self.VERIFIED_DEAL
            ),
        )
