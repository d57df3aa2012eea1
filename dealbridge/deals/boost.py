"""Deal-making client backed by the ``boost`` command line tool."""

import asyncio
import re
from dataclasses import dataclass
from typing import Protocol

from dealbridge.core.errors import (
    ClientUnavailable,
    DealRejected,
    DealTimeout,
    WalletError,
)
from dealbridge.core.logging import get_logger

logger = get_logger(__name__)

_ASKING_PRICE = re.compile(
    r"storage price per epoch less than asking price:\s*\d+\s*<\s*(\d+)"
)
_KEY_VALUE = re.compile(r"^\s*([a-zA-Z][a-zA-Z ]*?)\s*:\s*(.*?)\s*$")

_UNAVAILABLE_MARKERS = (
    "connection refused",
    "could not get api info",
    "failed to connect",
    "no such host",
    "i/o timeout",
    "dial tcp",
    "repo not initialized",
)
_WALLET_MARKERS = (
    "insufficient funds",
    "not enough funds",
    "default wallet",
    "wallet not found",
    "key not found",
    "escrow",
)


@dataclass(frozen=True)
class DealRequest:
    """Arguments of one ``boost deal`` invocation."""

    provider: str
    http_url: str
    commp: str
    car_size: int
    piece_size: int
    payload_cid: str
    start_epoch: int
    duration: int
    provider_collateral: int
    storage_price_per_epoch: int
    verified: bool = False
    wallet: str | None = None


class PriceTooLow(Exception):
    """Provider asks more per epoch than was offered."""

    def __init__(self, asking_price: int, message: str) -> None:
        super().__init__(message)
        self.asking_price = asking_price


class DealClient(Protocol):
    """Operations the pipeline needs from a deal-making client."""

    async def propose(self, request: DealRequest) -> dict[str, str]: ...

    async def deal_status(self, provider: str, deal_uuid: str) -> str: ...


def parse_key_values(output: str) -> dict[str, str]:
    """Parse ``key: value`` lines into a dict with lower-case keys."""
    values: dict[str, str] = {}
    for line in output.splitlines():
        match = _KEY_VALUE.match(line)
        if match and match.group(2):
            values.setdefault(match.group(1).strip().lower(), match.group(2))
    return values


def classify_failure(stderr: str) -> Exception:
    """Map an error message from boost to the matching pipeline error."""
    match = _ASKING_PRICE.search(stderr)
    if match:
        return PriceTooLow(int(match.group(1)), stderr.strip())
    lowered = stderr.lower()
    if any(marker in lowered for marker in _UNAVAILABLE_MARKERS):
        return ClientUnavailable(f"Deal client unavailable: {stderr.strip()}")
    if any(marker in lowered for marker in _WALLET_MARKERS):
        return WalletError(f"Wallet error: {stderr.strip()}")
    return DealRejected(f"Deal rejected: {stderr.strip()}")


class BoostClient:
    """Runs ``boost`` subcommands and parses their text output."""

    def __init__(self, binary: str = "boost", timeout: float = 120.0) -> None:
        self.binary = binary
        self.timeout = timeout

    def deal_args(self, request: DealRequest) -> list[str]:
        args = [
            self.binary,
            "deal",
            "--provider",
            request.provider,
            "--http-url",
            request.http_url,
            "--commp",
            request.commp,
            "--car-size",
            str(request.car_size),
            "--piece-size",
            str(request.piece_size),
            "--payload-cid",
            request.payload_cid,
            "--start-epoch",
            str(request.start_epoch),
            "--duration",
            str(request.duration),
            "--provider-collateral",
            str(request.provider_collateral),
            "--storage-price-per-epoch",
            str(request.storage_price_per_epoch),
            f"--verified={'true' if request.verified else 'false'}",
        ]
        if request.wallet:
            args.extend(["--wallet", request.wallet])
        return args

    async def _run(self, args: list[str]) -> tuple[int, str, str]:
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ClientUnavailable(f"Cannot run {self.binary}: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            raise DealTimeout(
                f"{self.binary} {args[1]} did not finish within {self.timeout}s"
            ) from e
        except asyncio.CancelledError:
            process.kill()
            raise

        return (
            process.returncode if process.returncode is not None else -1,
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace"),
        )

    async def propose(self, request: DealRequest) -> dict[str, str]:
        """Send one deal proposal.

        Returns:
            The ``key: value`` fields printed by boost

        Raises:
            PriceTooLow: If the provider's asking price is higher
            DealRejected: If the provider declined the deal
            WalletError: If the client wallet cannot fund the deal
            ClientUnavailable: If boost cannot be run or reach its node
            DealTimeout: If boost did not answer in time
        """
        returncode, stdout, stderr = await self._run(self.deal_args(request))
        if returncode != 0:
            raise classify_failure(stderr or stdout)
        return parse_key_values(stdout)

    async def deal_status(self, provider: str, deal_uuid: str) -> str:
        """Status of a proposed deal as reported by the provider."""
        args = [
            self.binary,
            "deal-status",
            "--provider",
            provider,
            "--deal-uuid",
            deal_uuid,
        ]
        returncode, stdout, stderr = await self._run(args)
        if returncode != 0:
            raise classify_failure(stderr or stdout)
        fields = parse_key_values(stdout)
        status = fields.get("deal status") or fields.get("status")
        if not status:
            raise DealRejected(f"No status in deal-status output for {deal_uuid}")
        return status
