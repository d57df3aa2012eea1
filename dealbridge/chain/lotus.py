"""Minimal Lotus JSON-RPC client for chain height and actor lookups."""

import itertools
from typing import Any

import httpx

from dealbridge.core.errors import ChainUnreachable, UnknownMiner
from dealbridge.core.logging import get_logger

logger = get_logger(__name__)

# Error fragments Lotus returns when an address has no actor behind it
_UNKNOWN_ACTOR_MARKERS = (
    "actor not found",
    "resolution lookup failed",
    "failed to load miner actor",
    "not a miner actor",
    "invalid address",
)


class LotusRPCError(Exception):
    """JSON-RPC error object returned by the node."""

    def __init__(self, method: str, code: int | None, message: str) -> None:
        super().__init__(f"{method} failed ({code}): {message}")
        self.method = method
        self.code = code
        self.message = message


class LotusClient:
    """Reads chain state from a Lotus (or compatible) node."""

    def __init__(
        self,
        api_url: str,
        token: str | None = None,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_url = api_url
        self.timeout = timeout
        self._headers = {"Content-Type": "application/json"}
        if token:
            self._headers["Authorization"] = f"Bearer {token}"
        self._client = client
        self._ids = itertools.count(1)

    async def call(self, method: str, *params: Any) -> Any:
        """Invoke a JSON-RPC method and return its result.

        Raises:
            ChainUnreachable: On transport failures and non-success statuses
            LotusRPCError: When the node returns a JSON-RPC error object
        """
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": list(params),
            "id": next(self._ids),
        }
        try:
            if self._client is not None:
                response = await self._client.post(
                    self.api_url,
                    json=payload,
                    headers=self._headers,
                    timeout=self.timeout,
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(
                        self.api_url, json=payload, headers=self._headers
                    )
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as e:
            raise ChainUnreachable(
                f"Chain API answered {e.response.status_code} for {method}"
            ) from e
        except httpx.HTTPError as e:
            raise ChainUnreachable(
                f"Chain API unreachable for {method}: {type(e).__name__}: {e}"
            ) from e
        except ValueError as e:
            raise ChainUnreachable(f"Chain API returned invalid JSON for {method}") from e

        if not isinstance(body, dict):
            raise ChainUnreachable(f"Unexpected chain API response for {method}")
        if body.get("error"):
            error = body["error"]
            raise LotusRPCError(method, error.get("code"), str(error.get("message", "")))
        return body.get("result")

    async def chain_head_height(self) -> int:
        """Current chain height (epoch of the heaviest tipset)."""
        try:
            head = await self.call("Filecoin.ChainHead")
        except LotusRPCError as e:
            raise ChainUnreachable(str(e)) from e
        try:
            return int(head["Height"])
        except (TypeError, KeyError, ValueError) as e:
            raise ChainUnreachable("Chain head response has no height") from e

    async def miner_info(self, miner_id: str) -> dict[str, Any]:
        """Look up a storage provider's on-chain info.

        Raises:
            UnknownMiner: If the address has no miner actor
            ChainUnreachable: For any other failure
        """
        try:
            info = await self.call("Filecoin.StateMinerInfo", miner_id, None)
        except LotusRPCError as e:
            message = e.message.lower()
            if any(marker in message for marker in _UNKNOWN_ACTOR_MARKERS):
                raise UnknownMiner(f"No miner actor for {miner_id}: {e.message}") from e
            raise ChainUnreachable(str(e)) from e
        if not isinstance(info, dict):
            raise UnknownMiner(f"No miner actor for {miner_id}")
        return info

    async def provider_collateral_bounds(
        self, padded_piece_size: int, verified: bool
    ) -> tuple[int, int]:
        """Minimum and maximum provider collateral for a piece, in attoFIL."""
        try:
            bounds = await self.call(
                "Filecoin.StateDealProviderCollateralBounds",
                padded_piece_size,
                verified,
                None,
            )
        except LotusRPCError as e:
            raise ChainUnreachable(str(e)) from e
        try:
            return int(bounds["Min"]), int(bounds["Max"])
        except (TypeError, KeyError, ValueError) as e:
            raise ChainUnreachable("Collateral bounds response is malformed") from e
