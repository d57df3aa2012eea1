"""Streaming retrieval of CAR exports from an IPFS gateway."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx

from dealbridge.content.cid import validate_cid
from dealbridge.core.errors import (
    ContentNotFound,
    GatewayError,
    GatewayUnreachable,
    StreamReadError,
)
from dealbridge.core.logging import get_logger

logger = get_logger(__name__)

CAR_EXPORT_PATH = "/api/v0/dag/export"


class ContentFetcher:
    """Fetches the CAR export of a CID as a byte stream.

    The response body is read incrementally; callers consume the iterator
    yielded by :meth:`fetch` inside its context.
    """

    def __init__(
        self,
        gateway: str,
        timeout: float = 300.0,
        chunk_size: int = 1 << 20,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the fetcher.

        Args:
            gateway: Gateway base URL, e.g. ``https://ipfs.io``
            timeout: Per-operation timeout in seconds (connect and each read)
            chunk_size: Preferred size of yielded chunks
            client: Optional shared client; one is created per fetch otherwise
        """
        self.gateway = gateway.rstrip("/")
        self.timeout = timeout
        self.chunk_size = chunk_size
        self._client = client

    def export_url(self, cid: str) -> str:
        """URL of the CAR export for a CID.

        The same URL is handed to the storage provider for retrieval.
        """
        return f"{self.gateway}{CAR_EXPORT_PATH}?arg={cid}"

    @asynccontextmanager
    async def _client_context(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout), follow_redirects=True
        ) as client:
            yield client

    @asynccontextmanager
    async def fetch(self, cid: str) -> AsyncIterator[AsyncIterator[bytes]]:
        """Open a streaming CAR export for a CID.

        Args:
            cid: Content identifier to export

        Yields:
            Async iterator over the response body

        Raises:
            InvalidCID: If the CID is malformed
            GatewayUnreachable: If the gateway cannot be reached
            ContentNotFound: If the gateway answers 404
            GatewayError: For any other non-success status
            StreamReadError: If the body fails part way through (raised
                from the iterator)
        """
        validate_cid(cid)
        url = self.export_url(cid)
        logger.debug("gateway_fetch_started", cid=cid, url=url)

        async with self._client_context() as client:
            try:
                async with client.stream(
                    "GET", url, timeout=httpx.Timeout(self.timeout)
                ) as response:
                    self._check_status(cid, response)
                    yield self._iter_body(cid, response)
            except (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout) as e:
                raise GatewayUnreachable(
                    f"Gateway {self.gateway} unreachable: {type(e).__name__}: {e}"
                ) from e
            except httpx.TimeoutException as e:
                raise GatewayUnreachable(
                    f"Gateway {self.gateway} timed out: {type(e).__name__}"
                ) from e
            except httpx.TransportError as e:
                raise GatewayUnreachable(
                    f"Gateway {self.gateway} transport error: {e}"
                ) from e

    def _check_status(self, cid: str, response: httpx.Response) -> None:
        if response.is_success:
            return
        if response.status_code == httpx.codes.NOT_FOUND:
            raise ContentNotFound(f"Content {cid} not found at {self.gateway}")
        logger.warning(
            "gateway_error_status", cid=cid, status_code=response.status_code
        )
        raise GatewayError(
            f"Gateway answered {response.status_code} for {cid}",
            upstream_status=response.status_code,
        )

    async def _iter_body(
        self, cid: str, response: httpx.Response
    ) -> AsyncIterator[bytes]:
        received = 0
        try:
            async for chunk in response.aiter_bytes(self.chunk_size):
                received += len(chunk)
                yield chunk
        except (httpx.TransportError, httpx.StreamError) as e:
            raise StreamReadError(
                f"Stream for {cid} failed after {received} bytes: "
                f"{type(e).__name__}: {e}"
            ) from e
        logger.debug("gateway_fetch_finished", cid=cid, bytes=received)
