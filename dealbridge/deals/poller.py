"""Background reconciliation of deal statuses."""

import asyncio

from dealbridge.core.logging import get_logger
from dealbridge.deals.boost import DealClient
from dealbridge.deals.registry import DealRegistry

logger = get_logger(__name__)


class DealStatusPoller:
    """Periodically mirrors deal statuses from the deal client.

    The deal client owns the status; this only copies it into the registry
    for records that have not reached a terminal status.
    """

    def __init__(
        self, registry: DealRegistry, client: DealClient, interval: float
    ) -> None:
        self.registry = registry
        self.client = client
        self.interval = interval
        self._task: asyncio.Task[None] | None = None

    async def poll_once(self) -> int:
        """Refresh every non-terminal record once.

        Returns:
            Number of records whose status changed
        """
        changed = 0
        for record in self.registry.pending_records():
            try:
                status = await self.client.deal_status(
                    record.storage_provider, record.deal_uuid
                )
            except Exception as e:
                logger.warning(
                    "deal_status_poll_failed",
                    cid=record.cid,
                    deal_uuid=record.deal_uuid,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                continue
            if self.registry.update_status(record.cid, record.deal_uuid, status):
                changed += 1
        return changed

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.poll_once()

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
