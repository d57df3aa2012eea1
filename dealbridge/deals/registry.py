"""In-memory registry of in-flight pipelines and recorded deals."""

import threading
from dataclasses import replace

from dealbridge.core.errors import AlreadyInFlight, DealNotFound
from dealbridge.core.logging import get_logger
from dealbridge.deals.models import DealRecord, Lease, utcnow

logger = get_logger(__name__)


class DealRegistry:
    """Maps CIDs to their active lease and latest deal record.

    Acquiring a lease never waits: a CID that already has one is rejected
    with :class:`AlreadyInFlight`. Leases for different CIDs are independent.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._leases: dict[str, Lease] = {}
        self._records: dict[str, DealRecord] = {}

    def try_acquire(self, cid: str) -> Lease:
        """Take the lease for a CID.

        Raises:
            AlreadyInFlight: If a lease for the CID is already held
        """
        with self._lock:
            if cid in self._leases:
                raise AlreadyInFlight(cid)
            lease = Lease(cid=cid)
            self._leases[cid] = lease
        logger.debug("lease_acquired", cid=cid, token=lease.token)
        return lease

    def release(self, lease: Lease) -> None:
        """Give a lease back. Stale or already released leases are ignored."""
        with self._lock:
            current = self._leases.get(lease.cid)
            if current is None or current.token != lease.token:
                return
            del self._leases[lease.cid]
        logger.debug("lease_released", cid=lease.cid, token=lease.token)

    def in_flight(self, cid: str) -> bool:
        with self._lock:
            return cid in self._leases

    def in_flight_count(self) -> int:
        with self._lock:
            return len(self._leases)

    def record_success(self, cid: str, record: DealRecord) -> None:
        """Store the record for a CID, replacing any earlier one."""
        with self._lock:
            previous = self._records.get(cid)
            self._records[cid] = record
        if previous is not None and previous.deal_uuid != record.deal_uuid:
            logger.info(
                "deal_record_superseded",
                cid=cid,
                previous_deal_uuid=previous.deal_uuid,
                deal_uuid=record.deal_uuid,
            )

    def lookup(self, cid: str) -> DealRecord:
        """Latest recorded deal for a CID.

        Raises:
            DealNotFound: If no deal was ever recorded for the CID
        """
        with self._lock:
            record = self._records.get(cid)
        if record is None:
            raise DealNotFound(f"No deal recorded for {cid}")
        return replace(record)

    def update_status(self, cid: str, deal_uuid: str, status: str) -> bool:
        """Mirror a status reported by the deal client.

        Only applies if the CID's current record is still that deal.

        Returns:
            True if the record was updated
        """
        with self._lock:
            record = self._records.get(cid)
            if record is None or record.deal_uuid != deal_uuid:
                return False
            if record.status == status:
                return False
            record.status = status
            record.updated_at = utcnow()
        logger.info("deal_status_updated", cid=cid, deal_uuid=deal_uuid, status=status)
        return True

    def pending_records(self) -> list[DealRecord]:
        """Copies of records whose status is not terminal yet."""
        with self._lock:
            return [replace(r) for r in self._records.values() if not r.is_terminal]
