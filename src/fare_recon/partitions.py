"""Partition resolution: which date partitions fall inside a window.

The store has no range queries, so every date partition under every
conductor is listed and its effective date tested client-side. This is an
O(conductors x dates) scan. A store with native range queries can implement
`PartitionResolver` directly without touching the aggregation layers.
"""
import asyncio
import logging
from datetime import tzinfo
from typing import Any, Protocol

from pydantic import BaseModel, Field

from .coerce import text, to_decimal, to_int
from .errors import AllSourcesFailed, ReconciliationWarning, StoreUnavailable, WarningKind
from .models import Conductor, Partition, TimeWindow, TripInfo
from .store import DocumentRef, DocumentStore
from .windows import parse_date_key, parse_timestamp, to_local

logger = logging.getLogger(__name__)

CONDUCTORS = "conductors"


class PartitionScan(BaseModel):
    """Partitions in scope plus the conductor reference data seen on the way."""
    partitions: list[Partition] = Field(default_factory=list)
    conductors: list[Conductor] = Field(default_factory=list)
    warnings: list[ReconciliationWarning] = Field(default_factory=list)
    attempted: int = 0
    failed: int = 0


class PartitionResolver(Protocol):
    async def resolve(self, window: TimeWindow | None) -> PartitionScan:
        """Partitions inside `window`, or every partition when it is None."""
        ...


def conductor_from_document(ref: DocumentRef) -> Conductor:
    data = ref.data
    capacity = to_int(data.get("capacity") or data.get("seatCapacity") or data.get("maxCapacity"))
    return Conductor(
        id=ref.id,
        name=text(data.get("name")),
        bus_number=text(data.get("busNumber")),
        capacity=capacity if capacity and capacity > 0 else None,
        current_passengers=max(to_int(data.get("currentPassengers")) or 0, 0),
        is_online=bool(data.get("isOnline", False)),
        last_seen=parse_timestamp(data.get("lastSeen")),
    )


def trips_from_partition(data: dict[str, Any]) -> tuple[TripInfo, ...]:
    """Trip maps are fields named trip* whose value is a map."""
    trips = []
    for key, value in data.items():
        if not key.startswith("trip") or not isinstance(value, dict):
            continue
        direction = text(value.get("direction")) or None
        trips.append(TripInfo(
            trip_id=key,
            direction=direction,
            start_time=parse_timestamp(value.get("startTime")),
            start_km=to_decimal(value.get("startKm")),
            end_km=to_decimal(value.get("endKm")),
            total_km=to_decimal(value.get("totalKm")),
        ))
    return tuple(sorted(trips, key=lambda t: _trip_order(t.trip_id)))


def _trip_order(trip_id: str) -> tuple[int, str]:
    digits = "".join(ch for ch in trip_id if ch.isdigit())
    return (int(digits) if digits else 0, trip_id)


class ScanningPartitionResolver:
    """Resolve partitions by listing every conductor's dailyTrips."""

    def __init__(
        self,
        store: DocumentStore,
        max_concurrency: int = 10,
        tz: tzinfo | None = None,
    ):
        self.store = store
        self.max_concurrency = max_concurrency
        self.tz = tz

    def effective_date(self, ref: DocumentRef):
        created = parse_timestamp(ref.data.get("createdAt"))
        if created is not None:
            return to_local(created, self.tz).date()
        return parse_date_key(ref.id)

    async def list_conductors(self) -> list[Conductor]:
        try:
            refs = await self.store.list_collection(CONDUCTORS)
        except StoreUnavailable as e:
            raise AllSourcesFailed(CONDUCTORS, e.reason) from e
        return [conductor_from_document(ref) for ref in refs]

    async def resolve(self, window: TimeWindow | None) -> PartitionScan:
        conductors = await self.list_conductors()
        semaphore = asyncio.Semaphore(self.max_concurrency)
        scan = PartitionScan(conductors=conductors)

        async def scan_conductor(conductor: Conductor) -> None:
            path = f"{CONDUCTORS}/{conductor.id}/dailyTrips"
            scan.attempted += 1
            try:
                async with semaphore:
                    refs = await self.store.list_collection(path)
            except StoreUnavailable as e:
                scan.failed += 1
                logger.warning("Skipping partitions of %s: %s", conductor.id, e)
                scan.warnings.append(ReconciliationWarning(
                    kind=WarningKind.STORE_UNAVAILABLE, path=path, message=str(e)
                ))
                return

            for ref in refs:
                day = self.effective_date(ref)
                if day is None:
                    logger.warning("Partition %s has no usable date", ref.path)
                    scan.warnings.append(ReconciliationWarning(
                        kind=WarningKind.UNPARSEABLE_PARTITION,
                        path=ref.path,
                        message=f"cannot determine date of partition {ref.id!r}",
                    ))
                    continue
                if window is not None and not window.contains(day):
                    continue
                scan.partitions.append(Partition(
                    conductor_id=conductor.id,
                    date_key=ref.id,
                    effective_date=day,
                    trips=trips_from_partition(ref.data),
                ))

        await asyncio.gather(*[scan_conductor(c) for c in conductors])
        if scan.attempted and scan.failed == scan.attempted:
            raise AllSourcesFailed(CONDUCTORS, "no conductor's dailyTrips could be listed")
        scan.partitions.sort(key=lambda p: (p.effective_date, p.conductor_id, p.date_key))
        logger.info(
            "Resolved %d partitions across %d conductors for %s",
            len(scan.partitions), len(conductors), window or "all dates",
        )
        return scan
