"""Source adapters: fetch raw ticket records from each storage shape."""
import asyncio
import json
import logging
from datetime import date
from typing import Any, Sequence

from pydantic import BaseModel, Field

from .coerce import text, to_decimal, to_int
from .errors import MalformedRecord, ReconciliationWarning, StoreUnavailable, WarningKind
from .models import (
    ConductorRaw,
    DiscountEntry,
    DiscountItem,
    Origin,
    Partition,
    PreBookingRaw,
    PreTicketRaw,
    Provenance,
    RawRecord,
    TimeWindow,
    TripInfo,
    ZERO,
)
from .partitions import PartitionResolver
from .store import DocumentRef, DocumentStore
from .windows import parse_timestamp, resolve_window

logger = logging.getLogger(__name__)

VOID_STATUSES = {"cancelled", "canceled", "refunded", "void", "voided", "expired"}


class SourceBatch(BaseModel):
    """Raw records from one source plus what went wrong fetching them."""
    source: str
    records: list[RawRecord] = Field(default_factory=list)
    warnings: list[ReconciliationWarning] = Field(default_factory=list)
    attempted: int = 0
    failed: int = 0

    @property
    def all_failed(self) -> bool:
        return self.attempted > 0 and self.failed == self.attempted


def parse_breakdown(items: Any) -> tuple[DiscountItem, ...]:
    """Keep free-text labels as-is; turn maps into DiscountEntry."""
    if not isinstance(items, list):
        return ()
    parsed: list[DiscountItem] = []
    for item in items:
        if isinstance(item, str):
            parsed.append(item)
        elif isinstance(item, dict):
            discount = to_decimal(item.get("discount"))
            parsed.append(DiscountEntry(
                type=text(item.get("type")) or "Regular",
                fare=to_decimal(item.get("fare")),
                discount=discount if discount is not None and discount > 0 else ZERO,
            ))
    return tuple(parsed)


def parse_fares(values: Any) -> tuple:
    if not isinstance(values, list):
        return ()
    fares = [to_decimal(v) for v in values]
    return tuple(f if f is not None else ZERO for f in fares)


def _positive(value: Any) -> int | None:
    number = to_int(value)
    return number if number is not None and number >= 1 else None


def _tag(data: dict[str, Any]) -> str | None:
    return text(data.get("documentType")) or text(data.get("ticketType")) or None


def _inactive_status(status: str | None) -> bool:
    return bool(status) and status.lower() in VOID_STATUSES


class TicketSource:
    """Base adapter: fans out over every trip of every partition."""

    name = "tickets"
    origin = Origin.CONDUCTOR_TICKETS

    def __init__(
        self,
        store: DocumentStore,
        semaphore: asyncio.Semaphore | None = None,
        max_concurrency: int = 10,
    ):
        self.store = store
        self.semaphore = semaphore or asyncio.Semaphore(max_concurrency)

    def collection_path(self, partition: Partition, trip: TripInfo) -> str:
        return f"{partition.path}/{trip.trip_id}/{self.origin.value}/{self.origin.value}"

    def parse(self, ref: DocumentRef, provenance: Provenance, trip: TripInfo) -> RawRecord | None:
        """Convert one stored document; None skips it, MalformedRecord drops it."""
        raise NotImplementedError

    async def _fetch_trip(self, partition: Partition, trip: TripInfo, batch: SourceBatch) -> None:
        path = self.collection_path(partition, trip)
        batch.attempted += 1
        try:
            async with self.semaphore:
                refs = await self.store.list_collection(path)
        except StoreUnavailable as e:
            batch.failed += 1
            logger.warning("%s: skipping %s: %s", self.name, path, e)
            batch.warnings.append(ReconciliationWarning(
                kind=WarningKind.STORE_UNAVAILABLE, path=path, message=str(e)
            ))
            return

        for ref in refs:
            provenance = Provenance(
                source_path=ref.path,
                conductor_id=partition.conductor_id,
                date=partition.date_key,
                trip_id=trip.trip_id,
                origin=self.origin,
            )
            try:
                record = self.parse(ref, provenance, trip)
            except MalformedRecord as e:
                logger.warning("%s: dropping %s", self.name, e)
                batch.warnings.append(ReconciliationWarning(
                    kind=WarningKind.MALFORMED_RECORD, path=ref.path, message=str(e)
                ))
                continue
            if record is not None:
                batch.records.append(record)

    async def fetch(self, partitions: Sequence[Partition]) -> SourceBatch:
        """Fetch every record under the given partitions."""
        batch = SourceBatch(source=self.name)
        await asyncio.gather(*[
            self._fetch_trip(partition, trip, batch)
            for partition in partitions
            for trip in partition.trips
        ])
        logger.debug(
            "%s: %d records from %d collections (%d failed)",
            self.name, len(batch.records), batch.attempted, batch.failed,
        )
        return batch

    async def fetch_window(
        self,
        resolver: PartitionResolver,
        window: TimeWindow | date | str | None = None,
    ) -> SourceBatch:
        """Fetch a window, a single date, or (None) every partition."""
        if isinstance(window, (date, str)):
            window = resolve_window(start=window, end=window)
        scan = await resolver.resolve(window)
        batch = await self.fetch(scan.partitions)
        batch.warnings[:0] = scan.warnings
        return batch


class ConductorTicketSource(TicketSource):
    """Tickets issued on board, including inline tagged copies."""

    name = "conductor"
    origin = Origin.CONDUCTOR_TICKETS

    def parse(self, ref: DocumentRef, provenance: Provenance, trip: TripInfo) -> RawRecord | None:
        data = ref.data
        total_fare = to_decimal(data.get("totalFare"))
        if total_fare is None or total_fare < 0:
            raise MalformedRecord(ref.path, ["totalFare"])
        return ConductorRaw(
            id=ref.id,
            provenance=provenance,
            document_type=_tag(data),
            logical_id=text(data.get("preBookingId")) or text(data.get("preTicketId")) or None,
            from_stop=text(data.get("from")),
            to_stop=text(data.get("to")),
            direction=text(data.get("direction")) or trip.direction,
            quantity=_positive(data.get("quantity")) or 1,
            total_fare=total_fare,
            discount_amount=to_decimal(data.get("discountAmount")) or ZERO,
            discount_breakdown=parse_breakdown(data.get("discountBreakdown")),
            passenger_fares=parse_fares(data.get("farePerPassenger") or data.get("passengerFares")),
            timestamp=parse_timestamp(data.get("timestamp")),
            active=data.get("active", True) is not False,
            start_km=to_decimal(data.get("startKm")),
            end_km=to_decimal(data.get("endKm")),
            total_km=to_decimal(data.get("totalKm")),
        )


class PreBookingSource(TicketSource):
    """Pre-bookings from each trip's dedicated preBookings path.

    Inline copies under the conductor-tickets path are never read here; the
    classifier drops them when this path holds the same booking.
    """

    name = "preBooking"
    origin = Origin.PRE_BOOKINGS

    def parse(self, ref: DocumentRef, provenance: Provenance, trip: TripInfo) -> RawRecord | None:
        data = ref.data
        total_fare = to_decimal(data.get("totalFare"))
        if total_fare is None or total_fare < 0:
            raise MalformedRecord(ref.path, ["totalFare"])
        scanned_at = parse_timestamp(data.get("scannedAt"))
        status = text(data.get("status")) or None
        return PreBookingRaw(
            id=ref.id,
            provenance=provenance,
            document_type=_tag(data),
            logical_id=text(data.get("preBookingId")) or None,
            from_stop=text(data.get("from")),
            to_stop=text(data.get("to")),
            direction=text(data.get("direction")) or trip.direction,
            quantity=_positive(data.get("quantity")) or 1,
            total_fare=total_fare,
            discount_amount=to_decimal(data.get("discountAmount")) or ZERO,
            discount_breakdown=parse_breakdown(data.get("discountBreakdown")),
            passenger_fares=parse_fares(data.get("farePerPassenger") or data.get("passengerFares")),
            timestamp=scanned_at,
            active=(
                scanned_at is not None
                and data.get("active", True) is not False
                and not _inactive_status(status)
            ),
            status=status,
            scanned=scanned_at is not None,
            start_km=to_decimal(data.get("fromKm", data.get("startKm"))),
            end_km=to_decimal(data.get("toKm", data.get("endKm"))),
            total_km=to_decimal(data.get("totalKm")),
        )


def unwrap_payload(data: dict[str, Any]) -> dict[str, Any]:
    """Pre-tickets nest their content in `data` or a (possibly JSON) `qrData`."""
    for key in ("data", "qrData"):
        payload = data.get(key)
        if isinstance(payload, str):
            try:
                payload = json.loads(payload)
            except json.JSONDecodeError:
                logger.debug("Unparseable %s payload, using top-level fields", key)
                continue
        if isinstance(payload, dict):
            return payload
    return data


class PreTicketSource(TicketSource):
    """QR/self-service tickets; records without amount or quantity are dropped."""

    name = "preTicket"
    origin = Origin.PRE_TICKETS

    def parse(self, ref: DocumentRef, provenance: Provenance, trip: TripInfo) -> RawRecord | None:
        data = ref.data
        payload = unwrap_payload(data)

        def pick(*keys: str) -> Any:
            for key in keys:
                for source in (payload, data):
                    if source.get(key) not in (None, ""):
                        return source[key]
            return None

        amount = to_decimal(pick("amount", "totalFare"))
        quantity = _positive(pick("quantity"))
        missing = [name for name, value in (("amount", amount), ("quantity", quantity)) if value is None]
        if amount is not None and amount < 0:
            missing.append("amount")
        if missing:
            raise MalformedRecord(ref.path, missing)

        breakdown = parse_breakdown(pick("discountBreakdown"))
        passenger_fares = parse_fares(pick("passengerFares", "farePerPassenger"))
        fare_types = pick("fareTypes")
        if not breakdown and isinstance(fare_types, list) and passenger_fares:
            regular = to_decimal(pick("fare")) or max(passenger_fares)
            breakdown = tuple(
                DiscountEntry(
                    type=text(kind) or "Regular",
                    fare=passenger_fares[i] if i < len(passenger_fares) else ZERO,
                    discount=max(regular - passenger_fares[i], ZERO)
                    if i < len(passenger_fares) and text(kind).lower() != "regular" else ZERO,
                )
                for i, kind in enumerate(fare_types)
            )

        discount_amount = to_decimal(data.get("discountAmount"))
        if discount_amount is None:
            discount_amount = sum(
                (item.discount for item in breakdown if isinstance(item, DiscountEntry)), ZERO
            )

        scanned_at = parse_timestamp(data.get("scannedAt"))
        status = text(data.get("status")) or None
        return PreTicketRaw(
            id=ref.id,
            provenance=provenance,
            document_type=_tag(payload) or _tag(data),
            logical_id=text(pick("preTicketId", "ticketId")) or None,
            from_stop=text(pick("from")),
            to_stop=text(pick("to")),
            direction=text(pick("direction")) or trip.direction,
            quantity=quantity,
            total_fare=amount,
            discount_amount=discount_amount,
            discount_breakdown=breakdown,
            passenger_fares=passenger_fares,
            timestamp=scanned_at,
            active=scanned_at is not None and not _inactive_status(status),
            status=status,
            scanned=scanned_at is not None,
            start_km=to_decimal(pick("fromKm", "startKm")),
            end_km=to_decimal(pick("toKm", "endKm")),
            total_km=to_decimal(pick("totalKm")),
        )

