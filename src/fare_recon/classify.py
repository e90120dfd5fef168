"""Classification and deduplication of raw records into canonical tickets."""
import logging
from typing import Iterable

from pydantic import BaseModel, Field

from .errors import MalformedRecord, ReconciliationWarning, WarningKind
from .models import Category, Origin, RawRecord, Ticket, ZERO

logger = logging.getLogger(__name__)

_PATH_CATEGORIES = {
    Origin.PRE_BOOKINGS: Category.PRE_BOOKING,
    Origin.PRE_TICKETS: Category.PRE_TICKET,
}


def classify_record(record: RawRecord) -> Category:
    """First match wins: explicit type tag, then storage path, then conductor."""
    tagged = Category.parse(record.document_type)
    if tagged is not None:
        return tagged
    return _PATH_CATEGORIES.get(record.provenance.origin, Category.CONDUCTOR)


def to_ticket(record: RawRecord, category: Category | None = None) -> Ticket:
    """Map a raw record onto the canonical ticket shape."""
    missing = []
    if record.total_fare is None:
        missing.append("totalFare")
    if record.quantity is None or record.quantity < 1:
        missing.append("quantity")
    if missing:
        raise MalformedRecord(record.provenance.source_path, missing)

    discount = record.discount_amount if record.discount_amount is not None else ZERO
    provenance = record.provenance
    return Ticket(
        id=record.id,
        conductor_id=provenance.conductor_id,
        date=provenance.date,
        trip_id=provenance.trip_id,
        category=category or classify_record(record),
        origin=provenance.origin,
        source_path=provenance.source_path,
        from_stop=record.from_stop,
        to_stop=record.to_stop,
        direction=record.direction,
        quantity=record.quantity,
        total_fare=record.total_fare,
        discount_amount=max(discount, ZERO),
        discount_breakdown=record.discount_breakdown,
        passenger_fares=record.passenger_fares,
        timestamp=record.timestamp,
        active=record.active,
        logical_id=record.logical_id,
        start_km=record.start_km,
        end_km=record.end_km,
        total_km=record.total_km,
    )


def _is_inline_copy(ticket: Ticket) -> bool:
    return ticket.origin == Origin.CONDUCTOR_TICKETS and ticket.category != Category.CONDUCTOR


def deduplicate(tickets: Iterable[Ticket]) -> list[Ticket]:
    """One canonical ticket per logical transaction.

    The same stored document read twice is kept once. A pre-booking or
    pre-ticket mirrored inline under the conductor-tickets path is dropped
    when its dedicated path holds the same transaction. Order is preserved,
    and running this on its own output returns it unchanged.
    """
    seen_paths: set[str] = set()
    unique: list[Ticket] = []
    for ticket in tickets:
        if ticket.source_path in seen_paths:
            continue
        seen_paths.add(ticket.source_path)
        unique.append(ticket)

    dedicated: set[tuple[Category, str, str, str]] = set()
    for ticket in unique:
        if ticket.origin != Origin.CONDUCTOR_TICKETS:
            for key in {ticket.id, ticket.logical_id or ticket.id}:
                dedicated.add((ticket.category, ticket.conductor_id, ticket.date, key))

    result = []
    for ticket in unique:
        if _is_inline_copy(ticket):
            keys = {ticket.id, ticket.logical_id or ticket.id}
            if any((ticket.category, ticket.conductor_id, ticket.date, key) in dedicated for key in keys):
                logger.debug("Dropping inline copy %s", ticket.source_path)
                continue
        result.append(ticket)
    return result


class Classified(BaseModel):
    tickets: list[Ticket] = Field(default_factory=list)
    warnings: list[ReconciliationWarning] = Field(default_factory=list)
    dropped_duplicates: int = 0


def reconcile(records: Iterable[RawRecord]) -> Classified:
    """Classify, canonicalise and deduplicate a fan-in of raw records."""
    result = Classified()
    tickets = []
    for record in records:
        try:
            tickets.append(to_ticket(record))
        except MalformedRecord as e:
            logger.warning("Dropping %s", e)
            result.warnings.append(ReconciliationWarning(
                kind=WarningKind.MALFORMED_RECORD, path=e.path, message=str(e)
            ))
    result.tickets = deduplicate(tickets)
    result.dropped_duplicates = len(tickets) - len(result.tickets)
    if result.dropped_duplicates:
        logger.info("Removed %d duplicate records", result.dropped_duplicates)
    return result
