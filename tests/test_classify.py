"""Tests for classification and deduplication."""
from decimal import Decimal

import pytest

from fare_recon.classify import classify_record, deduplicate, reconcile, to_ticket
from fare_recon.errors import MalformedRecord, WarningKind
from fare_recon.models import Category, ConductorRaw, Origin, PreBookingRaw, PreTicketRaw, Provenance


def _prov(origin: Origin, doc_id: str) -> Provenance:
    return Provenance(
        source_path=f"conductors/c1/dailyTrips/2024-03-10/trip1/{origin.value}/{origin.value}/{doc_id}",
        conductor_id="c1",
        date="2024-03-10",
        trip_id="trip1",
        origin=origin,
    )


def _conductor_raw(doc_id: str = "t1", **fields) -> ConductorRaw:
    fields.setdefault("quantity", 1)
    fields.setdefault("total_fare", Decimal("10"))
    return ConductorRaw(id=doc_id, provenance=_prov(Origin.CONDUCTOR_TICKETS, doc_id), **fields)


class TestClassifyRecord:
    def test_tag_beats_path(self) -> None:
        raw = _conductor_raw(document_type="pre-ticket")
        assert classify_record(raw) == Category.PRE_TICKET

    def test_path_when_untagged(self) -> None:
        raw = PreBookingRaw(id="pb1", provenance=_prov(Origin.PRE_BOOKINGS, "pb1"), quantity=1,
                            total_fare=Decimal("5"))
        assert classify_record(raw) == Category.PRE_BOOKING
        raw = PreTicketRaw(id="qr1", provenance=_prov(Origin.PRE_TICKETS, "qr1"), quantity=1,
                           total_fare=Decimal("5"))
        assert classify_record(raw) == Category.PRE_TICKET

    def test_defaults_to_conductor(self) -> None:
        assert classify_record(_conductor_raw(document_type="souvenir")) == Category.CONDUCTOR

    def test_tag_wins_on_dedicated_path(self) -> None:
        raw = PreBookingRaw(id="pb1", provenance=_prov(Origin.PRE_BOOKINGS, "pb1"), document_type="conductor")
        assert classify_record(raw) == Category.CONDUCTOR


class TestToTicket:
    def test_missing_fare_and_quantity(self) -> None:
        raw = ConductorRaw(id="t9", provenance=_prov(Origin.CONDUCTOR_TICKETS, "t9"))
        with pytest.raises(MalformedRecord) as exc:
            to_ticket(raw)
        assert exc.value.missing == ["totalFare", "quantity"]

    def test_negative_discount_is_clamped(self) -> None:
        ticket = to_ticket(_conductor_raw(discount_amount=Decimal("-3")))
        assert ticket.discount_amount == 0
        assert ticket.category == Category.CONDUCTOR


# --- deduplication ----------------------------------------------------------

class TestDeduplicate:
    def test_inline_copy_dropped_when_dedicated_exists(self, make_ticket) -> None:
        inline = make_ticket(id="pb1", category=Category.PRE_BOOKING, total_fare=Decimal("50"))
        dedicated = make_ticket(id="pb1", category=Category.PRE_BOOKING, origin=Origin.PRE_BOOKINGS,
                                total_fare=Decimal("50"))
        assert deduplicate([inline, dedicated]) == [dedicated]

    def test_inline_copy_matched_by_logical_id(self, make_ticket) -> None:
        inline = make_ticket(id="abc", category=Category.PRE_BOOKING, logical_id="pb1")
        dedicated = make_ticket(id="pb1", category=Category.PRE_BOOKING, origin=Origin.PRE_BOOKINGS)
        assert deduplicate([inline, dedicated]) == [dedicated]

    def test_inline_copy_kept_without_counterpart(self, make_ticket) -> None:
        inline = make_ticket(id="pb7", category=Category.PRE_BOOKING)
        assert deduplicate([inline]) == [inline]

    def test_same_id_other_category_not_merged(self, make_ticket) -> None:
        conductor = make_ticket(id="x1")
        booking = make_ticket(id="x1", category=Category.PRE_BOOKING, origin=Origin.PRE_BOOKINGS)
        assert deduplicate([conductor, booking]) == [conductor, booking]

    def test_same_document_read_twice(self, make_ticket) -> None:
        ticket = make_ticket()
        assert deduplicate([ticket, ticket]) == [ticket]

    def test_idempotent(self, make_ticket) -> None:
        tickets = [
            make_ticket(id="t1"),
            make_ticket(id="pb1", category=Category.PRE_BOOKING),
            make_ticket(id="pb1", category=Category.PRE_BOOKING, origin=Origin.PRE_BOOKINGS),
            make_ticket(id="qr1", category=Category.PRE_TICKET, origin=Origin.PRE_TICKETS),
        ]
        once = deduplicate(tickets)
        assert deduplicate(once) == once
        assert [t.id for t in once] == ["t1", "pb1", "qr1"]


def test_reconcile_partitions_into_one_category_each() -> None:
    records = [
        _conductor_raw("t1"),
        _conductor_raw("pb1", document_type="preBooking"),
        PreBookingRaw(id="pb1", provenance=_prov(Origin.PRE_BOOKINGS, "pb1"), quantity=1,
                      total_fare=Decimal("10")),
        PreTicketRaw(id="qr1", provenance=_prov(Origin.PRE_TICKETS, "qr1"), quantity=1,
                     total_fare=Decimal("10")),
        ConductorRaw(id="bad", provenance=_prov(Origin.CONDUCTOR_TICKETS, "bad"), quantity=1),
    ]
    result = reconcile(records)

    assert [(t.id, t.category) for t in result.tickets] == [
        ("t1", Category.CONDUCTOR),
        ("pb1", Category.PRE_BOOKING),
        ("qr1", Category.PRE_TICKET),
    ]
    assert result.tickets[1].origin == Origin.PRE_BOOKINGS
    assert result.dropped_duplicates == 1
    assert [w.kind for w in result.warnings] == [WarningKind.MALFORMED_RECORD]
