"""Tests for demand patterns, route efficiency and growth."""
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from fare_recon.demand import DemandAnalyzer, format_hour, route_performance, time_slot
from fare_recon.growth import category_growth, growth
from fare_recon.models import Category, CategoryTotals, MetricsSnapshot, Origin, RouteSummary


def _at(hour: int, day: int = 10) -> datetime:
    return datetime(2024, 3, day, hour, 5)


class TestHourly:
    def test_one_ticket_per_hour_is_uniform(self, make_ticket) -> None:
        tickets = [make_ticket(id=f"t{h}", timestamp=_at(h)) for h in range(24)]
        buckets = DemandAnalyzer().hourly(tickets)
        assert [b.hour for b in buckets] == list(range(24))
        assert all(b.demand_percentage == 100 for b in buckets)

    def test_relative_to_busiest_hour(self, make_ticket) -> None:
        tickets = [
            make_ticket(id="a", timestamp=_at(8), quantity=2),
            make_ticket(id="b", timestamp=_at(8)),
            make_ticket(id="c", timestamp=_at(8)),
            make_ticket(id="d", timestamp=_at(17)),
        ]
        buckets = DemandAnalyzer().hourly(tickets)
        assert (buckets[8].tickets, buckets[8].passengers, buckets[8].demand_percentage) == (3, 4, 100)
        assert buckets[17].demand_percentage == 33
        assert buckets[0].demand_percentage == 0

    def test_tickets_without_timestamp_are_skipped(self, make_ticket) -> None:
        tickets = [make_ticket(id="a", timestamp=_at(9)), make_ticket(id="b")]
        buckets = DemandAnalyzer().hourly(tickets)
        assert sum(b.tickets for b in buckets) == 1

    def test_aware_timestamps_use_local_zone(self, make_ticket) -> None:
        manila = timezone(timedelta(hours=8))
        ticket = make_ticket(timestamp=datetime(2024, 3, 10, 0, 15, tzinfo=timezone.utc))
        buckets = DemandAnalyzer(tz=manila).hourly([ticket])
        assert buckets[8].tickets == 1

    def test_peak_hours_limit(self, make_ticket) -> None:
        tickets = [make_ticket(id=f"t{h}", timestamp=_at(h)) for h in range(6, 18)]
        tickets.append(make_ticket(id="extra", timestamp=_at(12)))
        analyzer = DemandAnalyzer()
        peaks = analyzer.peak_hours(analyzer.hourly(tickets))
        assert len(peaks) == 8
        assert peaks[0].hour == 12
        assert peaks[0].time_slot == "12:00 PM - 1:00 PM"


def test_weekday_demand(make_ticket) -> None:
    tickets = [
        make_ticket(id="a", timestamp=_at(8, day=10)),
        make_ticket(id="b", timestamp=_at(9, day=10)),
        make_ticket(id="c", timestamp=_at(9, day=11), quantity=3),
    ]
    days = DemandAnalyzer().weekday(tickets)
    assert [(d.weekday, d.tickets, d.passengers) for d in days] == [("Sunday", 2, 2), ("Monday", 1, 3)]


def test_demand_drivers(make_ticket) -> None:
    tickets = [make_ticket(id=f"t{i}") for i in range(3)]
    tickets.append(make_ticket(id="pb1", category=Category.PRE_BOOKING, origin=Origin.PRE_BOOKINGS))
    drivers = DemandAnalyzer().demand_drivers(tickets)
    assert [(d.factor, d.impact) for d in drivers] == [("Walk-in Passengers", 75), ("Advance Bookings", 25)]


def test_route_efficiency_without_distance_is_zero(make_ticket) -> None:
    assert DemandAnalyzer().route_efficiency([make_ticket(total_fare=Decimal("80"))]) == 0


def test_route_distance_is_summed(make_ticket) -> None:
    tickets = [
        make_ticket(id="a", start_km=Decimal("0"), end_km=Decimal("12")),
        make_ticket(id="b", total_km=Decimal("8")),
        make_ticket(id="c"),
    ]
    assert DemandAnalyzer.route_distance(tickets) == 20


def test_route_performance_skips_empty_routes() -> None:
    routes = [
        RouteSummary(route="A", revenue=Decimal("10")),
        RouteSummary(route="B", revenue=Decimal("0")),
        RouteSummary(route="C", revenue=Decimal("30")),
    ]
    assert [r.route for r in route_performance(routes)] == ["C", "A"]
    assert len(route_performance([RouteSummary(route=str(i), revenue=Decimal(i + 1)) for i in range(15)])) == 10


def test_hour_labels() -> None:
    assert format_hour(0) == "12:00 AM"
    assert time_slot(23) == "11:00 PM - 12:00 AM"


# --- growth -----------------------------------------------------------------

class TestGrowth:
    def test_from_zero_base(self) -> None:
        assert growth(50, 0) == 100
        assert growth(0, 0) == 0

    def test_percent_change(self) -> None:
        assert growth(150, 100) == 50
        assert growth(Decimal("50"), Decimal("200")) == -75
        assert growth(2, 3) == -33

    def test_category_rows(self) -> None:
        current = MetricsSnapshot(
            total_revenue=Decimal("300"),
            per_category={
                Category.CONDUCTOR: CategoryTotals(revenue=Decimal("200"), count=2, passengers=4),
                Category.PRE_BOOKING: CategoryTotals(revenue=Decimal("100"), count=1, passengers=1),
            },
        )
        previous = MetricsSnapshot(
            total_revenue=Decimal("100"),
            per_category={Category.CONDUCTOR: CategoryTotals(revenue=Decimal("100"), count=1, passengers=1)},
        )
        rows = {row.category: row for row in category_growth(current, previous)}

        assert rows[Category.CONDUCTOR].growth == 100
        assert rows[Category.CONDUCTOR].market_share == 67
        assert rows[Category.CONDUCTOR].average_price == Decimal("50.00")
        assert rows[Category.PRE_BOOKING].growth == 100
        assert rows[Category.PRE_TICKET].growth == 0
        assert rows[Category.PRE_TICKET].volume == 0
