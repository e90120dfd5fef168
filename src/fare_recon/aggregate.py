"""Metrics aggregation over canonical tickets."""
import logging
from collections import defaultdict
from decimal import Decimal
from typing import Iterable, Sequence

from .coerce import percent, ratio, round_money
from .config import DEFAULT_CAPACITY
from .demand import DemandAnalyzer
from .errors import ReconciliationWarning, WarningKind
from .models import (
    Category,
    CategoryTotals,
    Conductor,
    ConductorUtilization,
    ConductorPerformance,
    DayRevenue,
    DiscountBucket,
    DiscountEntry,
    DiscountItem,
    MetricsSnapshot,
    RouteSummary,
    Ticket,
    ZERO,
)

logger = logging.getLogger(__name__)

FARE_TYPES = ("regular", "pwd", "senior", "student")


def fare_type(item: DiscountItem | None) -> str:
    """Bucket a discount descriptor by case-insensitive keyword."""
    if item is None:
        return "regular"
    label = item.type if isinstance(item, DiscountEntry) else str(item)
    label = label.lower()
    for kind in ("pwd", "senior", "student"):
        if kind in label:
            return kind
    return "regular"


def breakdown_mismatch(ticket: Ticket) -> bool:
    """Breakdown and fare list disagree in length, or undercount passengers."""
    breakdown = ticket.discount_breakdown
    if not breakdown:
        return False
    if ticket.passenger_fares and len(ticket.passenger_fares) != len(breakdown):
        return True
    return len(breakdown) != ticket.quantity


def allocate_fare(ticket: Ticket) -> dict[str, tuple[Decimal, int]]:
    """Split a ticket's total fare across fare types.

    Each passenger is typed by its positional descriptor and weighted by its
    own fare (structured fare first, then the parallel fare list). Passengers
    with no known fare share whatever the known fares leave of the total.
    Weights are then scaled so the buckets always sum to the total fare.
    Descriptors short of `quantity` are padded with regular passengers.
    """
    total = ticket.total_fare
    breakdown = ticket.discount_breakdown
    if not breakdown:
        return {"regular": (total, ticket.quantity)}

    fares = ticket.passenger_fares
    size = max(len(breakdown), len(fares), ticket.quantity)
    kinds: list[str] = []
    known: list[Decimal | None] = []
    for i in range(size):
        item = breakdown[i] if i < len(breakdown) else None
        kinds.append(fare_type(item))
        if isinstance(item, DiscountEntry) and item.fare is not None:
            known.append(item.fare)
        elif i < len(fares):
            known.append(fares[i])
        else:
            known.append(None)

    known_values = [k for k in known if k is not None]
    known_sum = sum(known_values, ZERO)
    unknown = len(known) - len(known_values)

    if unknown == 0 and known_sum == total:
        weights = known_values
    else:
        if unknown:
            residual = total - known_sum
            if residual > 0:
                fill = residual / unknown
            elif known_values:
                fill = known_sum / len(known_values)
            else:
                fill = Decimal("1")
        else:
            fill = ZERO
        weights = [k if k is not None else fill for k in known]
        weight_sum = sum(weights, ZERO)
        if weight_sum <= 0:
            weights = [Decimal("1")] * size
            weight_sum = Decimal(size)
        weights = [total * w / weight_sum for w in weights]

    allocation: dict[str, tuple[Decimal, int]] = {}
    for kind, amount in zip(kinds, weights):
        revenue, passengers = allocation.get(kind, (ZERO, 0))
        allocation[kind] = (revenue + amount, passengers + 1)
    return allocation


def discount_rollup(tickets: Iterable[Ticket]) -> list[DiscountBucket]:
    revenue = {kind: ZERO for kind in FARE_TYPES}
    passengers = {kind: 0 for kind in FARE_TYPES}
    for ticket in tickets:
        for kind, (amount, count) in allocate_fare(ticket).items():
            revenue[kind] += amount
            passengers[kind] += count
    total = sum(revenue.values(), ZERO)
    return [
        DiscountBucket(
            type=kind,
            revenue=round_money(revenue[kind]),
            passengers=passengers[kind],
            share=percent(revenue[kind], total),
        )
        for kind in FARE_TYPES
    ]


def discount_warnings(tickets: Iterable[Ticket]) -> list[ReconciliationWarning]:
    return [
        ReconciliationWarning(
            kind=WarningKind.DISCOUNT_MISMATCH,
            path=t.source_path,
            message=(
                f"{len(t.discount_breakdown)} discount entries, "
                f"{len(t.passenger_fares)} passenger fares, quantity {t.quantity}"
            ),
        )
        for t in tickets
        if t.active and breakdown_mismatch(t)
    ]


def utilization(passengers, capacity: int) -> int:
    """Percent of capacity, capped at 100."""
    return min(percent(passengers, capacity), 100)


class MetricsAggregator:
    """Fold canonical tickets into a MetricsSnapshot."""

    def __init__(
        self,
        default_capacity: int = DEFAULT_CAPACITY,
        analyzer: DemandAnalyzer | None = None,
    ):
        self.default_capacity = default_capacity
        self.analyzer = analyzer or DemandAnalyzer()

    def category_totals(self, tickets: Sequence[Ticket]) -> dict[Category, CategoryTotals]:
        totals = {category: CategoryTotals() for category in Category}
        for ticket in tickets:
            entry = totals[ticket.category]
            entry.revenue += ticket.total_fare
            entry.count += 1
            entry.passengers += ticket.quantity
        return totals

    def route_rollup(self, tickets: Sequence[Ticket]) -> list[RouteSummary]:
        by_route: dict[str, list[Ticket]] = defaultdict(list)
        for ticket in tickets:
            by_route[ticket.route_key].append(ticket)

        routes = []
        for route, route_tickets in by_route.items():
            revenue = sum((t.total_fare for t in route_tickets), ZERO)
            passengers = sum(t.quantity for t in route_tickets)
            trips = len({t.trip_key for t in route_tickets})
            per_trip = ratio(passengers, trips)
            by_category: dict[Category, Decimal] = defaultdict(lambda: ZERO)
            for t in route_tickets:
                by_category[t.category] += t.total_fare
            routes.append(RouteSummary(
                route=route,
                revenue=revenue,
                passengers=passengers,
                trips=trips,
                average_fare=ratio(revenue, passengers),
                average_passengers_per_trip=per_trip,
                utilization=utilization(per_trip, self.default_capacity),
                revenue_per_km=self.analyzer.route_efficiency(route_tickets),
                revenue_by_category=dict(by_category),
            ))
        routes.sort(key=lambda r: (-r.revenue, r.route))
        return routes

    def bus_utilization(self, conductors: Iterable[Conductor]) -> list[ConductorUtilization]:
        rows = []
        for conductor in conductors:
            capacity = conductor.capacity or self.default_capacity
            rows.append(ConductorUtilization(
                conductor_id=conductor.id,
                name=conductor.name,
                bus_number=conductor.bus_number,
                capacity=capacity,
                current_passengers=conductor.current_passengers,
                utilization=utilization(conductor.current_passengers, capacity),
                is_online=conductor.is_online,
            ))
        return rows

    def conductor_rollup(
        self,
        tickets: Sequence[Ticket],
        conductors: Iterable[Conductor] = (),
    ) -> list[ConductorPerformance]:
        """Every known conductor plus any conductor seen only on tickets, best revenue first."""
        names = {c.id: c for c in conductors}
        by_conductor: dict[str, list[Ticket]] = {conductor_id: [] for conductor_id in names}
        for ticket in tickets:
            by_conductor.setdefault(ticket.conductor_id, []).append(ticket)

        rows = []
        for conductor_id, own in by_conductor.items():
            reference = names.get(conductor_id)
            revenue = sum((t.total_fare for t in own), ZERO)
            passengers = sum(t.quantity for t in own)
            trips = len({t.trip_key for t in own})
            by_category: dict[Category, Decimal] = defaultdict(lambda: ZERO)
            for t in own:
                by_category[t.category] += t.total_fare
            rows.append(ConductorPerformance(
                conductor_id=conductor_id,
                name=reference.name if reference else "",
                bus_number=reference.bus_number if reference else "",
                revenue=revenue,
                passengers=passengers,
                tickets=len(own),
                trips=trips,
                average_fare=ratio(revenue, passengers),
                average_passengers_per_trip=ratio(passengers, trips),
                revenue_by_category=dict(by_category),
            ))
        rows.sort(key=lambda r: (-r.revenue, r.conductor_id))
        return rows

    def daily_rollup(self, tickets: Sequence[Ticket]) -> list[DayRevenue]:
        """Days with revenue, in date order."""
        days: dict[str, DayRevenue] = {}
        for ticket in tickets:
            row = days.setdefault(ticket.date, DayRevenue(day=ticket.date))
            row.revenue += ticket.total_fare
            row.passengers += ticket.quantity
            row.tickets += 1
            if ticket.category == Category.CONDUCTOR:
                row.conductor_revenue += ticket.total_fare
            elif ticket.category == Category.PRE_BOOKING:
                row.pre_booking_revenue += ticket.total_fare
            else:
                row.pre_ticket_revenue += ticket.total_fare
        return [days[key] for key in sorted(days) if days[key].revenue > 0]

    def aggregate(
        self,
        tickets: Sequence[Ticket],
        conductors: Iterable[Conductor] = (),
    ) -> MetricsSnapshot:
        """Inactive tickets are counted but excluded from every monetary and ridership sum."""
        conductors = list(conductors)
        active = [t for t in tickets if t.active]
        total_revenue = sum((t.total_fare for t in active), ZERO)
        total_passengers = sum(t.quantity for t in active)
        total_trips = len({t.trip_key for t in active})

        hourly = self.analyzer.hourly(active)
        snapshot = MetricsSnapshot(
            total_revenue=total_revenue,
            total_passengers=total_passengers,
            total_trips=total_trips,
            total_tickets=len(active),
            inactive_tickets=len(tickets) - len(active),
            average_fare=ratio(total_revenue, total_passengers),
            average_passengers_per_trip=ratio(total_passengers, total_trips),
            per_category=self.category_totals(active),
            per_route=self.route_rollup(active),
            per_discount_type=discount_rollup(active),
            demand_by_hour=hourly,
            peak_hours=self.analyzer.peak_hours(hourly),
            demand_by_weekday=self.analyzer.weekday(active),
            demand_drivers=self.analyzer.demand_drivers(active),
            bus_utilization=self.bus_utilization(conductors),
            per_conductor=self.conductor_rollup(active, conductors),
            per_day=self.daily_rollup(active),
        )
        logger.debug(
            "Aggregated %d tickets: revenue=%s passengers=%d trips=%d",
            len(active), total_revenue, total_passengers, total_trips,
        )
        return snapshot
