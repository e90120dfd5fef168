"""Demand patterns and route efficiency."""
import logging
from datetime import tzinfo
from decimal import Decimal
from typing import Sequence

import pandas as pd

from .coerce import percent, ratio
from .models import Category, DemandDriver, HourBucket, RouteSummary, Ticket, WeekdayBucket, ZERO
from .windows import to_local

logger = logging.getLogger(__name__)

WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")

DRIVER_LABELS = {
    Category.CONDUCTOR: "Walk-in Passengers",
    Category.PRE_BOOKING: "Advance Bookings",
    Category.PRE_TICKET: "Digital Tickets",
}


def format_hour(hour: int) -> str:
    hour %= 24
    period = "PM" if hour >= 12 else "AM"
    display = 12 if hour % 12 == 0 else hour % 12
    return f"{display}:00 {period}"


def time_slot(hour: int) -> str:
    return f"{format_hour(hour)} - {format_hour(hour + 1)}"


class DemandAnalyzer:
    """Hour-of-day and day-of-week demand from ticket timestamps.

    Tickets without a usable timestamp are skipped, never assigned a
    guessed time.
    """

    def __init__(
        self,
        tz: tzinfo | None = None,
        peak_hour_limit: int = 8,
        weekday_limit: int = 7,
    ):
        self.tz = tz
        self.peak_hour_limit = peak_hour_limit
        self.weekday_limit = weekday_limit

    def frame(self, tickets: Sequence[Ticket]) -> pd.DataFrame:
        """One row per timestamped ticket: local hour, weekday, passengers."""
        rows = []
        for ticket in tickets:
            if ticket.timestamp is None:
                continue
            moment = to_local(ticket.timestamp, self.tz)
            rows.append({
                "hour": moment.hour,
                "weekday": moment.weekday(),
                "passengers": ticket.quantity,
            })
        skipped = len(tickets) - len(rows)
        if skipped:
            logger.debug("Skipped %d tickets without timestamps", skipped)
        return pd.DataFrame(rows, columns=["hour", "weekday", "passengers"]).astype("int64")

    @staticmethod
    def _counts(frame: pd.DataFrame, key: str, index) -> pd.DataFrame:
        grouped = frame.groupby(key)["passengers"].agg(["size", "sum"])
        return grouped.reindex(index, fill_value=0)

    def hourly(self, tickets: Sequence[Ticket]) -> list[HourBucket]:
        """All 24 hour buckets, demand relative to the busiest hour."""
        counts = self._counts(self.frame(tickets), "hour", range(24))
        busiest = int(counts["size"].max()) if len(counts) else 0
        return [
            HourBucket(
                hour=hour,
                time_slot=time_slot(hour),
                tickets=int(row["size"]),
                passengers=int(row["sum"]),
                demand_percentage=min(percent(int(row["size"]), busiest), 100),
            )
            for hour, row in counts.iterrows()
        ]

    def peak_hours(self, buckets: Sequence[HourBucket]) -> list[HourBucket]:
        busy = [b for b in buckets if b.tickets > 0]
        busy.sort(key=lambda b: (-b.demand_percentage, -b.tickets, b.hour))
        return busy[: self.peak_hour_limit]

    def weekday(self, tickets: Sequence[Ticket]) -> list[WeekdayBucket]:
        counts = self._counts(self.frame(tickets), "weekday", range(7))
        buckets = [
            WeekdayBucket(weekday=WEEKDAYS[day], tickets=int(row["size"]), passengers=int(row["sum"]))
            for day, row in counts.iterrows()
            if int(row["size"]) > 0
        ]
        buckets.sort(key=lambda b: (-b.tickets, WEEKDAYS.index(b.weekday)))
        return buckets[: self.weekday_limit]

    def demand_drivers(self, tickets: Sequence[Ticket]) -> list[DemandDriver]:
        """Share of tickets per channel; channels with no share are left out."""
        total = len(tickets)
        drivers = []
        for category, label in DRIVER_LABELS.items():
            impact = percent(sum(1 for t in tickets if t.category == category), total)
            if impact > 0:
                drivers.append(DemandDriver(factor=label, category=category, impact=impact))
        drivers.sort(key=lambda d: -d.impact)
        return drivers

    @staticmethod
    def route_distance(tickets: Sequence[Ticket]) -> Decimal:
        """Total recorded distance, 0 when no ticket carries one."""
        return sum(
            (t.distance_km for t in tickets if t.distance_km is not None and t.distance_km > 0), ZERO
        )

    def route_efficiency(self, tickets: Sequence[Ticket]) -> Decimal:
        """Revenue per km for a route's tickets; no distance is fabricated."""
        revenue = sum((t.total_fare for t in tickets), ZERO)
        return ratio(revenue, self.route_distance(tickets))


def route_performance(routes: Sequence[RouteSummary], limit: int = 10) -> list[RouteSummary]:
    """Routes with revenue, best first."""
    ranked = [r for r in routes if r.revenue > 0]
    ranked.sort(key=lambda r: (-r.revenue, r.route))
    return ranked[:limit]
