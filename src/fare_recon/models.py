"""Data models for the reconciliation layers."""
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .errors import InvalidWindow, ReconciliationWarning


UNKNOWN_DIRECTION = "Unknown Direction"
ZERO = Decimal("0")


class Category(str, Enum):
    """Ticket channel. Every canonical ticket carries exactly one."""
    CONDUCTOR = "conductor"
    PRE_BOOKING = "preBooking"
    PRE_TICKET = "preTicket"

    @classmethod
    def parse(cls, value: str | None) -> "Category | None":
        """Map a stored type tag or filter spelling to a category."""
        if not value:
            return None
        key = str(value).strip().lower().replace("-", "").replace("_", "").replace(" ", "")
        return _CATEGORY_ALIASES.get(key)


_CATEGORY_ALIASES = {
    "conductor": Category.CONDUCTOR,
    "conductorticket": Category.CONDUCTOR,
    "prebooking": Category.PRE_BOOKING,
    "prebook": Category.PRE_BOOKING,
    "preticket": Category.PRE_TICKET,
    "preticketing": Category.PRE_TICKET,
}


class Origin(str, Enum):
    """Storage path a record was read from."""
    CONDUCTOR_TICKETS = "tickets"
    PRE_BOOKINGS = "preBookings"
    PRE_TICKETS = "preTickets"


class Provenance(BaseModel):
    """Where a raw record came from."""
    model_config = ConfigDict(frozen=True)

    source_path: str
    conductor_id: str
    date: str
    trip_id: str
    origin: Origin


class DiscountEntry(BaseModel):
    """Structured per-passenger discount descriptor."""
    model_config = ConfigDict(frozen=True)

    type: str = "Regular"
    fare: Decimal | None = None
    discount: Decimal = ZERO


DiscountItem = DiscountEntry | str


class TripInfo(BaseModel):
    """A trip map stored on a date partition document."""
    model_config = ConfigDict(frozen=True)

    trip_id: str
    direction: str | None = None
    start_time: datetime | None = None
    start_km: Decimal | None = None
    end_km: Decimal | None = None
    total_km: Decimal | None = None


class Partition(BaseModel):
    """One conductor's date partition inside a window."""
    model_config = ConfigDict(frozen=True)

    conductor_id: str
    date_key: str
    effective_date: date
    trips: tuple[TripInfo, ...] = ()

    @property
    def path(self) -> str:
        return f"conductors/{self.conductor_id}/dailyTrips/{self.date_key}"


class _RawBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    provenance: Provenance
    document_type: str | None = None
    logical_id: str | None = None
    from_stop: str = ""
    to_stop: str = ""
    direction: str | None = None
    quantity: int | None = None
    total_fare: Decimal | None = None
    discount_amount: Decimal | None = None
    discount_breakdown: tuple[DiscountItem, ...] = ()
    passenger_fares: tuple[Decimal, ...] = ()
    timestamp: datetime | None = None
    active: bool = True
    start_km: Decimal | None = None
    end_km: Decimal | None = None
    total_km: Decimal | None = None


class ConductorRaw(_RawBase):
    """A document from a trip's conductor-tickets path."""
    kind: Literal["conductor"] = "conductor"


class PreBookingRaw(_RawBase):
    """A document from a trip's dedicated pre-booking path."""
    kind: Literal["preBooking"] = "preBooking"
    status: str | None = None
    scanned: bool = False


class PreTicketRaw(_RawBase):
    """A pre-ticket document, unwrapped from its {status, data} envelope."""
    kind: Literal["preTicket"] = "preTicket"
    status: str | None = None
    scanned: bool = False


RawRecord = ConductorRaw | PreBookingRaw | PreTicketRaw


class Ticket(BaseModel):
    """Canonical, classified ticket used by every rollup."""
    model_config = ConfigDict(frozen=True)

    id: str
    conductor_id: str
    date: str
    trip_id: str
    category: Category
    origin: Origin
    source_path: str
    from_stop: str = ""
    to_stop: str = ""
    direction: str | None = None
    quantity: int = Field(ge=1)
    total_fare: Decimal = Field(ge=0)
    discount_amount: Decimal = Field(default=ZERO, ge=0)
    discount_breakdown: tuple[DiscountItem, ...] = ()
    passenger_fares: tuple[Decimal, ...] = ()
    timestamp: datetime | None = None
    active: bool = True
    logical_id: str | None = None
    start_km: Decimal | None = None
    end_km: Decimal | None = None
    total_km: Decimal | None = None

    @property
    def route_key(self) -> str:
        return self.direction or UNKNOWN_DIRECTION

    @property
    def trip_key(self) -> tuple[str, str, str]:
        return (self.conductor_id, self.date, self.trip_id)

    @property
    def identity(self) -> tuple[str, str, str]:
        """Logical transaction identity shared by mirrored copies."""
        return (self.conductor_id, self.date, self.logical_id or self.id)

    @property
    def distance_km(self) -> Decimal | None:
        if self.total_km is not None and self.total_km > 0:
            return self.total_km
        if self.start_km is not None and self.end_km is not None:
            return abs(self.end_km - self.start_km)
        return None


class Conductor(BaseModel):
    """Conductor reference data; read-only to the engine."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    bus_number: str = ""
    capacity: int | None = None
    current_passengers: int = 0
    is_online: bool = False
    last_seen: datetime | None = None


class TimeWindow(BaseModel):
    """Inclusive date range a query covers."""
    model_config = ConfigDict(frozen=True)

    start: date
    end: date
    range_name: str = "custom"

    @model_validator(mode="after")
    def _ordered(self) -> "TimeWindow":
        if self.start > self.end:
            raise InvalidWindow(f"window start {self.start} is after end {self.end}")
        return self

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def dates(self) -> list[date]:
        return [self.start + timedelta(days=i) for i in range(self.days)]

    def __str__(self) -> str:
        return f"{self.start} to {self.end}"


class CategoryTotals(BaseModel):
    """Revenue and volume for one ticket category."""
    revenue: Decimal = ZERO
    count: int = 0
    passengers: int = 0


class RouteSummary(BaseModel):
    """Per-direction rollup."""
    route: str
    revenue: Decimal = ZERO
    passengers: int = 0
    trips: int = 0
    average_fare: Decimal = ZERO
    average_passengers_per_trip: Decimal = ZERO
    utilization: int = 0
    revenue_per_km: Decimal = ZERO
    revenue_by_category: dict[Category, Decimal] = Field(default_factory=dict)


class DiscountBucket(BaseModel):
    """Revenue collected per fare type."""
    type: str
    revenue: Decimal = ZERO
    passengers: int = 0
    share: int = 0


class HourBucket(BaseModel):
    hour: int
    time_slot: str
    tickets: int = 0
    passengers: int = 0
    demand_percentage: int = 0


class WeekdayBucket(BaseModel):
    weekday: str
    tickets: int = 0
    passengers: int = 0


class DemandDriver(BaseModel):
    factor: str
    category: Category
    impact: int


class ConductorUtilization(BaseModel):
    conductor_id: str
    name: str = ""
    bus_number: str = ""
    capacity: int
    current_passengers: int = 0
    utilization: int = 0
    is_online: bool = False


class ConductorPerformance(BaseModel):
    """Per-conductor rollup; conductors with no tickets show zeros."""
    conductor_id: str
    name: str = ""
    bus_number: str = ""
    revenue: Decimal = ZERO
    passengers: int = 0
    tickets: int = 0
    trips: int = 0
    average_fare: Decimal = ZERO
    average_passengers_per_trip: Decimal = ZERO
    revenue_by_category: dict[Category, Decimal] = Field(default_factory=dict)


class DayRevenue(BaseModel):
    """Revenue for one partition date, split by channel."""
    day: str
    revenue: Decimal = ZERO
    passengers: int = 0
    tickets: int = 0
    conductor_revenue: Decimal = ZERO
    pre_booking_revenue: Decimal = ZERO
    pre_ticket_revenue: Decimal = ZERO


class MetricsSnapshot(BaseModel):
    """Aggregation output for one set of canonical tickets."""
    total_revenue: Decimal = ZERO
    total_passengers: int = 0
    total_trips: int = 0
    total_tickets: int = 0
    inactive_tickets: int = 0
    average_fare: Decimal = ZERO
    average_passengers_per_trip: Decimal = ZERO
    per_category: dict[Category, CategoryTotals] = Field(default_factory=dict)
    per_route: list[RouteSummary] = Field(default_factory=list)
    per_discount_type: list[DiscountBucket] = Field(default_factory=list)
    demand_by_hour: list[HourBucket] = Field(default_factory=list)
    peak_hours: list[HourBucket] = Field(default_factory=list)
    demand_by_weekday: list[WeekdayBucket] = Field(default_factory=list)
    demand_drivers: list[DemandDriver] = Field(default_factory=list)
    bus_utilization: list[ConductorUtilization] = Field(default_factory=list)
    per_conductor: list[ConductorPerformance] = Field(default_factory=list)
    per_day: list[DayRevenue] = Field(default_factory=list)


class RawData(BaseModel):
    """Canonical tickets grouped by category."""
    conductor: list[Ticket] = Field(default_factory=list)
    pre_booking: list[Ticket] = Field(default_factory=list)
    pre_ticket: list[Ticket] = Field(default_factory=list)

    @classmethod
    def from_tickets(cls, tickets: list[Ticket]) -> "RawData":
        data = cls()
        for ticket in tickets:
            data.bucket(ticket.category).append(ticket)
        return data

    def bucket(self, category: Category) -> list[Ticket]:
        return {
            Category.CONDUCTOR: self.conductor,
            Category.PRE_BOOKING: self.pre_booking,
            Category.PRE_TICKET: self.pre_ticket,
        }[category]

    def all(self) -> list[Ticket]:
        return [*self.conductor, *self.pre_booking, *self.pre_ticket]


class MetricsReport(BaseModel):
    """Snapshot plus the tickets and warnings it was built from."""
    window: TimeWindow
    route_filter: str | None = None
    category_filter: Category | None = None
    snapshot: MetricsSnapshot
    raw_data: RawData
    warnings: list[ReconciliationWarning] = Field(default_factory=list)
    generated_at: datetime

    @property
    def partial(self) -> bool:
        return bool(self.warnings)


class CategoryGrowth(BaseModel):
    """Ticket-type row with growth against the previous period."""
    category: Category
    label: str
    current_revenue: Decimal = ZERO
    previous_revenue: Decimal = ZERO
    growth: int = 0
    market_share: int = 0
    volume: int = 0
    average_price: Decimal = ZERO


class GrowthReport(BaseModel):
    window: TimeWindow
    previous_window: TimeWindow
    categories: list[CategoryGrowth] = Field(default_factory=list)
    revenue_growth: int = 0
    passenger_growth: int = 0
    warnings: list[ReconciliationWarning] = Field(default_factory=list)
    current: MetricsReport | None = None
