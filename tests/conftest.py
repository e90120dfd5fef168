"""Shared fixtures: a small two-conductor fleet in an in-memory store."""
from datetime import date
from decimal import Decimal

import pytest

from fare_recon.models import Category, Origin, Ticket, TimeWindow
from fare_recon.orchestrator import ReconciliationEngine
from fare_recon.store import MemoryDocumentStore

C1_DAY = "conductors/c1/dailyTrips/2024-03-10"
C2_DAY = "conductors/c2/dailyTrips/2024-03-11"
C2_FEB = "conductors/c2/dailyTrips/2024-02-01"


def fleet_documents() -> dict[str, dict]:
    return {
        "conductors/c1": {
            "name": "Juan Dela Cruz",
            "busNumber": "BUS-01",
            "capacity": 30,
            "currentPassengers": 15,
            "isOnline": True,
        },
        "conductors/c2": {"name": "Maria Santos", "busNumber": "BUS-02", "currentPassengers": 40},
        C1_DAY: {
            "createdAt": "2024-03-10T05:00:00",
            "trip1": {"direction": "Batangas - Lipa", "startTime": "2024-03-10T06:00:00"},
            "trip2": {"direction": "Lipa - Batangas"},
            "summary": {"note": "not a trip"},
        },
        f"{C1_DAY}/trip1/tickets/tickets/t1": {
            "totalFare": 100,
            "quantity": 2,
            "from": "Batangas",
            "to": "Lipa",
            "timestamp": "2024-03-10T08:15:00",
            "active": True,
            "discountBreakdown": ["Passenger 1: Senior (20% off)", "Passenger 2: Regular"],
            "farePerPassenger": [40, 60],
            "startKm": 0,
            "endKm": 25,
        },
        f"{C1_DAY}/trip1/tickets/tickets/t2": {
            "totalFare": "150.00",
            "quantity": 1,
            "timestamp": "2024-03-10T09:05:00",
        },
        f"{C1_DAY}/trip1/tickets/tickets/pb1": {
            "documentType": "preBooking",
            "totalFare": 50,
            "quantity": 1,
            "timestamp": "2024-03-10T08:30:00",
        },
        f"{C1_DAY}/trip1/preBookings/preBookings/pb1": {
            "totalFare": 50,
            "quantity": 1,
            "scannedAt": "2024-03-10T08:30:00",
            "preBookingId": "pb1",
            "status": "boarded",
        },
        f"{C1_DAY}/trip1/preBookings/preBookings/pb2": {
            "totalFare": 70,
            "quantity": 2,
            "status": "paid",
        },
        f"{C1_DAY}/trip1/preTickets/preTickets/qr1": {
            "status": "boarded",
            "scannedAt": "2024-03-10T10:00:00",
            "data": {"amount": 30, "quantity": 1, "from": "Batangas", "to": "Lipa"},
        },
        f"{C1_DAY}/trip1/preTickets/preTickets/qr2": {
            "status": "boarded",
            "scannedAt": "2024-03-10T10:10:00",
            "data": {"amount": 30},
        },
        f"{C1_DAY}/trip2/tickets/tickets/t3": {
            "totalFare": 80,
            "quantity": 1,
            "timestamp": "2024-03-10T17:00:00",
            "active": False,
        },
        C2_DAY: {"trip1": {"direction": "Batangas - Lipa"}},
        f"{C2_DAY}/trip1/tickets/tickets/t4": {
            "totalFare": 45,
            "quantity": 3,
            "timestamp": "2024-03-11T08:40:00",
        },
        C2_FEB: {"trip1": {"direction": "Batangas - Lipa"}},
        f"{C2_FEB}/trip1/tickets/tickets/t5": {
            "totalFare": 100,
            "quantity": 1,
            "timestamp": "2024-02-01T07:10:00",
        },
    }


@pytest.fixture
def store() -> MemoryDocumentStore:
    return MemoryDocumentStore(fleet_documents())


@pytest.fixture
def march() -> TimeWindow:
    return TimeWindow(start=date(2024, 3, 1), end=date(2024, 3, 31))


@pytest.fixture
def engine(store) -> ReconciliationEngine:
    return ReconciliationEngine(store, today=lambda: date(2024, 3, 31))


@pytest.fixture
def make_ticket():
    """Build canonical tickets with sensible defaults."""

    def _make(**overrides) -> Ticket:
        fields = {
            "id": "t1",
            "conductor_id": "c1",
            "date": "2024-03-10",
            "trip_id": "trip1",
            "category": Category.CONDUCTOR,
            "origin": Origin.CONDUCTOR_TICKETS,
            "quantity": 1,
            "total_fare": Decimal("10"),
        }
        fields.update(overrides)
        fields.setdefault(
            "source_path",
            f"conductors/{fields['conductor_id']}/dailyTrips/{fields['date']}/"
            f"{fields['trip_id']}/{fields['origin'].value}/{fields['origin'].value}/{fields['id']}",
        )
        return Ticket(**fields)

    return _make
