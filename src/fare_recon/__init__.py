"""Fare ticket reconciliation and metrics pipeline."""
from .models import Category, Conductor, MetricsSnapshot, Ticket, TimeWindow
from .orchestrator import ReconciliationEngine

__all__ = [
    "Category",
    "Conductor",
    "MetricsSnapshot",
    "ReconciliationEngine",
    "Ticket",
    "TimeWindow",
]
