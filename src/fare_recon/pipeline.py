"""Fare reconciliation pipeline - resolve, fetch, reconcile, report."""
import argparse
import asyncio
import logging
from pathlib import Path
from zoneinfo import ZoneInfo

from .config import Settings
from .demand import route_performance
from .errors import ReconciliationError
from .models import GrowthReport, MetricsReport
from .orchestrator import ReconciliationEngine
from .store import FileDocumentStore
from .windows import resolve_window


def _format_money(value) -> str:
    return f"PHP {value:,.2f}"


def _report_to_markdown(report: MetricsReport, growth: GrowthReport) -> str:
    """Convert metrics and growth to markdown."""
    snap = report.snapshot
    lines = [
        "# Fare Reconciliation Report",
        f"**Period:** {report.window}",
        f"**Route:** {report.route_filter or 'All Routes'}",
        f"**Ticket type:** {report.category_filter.value if report.category_filter else 'All'}\n",
        "## Summary",
        f"- **Total Revenue:** {_format_money(snap.total_revenue)}",
        f"- **Passengers:** {snap.total_passengers}",
        f"- **Trips:** {snap.total_trips}",
        f"- **Average Fare:** {_format_money(snap.average_fare)}",
        f"- **Passengers per Trip:** {snap.average_passengers_per_trip}",
        f"- **Revenue Growth:** {growth.revenue_growth}% vs {growth.previous_window}",
        "",
        "## Ticket Types",
        "| Type | Revenue | Share | Volume | Avg Price | Growth |",
        "|------|---------|-------|--------|-----------|--------|",
    ]
    for row in growth.categories:
        lines.append(
            f"| {row.label} | {_format_money(row.current_revenue)} | {row.market_share}% "
            f"| {row.volume} | {_format_money(row.average_price)} | {row.growth}% |"
        )

    lines.extend([
        "",
        "## Route Performance",
        "| Route | Revenue | Passengers | Trips | Utilization | Revenue/km |",
        "|-------|---------|------------|-------|-------------|------------|",
    ])
    for route in route_performance(snap.per_route):
        lines.append(
            f"| {route.route} | {_format_money(route.revenue)} | {route.passengers} "
            f"| {route.trips} | {route.utilization}% | {route.revenue_per_km} |"
        )

    lines.extend([
        "",
        "## Conductor Performance",
        "| Conductor | Bus | Revenue | Passengers | Trips | Avg Fare | Passengers/Trip |",
        "|-----------|-----|---------|------------|-------|----------|-----------------|",
    ])
    for row in snap.per_conductor:
        lines.append(
            f"| {row.name or row.conductor_id} | {row.bus_number or '-'} | {_format_money(row.revenue)} "
            f"| {row.passengers} | {row.trips} | {_format_money(row.average_fare)} "
            f"| {row.average_passengers_per_trip} |"
        )

    if snap.per_day:
        lines.extend([
            "",
            "## Daily Revenue",
            "| Date | Revenue | Conductor | Pre-booking | Pre-ticketing | Passengers |",
            "|------|---------|-----------|-------------|---------------|------------|",
        ])
        lines.extend(
            f"| {d.day} | {_format_money(d.revenue)} | {_format_money(d.conductor_revenue)} "
            f"| {_format_money(d.pre_booking_revenue)} | {_format_money(d.pre_ticket_revenue)} "
            f"| {d.passengers} |"
            for d in snap.per_day
        )

    lines.extend(["", "## Discounts"])
    lines.extend(
        f"- **{bucket.type.title()}:** {_format_money(bucket.revenue)} "
        f"({bucket.share}%, {bucket.passengers} passengers)"
        for bucket in snap.per_discount_type
    )

    if snap.peak_hours:
        lines.extend(["", "## Peak Hours"])
        lines.extend(
            f"- {h.time_slot}: {h.tickets} tickets, {h.passengers} passengers ({h.demand_percentage}%)"
            for h in snap.peak_hours
        )

    if snap.demand_by_weekday:
        lines.extend(["", "## Busiest Days"])
        lines.extend(
            f"- {d.weekday}: {d.tickets} tickets, {d.passengers} passengers"
            for d in snap.demand_by_weekday
        )

    if report.warnings:
        lines.extend(["", "## Data Warnings"])
        lines.extend(f"- `{w.kind.value}` {w.path}: {w.message}" for w in report.warnings)

    lines.append("")
    return "\n".join(lines)


async def run_pipeline(
    range_name: str = "last_30_days",
    start: str | None = None,
    end: str | None = None,
    route: str | None = None,
    category: str | None = None,
    settings: Settings | None = None,
) -> Path | None:
    """Run one reconciliation pass and write the markdown report."""
    settings = settings or Settings.from_env()
    print("=== Fare Reconciliation Pipeline ===\n")

    if not settings.store_dir.exists():
        print(f"Error: {settings.store_dir} not found")
        return None

    tz = ZoneInfo(settings.timezone)
    engine = ReconciliationEngine(
        FileDocumentStore(settings.store_dir),
        max_concurrency=settings.max_concurrency,
        tz=tz,
        default_capacity=settings.default_capacity,
    )

    window = resolve_window(range_name, start, end, today=engine.today())
    print(f"Window: {window} ({window.range_name})\n")

    print("Reconciling tickets and previous period...")
    report = await engine.get_metrics(window, route, category)
    growth = await engine.get_growth(window, current=report)
    raw = report.raw_data
    print(
        f"✓ {len(raw.conductor)} conductor, {len(raw.pre_booking)} pre-booking, "
        f"{len(raw.pre_ticket)} pre-ticket records"
    )
    if report.warnings:
        print(f"  Warning: {len(report.warnings)} partial-data warnings")

    settings.report_dir.mkdir(parents=True, exist_ok=True)
    md_file = settings.report_dir / f"report_{window.start}_{window.end}.md"
    md_file.write_text(_report_to_markdown(report, growth))
    print(f"✓ Saved to {md_file}\n")

    snap = report.snapshot
    print("=" * 60)
    print("SUMMARY")
    print("=" * 60)
    print(f"  Revenue: {_format_money(snap.total_revenue)} ({growth.revenue_growth:+d}%)")
    print(f"  Passengers: {snap.total_passengers}")
    print(f"  Trips: {snap.total_trips}")
    print(f"  Average Fare: {_format_money(snap.average_fare)}")
    print("\nTOP ROUTES:")
    for i, r in enumerate(route_performance(snap.per_route, limit=5), 1):
        print(f"{i}. {r.route}: {_format_money(r.revenue)}, {r.passengers} passengers")
    print("=" * 60)
    return md_file


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Reconcile fare tickets into revenue metrics.")
    parser.add_argument("--range", dest="range_name", default="last_30_days",
                        help="last_7_days, last_30_days, last_3_months, last_6_months, last_year")
    parser.add_argument("--start", help="explicit window start (YYYY-MM-DD)")
    parser.add_argument("--end", help="explicit window end (YYYY-MM-DD)")
    parser.add_argument("--route", help="trip direction to filter on")
    parser.add_argument("--category", help="conductor, preBooking or preTicket")
    parser.add_argument("--store", type=Path, help="document store directory")
    args = parser.parse_args(argv)

    settings = Settings.from_env()
    if args.store is not None:
        settings = settings.model_copy(update={"store_dir": args.store})
    logging.basicConfig(level=settings.log_level, format="%(levelname)s %(name)s: %(message)s")

    try:
        result = asyncio.run(run_pipeline(
            args.range_name, args.start, args.end, args.route, args.category, settings
        ))
    except (ReconciliationError, ValueError) as e:
        print(f"Error: {e}")
        return 1
    return 0 if result is not None else 1


if __name__ == "__main__":
    raise SystemExit(main())
