"""Period-over-period growth."""
from decimal import Decimal

from .coerce import percent, ratio, round_percent
from .models import Category, CategoryGrowth, MetricsSnapshot

Number = int | float | Decimal

CATEGORY_LABELS = {
    Category.CONDUCTOR: "Regular/Conductor",
    Category.PRE_BOOKING: "Pre-booking",
    Category.PRE_TICKET: "Pre-ticketing",
}


def growth(current: Number, previous: Number) -> int:
    """Percent change; 100 from a zero base with any activity, else 0."""
    current = Decimal(str(current))
    previous = Decimal(str(previous))
    if previous == 0:
        return 100 if current > 0 else 0
    return round_percent((current - previous) / previous * 100)


def category_growth(current: MetricsSnapshot, previous: MetricsSnapshot) -> list[CategoryGrowth]:
    """One row per ticket category, current period against previous."""
    rows = []
    for category in Category:
        now = current.per_category.get(category)
        before = previous.per_category.get(category)
        revenue = now.revenue if now else Decimal("0")
        prior = before.revenue if before else Decimal("0")
        rows.append(CategoryGrowth(
            category=category,
            label=CATEGORY_LABELS[category],
            current_revenue=revenue,
            previous_revenue=prior,
            growth=growth(revenue, prior),
            market_share=percent(revenue, current.total_revenue),
            volume=now.count if now else 0,
            average_price=ratio(revenue, now.passengers if now else 0),
        ))
    return rows
