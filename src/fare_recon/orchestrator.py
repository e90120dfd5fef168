"""Reconciliation orchestration: resolve -> fetch -> classify -> aggregate."""
import asyncio
import inspect
import logging
from datetime import date, datetime, tzinfo
from enum import Enum
from typing import Any, Awaitable, Callable, Sequence

from .aggregate import MetricsAggregator, discount_warnings
from .classify import reconcile
from .config import DEFAULT_CAPACITY
from .demand import DemandAnalyzer
from .errors import AllSourcesFailed, InvalidWindow, ReconciliationError
from .growth import category_growth, growth
from .models import Category, GrowthReport, MetricsReport, RawData, Ticket, TimeWindow
from .partitions import CONDUCTORS, PartitionResolver, ScanningPartitionResolver
from .sources import ConductorTicketSource, PreBookingSource, PreTicketSource, TicketSource
from .store import CancelHandle, DocumentStore
from .windows import previous_window, resolve_window

logger = logging.getLogger(__name__)

WindowLike = TimeWindow | str
MetricsCallback = Callable[[MetricsReport], Awaitable[None] | None]
QueryKey = tuple[date, date, str, str | None, Category | None]

DEFAULT_SOURCES: tuple[type[TicketSource], ...] = (
    ConductorTicketSource,
    PreBookingSource,
    PreTicketSource,
)


class QueryState(str, Enum):
    IDLE = "idle"
    RESOLVING_WINDOW = "resolving_window"
    FETCHING = "fetching"
    CLASSIFYING = "classifying"
    AGGREGATING = "aggregating"
    DONE = "done"
    FAILED = "failed"


class ReconciliationPass:
    """Lifecycle of one full recomputation."""

    def __init__(self, label: str):
        self.label = label
        self.state = QueryState.IDLE
        self.history = [QueryState.IDLE]

    def advance(self, state: QueryState) -> None:
        logger.debug("%s: %s -> %s", self.label, self.state.value, state.value)
        self.state = state
        self.history.append(state)


def normalize_route(route: str | None) -> str | None:
    if route is None:
        return None
    route = route.strip()
    if not route or route.lower() == "all":
        return None
    return route


def normalize_category(category: Category | str | None) -> Category | None:
    if category is None or category == "":
        return None
    if isinstance(category, Category):
        return category
    parsed = Category.parse(category)
    if parsed is None:
        raise ValueError(f"unknown ticket category {category!r}")
    return parsed


class ReconciliationEngine:
    """Entry point for one-shot, growth and live metrics queries."""

    def __init__(
        self,
        store: DocumentStore,
        resolver: PartitionResolver | None = None,
        sources: Sequence[type[TicketSource]] = DEFAULT_SOURCES,
        max_concurrency: int = 10,
        tz: tzinfo | None = None,
        default_capacity: int = DEFAULT_CAPACITY,
        today: Callable[[], date] | None = None,
        watch_paths: Sequence[str] = (CONDUCTORS,),
    ):
        self.store = store
        self.tz = tz
        self.max_concurrency = max_concurrency
        self.resolver = resolver or ScanningPartitionResolver(store, max_concurrency, tz)
        self.source_types = tuple(sources)
        self.aggregator = MetricsAggregator(default_capacity, DemandAnalyzer(tz))
        self.today = today or (lambda: datetime.now(self.tz).date())
        self.watch_paths = tuple(watch_paths)
        self._subscriptions: dict[QueryKey, "Subscription"] = {}

    def resolve(self, window: WindowLike) -> TimeWindow:
        if isinstance(window, TimeWindow):
            return window
        if isinstance(window, str):
            return resolve_window(window, today=self.today())
        raise InvalidWindow(f"unsupported window {window!r}")

    async def _run(
        self,
        window: TimeWindow,
        route: str | None,
        category: Category | None,
        run: ReconciliationPass,
    ) -> MetricsReport:
        run.advance(QueryState.RESOLVING_WINDOW)
        scan = await self.resolver.resolve(window)

        run.advance(QueryState.FETCHING)
        semaphore = asyncio.Semaphore(self.max_concurrency)
        sources = [source_type(self.store, semaphore) for source_type in self.source_types]
        batches = await asyncio.gather(*[source.fetch(scan.partitions) for source in sources])
        if batches and all(batch.all_failed for batch in batches):
            raise AllSourcesFailed(CONDUCTORS, "every ticket source failed")

        run.advance(QueryState.CLASSIFYING)
        classified = reconcile(record for batch in batches for record in batch.records)
        tickets: list[Ticket] = classified.tickets
        if route is not None:
            wanted = route.lower()
            tickets = [t for t in tickets if (t.direction or "").strip().lower() == wanted]
        if category is not None:
            tickets = [t for t in tickets if t.category == category]

        run.advance(QueryState.AGGREGATING)
        snapshot = self.aggregator.aggregate(tickets, scan.conductors)
        warnings = [
            *scan.warnings,
            *(w for batch in batches for w in batch.warnings),
            *classified.warnings,
            *discount_warnings(tickets),
        ]
        run.advance(QueryState.DONE)
        logger.info(
            "%s: %d tickets, revenue %s, %d warnings",
            run.label, len(tickets), snapshot.total_revenue, len(warnings),
        )
        return MetricsReport(
            window=window,
            route_filter=route,
            category_filter=category,
            snapshot=snapshot,
            raw_data=RawData.from_tickets(tickets),
            warnings=warnings,
            generated_at=datetime.now(self.tz),
        )

    async def get_metrics(
        self,
        window: WindowLike,
        route_filter: str | None = None,
        category_filter: Category | str | None = None,
    ) -> MetricsReport:
        """Full reconciliation pass over `window`."""
        run = ReconciliationPass(f"metrics[{window}]")
        try:
            resolved = self.resolve(window)
            return await self._run(
                resolved, normalize_route(route_filter), normalize_category(category_filter), run
            )
        except (ReconciliationError, ValueError):
            run.advance(QueryState.FAILED)
            raise

    async def get_growth(
        self,
        window: WindowLike,
        route_filter: str | None = None,
        category_filter: Category | str | None = None,
        current: MetricsReport | None = None,
    ) -> GrowthReport:
        """Compare `window` with the period immediately before it.

        Pass an already computed `current` report to reuse it; its window and
        filters then take precedence and only the previous period is read.
        """
        if current is None:
            current_window = self.resolve(window)
            prior_window = previous_window(current_window)
            current, previous = await asyncio.gather(
                self.get_metrics(current_window, route_filter, category_filter),
                self.get_metrics(prior_window, route_filter, category_filter),
            )
        else:
            current_window = current.window
            prior_window = previous_window(current_window)
            previous = await self.get_metrics(prior_window, current.route_filter, current.category_filter)
        return GrowthReport(
            window=current_window,
            previous_window=prior_window,
            categories=category_growth(current.snapshot, previous.snapshot),
            revenue_growth=growth(current.snapshot.total_revenue, previous.snapshot.total_revenue),
            passenger_growth=growth(current.snapshot.total_passengers, previous.snapshot.total_passengers),
            warnings=[*current.warnings, *previous.warnings],
            current=current,
        )

    async def available_routes(self) -> list[str]:
        """Distinct trip directions across every partition."""
        scan = await self.resolver.resolve(None)
        return sorted({
            trip.direction for partition in scan.partitions for trip in partition.trips if trip.direction
        })

    def subscribe_metrics(
        self,
        window: WindowLike,
        callback: MetricsCallback,
        route_filter: str | None = None,
        category_filter: Category | str | None = None,
    ) -> "Subscription":
        """Recompute and deliver metrics now and on every store change.

        Must be called from a running event loop. A previous subscription
        for the same query is torn down first.
        """
        resolved = self.resolve(window)
        route = normalize_route(route_filter)
        category = normalize_category(category_filter)
        key: QueryKey = (resolved.start, resolved.end, resolved.range_name, route, category)

        existing = self._subscriptions.get(key)
        if existing is not None:
            logger.info("Replacing live query for %s", resolved)
            existing.cancel()

        subscription = Subscription(self, key, resolved, route, category, callback)
        self._subscriptions[key] = subscription
        subscription.start()
        return subscription

    def _release(self, subscription: "Subscription") -> None:
        if self._subscriptions.get(subscription.key) is subscription:
            del self._subscriptions[subscription.key]

    @property
    def active_subscriptions(self) -> int:
        return len(self._subscriptions)

    def close(self) -> None:
        for subscription in list(self._subscriptions.values()):
            subscription.cancel()


class Subscription:
    """Handle for a live metrics query; call `cancel()` to stop it."""

    def __init__(
        self,
        engine: ReconciliationEngine,
        key: QueryKey,
        window: TimeWindow,
        route: str | None,
        category: Category | None,
        callback: MetricsCallback,
    ):
        self.engine = engine
        self.key = key
        self.window = window
        self.route = route
        self.category = category
        self.callback = callback
        self.closed = False
        self.refreshes = 0
        self.last_report: MetricsReport | None = None
        self.last_error: ReconciliationError | None = None
        self._loop = asyncio.get_running_loop()
        self._task: asyncio.Task | None = None
        self._dirty = False
        self._cancels: list[CancelHandle] = []

    def start(self) -> None:
        for path in self.engine.watch_paths:
            self._cancels.append(self.engine.store.subscribe_collection(path, self._on_change))
        self._schedule()

    def _on_change(self, changed_path: str) -> None:
        if self.closed:
            return
        logger.debug("Change at %s, scheduling refresh", changed_path)
        self._loop.call_soon_threadsafe(self._schedule)

    def _schedule(self) -> None:
        if self.closed:
            return
        if self._task is not None and not self._task.done():
            self._dirty = True
            return
        self._task = self._loop.create_task(self._refresh())

    async def _refresh(self) -> None:
        while not self.closed:
            self._dirty = False
            try:
                report = await self.engine.get_metrics(self.window, self.route, self.category)
            except ReconciliationError as e:
                logger.error("Live query %s failed: %s", self.window, e)
                self.last_error = e
            else:
                self.last_report = report
                self.refreshes += 1
                if not self.closed:
                    await self._deliver(report)
            if not self._dirty:
                break

    async def _deliver(self, report: MetricsReport) -> None:
        try:
            result: Any = self.callback(report)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Metrics callback raised for %s", self.window)

    async def drain(self) -> None:
        """Wait until no refresh is running or pending."""
        while not self.closed:
            await asyncio.sleep(0)
            task = self._task
            if task is None or task.done():
                return
            await asyncio.shield(task)

    def cancel(self) -> None:
        if self.closed:
            return
        self.closed = True
        for cancel in self._cancels:
            cancel()
        self._cancels.clear()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self.engine._release(self)

    __call__ = cancel
