from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import List, Dict, Any, Optional, Tuple
import asyncio
import logging
import time

from clickhouse_store import SecondaryStore
from database import PrimaryStore
from errors import SecondaryStoreError, ValidationError
from queries import AggregateQuery, Metric, to_utc
from redis_cache import RedisCache

logger = logging.getLogger(__name__)

DATE_RANGES = {"1d": 1, "7d": 7, "30d": 30}
DEFAULT_DATE_RANGE = "7d"

REPORT_WINDOW_DAYS = 7
REPORT_ROW_LIMIT = 1000

JOURNEY_KEYS = ("session_id", "user_id", "device_type", "browser", "country", "city")
JOURNEY_LIMIT = 10000

FUNNEL_WINDOW_DAYS = 30
FUNNEL_STEPS = ("landing_page", "product_view", "cart_view", "checkout_start", "purchase_complete")
FUNNEL_PREFIXES = (
    ("/products", "product_view"),
    ("/cart", "cart_view"),
    ("/checkout", "checkout_start"),
    ("/order-confirmation", "purchase_complete"),
)

PAGE_VISIT_DIMENSIONS = ["path", "device_type", "browser", "country"]
PAGE_VISIT_METRICS = [
    Metric("count", None, "visit_count"),
    Metric("count_distinct", "session_id", "unique_sessions"),
    Metric("count_distinct", "user_id", "unique_users"),
    Metric("avg", "duration_seconds", "avg_duration"),
]


def _jsonable(row: Dict[str, Any]) -> Dict[str, Any]:
    # AVG comes back as Decimal and DATE as date from PostgreSQL
    out = {}
    for key, value in row.items():
        if isinstance(value, Decimal):
            value = float(value)
        elif isinstance(value, date) and not isinstance(value, datetime):
            value = value.isoformat()
        out[key] = value
    return out


def funnel_step(path: Optional[str]) -> Optional[str]:
    """Funnel step a page path belongs to, None for pages outside the funnel"""
    if path == "/":
        return "landing_page"
    for prefix, step in FUNNEL_PREFIXES:
        if path and path.startswith(prefix):
            return step
    return None


class AnalyticsService:
    def __init__(
        self,
        primary: PrimaryStore,
        secondary: Optional[SecondaryStore] = None,
        cache: Optional[RedisCache] = None,
        secondary_timeout: float = 10.0,
    ):
        self.primary = primary
        self.secondary = secondary
        self.cache = cache
        self.secondary_timeout = secondary_timeout

    async def page_visit_breakdown(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        path: Optional[str] = None,
        user_id: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> Dict[str, Any]:
        """Grouped page-visit stats, secondary store first with primary fallback"""
        query = AggregateQuery(
            table="page_visits",
            metrics=PAGE_VISIT_METRICS,
            group_by=PAGE_VISIT_DIMENSIONS,
            start=to_utc(start_date) if start_date else None,
            end=to_utc(end_date) if end_date else None,
            filters={"path": path, "user_id": user_id},
            order_by=[("visit_count", True)],
            limit=limit,
            offset=offset,
        )

        data, source = await self._aggregate(query)
        return {"data": data, "source": source, "total": len(data)}

    async def _aggregate(self, query: AggregateQuery) -> Tuple[List[Dict[str, Any]], str]:
        """Run on the secondary store first; any failure there falls back to the primary"""
        if self.secondary is not None:
            try:
                data = await asyncio.wait_for(
                    self.secondary.aggregate(query), timeout=self.secondary_timeout
                )
                return data, "secondary"
            except (SecondaryStoreError, asyncio.TimeoutError) as e:
                logger.warning(f"Secondary query on {query.table} failed, falling back to primary store: {e}")

        return [_jsonable(row) for row in await self.primary.aggregate(query)], "primary"

    async def dashboard(self, date_range: str = DEFAULT_DATE_RANGE, use_cache: bool = True) -> Dict[str, Any]:
        """Headline metrics, top pages and device split for a trailing window"""
        period = date_range if date_range in DATE_RANGES else DEFAULT_DATE_RANGE
        cache_key = f"dashboard:{period}"

        if use_cache and self.cache is not None:
            cached = await self.cache.get(cache_key)
            if cached:
                return cached

        end = datetime.now(timezone.utc)
        start = end - timedelta(days=DATE_RANGES[period])

        started = time.time()
        visits = await self.primary.aggregate(AggregateQuery(
            table="page_visits",
            metrics=[
                Metric("count", None, "total_visits"),
                Metric("count_distinct", "session_id", "unique_sessions"),
                Metric("count_distinct", "user_id", "unique_users"),
                Metric("avg", "duration_seconds", "avg_duration"),
            ],
            start=start,
            end=end,
        ))
        events = await self.primary.aggregate(AggregateQuery(
            table="events",
            metrics=[
                Metric("count", None, "total_events"),
                Metric("count_distinct", "event_type", "unique_event_types"),
            ],
            start=start,
            end=end,
        ))
        top_pages = await self.primary.aggregate(AggregateQuery(
            table="page_visits",
            metrics=[Metric("count", None, "visits")],
            group_by=["path"],
            start=start,
            end=end,
            order_by=[("visits", True), ("path", False)],
            limit=10,
        ))
        devices = await self.primary.aggregate(AggregateQuery(
            table="page_visits",
            metrics=[Metric("count", None, "count")],
            group_by=["device_type"],
            start=start,
            end=end,
            not_null=["device_type"],
            order_by=[("count", True)],
        ))
        logger.info(f"Dashboard queries for {period} took {(time.time() - started) * 1000:.2f}ms")

        data = {
            "date_range": {"start": start, "end": end, "period": period},
            "metrics": {
                "page_visits": _jsonable(visits[0]) if visits else {},
                "events": _jsonable(events[0]) if events else {},
            },
            "top_pages": [_jsonable(row) for row in top_pages],
            "device_breakdown": [_jsonable(row) for row in devices],
        }
        if self.cache is not None:
            await self.cache.set(cache_key, data)
        return data

    # -------------------------------------------------------------------------
    # Daily reports for BI export
    # -------------------------------------------------------------------------

    def _report_window(self, start_date: Optional[datetime], end_date: Optional[datetime],
                       days: int = REPORT_WINDOW_DAYS) -> Tuple[datetime, datetime]:
        end = to_utc(end_date) if end_date else datetime.now(timezone.utc)
        start = to_utc(start_date) if start_date else end - timedelta(days=days)
        if start > end:
            raise ValidationError(
                error="Invalid date range",
                message="start_date must not be after end_date",
            )
        return start, end

    @staticmethod
    def _envelope(data: Any, total: int, start: datetime, end: datetime,
                  analytics_type: str, sources: List[str]) -> Dict[str, Any]:
        return {
            "data": data,
            "metadata": {
                "start_date": start.isoformat(),
                "end_date": end.isoformat(),
                "total_records": total,
                "generated_at": datetime.now(timezone.utc).isoformat(),
                "analytics_type": analytics_type,
                "data_source": sources[0] if len(set(sources)) == 1 else "mixed",
            },
        }

    async def metrics_report(self, start_date: Optional[datetime] = None, end_date: Optional[datetime] = None) -> Dict[str, Any]:
        """Per-day traffic, device, geography, page and event breakdowns"""
        start, end = self._report_window(start_date, end_date)
        window = dict(start=start, end=end, by_day=True, limit=REPORT_ROW_LIMIT)

        sections = {
            "daily": AggregateQuery(
                table="page_visits",
                metrics=[
                    Metric("count", None, "page_views"),
                    Metric("count_distinct", "session_id", "unique_sessions"),
                    Metric("count_distinct", "user_id", "unique_users"),
                    Metric("avg", "duration_seconds", "avg_session_duration"),
                    Metric("count_distinct", "ip_address", "unique_visitors"),
                ],
                order_by=[("date", True)],
                **window,
            ),
            "devices": AggregateQuery(
                table="page_visits",
                metrics=[Metric("count", None, "visits")],
                group_by=["device_type", "browser", "os"],
                order_by=[("date", True), ("visits", True)],
                **window,
            ),
            "geography": AggregateQuery(
                table="page_visits",
                metrics=[Metric("count", None, "visits")],
                group_by=["country", "city"],
                not_null=["country"],
                order_by=[("date", True), ("visits", True)],
                **window,
            ),
            "pages": AggregateQuery(
                table="page_visits",
                metrics=[
                    Metric("count", None, "page_views"),
                    Metric("avg", "duration_seconds", "avg_time_on_page"),
                ],
                group_by=["path"],
                order_by=[("date", True), ("page_views", True)],
                **window,
            ),
            "events": AggregateQuery(
                table="events",
                metrics=[Metric("count", None, "event_count")],
                group_by=["event_type", "event_name"],
                order_by=[("date", True), ("event_count", True)],
                **window,
            ),
        }

        data, sources = {}, []
        for name, query in sections.items():
            data[name], source = await self._aggregate(query)
            sources.append(source)
        total = sum(len(rows) for rows in data.values())
        return self._envelope(data, total, start, end, "daily_metrics", sources)

    async def click_report(self, start_date: Optional[datetime] = None, end_date: Optional[datetime] = None) -> Dict[str, Any]:
        start, end = self._report_window(start_date, end_date)
        data, source = await self._aggregate(AggregateQuery(
            table="click_events",
            metrics=[
                Metric("count", None, "click_count"),
                Metric("count_distinct", "session_id", "unique_sessions"),
                Metric("count_distinct", "user_id", "unique_users"),
            ],
            group_by=["element_type", "element_id", "page_url", "device_type", "browser"],
            start=start,
            end=end,
            by_day=True,
            order_by=[("date", True), ("click_count", True)],
            limit=REPORT_ROW_LIMIT,
        ))
        return self._envelope(data, len(data), start, end, "click_tracking", [source])

    async def scroll_report(self, start_date: Optional[datetime] = None, end_date: Optional[datetime] = None) -> Dict[str, Any]:
        start, end = self._report_window(start_date, end_date)
        data, source = await self._aggregate(AggregateQuery(
            table="scroll_events",
            metrics=[
                Metric("count", None, "scroll_events"),
                Metric("count_distinct", "session_id", "unique_sessions"),
                Metric("avg", "scroll_depth_percent", "avg_scroll_depth"),
                Metric("max", "scroll_depth_percent", "max_scroll_depth"),
                Metric("avg", "page_height", "avg_page_height"),
            ],
            group_by=["page_url", "device_type", "browser"],
            start=start,
            end=end,
            by_day=True,
            order_by=[("date", True), ("scroll_events", True)],
            limit=REPORT_ROW_LIMIT,
        ))
        return self._envelope(data, len(data), start, end, "scroll_depth_tracking", [source])

    async def gaming_report(self, start_date: Optional[datetime] = None, end_date: Optional[datetime] = None) -> Dict[str, Any]:
        start, end = self._report_window(start_date, end_date)
        data, source = await self._aggregate(AggregateQuery(
            table="events",
            metrics=[
                Metric("count", None, "event_count"),
                Metric("count_distinct", "session_id", "gaming_sessions"),
                Metric("count_distinct", "user_id", "players"),
            ],
            group_by=["event_name"],
            filters={"event_type": "gaming"},
            start=start,
            end=end,
            by_day=True,
            order_by=[("date", True), ("event_count", True)],
            limit=REPORT_ROW_LIMIT,
        ))
        return self._envelope(data, len(data), start, end, "gaming", [source])

    async def user_journey_report(self, start_date: Optional[datetime] = None, end_date: Optional[datetime] = None) -> Dict[str, Any]:
        """One row per visitor session, page and event sequences in time order. Primary store only."""
        start, end = self._report_window(start_date, end_date)
        visits = await self.primary.fetch_window(
            "page_visits",
            ["session_id", "user_id", "timestamp", "path", "duration_seconds",
             "device_type", "browser", "country", "city"],
            start, end,
        )
        events = await self.primary.fetch_window(
            "events", ["session_id", "timestamp", "event_type", "event_name"], start, end,
        )

        session_events: Dict[str, Dict[str, Any]] = {}
        for event in events:
            entry = session_events.setdefault(
                event["session_id"], {"total_events": 0, "event_types": set(), "event_sequence": []}
            )
            entry["total_events"] += 1
            entry["event_types"].add(event["event_type"])
            entry["event_sequence"].append(event["event_name"])

        journeys: Dict[tuple, Dict[str, Any]] = {}
        for visit in visits:
            key = tuple(visit[name] for name in JOURNEY_KEYS)
            at = to_utc(visit["timestamp"])
            journey = journeys.get(key)
            if journey is None:
                journey = journeys[key] = {
                    **dict(zip(JOURNEY_KEYS, key)),
                    "session_start": at,
                    "page_views": 0,
                    "total_session_time": 0,
                    "page_sequence": [],
                    "timestamp_sequence": [],
                }
            journey["session_end"] = at
            journey["page_views"] += 1
            journey["total_session_time"] += visit["duration_seconds"] or 0
            journey["page_sequence"].append(visit["path"])
            journey["timestamp_sequence"].append(at.isoformat())

        data = []
        for journey in sorted(journeys.values(), key=lambda j: j["session_start"], reverse=True)[:JOURNEY_LIMIT]:
            extra = session_events.get(journey["session_id"])
            journey.update(
                total_events=extra["total_events"] if extra else 0,
                event_types=sorted(extra["event_types"]) if extra else None,
                event_sequence=extra["event_sequence"] if extra else None,
                session_duration_seconds=(journey["session_end"] - journey["session_start"]).total_seconds(),
                session_start=journey["session_start"].isoformat(),
                session_end=journey["session_end"].isoformat(),
            )
            data.append(journey)
        return self._envelope(data, len(data), start, end, "user_journey", ["primary"])

    async def conversion_funnel_report(self, start_date: Optional[datetime] = None, end_date: Optional[datetime] = None) -> Dict[str, Any]:
        """Sessions reaching each funnel step, per day"""
        start, end = self._report_window(start_date, end_date, days=FUNNEL_WINDOW_DAYS)
        visits = await self.primary.fetch_window("page_visits", ["session_id", "timestamp", "path"], start, end)

        # (day, step) -> sessions; one interaction per session, step and day
        reached: Dict[tuple, set] = {}
        for visit in visits:
            step = funnel_step(visit["path"])
            if step is not None:
                day = to_utc(visit["timestamp"]).date().isoformat()
                reached.setdefault((day, step), set()).add(visit["session_id"])

        order = {step: position for position, step in enumerate(FUNNEL_STEPS, 1)}
        data = [
            {
                "date": day,
                "step_name": step,
                "step_order": order[step],
                "sessions": len(sessions),
                "interactions": len(sessions),
            }
            for (day, step), sessions in reached.items()
        ]
        data.sort(key=lambda row: row["step_order"])
        data.sort(key=lambda row: row["date"], reverse=True)

        report = self._envelope(data, len(data), start, end, "conversion_funnel", ["primary"])
        report["metadata"]["funnel_steps"] = list(FUNNEL_STEPS)
        return report
