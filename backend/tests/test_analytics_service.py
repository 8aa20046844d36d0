import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from analytics_service import AnalyticsService, funnel_step
from conftest import FailingSecondary, RecordingSecondary
from errors import SecondaryStoreError, ValidationError
from recorder import DualSinkRecorder, RequestContext
from redis_cache import RedisCache
from tracking import CUSTOM_EVENT, PAGE_VISIT, SCROLL


class DictCache:
    def __init__(self):
        self.data = {}

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ttl=None):
        self.data[key] = value


class SlowSecondary(RecordingSecondary):
    async def aggregate(self, query):
        await asyncio.sleep(30)


async def record_visits(primary, paths):
    recorder = DualSinkRecorder(primary)
    for i, path in enumerate(paths):
        payload = {"session_id": f"s{i}", "url": f"https://lugx.test{path}", "path": path}
        await recorder.record(PAGE_VISIT, payload, RequestContext())


@pytest.mark.asyncio
async def test_dashboard_is_served_from_cache(primary):
    cache = DictCache()
    service = AnalyticsService(primary, cache=cache)
    await record_visits(primary, ["/", "/cart"])

    first = await service.dashboard("30d")
    assert first["metrics"]["page_visits"]["total_visits"] == 2
    assert "dashboard:30d" in cache.data

    await record_visits(primary, ["/"])
    cached = await service.dashboard("30d")
    assert cached["metrics"]["page_visits"]["total_visits"] == 2

    fresh = await service.dashboard("30d", use_cache=False)
    assert fresh["metrics"]["page_visits"]["total_visits"] == 3


@pytest.mark.asyncio
async def test_breakdown_filters_on_the_primary_store(primary):
    service = AnalyticsService(primary, FailingSecondary())
    await record_visits(primary, ["/", "/", "/cart"])

    result = await service.page_visit_breakdown(path="/")

    assert result["source"] == "primary"
    assert [row["visit_count"] for row in result["data"]] == [2]


@pytest.mark.asyncio
async def test_slow_secondary_read_falls_back(primary):
    service = AnalyticsService(primary, SlowSecondary(), secondary_timeout=0.05)
    await record_visits(primary, ["/"])

    result = await service.page_visit_breakdown()

    assert result["source"] == "primary"
    assert result["total"] == 1


@pytest.mark.asyncio
async def test_unreachable_redis_reads_as_a_miss():
    cache = RedisCache("redis://127.0.0.1:9/0", ttl=60)
    try:
        assert await cache.get("dashboard:7d") is None
        await cache.set("dashboard:7d", {"x": 1})
        await cache.delete("dashboard:7d")
        assert await cache.ping() is False
    finally:
        await cache.close()


@pytest.mark.asyncio
async def test_scroll_report_groups_by_day_on_the_primary(primary):
    recorder = DualSinkRecorder(primary)
    for depth in (25, 75):
        payload = {"session_id": "s1", "page_url": "https://lugx.test/", "scroll_depth_percent": depth,
                   "page_height": 2000}
        await recorder.record(SCROLL, payload, RequestContext())
    service = AnalyticsService(primary)

    report = await service.scroll_report()

    assert report["metadata"]["data_source"] == "primary"
    assert report["metadata"]["analytics_type"] == "scroll_depth_tracking"
    [row] = report["data"]
    assert row["scroll_events"] == 2
    assert row["unique_sessions"] == 1
    assert row["avg_scroll_depth"] == pytest.approx(50)
    assert row["max_scroll_depth"] == pytest.approx(75)
    assert isinstance(row["date"], str)


@pytest.mark.asyncio
async def test_report_window_defaults_to_the_last_week(primary):
    service = AnalyticsService(primary)
    end = datetime(2024, 5, 8, tzinfo=timezone.utc)

    report = await service.click_report(end_date=end)

    assert report["metadata"]["start_date"] == "2024-05-01T00:00:00+00:00"
    assert report["metadata"]["total_records"] == 0
    with pytest.raises(ValidationError):
        await service.click_report(start_date=end + timedelta(seconds=1), end_date=end)


@pytest.mark.asyncio
async def test_mixed_sources_are_reported(primary):
    class HalfSecondary(RecordingSecondary):
        async def aggregate(self, query):
            if query.table == "events":
                raise SecondaryStoreError("events table missing")
            return []

    report = await AnalyticsService(primary, HalfSecondary()).metrics_report()

    assert report["metadata"]["data_source"] == "mixed"


@pytest.mark.parametrize("path,step", [
    ("/", "landing_page"),
    ("/products/42", "product_view"),
    ("/cart", "cart_view"),
    ("/checkout/payment", "checkout_start"),
    ("/order-confirmation", "purchase_complete"),
    ("/about", None),
    (None, None),
])
def test_funnel_step(path, step):
    assert funnel_step(path) == step


@pytest.mark.asyncio
async def test_conversion_funnel_counts_sessions_per_step(primary):
    recorder = DualSinkRecorder(primary)
    visits = [("a", "/"), ("a", "/products/1"), ("a", "/products/2"), ("b", "/"), ("b", "/about"), ("a", "/cart")]
    for session_id, path in visits:
        payload = {"session_id": session_id, "url": f"https://lugx.test{path}", "path": path}
        await recorder.record(PAGE_VISIT, payload, RequestContext())

    report = await AnalyticsService(primary).conversion_funnel_report()

    steps = {row["step_name"]: row["sessions"] for row in report["data"]}
    assert steps == {"landing_page": 2, "product_view": 1, "cart_view": 1}
    assert [row["step_order"] for row in report["data"]] == [1, 2, 3]
    assert report["metadata"]["funnel_steps"][0] == "landing_page"
    assert report["metadata"]["data_source"] == "primary"


@pytest.mark.asyncio
async def test_user_journey_orders_pages_and_events(primary):
    recorder = DualSinkRecorder(primary)
    for path in ("/", "/products", "/cart"):
        payload = {"session_id": "s1", "user_id": "u1", "url": f"https://lugx.test{path}", "path": path,
                   "duration_seconds": 10}
        await recorder.record(PAGE_VISIT, payload, RequestContext())
    for name in ("game_start", "game_end"):
        payload = {"session_id": "s1", "event_type": "gaming", "event_name": name}
        await recorder.record(CUSTOM_EVENT, payload, RequestContext())
    await record_visits(primary, ["/"])

    report = await AnalyticsService(primary).user_journey_report()

    assert report["metadata"]["analytics_type"] == "user_journey"
    assert report["metadata"]["total_records"] == 2
    journey = next(row for row in report["data"] if row["session_id"] == "s1")
    assert journey["page_sequence"] == ["/", "/products", "/cart"]
    assert journey["page_views"] == 3
    assert journey["total_session_time"] == 30
    assert journey["event_sequence"] == ["game_start", "game_end"]
    assert journey["event_types"] == ["gaming"]
    assert journey["total_events"] == 2
    assert journey["session_duration_seconds"] >= 0

    other = next(row for row in report["data"] if row["session_id"] == "s0")
    assert other["total_events"] == 0
    assert other["event_sequence"] is None
