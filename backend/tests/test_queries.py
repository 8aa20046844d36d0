from datetime import datetime, timezone

import pytest

from queries import AggregateQuery, Metric, render_clickhouse


def _query(**overrides):
    fields = dict(
        table="page_visits",
        metrics=[Metric("count", None, "visit_count"), Metric("avg", "duration_seconds", "avg_duration")],
        group_by=["path"],
    )
    fields.update(overrides)
    return AggregateQuery(**fields)


def test_empty_filter_values_are_dropped():
    query = _query(filters={"path": "/", "user_id": None, "country": ""})
    assert query.filters == {"path": "/"}


@pytest.mark.parametrize("bad", ["path; DROP TABLE x", "1path", "a-b", ""])
def test_identifiers_are_validated(bad):
    with pytest.raises(ValueError):
        _query(group_by=[bad])


def test_metric_needs_known_function():
    with pytest.raises(ValueError):
        Metric("median", "duration_seconds", "m")
    with pytest.raises(ValueError):
        Metric("avg", None, "m")


def test_negative_paging_rejected():
    with pytest.raises(ValueError):
        _query(limit=-1)
    with pytest.raises(ValueError):
        _query(offset=-5)


def test_render_clickhouse_binds_every_value():
    start = datetime(2024, 5, 1, 10, 0, 0, 123000, tzinfo=timezone.utc)
    query = _query(
        start=start,
        filters={"path": "/products' OR 1=1"},
        not_null=["device_type"],
        order_by=[("visit_count", True)],
        limit=50,
        offset=10,
    )
    sql, params = render_clickhouse(query, "analytics")

    assert sql == (
        "SELECT path, count() AS visit_count, avg(duration_seconds) AS avg_duration "
        "FROM analytics.page_visits "
        "WHERE timestamp >= {start:DateTime64(3)} AND path = {f_path:String} AND device_type != '' "
        "GROUP BY path ORDER BY visit_count DESC "
        "LIMIT {limit:UInt32} OFFSET {offset:UInt32}"
    )
    assert params == {
        "start": "2024-05-01 10:00:00.123",
        "f_path": "/products' OR 1=1",
        "limit": 50,
        "offset": 10,
    }


def test_render_clickhouse_without_filters_or_paging():
    sql, params = render_clickhouse(_query(group_by=[]), "analytics")
    assert sql == "SELECT count() AS visit_count, avg(duration_seconds) AS avg_duration FROM analytics.page_visits"
    assert params == {}


def test_render_clickhouse_by_day():
    query = _query(
        metrics=[Metric("count", None, "visits"), Metric("max", "duration_seconds", "longest")],
        by_day=True,
        order_by=[("date", True), ("visits", True)],
    )
    sql, _ = render_clickhouse(query, "analytics")
    assert sql == (
        "SELECT toDate(timestamp) AS date, path, count() AS visits, max(duration_seconds) AS longest "
        "FROM analytics.page_visits "
        "GROUP BY date, path ORDER BY date DESC, visits DESC"
    )
