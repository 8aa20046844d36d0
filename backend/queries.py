"""
Store-neutral description of the grouped aggregate reads both stores serve.

An AggregateQuery names a table, the metrics to compute, the dimensions to
group by, an optional [start, end] range on the time column, exact-match
filters, and limit/offset paging. Each store adapter renders it in its own
dialect; values are always bound as parameters, never interpolated.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
import re

IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

METRIC_FUNCS = ("count", "count_distinct", "avg", "sum", "max")

# Alias of the calendar-day dimension added by AggregateQuery.by_day
DAY_ALIAS = "date"


def check_identifier(name: str) -> str:
    if not IDENTIFIER.match(name or ""):
        raise ValueError(f"Invalid identifier: {name!r}")
    return name


@dataclass(frozen=True)
class Metric:
    func: str
    column: Optional[str]
    alias: str

    def __post_init__(self):
        if self.func not in METRIC_FUNCS:
            raise ValueError(f"Unknown metric function: {self.func}")
        if self.column is not None:
            check_identifier(self.column)
        elif self.func != "count":
            raise ValueError(f"{self.func} needs a column")
        check_identifier(self.alias)


@dataclass
class AggregateQuery:
    table: str
    metrics: List[Metric]
    group_by: List[str] = field(default_factory=list)
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    time_column: str = "timestamp"
    filters: Dict[str, Any] = field(default_factory=dict)
    not_null: List[str] = field(default_factory=list)
    # (alias or column, descending)
    order_by: List[Tuple[str, bool]] = field(default_factory=list)
    limit: Optional[int] = None
    offset: int = 0
    # Prepend a calendar-day dimension (UTC) of the time column
    by_day: bool = False

    def __post_init__(self):
        check_identifier(self.table)
        check_identifier(self.time_column)
        for name in [*self.group_by, *self.not_null, *self.filters]:
            check_identifier(name)
        for name, _ in self.order_by:
            check_identifier(name)
        self.filters = {k: v for k, v in self.filters.items() if v not in (None, "")}
        if self.limit is not None and self.limit < 0:
            raise ValueError("limit must be >= 0")
        if self.offset < 0:
            raise ValueError("offset must be >= 0")


def to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def clickhouse_datetime(value: datetime) -> str:
    """DateTime64(3) text form, always UTC"""
    return to_utc(value).strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]


CLICKHOUSE_FUNCS = {
    "count": "count()",
    "count_distinct": "uniqExact({column})",
    "avg": "avg({column})",
    "sum": "sum({column})",
    "max": "max({column})",
}


def render_clickhouse(query: AggregateQuery, database: str) -> Tuple[str, Dict[str, Any]]:
    """Render to ClickHouse SQL using {name:Type} query parameters"""
    check_identifier(database)
    params: Dict[str, Any] = {}

    select = list(query.group_by)
    if query.by_day:
        select.insert(0, f"toDate({query.time_column}) AS {DAY_ALIAS}")
    for metric in query.metrics:
        expr = CLICKHOUSE_FUNCS[metric.func].format(column=metric.column)
        select.append(f"{expr} AS {metric.alias}")

    sql = f"SELECT {', '.join(select)} FROM {database}.{query.table}"

    where = []
    if query.start is not None:
        where.append(f"{query.time_column} >= {{start:DateTime64(3)}}")
        params["start"] = clickhouse_datetime(query.start)
    if query.end is not None:
        where.append(f"{query.time_column} <= {{end:DateTime64(3)}}")
        params["end"] = clickhouse_datetime(query.end)
    for column, value in query.filters.items():
        where.append(f"{column} = {{f_{column}:String}}")
        params[f"f_{column}"] = str(value)
    for column in query.not_null:
        # Denormalized rows store missing strings as ''
        where.append(f"{column} != ''")
    if where:
        sql += " WHERE " + " AND ".join(where)

    group_by = ([DAY_ALIAS] if query.by_day else []) + list(query.group_by)
    if group_by:
        sql += " GROUP BY " + ", ".join(group_by)
    if query.order_by:
        sql += " ORDER BY " + ", ".join(
            f"{name} {'DESC' if desc else 'ASC'}" for name, desc in query.order_by
        )
    if query.limit is not None:
        sql += " LIMIT {limit:UInt32} OFFSET {offset:UInt32}"
        params["limit"] = query.limit
        params["offset"] = query.offset

    return sql, params
