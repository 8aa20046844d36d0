import aiohttp
import asyncio
import json
import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

from config import settings
from errors import SecondaryStoreError
from queries import AggregateQuery, check_identifier, clickhouse_datetime, render_clickhouse

logger = logging.getLogger(__name__)

# Envelope columns shared by every analytics table
_ENVELOPE = [
    ("id", "UUID"),
    ("session_id", "String"),
    ("user_id", "String"),
    ("timestamp", "DateTime64(3)"),
]
_CONTEXT = [
    ("user_agent", "String"),
    ("ip_address", "String"),
]
_DEVICE = [
    ("device_type", "String"),
    ("browser", "String"),
    ("os", "String"),
]
_CREATED = [("created_at", "DateTime64(3)")]

# Non-nullable columns: rows are denormalized before they are sent
TABLE_COLUMNS: Dict[str, List[Tuple[str, str]]] = {
    "page_visits": _ENVELOPE + [
        ("url", "String"),
        ("path", "String"),
        ("referrer", "String"),
        ("country", "String"),
        ("city", "String"),
        ("screen_resolution", "String"),
        ("duration_seconds", "Int32"),
    ] + _CONTEXT + _DEVICE + _CREATED,
    "events": _ENVELOPE + [
        ("event_type", "String"),
        ("event_name", "String"),
        ("properties", "String"),
        ("url", "String"),
        ("country", "String"),
        ("city", "String"),
    ] + _CONTEXT + _CREATED,
    "click_events": _ENVELOPE + [
        ("element_type", "String"),
        ("element_id", "String"),
        ("element_class", "String"),
        ("element_text", "String"),
        ("page_url", "String"),
        ("x_coordinate", "Int32"),
        ("y_coordinate", "Int32"),
        ("timestamp_client", "String"),
    ] + _CONTEXT + _DEVICE + _CREATED,
    "scroll_events": _ENVELOPE + [
        ("page_url", "String"),
        ("scroll_depth_percent", "Float64"),
        ("max_scroll_depth_percent", "Float64"),
        ("page_height", "Int32"),
        ("viewport_height", "Int32"),
        ("scroll_time_seconds", "Float64"),
        ("timestamp_client", "String"),
    ] + _CONTEXT + _DEVICE + _CREATED,
    "session_data": _ENVELOPE + [
        ("session_start_time", "DateTime64(3)"),
        ("session_end_time", "String"),
        ("session_duration_seconds", "Int32"),
        ("pages_visited", "Int32"),
        ("total_clicks", "Int32"),
        ("total_scroll_events", "Int32"),
        ("bounce_rate", "Float64"),
        ("is_active", "UInt8"),
        ("exit_page", "String"),
        ("referrer_source", "String"),
    ] + _CONTEXT + _DEVICE + _CREATED,
}

NUMERIC_PREFIXES = ("UInt", "Int", "Float")


def _denormalize_value(value: Any, ch_type: str) -> Any:
    if value is None:
        return 0 if ch_type.startswith(NUMERIC_PREFIXES) else ""
    if isinstance(value, datetime):
        return clickhouse_datetime(value)
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return value


def denormalize(table: str, row: Dict[str, Any]) -> Dict[str, Any]:
    """Replace nulls with ''/0 and render values the way ClickHouse expects"""
    try:
        columns = TABLE_COLUMNS[table]
    except KeyError:
        raise SecondaryStoreError(f"No secondary schema for table {table}")
    return {name: _denormalize_value(row.get(name), ch_type) for name, ch_type in columns}


def table_ddl(database: str, table: str) -> str:
    columns = ",\n    ".join(f"{name} {ch_type}" for name, ch_type in TABLE_COLUMNS[table])
    return (
        f"CREATE TABLE IF NOT EXISTS {database}.{table} (\n    {columns}\n) "
        "ENGINE = MergeTree() "
        "PARTITION BY toYYYYMM(timestamp) "
        "ORDER BY (timestamp, session_id) "
        "TTL toDateTime(timestamp) + INTERVAL 2 YEAR"
    )


class SecondaryStore:
    """
    Append-only analytical store reached over the ClickHouse HTTP interface.

    Every failure, whether connection, timeout, HTTP status or a malformed
    response, is raised as SecondaryStoreError so callers have one thing to
    catch.
    """

    def __init__(
        self,
        url: str,
        database: str,
        user: str = "default",
        password: str = "",
        timeout: float = 30.0,
        async_insert: bool = True,
        wait_for_async_insert: bool = False,
    ):
        self.url = url.rstrip("/")
        self.database = check_identifier(database)
        self.user = user
        self.password = password
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.insert_settings = {
            "async_insert": int(async_insert),
            "wait_for_async_insert": int(wait_for_async_insert),
            "date_time_input_format": "best_effort",
        }
        self._session: Optional[aiohttp.ClientSession] = None

    @classmethod
    def from_settings(cls, config=settings) -> "SecondaryStore":
        return cls(
            url=config.clickhouse_url,
            database=config.CLICKHOUSE_DATABASE,
            user=config.CLICKHOUSE_USER,
            password=config.CLICKHOUSE_PASSWORD,
            timeout=config.CLICKHOUSE_TIMEOUT_SECONDS,
            async_insert=config.CLICKHOUSE_ASYNC_INSERT,
            wait_for_async_insert=config.CLICKHOUSE_WAIT_FOR_ASYNC_INSERT,
        )

    def _client(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self.timeout,
                headers={
                    "X-ClickHouse-User": self.user,
                    "X-ClickHouse-Key": self.password,
                },
            )
        return self._session

    async def _request(
        self,
        method: str,
        path: str = "/",
        params: Optional[Dict[str, Any]] = None,
        data: Optional[bytes] = None,
    ) -> str:
        try:
            async with self._client().request(
                method, f"{self.url}{path}", params=params, data=data
            ) as resp:
                body = await resp.text()
                if resp.status != 200:
                    raise SecondaryStoreError(
                        f"ClickHouse returned {resp.status}: {body.strip()[:500]}"
                    )
                return body
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise SecondaryStoreError(str(e) or e.__class__.__name__) from e

    async def execute(self, sql: str) -> str:
        return await self._request("POST", data=sql.encode("utf-8"))

    async def insert(self, table: str, rows: Sequence[Dict[str, Any]]) -> None:
        if not rows:
            return
        check_identifier(table)
        body = "\n".join(json.dumps(denormalize(table, row)) for row in rows)
        params = {
            "query": f"INSERT INTO {self.database}.{table} FORMAT JSONEachRow",
            **self.insert_settings,
        }
        await self._request("POST", params=params, data=body.encode("utf-8"))

    async def aggregate(self, query: AggregateQuery) -> List[Dict[str, Any]]:
        sql, query_params = render_clickhouse(query, self.database)
        params = {f"param_{name}": value for name, value in query_params.items()}
        params["output_format_json_quote_64bit_integers"] = 0
        body = await self._request(
            "POST", params=params, data=f"{sql} FORMAT JSONEachRow".encode("utf-8")
        )
        try:
            return [json.loads(line) for line in body.splitlines() if line.strip()]
        except ValueError as e:
            raise SecondaryStoreError(f"Malformed ClickHouse response: {e}") from e

    async def ping(self) -> None:
        body = await self._request("GET", path="/ping")
        if body.strip() != "Ok.":
            raise SecondaryStoreError(f"Unexpected ping response: {body.strip()[:100]}")

    async def create_tables(self) -> None:
        await self.execute(f"CREATE DATABASE IF NOT EXISTS {self.database}")
        for table in TABLE_COLUMNS:
            await self.execute(table_ddl(self.database, table))
        logger.info("ClickHouse analytics tables initialized")

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
