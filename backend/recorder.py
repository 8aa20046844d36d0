"""
Dual-sink event recording.

An event is written to the primary store first; only after that commit is it
mirrored to the secondary store. The caller's outcome depends on the primary
write alone. A failed or slow mirror is logged and counted, never raised, and
is never retried: the two stores may diverge permanently for that event.
"""
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import asyncio
import logging
import uuid

from clickhouse_store import SecondaryStore
from database import PrimaryStore
from tracking import EventKind, validate
from user_agent import parse_user_agent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestContext:
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass(frozen=True)
class RecordResult:
    event_id: uuid.UUID
    occurred_at: datetime
    mirrored: bool
    mirror_error: Optional[str] = None


class DualSinkRecorder:
    def __init__(
        self,
        primary: PrimaryStore,
        secondary: Optional[SecondaryStore] = None,
        secondary_timeout: float = 3.0,
    ):
        self.primary = primary
        self.secondary = secondary
        self.secondary_timeout = secondary_timeout
        self.stats: Counter = Counter()

    def build_row(
        self,
        kind: EventKind,
        payload: Dict[str, Any],
        context: RequestContext,
        event_id: uuid.UUID,
        occurred_at: datetime,
    ) -> Dict[str, Any]:
        row = dict(payload)
        row.update(
            id=event_id,
            timestamp=occurred_at,
            user_agent=context.user_agent,
            ip_address=context.ip_address,
            created_at=occurred_at,
        )
        if kind.derive_device:
            device = parse_user_agent(context.user_agent)
            row.update(device_type=device.device_type, browser=device.browser, os=device.os)
        return row

    async def record(self, kind: EventKind, payload: Any, context: RequestContext) -> RecordResult:
        event = validate(kind, payload)

        event_id = uuid.uuid4()
        occurred_at = datetime.now(timezone.utc)
        row = self.build_row(kind, event.model_dump(), context, event_id, occurred_at)

        # PrimaryStoreError propagates; nothing has been mirrored yet
        await self.primary.insert_row(kind.table, row)

        mirror_error = await self._mirror(kind, [row])
        return RecordResult(
            event_id=event_id,
            occurred_at=occurred_at,
            mirrored=mirror_error is None,
            mirror_error=mirror_error,
        )

    async def record_batch(self, kind: EventKind, rows: List[Dict[str, Any]]) -> Optional[str]:
        """Write fully built rows in one primary insert, then mirror them as one batch"""
        await self.primary.insert_rows(kind.table, rows)
        return await self._mirror(kind, rows)

    async def _mirror(self, kind: EventKind, rows: List[Dict[str, Any]]) -> Optional[str]:
        if not rows:
            return None
        if self.secondary is None:
            self.stats["mirror_skipped"] += len(rows)
            return "secondary store disabled"

        try:
            await asyncio.wait_for(
                self.secondary.insert(kind.table, rows),
                timeout=self.secondary_timeout,
            )
        except asyncio.TimeoutError:
            error = f"timed out after {self.secondary_timeout}s"
        except Exception as e:
            error = str(e) or e.__class__.__name__
        else:
            self.stats["mirrored"] += len(rows)
            logger.debug(f"{len(rows)} {kind.name} row(s) mirrored to secondary store")
            return None

        self.stats["mirror_failed"] += len(rows)
        logger.warning(
            f"Secondary insert of {len(rows)} {kind.name} row(s) failed, primary store only: {error}"
        )
        return error
