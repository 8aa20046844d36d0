"""
Registry of the tracked event variants.

Each variant names its primary table, the fields a request must carry and
the payload model that coerces and defaults the rest. Required-field checks
run before type coercion so a 400 always lists every missing field at once.
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Tuple, Type

import pydantic

from errors import ValidationError, field_details
from schemas import ClickIn, CustomEventIn, PageVisitIn, ScrollIn, SessionIn, TrackedPayload


@dataclass(frozen=True)
class EventKind:
    name: str
    table: str
    id_key: str
    message: str
    required: Tuple[str, ...]
    schema: Type[TrackedPayload]
    derive_device: bool = True


PAGE_VISIT = EventKind(
    name="page_visit",
    table="page_visits",
    id_key="visit_id",
    message="Page visit tracked successfully",
    required=("session_id", "url", "path"),
    schema=PageVisitIn,
)

CUSTOM_EVENT = EventKind(
    name="custom_event",
    table="events",
    id_key="event_id",
    message="Event tracked successfully",
    required=("session_id", "event_type", "event_name"),
    schema=CustomEventIn,
    derive_device=False,
)

CLICK = EventKind(
    name="click",
    table="click_events",
    id_key="click_id",
    message="Click event tracked successfully",
    required=("session_id", "element_type", "page_url"),
    schema=ClickIn,
)

SCROLL = EventKind(
    name="scroll",
    table="scroll_events",
    id_key="scroll_id",
    message="Scroll event tracked successfully",
    required=("session_id", "page_url", "scroll_depth_percent"),
    schema=ScrollIn,
)

SESSION = EventKind(
    name="session",
    table="session_data",
    id_key="session_data_id",
    message="Session data tracked successfully",
    required=("session_id", "session_start_time"),
    schema=SessionIn,
)

EVENT_KINDS: Dict[str, EventKind] = {
    kind.name: kind for kind in (PAGE_VISIT, CUSTOM_EVENT, CLICK, SCROLL, SESSION)
}


def is_missing(value: Any) -> bool:
    # 0 and False are real values; only absence, null and "" count as missing
    return value is None or (isinstance(value, str) and value.strip() == "")


def missing_fields(kind: EventKind, payload: Any) -> List[str]:
    if not isinstance(payload, dict):
        return list(kind.required)
    return [name for name in kind.required if is_missing(payload.get(name))]


def validate(kind: EventKind, payload: Any) -> TrackedPayload:
    missing = missing_fields(kind, payload)
    if missing:
        raise ValidationError(required=list(kind.required), missing=missing)
    try:
        return kind.schema.model_validate(payload)
    except pydantic.ValidationError as e:
        raise ValidationError(
            error="Invalid field values",
            details=field_details(e.errors()),
        ) from e
