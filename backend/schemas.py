from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Optional, List, Dict, Any, Literal, Union
from datetime import datetime
from decimal import Decimal

# Request schemas: tracking payloads
class TrackedPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    session_id: str
    user_id: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def drop_nulls(cls, data: Any) -> Any:
        # Explicit nulls fall back to the field default
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data

    @field_validator("session_id", "user_id", mode="before")
    @classmethod
    def stringify_ids(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value


class PageVisitIn(TrackedPayload):
    url: str
    path: str
    referrer: Optional[str] = None
    screen_resolution: Optional[str] = None
    duration_seconds: int = 0
    country: Optional[str] = None
    city: Optional[str] = None


class CustomEventIn(TrackedPayload):
    event_type: str
    event_name: str
    # Stored as-is: objects and arrays are both accepted
    properties: Union[Dict[str, Any], List[Any]] = Field(default_factory=dict)
    url: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None


class ClickIn(TrackedPayload):
    element_type: str
    page_url: str
    element_id: Optional[str] = None
    element_class: Optional[str] = None
    element_text: Optional[str] = None
    x_coordinate: Optional[int] = None
    y_coordinate: Optional[int] = None
    timestamp_client: Optional[datetime] = None


class ScrollIn(TrackedPayload):
    page_url: str
    scroll_depth_percent: float
    max_scroll_depth_percent: Optional[float] = None
    page_height: Optional[int] = None
    viewport_height: Optional[int] = None
    scroll_time_seconds: float = 0
    timestamp_client: Optional[datetime] = None


class SessionIn(TrackedPayload):
    session_start_time: datetime
    session_end_time: Optional[datetime] = None
    session_duration_seconds: Optional[int] = None
    pages_visited: int = 0
    total_clicks: int = 0
    total_scroll_events: int = 0
    bounce_rate: Optional[float] = None
    is_active: bool = True
    exit_page: Optional[str] = None
    referrer_source: Optional[str] = None


# Request schemas: orders
class OrderItemIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    gameId: str = Field(validation_alias=AliasChoices("gameId", "id"))
    quantity: int = Field(default=1, gt=0)
    unitPrice: Decimal = Field(validation_alias=AliasChoices("unitPrice", "price"), ge=0)
    totalPrice: Optional[Decimal] = Field(default=None, ge=0)

    @field_validator("gameId", mode="before")
    @classmethod
    def stringify_game_id(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("quantity", mode="before")
    @classmethod
    def default_quantity(cls, value: Any) -> Any:
        return 1 if value is None else value


class OrderCreate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    userId: str
    items: List[OrderItemIn]
    totalAmount: Decimal = Field(ge=0)
    currency: str = "USD"
    paymentMethod: str = "credit_card"
    shippingAddress: Dict[str, Any]
    billingAddress: Optional[Dict[str, Any]] = None

    @field_validator("userId", mode="before")
    @classmethod
    def stringify_user_id(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("currency", "paymentMethod", mode="before")
    @classmethod
    def default_when_null(cls, value: Any, info) -> Any:
        if value is None:
            return cls.model_fields[info.field_name].default
        return value


# Response schemas
class PageVisitsResponse(BaseModel):
    data: List[Dict[str, Any]]
    source: Literal["primary", "secondary"]
    total: int


class DateRange(BaseModel):
    start: datetime
    end: datetime
    period: str


class DashboardResponse(BaseModel):
    date_range: DateRange
    metrics: Dict[str, Dict[str, Any]]
    top_pages: List[Dict[str, Any]]
    device_breakdown: List[Dict[str, Any]]
