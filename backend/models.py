from sqlalchemy import (
    Boolean, Column, String, Text, DateTime, Numeric, Integer, Float,
    ForeignKey, JSON, Uuid, Index,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid
from database import Base

ORDER_STATUSES = ("pending", "processing", "shipped", "delivered", "cancelled")
PAYMENT_STATUSES = ("pending", "paid", "failed", "refunded")


class TrackedEventMixin:
    """Envelope shared by every tracked event table"""
    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    session_id = Column(String(255), nullable=False)
    user_id = Column(String(255))
    timestamp = Column(DateTime(timezone=True), nullable=False)
    user_agent = Column(Text)
    ip_address = Column(String(64))
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class DeviceColumnsMixin:
    device_type = Column(String(50))
    browser = Column(String(100))
    os = Column(String(100))


class PageVisit(TrackedEventMixin, DeviceColumnsMixin, Base):
    __tablename__ = "page_visits"

    url = Column(Text, nullable=False)
    path = Column(String(500), nullable=False)
    referrer = Column(Text)
    country = Column(String(100))
    city = Column(String(100))
    screen_resolution = Column(String(50))
    duration_seconds = Column(Integer, default=0)

    __table_args__ = (
        Index("idx_page_visits_timestamp", "timestamp"),
        Index("idx_page_visits_session", "session_id", "timestamp"),
    )


class CustomEvent(TrackedEventMixin, Base):
    __tablename__ = "events"

    event_type = Column(String(100), nullable=False)
    event_name = Column(String(200), nullable=False)
    properties = Column(JSON, default=dict)
    url = Column(Text)
    country = Column(String(100))
    city = Column(String(100))

    __table_args__ = (
        Index("idx_events_timestamp", "timestamp"),
        Index("idx_events_type", "event_type", "timestamp"),
    )


class ClickEvent(TrackedEventMixin, DeviceColumnsMixin, Base):
    __tablename__ = "click_events"

    element_type = Column(String(100), nullable=False)
    element_id = Column(String(255))
    element_class = Column(String(500))
    element_text = Column(Text)
    page_url = Column(Text, nullable=False)
    x_coordinate = Column(Integer)
    y_coordinate = Column(Integer)
    timestamp_client = Column(DateTime(timezone=True))

    __table_args__ = (
        Index("idx_click_events_timestamp", "timestamp"),
        Index("idx_click_events_session", "session_id", "timestamp"),
    )


class ScrollEvent(TrackedEventMixin, DeviceColumnsMixin, Base):
    __tablename__ = "scroll_events"

    page_url = Column(Text, nullable=False)
    scroll_depth_percent = Column(Float, nullable=False)
    max_scroll_depth_percent = Column(Float)
    page_height = Column(Integer)
    viewport_height = Column(Integer)
    scroll_time_seconds = Column(Float, default=0)
    timestamp_client = Column(DateTime(timezone=True))

    __table_args__ = (
        Index("idx_scroll_events_timestamp", "timestamp"),
        Index("idx_scroll_events_session", "session_id", "timestamp"),
    )


class SessionData(TrackedEventMixin, DeviceColumnsMixin, Base):
    __tablename__ = "session_data"

    session_start_time = Column(DateTime(timezone=True), nullable=False)
    session_end_time = Column(DateTime(timezone=True))
    session_duration_seconds = Column(Integer)
    pages_visited = Column(Integer, default=0)
    total_clicks = Column(Integer, default=0)
    total_scroll_events = Column(Integer, default=0)
    bounce_rate = Column(Float)
    is_active = Column(Boolean, default=True)
    exit_page = Column(Text)
    referrer_source = Column(Text)

    __table_args__ = (
        Index("idx_session_data_timestamp", "timestamp"),
        Index("idx_session_data_session", "session_id", "timestamp"),
    )


class Order(Base):
    __tablename__ = "orders"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String(255), nullable=False, index=True)
    order_number = Column(String(50), unique=True, nullable=False)
    status = Column(String(20), nullable=False, default="pending")
    total_amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), default="USD")
    payment_method = Column(String(50))
    payment_status = Column(String(20), default="pending")
    shipping_address = Column(JSON, nullable=False)
    billing_address = Column(JSON)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    items = relationship("OrderItem", back_populates="order")
    history = relationship("OrderHistory", back_populates="order")


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    order_id = Column(Uuid(as_uuid=True), ForeignKey("orders.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    game_id = Column(String(255), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Numeric(10, 2), nullable=False)
    total_price = Column(Numeric(10, 2), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    order = relationship("Order", back_populates="items")


class OrderHistory(Base):
    __tablename__ = "order_history"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    order_id = Column(Uuid(as_uuid=True), ForeignKey("orders.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False)
    notes = Column(Text)
    timestamp = Column(DateTime(timezone=True), nullable=False)

    order = relationship("Order", back_populates="history")
