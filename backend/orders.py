"""
Order creation and lifecycle against the primary store.

An order header, its line items and its first history entry are written in a
single transaction: either the whole order exists or none of it does.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional
import logging
import secrets
import string
import time
import uuid

import pydantic
from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from database import PrimaryStore
from errors import InvalidTransitionError, NotFoundError, PrimaryStoreError, ValidationError, field_details
from models import ORDER_STATUSES, Order, OrderHistory, OrderItem
from schemas import OrderCreate, OrderItemIn
from tracking import is_missing

logger = logging.getLogger(__name__)

SUFFIX_ALPHABET = string.ascii_uppercase + string.digits
SUFFIX_LENGTH = 8

REQUIRED_FIELDS = ("userId", "items", "totalAmount", "shippingAddress")

# Forward path; cancelled is reachable from every other state
NEXT_STATUS = {
    "pending": "processing",
    "processing": "shipped",
    "shipped": "delivered",
}


def generate_order_number(prefix: str = "ORD", now_ms: Optional[int] = None) -> str:
    """<prefix>-<millisecond timestamp>-<random upper-alphanumeric suffix>"""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    suffix = "".join(secrets.choice(SUFFIX_ALPHABET) for _ in range(SUFFIX_LENGTH))
    return f"{prefix}-{now_ms}-{suffix}"


def can_transition(current: str, new: str) -> bool:
    if current == new:
        return True
    if new == "cancelled":
        return current != "cancelled"
    return NEXT_STATUS.get(current) == new


class _OrderNumberTaken(Exception):
    pass


def validate_order(payload: Any) -> OrderCreate:
    if not isinstance(payload, dict):
        raise ValidationError(required=list(REQUIRED_FIELDS), missing=list(REQUIRED_FIELDS))

    missing = [name for name in REQUIRED_FIELDS if is_missing(payload.get(name))]
    if missing:
        raise ValidationError(required=list(REQUIRED_FIELDS), missing=missing)

    items = payload["items"]
    if not isinstance(items, list) or not items:
        raise ValidationError(
            error="Order must contain at least one item",
            required=list(REQUIRED_FIELDS),
            missing=["items"],
        )

    try:
        return OrderCreate.model_validate(payload)
    except pydantic.ValidationError as e:
        raise ValidationError(
            error="Invalid field values",
            details=field_details(e.errors()),
        ) from e


def _money(value: Optional[Decimal]) -> Optional[float]:
    return float(value) if value is not None else None


def _serialize_item(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(row["id"]),
        "gameId": row["game_id"],
        "quantity": row["quantity"],
        "unitPrice": _money(row["unit_price"]),
        "totalPrice": _money(row["total_price"]),
    }


def _serialize_order(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(row["id"]),
        "userId": row["user_id"],
        "orderNumber": row["order_number"],
        "status": row["status"],
        "totalAmount": _money(row["total_amount"]),
        "currency": row["currency"],
        "paymentMethod": row["payment_method"],
        "paymentStatus": row["payment_status"],
        "shippingAddress": row["shipping_address"],
        "billingAddress": row["billing_address"],
        "createdAt": row["created_at"],
        "updatedAt": row["updated_at"],
    }


class OrderWriter:
    def __init__(self, primary: PrimaryStore, prefix: str = "ORD", max_attempts: int = 3):
        self.primary = primary
        self.prefix = prefix
        self.max_attempts = max(1, max_attempts)

    async def create_order(self, payload: Any) -> Dict[str, Any]:
        order = validate_order(payload)
        logger.info(f"Processing order for user {order.userId}, total {order.totalAmount}")

        for attempt in range(1, self.max_attempts + 1):
            order_number = generate_order_number(self.prefix)
            try:
                created = await self._write_order(order, order_number)
            except _OrderNumberTaken:
                logger.warning(
                    f"Order number {order_number} already taken (attempt {attempt}/{self.max_attempts})"
                )
                continue
            logger.info(f"Created order {created['orderNumber']}")
            return created

        raise PrimaryStoreError(
            f"Could not allocate a unique order number after {self.max_attempts} attempts"
        )

    async def _write_order(self, order: OrderCreate, order_number: str) -> Dict[str, Any]:
        now = datetime.now(timezone.utc)
        order_id = uuid.uuid4()

        async with self.primary.transaction() as session:
            header = {
                "id": order_id,
                "user_id": order.userId,
                "order_number": order_number,
                "status": "pending",
                "total_amount": order.totalAmount,
                "currency": order.currency,
                "payment_method": order.paymentMethod,
                "payment_status": "pending",
                "shipping_address": order.shippingAddress,
                "billing_address": order.billingAddress or order.shippingAddress,
                "created_at": now,
                "updated_at": now,
            }
            try:
                await session.execute(insert(Order.__table__).values(**header))
            except IntegrityError as e:
                # order_number is the only unique column besides the generated id;
                # nothing else has been written in this transaction yet
                raise _OrderNumberTaken() from e

            items = []
            for position, item in enumerate(order.items):
                items.append(await self._insert_item(session, order_id, position, item, now))

            await session.execute(insert(OrderHistory.__table__).values(
                id=uuid.uuid4(),
                order_id=order_id,
                status="pending",
                notes="Order created",
                timestamp=now,
            ))

        created = _serialize_order(header)
        created["items"] = [_serialize_item(item) for item in items]
        return created

    async def _insert_item(
        self,
        session: AsyncSession,
        order_id: uuid.UUID,
        position: int,
        item: OrderItemIn,
        now: datetime,
    ) -> Dict[str, Any]:
        total = item.totalPrice
        if total is None:
            total = item.unitPrice * item.quantity
        row = {
            "id": uuid.uuid4(),
            "order_id": order_id,
            "position": position,
            "game_id": item.gameId,
            "quantity": item.quantity,
            "unit_price": item.unitPrice,
            "total_price": total,
            "created_at": now,
        }
        await session.execute(insert(OrderItem.__table__).values(**row))
        return row

    async def get_order(self, order_id: str) -> Dict[str, Any]:
        row = await self.primary.fetch_row("orders", order_id)
        if row is None:
            raise NotFoundError(f"Order with ID {order_id} not found")

        order = _serialize_order(row)
        items = await self.primary.fetch_rows(
            "order_items", {"order_id": row["id"]}, order_by=[("position", False)]
        )
        history = await self.primary.fetch_rows(
            "order_history", {"order_id": row["id"]}, order_by=[("timestamp", False)]
        )
        order["items"] = [_serialize_item(item) for item in items]
        order["history"] = [
            {"status": entry["status"], "notes": entry["notes"], "timestamp": entry["timestamp"]}
            for entry in history
        ]
        return order

    async def list_user_orders(self, user_id: str) -> List[Dict[str, Any]]:
        rows = await self.primary.fetch_rows(
            "orders", {"user_id": user_id}, order_by=[("created_at", True)]
        )
        orders = []
        for row in rows:
            order = _serialize_order(row)
            items = await self.primary.fetch_rows(
                "order_items", {"order_id": row["id"]}, order_by=[("position", False)]
            )
            order["items"] = [_serialize_item(item) for item in items]
            orders.append(order)
        return orders

    async def list_orders(self, page: int = 1, limit: int = 10, status: Optional[str] = None) -> Dict[str, Any]:
        if status is not None and status not in ORDER_STATUSES:
            raise ValidationError(
                error="Invalid status",
                message=f"Valid statuses: {', '.join(ORDER_STATUSES)}",
            )
        filters = {"status": status} if status else {}
        rows = await self.primary.fetch_rows(
            "orders",
            filters,
            order_by=[("created_at", True)],
            limit=limit,
            offset=(page - 1) * limit,
        )
        total = await self.primary.count_rows("orders", filters)
        return {
            "data": [_serialize_order(row) for row in rows],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": (total + limit - 1) // limit,
            },
        }

    async def update_status(self, order_id: str, status: str, notes: Optional[str] = None) -> Dict[str, Any]:
        if status not in ORDER_STATUSES:
            raise ValidationError(
                error="Invalid status",
                message=f"Valid statuses: {', '.join(ORDER_STATUSES)}",
            )

        current = await self.primary.fetch_row("orders", order_id)
        if current is None:
            raise NotFoundError(f"Order with ID {order_id} not found")
        if not can_transition(current["status"], status):
            raise InvalidTransitionError(
                f"Cannot move order {current['order_number']} from {current['status']} to {status}"
            )
        if current["status"] == status:
            return _serialize_order(current)

        now = datetime.now(timezone.utc)
        async with self.primary.transaction() as session:
            # Compare-and-set so a concurrent update cannot skip a transition check
            result = await session.execute(
                update(Order.__table__)
                .where(Order.id == current["id"], Order.status == current["status"])
                .values(status=status, updated_at=now)
            )
            if result.rowcount == 0:
                raise InvalidTransitionError(
                    f"Order {current['order_number']} changed while updating; retry"
                )
            await session.execute(insert(OrderHistory.__table__).values(
                id=uuid.uuid4(),
                order_id=current["id"],
                status=status,
                notes=notes,
                timestamp=now,
            ))
            row = (await session.execute(select(Order.__table__).where(Order.id == current["id"]))).mappings().one()

        logger.info(f"Order {current['order_number']} status updated to: {status}")
        return _serialize_order(dict(row))
