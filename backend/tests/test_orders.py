import re
from decimal import Decimal

import pytest

import orders
from errors import InvalidTransitionError, NotFoundError, PrimaryStoreError, ValidationError
from orders import OrderWriter, can_transition, generate_order_number


def order_payload(item_count=2, user_id="user_1"):
    return {
        "userId": user_id,
        "items": [
            {"gameId": f"game-{i}", "quantity": i + 1, "unitPrice": 19.99}
            for i in range(item_count)
        ],
        "totalAmount": 59.97,
        "shippingAddress": {"street": "1 Game Street", "city": "Singapore"},
    }


async def table_counts(primary):
    return [
        await primary.count_rows("orders"),
        await primary.count_rows("order_items"),
        await primary.count_rows("order_history"),
    ]


def test_order_number_format():
    number = generate_order_number("ORD", now_ms=1700000000000)
    assert re.fullmatch(r"ORD-1700000000000-[A-Z0-9]{8}", number)


def test_order_numbers_do_not_repeat_within_a_millisecond():
    numbers = {generate_order_number("ORD", now_ms=1700000000000) for _ in range(10000)}
    assert len(numbers) == 10000


@pytest.mark.parametrize("current,new,allowed", [
    ("pending", "processing", True),
    ("processing", "shipped", True),
    ("shipped", "delivered", True),
    ("pending", "cancelled", True),
    ("shipped", "cancelled", True),
    ("pending", "pending", True),
    ("pending", "shipped", False),
    ("delivered", "pending", False),
    ("cancelled", "processing", False),
    ("cancelled", "cancelled", True),
])
def test_can_transition(current, new, allowed):
    assert can_transition(current, new) is allowed


@pytest.mark.asyncio
async def test_create_order_writes_header_items_and_history(primary):
    writer = OrderWriter(primary)

    created = await writer.create_order(order_payload(item_count=3))

    assert created["status"] == "pending"
    assert created["paymentStatus"] == "pending"
    assert created["currency"] == "USD"
    assert created["billingAddress"] == created["shippingAddress"]
    assert [item["gameId"] for item in created["items"]] == ["game-0", "game-1", "game-2"]
    assert created["items"][2]["totalPrice"] == pytest.approx(59.97)
    assert await table_counts(primary) == [1, 3, 1]

    fetched = await writer.get_order(created["id"])
    assert fetched["orderNumber"] == created["orderNumber"]
    assert len(fetched["items"]) == 3
    assert fetched["history"][0]["notes"] == "Order created"


@pytest.mark.asyncio
@pytest.mark.parametrize("items", [[], None, "game-1"])
async def test_order_without_items_writes_nothing(primary, items):
    payload = order_payload()
    payload["items"] = items

    with pytest.raises(ValidationError) as exc:
        await OrderWriter(primary).create_order(payload)

    assert "items" in exc.value.missing
    assert await table_counts(primary) == [0, 0, 0]


@pytest.mark.asyncio
async def test_missing_fields_are_listed(primary):
    with pytest.raises(ValidationError) as exc:
        await OrderWriter(primary).create_order({"userId": "u1"})
    assert exc.value.missing == ["items", "totalAmount", "shippingAddress"]


@pytest.mark.asyncio
async def test_failure_on_a_later_item_rolls_back_the_whole_order(primary, monkeypatch):
    writer = OrderWriter(primary)
    original = writer._insert_item

    async def fail_on_third(session, order_id, position, item, now):
        if position == 2:
            raise PrimaryStoreError("disk full")
        return await original(session, order_id, position, item, now)

    monkeypatch.setattr(writer, "_insert_item", fail_on_third)

    with pytest.raises(PrimaryStoreError):
        await writer.create_order(order_payload(item_count=4))

    assert await table_counts(primary) == [0, 0, 0]


@pytest.mark.asyncio
async def test_order_number_collision_is_retried(primary, monkeypatch):
    numbers = iter(["ORD-1-AAAAAAAA", "ORD-1-AAAAAAAA", "ORD-1-BBBBBBBB"])
    monkeypatch.setattr(orders, "generate_order_number", lambda prefix: next(numbers))
    writer = OrderWriter(primary)

    first = await writer.create_order(order_payload())
    second = await writer.create_order(order_payload())

    assert first["orderNumber"] == "ORD-1-AAAAAAAA"
    assert second["orderNumber"] == "ORD-1-BBBBBBBB"
    assert await table_counts(primary) == [2, 4, 2]


@pytest.mark.asyncio
async def test_exhausted_order_number_attempts(primary, monkeypatch):
    monkeypatch.setattr(orders, "generate_order_number", lambda prefix: "ORD-1-AAAAAAAA")
    writer = OrderWriter(primary, max_attempts=3)

    await writer.create_order(order_payload())
    with pytest.raises(PrimaryStoreError):
        await writer.create_order(order_payload())

    assert await table_counts(primary) == [1, 2, 1]


@pytest.mark.asyncio
async def test_item_totals_default_to_unit_price_times_quantity(primary):
    payload = order_payload(item_count=0)
    payload["items"] = [{"id": 42, "price": "10.50", "quantity": 3}, {"gameId": "g", "unitPrice": 5}]

    created = await OrderWriter(primary).create_order(payload)

    assert created["items"][0]["gameId"] == "42"
    assert created["items"][0]["totalPrice"] == pytest.approx(31.5)
    assert created["items"][1]["quantity"] == 1
    rows = await primary.fetch_rows("order_items", order_by=[("position", False)])
    assert Decimal(str(rows[0]["total_price"])) == Decimal("31.50")


@pytest.mark.asyncio
async def test_status_walks_forward_and_records_history(primary):
    writer = OrderWriter(primary)
    created = await writer.create_order(order_payload())

    for status in ("processing", "shipped", "delivered"):
        updated = await writer.update_status(created["id"], status, notes=f"now {status}")
        assert updated["status"] == status

    order = await writer.get_order(created["id"])
    assert [entry["status"] for entry in order["history"]] == [
        "pending", "processing", "shipped", "delivered",
    ]


@pytest.mark.asyncio
async def test_illegal_transition_is_rejected(primary):
    writer = OrderWriter(primary)
    created = await writer.create_order(order_payload())
    await writer.update_status(created["id"], "cancelled")

    with pytest.raises(InvalidTransitionError):
        await writer.update_status(created["id"], "processing")

    order = await writer.get_order(created["id"])
    assert order["status"] == "cancelled"
    assert len(order["history"]) == 2


@pytest.mark.asyncio
async def test_unknown_status_and_unknown_order(primary):
    writer = OrderWriter(primary)
    created = await writer.create_order(order_payload())

    with pytest.raises(ValidationError):
        await writer.update_status(created["id"], "lost")
    with pytest.raises(NotFoundError):
        await writer.update_status("00000000-0000-0000-0000-000000000000", "processing")
    with pytest.raises(NotFoundError):
        await writer.get_order("not-a-uuid")


@pytest.mark.asyncio
async def test_list_orders_paginates_and_filters(primary):
    writer = OrderWriter(primary)
    created = [await writer.create_order(order_payload(user_id=f"user_{i % 2}")) for i in range(5)]
    await writer.update_status(created[0]["id"], "processing")

    page = await writer.list_orders(page=2, limit=2)
    assert page["pagination"] == {"page": 2, "limit": 2, "total": 5, "pages": 3}
    assert len(page["data"]) == 2

    processing = await writer.list_orders(status="processing")
    assert [order["id"] for order in processing["data"]] == [created[0]["id"]]

    mine = await writer.list_user_orders("user_0")
    assert len(mine) == 3
    assert all(len(order["items"]) == 2 for order in mine)
