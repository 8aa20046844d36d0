import random
from datetime import datetime, timedelta, timezone

from simulator import TrafficSimulator
from tracking import CLICK, CUSTOM_EVENT, PAGE_VISIT, SCROLL, SESSION, missing_fields, validate
from orders import validate_order


def make_simulator():
    return TrafficSimulator(api_base="http://test", rng=random.Random(7))


def test_tracking_payloads_are_accepted():
    sim = make_simulator()
    started = datetime.now(timezone.utc) - timedelta(minutes=3)

    cases = [
        (PAGE_VISIT, sim.page_visit("s1", "user_1")),
        (CLICK, sim.click("s1")),
        (SCROLL, sim.scroll("s1", "user_1")),
        (CUSTOM_EVENT, sim.gaming_event("s1", "user_1")),
        (SESSION, sim.session_summary("s1", "user_1", started, pages=3, clicks=4)),
    ]
    for kind, payload in cases:
        assert missing_fields(kind, payload) == []
        validate(kind, payload)


def test_session_summary_duration():
    sim = make_simulator()
    started = datetime.now(timezone.utc) - timedelta(seconds=90)
    summary = sim.session_summary("s1", None, started, pages=2, clicks=0)
    assert 89 <= summary["session_duration_seconds"] <= 91
    assert summary["is_active"] is False


def test_order_payload_totals_match_items():
    sim = make_simulator()
    payload = sim.order("user_1")

    order = validate_order(payload)
    expected = sum(item["quantity"] * item["unitPrice"] for item in payload["items"])
    assert float(order.totalAmount) == round(expected, 2)
    assert 1 <= len(order.items) <= 3
