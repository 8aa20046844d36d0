"""
Demo data seeding: random page visits and events spread over the last 30 days,
written through the dual-sink recorder so both stores receive them.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
import logging
import random
import uuid

from recorder import DualSinkRecorder
from simulator import COUNTRIES, PAGES
from tracking import CLICK, CUSTOM_EVENT, PAGE_VISIT, SCROLL

logger = logging.getLogger(__name__)

SEED_DAYS = 30
DEVICES = ["desktop", "mobile", "tablet"]
BROWSERS = ["Chrome", "Firefox", "Safari", "Edge"]
EVENT_NAMES = {
    "click": ["button_click", "link_click", "add_to_cart", "checkout_button"],
    "scroll": ["scroll_25", "scroll_50", "scroll_75", "scroll_100"],
    "gaming": ["game_start", "game_end", "level_complete", "high_score"],
    "purchase": ["purchase_complete"],
}


class SampleDataSeeder:
    def __init__(self, recorder: DualSinkRecorder, rng: Optional[random.Random] = None):
        self.recorder = recorder
        self.rng = rng or random.Random()

    def _envelope(self, start: datetime, end: datetime) -> Dict[str, Any]:
        at = start + (end - start) * self.rng.random()
        browser = self.rng.choice(BROWSERS)
        return {
            "id": uuid.uuid4(),
            "session_id": f"session_{self.rng.randint(0, 199)}",
            "user_id": f"user_{self.rng.randint(0, 99)}" if self.rng.random() > 0.3 else None,
            "timestamp": at,
            "user_agent": f"Mozilla/5.0 (compatible; {browser})",
            "ip_address": f"192.168.{self.rng.randint(0, 254)}.{self.rng.randint(0, 254)}",
            "created_at": at,
            "_browser": browser,
        }

    def _with_device(self, row: Dict[str, Any]) -> Dict[str, Any]:
        row.update(device_type=self.rng.choice(DEVICES), browser=row.pop("_browser"), os="Windows")
        return row

    def page_visit(self, start: datetime, end: datetime) -> Dict[str, Any]:
        row = self._with_device(self._envelope(start, end))
        path = self.rng.choice(PAGES)
        row.update(
            url=f"https://lugx-gaming.com{path}",
            path=path,
            referrer="https://google.com" if self.rng.random() > 0.5 else None,
            country=self.rng.choice(COUNTRIES),
            city="Singapore",
            screen_resolution="1920x1080",
            duration_seconds=self.rng.randint(10, 309),
        )
        return row

    def event(self, start: datetime, end: datetime) -> Dict[str, Any]:
        row = self._envelope(start, end)
        row.pop("_browser")
        event_type = self.rng.choice(list(EVENT_NAMES))
        event_name = self.rng.choice(EVENT_NAMES[event_type])
        if event_type == "click":
            properties = {"element_id": f"btn_{self.rng.randint(0, 9)}", "page_url": "/products"}
        elif event_type == "scroll":
            properties = {"scroll_depth": event_name.split("_")[1], "page_height": 2000}
        elif event_type == "gaming":
            properties = {
                "game_id": f"game_{self.rng.randint(0, 4)}",
                "score": self.rng.randint(0, 49999),
                "level": self.rng.randint(1, 10),
            }
        else:
            properties = {
                "order_id": f"order_{self.rng.randint(0, 999)}",
                "amount": f"{self.rng.uniform(50, 550):.2f}",
                "currency": "USD",
            }
        row.update(
            event_type=event_type,
            event_name=event_name,
            properties=properties,
            url="https://lugx-gaming.com/products",
            country="Singapore",
            city="Singapore",
        )
        return row

    def click(self, start: datetime, end: datetime) -> Dict[str, Any]:
        row = self._with_device(self._envelope(start, end))
        row.update(
            element_type=self.rng.choice(["button", "link", "image"]),
            element_id=f"btn_{self.rng.randint(0, 9)}",
            page_url=f"https://lugx-gaming.com{self.rng.choice(PAGES)}",
            x_coordinate=self.rng.randint(0, 1920),
            y_coordinate=self.rng.randint(0, 1080),
        )
        return row

    def scroll(self, start: datetime, end: datetime) -> Dict[str, Any]:
        row = self._with_device(self._envelope(start, end))
        depth = float(self.rng.choice([25, 50, 75, 100]))
        row.update(
            page_url=f"https://lugx-gaming.com{self.rng.choice(PAGES)}",
            scroll_depth_percent=depth,
            max_scroll_depth_percent=depth,
            page_height=2000,
            viewport_height=900,
            scroll_time_seconds=round(self.rng.uniform(0, 60), 1),
        )
        return row

    async def seed(self, page_visits: int = 1000, events: int = 500, clicks: int = 0, scrolls: int = 0) -> Dict[str, Any]:
        end = datetime.now(timezone.utc)
        start = end - timedelta(days=SEED_DAYS)

        batches = [
            (PAGE_VISIT, [self.page_visit(start, end) for _ in range(page_visits)]),
            (CUSTOM_EVENT, [self.event(start, end) for _ in range(events)]),
            (CLICK, [self.click(start, end) for _ in range(clicks)]),
            (SCROLL, [self.scroll(start, end) for _ in range(scrolls)]),
        ]
        for kind, rows in batches:
            if rows:
                await self.recorder.record_batch(kind, rows)
        logger.info(
            f"Seeded {page_visits} page visits, {events} events, {clicks} clicks, {scrolls} scrolls"
        )

        return {
            "message": "Sample analytics data seeded successfully",
            "page_visits_created": page_visits,
            "events_created": events,
            "clicks_created": clicks,
            "scrolls_created": scrolls,
            "data_range": {"start": start.isoformat(), "end": end.isoformat()},
        }
