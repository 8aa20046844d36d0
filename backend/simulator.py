"""
Traffic simulator to generate realistic tracking and order data
Run this separately to feed data into the system: python simulator.py
"""
import asyncio
import aiohttp
import random
from datetime import datetime, timedelta, timezone
from uuid import uuid4

API_BASE = "http://localhost:3003"

PAGES = ["/", "/products", "/products/gaming-chair", "/products/gaming-mouse", "/cart", "/checkout", "/profile"]
USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 Chrome/120.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (iPhone; CPU iPhone OS) AppleWebKit/605 Safari/604",
    "Mozilla/5.0 (Linux; Android 14) AppleWebKit/537.36 Chrome/120.0 Mobile Safari/537.36",
]
COUNTRIES = ["Singapore", "Malaysia", "Thailand", "Indonesia", "Philippines"]
GAMES = [str(uuid4()) for _ in range(20)]

class TrafficSimulator:
    def __init__(self, api_base: str = API_BASE, rng: random.Random = None):
        self.api_base = api_base
        self.rng = rng or random.Random()
        self.users = [f"user_{i}" for i in range(100)]
        self.sent = {"ok": 0, "failed": 0}

    def page_visit(self, session_id: str, user_id: str = None) -> dict:
        path = self.rng.choice(PAGES)
        return {
            "session_id": session_id,
            "user_id": user_id,
            "url": f"https://lugx-gaming.com{path}",
            "path": path,
            "referrer": self.rng.choice(["https://google.com", None]),
            "screen_resolution": "1920x1080",
            "duration_seconds": self.rng.randint(10, 300),
            "country": self.rng.choice(COUNTRIES),
            "city": "Singapore",
        }

    def click(self, session_id: str, user_id: str = None) -> dict:
        return {
            "session_id": session_id,
            "user_id": user_id,
            "element_type": self.rng.choice(["button", "link", "image"]),
            "element_id": f"btn_{self.rng.randint(0, 9)}",
            "page_url": f"https://lugx-gaming.com{self.rng.choice(PAGES)}",
            "x_coordinate": self.rng.randint(0, 1920),
            "y_coordinate": self.rng.randint(0, 1080),
        }

    def scroll(self, session_id: str, user_id: str = None) -> dict:
        depth = self.rng.choice([0, 25, 50, 75, 100])
        return {
            "session_id": session_id,
            "user_id": user_id,
            "page_url": f"https://lugx-gaming.com{self.rng.choice(PAGES)}",
            "scroll_depth_percent": depth,
            "max_scroll_depth_percent": depth,
            "page_height": 2000,
            "viewport_height": 900,
        }

    def gaming_event(self, session_id: str, user_id: str = None) -> dict:
        return {
            "session_id": session_id,
            "user_id": user_id,
            "event_type": "gaming",
            "event_name": self.rng.choice(["game_start", "game_end", "level_complete", "high_score"]),
            "properties": {
                "game_id": self.rng.choice(GAMES),
                "score": self.rng.randint(0, 50000),
                "level": self.rng.randint(1, 10),
            },
        }

    def session_summary(self, session_id: str, user_id: str, started: datetime, pages: int, clicks: int) -> dict:
        ended = datetime.now(timezone.utc)
        return {
            "session_id": session_id,
            "user_id": user_id,
            "session_start_time": started.isoformat(),
            "session_end_time": ended.isoformat(),
            "session_duration_seconds": int((ended - started).total_seconds()),
            "pages_visited": pages,
            "total_clicks": clicks,
            "is_active": False,
        }

    def order(self, user_id: str) -> dict:
        items = []
        for game_id in self.rng.sample(GAMES, self.rng.randint(1, 3)):
            items.append({
                "gameId": game_id,
                "quantity": self.rng.randint(1, 2),
                "unitPrice": round(self.rng.uniform(9.99, 69.99), 2),
            })
        total = round(sum(item["quantity"] * item["unitPrice"] for item in items), 2)
        return {
            "userId": user_id,
            "items": items,
            "totalAmount": total,
            "shippingAddress": {"street": "1 Game Street", "city": "Singapore", "country": "SG"},
        }

    async def post(self, session: aiohttp.ClientSession, path: str, payload: dict, user_agent: str):
        """Send payload to API"""
        try:
            async with session.post(f"{self.api_base}{path}", json=payload,
                                    headers={"User-Agent": user_agent}) as resp:
                if resp.status != 201:
                    self.sent["failed"] += 1
                    print(f"Error posting to {path}: {await resp.text()}")
                else:
                    self.sent["ok"] += 1
        except aiohttp.ClientError as e:
            self.sent["failed"] += 1
            print(f"Connection error: {e}")

    async def simulate_session(self, session: aiohttp.ClientSession):
        """Simulate one visitor session, ending in a purchase some of the time"""
        user_id = self.rng.choice(self.users) if self.rng.random() > 0.3 else None
        session_id = f"session_{uuid4().hex[:12]}"
        user_agent = self.rng.choice(USER_AGENTS)
        started = datetime.now(timezone.utc)
        pages = clicks = 0

        for _ in range(self.rng.randint(1, 5)):
            await self.post(session, "/track/page-visit", self.page_visit(session_id, user_id), user_agent)
            pages += 1
            for _ in range(self.rng.randint(0, 3)):
                await self.post(session, "/track/click", self.click(session_id, user_id), user_agent)
                clicks += 1
            await self.post(session, "/track/scroll", self.scroll(session_id, user_id), user_agent)
            await asyncio.sleep(self.rng.uniform(0.1, 1))

        if self.rng.random() < 0.3:
            await self.post(session, "/track/event", self.gaming_event(session_id, user_id), user_agent)

        if user_id and self.rng.random() < 0.2:
            await self.post(session, "/orders", self.order(user_id), user_agent)

        await self.post(session, "/track/session",
                        self.session_summary(session_id, user_id, started, pages, clicks), user_agent)

    async def run(self, sessions_per_second: int = 10, duration_minutes: int = 10):
        """Run simulation"""
        print(f"Starting simulation: {sessions_per_second} sessions/sec for {duration_minutes} minutes...")

        async with aiohttp.ClientSession() as session:
            start_time = datetime.now()
            end_time = start_time + timedelta(minutes=duration_minutes)

            while datetime.now() < end_time:
                tasks = [asyncio.create_task(self.simulate_session(session))
                         for _ in range(sessions_per_second)]
                await asyncio.gather(*tasks)
                await asyncio.sleep(1)

                elapsed = (datetime.now() - start_time).seconds
                if elapsed % 60 == 0:
                    print(f"Running... {elapsed//60} minutes elapsed, sent={self.sent}")

if __name__ == "__main__":
    simulator = TrafficSimulator()
    asyncio.run(simulator.run(sessions_per_second=10, duration_minutes=10))
