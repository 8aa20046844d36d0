from fastapi import APIRouter, FastAPI, Depends, Query, Request, Body
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional
import logging

from config import settings
from database import PrimaryStore, create_engine_from_settings
from clickhouse_store import SecondaryStore
from redis_cache import RedisCache
from errors import PrimaryStoreError, SecondaryStoreError, register_exception_handlers
from recorder import DualSinkRecorder, RequestContext
from analytics_service import AnalyticsService
from orders import OrderWriter
from sample_data import SampleDataSeeder
from schemas import DashboardResponse, PageVisitsResponse
from tracking import CLICK, CUSTOM_EVENT, PAGE_VISIT, SCROLL, SESSION, EventKind
from user_agent import client_ip

# Configure logging
logging.basicConfig(
    level=settings.LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Analytics routes are also served under the prefixes the frontend and the
# load balancer use; order routes likewise under /api
ANALYTICS_PREFIXES = ("", "/analytics", "/api/analytics")
ORDER_PREFIXES = ("", "/api")


def create_app(
    primary: Optional[PrimaryStore] = None,
    secondary: Optional[SecondaryStore] = None,
    cache: Optional[RedisCache] = None,
    use_secondary: Optional[bool] = None,
    use_cache: Optional[bool] = None,
) -> FastAPI:
    """
    Build the application. Stores passed in are used as-is (and not closed on
    shutdown); anything omitted is built from settings during startup.
    """
    if use_secondary is None:
        use_secondary = secondary is not None or settings.CLICKHOUSE_ENABLED
    if use_cache is None:
        use_cache = cache is not None or settings.CACHE_ENABLED

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        logger.info("Starting up analytics & orders API")
        owned = []

        primary_store = primary
        if primary_store is None:
            primary_store = PrimaryStore(create_engine_from_settings())
            owned.append(primary_store.dispose)

        secondary_store = secondary
        if secondary_store is None and use_secondary:
            secondary_store = SecondaryStore.from_settings()
            owned.append(secondary_store.close)

        dashboard_cache = cache
        if dashboard_cache is None and use_cache:
            dashboard_cache = RedisCache()
            owned.append(dashboard_cache.close)

        if settings.AUTO_CREATE_TABLES:
            # In production, run init_db.py once instead
            await primary_store.create_all()
            if secondary_store is not None:
                try:
                    await secondary_store.create_tables()
                except SecondaryStoreError as e:
                    logger.warning(f"ClickHouse initialization failed, will use PostgreSQL only: {e}")

        app.state.primary = primary_store
        app.state.secondary = secondary_store
        app.state.recorder = DualSinkRecorder(
            primary_store,
            secondary_store,
            secondary_timeout=settings.SECONDARY_WRITE_TIMEOUT_SECONDS,
        )
        app.state.analytics = AnalyticsService(primary_store, secondary_store, dashboard_cache)
        app.state.orders = OrderWriter(
            primary_store,
            prefix=settings.ORDER_NUMBER_PREFIX,
            max_attempts=settings.ORDER_NUMBER_MAX_ATTEMPTS,
        )
        app.state.seeder = SampleDataSeeder(app.state.recorder)

        yield

        # Shutdown
        logger.info("Shutting down")
        for close in reversed(owned):
            await close()

    app = FastAPI(
        title="Analytics & Orders API",
        version="1.0.0",
        lifespan=lifespan
    )

    # CORS: the tracking beacon posts from every origin
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=False,
        allow_methods=["GET", "POST", "PUT", "OPTIONS"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)
    app.include_router(service_router)
    for prefix in ANALYTICS_PREFIXES:
        app.include_router(analytics_router, prefix=prefix)
    for prefix in ORDER_PREFIXES:
        app.include_router(orders_router, prefix=prefix)
    return app


# Dependencies
def get_recorder(request: Request) -> DualSinkRecorder:
    return request.app.state.recorder

def get_analytics(request: Request) -> AnalyticsService:
    return request.app.state.analytics

def get_orders(request: Request) -> OrderWriter:
    return request.app.state.orders

def get_seeder(request: Request) -> SampleDataSeeder:
    return request.app.state.seeder

def get_context(request: Request) -> RequestContext:
    return RequestContext(
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )


async def _track(kind: EventKind, payload: Any, recorder: DualSinkRecorder, context: RequestContext):
    try:
        result = await recorder.record(kind, payload, context)
    except PrimaryStoreError as e:
        logger.error(f"Error tracking {kind.name}: {e}")
        e.error = f"Failed to track {kind.name.replace('_', ' ')}"
        raise
    # Mirror status stays internal; the response is the same either way
    return JSONResponse(
        status_code=201,
        content={
            "message": kind.message,
            kind.id_key: str(result.event_id),
            "timestamp": result.occurred_at.isoformat(),
        },
    )


service_router = APIRouter()
analytics_router = APIRouter()
orders_router = APIRouter()


@service_router.get("/")
async def root():
    return {
        "message": "Analytics & Orders API",
        "docs": "/docs",
        "version": "1.0.0"
    }

@service_router.get("/health")
async def health_check(request: Request):
    """Liveness with primary and secondary connectivity reported independently"""
    state = request.app.state
    body = {
        "status": "healthy",
        "database": "connected",
        "clickhouse": "disabled",
        "mirror": dict(state.recorder.stats),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": "analytics-service",
    }

    if state.secondary is not None:
        try:
            await state.secondary.ping()
            body["clickhouse"] = "connected"
        except SecondaryStoreError as e:
            logger.warning(f"ClickHouse connection failed: {e}")
            body["clickhouse"] = "disconnected"

    try:
        await state.primary.ping()
    except PrimaryStoreError as e:
        body.update(status="unhealthy", database="disconnected", **e.to_dict(settings.is_development))
        return JSONResponse(status_code=503, content=body)
    return body

@service_router.get("/ready")
async def ready_check(request: Request):
    try:
        await request.app.state.primary.ping()
    except PrimaryStoreError as e:
        logger.warning(f"Not ready: {e}")
        return JSONResponse(
            status_code=503,
            content={"status": "not ready", **e.to_dict(settings.is_development)},
        )
    return {"status": "ready"}

# -------------------------------------------------------------------------
# Tracking Endpoints
# -------------------------------------------------------------------------

@analytics_router.post("/track/page-visit", status_code=201)
async def track_page_visit(
    payload: Any = Body(None),
    recorder: DualSinkRecorder = Depends(get_recorder),
    context: RequestContext = Depends(get_context),
):
    return await _track(PAGE_VISIT, payload, recorder, context)

@analytics_router.post("/track/event", status_code=201)
async def track_event(
    payload: Any = Body(None),
    recorder: DualSinkRecorder = Depends(get_recorder),
    context: RequestContext = Depends(get_context),
):
    return await _track(CUSTOM_EVENT, payload, recorder, context)

@analytics_router.post("/track/click", status_code=201)
async def track_click(
    payload: Any = Body(None),
    recorder: DualSinkRecorder = Depends(get_recorder),
    context: RequestContext = Depends(get_context),
):
    return await _track(CLICK, payload, recorder, context)

@analytics_router.post("/track/scroll", status_code=201)
async def track_scroll(
    payload: Any = Body(None),
    recorder: DualSinkRecorder = Depends(get_recorder),
    context: RequestContext = Depends(get_context),
):
    return await _track(SCROLL, payload, recorder, context)

@analytics_router.post("/track/session", status_code=201)
async def track_session(
    payload: Any = Body(None),
    recorder: DualSinkRecorder = Depends(get_recorder),
    context: RequestContext = Depends(get_context),
):
    return await _track(SESSION, payload, recorder, context)

# -------------------------------------------------------------------------
# Analytics Endpoints
# -------------------------------------------------------------------------

@analytics_router.get("/page-visits", response_model=PageVisitsResponse)
async def get_page_visits(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    path: Optional[str] = None,
    user_id: Optional[str] = None,
    limit: int = Query(default=100, ge=1, le=10000),
    offset: int = Query(default=0, ge=0),
    service: AnalyticsService = Depends(get_analytics),
):
    """Page visit breakdown from ClickHouse, falling back to PostgreSQL"""
    return await service.page_visit_breakdown(start_date, end_date, path, user_id, limit, offset)

@analytics_router.get("/dashboard", response_model=DashboardResponse)
async def get_dashboard(
    date_range: str = Query(default="7d"),
    service: AnalyticsService = Depends(get_analytics),
):
    return await service.dashboard(date_range)

# Daily reports, shaped {data, metadata} for BI tools
@analytics_router.get("/quicksight/metrics")
async def get_metrics_report(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    service: AnalyticsService = Depends(get_analytics),
):
    return await service.metrics_report(start_date, end_date)

@analytics_router.get("/quicksight/click-analytics")
async def get_click_report(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    service: AnalyticsService = Depends(get_analytics),
):
    return await service.click_report(start_date, end_date)

@analytics_router.get("/quicksight/scroll-analytics")
async def get_scroll_report(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    service: AnalyticsService = Depends(get_analytics),
):
    return await service.scroll_report(start_date, end_date)

@analytics_router.get("/quicksight/gaming-analytics")
async def get_gaming_report(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    service: AnalyticsService = Depends(get_analytics),
):
    return await service.gaming_report(start_date, end_date)

@analytics_router.get("/quicksight/user-journey")
async def get_user_journey_report(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    service: AnalyticsService = Depends(get_analytics),
):
    try:
        return await service.user_journey_report(start_date, end_date)
    except PrimaryStoreError as e:
        e.error = "Failed to retrieve user journey data"
        raise

@analytics_router.get("/quicksight/conversion-funnel")
async def get_conversion_funnel_report(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    service: AnalyticsService = Depends(get_analytics),
):
    try:
        return await service.conversion_funnel_report(start_date, end_date)
    except PrimaryStoreError as e:
        e.error = "Failed to retrieve conversion funnel data"
        raise

@analytics_router.post("/seed-sample-data")
async def seed_sample_data(
    page_visits: int = Query(default=1000, ge=0, le=10000),
    events: int = Query(default=500, ge=0, le=10000),
    clicks: int = Query(default=200, ge=0, le=10000),
    scrolls: int = Query(default=200, ge=0, le=10000),
    seeder: SampleDataSeeder = Depends(get_seeder),
):
    """Demo data over the last 30 days, written to both stores"""
    try:
        return await seeder.seed(page_visits, events, clicks, scrolls)
    except PrimaryStoreError as e:
        e.error = "Failed to seed sample data"
        raise

# -------------------------------------------------------------------------
# Order Endpoints
# -------------------------------------------------------------------------

@orders_router.post("/orders", status_code=201)
async def create_order(
    payload: Any = Body(None),
    orders: OrderWriter = Depends(get_orders),
):
    try:
        order = await orders.create_order(payload)
    except PrimaryStoreError as e:
        e.error = "Failed to create order"
        raise
    return {"message": f"Order {order['orderNumber']} created successfully", **order}

@orders_router.get("/orders")
async def list_orders(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    status: Optional[str] = None,
    orders: OrderWriter = Depends(get_orders),
):
    """Admin view of all orders"""
    return await orders.list_orders(page, limit, status)

@orders_router.get("/orders/user/{user_id}")
async def list_user_orders(user_id: str, orders: OrderWriter = Depends(get_orders)):
    data = await orders.list_user_orders(user_id)
    return {"data": data, "count": len(data)}

@orders_router.get("/orders/{order_id}")
async def get_order(order_id: str, orders: OrderWriter = Depends(get_orders)):
    return await orders.get_order(order_id)

@orders_router.put("/orders/{order_id}/status")
async def update_order_status(
    order_id: str,
    payload: Any = Body(None),
    orders: OrderWriter = Depends(get_orders),
):
    body = payload if isinstance(payload, dict) else {}
    order = await orders.update_status(order_id, body.get("status"), body.get("notes"))
    return {"message": f"Order status updated to {order['status']}", **order}


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
