"""
Terminal API (FastAPI)

Local API of the restaurant terminal. The UI talks to this process only;
it keeps working while the remote backend is unreachable and pushes
everything through the sync queue once connectivity returns.

Endpoints:
    - POST /offline/orders: Capture an order (always stored locally first)
    - GET /offline/orders: List orders still waiting for sync
    - PATCH /offline/orders/{order_id}: Change status / payment / notes
    - POST /offline/customers: Capture a customer (deduplicated by phone)
    - GET /menu/{restaurant_id}: Menu, remote first with cached fallback
    - GET /sync/status, POST /sync/now, POST /sync/connectivity
    - GET /sync/failed, POST /sync/failed/{item_id}/retry
    - POST /orders/{order_id}/notify: WhatsApp status notification
    - POST /orders/{order_id}/charge: Charge through the payment gateway
    - GET /health: System health check

Author: GourmetFlow Team
Version: 1.0.0
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import datetime
from typing import Any, Optional

import redis
from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from gourmetflow.core.config import get_settings, setup_logging
from gourmetflow.core.exceptions import NotFound, StorageError
from gourmetflow.runtime import SyncRuntime, create_runtime
from gourmetflow.schemas import (
    ChargeRequest,
    ConnectivityUpdate,
    HealthResponse,
    MenuSnapshot,
    NotifyOrderRequest,
    OfflineCustomerCreate,
    OfflineOrderCreate,
    OrderUpdate,
    SyncReport,
    SyncStatusResponse,
)
from gourmetflow.services.local_store import RecordKind
from gourmetflow.services.payment import BasePaymentGateway, get_payment_gateway
from gourmetflow.services.remote import reset_remote_backend
from gourmetflow.services.whatsapp import (
    BaseWhatsAppService,
    get_whatsapp_service,
    reset_whatsapp_service,
)

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Build the sync runtime on startup and tear it down on shutdown.
    """
    logger.info("=" * 60)
    logger.info(f"🚀 Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Restaurant: {settings.restaurant_id}")
    logger.info("=" * 60)

    runtime = await create_runtime(settings)
    app.state.runtime = runtime

    logger.info(f"✅ Remote backend: {runtime.remote.provider_name}")
    logger.info(f"✅ WhatsApp: {get_whatsapp_service().provider_name}")

    if settings.use_real_services:
        missing = settings.validate_production_config()
        if missing:
            logger.warning(f"⚠️ Missing production config: {missing}")

    runtime.driver.start()
    if await runtime.remote.health_check():
        await runtime.driver.set_online(True)
    else:
        logger.warning("⚠️ Remote backend unreachable, starting offline")

    logger.info("✅ Application ready!")

    yield

    logger.info("Shutting down...")
    await runtime.close()
    await runtime.remote.aclose()
    await get_whatsapp_service().aclose()
    reset_remote_backend()
    reset_whatsapp_service()
    logger.info("✅ Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description="Offline-first order capture and synchronization for restaurant terminals.",
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # The UI runs on the same device
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    logger.error(f"Local store error on {request.url.path}: {exc}")
    return JSONResponse(status_code=503, content={"detail": "Local store unavailable"})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal Server Error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_runtime(request: Request) -> SyncRuntime:
    return request.app.state.runtime


def get_whatsapp() -> BaseWhatsAppService:
    return get_whatsapp_service()


def get_payment() -> BasePaymentGateway:
    return get_payment_gateway()


async def _status(runtime: SyncRuntime, restaurant_id: str) -> SyncStatusResponse:
    return SyncStatusResponse(
        online=runtime.driver.online,
        syncing=runtime.engine.is_draining,
        last_sync_time=runtime.engine.last_sync_time,
        stats=await runtime.store.get_stats(restaurant_id),
    )


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"🍽️ {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "health": "/health",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(runtime: SyncRuntime = Depends(get_runtime)) -> HealthResponse:
    """Verify the local store and the remote backend."""
    store_status = "healthy"
    try:
        await runtime.store.get_stats()
    except StorageError as e:
        store_status = f"unhealthy: {e}"
        logger.error(f"Local store health check failed: {e}")

    remote_status = "healthy" if await runtime.remote.health_check() else "unreachable"

    # Celery broker only matters for background sync; reported, not scored
    broker_status = "healthy"
    try:
        r = redis.Redis.from_url(
            runtime.settings.redis_url, socket_timeout=2, socket_connect_timeout=2
        )
        r.ping()
        r.close()
    except redis.RedisError as e:
        broker_status = f"unavailable: {e}"
        logger.warning(f"Worker broker health check failed: {e}")

    # Unreachable backend is the normal offline case, not an outage
    overall = "operational" if store_status == "healthy" else "degraded"
    if store_status == "healthy" and remote_status != "healthy":
        overall = "offline"

    return HealthResponse(
        status=overall,
        local_store=store_status,
        remote_backend=remote_status,
        worker_broker=broker_status,
        timestamp=datetime.now(),
    )


# =============================================================================
# OFFLINE ORDERS & CUSTOMERS
# =============================================================================

@app.post("/offline/orders", status_code=201, tags=["Offline"], summary="Capture Order")
async def create_offline_order(
    order_data: OfflineOrderCreate,
    background_tasks: BackgroundTasks,
    runtime: SyncRuntime = Depends(get_runtime),
) -> dict[str, Any]:
    """
    Store an order locally and queue it for the backend.

    While online a drain is triggered right after the response.
    """
    try:
        order = await runtime.store.save_offline_order(order_data)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    if runtime.driver.online:
        background_tasks.add_task(runtime.driver.trigger)
    return order.to_dict()


@app.get("/offline/orders", tags=["Offline"], summary="List Offline Orders")
async def list_offline_orders(
    restaurant_id: Optional[str] = Query(None),
    include_synced: bool = Query(False),
    runtime: SyncRuntime = Depends(get_runtime),
) -> list[dict[str, Any]]:
    orders = await runtime.store.list_orders(
        restaurant_id or runtime.settings.restaurant_id,
        include_synced=include_synced,
    )
    return [order.to_dict() for order in orders]


@app.patch("/offline/orders/{order_id}", tags=["Offline"], summary="Update Order")
async def update_offline_order(
    order_id: str,
    update: OrderUpdate,
    background_tasks: BackgroundTasks,
    runtime: SyncRuntime = Depends(get_runtime),
) -> dict[str, Any]:
    """Apply changes locally; they reach the backend after the order itself."""
    changes = update.changes()
    if not changes:
        raise HTTPException(status_code=422, detail="No changes given")

    item = await runtime.store.queue_order_update(order_id, changes)
    if runtime.driver.online:
        background_tasks.add_task(runtime.driver.trigger)
    return item.to_dict()


@app.post("/offline/customers", tags=["Offline"], summary="Capture Customer")
async def create_offline_customer(
    customer_data: OfflineCustomerCreate,
    response: Response,
    runtime: SyncRuntime = Depends(get_runtime),
) -> dict[str, Any]:
    customer, created = await runtime.store.save_offline_customer(customer_data)
    response.status_code = 201 if created else 200
    return {"customer": customer.to_dict(), "created": created}


@app.get("/offline/customers/{phone}", tags=["Offline"], summary="Find Customer By Phone")
async def get_offline_customer(
    phone: str,
    restaurant_id: Optional[str] = Query(None),
    runtime: SyncRuntime = Depends(get_runtime),
) -> dict[str, Any]:
    customer = await runtime.store.find_customer_by_phone(
        restaurant_id or runtime.settings.restaurant_id, phone
    )
    if customer is None:
        raise HTTPException(status_code=404, detail=f"No customer with phone {phone}")
    return customer.to_dict()


# =============================================================================
# MENU
# =============================================================================

@app.get("/menu/{restaurant_id}", response_model=MenuSnapshot, tags=["Menu"], summary="Get Menu")
async def get_menu(
    restaurant_id: str,
    runtime: SyncRuntime = Depends(get_runtime),
) -> MenuSnapshot:
    """Fresh menu when the backend answers, otherwise the cached snapshot."""
    return await runtime.engine.load_menu(restaurant_id, refresh=runtime.driver.online)


# =============================================================================
# SYNC
# =============================================================================

@app.get("/sync/status", response_model=SyncStatusResponse, tags=["Sync"], summary="Sync Status")
async def sync_status(runtime: SyncRuntime = Depends(get_runtime)) -> SyncStatusResponse:
    return await _status(runtime, runtime.settings.restaurant_id)


@app.post("/sync/now", response_model=SyncReport, tags=["Sync"], summary="Drain Sync Queue Now")
async def sync_now(runtime: SyncRuntime = Depends(get_runtime)) -> SyncReport:
    report = await runtime.driver.trigger()
    if report is None:
        raise HTTPException(status_code=409, detail="Device is offline")
    return report


@app.post(
    "/sync/connectivity",
    response_model=SyncStatusResponse,
    tags=["Sync"],
    summary="Report Connectivity Change",
)
async def set_connectivity(
    update: ConnectivityUpdate,
    runtime: SyncRuntime = Depends(get_runtime),
) -> SyncStatusResponse:
    """Called by the UI on browser online/offline events."""
    await runtime.driver.set_online(update.online)
    return await _status(runtime, runtime.settings.restaurant_id)


@app.get("/sync/failed", tags=["Sync"], summary="Items Needing Attention")
async def list_failed_items(runtime: SyncRuntime = Depends(get_runtime)) -> list[dict[str, Any]]:
    items = await runtime.store.list_failed(runtime.settings.restaurant_id)
    return [item.to_dict() for item in items]


@app.post("/sync/failed/{item_id}/retry", tags=["Sync"], summary="Retry Failed Item")
async def retry_failed_item(
    item_id: str,
    runtime: SyncRuntime = Depends(get_runtime),
) -> dict[str, Any]:
    try:
        item = await runtime.store.retry_failed(item_id)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return item.to_dict()


# =============================================================================
# COLLABORATORS
# =============================================================================

@app.post("/orders/{order_id}/notify", tags=["Collaborators"], summary="Notify Customer")
async def notify_customer(
    order_id: str,
    request: NotifyOrderRequest,
    runtime: SyncRuntime = Depends(get_runtime),
    whatsapp: BaseWhatsAppService = Depends(get_whatsapp),
) -> dict[str, Any]:
    """Send an order status message through the WhatsApp bridge."""
    order = await runtime.store.get(RecordKind.ORDERS, order_id)
    if not order.customer_phone:
        raise HTTPException(status_code=422, detail="Order has no customer phone")

    result = await whatsapp.notify_order_status(
        order_id=order.server_id or order.id,
        status=request.status,
        phone=order.customer_phone,
        order_number=order.order_number,
        motoboy=request.motoboy,
    )
    if not result.success:
        raise HTTPException(status_code=502, detail=result.error_message or "Notification failed")
    return asdict(result)


@app.post("/orders/{order_id}/charge", tags=["Collaborators"], summary="Charge Order")
async def charge_order(
    order_id: str,
    request: ChargeRequest,
    background_tasks: BackgroundTasks,
    runtime: SyncRuntime = Depends(get_runtime),
    gateway: BasePaymentGateway = Depends(get_payment),
) -> dict[str, Any]:
    """
    Charge the order total. A successful charge records the payment
    method on the order and queues that change for the backend.
    """
    order = await runtime.store.get(RecordKind.ORDERS, order_id)

    result = await gateway.charge(order.total, order.id, request.method.value)
    if not result.success:
        raise HTTPException(status_code=402, detail=result.error_message or "Payment failed")

    await runtime.store.queue_order_update(order.id, {"payment_method": request.method.value})
    if runtime.driver.online:
        background_tasks.add_task(runtime.driver.trigger)
    return result.to_dict()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "gourmetflow.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
    )
