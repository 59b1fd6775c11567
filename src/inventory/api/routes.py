"""FastAPI routes for the Inventory domain — availability, reservations and orders."""

import json
import re

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from protean.exceptions import ValidationError
from protean.utils.globals import current_domain

from inventory.api.schemas import (
    AvailabilityResponse,
    BatchCleanupRequest,
    BatchCleanupResponse,
    BatchReleaseRequest,
    BatchReleaseResponse,
    ChangeOrderStatusRequest,
    CleanupResponse,
    ForceCleanupRequest,
    OrderIdResponse,
    PlaceOrderRequest,
    ProductIdResponse,
    ReconcileRequest,
    ReconcileResponse,
    RegisterProductRequest,
    ReleaseRequest,
    ReleaseResponse,
    ReserveRequest,
    ReserveResponse,
    RollbackReleaseRequest,
    StatusResponse,
    StockChangeResponse,
    StockResponse,
    StockUpdateTriggeredResponse,
    UpdateStockRequest,
)
from inventory.order.placement import PlaceOrder
from inventory.order.status import ChangeOrderStatus
from inventory.product.catalog import CatalogStore
from inventory.product.registration import RegisterProduct, SetStock
from inventory.stock.availability import AvailabilityService
from inventory.stock.cleanup import CleanupPolicy, ReservationCleaner
from inventory.stock.decrement import StockDecrementService
from inventory.stock.errors import InsufficientStock
from inventory.stock.reconciliation import ReconcileReservations
from inventory.stock.reservation import CART_HOLD, CHECKOUT_HOLD, ReservationService
from inventory.stock.updates import POLL_INTERVAL_SECONDS, stock_event_stream
from inventory.utils.auth import require_stock_token
from inventory.utils.rate_limit import caller_key, get_rate_limiter

logger = structlog.get_logger(__name__)

_CHECKOUT_SESSION_PATTERN = re.compile(r"^[a-z0-9_-]+$")


def _enforce_rate_limit(scope: str, request: Request, session_id: str | None = None) -> None:
    client_host = request.client.host if request.client else None
    decision = get_rate_limiter(scope).check(caller_key(client_host, session_id))
    if not decision.allowed:
        raise HTTPException(
            status_code=429,
            detail="Too many requests, please try again later",
            headers={"Retry-After": str(decision.retry_after)},
        )


def _cleanup_policy(session_id: str | None, clear_all: bool) -> CleanupPolicy:
    if clear_all:
        return CleanupPolicy.ALL
    if session_id:
        return CleanupPolicy.HOLDER
    return CleanupPolicy.EXPIRED


def _reserve(product_id, session_id, quantity, is_update=False, horizon=CART_HOLD) -> ReserveResponse:
    try:
        result = ReservationService().reserve(product_id, session_id, quantity, is_update=is_update, horizon=horizon)
    except InsufficientStock as exc:
        return ReserveResponse(success=False, error=exc.message)

    return ReserveResponse(
        success=True,
        reservation_id=result.reservation_id,
        reserved_until=result.reserved_until,
        available_stock=result.available_stock,
    )


def _release_response(result) -> ReleaseResponse:
    return ReleaseResponse(
        success=True,
        product_id=result.product_id,
        released_quantity=result.released,
        remaining_quantity=result.remaining,
        message=result.message,
    )


# ---------------------------------------------------------------------------
# Product Router
# ---------------------------------------------------------------------------
product_router = APIRouter(prefix="/products", tags=["products"])


@product_router.post("", status_code=201, response_model=ProductIdResponse)
async def register_product(body: RegisterProductRequest) -> ProductIdResponse:
    command = RegisterProduct(
        product_id=body.product_id,
        title=body.title,
        stock=body.stock,
    )
    result = current_domain.process(command, asynchronous=False)
    return ProductIdResponse(product_id=result)


@product_router.get("/availability/{product_id}", response_model=AvailabilityResponse)
async def check_availability(
    product_id: str,
    request: Request,
    session_id: str | None = Query(default=None, alias="sessionId"),
) -> AvailabilityResponse:
    _enforce_rate_limit("availability", request, session_id)

    snapshot = AvailabilityService().check(product_id, session_id)
    return AvailabilityResponse(
        available=snapshot.available,
        message=snapshot.message,
        stock=snapshot.stock,
        available_stock=snapshot.available_stock,
        reserved_by_current_user=snapshot.reserved_by_caller,
        reserved_by_others=snapshot.reserved_by_others,
    )


@product_router.get("/stock/{product_id}", response_model=StockResponse)
async def get_stock(
    product_id: str,
    session_id: str | None = Query(default=None, alias="sessionId"),
) -> StockResponse:
    return StockResponse.model_validate(AvailabilityService().stock_view(product_id, session_id))


@product_router.get("/stock/{product_id}/events")
async def stream_stock(
    product_id: str,
    request: Request,
    session_id: str | None = Query(default=None, alias="sessionId"),
    interval: float = Query(default=POLL_INTERVAL_SECONDS, ge=0.5, le=60),
    max_events: int | None = Query(default=None, alias="maxEvents", ge=1),
) -> StreamingResponse:
    # Unknown products fail here with a 404 rather than inside the stream
    CatalogStore().fetch(product_id)

    stream = stock_event_stream(
        product_id,
        holder_id=session_id,
        interval=interval,
        max_events=max_events,
        is_disconnected=request.is_disconnected,
    )
    return StreamingResponse(
        stream,
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@product_router.post("/reserve/{product_id}", response_model=ReserveResponse, response_model_exclude_none=True)
async def reserve(product_id: str, body: ReserveRequest, request: Request) -> ReserveResponse:
    _enforce_rate_limit("reserve", request, body.session_id)

    logger.info(
        "Reservation requested",
        product_id=product_id,
        session_id=body.session_id,
        quantity=body.quantity,
        size=body.size,
        is_update=body.is_update,
    )
    return _reserve(product_id, body.session_id, body.quantity, is_update=body.is_update)


@product_router.post(
    "/checkout-reserve/{product_id}",
    response_model=ReserveResponse,
    response_model_exclude_none=True,
)
async def checkout_reserve(product_id: str, body: ReserveRequest, request: Request) -> ReserveResponse:
    if not _CHECKOUT_SESSION_PATTERN.match(body.session_id):
        raise ValidationError({"sessionId": ["Session ID may only contain a-z, 0-9, '_' and '-'"]})

    _enforce_rate_limit("reserve", request, body.session_id)
    return _reserve(product_id, body.session_id, body.quantity, is_update=body.is_update, horizon=CHECKOUT_HOLD)


@product_router.post("/release/{product_id}", response_model=ReleaseResponse)
async def release(product_id: str, body: ReleaseRequest) -> ReleaseResponse:
    result = ReservationService().release(product_id, body.session_id, body.quantity)
    return _release_response(result)


@product_router.post("/batch-release", response_model=BatchReleaseResponse)
async def batch_release(body: BatchReleaseRequest) -> BatchReleaseResponse:
    items = [item.model_dump(by_alias=True) for item in body.items]
    results = ReservationService().release_many(body.session_id, items)
    return BatchReleaseResponse(success=True, released=[_release_response(result) for result in results])


@product_router.post(
    "/rollback-release/{product_id}",
    response_model=ReserveResponse,
    response_model_exclude_none=True,
)
async def rollback_release(product_id: str, body: RollbackReleaseRequest) -> ReserveResponse:
    try:
        result = ReservationService().rollback_release(product_id, body.session_id, body.quantity)
    except InsufficientStock as exc:
        return ReserveResponse(success=False, error=exc.message)

    return ReserveResponse(
        success=True,
        reservation_id=result.reservation_id,
        reserved_until=result.reserved_until,
        available_stock=result.available_stock,
    )


@product_router.post(
    "/force-cleanup/{product_id}",
    response_model=CleanupResponse,
    response_model_exclude_none=True,
    dependencies=[Depends(require_stock_token)],
)
async def force_cleanup(product_id: str, body: ForceCleanupRequest, request: Request) -> CleanupResponse:
    _enforce_rate_limit("cleanup", request)

    result = ReservationCleaner().cleanup(
        product_id,
        policy=_cleanup_policy(body.session_id, body.clear_all),
        holder_id=body.session_id,
    )
    return CleanupResponse(success=True, **result.to_dict())


@product_router.post(
    "/update-stock/{product_id}",
    response_model=StockChangeResponse,
    dependencies=[Depends(require_stock_token)],
)
async def update_stock(product_id: str, body: UpdateStockRequest, request: Request) -> StockChangeResponse:
    _enforce_rate_limit("stock-update", request)

    result = current_domain.process(SetStock(product_id=product_id, stock=body.new_stock), asynchronous=False)
    return StockChangeResponse(success=True, **result)


@product_router.post("/trigger-stock-update/{product_id}", response_model=StockUpdateTriggeredResponse)
async def trigger_stock_update(product_id: str) -> StockUpdateTriggeredResponse:
    timestamp = StockDecrementService().trigger_stock_update(product_id)
    return StockUpdateTriggeredResponse(success=True, timestamp=timestamp)


# ---------------------------------------------------------------------------
# Order Router
# ---------------------------------------------------------------------------
order_router = APIRouter(prefix="/orders", tags=["orders"])


@order_router.post("", status_code=201, response_model=OrderIdResponse)
async def place_order(body: PlaceOrderRequest) -> OrderIdResponse:
    command = PlaceOrder(
        order_id=body.order_id,
        session_id=body.session_id,
        items=json.dumps([item.model_dump(by_alias=True, exclude_none=True) for item in body.items]),
    )
    result = current_domain.process(command, asynchronous=False)
    return OrderIdResponse(order_id=result)


@order_router.put("/{order_id}/status", response_model=StatusResponse)
async def change_order_status(order_id: str, body: ChangeOrderStatusRequest) -> StatusResponse:
    command = ChangeOrderStatus(order_id=order_id, status=body.status)
    current_domain.process(command, asynchronous=False)
    return StatusResponse()


# ---------------------------------------------------------------------------
# Maintenance Router
# ---------------------------------------------------------------------------
maintenance_router = APIRouter(
    prefix="/maintenance",
    tags=["maintenance"],
    dependencies=[Depends(require_stock_token)],
)


@maintenance_router.post("/reconcile-reservations", response_model=ReconcileResponse)
async def reconcile_reservations(body: ReconcileRequest | None = None) -> ReconcileResponse:
    """Sweep expired and settled reservations.

    Designed to be called by an external scheduler (cron, K8s CronJob).
    """
    product_ids = body.product_ids if body else []
    command = ReconcileReservations(product_ids=product_ids)
    summary = current_domain.process(command, asynchronous=False)
    return ReconcileResponse(**summary)


@maintenance_router.post("/force-cleanup", response_model=BatchCleanupResponse, response_model_exclude_none=True)
async def force_cleanup_many(body: BatchCleanupRequest, request: Request) -> BatchCleanupResponse:
    _enforce_rate_limit("cleanup", request)

    results = ReservationCleaner().cleanup_many(
        body.product_ids,
        policy=_cleanup_policy(body.session_id, body.clear_all),
        holder_id=body.session_id,
    )
    return BatchCleanupResponse(
        results=[CleanupResponse(success=result.error is None, **result.to_dict()) for result in results]
    )
