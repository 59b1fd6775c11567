"""Pydantic request/response schemas for the Inventory API.

These are external contracts (anti-corruption layer) — separate from
internal Protean commands. Storefront clients speak camelCase JSON; fields
are declared in snake_case and exposed through camelCase aliases.
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------
class RegisterProductRequest(CamelModel):
    product_id: str | None = None
    title: str = ""
    stock: int = Field(ge=0, default=0)


class ProductIdResponse(CamelModel):
    product_id: str


class AvailabilityResponse(CamelModel):
    available: bool
    message: str
    stock: int
    available_stock: int
    reserved_by_current_user: int
    reserved_by_others: int


class StockResponse(CamelModel):
    stock: int
    available_stock: int
    reserved_quantity: int
    reserved_by_current_user: int
    reserved_by_others: int
    stock_message: str
    is_out_of_stock: bool


# ---------------------------------------------------------------------------
# Reservations
# ---------------------------------------------------------------------------
class ReserveRequest(CamelModel):
    session_id: str = Field(min_length=1, max_length=255)
    quantity: int = Field(ge=1, default=1)
    size: str | None = None
    is_update: bool = False


class ReserveResponse(CamelModel):
    success: bool
    reservation_id: str | None = None
    reserved_until: str | None = None
    available_stock: int | None = None
    error: str | None = None


class ReleaseRequest(CamelModel):
    session_id: str = Field(min_length=1, max_length=255)
    quantity: int | None = Field(default=None, ge=1)


class ReleaseResponse(CamelModel):
    success: bool
    product_id: str
    released_quantity: int
    remaining_quantity: int
    message: str


class BatchReleaseItem(CamelModel):
    product_id: str
    quantity: int = Field(ge=1)


class BatchReleaseRequest(CamelModel):
    session_id: str = Field(min_length=1, max_length=255)
    items: list[BatchReleaseItem] = Field(min_length=1)


class BatchReleaseResponse(CamelModel):
    success: bool
    released: list[ReleaseResponse]


class RollbackReleaseRequest(CamelModel):
    session_id: str = Field(min_length=1, max_length=255)
    quantity: int = Field(ge=1, default=1)


# ---------------------------------------------------------------------------
# Cleanup and stock administration
# ---------------------------------------------------------------------------
class ForceCleanupRequest(CamelModel):
    session_id: str | None = None
    clear_all: bool = False


class CleanupResponse(CamelModel):
    success: bool
    product_id: str
    product_title: str
    original_count: int
    cleared_count: int
    remaining_count: int
    error: str | None = None


class BatchCleanupRequest(CamelModel):
    product_ids: list[str] = Field(min_length=1)
    session_id: str | None = None
    clear_all: bool = False


class BatchCleanupResponse(CamelModel):
    results: list[CleanupResponse]


class UpdateStockRequest(CamelModel):
    new_stock: int = Field(ge=0)


class StockChangeResponse(CamelModel):
    success: bool
    previous_stock: int
    new_stock: int


class StockUpdateTriggeredResponse(CamelModel):
    success: bool
    timestamp: str


class ReconcileRequest(CamelModel):
    product_ids: list[str] = Field(default_factory=list)


class ReconcileResponse(CamelModel):
    products_scanned: int
    products_changed: int
    entries_cleared: int
    errors: list[dict]


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------
class OrderItemSchema(CamelModel):
    product_id: str
    quantity: int = Field(ge=1)
    price: float = 0.0
    size: str | None = None


class PlaceOrderRequest(CamelModel):
    order_id: str | None = None
    session_id: str | None = None
    items: list[OrderItemSchema] = Field(min_length=1)


class OrderIdResponse(CamelModel):
    order_id: str


class ChangeOrderStatusRequest(CamelModel):
    status: str


class StatusResponse(CamelModel):
    status: str = "ok"
