"""Storefront inventory FastAPI application.

Serves availability, reservations, stock administration and order status
changes. Commands are processed synchronously within the request.

Usage:
    uvicorn src.app:app --host 0.0.0.0 --port 8000 --reload
"""

# ---------------------------------------------------------------------------
# Domain initialization
# ---------------------------------------------------------------------------
# The domain is initialized at module level so uvicorn workers share it.
# PROTEAN_ENV controls which config overlay is applied (see pyproject.toml).
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from inventory.domain import inventory  # noqa: E402
from inventory.utils.cache import get_cache
from inventory.utils.logging import add_context, clear_context, configure_logging

configure_logging()
inventory.init()

_DOMAIN_PREFIXES = ("/products", "/orders", "/maintenance")


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Storefront Inventory API",
    description="Stock availability, soft reservations and order stock commitments",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def domain_context_middleware(request: Request, call_next):
    """Push the inventory domain context for every domain route."""
    if request.url.path.startswith(_DOMAIN_PREFIXES):
        clear_context()
        add_context(method=request.method, path=request.url.path)
        with inventory.domain_context():
            response = await call_next(request)
        return response
    # Health check, docs, etc.
    return await call_next(request)


# ---------------------------------------------------------------------------
# Routers and error mapping
# ---------------------------------------------------------------------------
from inventory.api import (  # noqa: E402
    maintenance_router,
    order_router,
    product_router,
    register_inventory_exception_handlers,
)

app.include_router(product_router)
app.include_router(order_router)
app.include_router(maintenance_router)
register_inventory_exception_handlers(app)


# ---------------------------------------------------------------------------
# Health / root
# ---------------------------------------------------------------------------
@app.get("/health")
async def health():
    cache = get_cache()
    return JSONResponse(
        content={
            "status": "ok",
            "domain": {"name": inventory.name},
            "cache": {
                "backend": getattr(cache, "backend_name", type(cache).__name__),
                "available": cache.is_available(),
            },
        }
    )
