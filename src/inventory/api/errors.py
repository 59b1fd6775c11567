"""Exception-to-HTTP mapping for the inventory API.

Protean's handlers cover validation (400), unknown objects (404), state
conflicts (409) and revision conflicts (409). On top of those, bad request
bodies are reported as 400 rather than FastAPI's default 422, and an
unreachable store becomes 503 with a retry hint.
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from protean.exceptions import ExpectedVersionError
from protean.integrations.fastapi import register_exception_handlers

from inventory.stock.errors import UpstreamUnavailable


def register_inventory_exception_handlers(app: FastAPI) -> None:
    register_exception_handlers(app)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        messages = {}
        for error in exc.errors():
            field = ".".join(str(part) for part in error["loc"] if part != "body") or "body"
            messages.setdefault(field, []).append(error["msg"])
        return JSONResponse(status_code=400, content={"error": messages})

    @app.exception_handler(ExpectedVersionError)
    async def revision_conflict_handler(request: Request, exc: ExpectedVersionError) -> JSONResponse:
        return JSONResponse(
            status_code=409,
            content={"error": "The product was updated concurrently, please retry"},
        )

    @app.exception_handler(UpstreamUnavailable)
    async def upstream_unavailable_handler(request: Request, exc: UpstreamUnavailable) -> JSONResponse:
        return JSONResponse(
            status_code=503,
            content={"error": exc.message},
            headers={"Retry-After": str(exc.retry_after)},
        )
