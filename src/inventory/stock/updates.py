"""Stock update stream — server-sent events for product pages.

Storefront pages used to poll the stock endpoint and the stock-update
notification key on a timer. The stream does the polling server side: it
watches the notification a decrement or manual stock change leaves in the
cache and pushes a fresh stock view whenever its timestamp moves. Polling the
stock endpoint keeps working for clients that cannot hold a stream open.

The response body is produced after the request's domain context has been
popped, so each poll pushes its own context.
"""

import asyncio
import json

import structlog

from inventory.domain import inventory
from inventory.stock.availability import AvailabilityService
from inventory.utils.cache import get_cache, notification_key

logger = structlog.get_logger(__name__)

POLL_INTERVAL_SECONDS = 5.0


def format_event(event: str, data: dict) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


def _poll(product_id, holder_id, last_seen):
    """Return ``(timestamp, view)``; ``view`` is None when nothing changed since ``last_seen``."""
    with inventory.domain_context():
        notification = get_cache().get(notification_key(product_id)) or {}
        timestamp = notification.get("timestamp")
        if last_seen is not None and timestamp == last_seen[0]:
            return last_seen, None

        view = AvailabilityService().stock_view(product_id, holder_id)
        return (timestamp,), dict(view, updatedAt=timestamp)


async def stock_event_stream(
    product_id,
    holder_id=None,
    interval=POLL_INTERVAL_SECONDS,
    max_events=None,
    is_disconnected=None,
):
    """Yield SSE frames for ``product_id``. The first frame is always the current view."""
    sent = 0
    last_seen = None
    logger.info("Stock stream opened", product_id=str(product_id), holder_id=holder_id)

    while True:
        if is_disconnected is not None and await is_disconnected():
            break

        last_seen, view = _poll(product_id, holder_id, last_seen)
        if view is not None:
            yield format_event("stock", view)
            sent += 1
            if max_events is not None and sent >= max_events:
                break
        else:
            yield ": keep-alive\n\n"

        await asyncio.sleep(interval)

    logger.info("Stock stream closed", product_id=str(product_id), events=sent)
