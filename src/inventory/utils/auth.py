"""Token check for privileged stock operations (cleanup, manual stock edits)."""

import hmac
import os

import structlog
from fastapi import Header, HTTPException

logger = structlog.get_logger(__name__)

TOKEN_VARIABLES = ("STOCK_MODIFICATION_TOKEN", "ADMIN_STOCK_TOKEN")


def configured_tokens() -> list[str]:
    return [token for token in (os.environ.get(name, "") for name in TOKEN_VARIABLES) if token]


def extract_token(authorization: str | None) -> str | None:
    """Accept either ``Bearer <token>`` or the bare token."""
    if not authorization:
        return None

    value = authorization.strip()
    if value.lower().startswith("bearer "):
        value = value[7:].strip()
    return value or None


def is_authorized(authorization: str | None) -> bool:
    token = extract_token(authorization)
    tokens = configured_tokens()
    if token is None or not tokens:
        return False

    # Compare against every token so timing does not reveal which one matched
    matched = False
    for expected in tokens:
        if hmac.compare_digest(token.encode(), expected.encode()):
            matched = True
    return matched


def require_stock_token(authorization: str = Header(default="")) -> None:
    """FastAPI dependency rejecting callers without a valid stock token."""
    if not configured_tokens():
        logger.error("No stock modification token configured")
        raise HTTPException(status_code=401, detail="Stock modification is not configured")

    if not is_authorized(authorization):
        logger.warning("Rejected stock modification request")
        raise HTTPException(status_code=401, detail="Valid token required to modify stock")
