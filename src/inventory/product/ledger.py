"""Reservation ledger helpers.

The ledger is the list of ``{holderId, quantity, expiresAt}`` entries stored
inline on a product. Entries past ``expiresAt`` are logically deleted: they
are filtered out on every read and only physically dropped when a write
touches the product.

Entries that cannot be interpreted (missing holder, bad quantity, unparseable
expiry) are never live, but every filter here retains them so that a write
never silently discards data it does not understand.
"""

from collections import defaultdict
from datetime import UTC, datetime


def parse_expiry(entry) -> datetime | None:
    """Return the entry's expiry as an aware UTC datetime, or None if unreadable."""
    if not isinstance(entry, dict):
        return None

    value = entry.get("expiresAt")
    if not isinstance(value, str):
        return None

    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def is_well_formed(entry) -> bool:
    if not isinstance(entry, dict):
        return False

    holder_id = entry.get("holderId")
    quantity = entry.get("quantity")
    if not isinstance(holder_id, str) or not holder_id:
        return False
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        return False
    return parse_expiry(entry) is not None


def is_live(entry, now: datetime) -> bool:
    return is_well_formed(entry) and parse_expiry(entry) > now


def is_expired(entry, now: datetime) -> bool:
    return is_well_formed(entry) and parse_expiry(entry) <= now


def live_entries(entries: list, now: datetime) -> list[dict]:
    return [entry for entry in entries if is_live(entry, now)]


def prune_expired(entries: list, now: datetime) -> list:
    """Drop expired entries, keeping live and malformed ones in their original order."""
    return [entry for entry in entries if not is_expired(entry, now)]


def holder_entry(entries: list, holder_id: str, now: datetime) -> dict | None:
    """Return the holder's live entry, if any."""
    return next(
        (entry for entry in entries if is_live(entry, now) and entry["holderId"] == holder_id),
        None,
    )


def totals_by_holder(entries: list, now: datetime) -> dict[str, int]:
    totals = defaultdict(int)
    for entry in live_entries(entries, now):
        totals[entry["holderId"]] += entry["quantity"]
    return dict(totals)


def total_live_quantity(entries: list, now: datetime) -> int:
    return sum(entry["quantity"] for entry in live_entries(entries, now))


def upsert_entry(entries: list, holder_id: str, quantity: int, expires_at: datetime, now: datetime) -> list:
    """Write the holder's entry, replacing any previous one in place.

    Expired entries are pruned while the list is being rewritten. Any further
    entries for the same holder are folded into the replaced one so the
    ledger keeps at most one entry per holder.
    """
    new_entry = {
        "holderId": holder_id,
        "quantity": quantity,
        "expiresAt": expires_at.astimezone(UTC).isoformat(),
    }

    result = []
    placed = False
    for entry in prune_expired(entries, now):
        if is_well_formed(entry) and entry["holderId"] == holder_id:
            if not placed:
                result.append(new_entry)
                placed = True
            continue
        result.append(entry)

    if not placed:
        result.append(new_entry)
    return result


def drop_entries(entries: list, predicate) -> tuple[list, list]:
    """Split the ledger into ``(kept, dropped)``.

    ``predicate`` is only consulted for well-formed entries; malformed ones
    always land in ``kept``.
    """
    kept, dropped = [], []
    for entry in entries:
        if is_well_formed(entry) and predicate(entry):
            dropped.append(entry)
        else:
            kept.append(entry)
    return kept, dropped
