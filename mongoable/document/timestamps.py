"""
Timestamp bookkeeping for Documents that opt in via TimestampedDocument.

created_at is written once, when the document is first inserted.
updated_at is written on every insert, replace and update.
Both are timezone-aware UTC datetimes truncated to milliseconds, which is the precision BSON dates store.
"""
from datetime import datetime, timezone
from typing import Any, Mapping


CREATED_AT = "created_at"
UPDATED_AT = "updated_at"


def utc_now() -> datetime:
    """ Current UTC time at millisecond precision. """
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond - now.microsecond % 1000)


def as_utc(value: datetime) -> datetime:
    """ Stored dates come back naive from a client built without tz_aware=True. BSON dates are always UTC. """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def normalize_update(update: Mapping[str, Any], *, touch: bool) -> dict[str, Any]:
    """ Splits an update into operator and plain field parts. Plain fields are merged into $set.
    When touch is True, updated_at is set in the same $set so the refresh is part of the same write.

    { "name": "x", "$inc": { "n": 1 } } -> { "$set": { "name": "x", "updated_at": now }, "$inc": { "n": 1 } }
    """
    set_updates: dict[str, Any] = dict(update.get("$set") or {})
    document_updates: dict[str, Any] = {}
    for key, value in update.items():
        if key == "$set":
            continue
        if key.startswith("$"):
            document_updates[key] = value
        else:
            set_updates[key] = value

    if touch:
        set_updates[UPDATED_AT] = utc_now()
    if set_updates:
        document_updates["$set"] = set_updates
    return document_updates


def apply_insert_timestamps(document: Any, now: datetime | None = None) -> None:
    now = now or utc_now()
    setattr(document, CREATED_AT, now)
    setattr(document, UPDATED_AT, now)


def apply_replace_timestamps(document: Any, stored_created_at: datetime | None, now: datetime | None = None) -> None:
    """ A full replace keeps the stored created_at. A stored document without one gets it now. """
    now = now or utc_now()
    created_at = as_utc(stored_created_at) if stored_created_at else now
    setattr(document, CREATED_AT, created_at)
    setattr(document, UPDATED_AT, max(now, created_at))
