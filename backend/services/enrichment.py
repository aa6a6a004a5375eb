"""Source-priority enrichment for entry and transaction attributes.

Every enrichable attribute keeps a provenance record in the owning row's
``attribute_provenance`` JSON column::

    {"name": {"value": "Coffee Shop", "source": "plaid", "locked": false}}

A write is applied only when the attribute is unlocked and the incoming
source ranks at least as high as the source that last set it. User edits
rank highest and always lock, so a later provider sync can never silently
undo them.
"""

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any

logger = logging.getLogger(__name__)

USER_SOURCE = "user"
AUTO_SOURCE = "auto"

SOURCE_PRIORITY = {
    USER_SOURCE: 100,
    "rule": 50,
    "ai": 30,
    AUTO_SOURCE: 5,
}
# Any other source name is a provider ("plaid", "simplefin", "csv", ...)
PROVIDER_PRIORITY = 10


def source_priority(source: str | None) -> int:
    if source is None:
        return 0
    return SOURCE_PRIORITY.get(source, PROVIDER_PRIORITY)


def provenance_of(record, attr: str) -> dict | None:
    return (record.attribute_provenance or {}).get(attr)


def is_locked(record, attr: str) -> bool:
    info = provenance_of(record, attr)
    return bool(info and info.get("locked"))


def can_enrich(record, attr: str, source: str) -> bool:
    """Whether ``source`` may overwrite ``attr`` on ``record``."""
    info = provenance_of(record, attr)
    if info is None:
        return True
    if info.get("locked"):
        return False
    return source_priority(source) >= source_priority(info.get("source"))


def enrich_attribute(record, attr: str, value: Any, *, source: str) -> bool:
    """Set ``attr`` from ``source`` if its priority allows it.

    Returns:
        True if the stored value changed.
    """
    if not can_enrich(record, attr, source):
        logger.debug(
            "Enrichment of %s.%s from %s blocked by %s",
            type(record).__name__, attr, source, provenance_of(record, attr),
        )
        return False

    changed = getattr(record, attr) != value
    info = provenance_of(record, attr)
    if not changed and info is not None and info.get("source") == source:
        return False

    setattr(record, attr, value)
    _set_provenance(record, attr, value, source, locked=(source == USER_SOURCE))
    return changed


def apply_user_edit(record, attr: str, value: Any) -> None:
    """Record a hand edit: always applied, always locked."""
    setattr(record, attr, value)
    _set_provenance(record, attr, value, USER_SOURCE, locked=True)


def lock_attribute(record, attr: str) -> None:
    info = dict(provenance_of(record, attr) or {"value": to_jsonable(getattr(record, attr)), "source": None})
    info["locked"] = True
    _replace(record, attr, info)


def unlock_attribute(record, attr: str) -> None:
    info = provenance_of(record, attr)
    if info is None:
        return
    _replace(record, attr, {**info, "locked": False})


def deep_merge(base: dict | None, incoming: dict | None) -> dict:
    """Recursively merge ``incoming`` into a copy of ``base``.

    Keys absent from ``incoming`` are kept, so merging provider metadata is
    never destructive.
    """
    merged = dict(base or {})
    for key, value in (incoming or {}).items():
        key = str(key)
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        elif isinstance(value, dict):
            merged[key] = deep_merge({}, value)
        else:
            merged[key] = value
    return merged


def _set_provenance(record, attr: str, value: Any, source: str, locked: bool) -> None:
    _replace(record, attr, {"value": to_jsonable(value), "source": source, "locked": locked})


def _replace(record, attr: str, info: dict) -> None:
    # JSON columns only detect reassignment, not in-place mutation
    provenance = dict(record.attribute_provenance or {})
    provenance[attr] = info
    record.attribute_provenance = provenance


def to_jsonable(value: Any) -> Any:
    """Decimals and dates as strings, for JSON columns."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value
