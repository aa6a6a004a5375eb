"""Protection policy - whether automated sync may mutate an entry.

Protection never stops the user from editing; it only stops providers
from overwriting what the user (or an import) decided.
"""

import logging

from sqlalchemy.orm import Session

from models import Entry

logger = logging.getLogger(__name__)

EXCLUDED = "excluded"
USER_MODIFIED = "user_modified"
IMPORT_LOCKED = "import_locked"


def protection_reason(entry) -> str | None:
    """Return why ``entry`` is protected, or None.

    Priority when several flags are set: excluded > user_modified > import_locked.
    """
    if entry.excluded:
        return EXCLUDED
    if entry.user_modified:
        return USER_MODIFIED
    if entry.import_locked:
        return IMPORT_LOCKED
    return None


def is_protected_from_sync(entry) -> bool:
    return protection_reason(entry) is not None


def mark_user_modified(db: Session, entry: Entry) -> Entry:
    """Flag an entry as hand-edited so provider syncs leave it alone."""
    if not entry.user_modified:
        entry.user_modified = True
        db.flush()
    return entry


def unlock_for_sync(db: Session, entry: Entry) -> Entry:
    """Clear protection so the owning provider may update the entry again.

    Clears ``user_modified`` and ``import_locked`` and forgets the
    attribute provenance on the entry and its payload. ``excluded`` is left
    alone: un-excluding is a separate, explicit user action.
    """
    entry.user_modified = False
    entry.import_locked = False
    entry.attribute_provenance = {}
    payload = entry.entryable
    if payload is not None and hasattr(payload, "attribute_provenance"):
        payload.attribute_provenance = {}
    db.flush()
    logger.info("Unlocked entry %s for sync", entry.id)
    return entry
