"""Typed exception hierarchy for the reconciliation engine.

Only genuine caller or provider bugs are raised. Expected outcomes such as
protection skips, ambiguous matches and cross-provider collisions are
reported through ``ImportReport`` instead.
"""


class ReconciliationError(Exception):
    """Base exception for all reconciliation errors."""

    pass


class MissingCorrelationKeyError(ReconciliationError, ValueError):
    """A required correlation field (external_id, source, security) is missing."""

    def __init__(self, field: str):
        self.field = field
        super().__init__(f"{field} is required")


class EntryTypeCollisionError(ReconciliationError):
    """An external_id is already used by an entry of a different payload type."""

    def __init__(
        self,
        external_id: str | None,
        existing_type: str | None,
        expected_type: str,
    ):
        self.external_id = external_id
        self.existing_type = existing_type
        self.expected_type = expected_type
        super().__init__(
            f"Entry with external_id {external_id!r} already exists with "
            f"different entryable type: {existing_type} (expected {expected_type})"
        )


class TransferMatchInProgressError(ReconciliationError):
    """Transfer auto-matching is already running for this family."""

    def __init__(self, family_id: str):
        self.family_id = family_id
        super().__init__(f"Transfer matching already in progress for family {family_id}")


class InvalidTransferError(ReconciliationError, ValueError):
    """A manual transfer was requested for a pair that cannot form a transfer."""

    pass
