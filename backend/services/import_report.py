"""Out-of-band outcome log for reconciliation calls.

Skips, claims and suggestions are expected, common outcomes of a sync and
are never raised. Each reconciler appends them here so the orchestrator can
report them (and store a summary on the SyncSession).
"""

from collections import Counter
from dataclasses import dataclass, field

SKIPPED = "skipped"
CLAIMED = "claimed"
PENDING_LINKED = "pending_linked"
SUGGESTED = "suggested"
AMBIGUOUS = "ambiguous"
COLLISION = "collision"
ADOPTED = "adopted"

MAX_SKIP_DETAILS = 20


@dataclass
class ImportEvent:
    """A single non-error outcome."""

    kind: str
    entry_id: str | None = None
    external_id: str | None = None
    source: str | None = None
    reason: str | None = None
    detail: dict = field(default_factory=dict)


@dataclass
class ImportReport:
    """Collects ImportEvents across one or more reconcile calls."""

    events: list[ImportEvent] = field(default_factory=list)

    def record(self, kind: str, **kwargs) -> ImportEvent:
        event = ImportEvent(kind=kind, **kwargs)
        self.events.append(event)
        return event

    def record_skip(self, entry, reason: str, source: str | None = None) -> ImportEvent:
        """Record that an entry was left untouched because it is protected."""
        return self.record(
            SKIPPED,
            entry_id=entry.id,
            external_id=entry.external_id,
            source=source or entry.source,
            reason=reason,
            detail={"name": entry.name},
        )

    def of_kind(self, kind: str) -> list[ImportEvent]:
        return [e for e in self.events if e.kind == kind]

    @property
    def skipped(self) -> list[ImportEvent]:
        return self.of_kind(SKIPPED)

    def extend(self, other: "ImportReport") -> None:
        self.events.extend(other.events)

    def summary(self) -> dict:
        """Counts by kind and skip reason, plus a bounded list of skip details."""
        skipped = self.skipped
        return {
            "counts": dict(Counter(e.kind for e in self.events)),
            "skipped_by_reason": dict(Counter(e.reason for e in skipped)),
            "skip_details": [
                {
                    "entry_id": e.entry_id,
                    "external_id": e.external_id,
                    "name": e.detail.get("name"),
                    "reason": e.reason,
                }
                for e in skipped[:MAX_SKIP_DETAILS]
            ],
        }
