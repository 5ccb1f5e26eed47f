"""Per-record outcomes, phase counters and live run progress."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ledger_sync.constants.error_categories import ErrorCategory

MAX_ERROR_MESSAGES = 50


class RecordAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"
    CONFLICT = "conflict"
    ERROR = "error"


@dataclass
class RecordOutcome:
    action: RecordAction
    entity_type: str
    label: str = ""
    entity_id: Optional[str] = None
    remote_id: Optional[str] = None
    reason: Optional[str] = None
    category: Optional[ErrorCategory] = None


@dataclass
class PhaseCounts:
    created: int = 0
    updated: int = 0
    skipped: int = 0
    conflicts: int = 0
    errors: int = 0
    error_breakdown: Dict[str, int] = field(default_factory=dict)
    messages: List[str] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return self.created + self.updated + self.skipped + self.conflicts + self.errors

    def record(self, outcome: RecordOutcome):
        if outcome.action == RecordAction.CREATED:
            self.created += 1
        elif outcome.action == RecordAction.UPDATED:
            self.updated += 1
        elif outcome.action == RecordAction.SKIPPED:
            self.skipped += 1
        elif outcome.action == RecordAction.CONFLICT:
            self.conflicts += 1
        else:
            self.errors += 1
            category = (outcome.category or ErrorCategory.UNEXPECTED).value
            self.error_breakdown[category] = self.error_breakdown.get(category, 0) + 1
            if outcome.reason and len(self.messages) < MAX_ERROR_MESSAGES:
                self.messages.append(outcome.reason)

    def merge(self, other: "PhaseCounts"):
        self.created += other.created
        self.updated += other.updated
        self.skipped += other.skipped
        self.conflicts += other.conflicts
        self.errors += other.errors
        for category, count in other.error_breakdown.items():
            self.error_breakdown[category] = self.error_breakdown.get(category, 0) + count
        room = MAX_ERROR_MESSAGES - len(self.messages)
        self.messages.extend(other.messages[:max(room, 0)])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "conflicts": self.conflicts,
            "errors": self.errors,
            "error_breakdown": dict(self.error_breakdown),
            "messages": list(self.messages),
        }


@dataclass
class RunProgress:
    correlation_id: str
    status: str = "RUNNING"
    phase: Optional[str] = None
    entity_type: Optional[str] = None
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    conflicts: int = 0

    def record(self, outcome: RecordOutcome):
        self.processed += 1
        if outcome.action == RecordAction.ERROR:
            self.failed += 1
        elif outcome.action == RecordAction.CONFLICT:
            self.conflicts += 1
        else:
            self.succeeded += 1

    def snapshot(self) -> Dict[str, Any]:
        return {
            "correlation_id": self.correlation_id,
            "status": self.status,
            "phase": self.phase,
            "entity_type": self.entity_type,
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "conflicts": self.conflicts,
        }
