import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Hashable, List, Optional, Sequence, Set

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ledger_sync.connectors.base import BaseLedgerConnector
from ledger_sync.connectors.result import RetryableError, TerminalError, TerminalKind
from ledger_sync.constants.error_categories import ErrorCategory, explain_error
from ledger_sync.exceptions import DependencyMissingError, FatalSyncError, FingerprintError, MalformedPayloadError
from ledger_sync.services.entity_adapters import EntityAdapter
from ledger_sync.services.local_store import LocalStore
from ledger_sync.services.locks import EntityLockRegistry
from ledger_sync.services.outcomes import PhaseCounts, RecordAction, RecordOutcome, RunProgress
from ledger_sync.services.retry import RetryPolicy
from ledger_sync.services.state_store import SyncStateStore
from ledger_sync.utils.audit_logger import create_audit_entry

log = logging.getLogger(__name__)


@dataclass
class SyncContext:
    """Everything one run shares between its pipelines."""
    db: Session
    connector: BaseLedgerConnector
    correlation_id: str
    retry_policy: RetryPolicy
    dry_run: bool = False
    force_refresh: bool = False
    page_size: int = 100
    batch_size: int = 50
    max_workers: int = 4
    page_delay: float = 0.0
    sleep: Callable = asyncio.sleep
    locks: EntityLockRegistry = field(default_factory=EntityLockRegistry)
    progress: Optional[RunProgress] = None
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    # Creates a dry run stopped short of, per entity type, so dependent types resolve against them
    planned_remote_ids: Dict[str, Set[str]] = field(default_factory=dict)
    planned_local_ids: Dict[str, Set[str]] = field(default_factory=dict)


def chunked(items: Sequence, size: int) -> List[Sequence]:
    return [items[i:i + size] for i in range(0, len(items), max(size, 1))]


class BasePipeline:
    """
    Shared machinery for pull and push: bounded concurrent batches, per-record
    error isolation, conflict recording and error auditing.

    Store writes for one record always happen in a single synchronous block
    ending in a commit, so concurrent records never share a transaction.
    """

    phase: str = ""

    def __init__(self, context: SyncContext, adapter: EntityAdapter):
        self.ctx = context
        self.adapter = adapter
        self.db = context.db
        self.states = SyncStateStore(self.db)
        self.local = LocalStore(self.db)
        self.counts = PhaseCounts()
        self.cancelled = False

    @property
    def entity_type(self) -> str:
        return self.adapter.entity_type.value

    @property
    def cid(self) -> str:
        return self.ctx.correlation_id

    def _outcome(self, action: RecordAction, label: str, entity_id=None, remote_id=None, reason=None, category=None):
        return RecordOutcome(
            action=action,
            entity_type=self.entity_type,
            label=str(label),
            entity_id=entity_id,
            remote_id=remote_id,
            reason=reason,
            category=category,
        )

    def _tally(self, outcome: RecordOutcome):
        self.counts.record(outcome)
        if self.ctx.progress is not None:
            self.ctx.progress.record(outcome)

    def _cancel_requested(self) -> bool:
        if self.ctx.cancel_event.is_set():
            if not self.cancelled:
                log.warning(f"[{self.cid}] {self.phase} {self.entity_type} cancelled at batch boundary")
            self.cancelled = True
        return self.cancelled

    async def _process_batch(self, items: Sequence[Any], key_fn: Callable[[Any], Hashable]) -> List[RecordOutcome]:
        semaphore = asyncio.Semaphore(self.ctx.max_workers)

        async def guarded(item):
            async with semaphore:
                async with self.ctx.locks.lock_for((self.entity_type, key_fn(item))):
                    return await self._safe_process(item)

        results = await asyncio.gather(*(guarded(item) for item in items), return_exceptions=True)
        outcomes = []
        fatal = None
        for result in results:
            if isinstance(result, BaseException):
                fatal = fatal or result
                continue
            self._tally(result)
            outcomes.append(result)
        if fatal is not None:
            raise fatal
        return outcomes

    async def _safe_process(self, item) -> RecordOutcome:
        try:
            return await self._process(item)
        except FatalSyncError:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            raise FatalSyncError(f"Local store failure while syncing {self.entity_type}: {e}") from e
        except DependencyMissingError as e:
            self.db.rollback()
            message = explain_error(ErrorCategory.DEPENDENCY_MISSING, {
                "entity_type": self.entity_type, "label": self._item_label(item), "detail": str(e), "hint": e.hint,
            })
            return self._error(item, ErrorCategory.DEPENDENCY_MISSING, message)
        except (FingerprintError, MalformedPayloadError) as e:
            self.db.rollback()
            message = explain_error(ErrorCategory.MALFORMED, {
                "entity_type": self.entity_type, "label": self._item_label(item), "detail": str(e),
            })
            return self._error(item, ErrorCategory.MALFORMED, message)
        except Exception as e:
            self.db.rollback()
            log.exception(f"[{self.cid}] Unexpected error syncing {self.entity_type} {self._item_label(item)}")
            message = explain_error(ErrorCategory.UNEXPECTED, {
                "entity_type": self.entity_type, "label": self._item_label(item), "detail": str(e),
            })
            return self._error(item, ErrorCategory.UNEXPECTED, message)

    async def _process(self, item) -> RecordOutcome:
        raise NotImplementedError

    def _item_label(self, item) -> str:
        raise NotImplementedError

    def _item_ids(self, item):
        """(local id, remote id) for audit entries about ``item``."""
        raise NotImplementedError

    def _error(self, item, category: ErrorCategory, message: str, operation: str = "SYNC",
               before=None) -> RecordOutcome:
        """Log, audit and count a failed record. The batch carries on."""
        entity_id, remote_id = self._item_ids(item)
        log.warning(f"[{self.cid}] {message}")
        if not self.ctx.dry_run:
            create_audit_entry(
                self.db,
                operation=operation,
                origin="remote" if self.phase == "pull" else "local",
                entity_type=self.entity_type,
                status="VALIDATION_ERROR" if category == ErrorCategory.VALIDATION else "ERROR",
                entity_id=entity_id,
                remote_id=remote_id,
                correlation_id=self.cid,
                before=before,
                error_message=message,
            )
            self.db.commit()
        return self._outcome(
            RecordAction.ERROR, self._item_label(item), entity_id, remote_id, reason=message, category=category
        )

    def _remote_failure(self, item, result, operation: str, before=None) -> RecordOutcome:
        """Turn a failed remote call into a per-record error, or abort on bad credentials."""
        if isinstance(result, TerminalError) and result.kind in (TerminalKind.UNAUTHENTICATED, TerminalKind.FORBIDDEN):
            raise FatalSyncError(f"Ledger refused access: {result.message}")

        context = {"entity_type": self.entity_type, "label": self._item_label(item)}
        if isinstance(result, RetryableError):
            category = ErrorCategory.TRANSIENT
            context.update(detail=result.message, attempts=result.attempts)
        elif result.kind == TerminalKind.VALIDATION:
            category = ErrorCategory.VALIDATION
            context.update(detail="; ".join(result.details) or result.message)
        elif result.kind == TerminalKind.MALFORMED:
            category = ErrorCategory.MALFORMED
            context.update(detail=result.message)
        else:
            category = ErrorCategory.UNEXPECTED
            context.update(detail=result.message)
        return self._error(item, category, explain_error(category, context), operation=operation, before=before)

    def _conflict(self, item, state, local_entity, remote, local_fp, remote_fp) -> RecordOutcome:
        """Record a both-sides-changed detection without touching either side's data."""
        entity_id, remote_id = self._item_ids(item)
        label = self._item_label(item)
        if self.ctx.dry_run:
            log.info(f"[{self.cid}] [DRY RUN] would record conflict for {self.entity_type} {label}")
        else:
            local_snapshot = self.adapter.snapshot(local_entity)
            remote_snapshot = remote.snapshot()
            self.states.mark_conflict(
                state, local_snapshot, remote_snapshot, local_fp, remote_fp, self.cid, self.phase
            )
            create_audit_entry(
                self.db,
                operation="CONFLICT",
                origin="both",
                entity_type=self.entity_type,
                status="PENDING_RESOLUTION",
                entity_id=state.entity_id,
                remote_id=state.remote_id,
                correlation_id=self.cid,
                before=local_snapshot,
                after=remote_snapshot,
            )
            self.db.commit()
        return self._outcome(
            RecordAction.CONFLICT, label, entity_id, remote_id, reason="changed on both sides since last sync"
        )

    def _pending_conflict(self, item) -> RecordOutcome:
        entity_id, remote_id = self._item_ids(item)
        log.info(f"[{self.cid}] {self.entity_type} {self._item_label(item)} awaits conflict resolution, not touched")
        return self._outcome(
            RecordAction.CONFLICT, self._item_label(item), entity_id, remote_id, reason="awaiting conflict resolution"
        )
