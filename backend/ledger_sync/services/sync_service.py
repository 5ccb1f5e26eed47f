import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ledger_sync.connectors.base import BaseLedgerConnector
from ledger_sync.connectors.token_provider import TokenProvider
from ledger_sync.constants.entity_types import EntityType, ordered_entity_types
from ledger_sync.exceptions import ConflictNotFoundError, FatalSyncError, UnauthenticatedError
from ledger_sync.models.sync_run import SyncRun
from ledger_sync.schemas.conflict import ConflictFilter, ConflictInDB
from ledger_sync.schemas.sync import ConnectionStatus, SyncOptions, SyncRunSummary
from ledger_sync.services import conflict_service
from ledger_sync.services.entity_adapters import get_adapter
from ledger_sync.services.locks import EntityLockRegistry, SingleFlightGuard
from ledger_sync.services.outcomes import PhaseCounts, RunProgress
from ledger_sync.services.pipeline_base import SyncContext
from ledger_sync.services.pull_pipeline import PullPipeline
from ledger_sync.services.push_pipeline import PushPipeline
from ledger_sync.services.retry import RetryPolicy
from ledger_sync.services.state_store import CheckpointStore
from ledger_sync.utils.timeutils import utcnow

log = logging.getLogger(__name__)

DIRECTIONS = ("pull", "push", "both")

RUN_RUNNING = "RUNNING"
RUN_SUCCESS = "SUCCESS"
RUN_PARTIAL_SUCCESS = "PARTIAL_SUCCESS"
RUN_ERROR = "ERROR"


@dataclass
class _ActiveRun:
    progress: RunProgress
    cancel_event: asyncio.Event


class SyncOrchestrator:
    """
    Runs sync cycles between the local store and the remote ledger.

    One instance is owned by the host process. Each run gets a fresh
    correlation id and SyncRun row, pulls then pushes every requested entity
    type in dependency order, and finishes as SUCCESS, PARTIAL_SUCCESS or
    ERROR. A single-flight guard keeps two runs off the same entity type.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        connector: BaseLedgerConnector,
        token_provider: TokenProvider,
        tenant_id: str = "",
        retry_policy: Optional[RetryPolicy] = None,
        page_size: int = 100,
        batch_size: int = 50,
        max_workers: int = 4,
        page_delay: float = 0.0,
        sleep=asyncio.sleep,
    ):
        self.session_factory = session_factory
        self.connector = connector
        self.token_provider = token_provider
        self.tenant_id = tenant_id
        self.retry_policy = retry_policy or RetryPolicy(sleep=sleep)
        self.page_size = page_size
        self.batch_size = batch_size
        self.max_workers = max_workers
        self.page_delay = page_delay
        self.sleep = sleep
        self.guard = SingleFlightGuard()
        self._active: Dict[str, _ActiveRun] = {}

    @classmethod
    def from_settings(cls, settings, session_factory: Callable[[], Session], transport=None) -> "SyncOrchestrator":
        from ledger_sync.connectors.ledger_connector import LedgerConnector
        from ledger_sync.connectors.token_provider import StoredTokenProvider

        token_provider = StoredTokenProvider(
            session_factory,
            token_url=settings.ledger_token_url,
            client_id=settings.ledger_client_id,
            client_secret=settings.ledger_client_secret,
            refresh_margin_seconds=settings.token_refresh_margin_seconds,
            transport=transport,
        )
        connector = LedgerConnector(
            {
                "base_url": settings.ledger_base_url,
                "tenant_id": settings.ledger_tenant_id,
                "timeout": settings.ledger_timeout_seconds,
            },
            token_provider,
            transport=transport,
        )
        retry_policy = RetryPolicy(
            max_retries=settings.sync_max_retries,
            base_delay=settings.sync_backoff_base_seconds,
            max_delay=settings.sync_max_backoff_seconds,
            default_retry_after=settings.sync_default_retry_after_seconds,
        )
        return cls(
            session_factory,
            connector,
            token_provider,
            tenant_id=settings.ledger_tenant_id,
            retry_policy=retry_policy,
            page_size=settings.sync_page_size,
            batch_size=settings.sync_batch_size,
            max_workers=settings.sync_max_workers,
            page_delay=settings.sync_page_delay_seconds,
        )

    async def close(self):
        await self.connector.close()

    async def start_sync(
        self,
        direction: str = "both",
        entity_types: Optional[Sequence[str]] = None,
        options: Optional[SyncOptions] = None,
        trigger_type: str = "manual",
        triggered_by: Optional[str] = None,
    ) -> SyncRunSummary:
        """
        Run one sync cycle to completion and return its summary.

        Raises ValueError for an unknown direction or entity type, and
        SyncAlreadyRunningError when another run holds a requested type.
        """
        options = options or SyncOptions()
        if direction not in DIRECTIONS:
            raise ValueError(f"Invalid direction '{direction}', expected one of: {', '.join(DIRECTIONS)}")
        types = ordered_entity_types(entity_types or [t.value for t in EntityType])
        if not types:
            raise ValueError("At least one entity type is required")
        if options.specific_ids and len(types) != 1:
            raise ValueError("specific_ids requires exactly one entity type")

        with self.guard.hold(t.value for t in types):
            return await self._run(direction, types, options, trigger_type, triggered_by)

    async def _run(self, direction, types: List[EntityType], options: SyncOptions, trigger_type, triggered_by):
        cid = str(uuid.uuid4())
        db = self.session_factory()
        progress = RunProgress(correlation_id=cid)
        active = _ActiveRun(progress=progress, cancel_event=asyncio.Event())
        self._active[cid] = active
        try:
            run = SyncRun(
                correlation_id=cid,
                trigger_type=trigger_type,
                direction=direction,
                entity_types=[t.value for t in types],
                dry_run=options.dry_run,
                triggered_by=triggered_by,
                start_time=utcnow(),
                status=RUN_RUNNING,
            )
            db.add(run)
            db.commit()
            log.info(
                f"[{cid}] Sync run started: direction={direction}, entities={[t.value for t in types]}, "
                f"trigger={trigger_type}{', dry run' if options.dry_run else ''}"
            )

            totals = PhaseCounts()
            summary = {"pull": {}, "push": {}}
            try:
                await self._execute(db, run, active, direction, types, options, totals, summary)
            except (UnauthenticatedError, FatalSyncError, SQLAlchemyError) as e:
                db.rollback()
                log.error(f"[{cid}] Sync run aborted: {e}")
                self._finalize(db, run, active, RUN_ERROR, totals, summary, str(e))
            except Exception as e:
                db.rollback()
                log.exception(f"[{cid}] Sync run failed unexpectedly")
                self._finalize(db, run, active, RUN_ERROR, totals, summary, f"Unexpected error: {e}")
                raise
            else:
                clean = totals.conflicts == 0 and totals.errors == 0 and not active.cancel_event.is_set()
                self._finalize(db, run, active, RUN_SUCCESS if clean else RUN_PARTIAL_SUCCESS, totals, summary)
            return SyncRunSummary.model_validate(run)
        finally:
            self._active.pop(cid, None)
            db.close()

    async def _execute(self, db, run, active: _ActiveRun, direction, types, options, totals, summary):
        cid = run.correlation_id
        token = await self.token_provider.get_valid_access_token(self.tenant_id)
        if token is None:
            raise UnauthenticatedError(f"No valid ledger access token for tenant '{self.tenant_id}'")

        context = SyncContext(
            db=db,
            connector=self.connector,
            correlation_id=cid,
            retry_policy=self.retry_policy,
            dry_run=options.dry_run,
            force_refresh=options.force_refresh,
            page_size=self.page_size,
            batch_size=self.batch_size,
            max_workers=self.max_workers,
            page_delay=self.page_delay,
            sleep=self.sleep,
            locks=EntityLockRegistry(),
            progress=active.progress,
            cancel_event=active.cancel_event,
        )
        checkpoints = CheckpointStore(db)

        phases = ["pull", "push"] if direction == "both" else [direction]
        for phase in phases:
            self._enter_phase(db, run, active, phase)
            for entity_type in types:
                if active.cancel_event.is_set():
                    log.warning(f"[{cid}] Cancelled before {phase} {entity_type.value}")
                    return
                active.progress.entity_type = entity_type.value
                adapter = get_adapter(entity_type)
                if phase == "pull":
                    resume = None
                    if options.resume_from:
                        resume = checkpoints.get(options.resume_from, entity_type.value)
                        if resume is None:
                            log.info(f"[{cid}] No {entity_type.value} checkpoint in run {options.resume_from}, starting from page 1")
                    counts = await PullPipeline(context, adapter).run(
                        options.modified_since, options.specific_ids, resume_from=resume
                    )
                else:
                    counts = await PushPipeline(context, adapter).run(options.modified_since, options.specific_ids)
                summary[phase][entity_type.value] = counts.to_dict()
                totals.merge(counts)

    def _enter_phase(self, db, run, active: _ActiveRun, phase: str):
        run.phase = phase
        active.progress.phase = phase
        db.commit()

    def _finalize(self, db, run, active: _ActiveRun, status: str, totals: PhaseCounts, summary, error_message=None):
        cancelled = active.cancel_event.is_set()
        run.status = status
        run.cancelled = cancelled
        run.end_time = utcnow()
        run.records_processed = totals.processed
        run.records_created = totals.created
        run.records_updated = totals.updated
        run.records_skipped = totals.skipped
        run.conflicts_detected = totals.conflicts
        run.records_failed = totals.errors
        run.summary = {**summary, "totals": totals.to_dict(), "cancelled": cancelled}
        run.error_message = error_message
        db.commit()
        active.progress.status = status
        log.info(
            f"[{run.correlation_id}] Sync run finished: {status}{' (cancelled)' if cancelled else ''}, "
            f"created={totals.created}, updated={totals.updated}, skipped={totals.skipped}, "
            f"conflicts={totals.conflicts}, errors={totals.errors} {totals.error_breakdown or ''}"
        )

    def get_run_status(self, correlation_id: str) -> Optional[dict]:
        """Live progress for a running sync, or the stored result of a finished one."""
        active = self._active.get(correlation_id)
        if active is not None:
            return active.progress.snapshot()

        db = self.session_factory()
        try:
            run = db.query(SyncRun).filter(SyncRun.correlation_id == correlation_id).first()
            if run is None:
                return None
            return {
                "correlation_id": run.correlation_id,
                "status": run.status,
                "phase": run.phase,
                "entity_type": None,
                "processed": run.records_processed,
                "succeeded": run.records_created + run.records_updated + run.records_skipped,
                "failed": run.records_failed,
                "conflicts": run.conflicts_detected,
            }
        finally:
            db.close()

    def cancel_run(self, correlation_id: str) -> bool:
        """Ask a running sync to stop at its next batch boundary."""
        active = self._active.get(correlation_id)
        if active is None:
            return False
        log.warning(f"[{correlation_id}] Cancellation requested")
        active.cancel_event.set()
        return True

    def running(self) -> List[str]:
        return list(self._active)

    async def check_connection(self) -> ConnectionStatus:
        """Report whether the ledger tenant is reachable with the stored credentials."""
        token = await self.token_provider.get_valid_access_token(self.tenant_id)
        if token is None:
            return ConnectionStatus(connected=False, tenant_id=self.tenant_id, message="No valid access token")
        if not await self.connector.validate_connection():
            return ConnectionStatus(connected=False, tenant_id=self.tenant_id, message="Ledger rejected the connection check")
        return ConnectionStatus(connected=True, tenant_id=self.tenant_id, message="Connected")

    def get_conflicts(self, filters: Optional[ConflictFilter] = None):
        db = self.session_factory()
        try:
            items, total = conflict_service.list_conflicts(db, filters or ConflictFilter())
            return [ConflictInDB.model_validate(item) for item in items], total
        finally:
            db.close()

    def get_conflict(self, conflict_id: int) -> Optional[ConflictInDB]:
        db = self.session_factory()
        try:
            return ConflictInDB.model_validate(conflict_service.get_conflict(db, conflict_id))
        except ConflictNotFoundError:
            return None
        finally:
            db.close()

    def resolve_conflict(self, conflict_id: int, resolution: str,
                         resolved_by: Optional[str] = None, notes: Optional[str] = None) -> ConflictInDB:
        db = self.session_factory()
        try:
            conflict = conflict_service.resolve_conflict(db, conflict_id, resolution, resolved_by, notes)
            return ConflictInDB.model_validate(conflict)
        finally:
            db.close()
