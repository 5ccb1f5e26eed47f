"""Pull pipeline: bring ledger records into the local store."""

import logging
from datetime import datetime
from typing import Optional, Sequence

from ledger_sync.connectors.result import Ok, TerminalError, TerminalKind
from ledger_sync.constants.error_categories import ErrorCategory, explain_error
from ledger_sync.exceptions import FatalSyncError
from ledger_sync.models.checkpoint import Checkpoint
from ledger_sync.services.conflict_detector import Classification, classify
from ledger_sync.services.field_ownership import merge_remote_into_local
from ledger_sync.services.outcomes import RecordAction, RecordOutcome
from ledger_sync.services.pipeline_base import BasePipeline, chunked
from ledger_sync.services.state_store import STATUS_CONFLICT, CheckpointStore, baseline_of
from ledger_sync.utils.audit_logger import create_audit_entry

log = logging.getLogger(__name__)


class PullPipeline(BasePipeline):
    """
    Pages through one entity type in the ledger and applies remote changes
    locally. A checkpoint is committed after every batch so an interrupted
    pull can resume from the next unprocessed record.
    """

    phase = "pull"

    def __init__(self, context, adapter):
        super().__init__(context, adapter)
        self.checkpoints = CheckpointStore(self.db)

    def _item_label(self, item) -> str:
        return item.label

    def _item_ids(self, item):
        return None, item.remote_id

    async def run(
        self,
        modified_since: Optional[datetime] = None,
        specific_ids: Optional[Sequence[str]] = None,
        resume_from: Optional[Checkpoint] = None,
    ):
        log.info(
            f"[{self.cid}] Pull {self.entity_type} started"
            f"{' (dry run)' if self.ctx.dry_run else ''}"
            f"{f' modified since {modified_since.isoformat()}' if modified_since else ''}"
        )
        if specific_ids:
            await self._pull_specific(specific_ids)
        else:
            await self._pull_pages(modified_since, resume_from)
        log.info(f"[{self.cid}] Pull {self.entity_type} finished: {self.counts.to_dict()}")
        return self.counts

    async def _pull_specific(self, remote_ids: Sequence[str]):
        fetched = []
        for remote_id in remote_ids:
            result = await self.ctx.retry_policy.run(
                lambda rid=remote_id: self.ctx.connector.get_entity(self.entity_type, rid),
                f"[{self.cid}] get {self.entity_type} {remote_id}",
            )
            if isinstance(result, Ok):
                fetched.append(result.value)
            else:
                self._tally(self._remote_failure(_RemoteRef(remote_id), result, "SYNC"))

        for batch in chunked(fetched, self.ctx.batch_size):
            if self._cancel_requested():
                return
            await self._process_batch(batch, key_fn=lambda r: r.remote_id)

    async def _pull_pages(self, modified_since, resume_from):
        page_number = 1
        skip_through = None
        if resume_from is not None:
            page_number = resume_from.last_page + 1
            skip_through = resume_from.last_remote_id
            log.info(
                f"[{self.cid}] Resuming {self.entity_type} pull at page {page_number} "
                f"(checkpoint from run {resume_from.correlation_id})"
            )

        while not self._cancel_requested():
            result = await self.ctx.retry_policy.run(
                lambda: self.ctx.connector.list_entities(
                    self.entity_type, page_number, self.ctx.page_size, modified_since
                ),
                f"[{self.cid}] list {self.entity_type} page {page_number}",
            )
            if isinstance(result, TerminalError) and result.kind == TerminalKind.UNAUTHENTICATED:
                raise FatalSyncError(f"Ledger refused access: {result.message}")
            if not isinstance(result, Ok):
                self._tally(self._remote_failure(_RemoteRef(f"page {page_number}"), result, "SYNC"))
                return

            page = result.value
            for rejected in page.rejected:
                self._tally(self._error(
                    _RemoteRef(rejected.remote_id or f"page {page_number}"),
                    ErrorCategory.MALFORMED,
                    explain_error(ErrorCategory.MALFORMED, {
                        "entity_type": self.entity_type, "label": rejected.remote_id or "", "detail": str(rejected),
                    }),
                ))

            items = list(page.items)
            if skip_through is not None:
                ids = [item.remote_id for item in items]
                if skip_through in ids:
                    items = items[ids.index(skip_through) + 1:]
                skip_through = None

            batches = chunked(items, self.ctx.batch_size)
            if not batches:
                self._save_checkpoint(page_number, None, 0)
            for index, batch in enumerate(batches):
                if self._cancel_requested():
                    return
                await self._process_batch(batch, key_fn=lambda r: r.remote_id)
                page_done = index == len(batches) - 1
                self._save_checkpoint(page_number if page_done else page_number - 1, batch[-1].remote_id, len(batch))

            if not page.has_more:
                return
            page_number += 1
            if self.ctx.page_delay:
                await self.ctx.sleep(self.ctx.page_delay)

    def _save_checkpoint(self, last_page: int, last_remote_id: Optional[str], committed: int):
        if self.ctx.dry_run:
            return
        self.checkpoints.save(self.cid, self.entity_type, last_page, last_remote_id, committed)
        self.db.commit()
        log.debug(f"[{self.cid}] Checkpoint {self.entity_type}: page {last_page}, last id {last_remote_id}")

    async def _process(self, remote) -> RecordOutcome:
        adapter = self.adapter
        label = remote.label

        remote_fp = adapter.remote_fingerprint(remote)
        state = self.states.get_by_remote_id(self.entity_type, remote.remote_id)
        if state is not None and state.status == STATUS_CONFLICT:
            return self._pending_conflict(remote)

        references = adapter.resolve_references(self.db, remote, self.ctx.planned_remote_ids)

        if state is not None:
            local = self.local.get(adapter, state.entity_id)
            if local is None:
                return self._error(
                    remote, ErrorCategory.UNEXPECTED,
                    f"Local {self.entity_type} {state.entity_id} for remote {remote.remote_id} no longer exists",
                )
        else:
            local = self.local.find_for_remote(adapter, remote)

        local_fp = adapter.local_fingerprint(local) if local is not None else None
        classification = classify(local_fp, remote_fp, baseline_of(state))
        log.debug(f"[{self.cid}] pull {self.entity_type} {label}: {classification.value}")

        if classification == Classification.BOTH_CHANGED:
            return self._conflict(remote, state, local, remote, local_fp, remote_fp)
        if classification == Classification.LOCAL_ONLY:
            return self._outcome(RecordAction.SKIPPED, label, remote_id=remote.remote_id, reason="local changes pending push")
        if classification == Classification.NO_CHANGE and not self.ctx.force_refresh:
            return self._outcome(RecordAction.SKIPPED, label, remote_id=remote.remote_id, reason="unchanged")

        patch = merge_remote_into_local(
            adapter.local_values(local) if local is not None else None,
            {**adapter.remote_values(remote), **references},
            adapter.ownership,
            remote.remote_id,
            remote.updated_at,
        )
        action = RecordAction.CREATED if local is None else RecordAction.UPDATED

        if self.ctx.dry_run:
            if local is None:
                self.ctx.planned_remote_ids.setdefault(self.entity_type, set()).add(remote.remote_id)
            log.info(
                f"[{self.cid}] [DRY RUN] would {action.value[:-1]} local {self.entity_type} {label} "
                f"(fields: {', '.join(patch.changed_fields) or 'none'})"
            )
            return self._outcome(action, label, local.id if local is not None else None, remote.remote_id)

        before = adapter.snapshot(local)
        entity = self.local.apply_patch(adapter, local, patch)
        self.states.record_sync(
            self.entity_type,
            entity.id,
            remote.remote_id,
            adapter.local_fingerprint(entity),
            remote_fp,
            origin="remote",
            correlation_id=self.cid,
            local_modified_at=entity.updated_at,
            remote_modified_at=remote.updated_at,
        )
        create_audit_entry(
            self.db,
            operation="CREATE" if action == RecordAction.CREATED else "UPDATE",
            origin="remote",
            entity_type=self.entity_type,
            status="SUCCESS",
            entity_id=entity.id,
            remote_id=remote.remote_id,
            correlation_id=self.cid,
            before=before,
            after=adapter.snapshot(entity),
        )
        self.db.commit()
        log.info(f"[{self.cid}] Pulled {self.entity_type} {label}: {action.value}")
        return self._outcome(action, label, entity.id, remote.remote_id)


class _RemoteRef:
    """Stand-in for a record that never decoded, e.g. a failed fetch."""

    def __init__(self, remote_id: str):
        self.remote_id = remote_id
        self.label = remote_id
