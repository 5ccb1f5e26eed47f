"""Push pipeline: send new and modified local records to the ledger."""

import hashlib
import logging
from datetime import datetime
from typing import List, Optional, Sequence

from ledger_sync.connectors.result import Ok, TerminalError, TerminalKind
from ledger_sync.constants.error_categories import ErrorCategory, explain_error
from ledger_sync.exceptions import FingerprintError
from ledger_sync.services.conflict_detector import Classification, classify
from ledger_sync.services.field_ownership import merge_remote_into_local
from ledger_sync.services.outcomes import RecordAction, RecordOutcome
from ledger_sync.services.pipeline_base import BasePipeline, chunked
from ledger_sync.services.state_store import STATUS_CONFLICT, baseline_of
from ledger_sync.utils.audit_logger import create_audit_entry

log = logging.getLogger(__name__)


def idempotency_key(entity_type: str, entity_id: str, known_remote_id: Optional[str], local_fp: str) -> str:
    """
    Key for one remote write. Retries of the same write share it, while a
    changed record or a recreate after the remote copy vanished gets a new one.
    """
    material = f"{entity_type}:{entity_id}:{known_remote_id or ''}:{local_fp}"
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


class PushPipeline(BasePipeline):
    """
    Pushes local records whose fingerprint moved since the last sync (or that
    were never synced). After each successful write the ledger's stored
    representation is merged back and becomes the new baseline.
    """

    phase = "push"

    def _item_label(self, item) -> str:
        return self.adapter.label(item)

    def _item_ids(self, item):
        return item.id, item.remote_id

    async def run(
        self,
        modified_since: Optional[datetime] = None,
        specific_ids: Optional[Sequence[str]] = None,
    ):
        log.info(f"[{self.cid}] Push {self.entity_type} started{' (dry run)' if self.ctx.dry_run else ''}")
        entities = self.local.push_candidates(self.adapter, specific_ids, modified_since)
        candidates = self._select_candidates(entities)
        log.info(f"[{self.cid}] {len(candidates)} of {len(entities)} local {self.entity_type} records need pushing")

        for batch in chunked(candidates, self.ctx.batch_size):
            if self._cancel_requested():
                break
            await self._process_batch(batch, key_fn=lambda e: e.id)

        log.info(f"[{self.cid}] Push {self.entity_type} finished: {self.counts.to_dict()}")
        return self.counts

    def _select_candidates(self, entities) -> List:
        """Entities never synced, changed since their baseline, or awaiting resolution."""
        selected = []
        for entity in entities:
            state = self.states.get_by_entity(self.entity_type, entity.id)
            if self.ctx.force_refresh or state is None or not (entity.remote_id or state.remote_id):
                selected.append(entity)
                continue
            if state.status == STATUS_CONFLICT:
                selected.append(entity)
                continue
            try:
                local_fp = self.adapter.local_fingerprint(entity)
            except FingerprintError as e:
                self._tally(self._error(entity, ErrorCategory.MALFORMED, explain_error(ErrorCategory.MALFORMED, {
                    "entity_type": self.entity_type, "label": self._item_label(entity), "detail": str(e),
                })))
                continue
            if local_fp != state.last_local_fingerprint:
                selected.append(entity)
        return selected

    async def _process(self, entity) -> RecordOutcome:
        adapter = self.adapter
        label = self._item_label(entity)

        state = self.states.get_by_entity(self.entity_type, entity.id)
        if state is not None and state.status == STATUS_CONFLICT:
            return self._pending_conflict(entity)

        adapter.check_push_dependencies(entity, self.ctx.planned_local_ids)
        local_fp = adapter.local_fingerprint(entity)
        remote_id = entity.remote_id or (state.remote_id if state is not None else None)
        write_key = idempotency_key(self.entity_type, entity.id, remote_id, local_fp)

        remote = None
        remote_fp = None
        if remote_id:
            result = await self.ctx.retry_policy.run(
                lambda: self.ctx.connector.get_entity(self.entity_type, remote_id),
                f"[{self.cid}] get {self.entity_type} {remote_id}",
            )
            if isinstance(result, Ok):
                remote = result.value
                remote_fp = adapter.remote_fingerprint(remote)
            elif isinstance(result, TerminalError) and result.kind == TerminalKind.NOT_FOUND:
                log.warning(f"[{self.cid}] {self.entity_type} {label} missing in ledger ({remote_id}), recreating")
                remote_id = None
            else:
                return self._remote_failure(entity, result, "UPDATE", before=adapter.snapshot(entity))

        if remote is None:
            classification = Classification.FIRST_SYNC
        else:
            classification = classify(local_fp, remote_fp, baseline_of(state))
        log.debug(f"[{self.cid}] push {self.entity_type} {label}: {classification.value}")

        if classification == Classification.BOTH_CHANGED:
            return self._conflict(entity, state, entity, remote, local_fp, remote_fp)
        if classification == Classification.REMOTE_ONLY:
            return self._outcome(RecordAction.SKIPPED, label, entity.id, remote_id, reason="remote changes pending pull")
        if classification == Classification.NO_CHANGE and not self.ctx.force_refresh:
            return self._outcome(RecordAction.SKIPPED, label, entity.id, remote_id, reason="unchanged")

        body = adapter.build_remote_body(entity)
        creating = remote is None
        operation = "CREATE" if creating else "UPDATE"
        action = RecordAction.CREATED if creating else RecordAction.UPDATED

        if self.ctx.dry_run:
            if creating:
                self.ctx.planned_local_ids.setdefault(self.entity_type, set()).add(entity.id)
            log.info(f"[{self.cid}] [DRY RUN] would {operation.lower()} {self.entity_type} {label} in ledger")
            return self._outcome(action, label, entity.id, remote_id)

        if creating:
            result = await self.ctx.retry_policy.run(
                lambda: self.ctx.connector.create_entity(self.entity_type, body, idempotency_key=write_key),
                f"[{self.cid}] create {self.entity_type} {label}",
            )
        else:
            result = await self.ctx.retry_policy.run(
                lambda: self.ctx.connector.update_entity(
                    self.entity_type, remote_id, body, idempotency_key=write_key
                ),
                f"[{self.cid}] update {self.entity_type} {label}",
            )
        if not isinstance(result, Ok):
            return self._remote_failure(entity, result, operation, before=adapter.snapshot(entity))

        stored = result.value
        # The ledger is authoritative for what it stored (recomputed tax, totals, status)
        references = adapter.resolve_references(self.db, stored)
        patch = merge_remote_into_local(
            adapter.local_values(entity),
            {**adapter.remote_values(stored), **references},
            adapter.ownership,
            stored.remote_id,
            stored.updated_at,
        )
        entity = self.local.apply_patch(adapter, entity, patch)
        self.states.record_sync(
            self.entity_type,
            entity.id,
            stored.remote_id,
            adapter.local_fingerprint(entity),
            adapter.remote_fingerprint(stored),
            origin="local",
            correlation_id=self.cid,
            local_modified_at=entity.updated_at,
            remote_modified_at=stored.updated_at,
        )
        create_audit_entry(
            self.db,
            operation=operation,
            origin="local",
            entity_type=self.entity_type,
            status="SUCCESS",
            entity_id=entity.id,
            remote_id=stored.remote_id,
            correlation_id=self.cid,
            before=remote.snapshot() if remote is not None else None,
            after=stored.snapshot(),
        )
        self.db.commit()
        log.info(f"[{self.cid}] Pushed {self.entity_type} {label}: {action.value} ({stored.remote_id})")
        return self._outcome(action, label, entity.id, stored.remote_id)
