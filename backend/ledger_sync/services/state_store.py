"""Persistence of sync baselines, conflicts and pull checkpoints."""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from ledger_sync.exceptions import LedgerSyncError
from ledger_sync.models.checkpoint import Checkpoint
from ledger_sync.models.conflict import ConflictRecord
from ledger_sync.models.sync_state import SyncState
from ledger_sync.services.conflict_detector import Baseline
from ledger_sync.utils.timeutils import utcnow

log = logging.getLogger(__name__)

STATUS_ACTIVE = "ACTIVE"
STATUS_CONFLICT = "CONFLICT"


def baseline_of(state: Optional[SyncState]) -> Optional[Baseline]:
    if state is None:
        return None
    return Baseline(state.last_local_fingerprint, state.last_remote_fingerprint)


class SyncStateStore:
    """Repository over ``sync_states`` and ``conflict_records``. Never commits."""

    def __init__(self, db: Session):
        self.db = db

    def get_by_entity(self, entity_type: str, entity_id: str) -> Optional[SyncState]:
        return self.db.query(SyncState).filter(
            SyncState.entity_type == entity_type,
            SyncState.entity_id == entity_id
        ).first()

    def get_by_remote_id(self, entity_type: str, remote_id: str) -> Optional[SyncState]:
        return self.db.query(SyncState).filter(
            SyncState.entity_type == entity_type,
            SyncState.remote_id == remote_id
        ).first()

    def record_sync(
        self,
        entity_type: str,
        entity_id: str,
        remote_id: str,
        local_fingerprint: str,
        remote_fingerprint: str,
        origin: str,
        correlation_id: str,
        local_modified_at: Optional[datetime] = None,
        remote_modified_at: Optional[datetime] = None,
    ) -> SyncState:
        """Create or advance the baseline after a successful write."""
        state = self.get_by_entity(entity_type, entity_id)
        if state is None:
            state = SyncState(entity_type=entity_type, entity_id=entity_id, status=STATUS_ACTIVE)
            self.db.add(state)
        elif state.status == STATUS_CONFLICT:
            raise LedgerSyncError(
                f"Refusing to overwrite {entity_type} {entity_id}: sync state is in CONFLICT"
            )

        state.remote_id = remote_id
        state.last_local_fingerprint = local_fingerprint
        state.last_remote_fingerprint = remote_fingerprint
        state.last_synced_at = utcnow()
        state.last_local_modified_at = local_modified_at
        if remote_modified_at is not None:
            state.last_remote_modified_at = remote_modified_at
        state.sync_origin = origin
        state.correlation_id = correlation_id
        return state

    def mark_conflict(
        self,
        state: SyncState,
        local_snapshot: Optional[Dict[str, Any]],
        remote_snapshot: Optional[Dict[str, Any]],
        local_fingerprint: Optional[str],
        remote_fingerprint: Optional[str],
        correlation_id: str,
        phase: str,
    ) -> ConflictRecord:
        """Flag ``state`` as CONFLICT and record both sides as detected."""
        state.status = STATUS_CONFLICT
        state.correlation_id = correlation_id
        conflict = ConflictRecord(
            sync_state=state,
            entity_type=state.entity_type,
            entity_id=state.entity_id,
            remote_id=state.remote_id,
            correlation_id=correlation_id,
            phase=phase,
            local_snapshot=local_snapshot,
            remote_snapshot=remote_snapshot,
            local_fingerprint=local_fingerprint,
            remote_fingerprint=remote_fingerprint,
            detected_at=utcnow(),
        )
        self.db.add(conflict)
        log.warning(
            f"[{correlation_id}] Conflict on {state.entity_type} {state.entity_id} "
            f"(remote {state.remote_id}): changed on both sides"
        )
        return conflict


class CheckpointStore:
    """Repository over ``sync_checkpoints``. Never commits."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, correlation_id: str, entity_type: str) -> Optional[Checkpoint]:
        return self.db.query(Checkpoint).filter(
            Checkpoint.correlation_id == correlation_id,
            Checkpoint.entity_type == entity_type
        ).first()

    def save(self, correlation_id: str, entity_type: str, last_page: int,
             last_remote_id: Optional[str], committed: int) -> Checkpoint:
        checkpoint = self.get(correlation_id, entity_type)
        if checkpoint is None:
            checkpoint = Checkpoint(correlation_id=correlation_id, entity_type=entity_type, records_committed=0)
            self.db.add(checkpoint)
        checkpoint.last_page = last_page
        checkpoint.last_remote_id = last_remote_id
        checkpoint.records_committed = (checkpoint.records_committed or 0) + committed
        return checkpoint
