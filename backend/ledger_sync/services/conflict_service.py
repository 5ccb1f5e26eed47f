"""Listing and manual resolution of both-sides-changed conflicts."""

import logging
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from ledger_sync.exceptions import ConflictAlreadyResolvedError, ConflictNotFoundError, InvalidResolutionError
from ledger_sync.models.conflict import ConflictRecord
from ledger_sync.schemas.conflict import ConflictFilter
from ledger_sync.services.state_store import STATUS_ACTIVE, STATUS_CONFLICT
from ledger_sync.utils.audit_logger import create_audit_entry
from ledger_sync.utils.timeutils import utcnow

log = logging.getLogger(__name__)

RESOLUTIONS = ("use_local", "use_remote", "skip")


def list_conflicts(db: Session, filters: ConflictFilter) -> Tuple[List[ConflictRecord], int]:
    query = db.query(ConflictRecord)
    if filters.entity_type:
        query = query.filter(ConflictRecord.entity_type == filters.entity_type)
    if filters.entity_id:
        query = query.filter(ConflictRecord.entity_id == filters.entity_id)
    if filters.correlation_id:
        query = query.filter(ConflictRecord.correlation_id == filters.correlation_id)
    if filters.unresolved_only:
        query = query.filter(ConflictRecord.resolution.is_(None))

    total = query.count()
    items = query.order_by(ConflictRecord.detected_at.desc(), ConflictRecord.id.desc()) \
        .offset(filters.skip).limit(filters.limit).all()
    return items, total


def get_conflict(db: Session, conflict_id: int) -> ConflictRecord:
    conflict = db.get(ConflictRecord, conflict_id)
    if conflict is None:
        raise ConflictNotFoundError(f"Conflict {conflict_id} not found")
    return conflict


def resolve_conflict(
    db: Session,
    conflict_id: int,
    resolution: str,
    resolved_by: Optional[str] = None,
    notes: Optional[str] = None,
) -> ConflictRecord:
    """
    Close a conflict by rewriting the entity's baseline so the next run
    moves data in the chosen direction.

    ``use_local``: the local baseline is cleared and the remote baseline is
    pinned to the fingerprint seen at detection, so the next push classifies
    the record as LOCAL_ONLY and overwrites the ledger.
    ``use_remote``: the mirror image; the next pull overwrites local data.
    ``skip``: both detected fingerprints become the baseline, accepting the
    two sides as they are.

    Neither store's entity data is written here.
    """
    if resolution not in RESOLUTIONS:
        raise InvalidResolutionError(
            f"Invalid resolution '{resolution}', expected one of: {', '.join(RESOLUTIONS)}"
        )

    conflict = get_conflict(db, conflict_id)
    if conflict.is_resolved:
        raise ConflictAlreadyResolvedError(
            f"Conflict {conflict_id} was already resolved as '{conflict.resolution}'"
        )

    state = conflict.sync_state
    before = {
        "status": state.status,
        "last_local_fingerprint": state.last_local_fingerprint,
        "last_remote_fingerprint": state.last_remote_fingerprint,
    }

    if resolution == "use_local":
        state.last_local_fingerprint = None
        state.last_remote_fingerprint = conflict.remote_fingerprint
    elif resolution == "use_remote":
        state.last_local_fingerprint = conflict.local_fingerprint
        state.last_remote_fingerprint = None
    else:
        state.last_local_fingerprint = conflict.local_fingerprint
        state.last_remote_fingerprint = conflict.remote_fingerprint

    if state.status == STATUS_CONFLICT:
        state.status = STATUS_ACTIVE

    conflict.resolution = resolution
    conflict.resolved_by = resolved_by
    conflict.resolved_at = utcnow()
    conflict.notes = notes

    create_audit_entry(
        db,
        operation="CONFLICT_RESOLVED",
        origin="operator",
        entity_type=conflict.entity_type,
        status="SUCCESS",
        entity_id=conflict.entity_id,
        remote_id=conflict.remote_id,
        correlation_id=conflict.correlation_id,
        before=before,
        after={
            "status": state.status,
            "resolution": resolution,
            "last_local_fingerprint": state.last_local_fingerprint,
            "last_remote_fingerprint": state.last_remote_fingerprint,
            "notes": notes,
        },
        user=resolved_by,
    )
    db.commit()
    db.refresh(conflict)
    log.info(f"Conflict {conflict_id} on {conflict.entity_type} {conflict.entity_id} resolved as '{resolution}' by {resolved_by}")
    return conflict
