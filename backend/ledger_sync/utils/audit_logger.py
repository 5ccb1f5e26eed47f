"""Audit trail helper for sync operations."""

from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from ledger_sync.models.audit_log import AuditEntry


def create_audit_entry(
    db: Session,
    operation: str,
    origin: str,
    entity_type: str,
    status: str,
    entity_id: Optional[str] = None,
    remote_id: Optional[str] = None,
    correlation_id: Optional[str] = None,
    before: Optional[Dict[str, Any]] = None,
    after: Optional[Dict[str, Any]] = None,
    error_message: Optional[str] = None,
    user: Optional[str] = None,
) -> AuditEntry:
    """
    Add an audit entry to the session.

    The caller owns the transaction, so the entry is committed together with
    the state change it describes.

    Args:
        db: Database session
        operation: 'CREATE', 'UPDATE', 'CONFLICT' or 'CONFLICT_RESOLVED'
        origin: Side the data came from ('local', 'remote', 'both')
        entity_type: 'contact', 'invoice' or 'payment'
        status: Resulting status, e.g. 'SUCCESS' or 'VALIDATION_ERROR'
        before: Snapshot prior to the operation
        after: Snapshot after the operation
        error_message: Failure detail for unsuccessful operations
        user: Username for operator actions; None for engine writes

    Returns:
        The pending AuditEntry
    """
    entry = AuditEntry(
        operation=operation,
        origin=origin,
        entity_type=entity_type,
        entity_id=entity_id,
        remote_id=remote_id,
        correlation_id=correlation_id,
        before_snapshot=before,
        after_snapshot=after,
        status=status,
        error_message=error_message,
        user=user,
    )
    db.add(entry)
    return entry
