from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from ledger_sync.auth import get_current_active_user
from ledger_sync.database import get_db
from ledger_sync.models.audit_log import AuditEntry
from ledger_sync.schemas.audit import AuditEntryInDB, PaginatedAuditEntries
from ledger_sync.schemas.auth import User

router = APIRouter()


@router.get("/", response_model=PaginatedAuditEntries)
async def read_audit_entries(
    skip: int = 0,
    limit: int = 100,
    correlation_id: Optional[str] = Query(None, description="Entries written by one sync run"),
    entity_type: Optional[str] = Query(None, description="'contact', 'invoice' or 'payment'"),
    entity_id: Optional[str] = Query(None, description="Local entity id"),
    operation: Optional[str] = Query(None, description="e.g. CREATE, UPDATE, CONFLICT, CONFLICT_RESOLVED"),
    current_user: Annotated[User, Depends(get_current_active_user)] = None,
    db: Session = Depends(get_db)
):
    """Retrieve audit entries with optional filters, newest first."""
    query = db.query(AuditEntry)
    if correlation_id:
        query = query.filter(AuditEntry.correlation_id == correlation_id)
    if entity_type:
        query = query.filter(AuditEntry.entity_type == entity_type)
    if entity_id:
        query = query.filter(AuditEntry.entity_id == entity_id)
    if operation:
        query = query.filter(AuditEntry.operation == operation)

    total = query.count()
    entries = query.order_by(AuditEntry.created_at.desc(), AuditEntry.id.desc()).offset(skip).limit(limit).all()
    return {"data": entries, "total": total}


@router.get("/{entry_id}", response_model=AuditEntryInDB)
async def read_audit_entry(
    entry_id: int,
    current_user: Annotated[User, Depends(get_current_active_user)] = None,
    db: Session = Depends(get_db)
):
    """Retrieve a single audit entry by ID."""
    entry = db.get(AuditEntry, entry_id)
    if entry is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Audit entry not found")
    return entry
