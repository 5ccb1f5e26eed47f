from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, status

from ledger_sync.api.deps import get_orchestrator
from ledger_sync.auth import get_current_active_user
from ledger_sync.exceptions import ConflictAlreadyResolvedError, ConflictNotFoundError, InvalidResolutionError
from ledger_sync.schemas.auth import User
from ledger_sync.schemas.conflict import ConflictFilter, ConflictInDB, ConflictResolve, PaginatedConflicts
from ledger_sync.services.sync_service import SyncOrchestrator

router = APIRouter()


@router.get("/", response_model=PaginatedConflicts)
async def read_conflicts(
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    correlation_id: Optional[str] = None,
    unresolved_only: bool = True,
    skip: int = 0,
    limit: int = 100,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
    current_user: Annotated[User, Depends(get_current_active_user)] = None
):
    """Retrieve conflict records, unresolved ones by default."""
    filters = ConflictFilter(
        entity_type=entity_type,
        entity_id=entity_id,
        correlation_id=correlation_id,
        unresolved_only=unresolved_only,
        skip=skip,
        limit=limit,
    )
    items, total = orchestrator.get_conflicts(filters)
    return {"data": items, "total": total}


@router.get("/{conflict_id}", response_model=ConflictInDB)
async def read_conflict(
    conflict_id: int,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
    current_user: Annotated[User, Depends(get_current_active_user)] = None
):
    """Retrieve a single conflict record by ID."""
    conflict = orchestrator.get_conflict(conflict_id)
    if conflict is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conflict not found")
    return conflict


@router.post("/{conflict_id}/resolve", response_model=ConflictInDB)
async def resolve_conflict(
    conflict_id: int,
    body: ConflictResolve,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
    current_user: Annotated[User, Depends(get_current_active_user)] = None
):
    """Resolve a conflict; the chosen side wins on the next sync run."""
    try:
        return orchestrator.resolve_conflict(
            conflict_id, body.resolution, resolved_by=current_user.username, notes=body.notes
        )
    except ConflictNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conflict not found")
    except ConflictAlreadyResolvedError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except InvalidResolutionError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
