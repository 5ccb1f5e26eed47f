import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from ledger_sync.api.deps import get_orchestrator
from ledger_sync.auth import get_current_active_user
from ledger_sync.database import get_db
from ledger_sync.exceptions import SyncAlreadyRunningError
from ledger_sync.models.sync_run import SyncRun
from ledger_sync.schemas.auth import User
from ledger_sync.schemas.sync import ConnectionStatus, PaginatedSyncRuns, RunStatus, SyncRequest, SyncRunSummary
from ledger_sync.services.sync_service import SyncOrchestrator

log = logging.getLogger(__name__)
router = APIRouter()


@router.post("/run", response_model=SyncRunSummary)
async def run_sync(
    request: SyncRequest,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
    current_user: Annotated[User, Depends(get_current_active_user)] = None
):
    """Trigger a manual sync run and wait for its summary."""
    log.info(f"Manual sync requested by {current_user.username}: {request.direction} {request.entity_types}")
    try:
        return await orchestrator.start_sync(
            direction=request.direction,
            entity_types=request.entity_types,
            options=request.options(),
            trigger_type="manual",
            triggered_by=current_user.username,
        )
    except SyncAlreadyRunningError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))


@router.get("/runs", response_model=PaginatedSyncRuns)
async def read_sync_runs(
    skip: int = 0,
    limit: int = 50,
    run_status: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: Annotated[User, Depends(get_current_active_user)] = None
):
    """Retrieve sync run history, newest first."""
    query = db.query(SyncRun)
    if run_status:
        query = query.filter(SyncRun.status == run_status)
    total = query.count()
    runs = query.order_by(SyncRun.start_time.desc(), SyncRun.id.desc()).offset(skip).limit(limit).all()
    return {"data": runs, "total": total}


@router.get("/runs/{correlation_id}", response_model=RunStatus)
async def read_run_status(
    correlation_id: str,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
    current_user: Annotated[User, Depends(get_current_active_user)] = None
):
    """Live progress of a running sync, or the final counts of a finished one."""
    snapshot = orchestrator.get_run_status(correlation_id)
    if snapshot is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Sync run not found")
    return snapshot


@router.post("/runs/{correlation_id}/cancel")
async def cancel_run(
    correlation_id: str,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
    current_user: Annotated[User, Depends(get_current_active_user)] = None
):
    """Stop a running sync at its next batch boundary."""
    if not orchestrator.cancel_run(correlation_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No running sync with that correlation id")
    log.info(f"Sync run {correlation_id} cancellation requested by {current_user.username}")
    return {"correlation_id": correlation_id, "cancelling": True}


@router.get("/connection", response_model=ConnectionStatus)
async def read_connection_status(
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
    current_user: Annotated[User, Depends(get_current_active_user)] = None
):
    """Check the ledger credentials and that the tenant answers."""
    result = await orchestrator.check_connection()
    if not result.connected:
        log.warning(f"Ledger connection check failed for tenant '{result.tenant_id}': {result.message}")
    return result
