from fastapi import APIRouter

from ledger_sync.api.v1.endpoints import audit_logs, conflicts, sync

api_router = APIRouter()
api_router.include_router(sync.router, prefix="/sync", tags=["sync"])
api_router.include_router(conflicts.router, prefix="/conflicts", tags=["conflicts"])
api_router.include_router(audit_logs.router, prefix="/audit-logs", tags=["audit-logs"])
