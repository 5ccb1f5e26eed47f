from fastapi import Request

from ledger_sync.services.sync_service import SyncOrchestrator


def get_orchestrator(request: Request) -> SyncOrchestrator:
    """FastAPI dependency returning the orchestrator owned by the app."""
    return request.app.state.orchestrator
