"""Main FastAPI application."""

import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Annotated, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordRequestForm

from ledger_sync import __version__
from ledger_sync.api.v1.api import api_router
from ledger_sync.auth import authenticate_user, create_access_token, get_current_active_user
from ledger_sync.config import settings
from ledger_sync.database import SessionLocal
from ledger_sync.scheduler import SyncScheduler
from ledger_sync.schemas.auth import Token, User
from ledger_sync.services.sync_service import SyncOrchestrator
from ledger_sync.utils.logging_setup import configure_logging

log = logging.getLogger(__name__)


def create_app(orchestrator: Optional[SyncOrchestrator] = None, schedules=None) -> FastAPI:
    """
    Build the API application.

    Without an explicit ``orchestrator`` one is built from settings when the
    app starts; the scheduler is only started when ``scheduler_enabled`` is set.
    """
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = orchestrator is None
        app.state.orchestrator = orchestrator or SyncOrchestrator.from_settings(settings, SessionLocal)
        app.state.scheduler = SyncScheduler(
            app.state.orchestrator,
            settings.sync_schedules if schedules is None else schedules,
        )
        if settings.scheduler_enabled:
            app.state.scheduler.start()
        else:
            log.info("Scheduler disabled, only manual syncs will run")
        try:
            yield
        finally:
            app.state.scheduler.shutdown()
            if owned:
                await app.state.orchestrator.close()

    app = FastAPI(
        title="Ledger Sync",
        description="Bidirectional reconciliation between local records and a remote accounting ledger",
        version=__version__,
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.post("/token", response_model=Token)
    async def login_for_access_token(form_data: Annotated[OAuth2PasswordRequestForm, Depends()]):
        user = authenticate_user(form_data.username, form_data.password)
        if not user:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Incorrect username or password",
                headers={"WWW-Authenticate": "Bearer"},
            )
        access_token_expires = timedelta(minutes=settings.access_token_expire_minutes)
        access_token = create_access_token(user.username, expires_delta=access_token_expires)
        return {"access_token": access_token, "token_type": "bearer"}

    @app.get("/users/me/", response_model=User)
    async def read_users_me(current_user: Annotated[User, Depends(get_current_active_user)]):
        return current_user

    @app.get("/api/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "version": __version__
        }

    @app.get("/")
    async def root():
        """Root endpoint - redirect to docs."""
        return {
            "message": "Ledger Sync API",
            "version": __version__,
            "docs": "/docs"
        }

    app.include_router(api_router, prefix=settings.api_v1_str)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        log.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"}
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000, log_level=settings.log_level.lower())
