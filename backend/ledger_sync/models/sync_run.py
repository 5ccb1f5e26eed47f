"""Sync run model for tracking synchronization executions."""

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text
from sqlalchemy.sql import func

from ledger_sync.database import Base, JSONType


class SyncRun(Base):
    """Sync execution history and status tracking."""

    __tablename__ = "sync_runs"

    id = Column(Integer, primary_key=True, index=True)
    correlation_id = Column(String(36), unique=True, nullable=False, index=True)

    # Execution details
    trigger_type = Column(String(50), nullable=False, default='manual')  # 'scheduled', 'manual'
    direction = Column(String(10), nullable=False)  # 'pull', 'push', 'both'
    entity_types = Column(JSONType, nullable=False)
    dry_run = Column(Boolean, nullable=False, default=False)
    triggered_by = Column(String(100), nullable=True)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=True)
    status = Column(String(20), nullable=False)  # 'RUNNING', 'SUCCESS', 'PARTIAL_SUCCESS', 'ERROR'
    phase = Column(String(10), nullable=True)  # 'pull', 'push'
    cancelled = Column(Boolean, nullable=False, default=False)

    # Statistics
    records_processed = Column(Integer, default=0, nullable=False)
    records_created = Column(Integer, default=0, nullable=False)
    records_updated = Column(Integer, default=0, nullable=False)
    records_skipped = Column(Integer, default=0, nullable=False)
    conflicts_detected = Column(Integer, default=0, nullable=False)
    records_failed = Column(Integer, default=0, nullable=False)
    summary = Column(JSONType, nullable=True)  # per phase/entity counts and error breakdown

    # Error information
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<SyncRun(id={self.id}, correlation='{self.correlation_id}', status='{self.status}')>"
