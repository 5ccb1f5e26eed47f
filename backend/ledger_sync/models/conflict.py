"""Conflict model for entities changed on both sides since the last sync."""

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ledger_sync.database import Base, JSONType


class ConflictRecord(Base):
    """Both-sides-changed detection awaiting (or after) manual resolution."""

    __tablename__ = "conflict_records"

    id = Column(Integer, primary_key=True, index=True)
    sync_state_id = Column(Integer, ForeignKey("sync_states.id"), nullable=False, index=True)

    entity_type = Column(String(20), nullable=False, index=True)
    entity_id = Column(String(36), nullable=False)
    remote_id = Column(String(64), nullable=True)

    correlation_id = Column(String(36), nullable=True)
    phase = Column(String(10), nullable=True)  # 'pull', 'push'

    local_snapshot = Column(JSONType, nullable=True)
    remote_snapshot = Column(JSONType, nullable=True)
    local_fingerprint = Column(String(64), nullable=True)
    remote_fingerprint = Column(String(64), nullable=True)
    detected_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Resolution
    resolution = Column(String(20), nullable=True)  # 'use_local', 'use_remote', 'skip'
    resolved_by = Column(String(100), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)

    sync_state = relationship("SyncState")

    __table_args__ = (
        Index('idx_conflict_records_entity', 'entity_type', 'entity_id'),
        Index('idx_conflict_records_resolution', 'resolution'),
    )

    @property
    def is_resolved(self) -> bool:
        return self.resolution is not None

    def __repr__(self):
        return f"<ConflictRecord(id={self.id}, type='{self.entity_type}', resolution='{self.resolution}')>"
