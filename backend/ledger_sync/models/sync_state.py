"""Sync state model: latest baseline per synced entity."""

from sqlalchemy import Column, DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy.sql import func

from ledger_sync.database import Base


class SyncState(Base):
    """Last-known fingerprint pair and remote identity of one local entity."""

    __tablename__ = "sync_states"

    id = Column(Integer, primary_key=True, index=True)

    entity_type = Column(String(20), nullable=False)  # 'contact', 'invoice', 'payment'
    entity_id = Column(String(36), nullable=False)
    remote_id = Column(String(64), nullable=True)

    last_local_fingerprint = Column(String(64), nullable=True)
    last_remote_fingerprint = Column(String(64), nullable=True)
    last_synced_at = Column(DateTime(timezone=True), nullable=True)
    last_local_modified_at = Column(DateTime(timezone=True), nullable=True)
    last_remote_modified_at = Column(DateTime(timezone=True), nullable=True)

    sync_origin = Column(String(10), nullable=True)  # 'local', 'remote'
    correlation_id = Column(String(36), nullable=True)
    status = Column(String(20), nullable=False, default="ACTIVE")  # 'ACTIVE', 'CONFLICT'

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint('entity_type', 'entity_id', name='uq_sync_states_entity'),
        Index('idx_sync_states_remote', 'entity_type', 'remote_id'),
        Index('idx_sync_states_status', 'status'),
    )

    def __repr__(self):
        return f"<SyncState(type='{self.entity_type}', entity='{self.entity_id}', status='{self.status}')>"
