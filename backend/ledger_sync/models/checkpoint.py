"""Pull checkpoint model for resumable pagination."""

from sqlalchemy import Column, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.sql import func

from ledger_sync.database import Base


class Checkpoint(Base):
    __tablename__ = "sync_checkpoints"

    id = Column(Integer, primary_key=True, index=True)
    correlation_id = Column(String(36), nullable=False, index=True)
    entity_type = Column(String(20), nullable=False)

    last_page = Column(Integer, nullable=False, default=0)  # last fully committed page
    last_remote_id = Column(String(64), nullable=True)
    records_committed = Column(Integer, nullable=False, default=0)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint('correlation_id', 'entity_type', name='uq_checkpoints_run_entity'),
    )

    def __repr__(self):
        return f"<Checkpoint(run='{self.correlation_id}', type='{self.entity_type}', page={self.last_page})>"
