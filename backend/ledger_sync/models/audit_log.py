"""Audit entry model: immutable record of every entity operation."""

from sqlalchemy import Column, DateTime, Index, Integer, String, Text, event
from sqlalchemy.sql import func

from ledger_sync.database import Base, JSONType


class AuditEntry(Base):
    """Audit trail for sync operations. Rows are never updated or deleted."""

    __tablename__ = "audit_entries"

    id = Column(Integer, primary_key=True, index=True)
    correlation_id = Column(String(36), nullable=True, index=True)

    # Operation details
    operation = Column(String(30), nullable=False)  # 'CREATE', 'UPDATE', 'CONFLICT', 'CONFLICT_RESOLVED'
    origin = Column(String(10), nullable=False)  # 'local', 'remote', 'both', 'operator'
    entity_type = Column(String(20), nullable=False)
    entity_id = Column(String(36), nullable=True)
    remote_id = Column(String(64), nullable=True)

    before_snapshot = Column(JSONType, nullable=True)
    after_snapshot = Column(JSONType, nullable=True)
    status = Column(String(30), nullable=False)  # 'SUCCESS', 'ERROR', 'VALIDATION_ERROR', 'PENDING_RESOLUTION', 'RESOLVED'
    error_message = Column(Text, nullable=True)
    user = Column(String(100), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    __table_args__ = (
        Index('idx_audit_entries_entity', 'entity_type', 'entity_id'),
        Index('idx_audit_entries_operation', 'operation'),
    )

    def __repr__(self):
        return f"<AuditEntry(id={self.id}, op='{self.operation}', entity='{self.entity_type}:{self.entity_id}')>"


@event.listens_for(AuditEntry, "before_update")
def _reject_update(mapper, connection, target):
    raise ValueError("Audit entries are immutable")


@event.listens_for(AuditEntry, "before_delete")
def _reject_delete(mapper, connection, target):
    raise ValueError("Audit entries are immutable")
