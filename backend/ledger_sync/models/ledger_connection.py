"""Stored OAuth connection to a ledger tenant."""

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text
from sqlalchemy.sql import func

from ledger_sync.database import Base


class LedgerConnection(Base):
    """OAuth tokens for one ledger tenant. Tokens are Fernet-encrypted at rest."""

    __tablename__ = "ledger_connections"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String(64), unique=True, nullable=False)
    tenant_name = Column(String(255), nullable=True)
    access_token = Column(Text, nullable=False)  # Encrypted
    refresh_token = Column(Text, nullable=False)  # Encrypted
    expires_at = Column(DateTime(timezone=True), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<LedgerConnection(tenant='{self.tenant_id}', active={self.is_active})>"
