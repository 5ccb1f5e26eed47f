"""Contact model (customers and suppliers)."""

import uuid

from sqlalchemy import Boolean, Column, DateTime, String, Text
from sqlalchemy.sql import func

from ledger_sync.database import Base


class Contact(Base):
    """Customer or supplier mirrored with the ledger."""

    __tablename__ = "contacts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    remote_id = Column(String(64), unique=True, nullable=True, index=True)

    # Ledger-owned
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    address_line1 = Column(String(255), nullable=True)
    city = Column(String(100), nullable=True)
    region = Column(String(100), nullable=True)
    postal_code = Column(String(20), nullable=True)
    country = Column(String(100), nullable=True)
    tax_number = Column(String(50), nullable=True)
    default_currency = Column(String(3), nullable=True)
    contact_status = Column(String(20), nullable=False, default="ACTIVE")  # 'ACTIVE', 'ARCHIVED'
    is_customer = Column(Boolean, nullable=False, default=False)
    is_supplier = Column(Boolean, nullable=False, default=False)

    # Local-only
    notes = Column(Text, nullable=True)
    customer_type = Column(String(50), nullable=True)
    account_manager = Column(String(100), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Contact(id='{self.id}', name='{self.name}', remote_id='{self.remote_id}')>"
