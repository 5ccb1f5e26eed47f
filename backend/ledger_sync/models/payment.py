"""Payment model."""

import uuid

from sqlalchemy import Column, Date, DateTime, ForeignKey, Numeric, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ledger_sync.database import Base


class Payment(Base):
    """Payment allocated against a single invoice."""

    __tablename__ = "payments"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    remote_id = Column(String(64), unique=True, nullable=True, index=True)

    invoice_id = Column(String(36), ForeignKey("invoices.id"), nullable=False, index=True)
    amount = Column(Numeric(14, 2), nullable=False)
    payment_date = Column(Date, nullable=False)
    reference = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False, default="AUTHORISED")  # 'AUTHORISED', 'DELETED'
    payment_type = Column(String(30), nullable=True)  # 'ACCRECPAYMENT', 'ACCPAYPAYMENT', ...
    account_code = Column(String(20), nullable=True)
    currency_rate = Column(Numeric(18, 6), nullable=True)

    # Local-only
    notes = Column(Text, nullable=True)
    receipt_ref = Column(String(100), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    invoice = relationship("Invoice", back_populates="payments")

    def __repr__(self):
        return f"<Payment(id='{self.id}', amount={self.amount}, remote_id='{self.remote_id}')>"
