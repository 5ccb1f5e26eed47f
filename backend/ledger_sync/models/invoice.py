"""Invoice and line item models."""

import uuid

from sqlalchemy import Column, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ledger_sync.database import Base


class Invoice(Base):
    """Sales (ACCREC) or purchase (ACCPAY) invoice."""

    __tablename__ = "invoices"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    remote_id = Column(String(64), unique=True, nullable=True, index=True)

    invoice_number = Column(String(50), nullable=False, index=True)
    invoice_type = Column(String(10), nullable=False, default="ACCREC")  # 'ACCREC', 'ACCPAY'
    contact_id = Column(String(36), ForeignKey("contacts.id"), nullable=False)
    status = Column(String(20), nullable=False, default="DRAFT")  # 'DRAFT', 'SENT', 'PAID', 'PARTIALLY_PAID', 'OVERDUE', 'CANCELLED'
    currency = Column(String(3), nullable=False, default="SGD")
    issue_date = Column(Date, nullable=True)
    due_date = Column(Date, nullable=True)
    reference = Column(String(255), nullable=True)

    # Computed by the ledger
    subtotal = Column(Numeric(14, 2), nullable=False, default=0)
    tax_amount = Column(Numeric(14, 2), nullable=False, default=0)
    total = Column(Numeric(14, 2), nullable=False, default=0)
    amount_due = Column(Numeric(14, 2), nullable=False, default=0)
    amount_paid = Column(Numeric(14, 2), nullable=False, default=0)

    # Local-only
    notes = Column(Text, nullable=True)
    project_ref = Column(String(100), nullable=True)
    quotation_ref = Column(String(100), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    contact = relationship("Contact")
    line_items = relationship(
        "InvoiceLineItem",
        back_populates="invoice",
        order_by="InvoiceLineItem.position",
        cascade="all, delete-orphan",
    )
    payments = relationship("Payment", back_populates="invoice")

    __table_args__ = (
        Index('idx_invoices_type_number', 'invoice_type', 'invoice_number'),
    )

    def __repr__(self):
        return f"<Invoice(id='{self.id}', number='{self.invoice_number}', status='{self.status}')>"


class InvoiceLineItem(Base):
    __tablename__ = "invoice_line_items"

    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(String(36), ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)

    description = Column(Text, nullable=False)
    quantity = Column(Numeric(14, 4), nullable=False, default=1)
    unit_price = Column(Numeric(14, 4), nullable=False, default=0)
    tax_type = Column(String(20), nullable=False, default="OUTPUT2")
    account_code = Column(String(20), nullable=False, default="200")
    tax_amount = Column(Numeric(14, 2), nullable=False, default=0)
    line_amount = Column(Numeric(14, 2), nullable=False, default=0)

    invoice = relationship("Invoice", back_populates="line_items")

    def __repr__(self):
        return f"<InvoiceLineItem(invoice_id='{self.invoice_id}', position={self.position})>"
