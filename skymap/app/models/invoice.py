"""
Invoice database model.

A numbered aggregation of charges over a billing period for one business.
"""

from sqlalchemy import Column, Integer, String, Text, Numeric, Date, DateTime, ForeignKey, Enum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from skymap.app.db.session import Base
from skymap.app.models.billing_enums import InvoiceStatus, InvoiceType


class Invoice(Base):
    """
    Invoice model.

    Created once by the invoice generator together with its items.
    Afterwards only status, notes and due_date change.
    total_amount always equals the sum of its item amounts.
    """
    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    business_id = Column(Integer, ForeignKey('businesses.id'), nullable=False, index=True)
    invoice_number = Column(String(50), unique=True, nullable=False, index=True)

    # Billing period (inclusive dates)
    period_start = Column(Date, nullable=False)
    period_end = Column(Date, nullable=False)

    # Financials
    total_amount = Column(Numeric(14, 2), nullable=False)

    # Status
    status = Column(Enum(InvoiceStatus), default=InvoiceStatus.DRAFT, nullable=False, index=True)
    invoice_type = Column(Enum(InvoiceType), default=InvoiceType.INVOICE, nullable=False)

    due_date = Column(Date, nullable=True)
    notes = Column(Text, nullable=True)

    # Audit
    created_by = Column(Integer, ForeignKey('users.id'), nullable=False)

    # Timestamps
    generated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    items = relationship(
        "InvoiceItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="InvoiceItem.id",
        lazy="selectin",
    )

    def __repr__(self):
        return f"<Invoice(id={self.id}, number='{self.invoice_number}', total={self.total_amount})>"
