"""
Charge database model.

The authoritative billable amount for exactly one delivery.
"""

from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, DateTime, CheckConstraint
from sqlalchemy.sql import func
from skymap.app.db.session import Base


class Charge(Base):
    """
    Charge model.

    At most one charge per delivery, enforced by the unique constraint on
    delivery_id. Written only by the charge ledger.
    billed_at/invoice_id are stamped when a final invoice includes the charge.
    """
    __tablename__ = "charges"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Relationships
    delivery_id = Column(Integer, ForeignKey('deliveries.id'), nullable=False, unique=True, index=True)
    business_id = Column(Integer, ForeignKey('businesses.id'), nullable=False, index=True)

    # Financials
    amount = Column(Numeric(12, 2), nullable=False)
    description = Column(String(255), nullable=True)

    # Billing linkage (null until a final invoice bills the charge)
    billed_at = Column(DateTime(timezone=True), nullable=True)
    invoice_id = Column(Integer, ForeignKey('invoices.id', ondelete="SET NULL"), nullable=True, index=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint('amount > 0', name='ck_charges_amount_positive'),
    )

    def __repr__(self):
        return f"<Charge(id={self.id}, delivery_id={self.delivery_id}, amount={self.amount})>"
