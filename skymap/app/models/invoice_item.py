"""
Invoice Item database model.

One line of an invoice, mirroring the charge it was built from.
"""

from sqlalchemy import Column, Integer, String, Numeric, ForeignKey
from sqlalchemy.orm import relationship
from skymap.app.db.session import Base


class InvoiceItem(Base):
    """
    Invoice item model.

    Copies delivery_id, amount and description from its charge at
    generation time so later fee corrections never alter issued invoices.
    """
    __tablename__ = "invoice_items"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    invoice_id = Column(Integer, ForeignKey('invoices.id', ondelete="CASCADE"), nullable=False, index=True)
    delivery_id = Column(Integer, ForeignKey('deliveries.id'), nullable=True, index=True)
    charge_id = Column(Integer, ForeignKey('charges.id', ondelete="SET NULL"), nullable=True)

    amount = Column(Numeric(12, 2), nullable=False)
    description = Column(String(255), nullable=False)

    invoice = relationship("Invoice", back_populates="items")

    def __repr__(self):
        return f"<InvoiceItem(id={self.id}, invoice_id={self.invoice_id}, amount={self.amount})>"
