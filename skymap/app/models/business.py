"""
Business database model.

Businesses are the B2B customers that own deliveries and receive invoices.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Numeric, ForeignKey
from sqlalchemy.sql import func
from skymap.app.db.session import Base


class Business(Base):
    """
    Business model.

    Fee resolution order for new deliveries:
    custom delivery_fee, then the linked package, then the default package.
    """
    __tablename__ = "businesses"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    name = Column(String(200), nullable=False)
    phone = Column(String(30), nullable=True)
    address = Column(String(500), nullable=True)

    # Pricing
    delivery_fee = Column(Numeric(12, 2), nullable=True)  # Custom per-delivery fee
    package_id = Column(Integer, ForeignKey('delivery_fee_packages.id'), nullable=True)

    # Status (soft delete)
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Business(id={self.id}, name='{self.name}', active={self.is_active})>"
