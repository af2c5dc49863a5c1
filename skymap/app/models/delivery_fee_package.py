"""
Delivery fee package database model.

Defines flat per-delivery pricing that businesses subscribe to.
"""

from sqlalchemy import Column, Integer, String, Numeric, DateTime, Boolean
from sqlalchemy.sql import func
from skymap.app.db.session import Base


class DeliveryFeePackage(Base):
    """
    Delivery fee package model.

    A business either points at a package or falls back to the one
    flagged is_default.
    """
    __tablename__ = "delivery_fee_packages"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    name = Column(String(100), nullable=False)
    fee_per_delivery = Column(Numeric(12, 2), nullable=False)

    is_default = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<DeliveryFeePackage(id={self.id}, name='{self.name}', fee={self.fee_per_delivery})>"
