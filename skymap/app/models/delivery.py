"""
Delivery database model.

One courier job from pickup to dropoff, tracked through a status lifecycle.
"""

from sqlalchemy import Column, Integer, String, Float, Numeric, DateTime, ForeignKey, Enum
from sqlalchemy.sql import func
from skymap.app.db.session import Base
from skymap.app.models.delivery_enums import DeliveryStatus


class Delivery(Base):
    """
    Delivery model.

    Owned by a business. Status and rider assignment change only through
    the delivery state machine and the assignment coordinator.
    Never hard-deleted by the core.
    """
    __tablename__ = "deliveries"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Ownership
    business_id = Column(Integer, ForeignKey('businesses.id'), nullable=False, index=True)

    # Pickup
    pickup_address = Column(String(500), nullable=False)
    pickup_name = Column(String(200), nullable=False)
    pickup_phone = Column(String(30), nullable=False)
    pickup_latitude = Column(Float, nullable=True)
    pickup_longitude = Column(Float, nullable=True)

    # Dropoff
    dropoff_address = Column(String(500), nullable=False)
    dropoff_name = Column(String(200), nullable=False)
    dropoff_phone = Column(String(30), nullable=False)
    dropoff_latitude = Column(Float, nullable=True)
    dropoff_longitude = Column(Float, nullable=True)

    package_description = Column(String(500), nullable=True)

    # Lifecycle
    status = Column(Enum(DeliveryStatus), default=DeliveryStatus.CREATED, nullable=False, index=True)
    assigned_rider_id = Column(Integer, ForeignKey('users.id'), nullable=True, index=True)

    # Billing
    delivery_fee = Column(Numeric(12, 2), nullable=True)

    # Audit
    created_by = Column(Integer, ForeignKey('users.id'), nullable=False)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    delivered_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<Delivery(id={self.id}, business_id={self.business_id}, status='{self.status.value}')>"
