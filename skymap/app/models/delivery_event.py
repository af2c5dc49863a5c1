"""
Delivery Event database model.

Append-only audit trail of delivery status transitions.
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Enum
from sqlalchemy.sql import func
from skymap.app.db.session import Base
from skymap.app.models.delivery_enums import DeliveryStatus


class DeliveryEvent(Base):
    """
    Delivery event model.

    One row per transition (creation included).
    NO updates or deletions allowed.
    """
    __tablename__ = "delivery_events"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    delivery_id = Column(Integer, ForeignKey('deliveries.id'), nullable=False, index=True)
    status = Column(Enum(DeliveryStatus), nullable=False)
    note = Column(String(500), nullable=True)

    # Who triggered the transition
    actor_id = Column(Integer, ForeignKey('users.id'), nullable=True)

    # Timestamps (Immutable - no updated_at)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<DeliveryEvent(id={self.id}, delivery_id={self.delivery_id}, status='{self.status.value}')>"
