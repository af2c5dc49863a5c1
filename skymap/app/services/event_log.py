"""
Delivery event log service.

Append-only trail of delivery status transitions. Events are added to the
caller's unit of work so the status write and its event commit together.
"""

from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from skymap.app.models.delivery_event import DeliveryEvent
from skymap.app.models.delivery_enums import DeliveryStatus


class EventNote:
    """Standard event notes."""
    CREATED_BY_RIDER = "Delivery created by rider - pending confirmation"
    CREATED_BY_STAFF = "Delivery created by staff"
    CREATED_BY_BUSINESS = "Delivery created by business"
    CONFIRMED = "Delivery confirmed by staff/admin"
    REJECTED = "Delivery rejected by staff/admin"

    @staticmethod
    def assigned(rider_name: str) -> str:
        return f"Assigned to rider {rider_name}"

    @staticmethod
    def status_updated(status: DeliveryStatus) -> str:
        return f"Status updated to {status.value}"


async def append_event(
    db: AsyncSession,
    delivery_id: int,
    status: DeliveryStatus,
    note: Optional[str] = None,
    actor_id: Optional[int] = None
) -> DeliveryEvent:
    """
    Append a transition event to the delivery's trail.

    Flushes but does not commit; the enclosing unit_of_work commits.

    Args:
        db: Database session
        delivery_id: Delivery the event belongs to
        status: Status the delivery moved into
        note: Human readable note
        actor_id: User who triggered the transition

    Returns:
        Created DeliveryEvent instance
    """
    event = DeliveryEvent(
        delivery_id=delivery_id,
        status=status,
        note=note,
        actor_id=actor_id
    )

    db.add(event)
    await db.flush()

    return event


async def get_delivery_events(
    db: AsyncSession,
    delivery_id: int,
    limit: int = 100
) -> list[DeliveryEvent]:
    """
    Retrieve the event trail of a delivery, oldest first.
    """
    query = (
        select(DeliveryEvent)
        .where(DeliveryEvent.delivery_id == delivery_id)
        .order_by(DeliveryEvent.created_at, DeliveryEvent.id)
        .limit(limit)
    )

    result = await db.execute(query)
    return list(result.scalars().all())
