"""
Delivery-related enumerations.
"""

import enum


class DeliveryStatus(str, enum.Enum):
    """
    Delivery status enumeration.

    Status flow:
        CREATED → ASSIGNED → PICKED_UP → IN_TRANSIT → DELIVERED
        PENDING_CONFIRMATION → ASSIGNED | REJECTED (rider-created deliveries)
        ASSIGNED, PICKED_UP, IN_TRANSIT → FAILED
    """
    CREATED = "CREATED"  # Created by staff/admin, awaiting rider assignment
    PENDING_CONFIRMATION = "PENDING_CONFIRMATION"  # Self-assigned by a rider, awaiting staff approval
    ASSIGNED = "ASSIGNED"  # Rider assigned, not yet collected
    PICKED_UP = "PICKED_UP"  # Package collected from pickup contact
    IN_TRANSIT = "IN_TRANSIT"  # On the way to dropoff
    DELIVERED = "DELIVERED"  # Handed over to dropoff contact
    FAILED = "FAILED"  # Could not be completed
    REJECTED = "REJECTED"  # Rider-created delivery refused by staff

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    DeliveryStatus.DELIVERED,
    DeliveryStatus.FAILED,
    DeliveryStatus.REJECTED,
})
