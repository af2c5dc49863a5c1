"""
Delivery State Machine.

Single source of truth for legal delivery status transitions and who may
trigger them. Every endpoint and coordinator goes through `transition`.
"""

from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from skymap.app.core.actor import Actor
from skymap.app.core.exceptions import (
    ConflictError,
    InsufficientPermissionsError,
    InvalidStateTransitionError,
)
from skymap.app.core.guards import Permission, can
from skymap.app.db.repository import Repository
from skymap.app.models.delivery import Delivery
from skymap.app.models.delivery_enums import DeliveryStatus
from skymap.app.models.enums import UserRole
from skymap.app.services.event_log import append_event

STAFF_ROLES = frozenset({UserRole.ADMIN, UserRole.STAFF})
RIDER_ROLES = frozenset({UserRole.RIDER})

# current -> allowed next
TRANSITIONS: Dict[DeliveryStatus, FrozenSet[DeliveryStatus]] = {
    DeliveryStatus.CREATED: frozenset({DeliveryStatus.ASSIGNED}),
    DeliveryStatus.PENDING_CONFIRMATION: frozenset({DeliveryStatus.ASSIGNED, DeliveryStatus.REJECTED}),
    DeliveryStatus.ASSIGNED: frozenset({DeliveryStatus.PICKED_UP, DeliveryStatus.FAILED}),
    DeliveryStatus.PICKED_UP: frozenset({DeliveryStatus.IN_TRANSIT, DeliveryStatus.FAILED}),
    DeliveryStatus.IN_TRANSIT: frozenset({DeliveryStatus.DELIVERED, DeliveryStatus.FAILED}),
    DeliveryStatus.DELIVERED: frozenset(),
    DeliveryStatus.FAILED: frozenset(),
    DeliveryStatus.REJECTED: frozenset(),
}

# current -> roles that may move a delivery out of it
TRIGGER_ROLES: Dict[DeliveryStatus, FrozenSet[UserRole]] = {
    DeliveryStatus.CREATED: STAFF_ROLES,
    DeliveryStatus.PENDING_CONFIRMATION: STAFF_ROLES,
    DeliveryStatus.ASSIGNED: RIDER_ROLES,
    DeliveryStatus.PICKED_UP: RIDER_ROLES,
    DeliveryStatus.IN_TRANSIT: RIDER_ROLES,
    DeliveryStatus.DELIVERED: frozenset(),
    DeliveryStatus.FAILED: frozenset(),
    DeliveryStatus.REJECTED: frozenset(),
}


def _ordered(statuses) -> List[str]:
    return [s.value for s in DeliveryStatus if s in statuses]


def visible_next(current: DeliveryStatus, role: UserRole) -> List[str]:
    """Statuses reachable from `current` by an actor of `role`."""
    if role not in TRIGGER_ROLES[current]:
        return []
    return _ordered(TRANSITIONS[current])


def initial_state(actor: Actor) -> Tuple[DeliveryStatus, Optional[int]]:
    """
    Initial (status, assigned_rider_id) for a delivery created by `actor`.

    Riders self-assign and wait for staff confirmation; everybody else
    creates an unassigned delivery.
    """
    if actor.role == UserRole.RIDER:
        return DeliveryStatus.PENDING_CONFIRMATION, actor.user_id
    return DeliveryStatus.CREATED, None


def validate_transition(delivery: Delivery, target: DeliveryStatus, actor: Actor) -> None:
    """
    Check a transition without touching storage.

    Raises:
        InvalidStateTransitionError: Pair not in the transition table
        InsufficientPermissionsError: Wrong role, or rider is not the assigned rider
    """
    current = delivery.status

    if target not in TRANSITIONS[current]:
        raise InvalidStateTransitionError(
            current=current.value,
            target=target.value,
            allowed=visible_next(current, actor.role),
        )

    if actor.role not in TRIGGER_ROLES[current]:
        raise InsufficientPermissionsError(
            message=f"Role {actor.role.value} cannot move a delivery out of {current.value}",
            details={"current": current.value, "target": target.value}
        )

    if actor.role == UserRole.RIDER and not can(actor, Permission.DELIVERIES_UPDATE_STATUS, delivery):
        raise InsufficientPermissionsError(
            message="Only the assigned rider can update this delivery",
            details={"delivery_id": delivery.id}
        )


class DeliveryStateMachine:
    """
    Applies validated transitions with a compare-and-swap on status.

    Writes are flushed into the caller's unit of work; the status write and
    its DeliveryEvent commit together.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.deliveries = Repository(db, Delivery)

    async def transition(
        self,
        delivery: Delivery,
        target: DeliveryStatus,
        actor: Actor,
        note: Optional[str] = None,
        extra_values: Optional[Dict[str, Any]] = None,
    ) -> Delivery:
        """
        Move `delivery` to `target` on behalf of `actor`.

        Args:
            delivery: Delivery as read in this unit of work
            target: Requested status
            actor: Request actor
            note: Event note
            extra_values: Additional columns written with the status (e.g. rider)

        Returns:
            The refreshed delivery

        Raises:
            InvalidStateTransitionError, InsufficientPermissionsError: see validate_transition
            ConflictError: Status changed since it was read
        """
        validate_transition(delivery, target, actor)

        current = delivery.status
        values = dict(extra_values or {})
        values["status"] = target
        if target == DeliveryStatus.DELIVERED:
            values["delivered_at"] = datetime.now(timezone.utc)

        won = await self.deliveries.conditional_update(
            delivery.id,
            expected={"status": current},
            values=values,
        )
        if not won:
            raise ConflictError(
                "Delivery status changed concurrently",
                details={"delivery_id": delivery.id, "expected": current.value, "target": target.value}
            )

        await append_event(
            self.db,
            delivery_id=delivery.id,
            status=target,
            note=note,
            actor_id=actor.user_id,
        )

        return delivery
