"""
Assignment Coordinator (Domain Logic).

Orchestrates delivery creation, rider assignment, staff confirmation and
rejection, rider status updates and fee corrections. Every mutation runs in
one unit of work together with its DeliveryEvent and Charge writes;
notifications are dispatched only after the commit.
"""

import logging
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from skymap.app.core.actor import Actor
from skymap.app.core.config import settings
from skymap.app.core.exceptions import (
    ConflictError,
    InsufficientPermissionsError,
    InvalidStateTransitionError,
    ResourceNotFoundError,
    ValidationError,
)
from skymap.app.core.guards import Permission, enforce
from skymap.app.db.repository import Repository
from skymap.app.db.session import unit_of_work
from skymap.app.domain.billing.charge_ledger import ChargeDescription, ChargeLedger
from skymap.app.domain.billing.fee_resolver import FeeResolver
from skymap.app.domain.delivery.state_machine import DeliveryStateMachine, initial_state
from skymap.app.models.business import Business
from skymap.app.models.delivery import Delivery
from skymap.app.models.delivery_enums import DeliveryStatus
from skymap.app.models.delivery_event import DeliveryEvent
from skymap.app.models.enums import UserRole
from skymap.app.models.user import User
from skymap.app.services.event_log import EventNote, append_event, get_delivery_events
from skymap.app.services.notification_service import NotificationDispatcher, NotificationTemplates

logger = logging.getLogger("skymap.deliveries")


class AssignmentCoordinator:

    def __init__(self, db: AsyncSession, notifier: NotificationDispatcher):
        self.db = db
        self.notifier = notifier
        self.deliveries = Repository(db, Delivery)
        self.state_machine = DeliveryStateMachine(db)
        self.ledger = ChargeLedger(db)

    async def _get_delivery(self, delivery_id: int) -> Delivery:
        delivery = await self.deliveries.get(delivery_id)
        if not delivery:
            raise ResourceNotFoundError("Delivery", delivery_id)
        return delivery

    async def create(self, business_id: int, fields: Dict[str, Any], actor: Actor) -> Delivery:
        """
        Create a delivery for a business.

        Status depends on the creator: riders self-assign and wait for
        confirmation, everybody else creates an unassigned delivery.

        Args:
            business_id: Owning business
            fields: Pickup/dropoff/package fields, optional delivery_fee and created_at
            actor: Request actor

        Raises:
            InsufficientPermissionsError: Missing deliveries.create, or foreign business
            ResourceNotFoundError: Unknown business
            ValidationError: Inactive business
        """
        enforce(actor, Permission.DELIVERIES_CREATE)

        business = await self.db.get(Business, business_id)
        if not business:
            raise ResourceNotFoundError("Business", business_id)

        enforce(actor, Permission.DELIVERIES_CREATE, business, "business")

        if not business.is_active:
            raise ValidationError("Business is not active", details={"business_id": business_id})

        values = dict(fields)
        provided_fee = values.pop("delivery_fee", None)
        created_at = values.pop("created_at", None) or datetime.now(timezone.utc)

        fee = await FeeResolver.resolve_delivery_fee(self.db, business, provided_fee)
        status, rider_id = initial_state(actor)

        if actor.role == UserRole.RIDER:
            note, charge_description = EventNote.CREATED_BY_RIDER, ChargeDescription.CREATED_BY_RIDER
        elif actor.role == UserRole.BUSINESS:
            note, charge_description = EventNote.CREATED_BY_BUSINESS, ChargeDescription.CREATED_BY_STAFF
        else:
            note, charge_description = EventNote.CREATED_BY_STAFF, ChargeDescription.CREATED_BY_STAFF

        async with unit_of_work(self.db):
            delivery = await self.deliveries.insert(
                business_id=business_id,
                status=status,
                assigned_rider_id=rider_id,
                delivery_fee=fee,
                created_by=actor.user_id,
                created_at=created_at,
                **values
            )
            await self.ledger.create_charge_if_fee_positive(delivery, charge_description)
            await append_event(self.db, delivery.id, status, note, actor.user_id)

        logger.info(
            "Delivery %s created by %s %s with status %s",
            delivery.id, actor.role.value, actor.user_id, status.value
        )

        if actor.role == UserRole.RIDER:
            self.notifier.dispatch_sms(
                settings.operations_phone,
                NotificationTemplates.rider_self_assigned(delivery.id),
                task_name="rider_self_assigned"
            )

        return delivery

    async def assign(self, delivery_id: int, rider_id: int, actor: Actor) -> Delivery:
        """
        Assign a rider to a CREATED delivery.

        The write is a single compare-and-swap on status, so of two
        concurrent assigners exactly one wins.

        Raises:
            ResourceNotFoundError: Unknown delivery or rider
            ValidationError: User is not an active rider
            ConflictError: Delivery is no longer CREATED
        """
        enforce(actor, Permission.DELIVERIES_ASSIGN)

        delivery = await self._get_delivery(delivery_id)

        rider = await self.db.get(User, rider_id)
        if not rider:
            raise ResourceNotFoundError("Rider", rider_id)

        if rider.role != UserRole.RIDER:
            raise ValidationError("User is not a rider", details={"rider_id": rider_id})

        if not rider.is_active:
            raise ValidationError("Rider is not active", details={"rider_id": rider_id})

        async with unit_of_work(self.db):
            won = await self.deliveries.conditional_update(
                delivery_id,
                expected={"status": DeliveryStatus.CREATED},
                values={"status": DeliveryStatus.ASSIGNED, "assigned_rider_id": rider.id},
            )
            if not won:
                raise ConflictError(
                    "already assigned or not assignable",
                    details={"delivery_id": delivery_id}
                )

            await append_event(
                self.db, delivery_id, DeliveryStatus.ASSIGNED,
                EventNote.assigned(rider.name), actor.user_id
            )

        logger.info("Delivery %s assigned to rider %s by %s", delivery_id, rider.id, actor.user_id)

        self.notifier.dispatch_sms(
            rider.phone,
            NotificationTemplates.rider_assigned(delivery_id),
            task_name="rider_assigned"
        )

        return delivery

    async def _get_pending(self, delivery_id: int, target: DeliveryStatus) -> Delivery:
        delivery = await self._get_delivery(delivery_id)
        if delivery.status != DeliveryStatus.PENDING_CONFIRMATION:
            # Confirm and reject only ever leave PENDING_CONFIRMATION
            raise InvalidStateTransitionError(
                current=delivery.status.value,
                target=target.value,
                allowed=[],
            )
        return delivery

    async def confirm(self, delivery_id: int, actor: Actor) -> Delivery:
        """Approve a rider-created delivery. The self-assigned rider is kept."""
        enforce(actor, Permission.DELIVERIES_ASSIGN)

        delivery = await self._get_pending(delivery_id, DeliveryStatus.ASSIGNED)

        async with unit_of_work(self.db):
            await self.state_machine.transition(
                delivery, DeliveryStatus.ASSIGNED, actor, EventNote.CONFIRMED
            )

        return delivery

    async def reject(self, delivery_id: int, reason: Optional[str], actor: Actor) -> Delivery:
        """Refuse a rider-created delivery and release the rider."""
        enforce(actor, Permission.DELIVERIES_ASSIGN)

        delivery = await self._get_pending(delivery_id, DeliveryStatus.REJECTED)

        async with unit_of_work(self.db):
            await self.state_machine.transition(
                delivery, DeliveryStatus.REJECTED, actor,
                reason or EventNote.REJECTED,
                extra_values={"assigned_rider_id": None}
            )

        return delivery

    async def update_status(
        self,
        delivery_id: int,
        target: DeliveryStatus,
        actor: Actor,
        note: Optional[str] = None
    ) -> Delivery:
        """
        Rider progress update; thin wrapper over the state machine.

        Staff move deliveries through assign, confirm and reject only.

        Raises:
            InsufficientPermissionsError: Actor is not a rider, or not the assigned rider
        """
        enforce(actor, Permission.DELIVERIES_UPDATE_STATUS)

        if actor.role != UserRole.RIDER:
            raise InsufficientPermissionsError(
                message="Only the assigned rider can update delivery status",
                details={"action": Permission.DELIVERIES_UPDATE_STATUS, "role": actor.role.value}
            )

        delivery = await self._get_delivery(delivery_id)

        async with unit_of_work(self.db):
            await self.state_machine.transition(
                delivery, target, actor, note or EventNote.status_updated(target)
            )

        return delivery

    async def update_fee(self, delivery_id: int, new_fee: Decimal, actor: Actor) -> Delivery:
        """
        Correct a delivery's fee and its Charge together.

        Raises:
            ValidationError: Negative fee
            ConflictError: Charge already billed
        """
        enforce(actor, Permission.DELIVERIES_UPDATE)

        if new_fee is None or new_fee < 0:
            raise ValidationError(
                "Delivery fee must be a non-negative number",
                details={"delivery_fee": str(new_fee)}
            )

        delivery = await self._get_delivery(delivery_id)

        async with unit_of_work(self.db):
            await self.deliveries.update(delivery, delivery_fee=new_fee)
            await self.ledger.set_delivery_fee(delivery, new_fee)

        logger.info("Delivery %s fee set to %s by %s", delivery_id, new_fee, actor.user_id)
        return delivery

    async def get_delivery(self, delivery_id: int, actor: Actor) -> Delivery:
        delivery = await self._get_delivery(delivery_id)
        enforce(actor, Permission.DELIVERIES_VIEW, delivery, "delivery")
        return delivery

    async def get_events(self, delivery_id: int, actor: Actor) -> List[DeliveryEvent]:
        delivery = await self.get_delivery(delivery_id, actor)
        return await get_delivery_events(self.db, delivery.id)

    async def list_deliveries(
        self,
        actor: Actor,
        status: Optional[DeliveryStatus] = None,
        business_id: Optional[int] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[Delivery]:
        """
        List deliveries visible to the actor, newest first.

        Riders only see deliveries assigned to them, business accounts only
        their own business.
        """
        enforce(actor, Permission.DELIVERIES_VIEW)

        filters: Dict[str, Any] = {}
        if status is not None:
            filters["status"] = status
        if business_id is not None:
            filters["business_id"] = business_id

        if actor.role == UserRole.RIDER:
            filters["assigned_rider_id"] = actor.user_id
        elif actor.role == UserRole.BUSINESS:
            filters["business_id"] = actor.business_id

        where = []
        if start_date is not None:
            where.append(Delivery.created_at >= datetime.combine(start_date, time.min, tzinfo=timezone.utc))
        if end_date is not None:
            where.append(Delivery.created_at <= datetime.combine(end_date, time.max, tzinfo=timezone.utc))

        return await self.deliveries.select(
            filters=filters,
            where=where,
            order_by=[Delivery.created_at.desc(), Delivery.id.desc()],
            offset=offset,
            limit=limit,
        )
