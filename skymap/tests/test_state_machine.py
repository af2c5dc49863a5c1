"""
Delivery state machine tests.

Covers the transition table, role/identity rules and the persisted effect
of transitions.
"""

import pytest
from sqlalchemy import select

from skymap.app.core.actor import Actor
from skymap.app.core.exceptions import InsufficientPermissionsError, InvalidStateTransitionError
from skymap.app.domain.delivery.assignment import AssignmentCoordinator
from skymap.app.domain.delivery.state_machine import (
    TRANSITIONS,
    initial_state,
    validate_transition,
    visible_next,
)
from skymap.app.models.delivery import Delivery
from skymap.app.models.delivery_enums import DeliveryStatus, TERMINAL_STATUSES
from skymap.app.models.delivery_event import DeliveryEvent
from skymap.app.models.enums import UserRole

STAFF = Actor(user_id=1, role=UserRole.STAFF)
RIDER = Actor(user_id=7, role=UserRole.RIDER)
OTHER_RIDER = Actor(user_id=8, role=UserRole.RIDER)

ILLEGAL_PAIRS = [
    (current, target)
    for current in DeliveryStatus
    for target in DeliveryStatus
    if target not in TRANSITIONS[current]
]


def make_delivery(status: DeliveryStatus, rider_id=None) -> Delivery:
    return Delivery(id=42, business_id=1, status=status, assigned_rider_id=rider_id, created_by=1)


@pytest.mark.parametrize("current,target", ILLEGAL_PAIRS)
def test_pairs_outside_table_are_rejected(current, target):
    delivery = make_delivery(current, rider_id=RIDER.user_id)

    with pytest.raises(InvalidStateTransitionError) as exc_info:
        validate_transition(delivery, target, STAFF)

    assert exc_info.value.current == current.value
    assert exc_info.value.target == target.value
    assert exc_info.value.status_code == 400


def test_rider_sees_no_moves_from_pending_confirmation():
    """A rider asking for PICKED_UP on a pending delivery gets an empty allowed set."""
    delivery = make_delivery(DeliveryStatus.PENDING_CONFIRMATION, rider_id=RIDER.user_id)

    with pytest.raises(InvalidStateTransitionError) as exc_info:
        validate_transition(delivery, DeliveryStatus.PICKED_UP, RIDER)

    assert exc_info.value.allowed == []
    assert "Allowed transitions: none" in exc_info.value.message


def test_staff_sees_confirm_and_reject_from_pending():
    delivery = make_delivery(DeliveryStatus.PENDING_CONFIRMATION, rider_id=RIDER.user_id)

    with pytest.raises(InvalidStateTransitionError) as exc_info:
        validate_transition(delivery, DeliveryStatus.DELIVERED, STAFF)

    assert exc_info.value.allowed == ["ASSIGNED", "REJECTED"]


def test_rider_cannot_resolve_pending_confirmation():
    delivery = make_delivery(DeliveryStatus.PENDING_CONFIRMATION, rider_id=RIDER.user_id)

    with pytest.raises(InsufficientPermissionsError):
        validate_transition(delivery, DeliveryStatus.ASSIGNED, RIDER)


def test_only_assigned_rider_progresses_delivery():
    delivery = make_delivery(DeliveryStatus.ASSIGNED, rider_id=RIDER.user_id)

    validate_transition(delivery, DeliveryStatus.PICKED_UP, RIDER)

    with pytest.raises(InsufficientPermissionsError):
        validate_transition(delivery, DeliveryStatus.PICKED_UP, OTHER_RIDER)


def test_staff_cannot_progress_rider_statuses():
    delivery = make_delivery(DeliveryStatus.IN_TRANSIT, rider_id=RIDER.user_id)

    with pytest.raises(InsufficientPermissionsError):
        validate_transition(delivery, DeliveryStatus.DELIVERED, STAFF)


def test_terminal_statuses_have_no_exits():
    for status in TERMINAL_STATUSES:
        assert status.is_terminal
        assert TRANSITIONS[status] == frozenset()
        assert visible_next(status, UserRole.ADMIN) == []
    assert not DeliveryStatus.IN_TRANSIT.is_terminal


def test_initial_state_by_creator_role():
    assert initial_state(RIDER) == (DeliveryStatus.PENDING_CONFIRMATION, RIDER.user_id)
    assert initial_state(STAFF) == (DeliveryStatus.CREATED, None)
    assert initial_state(Actor(user_id=2, role=UserRole.ADMIN)) == (DeliveryStatus.CREATED, None)
    assert initial_state(Actor(user_id=3, role=UserRole.BUSINESS, business_id=1)) == (DeliveryStatus.CREATED, None)


@pytest.mark.asyncio
async def test_invalid_transition_leaves_persisted_status(db_session, session_factory, business, actors, notifier):
    coordinator = AssignmentCoordinator(db_session, notifier)
    delivery = await coordinator.create(business.id, {
        "pickup_address": "A", "pickup_name": "B", "pickup_phone": "0700000000",
        "dropoff_address": "C", "dropoff_name": "D", "dropoff_phone": "0700000001",
    }, actors["rider"])
    delivery_id = delivery.id

    with pytest.raises(InvalidStateTransitionError):
        await coordinator.update_status(delivery_id, DeliveryStatus.DELIVERED, actors["rider"])

    async with session_factory() as fresh:
        stored = await fresh.get(Delivery, delivery_id)
        assert stored.status == DeliveryStatus.PENDING_CONFIRMATION

        events = (await fresh.execute(
            select(DeliveryEvent).where(DeliveryEvent.delivery_id == delivery_id)
        )).scalars().all()
        assert [e.status for e in events] == [DeliveryStatus.PENDING_CONFIRMATION]


@pytest.mark.asyncio
async def test_full_rider_flow_stamps_delivered_at(db_session, session_factory, business, users, actors, notifier):
    coordinator = AssignmentCoordinator(db_session, notifier)
    delivery = await coordinator.create(business.id, {
        "pickup_address": "A", "pickup_name": "B", "pickup_phone": "0700000000",
        "dropoff_address": "C", "dropoff_name": "D", "dropoff_phone": "0700000001",
    }, actors["staff"])
    await coordinator.assign(delivery.id, users["rider"].id, actors["staff"])

    for target in (DeliveryStatus.PICKED_UP, DeliveryStatus.IN_TRANSIT):
        await coordinator.update_status(delivery.id, target, actors["rider"])
        assert delivery.delivered_at is None

    await coordinator.update_status(delivery.id, DeliveryStatus.DELIVERED, actors["rider"], note="Left with reception")
    await notifier.drain()

    async with session_factory() as fresh:
        stored = await fresh.get(Delivery, delivery.id)
        assert stored.status == DeliveryStatus.DELIVERED
        assert stored.delivered_at is not None

        events = (await fresh.execute(
            select(DeliveryEvent)
            .where(DeliveryEvent.delivery_id == delivery.id)
            .order_by(DeliveryEvent.id)
        )).scalars().all()
        assert [e.status for e in events] == [
            DeliveryStatus.CREATED,
            DeliveryStatus.ASSIGNED,
            DeliveryStatus.PICKED_UP,
            DeliveryStatus.IN_TRANSIT,
            DeliveryStatus.DELIVERED,
        ]
        assert events[2].note == "Status updated to PICKED_UP"
        assert events[-1].note == "Left with reception"
        assert events[-1].actor_id == users["rider"].id
