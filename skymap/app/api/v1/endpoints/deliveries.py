"""
Delivery API Endpoints.

Creation, listing, rider assignment, staff confirmation/rejection,
rider status updates and fee corrections. Role rules are enforced by the
domain layer through the central capability check.
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Body, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from skymap.app.core.actor import Actor
from skymap.app.core.dependencies import get_current_user
from skymap.app.db.session import get_db
from skymap.app.domain.delivery.assignment import AssignmentCoordinator
from skymap.app.models.delivery_enums import DeliveryStatus
from skymap.app.schemas.delivery import (
    DeliveryAssign,
    DeliveryCreate,
    DeliveryEventResponse,
    DeliveryFeeUpdate,
    DeliveryListResponse,
    DeliveryReject,
    DeliveryResponse,
    DeliveryStatusUpdate,
)
from skymap.app.services.notification_service import NotificationDispatcher, get_notifier

router = APIRouter(prefix="/deliveries", tags=["Deliveries"])


def get_coordinator(
    db: AsyncSession = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notifier)
) -> AssignmentCoordinator:
    return AssignmentCoordinator(db, notifier)


@router.post("", response_model=DeliveryResponse, status_code=status.HTTP_201_CREATED)
async def create_delivery(
    delivery_data: DeliveryCreate,
    actor: Actor = Depends(get_current_user),
    coordinator: AssignmentCoordinator = Depends(get_coordinator)
):
    """
    Create a delivery.

    - STAFF/ADMIN/BUSINESS: status CREATED, no rider
    - RIDER: status PENDING_CONFIRMATION, self-assigned; operations are notified by SMS

    A Charge is created when the resolved fee is positive.
    """
    fields = delivery_data.model_dump(exclude={"business_id"}, exclude_none=True)
    return await coordinator.create(delivery_data.business_id, fields, actor)


@router.get("", response_model=DeliveryListResponse)
async def list_deliveries(
    status_filter: Optional[DeliveryStatus] = Query(None, alias="status"),
    business_id: Optional[int] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(get_current_user),
    coordinator: AssignmentCoordinator = Depends(get_coordinator)
):
    """
    List deliveries, newest first.

    Riders only see deliveries assigned to them; business accounts only their own.
    """
    deliveries = await coordinator.list_deliveries(
        actor,
        status=status_filter,
        business_id=business_id,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )
    return DeliveryListResponse(
        deliveries=[DeliveryResponse.model_validate(d) for d in deliveries],
        limit=limit,
        offset=offset,
    )


@router.get("/{delivery_id}", response_model=DeliveryResponse)
async def get_delivery(
    delivery_id: int = Path(..., description="Delivery ID"),
    actor: Actor = Depends(get_current_user),
    coordinator: AssignmentCoordinator = Depends(get_coordinator)
):
    """Get a single delivery."""
    return await coordinator.get_delivery(delivery_id, actor)


@router.get("/{delivery_id}/events", response_model=list[DeliveryEventResponse])
async def get_delivery_events(
    delivery_id: int = Path(..., description="Delivery ID"),
    actor: Actor = Depends(get_current_user),
    coordinator: AssignmentCoordinator = Depends(get_coordinator)
):
    """Status history of a delivery, oldest first."""
    return await coordinator.get_events(delivery_id, actor)


@router.put("/{delivery_id}/status", response_model=DeliveryResponse)
async def update_delivery_status(
    update: DeliveryStatusUpdate,
    delivery_id: int = Path(..., description="Delivery ID"),
    actor: Actor = Depends(get_current_user),
    coordinator: AssignmentCoordinator = Depends(get_coordinator)
):
    """
    Rider status update (assigned rider only).

    ASSIGNED → PICKED_UP → IN_TRANSIT → DELIVERED, or FAILED from any of them.
    """
    return await coordinator.update_status(delivery_id, update.status, actor, update.note)


@router.put("/{delivery_id}/assign", response_model=DeliveryResponse)
async def assign_rider(
    assignment: DeliveryAssign,
    delivery_id: int = Path(..., description="Delivery ID"),
    actor: Actor = Depends(get_current_user),
    coordinator: AssignmentCoordinator = Depends(get_coordinator)
):
    """
    Assign an active rider to a CREATED delivery (Staff/Admin only).

    Returns 409 when the delivery was already assigned or is not assignable.
    The rider is notified by SMS.
    """
    return await coordinator.assign(delivery_id, assignment.rider_id, actor)


@router.put("/{delivery_id}/confirm", response_model=DeliveryResponse)
async def confirm_delivery(
    delivery_id: int = Path(..., description="Delivery ID"),
    actor: Actor = Depends(get_current_user),
    coordinator: AssignmentCoordinator = Depends(get_coordinator)
):
    """Confirm a rider-created delivery (Staff/Admin only). The rider is kept."""
    return await coordinator.confirm(delivery_id, actor)


@router.delete("/{delivery_id}/confirm", response_model=DeliveryResponse)
async def reject_delivery(
    delivery_id: int = Path(..., description="Delivery ID"),
    rejection: Optional[DeliveryReject] = Body(None),
    actor: Actor = Depends(get_current_user),
    coordinator: AssignmentCoordinator = Depends(get_coordinator)
):
    """Reject a rider-created delivery (Staff/Admin only). The rider is released."""
    reason = rejection.reason if rejection else None
    return await coordinator.reject(delivery_id, reason, actor)


@router.put("/{delivery_id}", response_model=DeliveryResponse)
async def update_delivery_fee(
    fee_update: DeliveryFeeUpdate,
    delivery_id: int = Path(..., description="Delivery ID"),
    actor: Actor = Depends(get_current_user),
    coordinator: AssignmentCoordinator = Depends(get_coordinator)
):
    """
    Correct the delivery fee (Staff/Admin only).

    A positive fee creates or updates the Charge; zero removes it.
    Billed charges cannot be changed (409).
    """
    return await coordinator.update_fee(delivery_id, fee_update.delivery_fee, actor)
