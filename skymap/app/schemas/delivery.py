"""
Delivery Pydantic schemas.

Defines request and response models for the delivery lifecycle.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from skymap.app.models.delivery_enums import DeliveryStatus


class DeliveryCreate(BaseModel):
    """Schema for creating a delivery."""
    business_id: int

    pickup_address: str = Field(..., min_length=1, max_length=500)
    pickup_name: str = Field(..., min_length=1, max_length=200)
    pickup_phone: str = Field(..., min_length=1, max_length=30)
    pickup_latitude: Optional[float] = Field(None, ge=-90, le=90)
    pickup_longitude: Optional[float] = Field(None, ge=-180, le=180)

    dropoff_address: str = Field(..., min_length=1, max_length=500)
    dropoff_name: str = Field(..., min_length=1, max_length=200)
    dropoff_phone: str = Field(..., min_length=1, max_length=30)
    dropoff_latitude: Optional[float] = Field(None, ge=-90, le=90)
    dropoff_longitude: Optional[float] = Field(None, ge=-180, le=180)

    package_description: Optional[str] = Field(None, max_length=500)
    delivery_fee: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    created_at: Optional[datetime] = Field(None, description="Backdate the delivery (imports)")


class DeliveryStatusUpdate(BaseModel):
    """Schema for a rider status update."""
    status: DeliveryStatus
    note: Optional[str] = Field(None, max_length=500)


class DeliveryAssign(BaseModel):
    """Schema for assigning a rider."""
    rider_id: int


class DeliveryReject(BaseModel):
    """Schema for rejecting a rider-created delivery."""
    reason: Optional[str] = Field(None, max_length=500)


class DeliveryFeeUpdate(BaseModel):
    """Schema for correcting a delivery fee. Negative fees are rejected with 400."""
    delivery_fee: Decimal = Field(..., max_digits=12, decimal_places=2)


class DeliveryResponse(BaseModel):
    """Schema for delivery response."""
    id: int
    business_id: int

    pickup_address: str
    pickup_name: str
    pickup_phone: str
    pickup_latitude: Optional[float]
    pickup_longitude: Optional[float]

    dropoff_address: str
    dropoff_name: str
    dropoff_phone: str
    dropoff_latitude: Optional[float]
    dropoff_longitude: Optional[float]

    package_description: Optional[str]
    status: DeliveryStatus
    assigned_rider_id: Optional[int]
    delivery_fee: Optional[Decimal]
    created_by: int

    created_at: datetime
    updated_at: datetime
    delivered_at: Optional[datetime]

    class Config:
        from_attributes = True


class DeliveryListResponse(BaseModel):
    """Schema for paginated delivery list."""
    deliveries: List[DeliveryResponse]
    limit: int
    offset: int


class DeliveryEventResponse(BaseModel):
    """Schema for one event of the delivery trail."""
    id: int
    delivery_id: int
    status: DeliveryStatus
    note: Optional[str]
    actor_id: Optional[int]
    created_at: datetime

    class Config:
        from_attributes = True
