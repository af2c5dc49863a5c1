"""
Invoice Pydantic schemas.
"""

from pydantic import BaseModel, Field
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List
from skymap.app.models.billing_enums import InvoiceStatus, InvoiceType


class InvoiceCreate(BaseModel):
    """Schema for generating an invoice."""
    business_id: int
    start_date: date
    end_date: date
    invoice_type: InvoiceType = InvoiceType.INVOICE
    due_date: Optional[date] = None
    notes: Optional[str] = Field(None, max_length=2000)


class ProformaInvoiceCreate(BaseModel):
    """Schema for generating a proforma invoice."""
    business_id: int
    start_date: date
    end_date: date
    due_date: Optional[date] = None
    notes: Optional[str] = Field(None, max_length=2000)


class InvoiceItemResponse(BaseModel):
    id: int
    delivery_id: Optional[int]
    charge_id: Optional[int]
    amount: Decimal
    description: str

    class Config:
        from_attributes = True


class InvoiceResponse(BaseModel):
    """Schema for invoice response, items included."""
    id: int
    business_id: int
    invoice_number: str
    period_start: date
    period_end: date
    total_amount: Decimal
    status: InvoiceStatus
    invoice_type: InvoiceType
    due_date: Optional[date]
    notes: Optional[str]
    created_by: int
    generated_at: datetime
    items: List[InvoiceItemResponse]

    class Config:
        from_attributes = True
