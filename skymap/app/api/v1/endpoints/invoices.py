"""
Invoice API Endpoints.

Invoice and proforma generation over a billing period.
"""

from fastapi import APIRouter, Depends, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from skymap.app.core.actor import Actor
from skymap.app.core.dependencies import get_current_user
from skymap.app.core.guards import Permission, require_permission
from skymap.app.db.session import get_db
from skymap.app.domain.billing.invoice_generator import InvoiceGenerator
from skymap.app.models.billing_enums import InvoiceType
from skymap.app.schemas.invoice import InvoiceCreate, InvoiceResponse, ProformaInvoiceCreate

router = APIRouter(prefix="/invoices", tags=["Invoices"])


@router.post("", response_model=InvoiceResponse, status_code=status.HTTP_201_CREATED)
async def create_invoice(
    invoice_data: InvoiceCreate,
    actor: Actor = Depends(require_permission(Permission.INVOICES_CREATE)),
    db: AsyncSession = Depends(get_db)
):
    """
    Generate an invoice for a business over [start_date, end_date].

    Deliveries with a fee but no charge are backfilled. Final invoices mark
    their charges billed so they are never invoiced twice.
    """
    return await InvoiceGenerator(db).generate(
        business_id=invoice_data.business_id,
        period_start=invoice_data.start_date,
        period_end=invoice_data.end_date,
        invoice_type=invoice_data.invoice_type,
        actor=actor,
        due_date=invoice_data.due_date,
        notes=invoice_data.notes,
    )


@router.post("/proforma", response_model=InvoiceResponse, status_code=status.HTTP_201_CREATED)
async def create_proforma_invoice(
    invoice_data: ProformaInvoiceCreate,
    actor: Actor = Depends(require_permission(Permission.INVOICES_CREATE)),
    db: AsyncSession = Depends(get_db)
):
    """Generate a proforma invoice. Charges are not marked billed."""
    return await InvoiceGenerator(db).generate(
        business_id=invoice_data.business_id,
        period_start=invoice_data.start_date,
        period_end=invoice_data.end_date,
        invoice_type=InvoiceType.PROFORMA,
        actor=actor,
        due_date=invoice_data.due_date,
        notes=invoice_data.notes,
    )


@router.get("/{invoice_id}", response_model=InvoiceResponse)
async def get_invoice(
    invoice_id: int = Path(..., description="Invoice ID"),
    actor: Actor = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Get an invoice with its items."""
    return await InvoiceGenerator(db).get_invoice(invoice_id, actor)
