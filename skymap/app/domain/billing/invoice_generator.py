"""
Invoice Generator (Domain Logic).

Aggregates a business's charges over a billing period into a numbered
Invoice with one InvoiceItem per charge, backfilling charges for fee-bearing
deliveries that never got one.

The whole pipeline (backfill charges, invoice, items, billing stamps) runs in
one unit of work. A unique-constraint collision on the invoice number or a
backfilled charge replays the pipeline once more.
"""

import logging
import random
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import select, update, exists
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from skymap.app.core.actor import Actor
from skymap.app.core.config import settings
from skymap.app.core.exceptions import (
    ConflictError,
    NoBillableItemsError,
    NumberGenerationExhaustedError,
    ResourceNotFoundError,
    ValidationError,
)
from skymap.app.core.guards import Permission, enforce
from skymap.app.db.session import unit_of_work
from skymap.app.domain.billing.charge_ledger import ChargeDescription, ChargeLedger
from skymap.app.models.billing_enums import INVOICE_NUMBER_PREFIXES, InvoiceStatus, InvoiceType
from skymap.app.models.business import Business
from skymap.app.models.charge import Charge
from skymap.app.models.delivery import Delivery
from skymap.app.models.invoice import Invoice
from skymap.app.models.invoice_item import InvoiceItem

logger = logging.getLogger("skymap.billing")

DEFAULT_ITEM_DESCRIPTION = "Delivery charge"

# Full generation cycles when the storage backstop reports a collision
GENERATION_CYCLES = 2

# Unique constraints a replayed cycle can resolve (sqlite and postgres spellings)
RETRYABLE_CONSTRAINTS = (
    "invoices.invoice_number",
    "ix_invoices_invoice_number",
    "charges.delivery_id",
    "ix_charges_delivery_id",
)


def billing_window(period_start: date, period_end: date) -> Tuple[datetime, datetime]:
    """Inclusive UTC bounds covering both calendar days entirely."""
    return (
        datetime.combine(period_start, time.min, tzinfo=timezone.utc),
        datetime.combine(period_end, time.max, tzinfo=timezone.utc),
    )


def is_retryable_collision(exc: IntegrityError) -> bool:
    """True for invoice number or charge-per-delivery unique violations only."""
    message = str(exc.orig)
    return any(name in message for name in RETRYABLE_CONSTRAINTS)


class InvoiceGenerator:

    def __init__(self, db: AsyncSession):
        self.db = db
        self.ledger = ChargeLedger(db)

    async def generate(
        self,
        business_id: int,
        period_start: date,
        period_end: date,
        invoice_type: InvoiceType,
        actor: Actor,
        due_date: Optional[date] = None,
        notes: Optional[str] = None
    ) -> Invoice:
        """
        Generate an invoice for a business over [period_start, period_end].

        Flow:
        1. Existing charges in the period (billed ones excluded when double billing is prevented)
        2. Fee-bearing deliveries in the period without a charge
        3. Backfill a charge for each
        4. Billable set = 1 + 3, empty -> NoBillableItemsError
        5. Total = Decimal sum of charge amounts
        6. Unique invoice number (check and regenerate)
        7. Insert invoice
        8. One item per billable charge
        9. Final invoices stamp their charges as billed

        Raises:
            InsufficientPermissionsError: Actor lacks invoices.create
            ValidationError: period_start after period_end
            ResourceNotFoundError: Unknown business
            NoBillableItemsError: Nothing to bill in the period
            NumberGenerationExhaustedError: No unique number could be committed
            ConflictError: A charge was billed concurrently
        """
        enforce(actor, Permission.INVOICES_CREATE)

        if period_start > period_end:
            raise ValidationError(
                "start_date must be on or before end_date",
                details={"start_date": period_start.isoformat(), "end_date": period_end.isoformat()}
            )

        business = await self.db.get(Business, business_id)
        if not business:
            raise ResourceNotFoundError("Business", business_id)

        enforce(actor, Permission.INVOICES_CREATE, business, "business")

        last_error = None
        for cycle in range(1, GENERATION_CYCLES + 1):
            try:
                async with unit_of_work(self.db):
                    invoice = await self._generate_once(
                        business_id, period_start, period_end, invoice_type, actor, due_date, notes
                    )
            except IntegrityError as exc:
                if not is_retryable_collision(exc):
                    raise
                last_error = exc
                logger.warning(
                    "Invoice generation cycle %s for business %s hit a unique constraint, retrying",
                    cycle, business_id
                )
                continue

            logger.info(
                "Generated %s %s for business %s: %s items, total %s",
                invoice_type.value, invoice.invoice_number, business_id,
                len(invoice.items), invoice.total_amount
            )
            return invoice

        raise NumberGenerationExhaustedError(GENERATION_CYCLES) from last_error

    async def get_invoice(self, invoice_id: int, actor: Actor) -> Invoice:
        """
        Fetch an invoice with its items.

        Raises:
            ResourceNotFoundError: Unknown invoice
            InsufficientPermissionsError: Actor may not view it
        """
        enforce(actor, Permission.INVOICES_VIEW)

        invoice = await self.db.get(Invoice, invoice_id)
        if not invoice:
            raise ResourceNotFoundError("Invoice", invoice_id)

        enforce(actor, Permission.INVOICES_VIEW, invoice, "invoice")
        return invoice

    async def _generate_once(
        self,
        business_id: int,
        period_start: date,
        period_end: date,
        invoice_type: InvoiceType,
        actor: Actor,
        due_date: Optional[date],
        notes: Optional[str]
    ) -> Invoice:
        window_start, window_end = billing_window(period_start, period_end)

        # 1. Existing charges
        charges = await self._fetch_charges(business_id, window_start, window_end)

        # 2-3. Backfill deliveries that were never charged
        for delivery in await self._fetch_unbilled_deliveries(business_id, window_start, window_end):
            charge = await self.ledger.create_charge_if_fee_positive(
                delivery, ChargeDescription.backfill(delivery)
            )
            if charge is not None:
                charges.append(charge)

        # 4. Billable set
        if not charges:
            raise NoBillableItemsError(business_id)

        # 5. Total
        total_amount = sum((charge.amount for charge in charges), Decimal("0"))

        # 6-7. Invoice
        invoice = Invoice(
            business_id=business_id,
            invoice_number=await self._next_invoice_number(invoice_type),
            period_start=period_start,
            period_end=period_end,
            total_amount=total_amount,
            status=InvoiceStatus.PROFORMA if invoice_type == InvoiceType.PROFORMA else InvoiceStatus.DRAFT,
            invoice_type=invoice_type,
            due_date=due_date,
            notes=notes,
            created_by=actor.user_id,
            items=[],
        )
        self.db.add(invoice)
        await self.db.flush()

        # 8. Items
        invoice.items.extend(self._build_items(charges))
        await self.db.flush()

        # 9. Billing stamps
        if invoice_type == InvoiceType.INVOICE and settings.prevent_double_billing:
            await self._mark_billed(invoice, charges)

        await self.db.refresh(invoice)
        return invoice

    async def _fetch_charges(
        self,
        business_id: int,
        window_start: datetime,
        window_end: datetime
    ) -> List[Charge]:
        query = select(Charge).where(
            Charge.business_id == business_id,
            Charge.created_at >= window_start,
            Charge.created_at <= window_end,
        )
        if settings.prevent_double_billing:
            query = query.where(Charge.billed_at.is_(None))

        query = query.order_by(Charge.created_at, Charge.id).execution_options(populate_existing=True)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def _fetch_unbilled_deliveries(
        self,
        business_id: int,
        window_start: datetime,
        window_end: datetime
    ) -> List[Delivery]:
        has_charge = exists().where(Charge.delivery_id == Delivery.id)
        query = select(Delivery).where(
            Delivery.business_id == business_id,
            Delivery.delivery_fee > 0,
            Delivery.created_at >= window_start,
            Delivery.created_at <= window_end,
            ~has_charge,
        ).order_by(Delivery.created_at, Delivery.id)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def _next_invoice_number(self, invoice_type: InvoiceType) -> str:
        """
        Generate `<PREFIX>-<yyyymmdd>-<4 digits>` not yet used by any invoice.

        Raises:
            NumberGenerationExhaustedError: Every attempt collided
        """
        prefix = INVOICE_NUMBER_PREFIXES[invoice_type]
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d")
        max_attempts = settings.invoice_number_max_attempts

        for attempt in range(1, max_attempts + 1):
            candidate = f"{prefix}-{stamp}-{random.randint(0, 9999):04d}"
            taken = await self.db.scalar(
                select(Invoice.id).where(Invoice.invoice_number == candidate)
            )
            if taken is None:
                return candidate
            logger.info("Invoice number %s taken (attempt %s/%s)", candidate, attempt, max_attempts)

        raise NumberGenerationExhaustedError(max_attempts)

    def _build_items(self, charges: List[Charge]) -> List[InvoiceItem]:
        return [
            InvoiceItem(
                delivery_id=charge.delivery_id,
                charge_id=charge.id,
                amount=charge.amount,
                description=charge.description or DEFAULT_ITEM_DESCRIPTION,
            )
            for charge in charges
        ]

    async def _mark_billed(self, invoice: Invoice, charges: List[Charge]) -> None:
        charge_ids = [charge.id for charge in charges]
        result = await self.db.execute(
            update(Charge)
            .where(Charge.id.in_(charge_ids), Charge.billed_at.is_(None))
            .values(billed_at=datetime.now(timezone.utc), invoice_id=invoice.id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != len(charge_ids):
            raise ConflictError(
                "One or more charges were billed by a concurrent invoice",
                details={"expected": len(charge_ids), "stamped": result.rowcount}
            )
