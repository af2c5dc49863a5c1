"""
Charge Ledger (Domain Logic).

Maintains at most one Charge per Delivery. The unique constraint on
charges.delivery_id is the guard; inserts use ON CONFLICT so a repeated or
concurrent call is a no-op instead of an error.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from skymap.app.core.exceptions import ConflictError, ValidationError
from skymap.app.db.repository import Repository
from skymap.app.db.session import upsert_insert
from skymap.app.models.charge import Charge
from skymap.app.models.delivery import Delivery

logger = logging.getLogger("skymap.billing")


class ChargeDescription:
    CREATED_BY_RIDER = "Delivery fee - Created by rider"
    CREATED_BY_STAFF = "Delivery fee - Created by staff"
    ADDED_BY_STAFF = "Delivery fee - Added by staff"
    UPDATED_BY_STAFF = "Delivery fee - Updated by staff"

    @staticmethod
    def backfill(delivery: Delivery) -> str:
        return f"Delivery fee - {delivery.dropoff_name}"


class ChargeLedger:
    """
    Charge writes for one unit of work.

    Never commits; callers wrap calls in unit_of_work.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.charges = Repository(db, Charge)

    async def get_for_delivery(self, delivery_id: int) -> Optional[Charge]:
        result = await self.db.execute(
            select(Charge)
            .where(Charge.delivery_id == delivery_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def create_charge_if_fee_positive(
        self,
        delivery: Delivery,
        description: str
    ) -> Optional[Charge]:
        """
        Create the delivery's Charge if its fee is positive and none exists.

        The charge is dated with the delivery's created_at so it falls in the
        delivery's billing period.

        Returns:
            The delivery's Charge (new or pre-existing), or None when the fee is not positive
        """
        fee = delivery.delivery_fee
        if fee is None or fee <= 0:
            return None

        insert = upsert_insert(self.db)
        stmt = insert(Charge).values(
            delivery_id=delivery.id,
            business_id=delivery.business_id,
            amount=fee,
            description=description,
            created_at=delivery.created_at or datetime.now(timezone.utc),
        ).on_conflict_do_nothing(index_elements=[Charge.delivery_id])

        result = await self.db.execute(stmt)
        if result.rowcount == 0:
            logger.info("Charge for delivery %s already exists, skipping", delivery.id)

        return await self.get_for_delivery(delivery.id)

    async def set_delivery_fee(self, delivery: Delivery, new_fee: Decimal) -> Optional[Charge]:
        """
        Correct the fee of a delivery after creation.

        new_fee > 0 upserts the Charge amount; new_fee == 0 deletes it.

        Raises:
            ValidationError: Negative fee
            ConflictError: Charge already billed on a final invoice
        """
        if new_fee is None or new_fee < 0:
            raise ValidationError(
                "Delivery fee must be a non-negative number",
                details={"delivery_fee": str(new_fee)}
            )

        existing = await self.get_for_delivery(delivery.id)
        if existing is not None and existing.billed_at is not None:
            raise ConflictError(
                "Charge has already been billed",
                details={"delivery_id": delivery.id, "invoice_id": existing.invoice_id}
            )

        if new_fee == 0:
            if existing is not None:
                await self.charges.delete(existing.id)
                await self.db.flush()
                self.db.expunge(existing)
            return None

        insert = upsert_insert(self.db)
        stmt = insert(Charge).values(
            delivery_id=delivery.id,
            business_id=delivery.business_id,
            amount=new_fee,
            description=ChargeDescription.ADDED_BY_STAFF,
            created_at=delivery.created_at or datetime.now(timezone.utc),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[Charge.delivery_id],
            set_={
                "amount": stmt.excluded.amount,
                "description": ChargeDescription.UPDATED_BY_STAFF,
                "updated_at": datetime.now(timezone.utc),
            },
            where=Charge.billed_at.is_(None),
        )
        await self.db.execute(stmt)

        charge = await self.get_for_delivery(delivery.id)
        if charge is None or charge.billed_at is not None or charge.amount != new_fee:
            raise ConflictError(
                "Charge was billed while the fee was being updated",
                details={"delivery_id": delivery.id}
            )
        return charge
