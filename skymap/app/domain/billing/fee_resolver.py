"""
Delivery Fee Resolver.

Determines the fee applied to a new delivery.
Follows priority:
1. Fee provided with the request (when > 0)
2. Business custom delivery fee
3. Business fee package
4. Default active fee package
"""

from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from skymap.app.models.business import Business
from skymap.app.models.delivery_fee_package import DeliveryFeePackage


class FeeResolver:

    @staticmethod
    async def resolve_delivery_fee(
        db: AsyncSession,
        business: Business,
        provided_fee: Optional[Decimal] = None
    ) -> Optional[Decimal]:
        """
        Resolve the delivery fee for `business`.

        Returns:
            The fee, or None when no source defines one (delivery is not charged)
        """
        if provided_fee is not None and provided_fee > 0:
            return provided_fee

        if business.delivery_fee is not None and business.delivery_fee > 0:
            return business.delivery_fee

        if business.package_id is not None:
            package = await db.get(DeliveryFeePackage, business.package_id)
            if package and package.is_active:
                return package.fee_per_delivery

        query = select(DeliveryFeePackage).where(
            DeliveryFeePackage.is_default == True,
            DeliveryFeePackage.is_active == True
        ).order_by(DeliveryFeePackage.id).limit(1)

        result = await db.execute(query)
        default_package = result.scalar_one_or_none()

        if default_package:
            return default_package.fee_per_delivery

        return None
