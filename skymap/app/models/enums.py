"""
User roles enumeration.

Defines the actor roles for the courier platform.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        ADMIN: Full access, including invoice generation and fee corrections
        STAFF: Operations staff who create, assign and confirm deliveries
        RIDER: Couriers who carry deliveries and report their progress
        BUSINESS: Customer accounts that request deliveries for their business
    """
    ADMIN = "ADMIN"
    STAFF = "STAFF"
    RIDER = "RIDER"
    BUSINESS = "BUSINESS"
