"""
Security guards for capability-based and ownership-based access control.

All role checks go through `check_permission` / `can` so the rule set
lives in one place. Routes use the `require_permission` dependency; the
domain layer calls `enforce` with the resource it is about to mutate.
"""

from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Optional
from fastapi import Depends
from skymap.app.models.enums import UserRole
from skymap.app.core.actor import Actor
from skymap.app.core.dependencies import get_current_user
from skymap.app.core.exceptions import InsufficientPermissionsError


class Permission:
    """Capability names."""
    ALL = "*"

    DELIVERIES_VIEW = "deliveries.view"
    DELIVERIES_VIEW_ASSIGNED = "deliveries.view_assigned"
    DELIVERIES_CREATE = "deliveries.create"
    DELIVERIES_ASSIGN = "deliveries.assign"
    DELIVERIES_UPDATE = "deliveries.update"
    DELIVERIES_UPDATE_STATUS = "deliveries.update_status"

    INVOICES_VIEW = "invoices.view"
    INVOICES_CREATE = "invoices.create"


# Role defaults (role/permission table editing is owned by the admin collaborator)
ROLE_PERMISSIONS: Dict[UserRole, FrozenSet[str]] = {
    UserRole.ADMIN: frozenset({Permission.ALL}),
    UserRole.STAFF: frozenset({
        Permission.DELIVERIES_VIEW,
        Permission.DELIVERIES_CREATE,
        Permission.DELIVERIES_ASSIGN,
        Permission.DELIVERIES_UPDATE,
        Permission.INVOICES_VIEW,
        Permission.INVOICES_CREATE,
    }),
    UserRole.RIDER: frozenset({
        Permission.DELIVERIES_VIEW_ASSIGNED,
        Permission.DELIVERIES_CREATE,
        Permission.DELIVERIES_UPDATE_STATUS,
    }),
    UserRole.BUSINESS: frozenset({
        Permission.DELIVERIES_VIEW,
        Permission.DELIVERIES_CREATE,
        Permission.INVOICES_VIEW,
    }),
}


@dataclass(frozen=True)
class PermissionCheck:
    allowed: bool
    reason: Optional[str] = None


def check_permission(actor: Actor, action: str) -> PermissionCheck:
    """
    Check a capability against the actor's role defaults.

    Args:
        actor: Request actor
        action: Capability name (use Permission constants)

    Returns:
        PermissionCheck with a reason when denied
    """
    granted = ROLE_PERMISSIONS.get(actor.role, frozenset())

    if Permission.ALL in granted or action in granted:
        return PermissionCheck(allowed=True)

    return PermissionCheck(
        allowed=False,
        reason=f"Role {actor.role.value} lacks permission '{action}'"
    )


def owns_resource(actor: Actor, resource: Any) -> bool:
    """
    Resource rules on top of role capabilities.

    - ADMIN and STAFF reach every resource
    - RIDER reaches deliveries assigned to them (businesses are open for creation)
    - BUSINESS reaches its own business and anything carrying its business_id
    """
    if resource is None or actor.is_staff:
        return True

    # Local imports keep guards importable before the model registry
    from skymap.app.models.business import Business
    from skymap.app.models.delivery import Delivery

    if actor.role == UserRole.RIDER:
        if isinstance(resource, Delivery):
            return resource.assigned_rider_id == actor.user_id
        return isinstance(resource, Business)

    if actor.role == UserRole.BUSINESS:
        if actor.business_id is None:
            return False
        if isinstance(resource, Business):
            return resource.id == actor.business_id
        return getattr(resource, "business_id", None) == actor.business_id

    return False


def can(actor: Actor, action: str, resource: Any = None) -> bool:
    """
    Central capability check: role capability plus resource ownership.

    A RIDER asking for `deliveries.view` is answered through
    `deliveries.view_assigned`, which the ownership rule then narrows.
    """
    check = check_permission(actor, action)
    if not check.allowed and action == Permission.DELIVERIES_VIEW:
        check = check_permission(actor, Permission.DELIVERIES_VIEW_ASSIGNED)

    if not check.allowed:
        return False

    return owns_resource(actor, resource)


def enforce(actor: Actor, action: str, resource: Any = None, resource_name: str = "resource"):
    """
    Raise InsufficientPermissionsError unless `can(actor, action, resource)`.

    Raises:
        InsufficientPermissionsError: 403 with the denied action in details
    """
    check = check_permission(actor, action)
    if not check.allowed and action == Permission.DELIVERIES_VIEW:
        check = check_permission(actor, Permission.DELIVERIES_VIEW_ASSIGNED)

    if not check.allowed:
        raise InsufficientPermissionsError(
            message=check.reason,
            details={"action": action, "role": actor.role.value}
        )

    if not owns_resource(actor, resource):
        raise InsufficientPermissionsError(
            message=f"Access denied. You do not have permission to access this {resource_name}.",
            details={"action": action, "role": actor.role.value}
        )


def require_permission(action: str):
    """
    Dependency factory for capability-based access control.

    Usage:
        @router.post("/invoices")
        async def create_invoice(
            actor: Actor = Depends(require_permission(Permission.INVOICES_CREATE))
        ):
            ...

    Raises:
        InsufficientPermissionsError 403 if the actor's role lacks the capability
    """
    async def permission_checker(actor: Actor = Depends(get_current_user)) -> Actor:
        enforce(actor, action)
        return actor

    return permission_checker
