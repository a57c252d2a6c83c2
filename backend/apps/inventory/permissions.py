"""
Who may move stock where.

``MOVEMENT_RULES`` maps a movement kind and caller role to the
(source kind, destination kind) pairs that caller may post. ``None`` stands
for "no location on that side" (vendor for receipts, the job site for
consumption). Scope checks then confine branch staff to their own branch
and technicians to their own stock.
"""
from __future__ import annotations

from django.contrib.auth import get_user_model
from rest_framework.permissions import SAFE_METHODS, BasePermission

from apps.inventory.exceptions import Forbidden
from apps.inventory.models import LocationType

RECEIPT = 'RECEIPT'
ISSUE = 'ISSUE'
TRANSFER = 'TRANSFER'
RETURN = 'RETURN'
CONSUMPTION = 'CONSUMPTION'

SUPERADMIN = 'SUPERADMIN'
ADMIN = 'ADMIN'
INVENTORY_MANAGER = 'INVENTORY_MANAGER'
AREA_MANAGER = 'AREA_MANAGER'
TECHNICIAN = 'TECHNICIAN'

COMPANY = LocationType.COMPANY.value
BRANCH = LocationType.BRANCH.value
TECH = LocationType.TECHNICIAN.value

_BRANCH_ISSUES = {(BRANCH, BRANCH), (BRANCH, TECH)}
_STAFF_RETURNS = {(TECH, BRANCH), (BRANCH, BRANCH), (BRANCH, COMPANY)}

MOVEMENT_RULES = {
    RECEIPT: {
        SUPERADMIN: {(None, COMPANY), (None, BRANCH)},
        ADMIN: {(None, BRANCH)},
        INVENTORY_MANAGER: {(None, BRANCH)},
    },
    ISSUE: {
        SUPERADMIN: {(COMPANY, BRANCH)} | _BRANCH_ISSUES,
        ADMIN: _BRANCH_ISSUES,
        INVENTORY_MANAGER: _BRANCH_ISSUES,
    },
    TRANSFER: {
        SUPERADMIN: {(COMPANY, BRANCH), (BRANCH, BRANCH), (BRANCH, COMPANY)},
        ADMIN: {(BRANCH, BRANCH)},
        INVENTORY_MANAGER: {(BRANCH, BRANCH)},
    },
    RETURN: {
        SUPERADMIN: _STAFF_RETURNS,
        ADMIN: _STAFF_RETURNS,
        INVENTORY_MANAGER: _STAFF_RETURNS,
        TECHNICIAN: {(TECH, BRANCH)},
    },
    CONSUMPTION: {
        SUPERADMIN: {(TECH, None)},
        ADMIN: {(TECH, None)},
        TECHNICIAN: {(TECH, None)},
    },
}

# Roles that maintain the item catalogue and its units.
CATALOG_ROLES = {SUPERADMIN, ADMIN, INVENTORY_MANAGER}

# Roles confined to their own branch unless they run the main branch.
BRANCH_SCOPED_ROLES = {ADMIN, INVENTORY_MANAGER, AREA_MANAGER}


def _kind(location):
    return None if location is None else str(location.kind)


def check_movement_allowed(actor, movement: str, source=None, destination=None, *, source_branch_id=None,
                           destination_branch_id=None) -> None:
    """
    Raise ``Forbidden`` unless ``actor`` may post ``movement`` between the
    resolved ``source`` and ``destination``. ``*_branch_id`` give the branch
    a technician location belongs to.
    """
    role = getattr(actor, 'role', None)
    allowed = MOVEMENT_RULES.get(movement, {}).get(role, set())
    pair = (_kind(source), _kind(destination))
    if pair not in allowed:
        raise Forbidden(
            f"Role {role} may not post a {movement.lower()} from {pair[0] or 'outside'} to {pair[1] or 'outside'}.",
            role=role,
            movement=movement,
        )

    if role == SUPERADMIN:
        return

    if role == TECHNICIAN:
        if source is None or source.kind != TECH or source.id != actor.pk:
            raise Forbidden("Technicians may only move their own stock.")
        return

    if role in BRANCH_SCOPED_ROLES and not actor.is_main_branch_admin:
        own_branch = actor.branch_id
        if own_branch is None:
            raise Forbidden("Your account is not attached to a branch.")
        if movement == RECEIPT:
            touched = destination.id if destination.kind == BRANCH else None
        elif source.kind == TECH:
            touched = source_branch_id
        else:
            touched = source.id if source.kind == BRANCH else None
        if touched != own_branch:
            raise Forbidden("Branch staff may only move stock of their own branch.")
        if movement in (ISSUE, TRANSFER) and destination is not None and destination.kind == TECH \
                and destination_branch_id != own_branch:
            raise Forbidden("Technician belongs to another branch.")


def can_resolve_approval(user, approval) -> bool:
    """
    A superadmin of the company resolves any approval. Otherwise the
    receiving branch's staff, or the receiving technician and the admins of
    that technician's branch.
    """
    if user.company_id != approval.company_id:
        return False
    if user.role == SUPERADMIN:
        return True
    if approval.assigned_to_type == approval.AssignedTo.BRANCH:
        return user.role != TECHNICIAN and user.branch_id == approval.assigned_to_id
    if user.pk == approval.assigned_to_id:
        return True
    if user.role in BRANCH_SCOPED_ROLES and user.branch_id is not None:
        technician_branch = (
            get_user_model().objects.filter(pk=approval.assigned_to_id)
            .values_list('branch_id', flat=True)
            .first()
        )
        return technician_branch == user.branch_id
    return False


class HasCompanyContext(BasePermission):
    """Authenticated user attached to a company."""

    message = 'Active company context is required'

    def has_permission(self, request, view):
        user = request.user
        return bool(user and user.is_authenticated and getattr(user, 'company_id', None))


class CanManageCatalog(BasePermission):
    """Anyone in the company may read items and units; only stock managers change them."""

    message = 'Only superadmins, admins and inventory managers may change items or units.'

    def has_permission(self, request, view):
        if request.method in SAFE_METHODS:
            return True
        return getattr(request.user, 'role', None) in CATALOG_ROLES
