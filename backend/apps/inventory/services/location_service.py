"""
Stock locations.

A location is a tagged reference: the company store, a branch, a
technician's personal stock, or WAREHOUSE, an alias for the company's main
branch that is resolved before any batch lookup.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from django.contrib.auth import get_user_model

from apps.companies.models import Branch
from apps.inventory.exceptions import Forbidden, NotFound, ValidationError
from apps.inventory.models import LocationType

WAREHOUSE = 'WAREHOUSE'
LOCATION_KINDS = {LocationType.COMPANY, LocationType.BRANCH, LocationType.TECHNICIAN, WAREHOUSE}


@dataclass(frozen=True)
class Location:
    kind: str
    id: Optional[int] = None

    @classmethod
    def parse(cls, payload) -> "Location":
        """Build a location from ``{"type": ..., "id": ...}``."""
        if isinstance(payload, Location):
            return payload
        if not isinstance(payload, dict):
            raise ValidationError("Location must be an object with 'type' and 'id'.")
        kind = str(payload.get('type') or '').upper()
        if kind not in LOCATION_KINDS:
            raise ValidationError(f"Unknown location type '{payload.get('type')}'.", location=payload)
        raw_id = payload.get('id')
        if raw_id in (None, ''):
            if kind not in (WAREHOUSE, LocationType.COMPANY):
                raise ValidationError(f"Location {kind} requires an id.")
            return cls(kind, None)
        try:
            return cls(kind, int(raw_id))
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid location id '{raw_id}'.", location=payload)

    def as_dict(self) -> dict:
        return {'type': self.kind, 'id': self.id}

    def __str__(self):
        return f"{self.kind}:{self.id}"


def resolve_location(company, location: Location) -> Location:
    """
    Map WAREHOUSE onto the main branch and check the location exists inside
    ``company``.

    Raises:
        NotFound: unknown branch / technician, or no main branch configured
        Forbidden: the location belongs to another company
    """
    if location.kind == WAREHOUSE:
        main_branch = company.main_branch
        if main_branch is None:
            raise NotFound(f"Company {company.code} has no main branch configured.")
        return Location(LocationType.BRANCH, main_branch.pk)

    if location.kind == LocationType.COMPANY:
        if location.id is not None and location.id != company.pk:
            raise Forbidden("Location belongs to another company.", location=str(location))
        return Location(LocationType.COMPANY, company.pk)

    if location.kind == LocationType.BRANCH:
        branch = Branch.objects.filter(pk=location.id, is_active=True).first()
        if branch is None:
            raise NotFound(f"Branch {location.id} not found.")
        if branch.company_id != company.pk:
            raise Forbidden("Location belongs to another company.", location=str(location))
        return Location(LocationType.BRANCH, branch.pk)

    technician = get_user_model().objects.filter(pk=location.id, is_active=True).first()
    if technician is None or not technician.is_technician:
        raise NotFound(f"Technician {location.id} not found.")
    if technician.company_id != company.pk:
        raise Forbidden("Location belongs to another company.", location=str(location))
    return Location(LocationType.TECHNICIAN, technician.pk)


def branch_id_of(location: Location) -> Optional[int]:
    """Branch a resolved location rolls up to. Company stock has none."""
    if location.kind == LocationType.BRANCH:
        return location.id
    if location.kind == LocationType.TECHNICIAN:
        return (
            get_user_model().objects.filter(pk=location.id)
            .values_list('branch_id', flat=True)
            .first()
        )
    return None
