"""
Batch & FEFO Service
Handles batch lookup, FEFO allocation, guarded quantity changes and expiry
management.
"""
from __future__ import annotations

import logging
from datetime import timedelta
from decimal import Decimal
from typing import Optional

from django.db import transaction
from django.db.models import F, Q
from django.utils import timezone

from apps.inventory.exceptions import InsufficientStock, InvalidBatch, ValidationError
from apps.inventory.models import Item, MaterialBatch
from apps.inventory.services.location_service import Location

logger = logging.getLogger(__name__)

ZERO = Decimal('0')


class BatchFEFOService:
    """Service for batch/lot management and FEFO enforcement"""

    @staticmethod
    def usable_batches(item: Item, location: Location, *, on=None, lock: bool = False):
        """
        Batches of ``item`` at ``location`` that can serve an outgoing
        movement, in FEFO order: earliest expiry first, undated batches last,
        then oldest first.
        """
        today = on or timezone.localdate()
        qs = MaterialBatch.objects.filter(
            item=item,
            location_type=location.kind,
            location_id=location.id,
            current_qty__gt=0,
            is_expired=False,
        ).filter(
            Q(expiry_date__isnull=True) | Q(expiry_date__gte=today)
        ).order_by(
            F('expiry_date').asc(nulls_last=True),
            'created_at',
            'id',
        )
        if lock:
            qs = qs.select_for_update()
        return qs

    @staticmethod
    def allocate_batches_fefo(item: Item, location: Location, quantity_needed: Decimal):
        """
        Allocate batches using FEFO (First Expiry, First Out) logic

        Args:
            item: Item instance
            location: resolved Location
            quantity_needed: Decimal, in the item's base unit

        Returns:
            Tuple of ``([{'batch': MaterialBatch, 'qty': Decimal}, ...], shortfall)``.
            Callers must treat a positive shortfall as insufficient stock.
        """
        remaining = Decimal(quantity_needed)
        allocations = []
        for batch in BatchFEFOService.usable_batches(item, location, lock=True):
            if remaining <= 0:
                break
            qty_from_batch = min(batch.current_qty, remaining)
            allocations.append({'batch': batch, 'qty': qty_from_batch})
            remaining -= qty_from_batch
        return allocations, max(remaining, ZERO)

    @staticmethod
    def select_specific_batch(batch_id, item: Item, location: Location, quantity_needed: Decimal):
        """
        Allocate ``quantity_needed`` from the named batch.

        Raises:
            InvalidBatch: unknown batch, other item, other location or expired
            InsufficientStock: the batch holds less than requested
        """
        batch = MaterialBatch.objects.select_for_update().filter(pk=batch_id).first()
        if batch is None:
            raise InvalidBatch(InvalidBatch.NOT_FOUND, batch_id=batch_id)
        if batch.item_id != item.pk:
            raise InvalidBatch(
                InvalidBatch.WRONG_ITEM, batch_id=batch_id,
                message=f"Batch {batch.batch_no} does not hold item {item.code}.",
            )
        if batch.location_type != location.kind or batch.location_id != location.id:
            raise InvalidBatch(
                InvalidBatch.WRONG_LOCATION, batch_id=batch_id,
                message=f"Batch {batch.batch_no} is not stocked at {location}.",
            )
        if batch.is_expired or batch.is_past_expiry():
            raise InvalidBatch(
                InvalidBatch.EXPIRED, batch_id=batch_id,
                message=f"Batch {batch.batch_no} expired on {batch.expiry_date}.",
            )
        if batch.current_qty < quantity_needed:
            raise InsufficientStock(
                item=item, required=quantity_needed, available=batch.current_qty, uom=item.base_uom,
            )
        return [{'batch': batch, 'qty': Decimal(quantity_needed)}]

    @staticmethod
    def allocate(item: Item, location: Location, quantity_needed: Decimal, batch_id=None):
        """Allocate from a named batch when given, otherwise by FEFO."""
        if quantity_needed <= 0:
            raise ValidationError("Quantity must be greater than zero.", item_id=item.pk)
        if batch_id:
            return BatchFEFOService.select_specific_batch(batch_id, item, location, quantity_needed)

        allocations, shortfall = BatchFEFOService.allocate_batches_fefo(item, location, quantity_needed)
        if shortfall > 0:
            raise InsufficientStock(
                item=item,
                required=Decimal(quantity_needed),
                available=Decimal(quantity_needed) - shortfall,
                uom=item.base_uom,
            )
        return allocations

    @staticmethod
    def decrement(batch: MaterialBatch, quantity: Decimal) -> MaterialBatch:
        """
        Take ``quantity`` out of ``batch`` with a conditional update so that a
        concurrent writer can never drive the balance below zero.
        """
        updated = MaterialBatch.objects.filter(
            pk=batch.pk,
            current_qty__gte=quantity,
        ).update(current_qty=F('current_qty') - quantity, updated_at=timezone.now())
        if not updated:
            batch.refresh_from_db(fields=['current_qty'])
            raise InsufficientStock(
                item=batch.item, required=Decimal(quantity), available=batch.current_qty, uom=batch.item.base_uom,
            )
        batch.refresh_from_db(fields=['current_qty', 'updated_at'])
        return batch

    @staticmethod
    def increment(batch: MaterialBatch, quantity: Decimal) -> MaterialBatch:
        MaterialBatch.objects.filter(pk=batch.pk).update(
            current_qty=F('current_qty') + quantity,
            updated_at=timezone.now(),
        )
        batch.refresh_from_db(fields=['current_qty', 'updated_at'])
        return batch

    @staticmethod
    def find_or_create_batch(
        *,
        company,
        item: Item,
        batch_no: str,
        location: Location,
        quantity: Decimal,
        defaults: Optional[dict] = None,
        created_by=None,
    ):
        """
        Batch keyed by (item, batch_no, location). A new batch starts empty
        with ``initial_qty = quantity``; callers credit it through a stock
        posting so the ledger sees the inflow.

        Returns:
            (MaterialBatch, created)
        """
        batch = MaterialBatch.objects.select_for_update().filter(
            item=item,
            batch_no=batch_no,
            location_type=location.kind,
            location_id=location.id,
        ).first()
        if batch is not None:
            return batch, False

        defaults = defaults or {}
        batch = MaterialBatch.objects.create(
            company=company,
            item=item,
            batch_no=batch_no,
            location_type=location.kind,
            location_id=location.id,
            mfg_date=defaults.get('mfg_date'),
            expiry_date=defaults.get('expiry_date'),
            rate_per_unit=defaults.get('rate_per_unit') or ZERO,
            gst_percentage=defaults.get('gst_percentage') or ZERO,
            initial_qty=quantity,
            current_qty=ZERO,
            created_by=created_by,
        )
        logger.debug("Created batch %s for %s at %s", batch_no, item.code, location)
        return batch, True

    @staticmethod
    def upsert_at_destination(*, source_batch: MaterialBatch, location: Location, quantity: Decimal, created_by=None):
        """Destination twin of ``source_batch``, created with its dates and rates when missing."""
        return BatchFEFOService.find_or_create_batch(
            company=source_batch.company,
            item=source_batch.item,
            batch_no=source_batch.batch_no,
            location=location,
            quantity=quantity,
            defaults={
                'mfg_date': source_batch.mfg_date,
                'expiry_date': source_batch.expiry_date,
                'rate_per_unit': source_batch.rate_per_unit,
                'gst_percentage': source_batch.gst_percentage,
            },
            created_by=created_by,
        )

    @staticmethod
    def get_expiring_batches(company, days_threshold: int = 30, location: Optional[Location] = None):
        """
        Get batches holding stock that expire within ``days_threshold`` days,
        already expired ones included.
        """
        horizon = timezone.localdate() + timedelta(days=days_threshold)
        batches = MaterialBatch.objects.filter(
            company=company,
            current_qty__gt=0,
            expiry_date__isnull=False,
            expiry_date__lte=horizon,
        ).select_related('item')
        if location is not None:
            batches = batches.filter(location_type=location.kind, location_id=location.id)
        return batches.order_by('expiry_date', 'id')

    @staticmethod
    def get_expired_batches(company):
        """Get batches that have already expired"""
        return MaterialBatch.objects.filter(
            company=company,
            current_qty__gt=0,
            expiry_date__isnull=False,
            expiry_date__lt=timezone.localdate(),
        ).select_related('item').order_by('expiry_date')

    @staticmethod
    @transaction.atomic
    def mark_expired_batches(company=None) -> int:
        """Flag every batch past its expiry date. Returns the number flagged."""
        qs = MaterialBatch.objects.filter(
            is_expired=False,
            expiry_date__isnull=False,
            expiry_date__lt=timezone.localdate(),
        )
        if company is not None:
            qs = qs.filter(company=company)
        count = qs.update(is_expired=True, updated_at=timezone.now())
        if count:
            logger.info("Flagged %s batch(es) as expired", count)
        return count
