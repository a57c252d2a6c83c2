"""
Stock ledger: append-only history of every batch quantity change.

``StockPosting`` is the unit of work used by the movement services. Each
call mutates the batch first and writes the ledger row only once the
mutation succeeded; both happen inside the caller's ``transaction.atomic``
block so a later failure rolls the pair back together.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from django.db import transaction
from django.db.models import Q, Sum
from django.utils import timezone

from apps.inventory.models import MaterialBatch, StockLedgerEntry
from apps.inventory.services.batch_fefo_service import BatchFEFOService
from apps.inventory.services.uom_service import quantize_money

logger = logging.getLogger(__name__)

ZERO = Decimal('0')


@dataclass
class AuditContext:
    """Who performed a stock change and from where."""
    actor: object = None
    ip_address: Optional[str] = None
    user_agent: str = ''

    @classmethod
    def from_request(cls, request) -> "AuditContext":
        forwarded = request.META.get('HTTP_X_FORWARDED_FOR', '')
        ip_address = forwarded.split(',')[0].strip() if forwarded else request.META.get('REMOTE_ADDR')
        return cls(
            actor=request.user,
            ip_address=ip_address or None,
            user_agent=request.META.get('HTTP_USER_AGENT', '')[:255],
        )

    @property
    def user_role(self) -> str:
        return getattr(self.actor, 'role', '') or ''


@dataclass
class StockPosting:
    """Pairs batch quantity changes with their ledger rows for one document."""
    document: object
    transaction_type: str
    audit: AuditContext
    transaction_date: Optional[object] = None
    entries: list = field(default_factory=list)

    def __post_init__(self):
        if not transaction.get_connection().in_atomic_block:
            raise RuntimeError("Stock postings must run inside transaction.atomic().")
        self.transaction_date = self.transaction_date or timezone.now()

    def stock_out(self, batch: MaterialBatch, quantity: Decimal, *, notes: str = '') -> StockLedgerEntry:
        batch = BatchFEFOService.decrement(batch, quantity)
        return self._record(batch, quantity_out=quantity, notes=notes)

    def stock_in(
        self,
        batch: MaterialBatch,
        quantity: Decimal,
        *,
        notes: str = '',
        transaction_type: Optional[str] = None,
        reversal_of: Optional[StockLedgerEntry] = None,
        system_generated: bool = False,
    ) -> StockLedgerEntry:
        batch = BatchFEFOService.increment(batch, quantity)
        return self._record(
            batch,
            quantity_in=quantity,
            notes=notes,
            transaction_type=transaction_type,
            reversal_of=reversal_of,
            system_generated=system_generated,
        )

    def _record(self, batch, *, quantity_in=ZERO, quantity_out=ZERO, notes='', transaction_type=None,
                reversal_of=None, system_generated=False) -> StockLedgerEntry:
        entry = StockLedgerService.record_entry(
            batch=batch,
            transaction_type=transaction_type or self.transaction_type,
            transaction_id=self.document.pk,
            reference_no=self.document.document_number,
            transaction_date=self.transaction_date,
            quantity_in=quantity_in,
            quantity_out=quantity_out,
            audit=self.audit,
            notes=notes,
            reversal_of=reversal_of,
            system_generated=system_generated,
        )
        self.entries.append(entry)
        return entry


class StockLedgerService:
    """Writes and reads stock ledger entries."""

    @staticmethod
    def record_entry(
        *,
        batch: MaterialBatch,
        transaction_type: str,
        transaction_id: int,
        reference_no: str,
        quantity_in: Decimal = ZERO,
        quantity_out: Decimal = ZERO,
        audit: Optional[AuditContext] = None,
        transaction_date=None,
        notes: str = '',
        reversal_of: Optional[StockLedgerEntry] = None,
        system_generated: bool = False,
    ) -> StockLedgerEntry:
        """
        Append one ledger row. ``batch.current_qty`` must already reflect the
        change; it becomes the row's balance.
        """
        audit = audit or AuditContext()
        return StockLedgerEntry.objects.create(
            company_id=batch.company_id,
            item_id=batch.item_id,
            batch=batch,
            location_type=batch.location_type,
            location_id=batch.location_id,
            transaction_type=transaction_type,
            transaction_id=transaction_id,
            reference_no=reference_no,
            transaction_date=transaction_date or timezone.now(),
            quantity_in=quantity_in,
            quantity_out=quantity_out,
            balance_quantity=batch.current_qty,
            rate_per_unit=batch.rate_per_unit,
            balance_value=quantize_money(batch.current_qty * batch.rate_per_unit),
            created_by=audit.actor if getattr(audit.actor, 'pk', None) else None,
            user_role=audit.user_role,
            ip_address=audit.ip_address,
            user_agent=audit.user_agent,
            notes=notes,
            reversal_of=reversal_of,
            system_generated=system_generated,
        )

    @staticmethod
    def filter_entries(company, params) -> "QuerySet":
        """
        Ledger rows of ``company`` narrowed by query parameters: item, batch,
        location_type, location_id, transaction_type, reference_no,
        date_from, date_to. Newest first.
        """
        qs = StockLedgerEntry.objects.filter(company=company).select_related('item', 'batch', 'created_by')
        simple_filters = {
            'item': 'item_id',
            'batch': 'batch_id',
            'location_type': 'location_type',
            'location_id': 'location_id',
            'transaction_type': 'transaction_type',
            'reference_no': 'reference_no',
        }
        for param, lookup in simple_filters.items():
            value = params.get(param)
            if value:
                qs = qs.filter(**{lookup: value})
        if params.get('date_from'):
            qs = qs.filter(transaction_date__date__gte=params['date_from'])
        if params.get('date_to'):
            qs = qs.filter(transaction_date__date__lte=params['date_to'])
        return qs.order_by('-transaction_date', '-id')

    @staticmethod
    def reconcile_batch(batch: MaterialBatch) -> dict:
        """Replay the batch's ledger rows and compare with its stored quantity."""
        batch.refresh_from_db(fields=['current_qty'])
        entries = StockLedgerEntry.objects.filter(batch=batch)
        totals = entries.aggregate(total_in=Sum('quantity_in'), total_out=Sum('quantity_out'))
        replayed = (totals['total_in'] or ZERO) - (totals['total_out'] or ZERO)
        last_entry = entries.order_by('-created_at', '-id').first()
        last_balance = last_entry.balance_quantity if last_entry else ZERO
        return {
            'batch_id': batch.pk,
            'current_qty': batch.current_qty,
            'replayed_qty': replayed,
            'last_balance': last_balance,
            'entry_count': entries.count(),
            'is_consistent': replayed == batch.current_qty == last_balance,
        }

    @staticmethod
    def reversal_history(issue):
        """Ledger rows that credited stock back to the source of ``issue``."""
        return StockLedgerEntry.objects.filter(
            Q(reversal_of__transaction_type=StockLedgerEntry.TransactionType.ISSUE)
            & Q(reversal_of__transaction_id=issue.pk),
        ).select_related('item', 'batch', 'reversal_of').order_by('created_at', 'id')
