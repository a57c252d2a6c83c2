from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal

from django.db import transaction
from django.utils.dateparse import parse_date

from core.doc_numbers import get_next_doc_no

from ..exceptions import NotFound, ValidationError
from ..models import (
    Item,
    LocationType,
    MaterialApproval,
    MaterialApprovalItem,
    MaterialBatch,
    MaterialConsumption,
    MaterialConsumptionItem,
    MaterialIssue,
    MaterialIssueItem,
    MaterialReceipt,
    MaterialReceiptItem,
    MaterialReturn,
    MaterialReturnItem,
    MaterialTransfer,
    MaterialTransferItem,
    MovementStatus,
    StockLedgerEntry,
)
from .. import permissions
from .batch_fefo_service import BatchFEFOService
from .ledger_service import AuditContext, StockPosting
from .location_service import Location, branch_id_of, resolve_location
from .uom_service import UoMConversionService, line_amounts, quantize_qty, quantize_rate

logger = logging.getLogger(__name__)

ZERO = Decimal('0')
TxType = StockLedgerEntry.TransactionType


def _as_date(value):
    if isinstance(value, date):
        return value
    parsed = parse_date(str(value))
    if parsed is None:
        raise ValidationError(f"Invalid date {value!r}.")
    return parsed


class InventoryService:
    """
    Service layer for handling all inventory transactions.

    Every public method runs as one atomic unit: the caller is authorised,
    locations are resolved, quantities converted to base units, batches
    allocated and mutated, and ledger rows written. Any error rolls the
    whole movement back.
    """

    @staticmethod
    @transaction.atomic
    def create_receipt(data: dict, audit: AuditContext) -> MaterialReceipt:
        """
        Receive vendor stock into a company or branch store.

        Args:
            data: dict with ``destination``, ``items`` and optional
                ``vendor_name``, ``invoice_number``, ``invoice_date``,
                ``movement_date``, ``notes``. Each item carries ``item``,
                ``quantity``, ``uom``, ``rate`` and optionally ``gst_percentage``,
                ``batch_no``, ``mfg_date``, ``expiry_date``.
            audit: AuditContext of the caller

        Returns:
            MaterialReceipt, already approved
        """
        actor = audit.actor
        company = actor.company
        destination = resolve_location(company, Location.parse(data.get('destination')))
        permissions.check_movement_allowed(actor, permissions.RECEIPT, None, destination)
        lines = InventoryService._require_lines(data)

        receipt = MaterialReceipt.objects.create(
            company=company,
            document_number=get_next_doc_no(company=company, doc_type='MATERIAL_RECEIPT', prefix=MaterialReceipt.DOC_PREFIX),
            to_location_type=destination.kind,
            to_location_id=destination.id,
            status=MovementStatus.APPROVED,
            vendor_name=data.get('vendor_name', ''),
            invoice_number=data.get('invoice_number', ''),
            invoice_date=data.get('invoice_date'),
            notes=data.get('notes', ''),
            created_by=actor,
            **InventoryService._movement_date(data),
        )
        posting = StockPosting(document=receipt, transaction_type=TxType.RECEIPT, audit=audit)

        totals = {'base_amount': ZERO, 'gst_amount': ZERO, 'total_amount': ZERO}
        for line_no, line in enumerate(lines, start=1):
            item = InventoryService._get_item(company, line.get('item'))
            quantity = InventoryService._positive_quantity(line.get('quantity'))
            uom = line.get('uom') or item.base_uom
            base_qty = UoMConversionService.to_base(item=item, quantity=quantity, uom=uom)
            if base_qty <= 0:
                raise ValidationError(f"Quantity {quantity} {uom} is below the smallest base unit.", item_id=item.pk)

            rate = Decimal(str(line.get('rate') or 0))
            if rate < 0:
                raise ValidationError("Rate cannot be negative.", item_id=item.pk)
            gst = line.get('gst_percentage')
            gst = item.gst_rate if gst is None else Decimal(str(gst))
            rate_per_base = quantize_rate(rate * quantity / base_qty)

            batch_no = line.get('batch_no') or get_next_doc_no(company=company, doc_type='BATCH', prefix='B')
            batch, created = BatchFEFOService.find_or_create_batch(
                company=company,
                item=item,
                batch_no=batch_no,
                location=destination,
                quantity=base_qty,
                defaults={
                    'mfg_date': line.get('mfg_date'),
                    'expiry_date': line.get('expiry_date'),
                    'rate_per_unit': rate_per_base,
                    'gst_percentage': gst,
                },
                created_by=actor,
            )
            if not created:
                InventoryService._check_top_up(batch, line, rate_per_base)
            posting.stock_in(batch, base_qty, notes=f"Received from {receipt.vendor_name or 'vendor'}")

            amounts = line_amounts(quantity, rate, gst)
            MaterialReceiptItem.objects.create(
                receipt=receipt,
                line_no=line_no,
                item=item,
                batch=batch,
                quantity=quantize_qty(quantity),
                uom=uom,
                base_quantity=base_qty,
                rate_per_unit=rate_per_base,
                gst_percentage=gst,
                **amounts,
            )
            for key in totals:
                totals[key] += amounts[key]

        receipt.total_base_amount = totals['base_amount']
        receipt.total_gst_amount = totals['gst_amount']
        receipt.total_amount = totals['total_amount']
        receipt.save(update_fields=['total_base_amount', 'total_gst_amount', 'total_amount', 'updated_at'])

        logger.info("Receipt %s posted by %s into %s (%s lines)", receipt.document_number, actor, destination, len(lines))
        return receipt

    @staticmethod
    @transaction.atomic
    def create_issue(data: dict, audit: AuditContext) -> MaterialIssue:
        """
        Send stock to a branch or technician. The source is debited now; the
        receiver approves, rejects or partially accepts later.
        """
        actor = audit.actor
        company = actor.company
        source, destination = InventoryService._resolve_pair(company, data)
        permissions.check_movement_allowed(
            actor, permissions.ISSUE, source, destination,
            source_branch_id=branch_id_of(source),
            destination_branch_id=branch_id_of(destination),
        )
        lines = InventoryService._require_lines(data)

        issue = MaterialIssue.objects.create(
            company=company,
            document_number=get_next_doc_no(company=company, doc_type='MATERIAL_ISSUE', prefix=MaterialIssue.DOC_PREFIX),
            from_location_type=source.kind,
            from_location_id=source.id,
            to_location_type=destination.kind,
            to_location_id=destination.id,
            status=MovementStatus.AWAITING_APPROVAL,
            purpose=data.get('purpose', ''),
            notes=data.get('notes', ''),
            created_by=actor,
            **InventoryService._movement_date(data),
        )
        approval = MaterialApproval.objects.create(
            company=company,
            issue=issue,
            assigned_to_type=(
                MaterialApproval.AssignedTo.TECHNICIAN
                if destination.kind == LocationType.TECHNICIAN
                else MaterialApproval.AssignedTo.BRANCH
            ),
            assigned_to_id=destination.id,
        )
        posting = StockPosting(document=issue, transaction_type=TxType.ISSUE, audit=audit)

        for line_no, (item, allocation, quantity, uom, entry) in enumerate(
            InventoryService._debit_lines(company, lines, source, posting, f"Issued to {destination}"), start=1
        ):
            batch = allocation['batch']
            amounts = line_amounts(allocation['qty'], batch.rate_per_unit, batch.gst_percentage)
            issue_item = MaterialIssueItem.objects.create(
                issue=issue,
                line_no=line_no,
                item=item,
                batch=batch,
                quantity=quantity,
                uom=uom,
                base_quantity=allocation['qty'],
                rate_per_unit=batch.rate_per_unit,
                gst_percentage=batch.gst_percentage,
                ledger_entry=entry,
                **amounts,
            )
            MaterialApprovalItem.objects.create(
                approval=approval,
                issue_item=issue_item,
                item=item,
                batch=batch,
                original_quantity=quantity,
                original_uom=uom,
                original_base_quantity=allocation['qty'],
                original_base_amount=amounts['base_amount'],
                original_gst_amount=amounts['gst_amount'],
                original_total_amount=amounts['total_amount'],
            )

        logger.info(
            "Issue %s posted by %s from %s to %s, awaiting approval",
            issue.document_number, actor, source, destination,
        )
        return issue

    @staticmethod
    @transaction.atomic
    def create_transfer(data: dict, audit: AuditContext) -> MaterialTransfer:
        """Move stock between company and branch stores. Approved on creation."""
        actor = audit.actor
        company = actor.company
        source, destination = InventoryService._resolve_pair(company, data)
        permissions.check_movement_allowed(
            actor, permissions.TRANSFER, source, destination,
            source_branch_id=branch_id_of(source),
            destination_branch_id=branch_id_of(destination),
        )
        lines = InventoryService._require_lines(data)

        transfer = MaterialTransfer.objects.create(
            company=company,
            document_number=get_next_doc_no(company=company, doc_type='MATERIAL_TRANSFER', prefix=MaterialTransfer.DOC_PREFIX),
            from_location_type=source.kind,
            from_location_id=source.id,
            to_location_type=destination.kind,
            to_location_id=destination.id,
            status=MovementStatus.APPROVED,
            notes=data.get('notes', ''),
            created_by=actor,
            **InventoryService._movement_date(data),
        )
        InventoryService._move_lines(
            company, lines, source, destination,
            StockPosting(document=transfer, transaction_type=TxType.TRANSFER, audit=audit),
            item_model=MaterialTransferItem, parent={'transfer': transfer}, actor=actor,
        )
        logger.info("Transfer %s posted by %s from %s to %s", transfer.document_number, actor, source, destination)
        return transfer

    @staticmethod
    @transaction.atomic
    def create_return(data: dict, audit: AuditContext) -> MaterialReturn:
        """Send stock back up the chain (technician to branch, branch to company)."""
        actor = audit.actor
        company = actor.company
        source, destination = InventoryService._resolve_pair(company, data)
        permissions.check_movement_allowed(
            actor, permissions.RETURN, source, destination,
            source_branch_id=branch_id_of(source),
            destination_branch_id=branch_id_of(destination),
        )
        lines = InventoryService._require_lines(data)

        material_return = MaterialReturn.objects.create(
            company=company,
            document_number=get_next_doc_no(company=company, doc_type='MATERIAL_RETURN', prefix=MaterialReturn.DOC_PREFIX),
            from_location_type=source.kind,
            from_location_id=source.id,
            to_location_type=destination.kind,
            to_location_id=destination.id,
            status=MovementStatus.APPROVED,
            reason=data.get('reason', ''),
            notes=data.get('notes', ''),
            created_by=actor,
            **InventoryService._movement_date(data),
        )
        InventoryService._move_lines(
            company, lines, source, destination,
            StockPosting(document=material_return, transaction_type=TxType.RETURN, audit=audit),
            item_model=MaterialReturnItem, parent={'material_return': material_return}, actor=actor,
        )
        logger.info("Return %s posted by %s from %s to %s", material_return.document_number, actor, source, destination)
        return material_return

    @staticmethod
    @transaction.atomic
    def create_consumption(data: dict, audit: AuditContext) -> MaterialConsumption:
        """
        Record stock used up by a technician on a job. Only the technician's
        stock is debited; nothing is credited anywhere.
        """
        actor = audit.actor
        company = actor.company
        technician_id = data.get('technician') or (actor.pk if actor.is_technician else None)
        if technician_id is None:
            raise ValidationError("Technician is required.")
        technician_id = getattr(technician_id, 'pk', technician_id)
        source = resolve_location(company, Location(LocationType.TECHNICIAN, int(technician_id)))
        permissions.check_movement_allowed(
            actor, permissions.CONSUMPTION, source, None, source_branch_id=branch_id_of(source),
        )
        lines = InventoryService._require_lines(data)

        consumption = MaterialConsumption.objects.create(
            company=company,
            document_number=get_next_doc_no(company=company, doc_type='MATERIAL_CONSUMPTION', prefix=MaterialConsumption.DOC_PREFIX),
            from_location_type=source.kind,
            from_location_id=source.id,
            status=MovementStatus.APPROVED,
            technician_id=source.id,
            service_reference=data.get('service_reference', ''),
            lead_reference=data.get('lead_reference', ''),
            notes=data.get('notes', ''),
            created_by=actor,
            **InventoryService._movement_date(data),
        )
        posting = StockPosting(document=consumption, transaction_type=TxType.CONSUMPTION, audit=audit)
        note = f"Used on service {consumption.service_reference}" if consumption.service_reference else 'Consumed'
        for line_no, (item, allocation, quantity, uom, _entry) in enumerate(
            InventoryService._debit_lines(company, lines, source, posting, note), start=1
        ):
            batch = allocation['batch']
            MaterialConsumptionItem.objects.create(
                consumption=consumption,
                line_no=line_no,
                item=item,
                batch=batch,
                quantity=quantity,
                uom=uom,
                base_quantity=allocation['qty'],
                rate_per_unit=batch.rate_per_unit,
                gst_percentage=batch.gst_percentage,
                **line_amounts(allocation['qty'], batch.rate_per_unit, batch.gst_percentage),
            )

        logger.info("Consumption %s posted by %s for technician %s", consumption.document_number, actor, source.id)
        return consumption

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _move_lines(company, lines, source, destination, posting, *, item_model, parent, actor):
        """Debit the source, credit the same batch number at the destination."""
        for line_no, (item, allocation, quantity, uom, _entry) in enumerate(
            InventoryService._debit_lines(company, lines, source, posting, f"Sent to {destination}"), start=1
        ):
            batch = allocation['batch']
            target, _created = BatchFEFOService.upsert_at_destination(
                source_batch=batch, location=destination, quantity=allocation['qty'], created_by=actor,
            )
            posting.stock_in(target, allocation['qty'], notes=f"Received from {source}")
            item_model.objects.create(
                line_no=line_no,
                item=item,
                batch=batch,
                quantity=quantity,
                uom=uom,
                base_quantity=allocation['qty'],
                rate_per_unit=batch.rate_per_unit,
                gst_percentage=batch.gst_percentage,
                **line_amounts(allocation['qty'], batch.rate_per_unit, batch.gst_percentage),
                **parent,
            )

    @staticmethod
    def _debit_lines(company, lines, source, posting, notes):
        """
        Yield ``(item, allocation, quantity, uom, ledger_entry)`` per allocated
        batch after taking it out of ``source``. A line split over several
        batches reports each portion in the entered unit.
        """
        for line in lines:
            item = InventoryService._get_item(company, line.get('item'))
            quantity = InventoryService._positive_quantity(line.get('quantity'))
            uom = line.get('uom') or item.base_uom
            base_qty = UoMConversionService.to_base(item=item, quantity=quantity, uom=uom)
            if base_qty <= 0:
                raise ValidationError(f"Quantity {quantity} {uom} is below the smallest base unit.", item_id=item.pk)
            batch_id = line.get('batch')
            allocations = BatchFEFOService.allocate(item, source, base_qty, getattr(batch_id, 'pk', batch_id))
            for allocation in allocations:
                entry = posting.stock_out(allocation['batch'], allocation['qty'], notes=notes)
                if len(allocations) == 1:
                    portion = quantize_qty(quantity)
                else:
                    portion = UoMConversionService.from_base(item=item, quantity=allocation['qty'], uom=uom)
                yield item, allocation, portion, uom, entry

    @staticmethod
    def _check_top_up(batch: MaterialBatch, line: dict, rate_per_base: Decimal):
        """A receipt may only add to an existing batch that is still in date and shares its dates and rate."""
        if batch.is_expired or batch.is_past_expiry():
            raise ValidationError(f"Batch {batch.batch_no} is expired and cannot be topped up.", batch_id=batch.pk)
        mismatched = [
            field for field in ('mfg_date', 'expiry_date')
            if line.get(field) not in (None, '') and _as_date(line[field]) != getattr(batch, field)
        ]
        if rate_per_base != batch.rate_per_unit:
            mismatched.append('rate_per_unit')
        if mismatched:
            raise ValidationError(
                f"Batch {batch.batch_no} already exists with a different {', '.join(mismatched)}; "
                f"receive under a new batch number.",
                batch_id=batch.pk,
                fields=mismatched,
            )

    @staticmethod
    def _resolve_pair(company, data):
        source = resolve_location(company, Location.parse(data.get('source')))
        destination = resolve_location(company, Location.parse(data.get('destination')))
        if source == destination:
            raise ValidationError("Source and destination must differ.", location=str(source))
        return source, destination

    @staticmethod
    def _require_lines(data):
        lines = data.get('items') or []
        if not lines:
            raise ValidationError("At least one item is required.")
        return lines

    @staticmethod
    def _get_item(company, value) -> Item:
        if isinstance(value, Item):
            item = value
        else:
            item = Item.objects.filter(pk=value).first()
        if item is None or item.company_id != company.pk:
            raise NotFound(f"Item {getattr(value, 'pk', value)} not found.")
        if not item.is_active:
            raise ValidationError(f"Item {item.code} is inactive.", item_id=item.pk)
        return item

    @staticmethod
    def _positive_quantity(value) -> Decimal:
        if value in (None, ''):
            raise ValidationError("Quantity is required.")
        quantity = Decimal(str(value))
        if quantity <= 0:
            raise ValidationError("Quantity must be greater than zero.", quantity=quantity)
        return quantity

    @staticmethod
    def _movement_date(data) -> dict:
        return {'movement_date': data['movement_date']} if data.get('movement_date') else {}

