"""
Approval workflow for Material Issues.

An approval starts PENDING and is resolved exactly once: approved (all stock
delivered to the receiver), rejected (all stock credited back to the source
batches) or partially accepted (per line split between the two).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.db import transaction
from django.utils import timezone

from ..exceptions import AlreadyProcessed, Forbidden, NotFound, ValidationError
from ..models import MaterialApproval, MaterialApprovalItem, MovementStatus, StockLedgerEntry
from ..permissions import can_resolve_approval
from .batch_fefo_service import BatchFEFOService
from .ledger_service import AuditContext, StockPosting
from .uom_service import UoMConversionService, line_amounts, quantize_qty

logger = logging.getLogger(__name__)

ZERO = Decimal('0')
LineStatus = MaterialApprovalItem.Status

APPROVED = 'APPROVED'
REJECTED = 'REJECTED'


@dataclass
class LineDecision:
    approval_item: MaterialApprovalItem
    status: str
    approved_quantity: Decimal = ZERO
    approved_uom: str = ''
    approved_base_quantity: Decimal = ZERO
    remarks: str = ''

    @property
    def returned_base_quantity(self) -> Decimal:
        return self.approval_item.original_base_quantity - self.approved_base_quantity


class ApprovalService:
    """Resolves pending Material Issue approvals."""

    @staticmethod
    def visible_to(user):
        """Approvals ``user`` could act on, any status."""
        qs = MaterialApproval.objects.filter(company_id=user.company_id).select_related('issue', 'approved_by')
        if user.role == 'SUPERADMIN':
            return qs
        if user.is_technician:
            return qs.filter(assigned_to_type=MaterialApproval.AssignedTo.TECHNICIAN, assigned_to_id=user.pk)
        if user.branch_id is None:
            return qs.none()
        branch_technicians = get_user_model().objects.filter(branch_id=user.branch_id).values_list('pk', flat=True)
        branch_scope = qs.filter(assigned_to_type=MaterialApproval.AssignedTo.BRANCH, assigned_to_id=user.branch_id)
        if user.role in ('ADMIN', 'AREA_MANAGER', 'INVENTORY_MANAGER'):
            return branch_scope | qs.filter(
                assigned_to_type=MaterialApproval.AssignedTo.TECHNICIAN,
                assigned_to_id__in=list(branch_technicians),
            )
        return branch_scope

    @staticmethod
    def pending_for(user):
        return ApprovalService.visible_to(user).filter(status=MaterialApproval.Status.PENDING)

    @staticmethod
    @transaction.atomic
    def approve(approval_id, audit: AuditContext, remarks: str = '') -> MaterialApproval:
        """Accept every line in full and deliver the stock to the receiver."""
        approval = ApprovalService._lock_pending(approval_id, audit.actor)
        decisions = [
            LineDecision(
                approval_item=approval_item,
                status=LineStatus.APPROVED,
                approved_quantity=approval_item.original_quantity,
                approved_uom=approval_item.original_uom,
                approved_base_quantity=approval_item.original_base_quantity,
            )
            for approval_item in ApprovalService._items(approval)
        ]
        return ApprovalService._apply(approval, decisions, audit, remarks=remarks)

    @staticmethod
    @transaction.atomic
    def reject(approval_id, audit: AuditContext, rejection_reason: str, remarks: str = '') -> MaterialApproval:
        """Refuse the whole issue and credit every line back to its source batch."""
        approval = ApprovalService._lock_pending(approval_id, audit.actor)
        if not (rejection_reason or '').strip():
            raise ValidationError("Rejection reason is required.")
        decisions = [
            LineDecision(approval_item=approval_item, status=LineStatus.REJECTED)
            for approval_item in ApprovalService._items(approval)
        ]
        return ApprovalService._apply(approval, decisions, audit, rejection_reason=rejection_reason, remarks=remarks)

    @staticmethod
    @transaction.atomic
    def partial_accept(approval_id, audit: AuditContext, lines: list, rejection_reason: str = '',
                       remarks: str = '') -> MaterialApproval:
        """
        Decide line by line.

        Args:
            lines: one dict per approval item with ``approval_item_id``,
                ``decision`` (APPROVED / REJECTED) and, for approved lines,
                optional ``approved_quantity`` and ``approved_uom``
                (default: the original quantity and unit) and ``remarks``.
            rejection_reason: required when any line is rejected

        Raises:
            ValidationError: unknown or duplicate line ids, undecided lines,
                approved quantity above the original or not positive,
                rejected lines without a reason
        """
        approval = ApprovalService._lock_pending(approval_id, audit.actor)
        items = {approval_item.pk: approval_item for approval_item in ApprovalService._items(approval)}
        if not lines:
            raise ValidationError("Line decisions are required.")

        decisions = {}
        for line in lines:
            raw_id = line.get('approval_item_id')
            try:
                approval_item = items[int(raw_id)]
            except (KeyError, TypeError, ValueError):
                raise ValidationError(f"Unknown approval item {raw_id}.", approval_item_id=raw_id)
            if approval_item.pk in decisions:
                raise ValidationError(f"Approval item {raw_id} decided twice.", approval_item_id=raw_id)
            decisions[approval_item.pk] = ApprovalService._decide_line(approval_item, line)

        undecided = sorted(set(items) - set(decisions))
        if undecided:
            raise ValidationError("Every approval item needs a decision.", undecided=undecided)
        if any(d.status == LineStatus.REJECTED for d in decisions.values()) and not (rejection_reason or '').strip():
            raise ValidationError("Rejection reason is required when rejecting lines.")

        ordered = [decisions[pk] for pk in items]
        return ApprovalService._apply(approval, ordered, audit, rejection_reason=rejection_reason, remarks=remarks)

    @staticmethod
    def _decide_line(approval_item: MaterialApprovalItem, line: dict) -> LineDecision:
        decision = str(line.get('decision') or '').upper()
        line_remarks = line.get('remarks', '') or ''
        if decision == REJECTED:
            return LineDecision(approval_item=approval_item, status=LineStatus.REJECTED, remarks=line_remarks)
        if decision != APPROVED:
            raise ValidationError(
                f"Decision for approval item {approval_item.pk} must be APPROVED or REJECTED.",
                approval_item_id=approval_item.pk,
            )

        uom = line.get('approved_uom') or approval_item.original_uom
        quantity = line.get('approved_quantity')
        quantity = approval_item.original_quantity if quantity in (None, '') else Decimal(str(quantity))
        if quantity <= 0:
            raise ValidationError(
                "Approved quantity must be greater than zero; reject the line instead.",
                approval_item_id=approval_item.pk,
            )
        if uom == approval_item.original_uom and quantity == approval_item.original_quantity:
            base_qty = approval_item.original_base_quantity
        else:
            base_qty = UoMConversionService.to_base(item=approval_item.item, quantity=quantity, uom=uom)
        if base_qty > approval_item.original_base_quantity:
            raise ValidationError(
                f"Approved quantity {quantity} {uom} exceeds the issued "
                f"{approval_item.original_quantity} {approval_item.original_uom}.",
                approval_item_id=approval_item.pk,
            )
        if base_qty <= 0:
            raise ValidationError("Approved quantity is below the smallest base unit.", approval_item_id=approval_item.pk)
        status = LineStatus.APPROVED if base_qty == approval_item.original_base_quantity else LineStatus.PARTIALLY_APPROVED
        return LineDecision(
            approval_item=approval_item,
            status=status,
            approved_quantity=quantize_qty(quantity),
            approved_uom=uom,
            approved_base_quantity=base_qty,
            remarks=line_remarks,
        )

    @staticmethod
    def _apply(approval: MaterialApproval, decisions: list, audit: AuditContext, *, rejection_reason: str = '',
               remarks: str = '') -> MaterialApproval:
        """Move the stock for every decision and settle approval and issue status."""
        issue = approval.issue
        destination = issue.destination
        posting = StockPosting(document=issue, transaction_type=StockLedgerEntry.TransactionType.ISSUE, audit=audit)

        for decision in decisions:
            approval_item = decision.approval_item
            source_batch = approval_item.batch
            if decision.approved_base_quantity > 0:
                target, _created = BatchFEFOService.upsert_at_destination(
                    source_batch=source_batch,
                    location=destination,
                    quantity=decision.approved_base_quantity,
                    created_by=audit.actor,
                )
                posting.stock_in(target, decision.approved_base_quantity, notes=f"Accepted from {issue.source}")
            if decision.returned_base_quantity > 0:
                posting.stock_in(
                    source_batch,
                    decision.returned_base_quantity,
                    transaction_type=StockLedgerEntry.TransactionType.ADJUSTMENT,
                    reversal_of=approval_item.issue_item.ledger_entry,
                    system_generated=True,
                    notes=f"Returned to source: {rejection_reason or 'not accepted by receiver'}",
                )
                logger.info(
                    "Credited %s %s back to batch %s for %s",
                    decision.returned_base_quantity, approval_item.item.base_uom,
                    source_batch.batch_no, issue.document_number,
                )

            amounts = line_amounts(
                decision.approved_base_quantity, source_batch.rate_per_unit, source_batch.gst_percentage,
            )
            approval_item.status = decision.status
            approval_item.approved_quantity = decision.approved_quantity
            approval_item.approved_uom = decision.approved_uom or approval_item.original_uom
            approval_item.approved_base_quantity = decision.approved_base_quantity
            approval_item.approved_base_amount = amounts['base_amount']
            approval_item.approved_gst_amount = amounts['gst_amount']
            approval_item.approved_total_amount = amounts['total_amount']
            approval_item.remarks = decision.remarks
            approval_item.save()

        statuses = {decision.status for decision in decisions}
        if statuses == {LineStatus.APPROVED}:
            approval.status, issue.status = MaterialApproval.Status.APPROVED, MovementStatus.APPROVED
        elif statuses == {LineStatus.REJECTED}:
            approval.status, issue.status = MaterialApproval.Status.REJECTED, MovementStatus.REJECTED
        else:
            approval.status, issue.status = MaterialApproval.Status.PARTIALLY_APPROVED, MovementStatus.PARTIAL

        now = timezone.now()
        approval.approved_by = audit.actor
        approval.approved_at = now
        approval.rejection_reason = rejection_reason or ''
        approval.remarks = remarks or ''
        approval.save()

        issue.approved_by = audit.actor
        issue.approved_at = now
        issue.rejection_reason = rejection_reason or ''
        issue.save(update_fields=['status', 'approved_by', 'approved_at', 'rejection_reason', 'updated_at'])

        logger.info("Approval for %s resolved as %s by %s", issue.document_number, approval.status, audit.actor)
        return approval

    @staticmethod
    def _lock_pending(approval_id, user) -> MaterialApproval:
        approval = (
            MaterialApproval.objects.select_for_update()
            .select_related('issue')
            .filter(pk=approval_id, company_id=user.company_id)
            .first()
        )
        if approval is None:
            raise NotFound(f"Approval {approval_id} not found.")
        if not can_resolve_approval(user, approval):
            raise Forbidden("You are not allowed to resolve this approval.")
        if not approval.is_pending:
            raise AlreadyProcessed(
                f"Approval for {approval.issue.document_number} is already {approval.status}.",
                status=approval.status,
            )
        return approval

    @staticmethod
    def _items(approval: MaterialApproval):
        return list(
            approval.items.select_related('item', 'batch', 'batch__item', 'issue_item__ledger_entry').order_by('id')
        )
