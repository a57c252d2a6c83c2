"""
Inventory models: items, unit conversions, stock batches, the five
material movement documents, issue approvals and the stock ledger.

Quantities are stored in the item's base unit with six decimal places;
money values carry two.
"""
from __future__ import annotations

from datetime import date

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from django.utils import timezone

from shared.models import CompanyAwareModel

QTY_FIELD = dict(max_digits=20, decimal_places=6)
RATE_FIELD = dict(max_digits=18, decimal_places=4)
MONEY_FIELD = dict(max_digits=18, decimal_places=2)


class LocationType(models.TextChoices):
    """Stock holding locations. WAREHOUSE is accepted on input only."""
    COMPANY = 'COMPANY', 'Company'
    BRANCH = 'BRANCH', 'Branch'
    TECHNICIAN = 'TECHNICIAN', 'Technician'


# ---------------------------------------------------------------------------
# Items & units
# ---------------------------------------------------------------------------

class Item(CompanyAwareModel):
    """Stocked chemical, consumable or piece of equipment."""
    code = models.CharField(max_length=50)
    name = models.CharField(max_length=255)
    category = models.CharField(max_length=100, blank=True)
    description = models.TextField(blank=True)
    base_uom = models.CharField(
        max_length=20,
        help_text="Unit every batch quantity of this item is stored in"
    )
    gst_rate = models.DecimalField(max_digits=5, decimal_places=2, default=0)
    is_active = models.BooleanField(default=True)

    class Meta:
        db_table = 'inventory_item'
        ordering = ['code']
        constraints = [
            models.UniqueConstraint(fields=['company', 'code'], name='uniq_item_code_per_company'),
        ]

    def __str__(self):
        return f"{self.code} - {self.name}"


class ItemUOMConversion(models.Model):
    """One ``from_uom`` equals ``conversion_factor`` ``to_uom``."""
    item = models.ForeignKey(Item, on_delete=models.CASCADE, related_name='uom_conversions')
    from_uom = models.CharField(max_length=20)
    to_uom = models.CharField(max_length=20)
    conversion_factor = models.DecimalField(
        **QTY_FIELD,
        help_text="Quantity of to_uom in one from_uom"
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'inventory_item_uom_conversion'
        constraints = [
            models.UniqueConstraint(fields=['item', 'from_uom', 'to_uom'], name='uniq_item_uom_conversion'),
            models.CheckConstraint(condition=models.Q(conversion_factor__gt=0), name='uom_conversion_factor_positive'),
        ]

    def __str__(self):
        return f"1 {self.from_uom} = {self.conversion_factor} {self.to_uom}"

    def clean(self):
        if self.from_uom == self.to_uom:
            raise ValidationError("From and to units must differ.")
        if self.conversion_factor is not None and self.conversion_factor <= 0:
            raise ValidationError({'conversion_factor': "Conversion factor must be positive."})
        if self.item_id and self.item.base_uom not in (self.from_uom, self.to_uom):
            raise ValidationError(f"One side of the conversion must be the base unit {self.item.base_uom}.")


# ---------------------------------------------------------------------------
# Batches
# ---------------------------------------------------------------------------

class MaterialBatch(CompanyAwareModel):
    """
    Quantity of one item with shared batch number, expiry and rate, held at
    one location. ``current_qty`` only changes through the batch service.
    """
    item = models.ForeignKey(Item, on_delete=models.PROTECT, related_name='batches')
    batch_no = models.CharField(max_length=100)
    mfg_date = models.DateField(null=True, blank=True)
    expiry_date = models.DateField(null=True, blank=True, db_index=True)
    initial_qty = models.DecimalField(**QTY_FIELD)
    current_qty = models.DecimalField(**QTY_FIELD)
    rate_per_unit = models.DecimalField(**RATE_FIELD, default=0, help_text="Rate per base unit")
    gst_percentage = models.DecimalField(max_digits=5, decimal_places=2, default=0)
    location_type = models.CharField(max_length=20, choices=LocationType.choices)
    location_id = models.PositiveBigIntegerField()
    is_expired = models.BooleanField(default=False)

    class Meta:
        db_table = 'inventory_material_batch'
        ordering = ['expiry_date', 'created_at', 'id']
        constraints = [
            models.UniqueConstraint(
                fields=['item', 'batch_no', 'location_type', 'location_id'],
                name='uniq_batch_per_location',
            ),
            models.CheckConstraint(condition=models.Q(current_qty__gte=0), name='batch_current_qty_non_negative'),
        ]
        indexes = [
            models.Index(fields=['item', 'location_type', 'location_id', 'expiry_date'], name='batch_fefo_lookup_idx'),
        ]

    def __str__(self):
        return f"{self.batch_no} ({self.item.code}) @ {self.location_type}:{self.location_id}"

    @property
    def location(self):
        from .services.location_service import Location
        return Location(self.location_type, self.location_id)

    def is_past_expiry(self, on: date | None = None) -> bool:
        if not self.expiry_date:
            return False
        return self.expiry_date < (on or timezone.localdate())

    def days_to_expiry(self, on: date | None = None):
        if not self.expiry_date:
            return None
        return (self.expiry_date - (on or timezone.localdate())).days


# ---------------------------------------------------------------------------
# Movement documents
# ---------------------------------------------------------------------------

class MovementStatus(models.TextChoices):
    AWAITING_APPROVAL = 'AWAITING_APPROVAL', 'Awaiting Approval'
    APPROVED = 'APPROVED', 'Approved'
    REJECTED = 'REJECTED', 'Rejected'
    PARTIAL = 'PARTIAL', 'Partially Approved'
    RECEIVED = 'RECEIVED', 'Received'


class MaterialMovement(CompanyAwareModel):
    """Common header of receipts, issues, returns, transfers and consumptions."""
    DOC_PREFIX = ''

    document_number = models.CharField(max_length=50)
    movement_date = models.DateField(default=timezone.localdate)
    from_location_type = models.CharField(max_length=20, choices=LocationType.choices, blank=True)
    from_location_id = models.PositiveBigIntegerField(null=True, blank=True)
    to_location_type = models.CharField(max_length=20, choices=LocationType.choices, blank=True)
    to_location_id = models.PositiveBigIntegerField(null=True, blank=True)
    status = models.CharField(max_length=20, choices=MovementStatus.choices, default=MovementStatus.APPROVED)
    notes = models.TextField(blank=True)

    class Meta:
        abstract = True
        ordering = ['-created_at', '-id']
        constraints = [
            models.UniqueConstraint(
                fields=['company', 'document_number'],
                name='uniq_%(class)s_document_number',
            ),
        ]

    def __str__(self):
        return self.document_number

    @property
    def source(self):
        from .services.location_service import Location
        if not self.from_location_type:
            return None
        return Location(self.from_location_type, self.from_location_id)

    @property
    def destination(self):
        from .services.location_service import Location
        if not self.to_location_type:
            return None
        return Location(self.to_location_type, self.to_location_id)


class MaterialReceipt(MaterialMovement):
    """Stock arriving from a vendor into a company or branch store."""
    DOC_PREFIX = 'MR'

    vendor_name = models.CharField(max_length=255, blank=True)
    invoice_number = models.CharField(max_length=100, blank=True)
    invoice_date = models.DateField(null=True, blank=True)
    total_base_amount = models.DecimalField(**MONEY_FIELD, default=0)
    total_gst_amount = models.DecimalField(**MONEY_FIELD, default=0)
    total_amount = models.DecimalField(**MONEY_FIELD, default=0)

    class Meta(MaterialMovement.Meta):
        db_table = 'inventory_material_receipt'


class MaterialIssue(MaterialMovement):
    """Stock sent to a branch or technician, pending the receiver's approval."""
    DOC_PREFIX = 'MI'

    purpose = models.TextField(blank=True)
    approved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='+'
    )
    approved_at = models.DateTimeField(null=True, blank=True)
    rejection_reason = models.TextField(blank=True)

    class Meta(MaterialMovement.Meta):
        db_table = 'inventory_material_issue'


class MaterialReturn(MaterialMovement):
    DOC_PREFIX = 'MRT'

    reason = models.TextField(blank=True)

    class Meta(MaterialMovement.Meta):
        db_table = 'inventory_material_return'


class MaterialTransfer(MaterialMovement):
    DOC_PREFIX = 'MT'

    class Meta(MaterialMovement.Meta):
        db_table = 'inventory_material_transfer'


class MaterialConsumption(MaterialMovement):
    """Stock used up by a technician on a service job."""
    DOC_PREFIX = 'MC'

    technician = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='material_consumptions'
    )
    service_reference = models.CharField(max_length=100, blank=True)
    lead_reference = models.CharField(max_length=100, blank=True)

    class Meta(MaterialMovement.Meta):
        db_table = 'inventory_material_consumption'


class MaterialMovementItem(models.Model):
    """
    One line of a movement. ``quantity`` / ``uom`` echo what the caller
    entered; ``base_quantity`` is what moved in stock.
    """
    line_no = models.PositiveIntegerField(default=1)
    item = models.ForeignKey(Item, on_delete=models.PROTECT, related_name='+')
    batch = models.ForeignKey(MaterialBatch, on_delete=models.PROTECT, related_name='+')
    quantity = models.DecimalField(**QTY_FIELD)
    uom = models.CharField(max_length=20)
    base_quantity = models.DecimalField(**QTY_FIELD)
    rate_per_unit = models.DecimalField(**RATE_FIELD, default=0)
    gst_percentage = models.DecimalField(max_digits=5, decimal_places=2, default=0)
    base_amount = models.DecimalField(**MONEY_FIELD, default=0)
    gst_amount = models.DecimalField(**MONEY_FIELD, default=0)
    total_amount = models.DecimalField(**MONEY_FIELD, default=0)

    class Meta:
        abstract = True
        ordering = ['line_no', 'id']

    def __str__(self):
        return f"{self.item.code}: {self.quantity} {self.uom}"


class MaterialReceiptItem(MaterialMovementItem):
    receipt = models.ForeignKey(MaterialReceipt, on_delete=models.CASCADE, related_name='items')

    class Meta(MaterialMovementItem.Meta):
        db_table = 'inventory_material_receipt_item'


class MaterialIssueItem(MaterialMovementItem):
    issue = models.ForeignKey(MaterialIssue, on_delete=models.CASCADE, related_name='items')
    ledger_entry = models.OneToOneField(
        'StockLedgerEntry',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='issue_item',
        help_text="Ledger row that took this line out of the source batch"
    )

    class Meta(MaterialMovementItem.Meta):
        db_table = 'inventory_material_issue_item'


class MaterialReturnItem(MaterialMovementItem):
    material_return = models.ForeignKey(MaterialReturn, on_delete=models.CASCADE, related_name='items')

    class Meta(MaterialMovementItem.Meta):
        db_table = 'inventory_material_return_item'


class MaterialTransferItem(MaterialMovementItem):
    transfer = models.ForeignKey(MaterialTransfer, on_delete=models.CASCADE, related_name='items')

    class Meta(MaterialMovementItem.Meta):
        db_table = 'inventory_material_transfer_item'


class MaterialConsumptionItem(MaterialMovementItem):
    consumption = models.ForeignKey(MaterialConsumption, on_delete=models.CASCADE, related_name='items')

    class Meta(MaterialMovementItem.Meta):
        db_table = 'inventory_material_consumption_item'


# ---------------------------------------------------------------------------
# Approvals
# ---------------------------------------------------------------------------

class MaterialApproval(models.Model):
    """Receiver-side decision on a Material Issue."""

    class Status(models.TextChoices):
        PENDING = 'PENDING', 'Pending'
        APPROVED = 'APPROVED', 'Approved'
        REJECTED = 'REJECTED', 'Rejected'
        PARTIALLY_APPROVED = 'PARTIALLY_APPROVED', 'Partially Approved'

    class AssignedTo(models.TextChoices):
        BRANCH = 'BRANCH', 'Branch'
        TECHNICIAN = 'TECHNICIAN', 'Technician'

    company = models.ForeignKey('companies.Company', on_delete=models.PROTECT)
    issue = models.OneToOneField(MaterialIssue, on_delete=models.CASCADE, related_name='approval')
    assigned_to_type = models.CharField(max_length=20, choices=AssignedTo.choices)
    assigned_to_id = models.PositiveBigIntegerField()
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING, db_index=True)
    approved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='material_approvals_resolved'
    )
    approved_at = models.DateTimeField(null=True, blank=True)
    rejection_reason = models.TextField(blank=True)
    remarks = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'inventory_material_approval'
        ordering = ['-created_at', '-id']
        indexes = [
            models.Index(fields=['company', 'status', 'assigned_to_type', 'assigned_to_id'], name='approval_queue_idx'),
        ]

    def __str__(self):
        return f"Approval of {self.issue.document_number} ({self.status})"

    @property
    def is_pending(self) -> bool:
        return self.status == self.Status.PENDING


class MaterialApprovalItem(models.Model):
    """Snapshot of an issue line with the receiver's decision on it."""

    class Status(models.TextChoices):
        PENDING = 'PENDING', 'Pending'
        APPROVED = 'APPROVED', 'Approved'
        REJECTED = 'REJECTED', 'Rejected'
        PARTIALLY_APPROVED = 'PARTIALLY_APPROVED', 'Partially Approved'

    approval = models.ForeignKey(MaterialApproval, on_delete=models.CASCADE, related_name='items')
    issue_item = models.OneToOneField(MaterialIssueItem, on_delete=models.CASCADE, related_name='approval_item')
    item = models.ForeignKey(Item, on_delete=models.PROTECT, related_name='+')
    batch = models.ForeignKey(MaterialBatch, on_delete=models.PROTECT, related_name='+')

    original_quantity = models.DecimalField(**QTY_FIELD)
    original_uom = models.CharField(max_length=20)
    original_base_quantity = models.DecimalField(**QTY_FIELD)
    original_base_amount = models.DecimalField(**MONEY_FIELD, default=0)
    original_gst_amount = models.DecimalField(**MONEY_FIELD, default=0)
    original_total_amount = models.DecimalField(**MONEY_FIELD, default=0)

    approved_quantity = models.DecimalField(**QTY_FIELD, null=True, blank=True)
    approved_uom = models.CharField(max_length=20, blank=True)
    approved_base_quantity = models.DecimalField(**QTY_FIELD, null=True, blank=True)
    approved_base_amount = models.DecimalField(**MONEY_FIELD, null=True, blank=True)
    approved_gst_amount = models.DecimalField(**MONEY_FIELD, null=True, blank=True)
    approved_total_amount = models.DecimalField(**MONEY_FIELD, null=True, blank=True)

    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)
    remarks = models.TextField(blank=True)

    class Meta:
        db_table = 'inventory_material_approval_item'
        ordering = ['id']

    def __str__(self):
        return f"{self.item.code}: {self.original_quantity} {self.original_uom} ({self.status})"


# ---------------------------------------------------------------------------
# Stock ledger
# ---------------------------------------------------------------------------

class StockLedgerEntry(models.Model):
    """
    Append-only record of one batch quantity change. Exactly one of
    ``quantity_in`` / ``quantity_out`` is non-zero; ``balance_quantity`` is
    the batch quantity right after the change.
    """

    class TransactionType(models.TextChoices):
        RECEIPT = 'RECEIPT', 'Receipt'
        ISSUE = 'ISSUE', 'Issue'
        RETURN = 'RETURN', 'Return'
        TRANSFER = 'TRANSFER', 'Transfer'
        CONSUMPTION = 'CONSUMPTION', 'Consumption'
        ADJUSTMENT = 'ADJUSTMENT', 'Adjustment'

    company = models.ForeignKey('companies.Company', on_delete=models.PROTECT)
    item = models.ForeignKey(Item, on_delete=models.PROTECT, related_name='ledger_entries')
    batch = models.ForeignKey(MaterialBatch, on_delete=models.PROTECT, related_name='ledger_entries')
    location_type = models.CharField(max_length=20, choices=LocationType.choices)
    location_id = models.PositiveBigIntegerField()

    transaction_type = models.CharField(max_length=20, choices=TransactionType.choices)
    transaction_id = models.PositiveBigIntegerField(help_text="Primary key of the movement document")
    reference_no = models.CharField(max_length=50, blank=True)
    transaction_date = models.DateTimeField(default=timezone.now, db_index=True)

    quantity_in = models.DecimalField(**QTY_FIELD, default=0)
    quantity_out = models.DecimalField(**QTY_FIELD, default=0)
    balance_quantity = models.DecimalField(**QTY_FIELD)
    rate_per_unit = models.DecimalField(**RATE_FIELD, default=0)
    balance_value = models.DecimalField(**MONEY_FIELD, default=0)

    # Audit trail
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+'
    )
    user_role = models.CharField(max_length=30, blank=True)
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    user_agent = models.CharField(max_length=255, blank=True)
    notes = models.TextField(blank=True)
    system_generated = models.BooleanField(default=False)
    reversal_of = models.ForeignKey(
        'self',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='reversals'
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'inventory_stock_ledger_entry'
        ordering = ['created_at', 'id']
        constraints = [
            models.CheckConstraint(
                condition=(
                    models.Q(quantity_in__gt=0, quantity_out=0)
                    | models.Q(quantity_in=0, quantity_out__gt=0)
                ),
                name='ledger_entry_one_direction',
            ),
        ]
        indexes = [
            models.Index(fields=['company', 'item', 'location_type', 'location_id'], name='ledger_item_location_idx'),
            models.Index(fields=['transaction_type', 'transaction_id'], name='ledger_transaction_idx'),
        ]
        verbose_name_plural = 'Stock ledger entries'

    def __str__(self):
        direction = f"+{self.quantity_in}" if self.quantity_in else f"-{self.quantity_out}"
        return f"{self.reference_no} {self.item.code} {direction}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("Stock ledger entries are immutable once posted.")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError("Stock ledger entries cannot be deleted.")
