from django.core.exceptions import ValidationError as DjangoValidationError
from rest_framework import serializers

from .models import (
    Item,
    ItemUOMConversion,
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
    StockLedgerEntry,
)
from .services.location_service import LOCATION_KINDS
from .services.uom_service import quantize_money

QTY = dict(max_digits=20, decimal_places=6)


# ---------------------------------------------------------------------------
# Items & units
# ---------------------------------------------------------------------------

class ItemUOMConversionSerializer(serializers.ModelSerializer):
    item_code = serializers.CharField(source='item.code', read_only=True)

    class Meta:
        model = ItemUOMConversion
        fields = ['id', 'item', 'item_code', 'from_uom', 'to_uom', 'conversion_factor', 'created_at']
        read_only_fields = ['id', 'created_at']

    def validate_item(self, item):
        company = self.context.get('company')
        if company is not None and item.company_id != company.pk:
            raise serializers.ValidationError("Item not found.")
        return item

    def validate(self, attrs):
        instance = ItemUOMConversion(**attrs)
        try:
            instance.clean()
        except DjangoValidationError as exc:
            raise serializers.ValidationError(exc.messages)
        return attrs


class ItemSerializer(serializers.ModelSerializer):
    uom_conversions = ItemUOMConversionSerializer(many=True, read_only=True)
    supported_units = serializers.SerializerMethodField()

    class Meta:
        model = Item
        fields = [
            'id', 'code', 'name', 'category', 'description', 'base_uom', 'gst_rate',
            'is_active', 'uom_conversions', 'supported_units', 'created_at', 'updated_at',
        ]
        read_only_fields = ['id', 'created_at', 'updated_at']

    def get_supported_units(self, obj):
        units = {obj.base_uom}
        for conversion in obj.uom_conversions.all():
            units.update((conversion.from_uom, conversion.to_uom))
        return sorted(units)

    def validate_code(self, value):
        company = self.context.get('company')
        duplicates = Item.objects.filter(company=company, code=value)
        if self.instance is not None:
            duplicates = duplicates.exclude(pk=self.instance.pk)
        if company is not None and duplicates.exists():
            raise serializers.ValidationError("An item with this code already exists.")
        return value

    def validate_base_uom(self, value):
        if self.instance and value != self.instance.base_uom and self.instance.batches.exists():
            raise serializers.ValidationError("Base unit cannot change once stock exists.")
        return value


# ---------------------------------------------------------------------------
# Batches & ledger
# ---------------------------------------------------------------------------

class MaterialBatchSerializer(serializers.ModelSerializer):
    """Serializer for batch/lot tracking"""
    item_code = serializers.CharField(source='item.code', read_only=True)
    item_name = serializers.CharField(source='item.name', read_only=True)
    base_uom = serializers.CharField(source='item.base_uom', read_only=True)
    days_to_expiry = serializers.SerializerMethodField()
    total_value = serializers.SerializerMethodField()

    class Meta:
        model = MaterialBatch
        fields = [
            'id', 'item', 'item_code', 'item_name', 'base_uom', 'batch_no',
            'mfg_date', 'expiry_date', 'days_to_expiry', 'is_expired',
            'initial_qty', 'current_qty', 'rate_per_unit', 'gst_percentage', 'total_value',
            'location_type', 'location_id', 'created_at', 'updated_at',
        ]
        read_only_fields = fields

    def get_days_to_expiry(self, obj):
        return obj.days_to_expiry()

    def get_total_value(self, obj):
        return str(quantize_money(obj.current_qty * obj.rate_per_unit))


class StockLedgerEntrySerializer(serializers.ModelSerializer):
    item_code = serializers.CharField(source='item.code', read_only=True)
    item_name = serializers.CharField(source='item.name', read_only=True)
    batch_no = serializers.CharField(source='batch.batch_no', read_only=True)
    created_by_name = serializers.SerializerMethodField()

    class Meta:
        model = StockLedgerEntry
        fields = [
            'id', 'item', 'item_code', 'item_name', 'batch', 'batch_no',
            'location_type', 'location_id', 'transaction_type', 'transaction_id',
            'reference_no', 'transaction_date', 'quantity_in', 'quantity_out',
            'balance_quantity', 'rate_per_unit', 'balance_value',
            'created_by', 'created_by_name', 'user_role', 'notes',
            'system_generated', 'reversal_of', 'created_at',
        ]
        read_only_fields = fields

    def get_created_by_name(self, obj):
        if not obj.created_by:
            return None
        return obj.created_by.get_full_name() or obj.created_by.username


# ---------------------------------------------------------------------------
# Movement documents (read side)
# ---------------------------------------------------------------------------

MOVEMENT_ITEM_FIELDS = [
    'id', 'line_no', 'item', 'item_code', 'batch', 'batch_no', 'quantity', 'uom',
    'base_quantity', 'rate_per_unit', 'gst_percentage', 'base_amount', 'gst_amount', 'total_amount',
]

MOVEMENT_FIELDS = [
    'id', 'document_number', 'movement_date', 'status', 'status_display',
    'from_location_type', 'from_location_id', 'to_location_type', 'to_location_id',
    'notes', 'created_by', 'created_at', 'updated_at',
]


class MovementItemSerializer(serializers.ModelSerializer):
    item_code = serializers.CharField(source='item.code', read_only=True)
    batch_no = serializers.CharField(source='batch.batch_no', read_only=True)


class MaterialReceiptItemSerializer(MovementItemSerializer):
    class Meta:
        model = MaterialReceiptItem
        fields = MOVEMENT_ITEM_FIELDS


class MaterialIssueItemSerializer(MovementItemSerializer):
    class Meta:
        model = MaterialIssueItem
        fields = MOVEMENT_ITEM_FIELDS + ['ledger_entry']


class MaterialReturnItemSerializer(MovementItemSerializer):
    class Meta:
        model = MaterialReturnItem
        fields = MOVEMENT_ITEM_FIELDS


class MaterialTransferItemSerializer(MovementItemSerializer):
    class Meta:
        model = MaterialTransferItem
        fields = MOVEMENT_ITEM_FIELDS


class MaterialConsumptionItemSerializer(MovementItemSerializer):
    class Meta:
        model = MaterialConsumptionItem
        fields = MOVEMENT_ITEM_FIELDS


class MaterialReceiptSerializer(serializers.ModelSerializer):
    status_display = serializers.CharField(source='get_status_display', read_only=True)
    items = MaterialReceiptItemSerializer(many=True, read_only=True)

    class Meta:
        model = MaterialReceipt
        fields = MOVEMENT_FIELDS + [
            'vendor_name', 'invoice_number', 'invoice_date',
            'total_base_amount', 'total_gst_amount', 'total_amount', 'items',
        ]


class MaterialIssueSerializer(serializers.ModelSerializer):
    """Serializer for Material Issue"""
    status_display = serializers.CharField(source='get_status_display', read_only=True)
    items = MaterialIssueItemSerializer(many=True, read_only=True)
    approval_id = serializers.IntegerField(source='approval.id', read_only=True)
    approval_status = serializers.CharField(source='approval.status', read_only=True)

    class Meta:
        model = MaterialIssue
        fields = MOVEMENT_FIELDS + [
            'purpose', 'approved_by', 'approved_at', 'rejection_reason',
            'approval_id', 'approval_status', 'items',
        ]


class MaterialReturnSerializer(serializers.ModelSerializer):
    status_display = serializers.CharField(source='get_status_display', read_only=True)
    items = MaterialReturnItemSerializer(many=True, read_only=True)

    class Meta:
        model = MaterialReturn
        fields = MOVEMENT_FIELDS + ['reason', 'items']


class MaterialTransferSerializer(serializers.ModelSerializer):
    status_display = serializers.CharField(source='get_status_display', read_only=True)
    items = MaterialTransferItemSerializer(many=True, read_only=True)

    class Meta:
        model = MaterialTransfer
        fields = MOVEMENT_FIELDS + ['items']


class MaterialConsumptionSerializer(serializers.ModelSerializer):
    status_display = serializers.CharField(source='get_status_display', read_only=True)
    items = MaterialConsumptionItemSerializer(many=True, read_only=True)

    class Meta:
        model = MaterialConsumption
        fields = MOVEMENT_FIELDS + ['technician', 'service_reference', 'lead_reference', 'items']


# ---------------------------------------------------------------------------
# Approvals
# ---------------------------------------------------------------------------

class MaterialApprovalItemSerializer(serializers.ModelSerializer):
    item_code = serializers.CharField(source='item.code', read_only=True)
    batch_no = serializers.CharField(source='batch.batch_no', read_only=True)

    class Meta:
        model = MaterialApprovalItem
        fields = [
            'id', 'issue_item', 'item', 'item_code', 'batch', 'batch_no',
            'original_quantity', 'original_uom', 'original_base_quantity',
            'original_base_amount', 'original_gst_amount', 'original_total_amount',
            'approved_quantity', 'approved_uom', 'approved_base_quantity',
            'approved_base_amount', 'approved_gst_amount', 'approved_total_amount',
            'status', 'remarks',
        ]
        read_only_fields = fields


class MaterialApprovalSerializer(serializers.ModelSerializer):
    issue_number = serializers.CharField(source='issue.document_number', read_only=True)
    issue_status = serializers.CharField(source='issue.status', read_only=True)
    approved_by_name = serializers.CharField(source='approved_by.get_full_name', read_only=True, allow_null=True)
    items = MaterialApprovalItemSerializer(many=True, read_only=True)

    class Meta:
        model = MaterialApproval
        fields = [
            'id', 'issue', 'issue_number', 'issue_status', 'assigned_to_type', 'assigned_to_id',
            'status', 'approved_by', 'approved_by_name', 'approved_at',
            'rejection_reason', 'remarks', 'items', 'created_at', 'updated_at',
        ]
        read_only_fields = fields


# ---------------------------------------------------------------------------
# Request payloads
# ---------------------------------------------------------------------------

class LocationInputSerializer(serializers.Serializer):
    type = serializers.ChoiceField(choices=sorted(str(kind) for kind in LOCATION_KINDS))
    id = serializers.IntegerField(required=False, allow_null=True, min_value=1)


class MovementLineInputSerializer(serializers.Serializer):
    item = serializers.IntegerField(min_value=1)
    quantity = serializers.DecimalField(**QTY)
    uom = serializers.CharField(max_length=20, required=False, allow_blank=True)
    batch = serializers.IntegerField(required=False, allow_null=True, min_value=1)


class ReceiptLineInputSerializer(serializers.Serializer):
    item = serializers.IntegerField(min_value=1)
    quantity = serializers.DecimalField(**QTY)
    uom = serializers.CharField(max_length=20, required=False, allow_blank=True)
    rate = serializers.DecimalField(max_digits=18, decimal_places=4, required=False, default=0, min_value=0)
    gst_percentage = serializers.DecimalField(max_digits=5, decimal_places=2, required=False, allow_null=True)
    batch_no = serializers.CharField(max_length=100, required=False, allow_blank=True)
    mfg_date = serializers.DateField(required=False, allow_null=True)
    expiry_date = serializers.DateField(required=False, allow_null=True)

    def validate(self, attrs):
        mfg, expiry = attrs.get('mfg_date'), attrs.get('expiry_date')
        if mfg and expiry and expiry < mfg:
            raise serializers.ValidationError("Expiry date cannot be before the manufacturing date.")
        return attrs


class ReceiptInputSerializer(serializers.Serializer):
    destination = LocationInputSerializer()
    vendor_name = serializers.CharField(max_length=255, required=False, allow_blank=True)
    invoice_number = serializers.CharField(max_length=100, required=False, allow_blank=True)
    invoice_date = serializers.DateField(required=False, allow_null=True)
    movement_date = serializers.DateField(required=False, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True)
    items = ReceiptLineInputSerializer(many=True, allow_empty=False)


class TransferInputSerializer(serializers.Serializer):
    source = LocationInputSerializer()
    destination = LocationInputSerializer()
    movement_date = serializers.DateField(required=False, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True)
    items = MovementLineInputSerializer(many=True, allow_empty=False)


class IssueInputSerializer(TransferInputSerializer):
    purpose = serializers.CharField(required=False, allow_blank=True)


class ReturnInputSerializer(TransferInputSerializer):
    reason = serializers.CharField(required=False, allow_blank=True)


class ConsumptionInputSerializer(serializers.Serializer):
    technician = serializers.IntegerField(required=False, allow_null=True, min_value=1)
    service_reference = serializers.CharField(max_length=100, required=False, allow_blank=True)
    lead_reference = serializers.CharField(max_length=100, required=False, allow_blank=True)
    movement_date = serializers.DateField(required=False, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True)
    items = MovementLineInputSerializer(many=True, allow_empty=False)


class ApproveInputSerializer(serializers.Serializer):
    remarks = serializers.CharField(required=False, allow_blank=True, default='')


class RejectInputSerializer(serializers.Serializer):
    rejection_reason = serializers.CharField(required=False, allow_blank=True, default='')
    remarks = serializers.CharField(required=False, allow_blank=True, default='')


class LineDecisionInputSerializer(serializers.Serializer):
    approval_item_id = serializers.IntegerField()
    decision = serializers.ChoiceField(choices=['APPROVED', 'REJECTED'])
    approved_quantity = serializers.DecimalField(**QTY, required=False, allow_null=True)
    approved_uom = serializers.CharField(max_length=20, required=False, allow_blank=True)
    remarks = serializers.CharField(required=False, allow_blank=True)


class PartialAcceptInputSerializer(serializers.Serializer):
    lines = LineDecisionInputSerializer(many=True, required=False, default=list)
    rejection_reason = serializers.CharField(required=False, allow_blank=True, default='')
    remarks = serializers.CharField(required=False, allow_blank=True, default='')
