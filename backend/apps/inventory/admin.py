from django.contrib import admin
from django.utils.html import format_html

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


class ItemUOMConversionInline(admin.TabularInline):
    model = ItemUOMConversion
    extra = 0


@admin.register(Item)
class ItemAdmin(admin.ModelAdmin):
    list_display = ['code', 'name', 'category', 'base_uom', 'gst_rate', 'is_active', 'company']
    list_filter = ['is_active', 'category', 'company']
    search_fields = ['code', 'name']
    readonly_fields = ['created_at', 'updated_at']
    exclude = ['created_by']
    inlines = [ItemUOMConversionInline]

    def save_model(self, request, obj, form, change):
        if not obj.created_by:
            obj.created_by = request.user
        super().save_model(request, obj, form, change)


@admin.register(MaterialBatch)
class MaterialBatchAdmin(admin.ModelAdmin):
    list_display = [
        'batch_no', 'item', 'location_type', 'location_id',
        'current_qty', 'initial_qty', 'expiry_date', 'expiry_badge',
    ]
    list_filter = ['location_type', 'is_expired', 'company']
    search_fields = ['batch_no', 'item__code', 'item__name']
    date_hierarchy = 'expiry_date'
    # Quantities only change through stock postings
    readonly_fields = ['initial_qty', 'current_qty', 'created_at', 'updated_at', 'created_by']

    def expiry_badge(self, obj):
        days = obj.days_to_expiry()
        if days is None:
            return '-'
        color = 'red' if days < 0 else ('orange' if days <= 30 else 'green')
        return format_html('<span style="color: {};">{} days</span>', color, days)
    expiry_badge.short_description = 'Expiry'


class MovementItemInline(admin.TabularInline):
    extra = 0
    can_delete = False
    readonly_fields = [
        'line_no', 'item', 'batch', 'quantity', 'uom', 'base_quantity',
        'rate_per_unit', 'gst_percentage', 'base_amount', 'gst_amount', 'total_amount',
    ]

    def has_add_permission(self, request, obj=None):
        return False


class MovementAdmin(admin.ModelAdmin):
    """Movement documents are posted through the API; the admin only reads them."""
    list_display = [
        'document_number', 'movement_date', 'from_location_type', 'from_location_id',
        'to_location_type', 'to_location_id', 'status', 'company',
    ]
    list_filter = ['status', 'movement_date', 'company']
    search_fields = ['document_number', 'notes']
    date_hierarchy = 'movement_date'

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


class MaterialReceiptItemInline(MovementItemInline):
    model = MaterialReceiptItem


class MaterialIssueItemInline(MovementItemInline):
    model = MaterialIssueItem


class MaterialReturnItemInline(MovementItemInline):
    model = MaterialReturnItem


class MaterialTransferItemInline(MovementItemInline):
    model = MaterialTransferItem


class MaterialConsumptionItemInline(MovementItemInline):
    model = MaterialConsumptionItem


@admin.register(MaterialReceipt)
class MaterialReceiptAdmin(MovementAdmin):
    list_display = MovementAdmin.list_display + ['vendor_name', 'total_amount']
    search_fields = MovementAdmin.search_fields + ['vendor_name', 'invoice_number']
    inlines = [MaterialReceiptItemInline]


@admin.register(MaterialIssue)
class MaterialIssueAdmin(MovementAdmin):
    inlines = [MaterialIssueItemInline]


@admin.register(MaterialReturn)
class MaterialReturnAdmin(MovementAdmin):
    inlines = [MaterialReturnItemInline]


@admin.register(MaterialTransfer)
class MaterialTransferAdmin(MovementAdmin):
    inlines = [MaterialTransferItemInline]


@admin.register(MaterialConsumption)
class MaterialConsumptionAdmin(MovementAdmin):
    list_display = MovementAdmin.list_display + ['technician', 'service_reference']
    inlines = [MaterialConsumptionItemInline]


class MaterialApprovalItemInline(admin.TabularInline):
    model = MaterialApprovalItem
    extra = 0
    can_delete = False
    fields = [
        'item', 'batch', 'original_quantity', 'original_uom',
        'approved_quantity', 'approved_uom', 'status', 'remarks',
    ]
    readonly_fields = fields


@admin.register(MaterialApproval)
class MaterialApprovalAdmin(admin.ModelAdmin):
    list_display = ['issue', 'assigned_to_type', 'assigned_to_id', 'status', 'approved_by', 'approved_at', 'company']
    list_filter = ['status', 'assigned_to_type', 'company']
    search_fields = ['issue__document_number']
    readonly_fields = [
        'issue', 'assigned_to_type', 'assigned_to_id', 'status', 'approved_by',
        'approved_at', 'rejection_reason', 'remarks', 'created_at', 'updated_at',
    ]
    inlines = [MaterialApprovalItemInline]

    def has_add_permission(self, request):
        return False


@admin.register(StockLedgerEntry)
class StockLedgerEntryAdmin(admin.ModelAdmin):
    list_display = [
        'transaction_date', 'reference_no', 'item', 'batch', 'location_type', 'location_id',
        'transaction_type', 'colored_qty_in', 'colored_qty_out', 'balance_quantity', 'company',
    ]
    list_filter = ['transaction_type', 'location_type', 'system_generated', 'company']
    search_fields = ['reference_no', 'item__code', 'item__name', 'batch__batch_no']
    date_hierarchy = 'transaction_date'

    def colored_qty_in(self, obj):
        if obj.quantity_in > 0:
            return format_html('<span style="color: green;">+{}</span>', obj.quantity_in)
        return '-'
    colored_qty_in.short_description = 'In'

    def colored_qty_out(self, obj):
        if obj.quantity_out > 0:
            return format_html('<span style="color: red;">-{}</span>', obj.quantity_out)
        return '-'
    colored_qty_out.short_description = 'Out'

    def get_readonly_fields(self, request, obj=None):
        return [field.name for field in self.model._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
