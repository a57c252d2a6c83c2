from django.conf import settings
from django.db.models import Q
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.pagination import PageNumberPagination
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from .exceptions import ValidationError
from .models import (
    Item,
    ItemUOMConversion,
    LocationType,
    MaterialApprovalItem,
    MaterialBatch,
    MaterialConsumption,
    MaterialIssue,
    MaterialReceipt,
    MaterialReturn,
    MaterialTransfer,
)
from .permissions import CanManageCatalog, HasCompanyContext
from .serializers import (
    ApproveInputSerializer,
    ConsumptionInputSerializer,
    IssueInputSerializer,
    ItemSerializer,
    ItemUOMConversionSerializer,
    MaterialApprovalSerializer,
    MaterialBatchSerializer,
    MaterialConsumptionSerializer,
    MaterialIssueSerializer,
    MaterialReceiptSerializer,
    MaterialReturnSerializer,
    MaterialTransferSerializer,
    PartialAcceptInputSerializer,
    ReceiptInputSerializer,
    RejectInputSerializer,
    ReturnInputSerializer,
    StockLedgerEntrySerializer,
    TransferInputSerializer,
)
from .services.approval_service import ApprovalService
from .services.batch_fefo_service import BatchFEFOService
from .services.ledger_service import AuditContext, StockLedgerService
from .services.location_service import Location, resolve_location
from .services.stock_service import InventoryService


def inventory_setting(name, default=None):
    return getattr(settings, 'INVENTORY', {}).get(name, default)


class CompanyScopedQuerysetMixin:
    permission_classes = [IsAuthenticated, HasCompanyContext]

    def get_company(self):
        return getattr(self.request.user, "company", None)

    def get_audit(self):
        return AuditContext.from_request(self.request)

    def get_serializer_context(self):
        context = super().get_serializer_context()
        context.update({"request": self.request, "company": self.get_company()})
        return context


class LedgerPagination(PageNumberPagination):
    page_size_query_param = 'limit'
    max_page_size = 500

    def get_page_size(self, request):
        self.page_size = inventory_setting('LEDGER_PAGE_SIZE', 50)
        return super().get_page_size(request)


# ---------------------------------------------------------------------------
# Items & units
# ---------------------------------------------------------------------------

class ItemViewSet(CompanyScopedQuerysetMixin, viewsets.ModelViewSet):
    serializer_class = ItemSerializer
    permission_classes = [IsAuthenticated, HasCompanyContext, CanManageCatalog]

    def get_queryset(self):
        qs = Item.objects.filter(company=self.get_company()).prefetch_related('uom_conversions')
        category = self.request.query_params.get('category')
        if category:
            qs = qs.filter(category__iexact=category)
        code = self.request.query_params.get('code')
        if code:
            qs = qs.filter(code__icontains=code)
        active = self.request.query_params.get('active')
        if active and active.lower() in {'true', '1', 'yes'}:
            qs = qs.filter(is_active=True)
        return qs

    def perform_create(self, serializer):
        serializer.save(company=self.get_company(), created_by=self.request.user)

    def perform_destroy(self, instance):
        if instance.batches.exists():
            raise ValidationError(f"Item {instance.code} has stock batches; deactivate it instead.")
        instance.delete()


class ItemUOMConversionViewSet(CompanyScopedQuerysetMixin,
                               mixins.CreateModelMixin,
                               mixins.ListModelMixin,
                               mixins.RetrieveModelMixin,
                               mixins.DestroyModelMixin,
                               viewsets.GenericViewSet):
    serializer_class = ItemUOMConversionSerializer
    permission_classes = [IsAuthenticated, HasCompanyContext, CanManageCatalog]

    def get_queryset(self):
        qs = ItemUOMConversion.objects.filter(item__company=self.get_company()).select_related('item')
        item_id = self.request.query_params.get('item')
        if item_id:
            qs = qs.filter(item_id=item_id)
        return qs

    def perform_destroy(self, instance):
        unit = instance.to_uom if instance.from_uom == instance.item.base_uom else instance.from_uom
        in_use = MaterialApprovalItem.objects.filter(
            item=instance.item,
            original_uom=unit,
            approval__status='PENDING',
        ).exists()
        if in_use:
            raise ValidationError(f"Unit {unit} is used by a pending approval and cannot be removed.")
        instance.delete()


# ---------------------------------------------------------------------------
# Batches & ledger
# ---------------------------------------------------------------------------

class MaterialBatchViewSet(CompanyScopedQuerysetMixin, viewsets.ReadOnlyModelViewSet):
    """ViewSet for batch/lot lookup"""
    serializer_class = MaterialBatchSerializer

    def get_queryset(self):
        params = self.request.query_params
        queryset = MaterialBatch.objects.filter(company=self.get_company()).select_related('item')
        if self.request.user.is_technician:
            queryset = queryset.filter(location_type=LocationType.TECHNICIAN, location_id=self.request.user.pk)

        for param in ('item', 'location_type', 'location_id', 'batch_no'):
            value = params.get(param)
            if value:
                queryset = queryset.filter(**{param if param != 'item' else 'item_id': value})

        if params.get('with_stock') == 'true':
            queryset = queryset.filter(current_qty__gt=0)
        if params.get('expired') == 'true':
            queryset = queryset.filter(is_expired=True)
        return queryset.order_by('expiry_date', 'created_at', 'id')

    @action(detail=False, methods=['get'])
    def available(self, request):
        """Batches that can serve an outgoing movement, in FEFO order."""
        params = request.query_params
        item = Item.objects.filter(company=self.get_company(), pk=params.get('item')).first()
        if item is None:
            raise ValidationError("Query parameter 'item' must name an item of your company.")
        location = resolve_location(
            self.get_company(),
            Location.parse({'type': params.get('location_type'), 'id': params.get('location_id')}),
        )
        batches = BatchFEFOService.usable_batches(item, location).select_related('item')
        return Response(self.get_serializer(batches, many=True).data)

    @action(detail=False, methods=['get'], url_path='expiry-alerts')
    def expiry_alerts(self, request):
        """Stocked batches expiring within ``days`` days (expired ones included)."""
        try:
            days = int(request.query_params.get('days', inventory_setting('EXPIRY_ALERT_DAYS', 30)))
        except ValueError:
            raise ValidationError("Query parameter 'days' must be an integer.")
        location = None
        if request.query_params.get('location_type'):
            location = resolve_location(
                self.get_company(),
                Location.parse({
                    'type': request.query_params.get('location_type'),
                    'id': request.query_params.get('location_id'),
                }),
            )
        batches = BatchFEFOService.get_expiring_batches(self.get_company(), days_threshold=days, location=location)
        return Response({
            'days': days,
            'count': batches.count(),
            'results': self.get_serializer(batches, many=True).data,
        })

    @action(detail=True, methods=['get'])
    def reconcile(self, request, pk=None):
        """Replay the batch's ledger and compare it with the stored balance."""
        report = StockLedgerService.reconcile_batch(self.get_object())
        return Response({key: str(value) if hasattr(value, 'quantize') else value for key, value in report.items()})


class StockLedgerViewSet(CompanyScopedQuerysetMixin, viewsets.ReadOnlyModelViewSet):
    """Paginated, filterable view of the stock ledger, newest first."""
    serializer_class = StockLedgerEntrySerializer
    pagination_class = LedgerPagination

    def get_queryset(self):
        qs = StockLedgerService.filter_entries(self.get_company(), self.request.query_params)
        user = self.request.user
        if user.is_technician:
            qs = qs.filter(location_type=LocationType.TECHNICIAN, location_id=user.pk)
        return qs


# ---------------------------------------------------------------------------
# Movement documents
# ---------------------------------------------------------------------------

class MovementViewSet(CompanyScopedQuerysetMixin,
                      mixins.ListModelMixin,
                      mixins.RetrieveModelMixin,
                      viewsets.GenericViewSet):
    """
    List / retrieve / create for one movement document type. ``create``
    validates the payload with ``input_serializer_class`` and hands it to
    ``service_method``.
    """
    model = None
    input_serializer_class = None
    service_method = None

    def get_queryset(self):
        qs = self.model.objects.filter(company=self.get_company()).prefetch_related('items__item', 'items__batch')
        params = self.request.query_params
        if params.get('status'):
            qs = qs.filter(status=params['status'])
        if params.get('document_number'):
            qs = qs.filter(document_number__icontains=params['document_number'])
        if params.get('date_from'):
            qs = qs.filter(movement_date__gte=params['date_from'])
        if params.get('date_to'):
            qs = qs.filter(movement_date__lte=params['date_to'])
        user = self.request.user
        if user.is_technician:
            qs = qs.filter(
                Q(from_location_type=LocationType.TECHNICIAN, from_location_id=user.pk)
                | Q(to_location_type=LocationType.TECHNICIAN, to_location_id=user.pk)
            )
        return qs

    def create(self, request, *args, **kwargs):
        payload = self.input_serializer_class(data=request.data)
        payload.is_valid(raise_exception=True)
        document = type(self).service_method(payload.validated_data, self.get_audit())
        return Response(self.get_serializer(document).data, status=status.HTTP_201_CREATED)


class MaterialReceiptViewSet(MovementViewSet):
    model = MaterialReceipt
    serializer_class = MaterialReceiptSerializer
    input_serializer_class = ReceiptInputSerializer
    service_method = InventoryService.create_receipt


class MaterialIssueViewSet(MovementViewSet):
    model = MaterialIssue
    serializer_class = MaterialIssueSerializer
    input_serializer_class = IssueInputSerializer
    service_method = InventoryService.create_issue

    def get_queryset(self):
        return super().get_queryset().select_related('approval')

    @action(detail=True, methods=['get'])
    def reversals(self, request, pk=None):
        """Ledger rows that credited stock back to the source of this issue."""
        entries = StockLedgerService.reversal_history(self.get_object())
        return Response(StockLedgerEntrySerializer(entries, many=True).data)


class MaterialTransferViewSet(MovementViewSet):
    model = MaterialTransfer
    serializer_class = MaterialTransferSerializer
    input_serializer_class = TransferInputSerializer
    service_method = InventoryService.create_transfer


class MaterialReturnViewSet(MovementViewSet):
    model = MaterialReturn
    serializer_class = MaterialReturnSerializer
    input_serializer_class = ReturnInputSerializer
    service_method = InventoryService.create_return


class MaterialConsumptionViewSet(MovementViewSet):
    model = MaterialConsumption
    serializer_class = MaterialConsumptionSerializer
    input_serializer_class = ConsumptionInputSerializer
    service_method = InventoryService.create_consumption


# ---------------------------------------------------------------------------
# Approvals
# ---------------------------------------------------------------------------

class MaterialApprovalViewSet(CompanyScopedQuerysetMixin, viewsets.ReadOnlyModelViewSet):
    """
    Approvals the caller may resolve. ``?status=PENDING`` lists the
    caller's queue.
    """
    serializer_class = MaterialApprovalSerializer

    def get_queryset(self):
        qs = ApprovalService.visible_to(self.request.user).prefetch_related('items__item', 'items__batch')
        approval_status = self.request.query_params.get('status')
        if approval_status:
            qs = qs.filter(status=approval_status.upper())
        return qs

    @action(detail=True, methods=['post'])
    def approve(self, request, pk=None):
        payload = ApproveInputSerializer(data=request.data)
        payload.is_valid(raise_exception=True)
        approval = ApprovalService.approve(pk, self.get_audit(), remarks=payload.validated_data['remarks'])
        return Response(self.get_serializer(approval).data)

    @action(detail=True, methods=['post'])
    def reject(self, request, pk=None):
        payload = RejectInputSerializer(data=request.data)
        payload.is_valid(raise_exception=True)
        approval = ApprovalService.reject(
            pk,
            self.get_audit(),
            rejection_reason=payload.validated_data['rejection_reason'],
            remarks=payload.validated_data['remarks'],
        )
        return Response(self.get_serializer(approval).data)

    @action(detail=True, methods=['post'], url_path='partial-accept')
    def partial_accept(self, request, pk=None):
        payload = PartialAcceptInputSerializer(data=request.data)
        payload.is_valid(raise_exception=True)
        data = payload.validated_data
        approval = ApprovalService.partial_accept(
            pk,
            self.get_audit(),
            lines=data['lines'],
            rejection_reason=data['rejection_reason'],
            remarks=data['remarks'],
        )
        return Response(self.get_serializer(approval).data)


__all__ = [
    'ItemViewSet',
    'ItemUOMConversionViewSet',
    'MaterialApprovalViewSet',
    'MaterialBatchViewSet',
    'MaterialConsumptionViewSet',
    'MaterialIssueViewSet',
    'MaterialReceiptViewSet',
    'MaterialReturnViewSet',
    'MaterialTransferViewSet',
    'StockLedgerViewSet',
]
