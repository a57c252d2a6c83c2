from django.urls import include, path
from rest_framework.routers import DefaultRouter

from .views import (
    ItemUOMConversionViewSet,
    ItemViewSet,
    MaterialApprovalViewSet,
    MaterialBatchViewSet,
    MaterialConsumptionViewSet,
    MaterialIssueViewSet,
    MaterialReceiptViewSet,
    MaterialReturnViewSet,
    MaterialTransferViewSet,
    StockLedgerViewSet,
)

router = DefaultRouter()
router.register(r'items', ItemViewSet, basename='inventory-item')
router.register(r'uom-conversions', ItemUOMConversionViewSet, basename='uom-conversion')
router.register(r'batches', MaterialBatchViewSet, basename='material-batch')
router.register(r'stock-ledger', StockLedgerViewSet, basename='stock-ledger')

# Movement documents
router.register(r'receipts', MaterialReceiptViewSet, basename='material-receipt')
router.register(r'issues', MaterialIssueViewSet, basename='material-issue')
router.register(r'transfers', MaterialTransferViewSet, basename='material-transfer')
router.register(r'returns', MaterialReturnViewSet, basename='material-return')
router.register(r'consumptions', MaterialConsumptionViewSet, basename='material-consumption')

# Approval workflow
router.register(r'approvals', MaterialApprovalViewSet, basename='material-approval')

urlpatterns = [
    path('', include(router.urls)),
]
