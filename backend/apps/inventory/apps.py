"""
Django app configuration for the inventory app.
"""
from django.apps import AppConfig


class InventoryConfig(AppConfig):
    """Batches, movement documents, approvals and the stock ledger."""

    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.inventory'
    verbose_name = 'Inventory'
