"""
Tests for the stock ledger: balances, immutability, reconciliation,
filtering and the maintenance commands built on it.
"""
from datetime import timedelta
from decimal import Decimal
from io import StringIO

from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase, TransactionTestCase
from django.utils import timezone

from apps.inventory.models import MaterialBatch, StockLedgerEntry
from apps.inventory.services.ledger_service import AuditContext, StockLedgerService, StockPosting

from .base import InventoryFixturesMixin

TxType = StockLedgerEntry.TransactionType


class StockLedgerTests(InventoryFixturesMixin, TestCase):

    def setUp(self):
        self.setUpInventory()
        self.batch = self.receive("10", batch_no="LOT-1", rate="50")

    def test_balances_follow_batch_quantity(self):
        self.issue("4")
        self.issue("1.5")
        balances = list(
            StockLedgerEntry.objects.filter(batch=self.batch).order_by("id").values_list("balance_quantity", flat=True)
        )
        self.assertEqual(balances, [Decimal("10"), Decimal("6"), Decimal("4.5")])
        last = StockLedgerEntry.objects.filter(batch=self.batch).order_by("-id").first()
        self.assertEqual(last.balance_value, Decimal("225.00"))

    def test_entries_are_immutable(self):
        entry = StockLedgerEntry.objects.get(batch=self.batch)
        entry.notes = "edited"
        with self.assertRaises(ValueError):
            entry.save()
        with self.assertRaises(ValueError):
            entry.delete()

    def test_reconcile_consistent_batch(self):
        self.issue("3")
        report = StockLedgerService.reconcile_batch(self.batch)
        self.assertTrue(report["is_consistent"])
        self.assertEqual(report["current_qty"], Decimal("7"))
        self.assertEqual(report["replayed_qty"], Decimal("7"))
        self.assertEqual(report["entry_count"], 2)

    def test_reconcile_detects_drift(self):
        MaterialBatch.objects.filter(pk=self.batch.pk).update(current_qty=Decimal("9"))
        report = StockLedgerService.reconcile_batch(self.batch)
        self.assertFalse(report["is_consistent"])
        self.assertEqual(report["last_balance"], Decimal("10"))

    def test_filter_entries(self):
        self.issue("2")
        params = {"transaction_type": TxType.ISSUE, "item": str(self.item.pk)}
        entries = list(StockLedgerService.filter_entries(self.company, params))
        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0].quantity_out, Decimal("2"))

        by_location = StockLedgerService.filter_entries(
            self.company, {"location_type": "BRANCH", "location_id": str(self.main_branch.pk)},
        )
        self.assertEqual(by_location.count(), 2)
        self.assertEqual(by_location.first().transaction_type, TxType.ISSUE)

        tomorrow = (timezone.localdate() + timedelta(days=1)).isoformat()
        self.assertFalse(StockLedgerService.filter_entries(self.company, {"date_from": tomorrow}).exists())


class MaintenanceCommandTests(InventoryFixturesMixin, TestCase):

    def setUp(self):
        self.setUpInventory()

    def test_mark_expired_batches_command(self):
        batch = self.receive("1", batch_no="OLD", expiry_days=-3)
        out = StringIO()
        call_command("mark_expired_batches", company_id=self.company.pk, stdout=out)
        batch.refresh_from_db()
        self.assertTrue(batch.is_expired)
        self.assertIn("1 batch(es) marked as expired", out.getvalue())

    def test_mark_expired_batches_unknown_company(self):
        with self.assertRaises(CommandError):
            call_command("mark_expired_batches", company_id=999999, stdout=StringIO())

    def test_reconcile_command_reports_mismatch(self):
        batch = self.receive("5", batch_no="LOT-9")
        out = StringIO()
        call_command("reconcile_stock_ledger", stdout=out)
        self.assertIn("Checked 1 batch(es); 0 inconsistent.", out.getvalue())

        MaterialBatch.objects.filter(pk=batch.pk).update(current_qty=Decimal("4"))
        with self.assertRaises(CommandError):
            call_command("reconcile_stock_ledger", fail_on_mismatch=True, stdout=StringIO())


class StockPostingGuardTests(TransactionTestCase):

    def test_posting_requires_atomic_block(self):
        with self.assertRaises(RuntimeError):
            StockPosting(document=None, transaction_type=TxType.ADJUSTMENT, audit=AuditContext())
