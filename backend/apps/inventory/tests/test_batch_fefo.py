"""
Tests for FEFO allocation, named-batch selection and guarded batch updates.
"""
from datetime import timedelta
from decimal import Decimal

from django.db import transaction
from django.test import TestCase
from django.utils import timezone

from apps.inventory.exceptions import InsufficientStock, InvalidBatch
from apps.inventory.models import MaterialBatch
from apps.inventory.services.batch_fefo_service import BatchFEFOService

from .base import InventoryFixturesMixin


class BatchFEFOServiceTests(InventoryFixturesMixin, TestCase):

    def setUp(self):
        self.setUpInventory()

    def _batch(self, batch_no, qty, *, expiry_days=None, location=None, is_expired=False):
        location = location or self.main_store
        expiry = timezone.localdate() + timedelta(days=expiry_days) if expiry_days is not None else None
        return MaterialBatch.objects.create(
            company=self.company,
            item=self.item,
            batch_no=batch_no,
            expiry_date=expiry,
            initial_qty=Decimal(qty),
            current_qty=Decimal(qty),
            rate_per_unit=Decimal("100"),
            location_type=location.kind,
            location_id=location.id,
            is_expired=is_expired,
        )

    def test_earliest_expiry_first_undated_last(self):
        undated = self._batch("B-UNDATED", "5")
        late = self._batch("B-LATE", "5", expiry_days=90)
        early = self._batch("B-EARLY", "5", expiry_days=10)

        with transaction.atomic():
            allocations, shortfall = BatchFEFOService.allocate_batches_fefo(self.item, self.main_store, Decimal("12"))

        self.assertEqual([a["batch"].pk for a in allocations], [early.pk, late.pk, undated.pk])
        self.assertEqual([a["qty"] for a in allocations], [Decimal("5"), Decimal("5"), Decimal("2")])
        self.assertEqual(shortfall, Decimal("0"))

    def test_same_expiry_oldest_batch_first(self):
        newer = self._batch("B-NEW", "5", expiry_days=30)
        older = self._batch("B-OLD", "5", expiry_days=30)
        MaterialBatch.objects.filter(pk=older.pk).update(created_at=timezone.now() - timedelta(days=3))

        batches = list(BatchFEFOService.usable_batches(self.item, self.main_store))
        self.assertEqual([b.pk for b in batches], [older.pk, newer.pk])

    def test_expired_and_empty_batches_skipped(self):
        self._batch("B-PAST", "5", expiry_days=-1)
        self._batch("B-FLAGGED", "5", expiry_days=20, is_expired=True)
        self._batch("B-EMPTY", "0", expiry_days=5)
        good = self._batch("B-GOOD", "5", expiry_days=40)
        self._batch("B-ELSEWHERE", "5", expiry_days=1, location=self.branch_store)

        batches = list(BatchFEFOService.usable_batches(self.item, self.main_store))
        self.assertEqual([b.pk for b in batches], [good.pk])

    def test_batch_expiring_today_still_usable(self):
        today = self._batch("B-TODAY", "1", expiry_days=0)
        self.assertIn(today, BatchFEFOService.usable_batches(self.item, self.main_store))

    def test_shortfall_raises_insufficient_stock(self):
        self._batch("B-1", "3", expiry_days=10)
        with self.assertRaises(InsufficientStock) as ctx, transaction.atomic():
            BatchFEFOService.allocate(self.item, self.main_store, Decimal("5"))
        self.assertEqual(ctx.exception.shortfall, Decimal("2"))
        self.assertEqual(ctx.exception.details["available"], Decimal("3"))

    def test_specific_batch_errors(self):
        batch = self._batch("B-1", "3", expiry_days=10)
        expired = self._batch("B-OLD", "3", expiry_days=-2)
        elsewhere = self._batch("B-2", "3", location=self.branch_store)
        cases = [
            (999999, InvalidBatch.NOT_FOUND),
            (elsewhere.pk, InvalidBatch.WRONG_LOCATION),
            (expired.pk, InvalidBatch.EXPIRED),
        ]
        for batch_id, reason in cases:
            with self.subTest(reason=reason):
                with self.assertRaises(InvalidBatch) as ctx, transaction.atomic():
                    BatchFEFOService.select_specific_batch(batch_id, self.item, self.main_store, Decimal("1"))
                self.assertEqual(ctx.exception.reason, reason)

        with self.assertRaises(InsufficientStock), transaction.atomic():
            BatchFEFOService.select_specific_batch(batch.pk, self.item, self.main_store, Decimal("4"))

    def test_specific_batch_wrong_item(self):
        other_item = self.item.__class__.objects.create(
            company=self.company, code="BAIT-01", name="Rodent bait", base_uom="PCS",
        )
        batch = self._batch("B-1", "3", expiry_days=10)
        with self.assertRaises(InvalidBatch) as ctx, transaction.atomic():
            BatchFEFOService.select_specific_batch(batch.pk, other_item, self.main_store, Decimal("1"))
        self.assertEqual(ctx.exception.reason, InvalidBatch.WRONG_ITEM)

    def test_guarded_decrement_never_goes_negative(self):
        batch = self._batch("B-1", "2")
        BatchFEFOService.decrement(batch, Decimal("1.5"))
        self.assertEqual(batch.current_qty, Decimal("0.5"))

        with self.assertRaises(InsufficientStock):
            BatchFEFOService.decrement(batch, Decimal("1"))
        self.assertEqual(self.qty(batch), Decimal("0.5"))

    def test_find_or_create_batch_reuses_key(self):
        with transaction.atomic():
            first, created = BatchFEFOService.find_or_create_batch(
                company=self.company, item=self.item, batch_no="LOT-7", location=self.branch_store,
                quantity=Decimal("4"),
            )
            again, created_again = BatchFEFOService.find_or_create_batch(
                company=self.company, item=self.item, batch_no="LOT-7", location=self.branch_store,
                quantity=Decimal("1"),
            )
        self.assertTrue(created)
        self.assertFalse(created_again)
        self.assertEqual(first.pk, again.pk)
        self.assertEqual(first.current_qty, Decimal("0"))
        self.assertEqual(first.initial_qty, Decimal("4"))

    def test_expiring_and_expired_queries(self):
        soon = self._batch("B-SOON", "1", expiry_days=5)
        past = self._batch("B-PAST", "1", expiry_days=-5)
        self._batch("B-LATER", "1", expiry_days=120)

        expiring = list(BatchFEFOService.get_expiring_batches(self.company, days_threshold=30))
        self.assertEqual([b.pk for b in expiring], [past.pk, soon.pk])
        self.assertEqual([b.pk for b in BatchFEFOService.get_expired_batches(self.company)], [past.pk])

    def test_mark_expired_batches(self):
        past = self._batch("B-PAST", "1", expiry_days=-1)
        fresh = self._batch("B-FRESH", "1", expiry_days=1)

        self.assertEqual(BatchFEFOService.mark_expired_batches(self.company), 1)
        past.refresh_from_db()
        fresh.refresh_from_db()
        self.assertTrue(past.is_expired)
        self.assertFalse(fresh.is_expired)
        self.assertEqual(BatchFEFOService.mark_expired_batches(), 0)
