"""
Tests for the movement documents posted by InventoryService: receipts,
issues, transfers, returns and consumptions.
"""
from decimal import Decimal

from django.test import TestCase

from apps.inventory.exceptions import Forbidden, InsufficientStock, NotFound, ValidationError
from apps.inventory.models import (
    LocationType,
    MaterialApproval,
    MaterialBatch,
    MovementStatus,
    StockLedgerEntry,
)
from apps.inventory.services.stock_service import InventoryService

from .base import InventoryFixturesMixin


class ReceiptTests(InventoryFixturesMixin, TestCase):

    def setUp(self):
        self.setUpInventory()

    def test_receipt_creates_batch_and_ledger_row(self):
        batch = self.receive("10", batch_no="LOT-1", expiry_days=180, rate="250")

        self.assertEqual(batch.location_type, LocationType.BRANCH)
        self.assertEqual(batch.location_id, self.main_branch.pk)
        self.assertEqual(batch.current_qty, Decimal("10"))
        self.assertEqual(batch.initial_qty, Decimal("10"))
        self.assertEqual(batch.rate_per_unit, Decimal("250"))

        entry = StockLedgerEntry.objects.get(batch=batch)
        self.assertEqual(entry.transaction_type, StockLedgerEntry.TransactionType.RECEIPT)
        self.assertEqual(entry.quantity_in, Decimal("10"))
        self.assertEqual(entry.balance_quantity, Decimal("10"))
        self.assertEqual(entry.balance_value, Decimal("2500.00"))
        self.assertEqual(entry.user_role, "SUPERADMIN")
        self.assertEqual(entry.ip_address, "127.0.0.1")

    def test_receipt_in_sub_unit_stores_base_quantity_and_rate(self):
        batch = self.receive("500", uom="GRAM", rate="0.2", batch_no="LOT-G")
        self.assertEqual(batch.current_qty, Decimal("0.5"))
        # 0.2 per gram is 200 per kg
        self.assertEqual(batch.rate_per_unit, Decimal("200"))

    def test_receipt_totals_and_document_number(self):
        receipt = InventoryService.create_receipt(
            {
                "destination": {"type": "WAREHOUSE"},
                "vendor_name": "Agro Supplies",
                "items": [
                    {"item": self.item.pk, "quantity": Decimal("2"), "uom": "KG", "rate": Decimal("100")},
                    {"item": self.item.pk, "quantity": Decimal("1"), "uom": "KG", "rate": Decimal("50"),
                     "gst_percentage": Decimal("5")},
                ],
            },
            self.audit(),
        )
        self.assertRegex(receipt.document_number, r"^MR-\d{4}-00001$")
        self.assertEqual(receipt.to_location_type, LocationType.BRANCH)
        self.assertEqual(receipt.to_location_id, self.main_branch.pk)
        self.assertEqual(receipt.status, MovementStatus.APPROVED)
        self.assertEqual(receipt.total_base_amount, Decimal("250.00"))
        self.assertEqual(receipt.total_gst_amount, Decimal("38.50"))
        self.assertEqual(receipt.total_amount, Decimal("288.50"))

    def test_receipt_tops_up_existing_batch(self):
        first = self.receive("4", batch_no="LOT-1")
        second = self.receive("6", batch_no="LOT-1")
        self.assertEqual(first.pk, second.pk)
        self.assertEqual(self.qty(first), Decimal("10"))
        self.assertEqual(StockLedgerEntry.objects.filter(batch=first).count(), 2)

    def test_top_up_must_match_batch_dates_and_rate(self):
        batch = self.receive("10", batch_no="LOT-X", expiry_days=30, rate="100")
        cases = [
            ({"expiry_days": 400, "rate": "100"}, ["expiry_date"]),
            ({"expiry_days": 30, "rate": "300"}, ["rate_per_unit"]),
            ({"expiry_days": 400, "rate": "300"}, ["expiry_date", "rate_per_unit"]),
        ]
        for kwargs, fields in cases:
            with self.subTest(**kwargs), self.assertRaises(ValidationError) as ctx:
                self.receive("5", batch_no="LOT-X", **kwargs)
            self.assertEqual(ctx.exception.details["fields"], fields)

        self.assertEqual(self.qty(batch), Decimal("10"))
        self.assertEqual(batch.rate_per_unit, Decimal("100"))
        self.assertEqual(StockLedgerEntry.objects.filter(batch=batch).count(), 1)

        # same metadata in a sub-unit still tops up
        self.receive("2000", batch_no="LOT-X", expiry_days=30, rate="0.1", uom="GRAM")
        self.assertEqual(self.qty(batch), Decimal("12"))

    def test_top_up_rejects_batch_past_expiry_before_it_is_flagged(self):
        batch = self.receive("5", batch_no="OLD", expiry_days=-3)
        self.assertFalse(batch.is_expired)
        with self.assertRaises(ValidationError):
            self.receive("5", batch_no="OLD", expiry_days=-3)
        self.assertEqual(self.qty(batch), Decimal("5"))
        self.assertEqual(StockLedgerEntry.objects.filter(batch=batch).count(), 1)

    def test_receipt_generates_batch_numbers(self):
        batch = self.receive("1")
        self.assertRegex(batch.batch_no, r"^B-\d{4}-\d{5}$")

    def test_branch_admin_cannot_receive_into_other_branch(self):
        with self.assertRaises(Forbidden):
            self.receive("1", location=self.main_store, user=self.branch_admin)
        self.assertFalse(MaterialBatch.objects.exists())

    def test_receipt_validation(self):
        cases = [
            {"destination": self.loc(self.main_store), "items": []},
            {"destination": self.loc(self.main_store),
             "items": [{"item": self.item.pk, "quantity": Decimal("0"), "uom": "KG"}]},
            {"destination": {"type": "SHELF", "id": 1},
             "items": [{"item": self.item.pk, "quantity": Decimal("1"), "uom": "KG"}]},
        ]
        for data in cases:
            with self.subTest(data=data), self.assertRaises(ValidationError):
                InventoryService.create_receipt(data, self.audit())

    def test_unknown_item(self):
        with self.assertRaises(NotFound):
            InventoryService.create_receipt(
                {"destination": self.loc(self.main_store), "items": [{"item": 424242, "quantity": Decimal("1")}]},
                self.audit(),
            )


class IssueTests(InventoryFixturesMixin, TestCase):

    def setUp(self):
        self.setUpInventory()

    def test_issue_debits_source_and_opens_approval(self):
        batch = self.receive("10", batch_no="LOT-1", rate="100")
        issue = self.issue("2500", uom="GRAM")

        self.assertEqual(issue.status, MovementStatus.AWAITING_APPROVAL)
        self.assertRegex(issue.document_number, r"^MI-\d{4}-00001$")
        self.assertEqual(self.qty(batch), Decimal("7.5"))
        self.assertFalse(MaterialBatch.objects.filter(location_type=LocationType.BRANCH, location_id=self.branch.pk).exists())

        issue_item = issue.items.get()
        self.assertEqual(issue_item.quantity, Decimal("2500"))
        self.assertEqual(issue_item.uom, "GRAM")
        self.assertEqual(issue_item.base_quantity, Decimal("2.5"))
        self.assertEqual(issue_item.ledger_entry.quantity_out, Decimal("2.5"))
        self.assertEqual(issue_item.ledger_entry.balance_quantity, Decimal("7.5"))

        approval = issue.approval
        self.assertEqual(approval.status, MaterialApproval.Status.PENDING)
        self.assertEqual(approval.assigned_to_type, MaterialApproval.AssignedTo.BRANCH)
        self.assertEqual(approval.assigned_to_id, self.branch.pk)
        approval_item = approval.items.get()
        self.assertEqual(approval_item.original_base_quantity, Decimal("2.5"))
        self.assertEqual(approval_item.original_total_amount, Decimal("295.00"))

    def test_issue_to_technician_assigns_technician(self):
        self.receive("5")
        issue = self.issue("1", destination=self.tech_store)
        self.assertEqual(issue.approval.assigned_to_type, MaterialApproval.AssignedTo.TECHNICIAN)
        self.assertEqual(issue.approval.assigned_to_id, self.technician.pk)

    def test_issue_spanning_batches_splits_lines(self):
        early = self.receive("3", batch_no="EARLY", expiry_days=10)
        late = self.receive("5", batch_no="LATE", expiry_days=100)

        issue = self.issue("4")
        lines = list(issue.items.order_by("line_no"))
        self.assertEqual([(line.batch_id, line.base_quantity) for line in lines],
                         [(early.pk, Decimal("3")), (late.pk, Decimal("1"))])
        self.assertEqual(issue.approval.items.count(), 2)
        self.assertEqual(self.qty(early), Decimal("0"))
        self.assertEqual(self.qty(late), Decimal("4"))

    def test_insufficient_stock_leaves_nothing_behind(self):
        batch = self.receive("2")
        with self.assertRaises(InsufficientStock) as ctx:
            self.issue("3")
        self.assertEqual(ctx.exception.shortfall, Decimal("1"))
        self.assertEqual(self.qty(batch), Decimal("2"))
        self.assertFalse(MaterialApproval.objects.exists())
        self.assertEqual(StockLedgerEntry.objects.count(), 1)

    def test_same_source_and_destination_rejected(self):
        self.receive("2")
        with self.assertRaises(ValidationError):
            self.issue("1", destination=self.main_store)

    def test_branch_admin_limited_to_own_branch(self):
        self.receive("5")
        with self.assertRaises(Forbidden):
            self.issue("1", source=self.main_store, destination=self.tech_store, user=self.branch_admin)

    def test_main_branch_admin_may_issue_from_head_office(self):
        self.receive("5")
        issue = self.issue("1", destination=self.tech_store, user=self.main_admin)
        self.assertEqual(issue.created_by, self.main_admin)

    def test_technician_cannot_issue(self):
        with self.assertRaises(Forbidden):
            self.issue("1", source=self.tech_store, destination=self.branch_store, user=self.technician)


class TransferReturnConsumptionTests(InventoryFixturesMixin, TestCase):

    def setUp(self):
        self.setUpInventory()

    def _stock_technician(self, quantity):
        """Issue to the technician and approve, leaving stock in their hands."""
        from apps.inventory.services.approval_service import ApprovalService

        self.receive("10", batch_no="LOT-1", expiry_days=60)
        issue = self.issue(quantity, destination=self.tech_store)
        ApprovalService.approve(issue.approval.pk, self.audit(self.technician))
        return MaterialBatch.objects.get(location_type=LocationType.TECHNICIAN, location_id=self.technician.pk)

    def test_transfer_moves_batch_with_its_attributes(self):
        source = self.receive("10", batch_no="LOT-1", expiry_days=60, rate="80")
        transfer = InventoryService.create_transfer(
            {
                "source": self.loc(self.main_store),
                "destination": self.loc(self.branch_store),
                "items": [{"item": self.item.pk, "quantity": Decimal("4"), "uom": "KG"}],
            },
            self.audit(),
        )
        self.assertEqual(transfer.status, MovementStatus.APPROVED)
        self.assertRegex(transfer.document_number, r"^MT-")

        target = MaterialBatch.objects.get(location_type=LocationType.BRANCH, location_id=self.branch.pk)
        self.assertEqual(target.batch_no, "LOT-1")
        self.assertEqual(target.expiry_date, source.expiry_date)
        self.assertEqual(target.rate_per_unit, Decimal("80"))
        self.assertEqual(target.current_qty, Decimal("4"))
        self.assertEqual(self.qty(source), Decimal("6"))

        entries = StockLedgerEntry.objects.filter(transaction_type=StockLedgerEntry.TransactionType.TRANSFER)
        self.assertEqual(entries.count(), 2)
        self.assertEqual(entries.get(batch=target).quantity_in, Decimal("4"))

    def test_transfer_to_technician_not_allowed(self):
        self.receive("10")
        with self.assertRaises(Forbidden):
            InventoryService.create_transfer(
                {
                    "source": self.loc(self.main_store),
                    "destination": self.loc(self.tech_store),
                    "items": [{"item": self.item.pk, "quantity": Decimal("1")}],
                },
                self.audit(),
            )

    def test_technician_returns_own_stock(self):
        tech_batch = self._stock_technician("3")
        material_return = InventoryService.create_return(
            {
                "source": self.loc(self.tech_store),
                "destination": self.loc(self.branch_store),
                "reason": "Job cancelled",
                "items": [{"item": self.item.pk, "quantity": Decimal("1000"), "uom": "GRAM"}],
            },
            self.audit(self.technician),
        )
        self.assertRegex(material_return.document_number, r"^MRT-")
        self.assertEqual(self.qty(tech_batch), Decimal("2"))
        branch_batch = MaterialBatch.objects.get(location_type=LocationType.BRANCH, location_id=self.branch.pk)
        self.assertEqual(branch_batch.current_qty, Decimal("1"))

    def test_technician_cannot_return_someone_elses_stock(self):
        self._stock_technician("3")
        with self.assertRaises(Forbidden):
            InventoryService.create_return(
                {
                    "source": self.loc(self.tech_store),
                    "destination": self.loc(self.branch_store),
                    "items": [{"item": self.item.pk, "quantity": Decimal("1")}],
                },
                self.audit(self.other_technician),
            )

    def test_consumption_debits_technician_only(self):
        tech_batch = self._stock_technician("3")
        consumption = InventoryService.create_consumption(
            {
                "service_reference": "SRV-1001",
                "items": [{"item": self.item.pk, "quantity": Decimal("250"), "uom": "GRAM"}],
            },
            self.audit(self.technician),
        )
        self.assertRegex(consumption.document_number, r"^MC-")
        self.assertEqual(consumption.technician, self.technician)
        self.assertEqual(self.qty(tech_batch), Decimal("2.75"))
        entry = StockLedgerEntry.objects.get(transaction_type=StockLedgerEntry.TransactionType.CONSUMPTION)
        self.assertEqual(entry.quantity_out, Decimal("0.25"))
        self.assertEqual(entry.transaction_id, consumption.pk)

    def test_consumption_requires_technician_for_admins(self):
        with self.assertRaises(ValidationError):
            InventoryService.create_consumption(
                {"items": [{"item": self.item.pk, "quantity": Decimal("1")}]},
                self.audit(),
            )
