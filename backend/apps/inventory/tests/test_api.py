"""
API tests for the inventory endpoints: status codes, error envelope and
the approval actions.
"""
from datetime import timedelta
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase

from apps.inventory.models import MaterialApproval, MaterialBatch, StockLedgerEntry

from .base import InventoryFixturesMixin

BASE = "/api/inventory"


def days_ahead(days):
    return (timezone.localdate() + timedelta(days=days)).isoformat()


class InventoryAPITests(InventoryFixturesMixin, APITestCase):

    maxDiff = None

    def setUp(self):
        self.setUpInventory()
        self.client.force_authenticate(user=self.superadmin)

    def _receipt_payload(self, quantity="10", **line):
        return {
            "destination": {"type": "WAREHOUSE"},
            "vendor_name": "Agro Supplies",
            "items": [{"item": self.item.pk, "quantity": quantity, "uom": "KG", "rate": "100", **line}],
        }

    def _issue_payload(self, quantity="4", destination=None, uom="KG"):
        return {
            "source": self.loc(self.main_store),
            "destination": self.loc(destination or self.branch_store),
            "items": [{"item": self.item.pk, "quantity": quantity, "uom": uom}],
        }

    def test_create_receipt(self):
        response = self.client.post(f"{BASE}/receipts/", self._receipt_payload(batch_no="LOT-1"), format="json")
        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        self.assertTrue(response.data["document_number"].startswith("MR-"))
        self.assertEqual(response.data["status"], "APPROVED")
        self.assertEqual(response.data["items"][0]["batch_no"], "LOT-1")
        self.assertEqual(Decimal(response.data["total_amount"]), Decimal("1180.00"))

    def test_issue_and_approve_flow(self):
        self.client.post(f"{BASE}/receipts/", self._receipt_payload(), format="json")
        response = self.client.post(f"{BASE}/issues/", self._issue_payload(quantity="2000", uom="GRAM"), format="json")
        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        self.assertEqual(response.data["status"], "AWAITING_APPROVAL")
        approval_id = response.data["approval_id"]

        self.client.force_authenticate(user=self.branch_admin)
        pending = self.client.get(f"{BASE}/approvals/", {"status": "pending"})
        self.assertEqual([a["id"] for a in pending.data["results"]], [approval_id])

        response = self.client.post(f"{BASE}/approvals/{approval_id}/approve/", {"remarks": "ok"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.assertEqual(response.data["status"], "APPROVED")
        self.assertEqual(response.data["issue_status"], "APPROVED")

        again = self.client.post(f"{BASE}/approvals/{approval_id}/approve/", {}, format="json")
        self.assertEqual(again.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(again.data["kind"], "ALREADY_PROCESSED")

    def test_reject_without_reason(self):
        self.client.post(f"{BASE}/receipts/", self._receipt_payload(), format="json")
        issue = self.client.post(f"{BASE}/issues/", self._issue_payload(), format="json").data
        self.client.force_authenticate(user=self.branch_admin)
        response = self.client.post(f"{BASE}/approvals/{issue['approval_id']}/reject/", {}, format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["kind"], "VALIDATION_ERROR")

        response = self.client.post(
            f"{BASE}/approvals/{issue['approval_id']}/reject/", {"rejection_reason": "Not ordered"}, format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["status"], "REJECTED")

    def test_partial_accept_endpoint(self):
        self.client.post(f"{BASE}/receipts/", self._receipt_payload(), format="json")
        issue = self.client.post(f"{BASE}/issues/", self._issue_payload(quantity="8"), format="json").data
        approval = MaterialApproval.objects.get(pk=issue["approval_id"])
        approval_item = approval.items.get()

        self.client.force_authenticate(user=self.branch_admin)
        response = self.client.post(
            f"{BASE}/approvals/{approval.pk}/partial-accept/",
            {
                "lines": [{"approval_item_id": approval_item.pk, "decision": "APPROVED", "approved_quantity": "5"}],
                "rejection_reason": "Only five needed",
            },
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.assertEqual(response.data["status"], "PARTIALLY_APPROVED")
        self.assertEqual(response.data["issue_status"], "PARTIAL")
        self.assertEqual(Decimal(response.data["items"][0]["approved_base_quantity"]), Decimal("5"))

    def test_error_status_codes(self):
        self.client.post(f"{BASE}/receipts/", self._receipt_payload(quantity="1"), format="json")

        short = self.client.post(f"{BASE}/issues/", self._issue_payload(quantity="5"), format="json")
        self.assertEqual(short.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(short.data["kind"], "INSUFFICIENT_STOCK")
        self.assertEqual(Decimal(short.data["details"]["shortfall"]), Decimal("4"))

        bad_unit = self.client.post(f"{BASE}/issues/", self._issue_payload(quantity="1", uom="DRUM"), format="json")
        self.assertEqual(bad_unit.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(bad_unit.data["kind"], "UNSUPPORTED_UNIT")

        missing = self.client.post(f"{BASE}/approvals/999999/approve/", {}, format="json")
        self.assertEqual(missing.status_code, status.HTTP_404_NOT_FOUND)

        self.client.force_authenticate(user=self.technician)
        forbidden = self.client.post(f"{BASE}/issues/", self._issue_payload(quantity="1"), format="json")
        self.assertEqual(forbidden.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(forbidden.data["kind"], "FORBIDDEN")

        self.assertEqual(StockLedgerEntry.objects.count(), 1)

    def test_malformed_payload(self):
        response = self.client.post(f"{BASE}/issues/", {"source": {"type": "BRANCH"}}, format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["status"], "error")

    def test_user_without_company_is_refused(self):
        drifter = get_user_model().objects.create_user(username="drifter", password=self.password, role="ADMIN")
        self.client.force_authenticate(user=drifter)
        response = self.client.get(f"{BASE}/batches/")
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_ledger_pagination(self):
        for _ in range(3):
            self.client.post(f"{BASE}/receipts/", self._receipt_payload(quantity="1"), format="json")
        response = self.client.get(f"{BASE}/stock-ledger/", {"limit": 2})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["count"], 3)
        self.assertEqual(len(response.data["results"]), 2)
        self.assertIsNotNone(response.data["next"])

        filtered = self.client.get(f"{BASE}/stock-ledger/", {"transaction_type": "ISSUE"})
        self.assertEqual(filtered.data["count"], 0)

    def test_available_batches_and_expiry_alerts(self):
        self.client.post(f"{BASE}/receipts/", self._receipt_payload(batch_no="SOON", expiry_date=days_ahead(5)), format="json")
        self.client.post(f"{BASE}/receipts/", self._receipt_payload(batch_no="LATER", expiry_date=days_ahead(200)), format="json")

        response = self.client.get(
            f"{BASE}/batches/available/",
            {"item": self.item.pk, "location_type": "WAREHOUSE"},
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([b["batch_no"] for b in response.data], ["SOON", "LATER"])

        alerts = self.client.get(f"{BASE}/batches/expiry-alerts/", {"days": 30})
        self.assertEqual(alerts.data["count"], 1)
        self.assertEqual(alerts.data["results"][0]["batch_no"], "SOON")

    def test_reconcile_endpoint(self):
        self.client.post(f"{BASE}/receipts/", self._receipt_payload(), format="json")
        batch = MaterialBatch.objects.get()
        response = self.client.get(f"{BASE}/batches/{batch.pk}/reconcile/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data["is_consistent"])

    def test_technician_sees_only_own_batches(self):
        self.client.post(f"{BASE}/receipts/", self._receipt_payload(), format="json")
        self.client.force_authenticate(user=self.technician)
        response = self.client.get(f"{BASE}/batches/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["count"], 0)

    def test_item_with_stock_cannot_be_deleted(self):
        self.client.post(f"{BASE}/receipts/", self._receipt_payload(), format="json")
        response = self.client.delete(f"{BASE}/items/{self.item.pk}/")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_create_item_with_conversion(self):
        response = self.client.post(
            f"{BASE}/items/",
            {"code": "BAIT-01", "name": "Rodent bait block", "base_uom": "PCS", "category": "Bait"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        conversion = self.client.post(
            f"{BASE}/uom-conversions/",
            {"item": response.data["id"], "from_uom": "BOX", "to_uom": "PCS", "conversion_factor": "24"},
            format="json",
        )
        self.assertEqual(conversion.status_code, status.HTTP_201_CREATED, conversion.data)

        invalid = self.client.post(
            f"{BASE}/uom-conversions/",
            {"item": response.data["id"], "from_uom": "BOX", "to_uom": "CRATE", "conversion_factor": "2"},
            format="json",
        )
        self.assertEqual(invalid.status_code, status.HTTP_400_BAD_REQUEST)

    def test_only_stock_managers_change_the_catalogue(self):
        conversion = self.item.uom_conversions.get()
        self.client.force_authenticate(user=self.technician)
        self.assertEqual(self.client.get(f"{BASE}/items/").status_code, status.HTTP_200_OK)
        self.assertEqual(self.client.get(f"{BASE}/uom-conversions/").status_code, status.HTTP_200_OK)

        refused = [
            self.client.post(f"{BASE}/items/", {"code": "BAIT-02", "name": "Gel bait", "base_uom": "PCS"}, format="json"),
            self.client.patch(f"{BASE}/items/{self.item.pk}/", {"name": "Renamed"}, format="json"),
            self.client.delete(f"{BASE}/items/{self.item.pk}/"),
            self.client.post(
                f"{BASE}/uom-conversions/",
                {"item": self.item.pk, "from_uom": "SACHET", "to_uom": "KG", "conversion_factor": "0.05"},
                format="json",
            ),
            self.client.delete(f"{BASE}/uom-conversions/{conversion.pk}/"),
        ]
        for response in refused:
            self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.item.refresh_from_db()
        self.assertEqual(self.item.name, "Cypermethrin 10% EC")
        self.assertTrue(self.item.uom_conversions.filter(pk=conversion.pk).exists())

        self.client.force_authenticate(user=self.branch_admin)
        response = self.client.patch(f"{BASE}/items/{self.item.pk}/", {"name": "Cypermethrin 25% EC"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
