"""
Shared fixtures for the inventory tests: one company with a main and a
general branch, staff in each role and a KG-based chemical with a GRAM
conversion.
"""
from datetime import timedelta
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.utils import timezone

from apps.companies.models import Branch, Company
from apps.inventory.models import Item, ItemUOMConversion, LocationType
from apps.inventory.services.ledger_service import AuditContext
from apps.inventory.services.location_service import Location
from apps.inventory.services.stock_service import InventoryService


class InventoryFixturesMixin:
    """Call ``self.setUpInventory()`` from ``setUp``."""

    password = "pass123"

    def setUpInventory(self):
        self.company = Company.objects.create(code="PCO", name="Pest Control Co", legal_name="Pest Control Co Ltd")
        self.main_branch = Branch.objects.create(
            company=self.company, code="HQ", name="Head Office", branch_type=Branch.BranchType.MAIN_BRANCH,
        )
        self.branch = Branch.objects.create(
            company=self.company, code="NORTH", name="North Branch", branch_type=Branch.BranchType.GENERAL_BRANCH,
        )

        self.superadmin = self.make_user("super", "SUPERADMIN", branch=self.main_branch)
        self.main_admin = self.make_user("hq-admin", "ADMIN", branch=self.main_branch)
        self.branch_admin = self.make_user("north-admin", "ADMIN", branch=self.branch)
        self.technician = self.make_user("tech-1", "TECHNICIAN", branch=self.branch)
        self.other_technician = self.make_user("tech-2", "TECHNICIAN", branch=self.main_branch)

        self.item = Item.objects.create(
            company=self.company,
            code="CHEM-001",
            name="Cypermethrin 10% EC",
            category="Chemical",
            base_uom="KG",
            gst_rate=Decimal("18.00"),
            created_by=self.superadmin,
        )
        ItemUOMConversion.objects.create(
            item=self.item, from_uom="KG", to_uom="GRAM", conversion_factor=Decimal("1000"),
        )

        self.company_store = Location(LocationType.COMPANY, self.company.pk)
        self.main_store = Location(LocationType.BRANCH, self.main_branch.pk)
        self.branch_store = Location(LocationType.BRANCH, self.branch.pk)
        self.tech_store = Location(LocationType.TECHNICIAN, self.technician.pk)

    def make_user(self, username, role, branch=None, company=None):
        return get_user_model().objects.create_user(
            username=username,
            password=self.password,
            email=f"{username}@example.com",
            company=company or self.company,
            branch=branch,
            role=role,
        )

    def audit(self, user=None):
        return AuditContext(actor=user or self.superadmin, ip_address="127.0.0.1", user_agent="tests")

    @staticmethod
    def loc(location):
        return {"type": location.kind, "id": location.id}

    def receive(self, quantity, *, location=None, batch_no=None, expiry_days=None, rate="100", uom="KG", item=None,
                user=None):
        """Post a receipt of one line and return its batch."""
        line = {"item": (item or self.item).pk, "quantity": Decimal(str(quantity)), "uom": uom, "rate": Decimal(rate)}
        if batch_no:
            line["batch_no"] = batch_no
        if expiry_days is not None:
            line["expiry_date"] = timezone.localdate() + timedelta(days=expiry_days)
        receipt = InventoryService.create_receipt(
            {"destination": self.loc(location or self.main_store), "items": [line]},
            self.audit(user),
        )
        return receipt.items.get().batch

    def issue(self, quantity, *, source=None, destination=None, uom="KG", batch=None, user=None):
        line = {"item": self.item.pk, "quantity": Decimal(str(quantity)), "uom": uom}
        if batch is not None:
            line["batch"] = batch.pk
        return InventoryService.create_issue(
            {
                "source": self.loc(source or self.main_store),
                "destination": self.loc(destination or self.branch_store),
                "items": [line],
            },
            self.audit(user),
        )

    @staticmethod
    def qty(batch):
        batch.refresh_from_db()
        return batch.current_qty
