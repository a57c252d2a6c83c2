from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    """
    Staff member of a tenant company. ``role`` drives what stock movements
    the user may perform; ``branch`` scopes branch-level roles.
    """

    class Role(models.TextChoices):
        SUPERADMIN = 'SUPERADMIN', 'Super Admin'
        ADMIN = 'ADMIN', 'Branch Admin'
        REGIONAL_MANAGER = 'REGIONAL_MANAGER', 'Regional Manager'
        AREA_MANAGER = 'AREA_MANAGER', 'Area Manager'
        INVENTORY_MANAGER = 'INVENTORY_MANAGER', 'Inventory Manager'
        TECHNICIAN = 'TECHNICIAN', 'Technician'

    company = models.ForeignKey(
        'companies.Company',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='users'
    )
    branch = models.ForeignKey(
        'companies.Branch',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='staff'
    )
    role = models.CharField(max_length=20, choices=Role.choices, default=Role.TECHNICIAN)
    phone = models.CharField(max_length=20, blank=True)

    class Meta:
        db_table = 'users'

    @property
    def is_technician(self) -> bool:
        return self.role == self.Role.TECHNICIAN

    @property
    def is_main_branch_admin(self) -> bool:
        """Admin of the company's central store, allowed to act for every branch."""
        return (
            self.role == self.Role.ADMIN
            and self.branch_id is not None
            and self.branch.is_main_branch
        )
