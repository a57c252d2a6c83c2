from django.core.validators import RegexValidator
from django.db import models


class Company(models.Model):
    """
    Tenant business entity. Every branch, user, item and stock record
    belongs to exactly one company.
    """
    id = models.BigAutoField(primary_key=True)
    code = models.CharField(
        max_length=20,
        unique=True,
        validators=[RegexValidator(r'^[A-Z0-9]+$')],
        help_text="Unique company code"
    )
    name = models.CharField(max_length=255)
    legal_name = models.CharField(max_length=255, blank=True)
    gst_number = models.CharField(max_length=30, blank=True)

    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'companies_company'
        ordering = ['code']
        verbose_name_plural = 'Companies'

    def __str__(self):
        return f"{self.code} - {self.name}"

    @property
    def main_branch(self):
        """The company's central store. ``None`` until one is configured."""
        return self.branches.filter(
            branch_type=Branch.BranchType.MAIN_BRANCH,
            is_active=True,
        ).first()


class Branch(models.Model):
    """
    Physical operating location of a company. The single MAIN_BRANCH acts
    as the company's warehouse / central store.
    """

    class BranchType(models.TextChoices):
        MAIN_BRANCH = 'MAIN_BRANCH', 'Main Branch (Central Store)'
        GENERAL_BRANCH = 'GENERAL_BRANCH', 'General Branch'

    id = models.BigAutoField(primary_key=True)
    code = models.CharField(max_length=20)
    name = models.CharField(max_length=255)
    company = models.ForeignKey(
        Company,
        on_delete=models.CASCADE,
        related_name='branches',
        help_text='Parent company'
    )
    branch_type = models.CharField(
        max_length=20,
        choices=BranchType.choices,
        default=BranchType.GENERAL_BRANCH,
    )
    city = models.CharField(max_length=100, blank=True)
    phone = models.CharField(max_length=30, blank=True)

    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'companies_branch'
        ordering = ['company', 'code']
        verbose_name_plural = 'Branches'
        constraints = [
            models.UniqueConstraint(fields=['company', 'code'], name='uniq_branch_code_per_company'),
            models.UniqueConstraint(
                fields=['company'],
                condition=models.Q(branch_type='MAIN_BRANCH', is_active=True),
                name='uniq_active_main_branch_per_company',
            ),
        ]

    def __str__(self):
        return f"{self.company.code}/{self.code} - {self.name}"

    @property
    def is_main_branch(self) -> bool:
        return self.branch_type == self.BranchType.MAIN_BRANCH
