from django.conf import settings
from django.db import models


class CompanyAwareModel(models.Model):
    """
    Abstract base model that adds company isolation
    to all transactional data
    """
    company = models.ForeignKey(
        'companies.Company',
        on_delete=models.PROTECT,
        db_index=True,
        help_text="Company this record belongs to"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+'
    )

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        if not self.company_id:
            raise ValueError("Company must be specified")
        super().save(*args, **kwargs)


class DocumentSequence(models.Model):
    """Running counter per company, document type and fiscal year."""
    company = models.ForeignKey('companies.Company', on_delete=models.CASCADE, related_name='document_sequences')
    doc_type = models.CharField(max_length=30)
    fiscal_year = models.CharField(max_length=10)
    current_value = models.PositiveIntegerField(default=0)

    class Meta:
        db_table = 'shared_document_sequence'
        constraints = [
            models.UniqueConstraint(
                fields=['company', 'doc_type', 'fiscal_year'],
                name='uniq_document_sequence',
            ),
        ]

    def __str__(self):
        return f"{self.doc_type}/{self.fiscal_year}: {self.current_value}"
