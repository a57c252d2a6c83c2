from django.core.management.base import BaseCommand, CommandError

from apps.companies.models import Company
from apps.inventory.services.batch_fefo_service import BatchFEFOService


class Command(BaseCommand):
    help = "Flag batches past their expiry date so they drop out of FEFO allocation."

    def add_arguments(self, parser):
        parser.add_argument('--company-id', type=int, help="Only flag batches of this company")

    def handle(self, *args, **options):
        company = None
        if options.get('company_id'):
            company = Company.objects.filter(pk=options['company_id']).first()
            if company is None:
                raise CommandError(f"Company {options['company_id']} does not exist.")

        count = BatchFEFOService.mark_expired_batches(company=company)
        self.stdout.write(self.style.SUCCESS(f"{count} batch(es) marked as expired."))
