from django.core.management.base import BaseCommand, CommandError

from apps.inventory.models import MaterialBatch
from apps.inventory.services.ledger_service import StockLedgerService


class Command(BaseCommand):
    help = "Replay the stock ledger for every batch and report batches whose quantity disagrees."

    def add_arguments(self, parser):
        parser.add_argument('--company-id', type=int)
        parser.add_argument('--item-id', type=int)
        parser.add_argument(
            '--fail-on-mismatch',
            action='store_true',
            help="Exit with an error when any batch is inconsistent",
        )

    def handle(self, *args, **options):
        batches = MaterialBatch.objects.select_related('item').order_by('id')
        if options.get('company_id'):
            batches = batches.filter(company_id=options['company_id'])
        if options.get('item_id'):
            batches = batches.filter(item_id=options['item_id'])

        checked = 0
        mismatched = []
        for batch in batches.iterator():
            checked += 1
            report = StockLedgerService.reconcile_batch(batch)
            if not report['is_consistent']:
                mismatched.append(batch)
                self.stdout.write(self.style.WARNING(
                    f"{batch.item.code} batch {batch.batch_no} @ {batch.location_type}:{batch.location_id}: "
                    f"stored {report['current_qty']}, ledger {report['replayed_qty']}, "
                    f"last balance {report['last_balance']}"
                ))

        if mismatched and options['fail_on_mismatch']:
            raise CommandError(f"{len(mismatched)} of {checked} batch(es) disagree with the ledger.")
        style = self.style.WARNING if mismatched else self.style.SUCCESS
        self.stdout.write(style(f"Checked {checked} batch(es); {len(mismatched)} inconsistent."))
