import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models

LOCATION_CHOICES = [('COMPANY', 'Company'), ('BRANCH', 'Branch'), ('TECHNICIAN', 'Technician')]
MOVEMENT_STATUS_CHOICES = [
    ('AWAITING_APPROVAL', 'Awaiting Approval'),
    ('APPROVED', 'Approved'),
    ('REJECTED', 'Rejected'),
    ('PARTIAL', 'Partially Approved'),
    ('RECEIVED', 'Received'),
]
APPROVAL_STATUS_CHOICES = [
    ('PENDING', 'Pending'),
    ('APPROVED', 'Approved'),
    ('REJECTED', 'Rejected'),
    ('PARTIALLY_APPROVED', 'Partially Approved'),
]


def company_aware_fields():
    return [
        ('created_at', models.DateTimeField(auto_now_add=True)),
        ('updated_at', models.DateTimeField(auto_now=True)),
        ('company', models.ForeignKey(help_text='Company this record belongs to', on_delete=django.db.models.deletion.PROTECT, to='companies.company')),
        ('created_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL)),
    ]


def movement_fields():
    return [
        ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
        *company_aware_fields(),
        ('document_number', models.CharField(max_length=50)),
        ('movement_date', models.DateField(default=django.utils.timezone.localdate)),
        ('from_location_type', models.CharField(blank=True, choices=LOCATION_CHOICES, max_length=20)),
        ('from_location_id', models.PositiveBigIntegerField(blank=True, null=True)),
        ('to_location_type', models.CharField(blank=True, choices=LOCATION_CHOICES, max_length=20)),
        ('to_location_id', models.PositiveBigIntegerField(blank=True, null=True)),
        ('status', models.CharField(choices=MOVEMENT_STATUS_CHOICES, default='APPROVED', max_length=20)),
        ('notes', models.TextField(blank=True)),
    ]


def movement_item_fields():
    return [
        ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
        ('line_no', models.PositiveIntegerField(default=1)),
        ('quantity', models.DecimalField(decimal_places=6, max_digits=20)),
        ('uom', models.CharField(max_length=20)),
        ('base_quantity', models.DecimalField(decimal_places=6, max_digits=20)),
        ('rate_per_unit', models.DecimalField(decimal_places=4, default=0, max_digits=18)),
        ('gst_percentage', models.DecimalField(decimal_places=2, default=0, max_digits=5)),
        ('base_amount', models.DecimalField(decimal_places=2, default=0, max_digits=18)),
        ('gst_amount', models.DecimalField(decimal_places=2, default=0, max_digits=18)),
        ('total_amount', models.DecimalField(decimal_places=2, default=0, max_digits=18)),
        ('item', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='+', to='inventory.item')),
        ('batch', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='+', to='inventory.materialbatch')),
    ]


def movement_options(db_table):
    return {
        'db_table': db_table,
        'ordering': ['-created_at', '-id'],
        'abstract': False,
    }


def movement_item_options(db_table):
    return {
        'db_table': db_table,
        'ordering': ['line_no', 'id'],
        'abstract': False,
    }


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('companies', '0001_initial'),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Item',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                *company_aware_fields(),
                ('code', models.CharField(max_length=50)),
                ('name', models.CharField(max_length=255)),
                ('category', models.CharField(blank=True, max_length=100)),
                ('description', models.TextField(blank=True)),
                ('base_uom', models.CharField(help_text='Unit every batch quantity of this item is stored in', max_length=20)),
                ('gst_rate', models.DecimalField(decimal_places=2, default=0, max_digits=5)),
                ('is_active', models.BooleanField(default=True)),
            ],
            options={
                'db_table': 'inventory_item',
                'ordering': ['code'],
                'constraints': [
                    models.UniqueConstraint(fields=('company', 'code'), name='uniq_item_code_per_company'),
                ],
            },
        ),
        migrations.CreateModel(
            name='ItemUOMConversion',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('from_uom', models.CharField(max_length=20)),
                ('to_uom', models.CharField(max_length=20)),
                ('conversion_factor', models.DecimalField(decimal_places=6, help_text='Quantity of to_uom in one from_uom', max_digits=20)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('item', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='uom_conversions', to='inventory.item')),
            ],
            options={
                'db_table': 'inventory_item_uom_conversion',
                'constraints': [
                    models.UniqueConstraint(fields=('item', 'from_uom', 'to_uom'), name='uniq_item_uom_conversion'),
                    models.CheckConstraint(condition=models.Q(conversion_factor__gt=0), name='uom_conversion_factor_positive'),
                ],
            },
        ),
        migrations.CreateModel(
            name='MaterialBatch',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                *company_aware_fields(),
                ('batch_no', models.CharField(max_length=100)),
                ('mfg_date', models.DateField(blank=True, null=True)),
                ('expiry_date', models.DateField(blank=True, db_index=True, null=True)),
                ('initial_qty', models.DecimalField(decimal_places=6, max_digits=20)),
                ('current_qty', models.DecimalField(decimal_places=6, max_digits=20)),
                ('rate_per_unit', models.DecimalField(decimal_places=4, default=0, help_text='Rate per base unit', max_digits=18)),
                ('gst_percentage', models.DecimalField(decimal_places=2, default=0, max_digits=5)),
                ('location_type', models.CharField(choices=LOCATION_CHOICES, max_length=20)),
                ('location_id', models.PositiveBigIntegerField()),
                ('is_expired', models.BooleanField(default=False)),
                ('item', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='batches', to='inventory.item')),
            ],
            options={
                'db_table': 'inventory_material_batch',
                'ordering': ['expiry_date', 'created_at', 'id'],
                'indexes': [
                    models.Index(fields=['item', 'location_type', 'location_id', 'expiry_date'], name='batch_fefo_lookup_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(fields=('item', 'batch_no', 'location_type', 'location_id'), name='uniq_batch_per_location'),
                    models.CheckConstraint(condition=models.Q(current_qty__gte=0), name='batch_current_qty_non_negative'),
                ],
            },
        ),
        migrations.CreateModel(
            name='StockLedgerEntry',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('location_type', models.CharField(choices=LOCATION_CHOICES, max_length=20)),
                ('location_id', models.PositiveBigIntegerField()),
                ('transaction_type', models.CharField(choices=[('RECEIPT', 'Receipt'), ('ISSUE', 'Issue'), ('RETURN', 'Return'), ('TRANSFER', 'Transfer'), ('CONSUMPTION', 'Consumption'), ('ADJUSTMENT', 'Adjustment')], max_length=20)),
                ('transaction_id', models.PositiveBigIntegerField(help_text='Primary key of the movement document')),
                ('reference_no', models.CharField(blank=True, max_length=50)),
                ('transaction_date', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ('quantity_in', models.DecimalField(decimal_places=6, default=0, max_digits=20)),
                ('quantity_out', models.DecimalField(decimal_places=6, default=0, max_digits=20)),
                ('balance_quantity', models.DecimalField(decimal_places=6, max_digits=20)),
                ('rate_per_unit', models.DecimalField(decimal_places=4, default=0, max_digits=18)),
                ('balance_value', models.DecimalField(decimal_places=2, default=0, max_digits=18)),
                ('user_role', models.CharField(blank=True, max_length=30)),
                ('ip_address', models.GenericIPAddressField(blank=True, null=True)),
                ('user_agent', models.CharField(blank=True, max_length=255)),
                ('notes', models.TextField(blank=True)),
                ('system_generated', models.BooleanField(default=False)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('company', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, to='companies.company')),
                ('item', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='ledger_entries', to='inventory.item')),
                ('batch', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='ledger_entries', to='inventory.materialbatch')),
                ('created_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL)),
                ('reversal_of', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='reversals', to='inventory.stockledgerentry')),
            ],
            options={
                'db_table': 'inventory_stock_ledger_entry',
                'ordering': ['created_at', 'id'],
                'verbose_name_plural': 'Stock ledger entries',
                'indexes': [
                    models.Index(fields=['company', 'item', 'location_type', 'location_id'], name='ledger_item_location_idx'),
                    models.Index(fields=['transaction_type', 'transaction_id'], name='ledger_transaction_idx'),
                ],
                'constraints': [
                    models.CheckConstraint(
                        condition=models.Q(models.Q(quantity_in__gt=0, quantity_out=0), models.Q(quantity_in=0, quantity_out__gt=0), _connector='OR'),
                        name='ledger_entry_one_direction',
                    ),
                ],
            },
        ),

        # Movement documents
        migrations.CreateModel(
            name='MaterialReceipt',
            fields=[
                *movement_fields(),
                ('vendor_name', models.CharField(blank=True, max_length=255)),
                ('invoice_number', models.CharField(blank=True, max_length=100)),
                ('invoice_date', models.DateField(blank=True, null=True)),
                ('total_base_amount', models.DecimalField(decimal_places=2, default=0, max_digits=18)),
                ('total_gst_amount', models.DecimalField(decimal_places=2, default=0, max_digits=18)),
                ('total_amount', models.DecimalField(decimal_places=2, default=0, max_digits=18)),
            ],
            options={
                **movement_options('inventory_material_receipt'),
                'constraints': [
                    models.UniqueConstraint(fields=('company', 'document_number'), name='uniq_materialreceipt_document_number'),
                ],
            },
        ),
        migrations.CreateModel(
            name='MaterialIssue',
            fields=[
                *movement_fields(),
                ('purpose', models.TextField(blank=True)),
                ('approved_at', models.DateTimeField(blank=True, null=True)),
                ('rejection_reason', models.TextField(blank=True)),
                ('approved_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='+', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                **movement_options('inventory_material_issue'),
                'constraints': [
                    models.UniqueConstraint(fields=('company', 'document_number'), name='uniq_materialissue_document_number'),
                ],
            },
        ),
        migrations.CreateModel(
            name='MaterialReturn',
            fields=[
                *movement_fields(),
                ('reason', models.TextField(blank=True)),
            ],
            options={
                **movement_options('inventory_material_return'),
                'constraints': [
                    models.UniqueConstraint(fields=('company', 'document_number'), name='uniq_materialreturn_document_number'),
                ],
            },
        ),
        migrations.CreateModel(
            name='MaterialTransfer',
            fields=movement_fields(),
            options={
                **movement_options('inventory_material_transfer'),
                'constraints': [
                    models.UniqueConstraint(fields=('company', 'document_number'), name='uniq_materialtransfer_document_number'),
                ],
            },
        ),
        migrations.CreateModel(
            name='MaterialConsumption',
            fields=[
                *movement_fields(),
                ('service_reference', models.CharField(blank=True, max_length=100)),
                ('lead_reference', models.CharField(blank=True, max_length=100)),
                ('technician', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='material_consumptions', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                **movement_options('inventory_material_consumption'),
                'constraints': [
                    models.UniqueConstraint(fields=('company', 'document_number'), name='uniq_materialconsumption_document_number'),
                ],
            },
        ),

        # Movement lines
        migrations.CreateModel(
            name='MaterialReceiptItem',
            fields=[
                *movement_item_fields(),
                ('receipt', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='items', to='inventory.materialreceipt')),
            ],
            options=movement_item_options('inventory_material_receipt_item'),
        ),
        migrations.CreateModel(
            name='MaterialIssueItem',
            fields=[
                *movement_item_fields(),
                ('issue', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='items', to='inventory.materialissue')),
                ('ledger_entry', models.OneToOneField(blank=True, help_text='Ledger row that took this line out of the source batch', null=True, on_delete=django.db.models.deletion.PROTECT, related_name='issue_item', to='inventory.stockledgerentry')),
            ],
            options=movement_item_options('inventory_material_issue_item'),
        ),
        migrations.CreateModel(
            name='MaterialReturnItem',
            fields=[
                *movement_item_fields(),
                ('material_return', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='items', to='inventory.materialreturn')),
            ],
            options=movement_item_options('inventory_material_return_item'),
        ),
        migrations.CreateModel(
            name='MaterialTransferItem',
            fields=[
                *movement_item_fields(),
                ('transfer', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='items', to='inventory.materialtransfer')),
            ],
            options=movement_item_options('inventory_material_transfer_item'),
        ),
        migrations.CreateModel(
            name='MaterialConsumptionItem',
            fields=[
                *movement_item_fields(),
                ('consumption', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='items', to='inventory.materialconsumption')),
            ],
            options=movement_item_options('inventory_material_consumption_item'),
        ),

        # Approvals
        migrations.CreateModel(
            name='MaterialApproval',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('assigned_to_type', models.CharField(choices=[('BRANCH', 'Branch'), ('TECHNICIAN', 'Technician')], max_length=20)),
                ('assigned_to_id', models.PositiveBigIntegerField()),
                ('status', models.CharField(choices=APPROVAL_STATUS_CHOICES, db_index=True, default='PENDING', max_length=20)),
                ('approved_at', models.DateTimeField(blank=True, null=True)),
                ('rejection_reason', models.TextField(blank=True)),
                ('remarks', models.TextField(blank=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('company', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, to='companies.company')),
                ('issue', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='approval', to='inventory.materialissue')),
                ('approved_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='material_approvals_resolved', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'inventory_material_approval',
                'ordering': ['-created_at', '-id'],
                'indexes': [
                    models.Index(fields=['company', 'status', 'assigned_to_type', 'assigned_to_id'], name='approval_queue_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='MaterialApprovalItem',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('original_quantity', models.DecimalField(decimal_places=6, max_digits=20)),
                ('original_uom', models.CharField(max_length=20)),
                ('original_base_quantity', models.DecimalField(decimal_places=6, max_digits=20)),
                ('original_base_amount', models.DecimalField(decimal_places=2, default=0, max_digits=18)),
                ('original_gst_amount', models.DecimalField(decimal_places=2, default=0, max_digits=18)),
                ('original_total_amount', models.DecimalField(decimal_places=2, default=0, max_digits=18)),
                ('approved_quantity', models.DecimalField(blank=True, decimal_places=6, max_digits=20, null=True)),
                ('approved_uom', models.CharField(blank=True, max_length=20)),
                ('approved_base_quantity', models.DecimalField(blank=True, decimal_places=6, max_digits=20, null=True)),
                ('approved_base_amount', models.DecimalField(blank=True, decimal_places=2, max_digits=18, null=True)),
                ('approved_gst_amount', models.DecimalField(blank=True, decimal_places=2, max_digits=18, null=True)),
                ('approved_total_amount', models.DecimalField(blank=True, decimal_places=2, max_digits=18, null=True)),
                ('status', models.CharField(choices=APPROVAL_STATUS_CHOICES, default='PENDING', max_length=20)),
                ('remarks', models.TextField(blank=True)),
                ('approval', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='items', to='inventory.materialapproval')),
                ('issue_item', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='approval_item', to='inventory.materialissueitem')),
                ('item', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='+', to='inventory.item')),
                ('batch', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='+', to='inventory.materialbatch')),
            ],
            options={
                'db_table': 'inventory_material_approval_item',
                'ordering': ['id'],
            },
        ),
    ]
