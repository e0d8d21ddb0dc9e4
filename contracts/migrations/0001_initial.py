import uuid

import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Client',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('name', models.CharField(help_text='Client full name', max_length=255)),
                ('email', models.EmailField(blank=True, default='', help_text='Contact address used for signing links', max_length=254)),
                ('phone', models.CharField(blank=True, default='', max_length=50)),
                ('company', models.CharField(blank=True, default='', max_length=255)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'db_table': 'studio_clients',
                'ordering': ['name'],
            },
        ),
        migrations.CreateModel(
            name='ContractTemplate',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('name', models.CharField(help_text='Template name', max_length=255)),
                ('content', models.TextField(blank=True, default='', help_text='Template body with {{dotted.path}} placeholders')),
                ('version', models.IntegerField(default=1, help_text='Template version number')),
                ('is_active', models.BooleanField(default=True)),
                ('created_by', models.CharField(blank=True, default='', help_text='Actor who created the template', max_length=64)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'db_table': 'contract_templates',
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='ContractSequence',
            fields=[
                ('year', models.IntegerField(primary_key=True, serialize=False)),
                ('last_value', models.IntegerField(default=0)),
            ],
            options={
                'db_table': 'contract_sequences',
            },
        ),
        migrations.CreateModel(
            name='Contract',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('number', models.CharField(help_text='Human readable number, CONT-<year>-<seq>', max_length=32, unique=True)),
                ('title', models.CharField(max_length=255)),
                ('template_id', models.UUIDField(blank=True, help_text='Template the content was rendered from', null=True)),
                ('template_version', models.IntegerField(default=1, help_text='Template version frozen at generation time')),
                ('content', models.TextField(help_text='Rendered contract text')),
                ('variables', models.JSONField(blank=True, default=dict, help_text='Variable snapshot used for rendering')),
                ('status', models.CharField(choices=[('draft', 'Draft'), ('sent', 'Sent'), ('signed', 'Signed'), ('declined', 'Declined'), ('voided', 'Voided'), ('cancelled', 'Cancelled')], db_index=True, default='draft', max_length=20)),
                ('sent_at', models.DateTimeField(blank=True, null=True)),
                ('signed_at', models.DateTimeField(blank=True, null=True)),
                ('declined_at', models.DateTimeField(blank=True, null=True)),
                ('decline_reason', models.TextField(blank=True, default='')),
                ('voided_at', models.DateTimeField(blank=True, null=True)),
                ('voided_reason', models.TextField(blank=True, default='')),
                ('cancelled_at', models.DateTimeField(blank=True, null=True)),
                ('cancelled_reason', models.TextField(blank=True, default='')),
                ('pdf_path', models.CharField(blank=True, default='', help_text='Artifact storage key', max_length=500)),
                ('pdf_hash', models.CharField(blank=True, default='', help_text='SHA-256 of the artifact bytes', max_length=64)),
                ('pdf_generated_at', models.DateTimeField(blank=True, null=True)),
                ('proposal_id', models.UUIDField(blank=True, help_text='Originating proposal, if any', null=True)),
                ('created_by', models.CharField(blank=True, default='', help_text='Actor who generated the contract', max_length=64)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('client', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='contracts', to='contracts.client')),
            ],
            options={
                'db_table': 'contracts',
                'ordering': ['-created_at'],
                'indexes': [models.Index(fields=['status', '-created_at'], name='contracts_status_created_idx')],
            },
        ),
        migrations.CreateModel(
            name='SigningToken',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('contract_id', models.UUIDField(db_index=True)),
                ('token_hash', models.CharField(max_length=64, unique=True)),
                ('state', models.CharField(choices=[('issued', 'Issued'), ('consumed', 'Consumed'), ('revoked', 'Revoked')], default='issued', max_length=20)),
                ('expires_at', models.DateTimeField()),
                ('require_otp', models.BooleanField(default=False)),
                ('otp_hash', models.CharField(blank=True, default='', max_length=64)),
                ('failed_otp_attempts', models.IntegerField(default=0)),
                ('consumed_at', models.DateTimeField(blank=True, null=True)),
                ('revoked_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
            ],
            options={
                'db_table': 'contract_signing_tokens',
                'ordering': ['-created_at'],
                'constraints': [models.UniqueConstraint(condition=models.Q(('state', 'issued')), fields=('contract_id',), name='one_issued_token_per_contract')],
            },
        ),
        migrations.CreateModel(
            name='ContractEvent',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('contract_id', models.UUIDField(db_index=True)),
                ('type', models.CharField(choices=[('SENT', 'Sent'), ('VIEWED', 'Viewed'), ('SIGNED', 'Signed'), ('DECLINED', 'Declined'), ('RESENT', 'Resent'), ('VOIDED', 'Voided'), ('CANCELLED', 'Cancelled'), ('PDF_GENERATED', 'PDF Generated'), ('PDF_REGENERATED', 'PDF Regenerated')], max_length=32)),
                ('metadata', models.JSONField(blank=True, default=dict)),
                ('created_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
            ],
            options={
                'db_table': 'contract_events',
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='AuditLog',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('action', models.CharField(choices=[('CREATE', 'Create'), ('SEND', 'Send'), ('RESEND_CONTRACT', 'Resend Contract'), ('SIGN', 'Sign'), ('DECLINE', 'Decline'), ('VOID', 'Void'), ('CANCEL', 'Cancel'), ('DELETE', 'Delete'), ('GENERATE_PDF', 'Generate PDF'), ('REGENERATE_PDF', 'Regenerate PDF'), ('EMAIL_FAILED', 'Email Failed')], help_text='Action performed', max_length=50)),
                ('entity_type', models.CharField(help_text='Type of entity (contract, template, ...)', max_length=50)),
                ('entity_id', models.UUIDField(db_index=True, help_text='ID of the affected entity')),
                ('actor_id', models.CharField(blank=True, default='', help_text='Who performed the action', max_length=64)),
                ('changes', models.JSONField(blank=True, default=dict, help_text='Details of changes made')),
                ('metadata', models.JSONField(blank=True, default=dict, help_text='Additional context')),
                ('ip_address', models.GenericIPAddressField(blank=True, null=True)),
                ('user_agent', models.TextField(blank=True, default='')),
                ('created_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
            ],
            options={
                'db_table': 'audit_logs',
                'ordering': ['-created_at'],
                'indexes': [models.Index(fields=['entity_type', 'entity_id'], name='audit_logs_entity_idx')],
            },
        ),
    ]
