"""
Contract lifecycle models: clients, templates, contracts, signing tokens and the
append-only event/audit trail
"""
from django.db import models
from django.db.models import F, Q
from django.utils import timezone
import uuid


class Client(models.Model):
    """
    Studio client (the signer of a contract)
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255, help_text='Client full name')
    email = models.EmailField(blank=True, default='', help_text='Contact address used for signing links')
    phone = models.CharField(max_length=50, blank=True, default='')
    company = models.CharField(max_length=255, blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'studio_clients'
        ordering = ['name']

    def __str__(self):
        return f"{self.name} <{self.email}>" if self.email else self.name

    def as_variables(self):
        return {
            'name': self.name,
            'email': self.email,
            'phone': self.phone,
            'company': self.company,
        }


class ContractTemplate(models.Model):
    """
    Contract template (plain text with {{placeholders}}) with version control
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255, help_text='Template name')
    content = models.TextField(blank=True, default='', help_text='Template body with {{dotted.path}} placeholders')
    version = models.IntegerField(default=1, help_text='Template version number')
    is_active = models.BooleanField(default=True)
    created_by = models.CharField(max_length=64, blank=True, default='', help_text='Actor who created the template')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'contract_templates'
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.name} v{self.version}"

    def save(self, *args, **kwargs):
        # Editing the body of an existing template publishes a new version.
        if not self._state.adding:
            previous = (
                ContractTemplate.objects.filter(pk=self.pk).values_list('content', flat=True).first()
            )
            if previous is not None and previous != self.content:
                self.version = (self.version or 0) + 1
        super().save(*args, **kwargs)


class ContractSequence(models.Model):
    """
    Per-year counter backing CONT-<year>-<seq> numbers
    """
    year = models.IntegerField(primary_key=True)
    last_value = models.IntegerField(default=0)

    class Meta:
        db_table = 'contract_sequences'

    def __str__(self):
        return f"{self.year}: {self.last_value}"

    @classmethod
    def next_value(cls, year):
        """Increment and return the counter for ``year``.

        Must run inside the transaction that creates the contract: the row
        stays locked until commit, and a rollback gives the value back.
        """
        cls.objects.get_or_create(year=year)
        qs = cls.objects.select_for_update().filter(year=year)
        qs.update(last_value=F('last_value') + 1)
        return qs.values_list('last_value', flat=True).get()


class Contract(models.Model):
    """
    Contract generated from a template; status is owned by ContractOrchestrator
    """
    STATUS_DRAFT = 'draft'
    STATUS_SENT = 'sent'
    STATUS_SIGNED = 'signed'
    STATUS_DECLINED = 'declined'
    STATUS_VOIDED = 'voided'
    STATUS_CANCELLED = 'cancelled'

    STATUS_CHOICES = [
        (STATUS_DRAFT, 'Draft'),
        (STATUS_SENT, 'Sent'),
        (STATUS_SIGNED, 'Signed'),
        (STATUS_DECLINED, 'Declined'),
        (STATUS_VOIDED, 'Voided'),
        (STATUS_CANCELLED, 'Cancelled'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    number = models.CharField(max_length=32, unique=True, help_text='Human readable number, CONT-<year>-<seq>')
    title = models.CharField(max_length=255)

    template_id = models.UUIDField(null=True, blank=True, help_text='Template the content was rendered from')
    template_version = models.IntegerField(default=1, help_text='Template version frozen at generation time')
    content = models.TextField(help_text='Rendered contract text')
    variables = models.JSONField(default=dict, blank=True, help_text='Variable snapshot used for rendering')

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_DRAFT, db_index=True)
    sent_at = models.DateTimeField(null=True, blank=True)
    signed_at = models.DateTimeField(null=True, blank=True)
    declined_at = models.DateTimeField(null=True, blank=True)
    decline_reason = models.TextField(blank=True, default='')
    voided_at = models.DateTimeField(null=True, blank=True)
    voided_reason = models.TextField(blank=True, default='')
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancelled_reason = models.TextField(blank=True, default='')

    pdf_path = models.CharField(max_length=500, blank=True, default='', help_text='Artifact storage key')
    pdf_hash = models.CharField(max_length=64, blank=True, default='', help_text='SHA-256 of the artifact bytes')
    pdf_generated_at = models.DateTimeField(null=True, blank=True)

    client = models.ForeignKey(
        Client,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='contracts',
    )
    proposal_id = models.UUIDField(null=True, blank=True, help_text='Originating proposal, if any')
    created_by = models.CharField(max_length=64, blank=True, default='', help_text='Actor who generated the contract')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'contracts'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status', '-created_at'], name='contracts_status_created_idx'),
        ]

    def __str__(self):
        return f"{self.number} - {self.title} ({self.status})"


class SigningToken(models.Model):
    """
    Single-use magic link credential. Only the SHA-256 of the raw token is stored.
    """
    STATE_ISSUED = 'issued'
    STATE_CONSUMED = 'consumed'
    STATE_REVOKED = 'revoked'

    STATE_CHOICES = [
        (STATE_ISSUED, 'Issued'),
        (STATE_CONSUMED, 'Consumed'),
        (STATE_REVOKED, 'Revoked'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    contract_id = models.UUIDField(db_index=True)
    token_hash = models.CharField(max_length=64, unique=True)
    state = models.CharField(max_length=20, choices=STATE_CHOICES, default=STATE_ISSUED)
    expires_at = models.DateTimeField()
    require_otp = models.BooleanField(default=False)
    otp_hash = models.CharField(max_length=64, blank=True, default='')
    failed_otp_attempts = models.IntegerField(default=0)
    consumed_at = models.DateTimeField(null=True, blank=True)
    revoked_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'contract_signing_tokens'
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['contract_id'],
                condition=Q(state='issued'),
                name='one_issued_token_per_contract',
            ),
        ]

    def __str__(self):
        return f"token {self.id} for {self.contract_id} ({self.state})"

    @property
    def is_expired(self):
        return timezone.now() > self.expires_at


class AppendOnlyQuerySet(models.QuerySet):
    def update(self, **kwargs):
        raise PermissionError(f"{self.model.__name__} rows are append-only")

    def delete(self):
        raise PermissionError(f"{self.model.__name__} rows are append-only")


class AppendOnlyModel(models.Model):
    objects = AppendOnlyQuerySet.as_manager()

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise PermissionError(f"{type(self).__name__} rows are append-only")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise PermissionError(f"{type(self).__name__} rows are append-only")


class ContractEvent(AppendOnlyModel):
    """
    Contract-specific lifecycle event. contract_id is not a foreign key so the
    trail outlives a deleted contract.
    """
    SENT = 'SENT'
    VIEWED = 'VIEWED'
    SIGNED = 'SIGNED'
    DECLINED = 'DECLINED'
    RESENT = 'RESENT'
    VOIDED = 'VOIDED'
    CANCELLED = 'CANCELLED'
    PDF_GENERATED = 'PDF_GENERATED'
    PDF_REGENERATED = 'PDF_REGENERATED'

    TYPE_CHOICES = [
        (SENT, 'Sent'),
        (VIEWED, 'Viewed'),
        (SIGNED, 'Signed'),
        (DECLINED, 'Declined'),
        (RESENT, 'Resent'),
        (VOIDED, 'Voided'),
        (CANCELLED, 'Cancelled'),
        (PDF_GENERATED, 'PDF Generated'),
        (PDF_REGENERATED, 'PDF Regenerated'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    contract_id = models.UUIDField(db_index=True)
    type = models.CharField(max_length=32, choices=TYPE_CHOICES)
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        db_table = 'contract_events'
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.type} on {self.contract_id} at {self.created_at}"


class AuditLog(AppendOnlyModel):
    """
    Generic audit entry shared across entity types
    """
    CREATE = 'CREATE'
    SEND = 'SEND'
    RESEND_CONTRACT = 'RESEND_CONTRACT'
    SIGN = 'SIGN'
    DECLINE = 'DECLINE'
    VOID = 'VOID'
    CANCEL = 'CANCEL'
    DELETE = 'DELETE'
    GENERATE_PDF = 'GENERATE_PDF'
    REGENERATE_PDF = 'REGENERATE_PDF'
    EMAIL_FAILED = 'EMAIL_FAILED'

    ACTION_CHOICES = [
        (CREATE, 'Create'),
        (SEND, 'Send'),
        (RESEND_CONTRACT, 'Resend Contract'),
        (SIGN, 'Sign'),
        (DECLINE, 'Decline'),
        (VOID, 'Void'),
        (CANCEL, 'Cancel'),
        (DELETE, 'Delete'),
        (GENERATE_PDF, 'Generate PDF'),
        (REGENERATE_PDF, 'Regenerate PDF'),
        (EMAIL_FAILED, 'Email Failed'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    action = models.CharField(max_length=50, choices=ACTION_CHOICES, help_text='Action performed')
    entity_type = models.CharField(max_length=50, help_text='Type of entity (contract, template, ...)')
    entity_id = models.UUIDField(db_index=True, help_text='ID of the affected entity')
    actor_id = models.CharField(max_length=64, blank=True, default='', help_text='Who performed the action')
    changes = models.JSONField(default=dict, blank=True, help_text='Details of changes made')
    metadata = models.JSONField(default=dict, blank=True, help_text='Additional context')
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    user_agent = models.TextField(blank=True, default='')
    created_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        db_table = 'audit_logs'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['entity_type', 'entity_id'], name='audit_logs_entity_idx'),
        ]

    def __str__(self):
        return f"{self.action} {self.entity_type}:{self.entity_id} by {self.actor_id or '-'}"
