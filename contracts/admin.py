from django.contrib import admin
from .models import AuditLog, Client, Contract, ContractEvent, ContractTemplate, SigningToken


class ReadOnlyAdmin(admin.ModelAdmin):
    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Client)
class ClientAdmin(admin.ModelAdmin):
    list_display = ('name', 'email', 'company')
    search_fields = ('name', 'email', 'company')

@admin.register(ContractTemplate)
class ContractTemplateAdmin(admin.ModelAdmin):
    list_display = ('name', 'version', 'is_active', 'updated_at')
    list_filter = ('is_active',)
    search_fields = ('name',)
    readonly_fields = ('version',)

@admin.register(Contract)
class ContractAdmin(admin.ModelAdmin):
    list_display = ('number', 'title', 'status', 'client', 'sent_at', 'signed_at')
    list_filter = ('status',)
    search_fields = ('number', 'title')
    # Lifecycle and artifact fields are only written by the orchestrator.
    readonly_fields = (
        'number', 'status', 'template_id', 'template_version', 'content', 'variables',
        'sent_at', 'signed_at', 'declined_at', 'decline_reason',
        'voided_at', 'voided_reason', 'cancelled_at', 'cancelled_reason',
        'pdf_path', 'pdf_hash', 'pdf_generated_at', 'created_by',
    )

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False

@admin.register(SigningToken)
class SigningTokenAdmin(ReadOnlyAdmin):
    list_display = ('contract_id', 'state', 'expires_at', 'require_otp', 'failed_otp_attempts', 'created_at')
    list_filter = ('state', 'require_otp')
    exclude = ('token_hash', 'otp_hash')

@admin.register(ContractEvent)
class ContractEventAdmin(ReadOnlyAdmin):
    list_display = ('contract_id', 'type', 'created_at')
    list_filter = ('type',)

@admin.register(AuditLog)
class AuditLogAdmin(ReadOnlyAdmin):
    list_display = ('action', 'entity_type', 'entity_id', 'actor_id', 'created_at')
    list_filter = ('action', 'entity_type')
    search_fields = ('entity_id', 'actor_id')
