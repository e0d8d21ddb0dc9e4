from rest_framework import serializers

from .models import Client, Contract, ContractTemplate


class ClientSerializer(serializers.ModelSerializer):
    class Meta:
        model = Client
        fields = ['id', 'name', 'email', 'phone', 'company']
        read_only_fields = fields


class ContractTemplateListSerializer(serializers.ModelSerializer):
    """Small payload serializer for listing contract templates."""

    class Meta:
        model = ContractTemplate
        fields = ['id', 'name', 'version', 'is_active', 'created_at', 'updated_at']
        read_only_fields = fields


class ContractSerializer(serializers.ModelSerializer):
    client = ClientSerializer(read_only=True)

    class Meta:
        model = Contract
        fields = [
            'id',
            'number',
            'title',
            'status',
            'template_id',
            'template_version',
            'content',
            'variables',
            'client',
            'proposal_id',
            'sent_at',
            'signed_at',
            'declined_at',
            'decline_reason',
            'voided_at',
            'voided_reason',
            'cancelled_at',
            'cancelled_reason',
            'pdf_path',
            'pdf_hash',
            'pdf_generated_at',
            'created_by',
            'created_at',
            'updated_at',
        ]
        read_only_fields = fields


class ContractListSerializer(serializers.ModelSerializer):
    class Meta:
        model = Contract
        fields = ['id', 'number', 'title', 'status', 'client_id', 'sent_at', 'signed_at', 'created_at']
        read_only_fields = fields


class SignerContractSerializer(serializers.ModelSerializer):
    """What the public signing page may see."""

    class Meta:
        model = Contract
        fields = ['id', 'number', 'title', 'content', 'status', 'sent_at']
        read_only_fields = fields


class GenerateContractSerializer(serializers.Serializer):
    template_id = serializers.UUIDField()
    title = serializers.CharField(max_length=255, required=False, allow_blank=True, default='')
    variables = serializers.DictField(required=False, default=dict)
    client_id = serializers.UUIDField(required=False, allow_null=True)
    proposal_id = serializers.UUIDField(required=False, allow_null=True)


class SendContractSerializer(serializers.Serializer):
    require_otp = serializers.BooleanField(required=False, allow_null=True, default=None)
    ttl_hours = serializers.IntegerField(required=False, allow_null=True, min_value=1, max_value=24 * 30, default=None)


class ReasonSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default='', max_length=2000)


class SignerIdentitySerializer(serializers.Serializer):
    otp = serializers.CharField(required=False, allow_blank=True, max_length=12)
    signer_name = serializers.CharField(required=False, allow_blank=True, default='', max_length=255)
    signer_email = serializers.EmailField(required=False, allow_blank=True, default='')


class SignContractSerializer(SignerIdentitySerializer):
    signer_name = serializers.CharField(max_length=255)
    signer_email = serializers.EmailField()
    signature_data_url = serializers.CharField(max_length=2_000_000)
    agreed_to_terms = serializers.BooleanField()

    def validate_agreed_to_terms(self, value):
        if not value:
            raise serializers.ValidationError('Must agree to terms to sign')
        return value


class DeclineContractSerializer(SignerIdentitySerializer):
    reason = serializers.CharField(required=False, allow_blank=True, default='', max_length=2000)
