from rest_framework import serializers

from .models import LegalDocument


class HelloWorksCallbackMetadataSerializer(serializers.Serializer):
    accountId = serializers.IntegerField()
    year = serializers.IntegerField(min_value=1900, max_value=9999)


class HelloWorksCallbackSerializer(serializers.Serializer):
    id = serializers.CharField()
    status = serializers.CharField()
    metadata = HelloWorksCallbackMetadataSerializer()


class LegalDocumentSerializer(serializers.ModelSerializer):
    account_id = serializers.IntegerField(read_only=True)

    class Meta:
        model = LegalDocument
        fields = ["id", "account_id", "year", "document_type", "request_status", "updated_at"]
        read_only_fields = fields
