from rest_framework import serializers

from .models import AuditLog


class AuditLogSerializer(serializers.ModelSerializer):
    performed_by_name = serializers.SerializerMethodField()

    class Meta:
        model = AuditLog
        fields = (
            'id', 'event_type', 'entity_type', 'entity_id', 'farmer',
            'performed_by', 'performed_by_name', 'performed_by_role', 'timestamp',
            'data_snapshot', 'changes', 'metadata', 'previous_hash', 'current_hash',
        )
        read_only_fields = fields

    def get_performed_by_name(self, obj):
        return obj.performed_by.get_full_name() if obj.performed_by else None
