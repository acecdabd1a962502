from rest_framework import serializers

from .models import AdministrationDocument, FeedAdministration, Prescription


class FeedAdministrationSerializer(serializers.ModelSerializer):
    """
    Read serializer for feed administration records.

    Also used to build audit log snapshots.
    """
    farmer_name = serializers.CharField(source='farmer.get_full_name', read_only=True)
    feed_name = serializers.CharField(source='feed.feed_name', read_only=True)
    unit = serializers.CharField(source='feed.unit', read_only=True)
    antimicrobial_name = serializers.CharField(source='feed.antimicrobial_name', read_only=True)
    is_medicated = serializers.BooleanField(read_only=True)
    animal_ids = serializers.ListField(child=serializers.CharField(), read_only=True)
    is_withdrawal_active = serializers.BooleanField(read_only=True)
    days_until_withdrawal_end = serializers.IntegerField(read_only=True)

    class Meta:
        model = FeedAdministration
        fields = (
            'id', 'farmer', 'farmer_name', 'feed', 'feed_name', 'unit',
            'antimicrobial_name', 'is_medicated', 'animal_ids', 'group_name',
            'number_of_animals', 'feed_quantity_used', 'antimicrobial_dose_total',
            'administration_date', 'start_date', 'end_date', 'withdrawal_end_date',
            'status', 'vet', 'vet_approved', 'vet_approval_date', 'approved_by',
            'rejected_by', 'rejection_reason', 'requires_mrl_test',
            'expected_mrl_clearance_date', 'stock_restored_at', 'notes',
            'email_error', 'document_error', 'is_withdrawal_active',
            'days_until_withdrawal_end', 'created_by', 'created_at', 'updated_at',
        )
        read_only_fields = fields


class PrescriptionSerializer(serializers.ModelSerializer):
    vet_name = serializers.CharField(source='vet.get_full_name', read_only=True)

    class Meta:
        model = Prescription
        fields = ('id', 'feed_administration', 'farmer', 'vet', 'vet_name', 'issue_date', 'status', 'notes')
        read_only_fields = fields


class AdministrationDocumentSerializer(serializers.ModelSerializer):
    document_type_display = serializers.CharField(source='get_document_type_display', read_only=True)

    class Meta:
        model = AdministrationDocument
        fields = ('id', 'document_type', 'document_type_display', 'file', 'created_at')
        read_only_fields = fields
