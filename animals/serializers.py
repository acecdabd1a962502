from django.core.exceptions import ValidationError as DjangoValidationError
from django.utils import timezone
from rest_framework import serializers

from .models import Animal, MRLTest


class AnimalSerializer(serializers.ModelSerializer):
    """
    Animal registry serializer.

    Residue flags are maintained by the feed administration workflow, the
    withdrawal updater and MRL lab tests, so they are read-only here.
    """
    farmer_name = serializers.CharField(source='farmer.get_full_name', read_only=True)
    is_withdrawal_active = serializers.BooleanField(read_only=True)

    class Meta:
        model = Animal
        fields = (
            'id', 'farmer', 'farmer_name', 'tag_id', 'name', 'species', 'gender',
            'date_of_birth', 'weight_kg', 'status', 'mrl_status', 'is_new',
            'in_withdrawal', 'withdrawal_end_date', 'requires_mrl_test',
            'is_withdrawal_active', 'notes', 'created_at', 'updated_at',
        )
        read_only_fields = (
            'id', 'farmer', 'farmer_name', 'mrl_status', 'is_new', 'in_withdrawal',
            'withdrawal_end_date', 'requires_mrl_test', 'is_withdrawal_active',
            'created_at', 'updated_at',
        )

    def validate(self, attrs):
        try:
            Animal(**attrs).clean()
        except DjangoValidationError as e:
            raise serializers.ValidationError(e.message_dict)
        return attrs


class MRLTestSerializer(serializers.ModelSerializer):
    """MRL lab test; the verdict and review fields are set by the service layer."""
    tag_id = serializers.CharField(source='animal.tag_id', read_only=True)
    reviewed_by_name = serializers.CharField(source='reviewed_by.get_full_name', read_only=True, default=None)

    class Meta:
        model = MRLTest
        fields = (
            'id', 'animal', 'tag_id', 'drug_name', 'sample_type', 'residue_level',
            'mrl_threshold', 'unit', 'test_date', 'lab_name', 'test_report_number',
            'is_passed', 'status', 'violation_resolved', 'reviewed_by', 'reviewed_by_name',
            'reviewed_at', 'review_notes', 'recorded_by', 'notes', 'created_at',
        )
        read_only_fields = (
            'id', 'animal', 'tag_id', 'is_passed', 'status', 'violation_resolved',
            'reviewed_by', 'reviewed_by_name', 'reviewed_at', 'review_notes',
            'recorded_by', 'created_at',
        )

    def validate_test_date(self, value):
        if value > timezone.localdate():
            raise serializers.ValidationError('Test date cannot be in the future')
        return value
