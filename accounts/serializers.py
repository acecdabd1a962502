from rest_framework import serializers
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer

from .models import User


class UserSerializer(serializers.ModelSerializer):
    """
    Serializer for user details.
    """
    full_name = serializers.CharField(source='get_full_name', read_only=True)
    role_display = serializers.CharField(source='get_role_display', read_only=True)
    assigned_vet_name = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = (
            'id', 'username', 'email', 'phone', 'first_name', 'last_name',
            'full_name', 'role', 'role_display', 'farm_name', 'assigned_vet',
            'assigned_vet_name', 'vet_code', 'license_number', 'date_joined',
        )
        read_only_fields = (
            'id', 'full_name', 'role', 'role_display', 'assigned_vet',
            'vet_code', 'date_joined',
        )

    def get_assigned_vet_name(self, obj):
        return obj.assigned_vet.get_full_name() if obj.assigned_vet else None


class CustomTokenObtainPairSerializer(TokenObtainPairSerializer):
    """
    JWT token serializer that includes the caller's role so clients can
    route farmers, veterinarians and regulators without a second request.
    """
    def validate(self, attrs):
        data = super().validate(attrs)

        data['user'] = {
            'id': str(self.user.id),
            'username': self.user.username,
            'email': self.user.email,
            'role': self.user.role,
            'full_name': self.user.get_full_name(),
        }
        return data
