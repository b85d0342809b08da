from rest_framework import serializers

from common.exceptions import Conflict
from .models import Patient


class PatientListSerializer(serializers.ModelSerializer):
    """Serializer for listing patients (lightweight)"""
    has_membership = serializers.BooleanField(read_only=True)

    class Meta:
        model = Patient
        fields = ['id', 'name', 'phone', 'email', 'gender', 'has_membership', 'is_active']


class PatientDetailSerializer(serializers.ModelSerializer):
    """Detailed patient serializer including membership state"""
    has_membership = serializers.BooleanField(read_only=True)
    current_discount = serializers.DecimalField(max_digits=5, decimal_places=2, read_only=True)
    preferred_clinic_name = serializers.CharField(source='preferred_clinic.name', read_only=True)

    class Meta:
        model = Patient
        fields = '__all__'


class PatientCreateUpdateSerializer(serializers.ModelSerializer):
    """Create/Update serializer for patients"""

    class Meta:
        model = Patient
        exclude = ['registered_by_id', 'created_at', 'updated_at']
        extra_kwargs = {
            # Duplicate phones are reported as a 409 in validate_phone
            'phone': {'validators': []},
        }

    def validate_phone(self, value):
        value = value.strip()
        duplicates = Patient.objects.filter(phone=value)
        if self.instance is not None:
            duplicates = duplicates.exclude(pk=self.instance.pk)
        if duplicates.exists():
            raise Conflict('Patient with this phone number already exists')
        return value

    def validate_allergies(self, value):
        if not isinstance(value, list):
            raise serializers.ValidationError('allergies must be a list')
        return value

    def validate_medical_history(self, value):
        if not isinstance(value, list):
            raise serializers.ValidationError('medical_history must be a list')
        return value

    def validate(self, attrs):
        start = attrs.get('membership_start_date', getattr(self.instance, 'membership_start_date', None))
        expiry = attrs.get('membership_expiry_date', getattr(self.instance, 'membership_expiry_date', None))
        if start and expiry and expiry <= start:
            raise serializers.ValidationError({
                'membership_expiry_date': 'Membership expiry must be after the start date'
            })
        return attrs

    def create(self, validated_data):
        request = self.context.get('request')
        if request and hasattr(request, 'user_id'):
            validated_data['registered_by_id'] = request.user_id
        return super().create(validated_data)
