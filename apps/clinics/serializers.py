# clinics/serializers.py
from rest_framework import serializers
from django.db import transaction

from common.exceptions import Conflict
from .models import Clinic, ClinicOperatingHours, ClinicHoliday


class OperatingHoursSerializer(serializers.ModelSerializer):
    """One day of the weekly template"""

    day_name = serializers.CharField(source='get_day_of_week_display', read_only=True)

    class Meta:
        model = ClinicOperatingHours
        fields = ['day_of_week', 'day_name', 'is_open', 'open_time', 'close_time']

    def validate_day_of_week(self, value):
        if value < 0 or value > 6:
            raise serializers.ValidationError('day_of_week must be between 0 (Sunday) and 6 (Saturday)')
        return value

    def validate(self, data):
        if data.get('is_open', True):
            open_time = data.get('open_time')
            close_time = data.get('close_time')
            if not open_time or not close_time:
                raise serializers.ValidationError('Open days require open_time and close_time')
            if close_time <= open_time:
                raise serializers.ValidationError({'close_time': 'Close time must be after open time'})
        else:
            data['open_time'] = None
            data['close_time'] = None
        return data


class ClinicHolidaySerializer(serializers.ModelSerializer):
    reason = serializers.CharField(max_length=200, required=False, allow_blank=True)

    class Meta:
        model = ClinicHoliday
        fields = ['id', 'date', 'reason', 'created_at']
        read_only_fields = ['id', 'created_at']

    def validate_reason(self, value):
        return value or 'Holiday'


class ClinicListSerializer(serializers.ModelSerializer):
    """Serializer for listing clinics (lightweight)"""

    class Meta:
        model = Clinic
        fields = ['id', 'name', 'code', 'city', 'phone', 'is_active']


class ClinicDetailSerializer(serializers.ModelSerializer):
    """Clinic with weekly template and holidays"""

    operating_hours = OperatingHoursSerializer(many=True, read_only=True)
    holidays = ClinicHolidaySerializer(many=True, read_only=True)

    class Meta:
        model = Clinic
        fields = '__all__'


class ClinicCreateUpdateSerializer(serializers.ModelSerializer):
    """Create/update clinic; operating hours only on create"""

    operating_hours = OperatingHoursSerializer(many=True, required=False, write_only=True)

    class Meta:
        model = Clinic
        fields = [
            'id', 'name', 'code', 'street', 'area', 'city', 'state', 'pincode',
            'phone', 'email', 'slot_duration', 'max_daily_appointments',
            'opd_fee', 'emergency_opd_fee', 'is_active', 'operating_hours'
        ]
        read_only_fields = ['id']
        extra_kwargs = {
            # Uniqueness is checked case-insensitively in validate_code
            'code': {'validators': []},
        }

    def validate_code(self, value):
        code = value.strip().upper()
        if self.instance is not None:
            if code != self.instance.code:
                raise serializers.ValidationError('Clinic code cannot be changed')
            return code
        if Clinic.objects.filter(code=code).exists():
            raise Conflict('Clinic with this code already exists')
        return code

    def validate_operating_hours(self, value):
        days = [entry['day_of_week'] for entry in value]
        if len(days) != len(set(days)):
            raise serializers.ValidationError('Each day_of_week may appear only once')
        return value

    @transaction.atomic
    def create(self, validated_data):
        hours = validated_data.pop('operating_hours', None)
        clinic = Clinic.objects.create(**validated_data)

        if hours:
            ClinicOperatingHours.objects.bulk_create([
                ClinicOperatingHours(clinic=clinic, **entry) for entry in hours
            ])
        else:
            clinic.create_default_hours()
        return clinic

    def update(self, instance, validated_data):
        validated_data.pop('operating_hours', None)
        validated_data.pop('code', None)
        return super().update(instance, validated_data)


class OperatingHoursUpdateSerializer(serializers.Serializer):
    """Full replacement of the weekly template"""
    operating_hours = OperatingHoursSerializer(many=True)

    def validate_operating_hours(self, value):
        if not value:
            raise serializers.ValidationError('operating_hours must be a non-empty list')
        days = [entry['day_of_week'] for entry in value]
        if len(days) != len(set(days)):
            raise serializers.ValidationError('Each day_of_week may appear only once')
        return value


class AppointmentSettingsSerializer(serializers.ModelSerializer):
    """Partial update of the booking configuration"""

    class Meta:
        model = Clinic
        fields = ['slot_duration', 'max_daily_appointments', 'opd_fee', 'emergency_opd_fee']
