import logging

from django.db import transaction
from rest_framework import serializers

from common.exceptions import InvalidOperation, NotFound
from common.numbering import next_appointment_number, next_token_number
from .models import Appointment, AppointmentStatusHistory
from .slots import SlotAllocator

logger = logging.getLogger(__name__)


class AppointmentStatusHistorySerializer(serializers.ModelSerializer):
    class Meta:
        model = AppointmentStatusHistory
        fields = ['status', 'reason', 'changed_by_id', 'changed_at']


class AppointmentListSerializer(serializers.ModelSerializer):
    """List view serializer for appointments"""
    patient_name = serializers.CharField(source='patient.name', read_only=True)
    patient_phone = serializers.CharField(source='patient.phone', read_only=True)
    clinic_code = serializers.CharField(source='clinic.code', read_only=True)
    status_display = serializers.CharField(source='get_status_display', read_only=True)

    class Meta:
        model = Appointment
        fields = [
            'id', 'appointment_number', 'patient', 'patient_name', 'patient_phone',
            'clinic', 'clinic_code', 'date', 'time_slot', 'token_number',
            'type', 'status', 'status_display', 'source', 'opd_fee', 'opd_fee_paid',
            'created_at',
        ]


class AppointmentDetailSerializer(serializers.ModelSerializer):
    """Detail view serializer for appointments"""
    patient_name = serializers.CharField(source='patient.name', read_only=True)
    patient_phone = serializers.CharField(source='patient.phone', read_only=True)
    clinic_name = serializers.CharField(source='clinic.name', read_only=True)
    status_display = serializers.CharField(source='get_status_display', read_only=True)
    status_history = AppointmentStatusHistorySerializer(many=True, read_only=True)

    class Meta:
        model = Appointment
        fields = '__all__'


class AppointmentCreateSerializer(serializers.ModelSerializer):
    """Booking serializer: validates the slot and assigns number and token"""
    patient_id = serializers.IntegerField(write_only=True)
    clinic_id = serializers.IntegerField(write_only=True)

    class Meta:
        model = Appointment
        fields = [
            'patient_id', 'clinic_id', 'date', 'time_slot', 'type',
            'source', 'reason', 'notes',
        ]

    def validate_reason(self, value):
        if not value or not value.strip():
            raise serializers.ValidationError('Reason is required')
        return value.strip()

    def validate(self, attrs):
        from apps.clinics.models import Clinic
        from apps.patients.models import Patient

        try:
            attrs['patient'] = Patient.objects.get(id=attrs.pop('patient_id'))
        except Patient.DoesNotExist:
            raise NotFound('Patient not found')

        try:
            attrs['clinic'] = Clinic.objects.get(id=attrs.pop('clinic_id'))
        except Clinic.DoesNotExist:
            raise NotFound('Clinic not found')

        return attrs

    @transaction.atomic
    def create(self, validated_data):
        request = self.context.get('request')
        clinic = validated_data['clinic']

        allocator = SlotAllocator(clinic)
        allocator.check_bookable(validated_data['date'], validated_data['time_slot'])

        appointment = Appointment(**validated_data)
        appointment.appointment_number = next_appointment_number(clinic)
        appointment.token_number = next_token_number(clinic, appointment.date)
        appointment.opd_fee = clinic.fee_for(appointment.type)
        appointment.status = 'scheduled'
        if request and hasattr(request, 'user_id'):
            appointment.created_by_id = str(request.user_id)

        allocator.commit(appointment)
        AppointmentStatusHistory.objects.create(
            appointment=appointment,
            status='scheduled',
            reason='Appointment booked',
            changed_by_id=appointment.created_by_id,
        )

        logger.info(
            f"Appointment booked: {appointment.appointment_number} for patient {appointment.patient_id} "
            f"at {clinic.code} {appointment.date} {appointment.time_slot} (token {appointment.token_number})"
        )
        return appointment


class AppointmentUpdateSerializer(serializers.ModelSerializer):
    """Update details; moving date/slot re-runs the slot checks"""

    class Meta:
        model = Appointment
        fields = ['date', 'time_slot', 'type', 'source', 'reason', 'notes']

    def validate_reason(self, value):
        if not value or not value.strip():
            raise serializers.ValidationError('Reason is required')
        return value.strip()

    @transaction.atomic
    def update(self, instance, validated_data):
        instance._lock()
        if instance.is_terminal:
            raise InvalidOperation(f"Cannot update a {instance.status} appointment")

        new_date = validated_data.get('date', instance.date)
        new_slot = validated_data.get('time_slot', instance.time_slot)
        moved = new_date != instance.date or new_slot != instance.time_slot

        allocator = SlotAllocator(instance.clinic)
        if moved:
            allocator.check_bookable(new_date, new_slot, exclude_pk=instance.pk)
            if new_date != instance.date:
                instance.token_number = next_token_number(instance.clinic, new_date, exclude_pk=instance.pk)

        for attr, value in validated_data.items():
            setattr(instance, attr, value)
        if 'type' in validated_data and not instance.opd_fee_paid:
            instance.opd_fee = instance.clinic.fee_for(instance.type)

        return allocator.commit(instance)


class AppointmentStatusUpdateSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Appointment.STATUS_CHOICES)
    reason = serializers.CharField(required=False, allow_blank=True)


class AppointmentCompleteSerializer(serializers.Serializer):
    notes = serializers.CharField(required=False, allow_blank=True)
    prescriptions = serializers.CharField(required=False, allow_blank=True)


class AppointmentCancelSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True)


class AppointmentRescheduleSerializer(serializers.Serializer):
    date = serializers.DateField()
    time_slot = serializers.RegexField(r'^([01]\d|2[0-3]):[0-5]\d$')
    reason = serializers.CharField(required=False, allow_blank=True)

    def validate_date(self, value):
        from apps.clinics.calendar import clinic_today

        if value < clinic_today():
            raise serializers.ValidationError('Cannot reschedule to a past date')
        return value
