from decimal import Decimal

from rest_framework import serializers

from common.exceptions import InvalidInput, NotFound
from .models import Payment

OFFLINE_MODES = ['cash', 'card', 'upi', 'netbanking', 'other']


class PaymentListSerializer(serializers.ModelSerializer):
    """Serializer for listing payments (lightweight)"""
    patient_name = serializers.CharField(source='patient.name', read_only=True)
    invoice_number = serializers.CharField(source='invoice.invoice_number', read_only=True, default=None)

    class Meta:
        model = Payment
        fields = [
            'id', 'payment_number', 'patient', 'patient_name', 'clinic', 'invoice',
            'invoice_number', 'amount', 'payment_mode', 'payment_type', 'status',
            'paid_at', 'created_at',
        ]


class PaymentDetailSerializer(serializers.ModelSerializer):
    patient_name = serializers.CharField(source='patient.name', read_only=True)
    clinic_name = serializers.CharField(source='clinic.name', read_only=True)
    invoice_number = serializers.CharField(source='invoice.invoice_number', read_only=True, default=None)
    appointment_number = serializers.CharField(
        source='appointment.appointment_number', read_only=True, default=None
    )

    class Meta:
        model = Payment
        exclude = ['razorpay_signature']


class _PaymentTargetMixin:
    """Resolves patient/clinic/invoice/appointment ids to rows."""

    def resolve_targets(self, attrs):
        from apps.appointments.models import Appointment
        from apps.billing.models import Invoice
        from apps.clinics.models import Clinic
        from apps.patients.models import Patient

        invoice_id = attrs.pop('invoice_id', None)
        if invoice_id:
            invoice = Invoice.objects.select_related('patient', 'clinic').filter(pk=invoice_id).first()
            if invoice is None:
                raise NotFound('Invoice not found')
            attrs['invoice'] = invoice

        appointment_id = attrs.pop('appointment_id', None)
        if appointment_id:
            appointment = Appointment.objects.filter(pk=appointment_id).first()
            if appointment is None:
                raise NotFound('Appointment not found')
            attrs['appointment'] = appointment

        patient_id = attrs.pop('patient_id', None)
        if patient_id:
            patient = Patient.objects.filter(pk=patient_id).first()
            if patient is None:
                raise NotFound('Patient not found')
            attrs['patient'] = patient
        elif attrs.get('invoice'):
            attrs['patient'] = attrs['invoice'].patient
        else:
            raise InvalidInput('patient_id is required')

        clinic_id = attrs.pop('clinic_id', None)
        if clinic_id:
            clinic = Clinic.objects.filter(pk=clinic_id).first()
            if clinic is None:
                raise NotFound('Clinic not found')
            attrs['clinic'] = clinic
        elif attrs.get('invoice'):
            attrs['clinic'] = attrs['invoice'].clinic
        else:
            raise InvalidInput('clinic_id is required')

        return attrs


class OfflinePaymentSerializer(_PaymentTargetMixin, serializers.Serializer):
    """Cash/card/UPI/netbanking payment recorded at the desk"""
    patient_id = serializers.IntegerField(required=False)
    clinic_id = serializers.IntegerField(required=False)
    invoice_id = serializers.IntegerField(required=False, allow_null=True)
    appointment_id = serializers.IntegerField(required=False, allow_null=True)
    amount = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=Decimal('1.00'))
    payment_mode = serializers.ChoiceField(choices=OFFLINE_MODES)
    payment_type = serializers.ChoiceField(
        choices=['invoice_payment', 'advance', 'membership', 'opd_fee'],
        required=False
    )
    reference_number = serializers.CharField(max_length=100, required=False, allow_blank=True)
    notes = serializers.CharField(required=False, allow_blank=True)

    def validate(self, attrs):
        return self.resolve_targets(attrs)


class MembershipPaymentSerializer(_PaymentTargetMixin, serializers.Serializer):
    patient_id = serializers.IntegerField()
    clinic_id = serializers.IntegerField()
    amount = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=Decimal('1.00'))
    payment_mode = serializers.ChoiceField(choices=OFFLINE_MODES)
    reference_number = serializers.CharField(max_length=100, required=False, allow_blank=True)
    notes = serializers.CharField(required=False, allow_blank=True)

    def validate(self, attrs):
        return self.resolve_targets(attrs)


class OPDFeePaymentSerializer(serializers.Serializer):
    appointment_id = serializers.IntegerField()
    amount = serializers.DecimalField(
        max_digits=10, decimal_places=2, required=False, min_value=Decimal('1.00')
    )
    payment_mode = serializers.ChoiceField(choices=OFFLINE_MODES, default='cash')
    reference_number = serializers.CharField(max_length=100, required=False, allow_blank=True)
    notes = serializers.CharField(required=False, allow_blank=True)

    def validate(self, attrs):
        from apps.appointments.models import Appointment

        appointment_id = attrs.pop('appointment_id')
        appointment = Appointment.objects.select_related('patient', 'clinic').filter(pk=appointment_id).first()
        if appointment is None:
            raise NotFound('Appointment not found')
        attrs['appointment'] = appointment
        return attrs


class RazorpayOrderCreateSerializer(_PaymentTargetMixin, serializers.Serializer):
    patient_id = serializers.IntegerField(required=False)
    clinic_id = serializers.IntegerField(required=False)
    invoice_id = serializers.IntegerField(required=False, allow_null=True)
    appointment_id = serializers.IntegerField(required=False, allow_null=True)
    amount = serializers.DecimalField(
        max_digits=10, decimal_places=2, required=False, min_value=Decimal('1.00')
    )
    payment_type = serializers.ChoiceField(
        choices=['invoice_payment', 'advance', 'membership', 'opd_fee'],
        required=False
    )
    notes = serializers.CharField(required=False, allow_blank=True)

    def validate(self, attrs):
        attrs = self.resolve_targets(attrs)
        if attrs.get('amount') is None:
            invoice = attrs.get('invoice')
            if invoice is None:
                raise InvalidInput('amount is required when no invoice is given')
            attrs['amount'] = invoice.balance_due
        if attrs['amount'] < 1:
            raise InvalidInput('Amount must be at least 1')
        return attrs


class RazorpayPaymentVerifySerializer(serializers.Serializer):
    razorpay_order_id = serializers.CharField(max_length=100)
    razorpay_payment_id = serializers.CharField(max_length=100)
    razorpay_signature = serializers.CharField(max_length=255)


class RefundSerializer(serializers.Serializer):
    amount = serializers.DecimalField(
        max_digits=10, decimal_places=2, required=False, min_value=Decimal('0.01')
    )
    reason = serializers.CharField(required=False, allow_blank=True)
