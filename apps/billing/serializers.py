from decimal import Decimal

from django.db import transaction
from django.utils import timezone
from rest_framework import serializers

from common.exceptions import NotFound
from common.numbering import next_invoice_number
from .models import Invoice, InvoiceItem, ItemReference


class InvoiceItemSerializer(serializers.ModelSerializer):
    """Line item; amount, tax_amount and total are computed server side"""
    reference = serializers.SerializerMethodField()

    class Meta:
        model = InvoiceItem
        fields = [
            'id', 'item_type', 'reference_kind', 'reference_id', 'reference',
            'description', 'quantity', 'unit_price', 'discount_percentage',
            'discount_amount', 'tax_rate', 'amount', 'tax_amount', 'total', 'position',
        ]
        read_only_fields = ['id', 'amount', 'tax_amount', 'total', 'position']

    def get_reference(self, obj):
        reference = obj.reference
        return reference._asdict() if reference else None


class InvoiceItemWriteSerializer(serializers.Serializer):
    item_type = serializers.ChoiceField(choices=InvoiceItem.ITEM_TYPE_CHOICES, default='other')
    reference_kind = serializers.ChoiceField(
        choices=InvoiceItem.REFERENCE_KIND_CHOICES,
        required=False,
        allow_blank=True
    )
    reference_id = serializers.IntegerField(required=False, allow_null=True, min_value=1)
    description = serializers.CharField(max_length=255)
    quantity = serializers.IntegerField(min_value=1, default=1)
    unit_price = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=Decimal('0.00'))
    discount_percentage = serializers.DecimalField(
        max_digits=5, decimal_places=2, required=False,
        min_value=Decimal('0.00'), max_value=Decimal('100.00')
    )
    discount_amount = serializers.DecimalField(
        max_digits=10, decimal_places=2, required=False, min_value=Decimal('0.00')
    )
    tax_rate = serializers.DecimalField(
        max_digits=5, decimal_places=2, default=Decimal('0.00'),
        min_value=Decimal('0.00'), max_value=Decimal('100.00')
    )

    def validate(self, attrs):
        kind = attrs.pop('reference_kind', '') or ''
        ref_id = attrs.pop('reference_id', None)
        if bool(kind) != (ref_id is not None):
            raise serializers.ValidationError(
                'reference_kind and reference_id must be given together'
            )
        attrs['reference'] = ItemReference(kind, ref_id) if kind else None
        return attrs


class InvoiceListSerializer(serializers.ModelSerializer):
    """Serializer for listing invoices (lightweight)"""
    patient_name = serializers.CharField(source='patient.name', read_only=True)
    clinic_code = serializers.CharField(source='clinic.code', read_only=True)

    class Meta:
        model = Invoice
        fields = [
            'id', 'invoice_number', 'patient', 'patient_name', 'clinic', 'clinic_code',
            'invoice_date', 'due_date', 'grand_total', 'amount_paid', 'balance_due',
            'status', 'payment_status', 'created_at',
        ]


class InvoiceDetailSerializer(serializers.ModelSerializer):
    """Invoice with items and all derived totals"""
    items = InvoiceItemSerializer(many=True, read_only=True)
    patient_name = serializers.CharField(source='patient.name', read_only=True)
    patient_phone = serializers.CharField(source='patient.phone', read_only=True)
    clinic_name = serializers.CharField(source='clinic.name', read_only=True)
    appointment_number = serializers.CharField(
        source='appointment.appointment_number', read_only=True, default=None
    )

    class Meta:
        model = Invoice
        fields = '__all__'


class InvoiceCreateSerializer(serializers.Serializer):
    patient_id = serializers.IntegerField()
    clinic_id = serializers.IntegerField()
    appointment_id = serializers.IntegerField(required=False, allow_null=True)
    items = InvoiceItemWriteSerializer(many=True, required=False)
    discount_percentage = serializers.DecimalField(
        max_digits=5, decimal_places=2, required=False,
        min_value=Decimal('0.00'), max_value=Decimal('100.00')
    )
    discount_amount = serializers.DecimalField(
        max_digits=10, decimal_places=2, required=False, min_value=Decimal('0.00')
    )
    discount_reason = serializers.CharField(max_length=255, required=False, allow_blank=True)
    due_date = serializers.DateField(required=False)
    notes = serializers.CharField(required=False, allow_blank=True)
    terms = serializers.CharField(required=False, allow_blank=True)

    def validate(self, attrs):
        from apps.appointments.models import Appointment
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

        appointment_id = attrs.pop('appointment_id', None)
        if appointment_id:
            try:
                attrs['appointment'] = Appointment.objects.get(id=appointment_id)
            except Appointment.DoesNotExist:
                raise NotFound('Appointment not found')

        due_date = attrs.get('due_date')
        if due_date and due_date < timezone.localdate():
            raise serializers.ValidationError({'due_date': 'Due date cannot be before the invoice date'})
        return attrs

    @transaction.atomic
    def create(self, validated_data):
        request = self.context.get('request')
        items = validated_data.pop('items', [])

        invoice = Invoice(**validated_data)
        invoice.invoice_number = next_invoice_number()
        if request and hasattr(request, 'user_id'):
            invoice.created_by_id = str(request.user_id)
        invoice.save()

        for item_data in items:
            invoice.add_item(item_data, recalculate=False)
        return invoice.recalculate()


class InvoiceUpdateSerializer(serializers.Serializer):
    """Draft-only update; `items` replaces the full item list"""
    items = InvoiceItemWriteSerializer(many=True, required=False)
    discount_percentage = serializers.DecimalField(
        max_digits=5, decimal_places=2, required=False,
        min_value=Decimal('0.00'), max_value=Decimal('100.00')
    )
    discount_amount = serializers.DecimalField(
        max_digits=10, decimal_places=2, required=False, min_value=Decimal('0.00')
    )
    discount_reason = serializers.CharField(max_length=255, required=False, allow_blank=True)
    due_date = serializers.DateField(required=False)
    notes = serializers.CharField(required=False, allow_blank=True)
    terms = serializers.CharField(required=False, allow_blank=True)

    def validate_due_date(self, value):
        if self.instance is not None and value < self.instance.invoice_date:
            raise serializers.ValidationError('Due date cannot be before the invoice date')
        return value

    @transaction.atomic
    def update(self, instance, validated_data):
        instance.require_draft()
        items = validated_data.pop('items', None)

        for attr, value in validated_data.items():
            setattr(instance, attr, value)
        instance.save()

        if items is not None:
            instance.replace_items(items)
        return instance.recalculate()


class InvoiceCancelSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True)


class InvoicePaymentSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=Decimal('1.00'))
    payment_mode = serializers.ChoiceField(
        choices=['cash', 'card', 'upi', 'netbanking', 'other'],
        default='cash'
    )
    reference_number = serializers.CharField(max_length=100, required=False, allow_blank=True)
    notes = serializers.CharField(required=False, allow_blank=True)
