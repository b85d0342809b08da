from django.db import transaction
from django.db.models import Q

from rest_framework import viewsets, status, filters
from rest_framework.decorators import action
from rest_framework.response import Response
from django_filters.rest_framework import DjangoFilterBackend

from drf_spectacular.utils import (
    extend_schema,
    extend_schema_view,
    OpenApiParameter,
)

from apps.clinics.calendar import clinic_today, parse_date
from apps.patients.models import Patient
from common.drf_auth import ClinicPermission
from common.exceptions import NotFound
from .models import Invoice, past_due
from .serializers import (
    InvoiceListSerializer,
    InvoiceDetailSerializer,
    InvoiceCreateSerializer,
    InvoiceUpdateSerializer,
    InvoiceItemWriteSerializer,
    InvoiceCancelSerializer,
    InvoicePaymentSerializer,
)


@extend_schema_view(
    list=extend_schema(
        summary="List Invoices",
        description="Get paginated list of invoices with filtering",
        parameters=[
            OpenApiParameter(name='patient', type=int, description='Filter by patient ID'),
            OpenApiParameter(name='clinic', type=int, description='Filter by clinic ID'),
            OpenApiParameter(name='status', type=str, description='Filter by status'),
            OpenApiParameter(name='payment_status', type=str, description='unpaid, partial or paid'),
            OpenApiParameter(name='date_from', type=str, description='Invoice date from (YYYY-MM-DD)'),
            OpenApiParameter(name='date_to', type=str, description='Invoice date to (YYYY-MM-DD)'),
        ],
        tags=['Billing']
    ),
    retrieve=extend_schema(summary="Get Invoice Details", tags=['Billing']),
    create=extend_schema(
        summary="Create Invoice",
        description="Create a draft invoice. Members get their discount on items without an explicit discount.",
        request=InvoiceCreateSerializer,
        tags=['Billing']
    ),
    update=extend_schema(summary="Update Draft Invoice", request=InvoiceUpdateSerializer, tags=['Billing']),
    partial_update=extend_schema(summary="Partial Update Draft Invoice", request=InvoiceUpdateSerializer, tags=['Billing']),
)
class InvoiceViewSet(viewsets.ModelViewSet):
    """
    Invoice Management

    Draft editing, issue/cancel and the payment view of an invoice.
    """
    queryset = Invoice.objects.select_related('patient', 'clinic', 'appointment')
    permission_classes = [ClinicPermission]
    clinic_module = 'billing'
    http_method_names = ['get', 'post', 'put', 'patch', 'delete', 'head', 'options']

    action_permission_map = {
        'list': 'view',
        'retrieve': 'view',
        'create': 'create',
        'update': 'edit',
        'partial_update': 'edit',
        'add_item': 'edit',
        'remove_item': 'edit',
        'issue': 'edit',
        'cancel': 'cancel',
        'record_payment': 'collect_payment',
        'pending': 'view',
        'overdue': 'view',
        'by_number': 'view',
    }

    filter_backends = [DjangoFilterBackend, filters.SearchFilter, filters.OrderingFilter]
    filterset_fields = ['patient', 'clinic', 'appointment', 'status', 'payment_status']
    search_fields = ['invoice_number', 'patient__name', 'patient__phone']
    ordering_fields = ['invoice_date', 'due_date', 'grand_total', 'created_at']
    ordering = ['-created_at']

    def get_serializer_class(self):
        """Return appropriate serializer based on action"""
        if self.action == 'list':
            return InvoiceListSerializer
        elif self.action == 'create':
            return InvoiceCreateSerializer
        elif self.action in ['update', 'partial_update']:
            return InvoiceUpdateSerializer
        return InvoiceDetailSerializer

    def get_queryset(self):
        queryset = super().get_queryset()

        if self.action in ['retrieve', 'by_number']:
            queryset = queryset.prefetch_related('items')

        date_from = self.request.query_params.get('date_from')
        date_to = self.request.query_params.get('date_to')
        if date_from:
            queryset = queryset.filter(invoice_date__gte=parse_date(date_from, 'date_from'))
        if date_to:
            queryset = queryset.filter(invoice_date__lte=parse_date(date_to, 'date_to'))

        return queryset

    def _actor(self, request):
        return str(getattr(request, 'user_id', '') or '')

    def _locked(self):
        """The routed invoice re-read under a row lock (call inside atomic)."""
        invoice = self.get_object()
        return Invoice.objects.select_for_update().select_related('patient').get(pk=invoice.pk)

    def _detail(self, invoice, message, code=status.HTTP_200_OK):
        invoice = self.get_queryset().prefetch_related('items').get(pk=invoice.pk)
        return Response({
            'success': True,
            'message': message,
            'data': InvoiceDetailSerializer(invoice).data
        }, status=code)

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        invoice = serializer.save()
        return self._detail(invoice, 'Invoice created successfully', status.HTTP_201_CREATED)

    def update(self, request, *args, **kwargs):
        partial = kwargs.pop('partial', False)
        with transaction.atomic():
            invoice = self._locked()
            serializer = self.get_serializer(invoice, data=request.data, partial=partial)
            serializer.is_valid(raise_exception=True)
            invoice = serializer.save()
        return self._detail(invoice, 'Invoice updated successfully')

    def destroy(self, request, *args, **kwargs):
        """Invoices are never deleted; drafts are cancelled instead"""
        with transaction.atomic():
            invoice = self._locked()
            invoice.cancel(actor_id=self._actor(request), reason='Deleted')
        return self._detail(invoice, 'Invoice cancelled successfully')

    @extend_schema(summary="Add Line Item", request=InvoiceItemWriteSerializer, tags=['Billing'])
    @action(detail=True, methods=['post'], url_path='items')
    def add_item(self, request, pk=None):
        serializer = InvoiceItemWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        with transaction.atomic():
            invoice = self._locked()
            invoice.add_item(serializer.validated_data)
        return self._detail(invoice, 'Item added successfully', status.HTTP_201_CREATED)

    @extend_schema(summary="Remove Line Item", tags=['Billing'])
    @action(detail=True, methods=['delete'], url_path=r'items/(?P<item_id>[0-9]+)')
    def remove_item(self, request, pk=None, item_id=None):
        with transaction.atomic():
            invoice = self._locked()
            invoice.remove_item(item_id)
        return self._detail(invoice, 'Item removed successfully')

    @extend_schema(summary="Issue Invoice", description="draft -> sent; requires at least one item", request=None, tags=['Billing'])
    @action(detail=True, methods=['post'])
    def issue(self, request, pk=None):
        with transaction.atomic():
            invoice = self._locked()
            invoice.issue()
        return self._detail(invoice, 'Invoice issued successfully')

    @extend_schema(
        summary="Cancel Invoice",
        description="Only invoices without recorded payments can be cancelled",
        request=InvoiceCancelSerializer,
        tags=['Billing']
    )
    @action(detail=True, methods=['post'])
    def cancel(self, request, pk=None):
        serializer = InvoiceCancelSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        with transaction.atomic():
            invoice = self._locked()
            invoice.cancel(
                actor_id=self._actor(request),
                reason=serializer.validated_data.get('reason') or None,
            )
        return self._detail(invoice, 'Invoice cancelled successfully')

    @extend_schema(
        summary="Record Payment",
        description="Record an offline payment against this invoice",
        request=InvoicePaymentSerializer,
        tags=['Billing']
    )
    @action(detail=True, methods=['post'], url_path='payment')
    def record_payment(self, request, pk=None):
        from apps.payments.reconciler import record_offline_payment

        serializer = InvoicePaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        invoice = self.get_object()

        payment = record_offline_payment(
            patient=invoice.patient,
            clinic=invoice.clinic,
            invoice=invoice,
            amount=serializer.validated_data['amount'],
            payment_mode=serializer.validated_data['payment_mode'],
            reference_number=serializer.validated_data.get('reference_number', ''),
            notes=serializer.validated_data.get('notes', ''),
            received_by_id=self._actor(request),
        )
        response = self._detail(invoice, 'Payment recorded successfully')
        response.data['payment_number'] = payment.payment_number
        return response

    @extend_schema(
        summary="Pending Invoices for Patient",
        description="Unpaid or partially paid, non-cancelled invoices",
        tags=['Billing']
    )
    @action(detail=False, methods=['get'], url_path=r'pending/(?P<patient_id>[0-9]+)')
    def pending(self, request, patient_id=None):
        if not Patient.objects.filter(pk=patient_id).exists():
            raise NotFound('Patient not found')

        queryset = self.get_queryset().filter(
            patient_id=patient_id,
            payment_status__in=['unpaid', 'partial'],
        ).exclude(status='cancelled').order_by('-created_at')

        return Response({
            'success': True,
            'count': queryset.count(),
            'data': InvoiceListSerializer(queryset, many=True).data
        })

    @extend_schema(
        summary="Overdue Invoices",
        description="Invoices flagged overdue plus open invoices past their due date "
                    "that the nightly sweep has not reached yet",
        tags=['Billing']
    )
    @action(detail=False, methods=['get'])
    def overdue(self, request):
        queryset = self.get_queryset().filter(
            Q(status='overdue') | past_due(clinic_today())
        ).order_by('due_date')

        return Response({
            'success': True,
            'count': queryset.count(),
            'data': InvoiceListSerializer(queryset, many=True).data
        })

    @extend_schema(summary="Get Invoice by Number", tags=['Billing'])
    @action(detail=False, methods=['get'], url_path=r'number/(?P<invoice_number>[^/]+)')
    def by_number(self, request, invoice_number=None):
        invoice = self.get_queryset().filter(invoice_number=invoice_number).first()
        if invoice is None:
            raise NotFound('Invoice not found')

        return Response({
            'success': True,
            'data': InvoiceDetailSerializer(invoice).data
        })
