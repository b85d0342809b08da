import json
import logging
from decimal import Decimal

from django.db.models import Count, Q, Sum
from django.http import HttpResponse
from django.utils.decorators import method_decorator
from django.views.decorators.csrf import csrf_exempt

from rest_framework import viewsets, status, filters
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.views import APIView
from django_filters.rest_framework import DjangoFilterBackend

from drf_spectacular.utils import (
    extend_schema,
    extend_schema_view,
    OpenApiParameter,
    OpenApiResponse,
)

from apps.clinics.calendar import parse_date
from apps.patients.models import Patient
from common.drf_auth import ClinicPermission
from common.exceptions import NotFound
from . import reconciler
from .models import Payment
from .razorpay_utils import RazorpayClient
from .serializers import (
    PaymentListSerializer,
    PaymentDetailSerializer,
    OfflinePaymentSerializer,
    MembershipPaymentSerializer,
    OPDFeePaymentSerializer,
    RazorpayOrderCreateSerializer,
    RazorpayPaymentVerifySerializer,
    RefundSerializer,
)

logger = logging.getLogger(__name__)


@extend_schema_view(
    list=extend_schema(
        summary="List Payments",
        description="Get paginated list of payments with filtering",
        parameters=[
            OpenApiParameter(name='patient', type=int, description='Filter by patient ID'),
            OpenApiParameter(name='clinic', type=int, description='Filter by clinic ID'),
            OpenApiParameter(name='invoice', type=int, description='Filter by invoice ID'),
            OpenApiParameter(name='payment_mode', type=str, description='cash, card, upi, razorpay, netbanking, other'),
            OpenApiParameter(name='status', type=str, description='Filter by status'),
            OpenApiParameter(name='date_from', type=str, description='Created from (YYYY-MM-DD)'),
            OpenApiParameter(name='date_to', type=str, description='Created to (YYYY-MM-DD)'),
        ],
        tags=['Payments']
    ),
    retrieve=extend_schema(summary="Get Payment Details", tags=['Payments']),
    create=extend_schema(
        summary="Record Offline Payment",
        description="Cash/card/UPI/netbanking payment, applied to the invoice immediately",
        request=OfflinePaymentSerializer,
        tags=['Payments']
    ),
)
class PaymentViewSet(viewsets.ModelViewSet):
    """
    Payment Management

    Offline collection, the Razorpay checkout flow, refunds and
    per-patient summaries.
    """
    queryset = Payment.objects.select_related('patient', 'clinic', 'invoice', 'appointment')
    permission_classes = [ClinicPermission]
    clinic_module = 'payments'
    http_method_names = ['get', 'post', 'head', 'options']

    action_permission_map = {
        'list': 'view',
        'retrieve': 'view',
        'create': 'create',
        'opd_fee': 'create',
        'membership': 'create',
        'razorpay_create_order': 'create',
        'razorpay_verify_payment': 'create',
        'refund': 'refund',
        'patient_summary': 'view',
    }

    filter_backends = [DjangoFilterBackend, filters.SearchFilter, filters.OrderingFilter]
    filterset_fields = ['patient', 'clinic', 'invoice', 'appointment', 'payment_mode', 'payment_type', 'status']
    search_fields = ['payment_number', 'razorpay_order_id', 'razorpay_payment_id', 'patient__name', 'patient__phone']
    ordering_fields = ['amount', 'paid_at', 'created_at']
    ordering = ['-created_at']

    def get_serializer_class(self):
        """Return appropriate serializer based on action"""
        if self.action == 'list':
            return PaymentListSerializer
        elif self.action == 'create':
            return OfflinePaymentSerializer
        return PaymentDetailSerializer

    def get_queryset(self):
        queryset = super().get_queryset()

        date_from = self.request.query_params.get('date_from')
        date_to = self.request.query_params.get('date_to')
        if date_from:
            queryset = queryset.filter(created_at__date__gte=parse_date(date_from, 'date_from'))
        if date_to:
            queryset = queryset.filter(created_at__date__lte=parse_date(date_to, 'date_to'))

        return queryset

    def _actor(self, request):
        return str(getattr(request, 'user_id', '') or '')

    def _detail(self, payment, message, code=status.HTTP_200_OK, extra=None):
        payment = self.get_queryset().get(pk=payment.pk)
        data = {
            'success': True,
            'message': message,
            'data': PaymentDetailSerializer(payment).data
        }
        if extra:
            data.update(extra)
        return Response(data, status=code)

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        payment = reconciler.record_offline_payment(
            patient=data['patient'],
            clinic=data['clinic'],
            invoice=data.get('invoice'),
            appointment=data.get('appointment'),
            amount=data['amount'],
            payment_mode=data['payment_mode'],
            payment_type=data.get('payment_type'),
            reference_number=data.get('reference_number', ''),
            notes=data.get('notes', ''),
            received_by_id=self._actor(request),
        )
        return self._detail(payment, 'Payment recorded successfully', status.HTTP_201_CREATED)

    @extend_schema(
        summary="Record OPD Fee Payment",
        description="Collect the OPD fee for an appointment (defaults to the appointment's fee)",
        request=OPDFeePaymentSerializer,
        tags=['Payments']
    )
    @action(detail=False, methods=['post'], url_path='opd-fee')
    def opd_fee(self, request):
        serializer = OPDFeePaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        payment = reconciler.record_opd_fee_payment(
            appointment=data['appointment'],
            payment_mode=data['payment_mode'],
            amount=data.get('amount'),
            reference_number=data.get('reference_number', ''),
            notes=data.get('notes', ''),
            received_by_id=self._actor(request),
        )
        return self._detail(payment, 'OPD fee recorded successfully', status.HTTP_201_CREATED)

    @extend_schema(
        summary="Record Membership Payment",
        request=MembershipPaymentSerializer,
        tags=['Payments']
    )
    @action(detail=False, methods=['post'])
    def membership(self, request):
        serializer = MembershipPaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        payment = reconciler.record_offline_payment(
            patient=data['patient'],
            clinic=data['clinic'],
            amount=data['amount'],
            payment_mode=data['payment_mode'],
            payment_type='membership',
            reference_number=data.get('reference_number', ''),
            notes=data.get('notes', ''),
            received_by_id=self._actor(request),
        )
        return self._detail(payment, 'Membership payment recorded successfully', status.HTTP_201_CREATED)

    @extend_schema(
        summary="Create Razorpay Order",
        description="Open a Razorpay order and a pending payment; returns the order id for checkout",
        request=RazorpayOrderCreateSerializer,
        responses={201: OpenApiResponse(description="Order created with razorpay_order_id")},
        tags=['Payments - Razorpay']
    )
    @action(detail=False, methods=['post'], url_path='razorpay/create')
    def razorpay_create_order(self, request):
        serializer = RazorpayOrderCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        client = RazorpayClient()
        payment, order = reconciler.create_gateway_order(
            patient=data['patient'],
            clinic=data['clinic'],
            invoice=data.get('invoice'),
            appointment=data.get('appointment'),
            amount=data['amount'],
            payment_type=data.get('payment_type'),
            notes=data.get('notes', ''),
            received_by_id=self._actor(request),
            client=client,
        )

        return Response({
            'success': True,
            'message': 'Order created successfully',
            'data': {
                'payment_id': payment.id,
                'payment_number': payment.payment_number,
                'razorpay_order_id': order['id'],
                'razorpay_key_id': client.get_public_key(),
                'amount': str(payment.amount),
                'amount_paise': order.get('amount'),
                'currency': order.get('currency', 'INR'),
                'receipt': payment.gateway_receipt,
                'patient_name': payment.patient.name,
                'patient_email': payment.patient.email,
                'patient_phone': payment.patient.phone,
            }
        }, status=status.HTTP_201_CREATED)

    @extend_schema(
        summary="Verify Razorpay Payment",
        description="Verify the checkout signature and mark the payment paid",
        request=RazorpayPaymentVerifySerializer,
        tags=['Payments - Razorpay']
    )
    @action(detail=False, methods=['post'], url_path='razorpay/verify')
    def razorpay_verify_payment(self, request):
        serializer = RazorpayPaymentVerifySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        payment = reconciler.verify_gateway_payment(**serializer.validated_data)
        return self._detail(payment, 'Payment verified successfully')

    @extend_schema(
        summary="Refund Payment",
        description="Refund a paid payment (full amount by default)",
        request=RefundSerializer,
        tags=['Payments']
    )
    @action(detail=True, methods=['post'])
    def refund(self, request, pk=None):
        payment = self.get_object()
        serializer = RefundSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        payment = reconciler.refund_payment(
            payment,
            amount=serializer.validated_data.get('amount'),
            reason=serializer.validated_data.get('reason', ''),
            actor_id=self._actor(request),
        )
        return self._detail(payment, 'Payment refunded successfully')

    @extend_schema(summary="Patient Payment Summary", tags=['Payments'])
    @action(detail=False, methods=['get'], url_path=r'patient/(?P<patient_id>[0-9]+)/summary')
    def patient_summary(self, request, patient_id=None):
        if not Patient.objects.filter(pk=patient_id).exists():
            raise NotFound('Patient not found')

        totals = Payment.objects.filter(patient_id=patient_id).aggregate(
            total_paid=Sum('amount', filter=Q(status='paid')),
            total_refunded=Sum('refund_amount', filter=Q(status='refunded')),
            payment_count=Count('id', filter=Q(status__in=['paid', 'refunded'])),
        )

        return Response({
            'success': True,
            'data': {
                'patient_id': int(patient_id),
                'total_paid': str(totals['total_paid'] or Decimal('0.00')),
                'total_refunded': str(totals['total_refunded'] or Decimal('0.00')),
                'payment_count': totals['payment_count'],
            }
        })


@method_decorator(csrf_exempt, name='dispatch')
class RazorpayWebhookView(APIView):
    """
    Razorpay Webhook Handler
    Handles payment status updates from Razorpay
    Events: payment.captured, payment.failed, refund.processed
    """
    permission_classes = []  # Public endpoint, authenticated by signature
    authentication_classes = []

    @extend_schema(exclude=True)
    def post(self, request):
        signature = request.headers.get('X-Razorpay-Signature')
        if not signature:
            return HttpResponse('Signature missing', status=400)

        payload = request.body
        if not RazorpayClient().verify_webhook_signature(payload, signature):
            logger.warning("Razorpay webhook rejected: invalid signature")
            return HttpResponse('Invalid signature', status=400)

        try:
            event = json.loads(payload)
        except ValueError:
            return HttpResponse('Invalid payload', status=400)

        outcome = reconciler.handle_webhook_event(event)
        logger.info(f"Razorpay webhook {event.get('event')}: {outcome}")
        return HttpResponse('OK', status=200)
