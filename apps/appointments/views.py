from datetime import timedelta

from rest_framework import viewsets, status, filters
from rest_framework.decorators import action
from rest_framework.response import Response
from django_filters.rest_framework import DjangoFilterBackend

from drf_spectacular.utils import (
    extend_schema,
    extend_schema_view,
    OpenApiParameter,
)

from apps.clinics.calendar import availability, clinic_today, parse_date
from apps.clinics.models import Clinic
from apps.patients.models import Patient
from common.drf_auth import ClinicPermission
from common.exceptions import InvalidInput, NotFound
from .models import Appointment, TERMINAL_STATUSES
from .serializers import (
    AppointmentListSerializer,
    AppointmentDetailSerializer,
    AppointmentCreateSerializer,
    AppointmentUpdateSerializer,
    AppointmentStatusUpdateSerializer,
    AppointmentCompleteSerializer,
    AppointmentCancelSerializer,
    AppointmentRescheduleSerializer,
)


@extend_schema_view(
    list=extend_schema(
        summary="List Appointments",
        description="Get paginated list of appointments with filtering and search",
        parameters=[
            OpenApiParameter(name='clinic', type=int, description='Filter by clinic ID'),
            OpenApiParameter(name='patient', type=int, description='Filter by patient ID'),
            OpenApiParameter(name='status', type=str, description='Filter by status'),
            OpenApiParameter(name='date', type=str, description='Filter by date (YYYY-MM-DD)'),
            OpenApiParameter(name='date_from', type=str, description='Start of date range (YYYY-MM-DD)'),
            OpenApiParameter(name='date_to', type=str, description='End of date range (YYYY-MM-DD)'),
            OpenApiParameter(name='search', type=str, description='Search by appointment number, patient name or phone'),
        ],
        tags=['Appointments']
    ),
    retrieve=extend_schema(
        summary="Get Appointment Details",
        description="Appointment with its full status history",
        tags=['Appointments']
    ),
    create=extend_schema(
        summary="Book Appointment",
        description="Book a slot. Fails with 409 when the slot is already taken.",
        tags=['Appointments']
    ),
    update=extend_schema(summary="Update Appointment", tags=['Appointments']),
    partial_update=extend_schema(summary="Partial Update Appointment", tags=['Appointments']),
)
class AppointmentViewSet(viewsets.ModelViewSet):
    """
    Appointment Management

    Booking, the appointment lifecycle and schedule listings.
    """
    queryset = Appointment.objects.select_related('patient', 'clinic')
    permission_classes = [ClinicPermission]
    clinic_module = 'appointments'
    http_method_names = ['get', 'post', 'put', 'patch', 'head', 'options']

    action_permission_map = {
        'list': 'view',
        'retrieve': 'view',
        'create': 'create',
        'update': 'edit',
        'partial_update': 'edit',
        'update_status': 'edit',
        'check_in': 'edit',
        'start': 'edit',
        'complete': 'edit',
        'cancel': 'cancel',
        'reschedule': 'edit',
        'today': 'view',
        'upcoming': 'view',
        'by_phone': 'view',
        'available_slots': 'view',
    }

    filter_backends = [DjangoFilterBackend, filters.SearchFilter, filters.OrderingFilter]
    filterset_fields = ['clinic', 'patient', 'status', 'type', 'source', 'date', 'opd_fee_paid']
    search_fields = ['appointment_number', 'patient__name', 'patient__phone']
    ordering_fields = ['date', 'time_slot', 'token_number', 'created_at']
    ordering = ['-date', 'time_slot']

    def get_serializer_class(self):
        """Return appropriate serializer based on action"""
        if self.action == 'list':
            return AppointmentListSerializer
        elif self.action == 'create':
            return AppointmentCreateSerializer
        elif self.action in ['update', 'partial_update']:
            return AppointmentUpdateSerializer
        return AppointmentDetailSerializer

    def get_queryset(self):
        queryset = super().get_queryset()

        if self.action == 'retrieve':
            queryset = queryset.prefetch_related('status_history')

        date_from = self.request.query_params.get('date_from')
        date_to = self.request.query_params.get('date_to')
        if date_from:
            queryset = queryset.filter(date__gte=parse_date(date_from, 'date_from'))
        if date_to:
            queryset = queryset.filter(date__lte=parse_date(date_to, 'date_to'))

        return queryset

    def _actor(self, request):
        return str(getattr(request, 'user_id', '') or '')

    def _detail(self, appointment, message, code=status.HTTP_200_OK):
        appointment.refresh_from_db()
        return Response({
            'success': True,
            'message': message,
            'data': AppointmentDetailSerializer(appointment).data
        }, status=code)

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        appointment = serializer.save()
        return self._detail(appointment, 'Appointment booked successfully', status.HTTP_201_CREATED)

    def update(self, request, *args, **kwargs):
        partial = kwargs.pop('partial', False)
        appointment = self.get_object()
        serializer = self.get_serializer(appointment, data=request.data, partial=partial)
        serializer.is_valid(raise_exception=True)
        appointment = serializer.save()
        return self._detail(appointment, 'Appointment updated successfully')

    @extend_schema(
        summary="Update Appointment Status",
        description="Generic status transition (scheduled -> confirmed, confirmed -> no_show, ...)",
        request=AppointmentStatusUpdateSerializer,
        tags=['Appointments - Lifecycle']
    )
    @action(detail=True, methods=['patch'], url_path='status')
    def update_status(self, request, pk=None):
        appointment = self.get_object()
        serializer = AppointmentStatusUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        appointment.transition_to(
            serializer.validated_data['status'],
            reason=serializer.validated_data.get('reason') or None,
            actor_id=self._actor(request),
        )
        return self._detail(appointment, 'Appointment status updated successfully')

    @extend_schema(summary="Check In Patient", request=None, tags=['Appointments - Lifecycle'])
    @action(detail=True, methods=['post'], url_path='check-in')
    def check_in(self, request, pk=None):
        appointment = self.get_object()
        appointment.check_in(actor_id=self._actor(request))
        return self._detail(appointment, 'Patient checked in successfully')

    @extend_schema(summary="Start Treatment", request=None, tags=['Appointments - Lifecycle'])
    @action(detail=True, methods=['post'])
    def start(self, request, pk=None):
        appointment = self.get_object()
        appointment.start(actor_id=self._actor(request))
        return self._detail(appointment, 'Treatment started')

    @extend_schema(
        summary="Complete Appointment",
        request=AppointmentCompleteSerializer,
        tags=['Appointments - Lifecycle']
    )
    @action(detail=True, methods=['post'])
    def complete(self, request, pk=None):
        appointment = self.get_object()
        serializer = AppointmentCompleteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        appointment.complete(
            actor_id=self._actor(request),
            notes=serializer.validated_data.get('notes'),
            prescriptions=serializer.validated_data.get('prescriptions'),
        )
        return self._detail(appointment, 'Appointment completed successfully')

    @extend_schema(
        summary="Cancel Appointment",
        request=AppointmentCancelSerializer,
        tags=['Appointments - Lifecycle']
    )
    @action(detail=True, methods=['post'])
    def cancel(self, request, pk=None):
        appointment = self.get_object()
        serializer = AppointmentCancelSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        appointment.cancel(
            actor_id=self._actor(request),
            reason=serializer.validated_data.get('reason') or None,
        )
        return self._detail(appointment, 'Appointment cancelled successfully')

    @extend_schema(
        summary="Reschedule Appointment",
        description="Move to a new date/slot; status returns to scheduled and the token is re-derived",
        request=AppointmentRescheduleSerializer,
        tags=['Appointments - Lifecycle']
    )
    @action(detail=True, methods=['post'])
    def reschedule(self, request, pk=None):
        appointment = self.get_object()
        serializer = AppointmentRescheduleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        appointment.reschedule(
            serializer.validated_data['date'],
            serializer.validated_data['time_slot'],
            reason=serializer.validated_data.get('reason', ''),
            actor_id=self._actor(request),
        )
        return self._detail(appointment, 'Appointment rescheduled successfully')

    @extend_schema(
        summary="Today's Appointments",
        parameters=[OpenApiParameter(name='clinic', type=int, description='Filter by clinic ID')],
        tags=['Appointments']
    )
    @action(detail=False, methods=['get'])
    def today(self, request):
        queryset = self.get_queryset().filter(date=clinic_today())
        clinic_id = request.query_params.get('clinic')
        if clinic_id:
            queryset = queryset.filter(clinic_id=clinic_id)
        queryset = queryset.order_by('token_number', 'time_slot')

        return Response({
            'success': True,
            'count': queryset.count(),
            'data': AppointmentListSerializer(queryset, many=True).data
        })

    @extend_schema(
        summary="Upcoming Appointments",
        parameters=[
            OpenApiParameter(name='days', type=int, description='Days ahead (default 7)'),
            OpenApiParameter(name='clinic', type=int, description='Filter by clinic ID'),
        ],
        tags=['Appointments']
    )
    @action(detail=False, methods=['get'])
    def upcoming(self, request):
        try:
            days = int(request.query_params.get('days', 7))
        except ValueError:
            raise InvalidInput('days must be an integer')
        if days < 1:
            raise InvalidInput('days must be at least 1')

        today = clinic_today()
        queryset = self.get_queryset().filter(
            date__gte=today,
            date__lte=today + timedelta(days=days),
        ).exclude(status__in=TERMINAL_STATUSES)

        clinic_id = request.query_params.get('clinic')
        if clinic_id:
            queryset = queryset.filter(clinic_id=clinic_id)
        queryset = queryset.order_by('date', 'time_slot')

        return Response({
            'success': True,
            'count': queryset.count(),
            'data': AppointmentListSerializer(queryset, many=True).data
        })

    @extend_schema(summary="Appointments by Patient Phone", tags=['Appointments'])
    @action(detail=False, methods=['get'], url_path=r'by-phone/(?P<phone>[^/]+)')
    def by_phone(self, request, phone=None):
        patient = Patient.objects.filter(phone=phone).first()
        if patient is None:
            raise NotFound('Patient not found')

        queryset = self.get_queryset().filter(patient=patient).order_by('-date', 'time_slot')
        return Response({
            'success': True,
            'count': queryset.count(),
            'data': AppointmentListSerializer(queryset, many=True).data
        })

    @extend_schema(
        summary="Available Slots",
        parameters=[
            OpenApiParameter(name='clinic', type=int, required=True, description='Clinic ID'),
            OpenApiParameter(name='date', type=str, required=True, description='YYYY-MM-DD'),
        ],
        tags=['Appointments']
    )
    @action(detail=False, methods=['get'], url_path='available-slots')
    def available_slots(self, request):
        clinic_id = request.query_params.get('clinic')
        if not clinic_id or not str(clinic_id).isdigit():
            raise InvalidInput('clinic is required')
        clinic = Clinic.objects.filter(pk=clinic_id).first()
        if clinic is None:
            raise NotFound('Clinic not found')

        day = parse_date(request.query_params.get('date'))
        if day < clinic_today():
            raise InvalidInput('Cannot view slots for past dates')

        return Response({
            'success': True,
            'data': availability(clinic, day)
        })
