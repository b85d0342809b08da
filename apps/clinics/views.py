# clinics/views.py
import logging

from django.db import transaction
from django.db.models import Count

from rest_framework import viewsets, status, filters
from rest_framework.decorators import action
from rest_framework.response import Response
from django_filters.rest_framework import DjangoFilterBackend

from drf_spectacular.utils import (
    extend_schema,
    extend_schema_view,
    OpenApiParameter,
)

from common.drf_auth import ClinicPermission
from common.exceptions import Conflict, InvalidInput, NotFound
from .calendar import availability, clinic_today, parse_date
from .models import Clinic, ClinicOperatingHours, ClinicHoliday
from .serializers import (
    ClinicListSerializer,
    ClinicDetailSerializer,
    ClinicCreateUpdateSerializer,
    ClinicHolidaySerializer,
    OperatingHoursSerializer,
    OperatingHoursUpdateSerializer,
    AppointmentSettingsSerializer,
)

logger = logging.getLogger(__name__)


@extend_schema_view(
    list=extend_schema(
        summary="List Clinics",
        description="Get list of clinic locations",
        tags=['Clinics']
    ),
    retrieve=extend_schema(
        summary="Get Clinic Details",
        description="Clinic with weekly operating hours and holidays",
        tags=['Clinics']
    ),
    create=extend_schema(
        summary="Create Clinic",
        description="Create a clinic. Default operating hours are created when none are supplied.",
        tags=['Clinics']
    ),
    update=extend_schema(summary="Update Clinic", tags=['Clinics']),
    partial_update=extend_schema(summary="Partial Update Clinic", tags=['Clinics']),
    destroy=extend_schema(summary="Deactivate Clinic", tags=['Clinics']),
)
class ClinicViewSet(viewsets.ModelViewSet):
    """
    Clinic Management

    Clinic configuration, weekly operating hours, holidays and the
    bookable slot grid.
    """
    queryset = Clinic.objects.prefetch_related('operating_hours', 'holidays')
    permission_classes = [ClinicPermission]
    clinic_module = 'clinics'

    action_permission_map = {
        'list': 'view',
        'retrieve': 'view',
        'create': 'create',
        'update': 'edit',
        'partial_update': 'edit',
        'destroy': 'delete',
        'operating_hours': 'edit',
        'appointment_settings': 'edit',
        'holidays': 'view',
        'remove_holiday': 'edit',
        'slots': 'view',
        'today': 'view',
    }

    filter_backends = [DjangoFilterBackend, filters.SearchFilter, filters.OrderingFilter]
    filterset_fields = ['is_active', 'city']
    search_fields = ['name', 'code', 'city', 'phone']
    ordering_fields = ['name', 'code', 'created_at']
    ordering = ['name']

    def get_serializer_class(self):
        """Return appropriate serializer based on action"""
        if self.action == 'list':
            return ClinicListSerializer
        elif self.action in ['create', 'update', 'partial_update']:
            return ClinicCreateUpdateSerializer
        return ClinicDetailSerializer

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        clinic = serializer.save()
        logger.info(f"Clinic created: {clinic.code}")

        return Response({
            'success': True,
            'message': 'Clinic created successfully',
            'data': ClinicDetailSerializer(clinic).data
        }, status=status.HTTP_201_CREATED)

    def update(self, request, *args, **kwargs):
        partial = kwargs.pop('partial', False)
        clinic = self.get_object()
        serializer = self.get_serializer(clinic, data=request.data, partial=partial)
        serializer.is_valid(raise_exception=True)
        clinic = serializer.save()

        return Response({
            'success': True,
            'message': 'Clinic updated successfully',
            'data': ClinicDetailSerializer(clinic).data
        })

    def destroy(self, request, *args, **kwargs):
        """Soft delete: clinics with history are never removed"""
        clinic = self.get_object()
        clinic.is_active = False
        clinic.save(update_fields=['is_active', 'updated_at'])

        return Response({
            'success': True,
            'message': 'Clinic deactivated successfully',
        })

    @extend_schema(
        summary="Set Operating Hours",
        description="Replace the full weekly template (day_of_week 0=Sunday .. 6=Saturday)",
        request=OperatingHoursUpdateSerializer,
        tags=['Clinics']
    )
    @action(detail=True, methods=['put'], url_path='operating-hours')
    def operating_hours(self, request, pk=None):
        clinic = self.get_object()
        serializer = OperatingHoursUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        with transaction.atomic():
            clinic.operating_hours.all().delete()
            ClinicOperatingHours.objects.bulk_create([
                ClinicOperatingHours(clinic=clinic, **entry)
                for entry in serializer.validated_data['operating_hours']
            ])

        return Response({
            'success': True,
            'message': 'Operating hours updated successfully',
            'data': OperatingHoursSerializer(clinic.operating_hours.all(), many=True).data
        })

    @extend_schema(
        summary="Update Appointment Settings",
        description="Slot duration, daily cap and OPD fees",
        request=AppointmentSettingsSerializer,
        tags=['Clinics']
    )
    @action(detail=True, methods=['patch'], url_path='appointment-settings')
    def appointment_settings(self, request, pk=None):
        clinic = self.get_object()
        serializer = AppointmentSettingsSerializer(clinic, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        serializer.save()

        return Response({
            'success': True,
            'message': 'Appointment settings updated successfully',
            'data': serializer.data
        })

    @extend_schema(
        summary="List / Add Holidays",
        description="GET lists holidays (upcoming=true for future only). POST adds a holiday.",
        request=ClinicHolidaySerializer,
        parameters=[
            OpenApiParameter(name='upcoming', type=bool, description='Only holidays from today on'),
        ],
        tags=['Clinics']
    )
    @action(detail=True, methods=['get', 'post'])
    def holidays(self, request, pk=None):
        clinic = self.get_object()

        if request.method == 'GET':
            holidays = clinic.holidays.all()
            if request.query_params.get('upcoming') in ('true', '1'):
                holidays = holidays.filter(date__gte=clinic_today())
            return Response({
                'success': True,
                'count': holidays.count(),
                'data': ClinicHolidaySerializer(holidays.order_by('date'), many=True).data
            })

        serializer = ClinicHolidaySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        holiday_date = serializer.validated_data['date']

        if clinic.holidays.filter(date=holiday_date).exists():
            raise Conflict('Holiday already exists for this date')

        holiday = ClinicHoliday.objects.create(
            clinic=clinic,
            date=holiday_date,
            reason=serializer.validated_data.get('reason') or 'Holiday'
        )
        return Response({
            'success': True,
            'message': 'Holiday added successfully',
            'data': ClinicHolidaySerializer(holiday).data
        }, status=status.HTTP_201_CREATED)

    @extend_schema(summary="Remove Holiday", tags=['Clinics'])
    @action(detail=True, methods=['delete'], url_path=r'holidays/(?P<holiday_id>[^/.]+)')
    def remove_holiday(self, request, pk=None, holiday_id=None):
        clinic = self.get_object()
        deleted, _ = clinic.holidays.filter(pk=holiday_id).delete()
        if not deleted:
            raise NotFound('Holiday not found')

        return Response({
            'success': True,
            'message': 'Holiday removed successfully',
            'data': ClinicHolidaySerializer(clinic.holidays.all(), many=True).data
        })

    @extend_schema(
        summary="Get Slots",
        description="Bookable slots for a date with booked/available breakdown",
        parameters=[
            OpenApiParameter(name='date', type=str, required=True, description='YYYY-MM-DD'),
        ],
        tags=['Clinics']
    )
    @action(detail=True, methods=['get'])
    def slots(self, request, pk=None):
        clinic = self.get_object()
        day = parse_date(request.query_params.get('date'))
        if day < clinic_today():
            raise InvalidInput('Cannot view slots for past dates')

        return Response({
            'success': True,
            'data': availability(clinic, day)
        })

    @extend_schema(
        summary="Today's Summary",
        description="Today's schedule and appointment counts by status",
        tags=['Clinics']
    )
    @action(detail=True, methods=['get'])
    def today(self, request, pk=None):
        from apps.appointments.models import Appointment

        clinic = self.get_object()
        today = clinic_today()
        appointments = Appointment.objects.filter(clinic=clinic, date=today)
        by_status = {
            row['status']: row['count']
            for row in appointments.values('status').annotate(count=Count('id'))
        }

        return Response({
            'success': True,
            'data': {
                'clinic': ClinicListSerializer(clinic).data,
                'schedule': availability(clinic, today),
                'total_appointments': appointments.count(),
                'by_status': by_status,
            }
        })
