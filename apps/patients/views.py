from rest_framework import viewsets, status, filters
from rest_framework.decorators import action
from rest_framework.response import Response
from django_filters.rest_framework import DjangoFilterBackend

from drf_spectacular.utils import extend_schema, extend_schema_view, OpenApiParameter

from common.drf_auth import ClinicPermission
from .models import Patient
from .serializers import (
    PatientListSerializer,
    PatientDetailSerializer,
    PatientCreateUpdateSerializer,
)


@extend_schema_view(
    list=extend_schema(
        summary="List Patients",
        description="Get paginated list of patients with filtering and search",
        parameters=[
            OpenApiParameter(name='search', type=str, description='Search by name, phone or email'),
        ],
        tags=['Patients']
    ),
    retrieve=extend_schema(summary="Get Patient Details", tags=['Patients']),
    create=extend_schema(summary="Register Patient", tags=['Patients']),
    update=extend_schema(summary="Update Patient", tags=['Patients']),
    partial_update=extend_schema(summary="Partial Update Patient", tags=['Patients']),
    destroy=extend_schema(summary="Deactivate Patient", tags=['Patients']),
)
class PatientViewSet(viewsets.ModelViewSet):
    """
    Patient Management

    Patient records and the membership discount consumed by billing.
    """
    queryset = Patient.objects.select_related('preferred_clinic')
    permission_classes = [ClinicPermission]
    clinic_module = 'patients'

    action_permission_map = {
        'list': 'view',
        'retrieve': 'view',
        'create': 'create',
        'update': 'edit',
        'partial_update': 'edit',
        'destroy': 'delete',
        'membership': 'view',
    }

    filter_backends = [DjangoFilterBackend, filters.SearchFilter, filters.OrderingFilter]
    filterset_fields = ['gender', 'blood_group', 'membership_status', 'preferred_clinic', 'is_active']
    search_fields = ['name', 'phone', 'email']
    ordering_fields = ['name', 'created_at']
    ordering = ['-created_at']

    def get_serializer_class(self):
        """Return appropriate serializer based on action"""
        if self.action == 'list':
            return PatientListSerializer
        elif self.action in ['create', 'update', 'partial_update']:
            return PatientCreateUpdateSerializer
        return PatientDetailSerializer

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        patient = serializer.save()

        return Response({
            'success': True,
            'message': 'Patient registered successfully',
            'data': PatientDetailSerializer(patient).data
        }, status=status.HTTP_201_CREATED)

    def update(self, request, *args, **kwargs):
        partial = kwargs.pop('partial', False)
        patient = self.get_object()
        serializer = self.get_serializer(patient, data=request.data, partial=partial)
        serializer.is_valid(raise_exception=True)
        patient = serializer.save()

        return Response({
            'success': True,
            'message': 'Patient updated successfully',
            'data': PatientDetailSerializer(patient).data
        })

    def destroy(self, request, *args, **kwargs):
        """Soft delete so invoices and appointments keep their patient"""
        patient = self.get_object()
        patient.is_active = False
        patient.save(update_fields=['is_active', 'updated_at'])

        return Response({
            'success': True,
            'message': 'Patient deactivated successfully',
        })

    @extend_schema(
        summary="Get Membership Status",
        description="Whether the patient has an active membership and the discount it grants",
        tags=['Patients']
    )
    @action(detail=True, methods=['get'])
    def membership(self, request, pk=None):
        patient = self.get_object()
        return Response({
            'success': True,
            'data': {
                'has_membership': patient.has_membership,
                'current_discount': str(patient.current_discount),
                'plan_code': patient.membership_plan_code,
                'plan_name': patient.membership_plan_name,
                'status': patient.membership_status,
                'expiry_date': patient.membership_expiry_date,
            }
        })
