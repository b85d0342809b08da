from django.urls import path, include
from rest_framework.routers import DefaultRouter
from .views import AppointmentViewSet

app_name = 'appointments'

router = DefaultRouter()
router.register(r'', AppointmentViewSet, basename='appointment')

urlpatterns = [
    path('', include(router.urls)),
]

# Available URLs:
# GET    /api/appointments/                          - List appointments
# POST   /api/appointments/                          - Book appointment
# GET    /api/appointments/{id}/                     - Appointment details + status history
# PUT    /api/appointments/{id}/                     - Update appointment (full)
# PATCH  /api/appointments/{id}/                     - Update appointment (partial)
# PATCH  /api/appointments/{id}/status/              - Generic status transition
# POST   /api/appointments/{id}/check-in/            - Check in
# POST   /api/appointments/{id}/start/               - Start treatment
# POST   /api/appointments/{id}/complete/            - Complete
# POST   /api/appointments/{id}/cancel/              - Cancel
# POST   /api/appointments/{id}/reschedule/          - Reschedule
# GET    /api/appointments/today/                    - Today's appointments
# GET    /api/appointments/upcoming/                 - Next N days
# GET    /api/appointments/by-phone/{phone}/         - Appointments for a patient phone
# GET    /api/appointments/available-slots/          - Free slots for clinic + date
