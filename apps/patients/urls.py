from django.urls import path, include
from rest_framework.routers import DefaultRouter
from .views import PatientViewSet

app_name = 'patients'

router = DefaultRouter()
router.register(r'', PatientViewSet, basename='patient')

urlpatterns = [
    path('', include(router.urls)),
]

# Available URLs:
# GET    /api/patients/                   - List patients
# POST   /api/patients/                   - Register patient
# GET    /api/patients/{id}/              - Patient details
# PUT    /api/patients/{id}/              - Update patient (full)
# PATCH  /api/patients/{id}/              - Update patient (partial)
# DELETE /api/patients/{id}/              - Deactivate patient
# GET    /api/patients/{id}/membership/   - Membership status and discount
