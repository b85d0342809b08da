from django.urls import path, include
from django.views.generic import RedirectView

# Import custom clinic admin site
from common.admin_site import clinic_admin_site

from drf_spectacular.views import (
    SpectacularAPIView,
    SpectacularRedocView,
    SpectacularSwaggerView
)

urlpatterns = [
    # Root redirect to API docs
    path('', RedirectView.as_view(url='/api/docs/', permanent=False), name='index'),

    # Admin panel - Using custom clinic admin site
    path('admin/', clinic_admin_site.urls),

    # API endpoints
    path('api/clinics/', include('apps.clinics.urls')),
    path('api/patients/', include('apps.patients.urls')),
    path('api/appointments/', include('apps.appointments.urls')),
    path('api/billing/', include('apps.billing.urls')),
    path('api/payments/', include('apps.payments.urls')),

    # OpenAPI schema
    path('api/schema/', SpectacularAPIView.as_view(), name='schema'),

    # Swagger UI (Interactive documentation)
    path('api/docs/', SpectacularSwaggerView.as_view(url_name='schema'), name='swagger-ui'),

    # ReDoc UI (Alternative documentation)
    path('api/redoc/', SpectacularRedocView.as_view(url_name='schema'), name='redoc'),
]
