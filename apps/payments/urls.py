from django.urls import path, include
from rest_framework.routers import DefaultRouter
from .views import PaymentViewSet, RazorpayWebhookView

app_name = 'payments'

router = DefaultRouter()
router.register(r'', PaymentViewSet, basename='payment')

urlpatterns = [
    path('webhooks/razorpay/', RazorpayWebhookView.as_view(), name='razorpay-webhook'),
    path('', include(router.urls)),
]

# Available URLs:
# GET    /api/payments/                              - List payments
# POST   /api/payments/                              - Record offline payment
# GET    /api/payments/{id}/                         - Payment details
# POST   /api/payments/{id}/refund/                  - Refund payment
# POST   /api/payments/opd-fee/                      - Record OPD fee payment
# POST   /api/payments/membership/                   - Record membership payment
# POST   /api/payments/razorpay/create/              - Create Razorpay order
# POST   /api/payments/razorpay/verify/              - Verify Razorpay payment
# GET    /api/payments/patient/{patient_id}/summary/ - Patient payment summary
# POST   /api/payments/webhooks/razorpay/            - Razorpay webhook (signature authenticated)
