from django.urls import path, include
from rest_framework.routers import DefaultRouter
from .views import InvoiceViewSet

app_name = 'billing'

router = DefaultRouter()
router.register(r'invoices', InvoiceViewSet, basename='invoice')

urlpatterns = [
    path('', include(router.urls)),
]

# Available URLs:
# GET    /api/billing/invoices/                          - List invoices
# POST   /api/billing/invoices/                          - Create draft invoice
# GET    /api/billing/invoices/{id}/                     - Invoice details
# PUT    /api/billing/invoices/{id}/                     - Update draft (full)
# PATCH  /api/billing/invoices/{id}/                     - Update draft (partial)
# DELETE /api/billing/invoices/{id}/                     - Cancel invoice
# POST   /api/billing/invoices/{id}/items/               - Add line item
# DELETE /api/billing/invoices/{id}/items/{item_id}/     - Remove line item
# POST   /api/billing/invoices/{id}/issue/               - Issue (draft -> sent)
# POST   /api/billing/invoices/{id}/cancel/              - Cancel
# POST   /api/billing/invoices/{id}/payment/             - Record offline payment
# GET    /api/billing/invoices/pending/{patient_id}/     - Pending invoices for a patient
# GET    /api/billing/invoices/overdue/                  - Overdue invoices
# GET    /api/billing/invoices/number/{invoice_number}/  - Lookup by invoice number
