"""
Celery Configuration for DentalCare
"""
import os
from celery import Celery
from celery.schedules import crontab

# Set default Django settings module
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'dentalcare.settings')

app = Celery('dentalcare')

# Load configuration from Django settings with CELERY_ prefix
app.config_from_object('django.conf:settings', namespace='CELERY')

# Auto-discover tasks from all installed apps
app.autodiscover_tasks()

app.conf.beat_schedule = {
    # Flip unpaid invoices past their due date to 'overdue'
    'mark-overdue-invoices': {
        'task': 'billing.mark_overdue_invoices',
        'schedule': crontab(hour=0, minute=30),
    },
}
