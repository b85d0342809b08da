"""
WSGI config for DentalCare.
"""
import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'dentalcare.settings')

application = get_wsgi_application()
