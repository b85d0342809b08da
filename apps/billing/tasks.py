"""
Celery tasks for the billing module
"""
import logging

from celery import shared_task
from django.utils import timezone

from .models import Invoice, past_due

logger = logging.getLogger(__name__)


def flag_overdue_invoices(today=None) -> int:
    """
    Move unpaid or partially paid invoices past their due date to `overdue`.

    Running it again on the same day changes nothing.
    """
    today = today or timezone.localdate()
    updated = Invoice.objects.filter(past_due(today)).exclude(
        status='overdue',
    ).update(status='overdue', updated_at=timezone.now())

    if updated:
        logger.info(f"Marked {updated} invoice(s) overdue as of {today}")
    return updated


@shared_task(bind=True, name='billing.mark_overdue_invoices')
def mark_overdue_invoices(self, today: str = None):
    """
    Periodic sweep scheduled by celery beat (see dentalcare.celery).

    Args:
        today: optional ISO date to sweep as of, defaults to the local date

    Returns:
        dict: number of invoices moved to overdue
    """
    from apps.clinics.calendar import parse_date

    as_of = parse_date(today) if today else None
    updated = flag_overdue_invoices(as_of)
    return {'success': True, 'updated': updated}
