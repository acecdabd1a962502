"""
Celery tasks for feed inventory.
"""
from celery import shared_task
from django.conf import settings
from django.utils import timezone
from datetime import timedelta
import logging

logger = logging.getLogger(__name__)


@shared_task
def send_expiring_feed_alerts(days: int = None):
    """
    Email each farmer the active feed batches that expire within ``days``
    (FEED_EXPIRING_SOON_DAYS by default).

    Scheduled via Celery Beat daily at 8 AM.
    """
    from core.tasks import send_email_async
    from feed_administration.services.notification_service import FeedAdministrationNotificationService
    from feed_inventory.models import FeedBatch

    days = days if days is not None else settings.FEED_EXPIRING_SOON_DAYS
    today = timezone.localdate()

    batches = (
        FeedBatch.objects.filter(
            is_active=True,
            remaining_quantity__gt=0,
            expiry_date__gte=today,
            expiry_date__lte=today + timedelta(days=days),
        )
        .select_related('farmer')
        .order_by('farmer_id', 'expiry_date')
    )

    by_farmer = {}
    for batch in batches:
        by_farmer.setdefault(batch.farmer_id, (batch.farmer, []))[1].append(batch)

    notifications = FeedAdministrationNotificationService()
    sent = 0
    for farmer, farmer_batches in by_farmer.values():
        if not farmer.email:
            continue
        subject, message = notifications.build_expiring_feed_email(farmer, farmer_batches)
        send_email_async.delay(subject, message, [farmer.email])
        sent += 1

    logger.info(f"Expiring feed alerts: {sent} farmer(s) notified")
    return sent
