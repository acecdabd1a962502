"""
Celery tasks for feed administration side effects.

Transitions queue OutboxEvents; these tasks drain them.
"""
from celery import shared_task
from django.utils import timezone
from datetime import timedelta
import logging

logger = logging.getLogger(__name__)


@shared_task
def process_outbox_event(event_id: str):
    """
    Run one queued side effect (PDF generation or email).

    Queued via transaction.on_commit by the workflow service. Failures are
    recorded on the event and picked up again by retry_failed_outbox_events.
    """
    from feed_administration.services.outbox import OutboxDispatcher

    return OutboxDispatcher().dispatch_by_id(event_id)


@shared_task
def retry_failed_outbox_events():
    """
    Redrive failed and stale outbox events.

    Scheduled via Celery Beat every 10 minutes.
    """
    from feed_administration.services.outbox import OutboxDispatcher, redrive_candidates

    dispatcher = OutboxDispatcher()
    event_ids = list(redrive_candidates().values_list('id', flat=True))
    succeeded = 0
    for event_id in event_ids:
        if dispatcher.dispatch_by_id(event_id):
            succeeded += 1

    if event_ids:
        logger.info(f"Outbox redrive: {succeeded}/{len(event_ids)} event(s) succeeded")
    return {'attempted': len(event_ids), 'succeeded': succeeded}


@shared_task
def cleanup_processed_outbox_events(days_old: int = 30):
    """Delete completed outbox events older than ``days_old`` days."""
    from feed_administration.models import OutboxEvent

    cutoff = timezone.now() - timedelta(days=days_old)
    deleted, _ = OutboxEvent.objects.filter(
        status=OutboxEvent.Status.COMPLETED,
        processed_at__lt=cutoff,
    ).delete()
    logger.info(f"Cleaned up {deleted} processed outbox event(s)")
    return deleted
