"""
Celery tasks for the animal registry.
"""
from celery import shared_task
import logging

logger = logging.getLogger(__name__)


@shared_task
def update_withdrawal_statuses():
    """
    Close withdrawal periods that have ended.

    Scheduled via Celery Beat daily at midnight.
    """
    from animals.services.withdrawal import update_withdrawal_statuses as run_update

    return run_update()
