"""
Withdrawal period updater.

Animals whose withdrawal period has ended leave withdrawal and are flagged
for an MRL lab test before any product can be sold. Each affected farmer
gets one email listing their animals.
"""

import logging
from collections import defaultdict

from django.db import transaction
from django.utils import timezone

from animals.models import Animal

logger = logging.getLogger(__name__)


def update_withdrawal_statuses(today=None):
    """
    Clear ended withdrawal periods.

    Args:
        today: Reference date (defaults to the local date)

    Returns:
        dict: {'updated': int, 'farmers_notified': int}
    """
    from core.tasks import send_email_async
    from feed_administration.services.notification_service import FeedAdministrationNotificationService

    today = today or timezone.localdate()
    tags_by_farmer = defaultdict(list)
    farmers = {}

    with transaction.atomic():
        animals = (
            Animal.objects.select_for_update()
            .filter(in_withdrawal=True, withdrawal_end_date__lte=today)
            .select_related('farmer')
        )
        for animal in animals:
            animal.in_withdrawal = False
            animal.requires_mrl_test = True
            animal.save(update_fields=['in_withdrawal', 'requires_mrl_test', 'updated_at'])
            animal.active_feed_administrations.clear()

            tags_by_farmer[animal.farmer_id].append(animal.tag_id)
            farmers[animal.farmer_id] = animal.farmer

    updated = sum(len(tags) for tags in tags_by_farmer.values())
    if updated:
        logger.info(f"Withdrawal ended for {updated} animal(s) across {len(farmers)} farmer(s)")

    notifications = FeedAdministrationNotificationService()
    notified = 0
    for farmer_id, tag_ids in tags_by_farmer.items():
        farmer = farmers[farmer_id]
        if not farmer.email:
            logger.warning(f"Farmer {farmer_id} has no email; withdrawal-ended notice not sent")
            continue
        subject, message = notifications.build_withdrawal_ended_email(farmer, sorted(tag_ids))
        try:
            send_email_async.delay(subject, message, [farmer.email])
            notified += 1
        except Exception as e:
            logger.error(f"Could not queue withdrawal-ended email for farmer {farmer_id}: {e}")

    return {'updated': updated, 'farmers_notified': notified}
