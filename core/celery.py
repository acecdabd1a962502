"""
Celery configuration for the LivestockIQ AMU backend.

Side effects of feed-administration transitions (PDF generation, emails)
are drained from the outbox by workers so they never block API requests.

Periodic tasks:
- Redrive failed/stale outbox events
- Withdrawal status updater (withdrawal ended -> MRL test required)
- Expiring feed alerts
- Outbox cleanup
"""
import os
from celery import Celery
from celery.schedules import crontab

# Set the default Django settings module
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'core.settings')

# Create Celery app
app = Celery('core')

# Load config from Django settings with CELERY_ prefix
app.config_from_object('django.conf:settings', namespace='CELERY')

# Auto-discover tasks in all installed apps
app.autodiscover_tasks()


# =============================================================================
# CELERY BEAT SCHEDULE - Periodic Tasks
# =============================================================================
app.conf.beat_schedule = {
    # Redrive side effects that failed or were never picked up
    'retry-failed-outbox-events': {
        'task': 'feed_administration.tasks.retry_failed_outbox_events',
        'schedule': crontab(minute='*/10'),
    },

    # Clear expired withdrawal flags (run daily at midnight)
    'update-withdrawal-statuses': {
        'task': 'animals.tasks.update_withdrawal_statuses',
        'schedule': crontab(hour=0, minute=0),
    },

    # Warn farmers about feed batches close to expiry (run daily at 8 AM)
    'expiring-feed-alerts': {
        'task': 'feed_inventory.tasks.send_expiring_feed_alerts',
        'schedule': crontab(hour=8, minute=0),
    },

    # Drop completed outbox events older than 30 days (run weekly, Sunday 3 AM)
    'cleanup-processed-outbox-events': {
        'task': 'feed_administration.tasks.cleanup_processed_outbox_events',
        'schedule': crontab(hour=3, minute=0, day_of_week=0),
    },
}

# Celery configuration
app.conf.update(
    # Task result expiry
    result_expires=3600,  # 1 hour

    # Task time limits
    task_time_limit=300,  # 5 minutes hard limit
    task_soft_time_limit=240,  # 4 minutes soft limit

    # Retry policy
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    # Prefetch multiplier (1 = fair distribution)
    worker_prefetch_multiplier=1,

    # Serialization
    task_serializer='json',
    result_serializer='json',
    accept_content=['json'],

    # Timezone
    timezone='Asia/Kolkata',
    enable_utc=True,
)
