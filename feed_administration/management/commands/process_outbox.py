"""
Django Management Command: Process Outbox

Runs queued, failed and stale feed administration side effects (PDFs and
emails) synchronously, without a Celery worker.

Usage:
    python manage.py process_outbox
    python manage.py process_outbox --all      # every non-completed event
    python manage.py process_outbox --cleanup 30
"""

from django.core.management.base import BaseCommand

from feed_administration.models import OutboxEvent
from feed_administration.services.outbox import OutboxDispatcher, redrive_candidates
from feed_administration.tasks import cleanup_processed_outbox_events


class Command(BaseCommand):
    help = 'Process pending and failed feed administration side effects'

    def add_arguments(self, parser):
        parser.add_argument(
            '--all',
            action='store_true',
            help='Process every non-completed event, ignoring retry limits and age',
        )
        parser.add_argument(
            '--cleanup',
            type=int,
            metavar='DAYS',
            help='Also delete completed events older than DAYS days',
        )

    def handle(self, *args, **options):
        if options['all']:
            events = OutboxEvent.objects.exclude(status=OutboxEvent.Status.COMPLETED).order_by('created_at')
        else:
            events = redrive_candidates()

        event_ids = list(events.values_list('id', flat=True))
        if not event_ids:
            self.stdout.write('No outbox events to process')
        else:
            dispatcher = OutboxDispatcher()
            succeeded = sum(1 for event_id in event_ids if dispatcher.dispatch_by_id(event_id))
            failed = len(event_ids) - succeeded
            self.stdout.write(self.style.SUCCESS(f'Processed {len(event_ids)} event(s): {succeeded} succeeded'))
            if failed:
                self.stdout.write(self.style.WARNING(f'{failed} event(s) failed; see last_error on each event'))

        if options['cleanup'] is not None:
            deleted = cleanup_processed_outbox_events(days_old=options['cleanup'])
            self.stdout.write(f'Deleted {deleted} completed event(s)')
