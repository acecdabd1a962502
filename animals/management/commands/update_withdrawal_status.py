"""
Django Management Command: Update Withdrawal Status

Same job as the nightly Celery task: animals whose withdrawal period has
ended leave withdrawal and are flagged for MRL testing.

Usage:
    python manage.py update_withdrawal_status
    python manage.py update_withdrawal_status --date 2025-01-31
"""

from datetime import date

from django.core.management.base import BaseCommand, CommandError

from animals.services.withdrawal import update_withdrawal_statuses


class Command(BaseCommand):
    help = 'Clear ended withdrawal periods and flag animals for MRL testing'

    def add_arguments(self, parser):
        parser.add_argument('--date', help='Reference date (YYYY-MM-DD), defaults to today')

    def handle(self, *args, **options):
        today = None
        if options['date']:
            try:
                today = date.fromisoformat(options['date'])
            except ValueError:
                raise CommandError('--date must be in YYYY-MM-DD format')

        result = update_withdrawal_statuses(today=today)
        self.stdout.write(self.style.SUCCESS(
            f"Updated {result['updated']} animal(s); notified {result['farmers_notified']} farmer(s)"
        ))
