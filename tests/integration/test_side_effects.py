"""
Post-commit side effects: PDFs and emails drained from the outbox.

A failing side effect is recorded on the record and its outbox event but
never changes the outcome of the transition that queued it.
"""

from datetime import timedelta
from smtplib import SMTPException
from unittest.mock import patch

import pytest
from django.core.mail import EmailMultiAlternatives
from django.utils import timezone
from kombu.exceptions import OperationalError

from feed_administration.models import AdministrationDocument, FeedAdministration, OutboxEvent
from feed_administration.services.notification_service import FeedAdministrationNotificationService
from feed_administration.services.outbox import OutboxDispatcher, redrive_candidates
from feed_administration.services.workflow import FeedAdministrationWorkflowService
from feed_administration.tasks import cleanup_processed_outbox_events, retry_failed_outbox_events

pytestmark = pytest.mark.django_db

FEED_ADMIN_URL = '/api/feed-admin/'


@pytest.fixture
def pending_record(farmer, medicated_feed, animals):
    """A medicated record awaiting approval; its side effects were never run."""
    return FeedAdministrationWorkflowService().create_administration(farmer, {
        'feed_id': str(medicated_feed.id),
        'animal_ids': [animal.tag_id for animal in animals],
        'feed_quantity_used': '40',
    })


# ==============================================================================
# TEST: SUCCESSFUL SIDE EFFECTS
# ==============================================================================

class TestSideEffectsDelivered:

    def test_medicated_create_notifies_vet_and_renders_confirmation(
        self, farmer_client, medicated_feed, animals, mailoutbox, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=True):
            response = farmer_client.post(FEED_ADMIN_URL, {
                'feed_id': str(medicated_feed.id),
                'animal_ids': [animal.tag_id for animal in animals],
                'feed_quantity_used': '40',
            }, format='json')

        assert response.status_code == 201
        assert len(mailoutbox) == 1
        assert mailoutbox[0].to == ['vet@test.com']
        assert mailoutbox[0].subject.startswith('Feed Administration Review Required')

        record = FeedAdministration.objects.get(pk=response.data['feed_administration']['id'])
        assert list(record.documents.values_list('document_type', flat=True)) == [
            AdministrationDocument.DocumentType.CONFIRMATION
        ]
        assert set(record.outbox_events.values_list('status', flat=True)) == {OutboxEvent.Status.COMPLETED}

    def test_approval_produces_documents_and_prescription_email(
        self, vet_client, pending_record, mailoutbox, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=True):
            response = vet_client.post(f'{FEED_ADMIN_URL}{pending_record.id}/approve/', {}, format='json')

        assert response.status_code == 200
        document_types = set(pending_record.documents.values_list('document_type', flat=True))
        assert document_types == {
            AdministrationDocument.DocumentType.VET_APPROVAL,
            AdministrationDocument.DocumentType.FARMER_APPROVAL,
            AdministrationDocument.DocumentType.PRESCRIPTION,
        }

        assert len(mailoutbox) == 1
        message = mailoutbox[0]
        assert message.to == ['farmer@test.com']
        assert message.subject.startswith('Feed Administration Approved')
        assert len(message.attachments) == 1
        assert message.attachments[0][2] == 'application/pdf'

    def test_rejection_email_goes_to_farmer(
        self, vet_client, pending_record, mailoutbox, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=True):
            vet_client.post(f'{FEED_ADMIN_URL}{pending_record.id}/reject/', {'reason': 'Not indicated'}, format='json')

        assert len(mailoutbox) == 1
        assert mailoutbox[0].to == ['farmer@test.com']
        assert mailoutbox[0].subject == 'Feed Administration Rejected - Broiler Starter + OTC'
        assert 'Not indicated' in mailoutbox[0].body

    def test_documents_endpoint_lists_generated_files(
        self, farmer_client, vet_client, pending_record, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=True):
            vet_client.post(f'{FEED_ADMIN_URL}{pending_record.id}/approve/', {}, format='json')

        response = farmer_client.get(f'{FEED_ADMIN_URL}{pending_record.id}/documents/')

        assert response.status_code == 200
        assert len(response.data['results']) == 3
        assert response.data['email_error'] == ''


# ==============================================================================
# TEST: FAILURES ARE NON-FATAL
# ==============================================================================

class TestSideEffectFailures:

    def test_smtp_failure_does_not_undo_approval(
        self, vet_client, pending_record, mailoutbox, django_capture_on_commit_callbacks
    ):
        with patch.object(EmailMultiAlternatives, 'send', side_effect=SMTPException('SMTP down')):
            with django_capture_on_commit_callbacks(execute=True):
                response = vet_client.post(f'{FEED_ADMIN_URL}{pending_record.id}/approve/', {}, format='json')

        assert response.status_code == 200
        pending_record.refresh_from_db()
        assert pending_record.status == FeedAdministration.Status.ACTIVE
        assert pending_record.email_error == 'Prescription Email: SMTP down'

        event = pending_record.outbox_events.get(event_type=OutboxEvent.EventType.PRESCRIPTION_EMAIL)
        assert event.status == OutboxEvent.Status.FAILED
        assert event.attempts == 1
        assert mailoutbox == []

    def test_failed_email_is_redriven(
        self, vet_client, pending_record, mailoutbox, django_capture_on_commit_callbacks
    ):
        with patch.object(EmailMultiAlternatives, 'send', side_effect=SMTPException('SMTP down')):
            with django_capture_on_commit_callbacks(execute=True):
                vet_client.post(f'{FEED_ADMIN_URL}{pending_record.id}/approve/', {}, format='json')

        result = retry_failed_outbox_events()

        assert result['succeeded'] >= 1
        pending_record.refresh_from_db()
        assert pending_record.email_error == ''
        event = pending_record.outbox_events.get(event_type=OutboxEvent.EventType.PRESCRIPTION_EMAIL)
        assert event.status == OutboxEvent.Status.COMPLETED
        assert event.attempts == 2

        assert len(mailoutbox) == 1
        assert len(mailoutbox[0].attachments) == 1
        assert pending_record.documents.filter(
            document_type=AdministrationDocument.DocumentType.PRESCRIPTION
        ).count() == 1

    def test_pdf_failure_is_recorded_on_create(
        self, farmer_client, regular_feed, animals, django_capture_on_commit_callbacks
    ):
        with patch(
            'feed_administration.services.documents.build_confirmation_pdf',
            side_effect=RuntimeError('font missing'),
        ):
            with django_capture_on_commit_callbacks(execute=True):
                response = farmer_client.post(FEED_ADMIN_URL, {
                    'feed_id': str(regular_feed.id),
                    'animal_ids': [animal.tag_id for animal in animals],
                    'feed_quantity_used': '10',
                }, format='json')

        assert response.status_code == 201
        record = FeedAdministration.objects.get(pk=response.data['feed_administration']['id'])
        assert record.status == FeedAdministration.Status.ACTIVE
        assert record.document_error == 'Confirmation Document: font missing'
        assert not record.documents.exists()


# ==============================================================================
# TEST: OUTBOX HOUSEKEEPING
# ==============================================================================

class TestOutboxHousekeeping:

    def test_event_for_deleted_record_is_skipped(self, farmer, pending_record):
        event_ids = list(pending_record.outbox_events.values_list('id', flat=True))
        FeedAdministrationWorkflowService().delete(farmer, pending_record.id)

        dispatcher = OutboxDispatcher()
        for event_id in event_ids:
            assert dispatcher.dispatch_by_id(event_id) is True

        assert set(
            OutboxEvent.objects.filter(pk__in=event_ids).values_list('status', flat=True)
        ) == {OutboxEvent.Status.COMPLETED}

    def test_completed_event_is_not_run_twice(self, pending_record, mailoutbox):
        event = pending_record.outbox_events.get(event_type=OutboxEvent.EventType.VET_REVIEW_REQUEST)
        dispatcher = OutboxDispatcher()

        dispatcher.dispatch_by_id(event.id)
        dispatcher.dispatch_by_id(event.id)

        event.refresh_from_db()
        assert event.attempts == 1
        assert len(mailoutbox) == 1

    def test_cleanup_removes_old_completed_events(self, pending_record):
        OutboxEvent.objects.filter(feed_administration=pending_record).update(
            status=OutboxEvent.Status.COMPLETED,
            processed_at=timezone.now() - timedelta(days=45),
        )

        deleted = cleanup_processed_outbox_events(days_old=30)

        assert deleted == 2
        assert not OutboxEvent.objects.filter(feed_administration=pending_record).exists()

    def test_event_claimed_by_another_worker_is_skipped(self, pending_record, mailoutbox):
        event = pending_record.outbox_events.get(event_type=OutboxEvent.EventType.VET_REVIEW_REQUEST)
        event.mark_processing()

        assert OutboxDispatcher().dispatch_by_id(event.id) is False

        event.refresh_from_db()
        assert event.status == OutboxEvent.Status.PROCESSING
        assert event.attempts == 0
        assert mailoutbox == []

    def test_stale_claim_is_redriven(self, pending_record, mailoutbox):
        event = pending_record.outbox_events.get(event_type=OutboxEvent.EventType.VET_REVIEW_REQUEST)
        OutboxEvent.objects.filter(pk=event.pk).update(
            status=OutboxEvent.Status.PROCESSING,
            claimed_at=timezone.now() - timedelta(hours=1),
        )

        assert event.pk in set(redrive_candidates().values_list('pk', flat=True))
        assert OutboxDispatcher().dispatch_by_id(event.id) is True

        event.refresh_from_db()
        assert event.status == OutboxEvent.Status.COMPLETED
        assert len(mailoutbox) == 1

    def test_handler_runs_on_a_claimed_event(self, pending_record):
        event = pending_record.outbox_events.get(event_type=OutboxEvent.EventType.VET_REVIEW_REQUEST)
        seen = []

        def send(record):
            seen.append(OutboxEvent.objects.get(pk=event.pk).status)
            return {'success': True}

        with patch.object(FeedAdministrationNotificationService, 'send_vet_review_request', side_effect=send):
            OutboxDispatcher().dispatch_by_id(event.id)

        assert seen == [OutboxEvent.Status.PROCESSING]
        event.refresh_from_db()
        assert event.claimed_at is not None
        assert event.status == OutboxEvent.Status.COMPLETED


# ==============================================================================
# TEST: WORKER HANDOFF
# ==============================================================================

@pytest.mark.django_db(transaction=True)
class TestWorkerHandoff:
    """Transitions commit for real here, so on_commit callbacks fire."""

    def test_broker_outage_does_not_fail_approval(
        self, vet_client, farmer, medicated_feed, animals, mailoutbox, settings
    ):
        record = FeedAdministrationWorkflowService().create_administration(farmer, {
            'feed_id': str(medicated_feed.id),
            'animal_ids': [animal.tag_id for animal in animals],
            'feed_quantity_used': '40',
        })

        with patch(
            'feed_administration.tasks.process_outbox_event.delay',
            side_effect=OperationalError('broker down'),
        ):
            response = vet_client.post(f'{FEED_ADMIN_URL}{record.id}/approve/', {}, format='json')

        assert response.status_code == 200
        assert response.data['feed_administration']['status'] == 'Active'
        record.refresh_from_db()
        assert record.status == FeedAdministration.Status.ACTIVE
        approval_events = record.outbox_events.filter(event_type__in=[
            OutboxEvent.EventType.APPROVAL_DOCUMENTS,
            OutboxEvent.EventType.PRESCRIPTION_EMAIL,
        ])
        assert set(approval_events.values_list('status', flat=True)) == {OutboxEvent.Status.PENDING}

        settings.OUTBOX_RETRY_AFTER_MINUTES = 0
        result = retry_failed_outbox_events()

        assert result == {'attempted': 2, 'succeeded': 2}
        assert mailoutbox[-1].to == ['farmer@test.com']
        assert mailoutbox[-1].subject.startswith('Feed Administration Approved')

    def test_broker_outage_does_not_fail_create(self, farmer_client, medicated_feed, animals):
        with patch(
            'feed_administration.tasks.process_outbox_event.delay',
            side_effect=OperationalError('broker down'),
        ):
            response = farmer_client.post(FEED_ADMIN_URL, {
                'feed_id': str(medicated_feed.id),
                'animal_ids': [animal.tag_id for animal in animals],
                'feed_quantity_used': '40',
            }, format='json')

        assert response.status_code == 201
        record = FeedAdministration.objects.get(pk=response.data['feed_administration']['id'])
        assert set(record.outbox_events.values_list('status', flat=True)) == {OutboxEvent.Status.PENDING}
