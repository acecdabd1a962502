"""
Side-effect outbox.

Workflow transitions never send email or render PDFs themselves. They
``enqueue`` an OutboxEvent inside their transaction; once the transaction
commits, a Celery task hands the event to ``OutboxDispatcher``.

A failed side effect marks its event FAILED and records the error on the
feed administration (``email_error`` / ``document_error``). It never touches
the record's status. Failed events are redriven by
``feed_administration.tasks.retry_failed_outbox_events``.
"""

import logging
from datetime import timedelta

from django.conf import settings
from django.core.files.base import ContentFile
from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from ..models import AdministrationDocument, FeedAdministration, OutboxEvent
from . import documents
from .notification_service import FeedAdministrationNotificationService

logger = logging.getLogger(__name__)

EMAIL_EVENTS = (
    OutboxEvent.EventType.VET_REVIEW_REQUEST,
    OutboxEvent.EventType.PRESCRIPTION_EMAIL,
    OutboxEvent.EventType.REJECTION_EMAIL,
)
DOCUMENT_EVENTS = (
    OutboxEvent.EventType.CONFIRMATION_DOCUMENT,
    OutboxEvent.EventType.APPROVAL_DOCUMENTS,
)


class SideEffectError(Exception):
    """A side effect (email, PDF) could not be completed."""


def enqueue(record, event_type, payload=None):
    """
    Queue a side effect for ``record``.

    Must be called inside the transition's transaction; the worker is only
    notified after that transaction commits.
    """
    event = OutboxEvent.objects.create(
        event_type=event_type,
        feed_administration=record,
        payload=payload or {},
    )

    def _notify_worker():
        from ..tasks import process_outbox_event
        try:
            process_outbox_event.delay(str(event.id))
        except Exception as e:
            # Left PENDING; redrive_candidates() picks it up once stale
            logger.error(f"Could not hand outbox event {event.id} to the worker: {e}")

    transaction.on_commit(_notify_worker)
    logger.debug(f"Queued {event_type} for feed administration {record.id}")
    return event


def _stale_before():
    return timezone.now() - timedelta(minutes=settings.OUTBOX_RETRY_AFTER_MINUTES)


def redrive_candidates():
    """FAILED events with attempts left, plus PENDING or PROCESSING events gone stale."""
    stale_before = _stale_before()
    return OutboxEvent.objects.filter(
        Q(status=OutboxEvent.Status.FAILED, attempts__lt=settings.OUTBOX_MAX_ATTEMPTS) |
        Q(status=OutboxEvent.Status.PENDING, created_at__lt=stale_before) |
        Q(status=OutboxEvent.Status.PROCESSING, claimed_at__lt=stale_before)
    ).order_by('created_at')


class OutboxDispatcher:
    """Executes outbox events."""

    def __init__(self):
        self.notification_service = FeedAdministrationNotificationService()
        self.handlers = {
            OutboxEvent.EventType.CONFIRMATION_DOCUMENT: self._confirmation_document,
            OutboxEvent.EventType.VET_REVIEW_REQUEST: self._vet_review_request,
            OutboxEvent.EventType.APPROVAL_DOCUMENTS: self._approval_documents,
            OutboxEvent.EventType.PRESCRIPTION_EMAIL: self._prescription_email,
            OutboxEvent.EventType.REJECTION_EMAIL: self._rejection_email,
        }

    def dispatch_by_id(self, event_id):
        """
        Claim the event, then dispatch it. Returns True on success.

        The row lock is held only while claiming; the handler runs after
        the claim commits so slow SMTP or PDF rendering holds no locks.
        """
        event = self.claim(event_id)
        if event is None:
            return False
        return self.dispatch(event)

    def claim(self, event_id):
        """
        Mark the event PROCESSING. Returns None when it does not exist or
        another worker holds a fresh claim on it.
        """
        with transaction.atomic():
            event = (
                OutboxEvent.objects.select_for_update()
                .filter(pk=event_id)
                .first()
            )
            if event is None:
                logger.warning(f"Outbox event {event_id} not found")
                return None
            if event.status == OutboxEvent.Status.COMPLETED:
                return event
            if event.status == OutboxEvent.Status.PROCESSING and event.claimed_at >= _stale_before():
                logger.info(f"Outbox event {event_id} is already being processed")
                return None
            event.mark_processing()
            return event

    def dispatch(self, event):
        if event.status == OutboxEvent.Status.COMPLETED:
            return True

        record = event.feed_administration
        if record is None:
            # Record deleted before the side effect ran
            logger.info(f"Skipping outbox event {event.id}: feed administration no longer exists")
            event.mark_completed()
            return True

        handler = self.handlers[event.event_type]
        try:
            with transaction.atomic():
                handler(record, event)
        except Exception as e:
            logger.error(
                f"Side effect {event.event_type} failed for feed administration {record.id} "
                f"(attempt {event.attempts + 1}): {e}"
            )
            event.mark_failed(e)
            self._record_failure(record, event, e)
            return False

        event.mark_completed()
        self._clear_failure(record, event)
        logger.info(f"Side effect {event.event_type} completed for feed administration {record.id}")
        return True

    # ------------------------------------------------------------------
    # Error bookkeeping on the record
    # ------------------------------------------------------------------

    def _error_field(self, event):
        return 'email_error' if event.event_type in EMAIL_EVENTS else 'document_error'

    def _record_failure(self, record, event, error):
        field = self._error_field(event)
        message = f"{event.get_event_type_display()}: {error}"
        FeedAdministration.objects.filter(pk=record.pk).update(**{field: message})

    def _clear_failure(self, record, event):
        field = self._error_field(event)
        same_kind = EMAIL_EVENTS if field == 'email_error' else DOCUMENT_EVENTS
        still_failing = record.outbox_events.filter(
            status=OutboxEvent.Status.FAILED,
            event_type__in=same_kind,
        ).exists()
        if not still_failing:
            FeedAdministration.objects.filter(pk=record.pk).update(**{field: ''})

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _store_document(self, record, document_type, pdf_bytes):
        document = AdministrationDocument(feed_administration=record, document_type=document_type)
        filename = f"{document_type.lower()}_{timezone.now().strftime('%Y%m%d%H%M%S')}.pdf"
        document.file.save(filename, ContentFile(pdf_bytes), save=True)
        return document

    def _send(self, result):
        if not result['success']:
            raise SideEffectError(result['error'])

    def _confirmation_document(self, record, event):
        pdf = documents.build_confirmation_pdf(record)
        self._store_document(record, AdministrationDocument.DocumentType.CONFIRMATION, pdf)

    def _vet_review_request(self, record, event):
        if record.farmer.assigned_vet is None:
            logger.info(f"No assigned vet for farmer {record.farmer_id}; review request skipped")
            return
        self._send(self.notification_service.send_vet_review_request(record))

    def _approval_documents(self, record, event):
        self._store_document(
            record,
            AdministrationDocument.DocumentType.VET_APPROVAL,
            documents.build_vet_approval_pdf(record),
        )
        self._store_document(
            record,
            AdministrationDocument.DocumentType.FARMER_APPROVAL,
            documents.build_farmer_approval_pdf(record),
        )

    def _prescription_email(self, record, event):
        prescription = record.prescription
        pdf = documents.build_prescription_pdf(record, prescription)
        if not record.documents.filter(document_type=AdministrationDocument.DocumentType.PRESCRIPTION).exists():
            self._store_document(record, AdministrationDocument.DocumentType.PRESCRIPTION, pdf)
        if not record.farmer.email:
            logger.warning(f"Farmer {record.farmer_id} has no email; prescription not mailed")
            return
        self._send(self.notification_service.send_prescription_email(record, prescription, pdf))

    def _rejection_email(self, record, event):
        if not record.farmer.email:
            logger.warning(f"Farmer {record.farmer_id} has no email; rejection notice not mailed")
            return
        self._send(self.notification_service.send_rejection_email(record))
