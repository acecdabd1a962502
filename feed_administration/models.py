"""
Feed Administration Models

Models:
    - FeedAdministration: A feeding program drawing a quantity from one
      feed batch for a set of animals. Medicated programs wait in
      "Pending Approval" until a veterinarian approves or rejects them.
    - Prescription: Compliance artifact issued when a vet approves
    - AdministrationDocument: Generated PDFs (confirmation, approval, prescription)
    - OutboxEvent: Side effects (PDFs, emails) queued by a transition and
      executed after commit by a Celery worker
"""

import uuid
from datetime import timedelta
from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone
from decimal import Decimal


class FeedAdministration(models.Model):
    """
    A feed administration record.

    Lifecycle:
        Pending Approval -> Active     (vet approve)
        Pending Approval -> Rejected   (vet reject; stock restored)
        Active           -> Completed  (farmer complete)
    Non-medicated feed starts directly in Active. A pending record may be
    deleted by its farmer (stock restored).
    """

    class Status(models.TextChoices):
        PENDING_APPROVAL = 'Pending Approval', 'Pending Approval'
        ACTIVE = 'Active', 'Active'
        REJECTED = 'Rejected', 'Rejected'
        COMPLETED = 'Completed', 'Completed'

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    farmer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='feed_administrations',
        help_text="Farmer who owns the animals and the feed"
    )
    feed = models.ForeignKey(
        'feed_inventory.FeedBatch',
        on_delete=models.PROTECT,
        related_name='administrations',
        help_text="Feed batch the quantity was drawn from"
    )
    animals = models.ManyToManyField(
        'animals.Animal',
        related_name='feed_administrations',
        help_text="Animals receiving the feed"
    )
    group_name = models.CharField(max_length=100, blank=True, help_text="Pen/group label for group feeding")
    number_of_animals = models.PositiveIntegerField(default=0)

    # Quantities
    feed_quantity_used = models.DecimalField(
        max_digits=12,
        decimal_places=3,
        validators=[MinValueValidator(Decimal('0.001'))],
        help_text="Quantity consumed from the feed batch"
    )
    antimicrobial_dose_total = models.DecimalField(
        max_digits=14,
        decimal_places=3,
        null=True,
        blank=True,
        help_text="Total antimicrobial administered (quantity x concentration)"
    )

    # Dates
    administration_date = models.DateTimeField(default=timezone.now)
    start_date = models.DateField(default=timezone.localdate)
    end_date = models.DateField(null=True, blank=True)
    withdrawal_end_date = models.DateField(null=True, blank=True, db_index=True)

    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.PENDING_APPROVAL,
        db_index=True
    )

    # Veterinary review
    vet = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='reviewed_feed_administrations',
        help_text="Veterinarian responsible for the review"
    )
    vet_approved = models.BooleanField(default=False)
    vet_approval_date = models.DateTimeField(null=True, blank=True)
    approved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='approved_feed_administrations'
    )
    rejected_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='rejected_feed_administrations'
    )
    rejection_reason = models.TextField(blank=True)

    # MRL follow-up
    requires_mrl_test = models.BooleanField(default=False)
    expected_mrl_clearance_date = models.DateField(null=True, blank=True)

    # Ledger and side-effect bookkeeping
    stock_restored_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the consumed quantity was returned to the batch (reject)"
    )
    email_error = models.TextField(blank=True, help_text="Last email delivery failure")
    document_error = models.TextField(blank=True, help_text="Last PDF generation failure")

    notes = models.TextField(blank=True)

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        related_name='created_feed_administrations'
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-start_date', '-created_at']
        verbose_name = 'Feed Administration'
        verbose_name_plural = 'Feed Administrations'
        indexes = [
            models.Index(fields=['farmer', 'status']),
            models.Index(fields=['status', 'withdrawal_end_date']),
        ]

    def __str__(self):
        return f"{self.feed.feed_name} - {self.number_of_animals} animal(s) [{self.status}]"

    @property
    def is_medicated(self):
        return self.feed.prescription_required

    @property
    def animal_ids(self):
        return [animal.tag_id for animal in self.animals.all()]

    @property
    def is_withdrawal_active(self):
        return bool(self.withdrawal_end_date and self.withdrawal_end_date > timezone.localdate())

    @property
    def is_safe_for_sale(self):
        return not self.is_withdrawal_active

    @property
    def days_until_withdrawal_end(self):
        if not self.withdrawal_end_date:
            return 0
        return max((self.withdrawal_end_date - timezone.localdate()).days, 0)

    def compute_withdrawal_end_date(self):
        """
        End of the withdrawal period: last feeding day (end date, or start
        date while the program is still running) plus the feed's withdrawal days.
        """
        days = self.feed.withdrawal_period_days or 0
        if days <= 0:
            return None
        return (self.end_date or self.start_date) + timedelta(days=days)


class Prescription(models.Model):
    """Prescription issued for an approved medicated feed administration."""

    class Status(models.TextChoices):
        ISSUED = 'Issued', 'Issued'
        CANCELLED = 'Cancelled', 'Cancelled'

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    feed_administration = models.OneToOneField(
        FeedAdministration,
        on_delete=models.CASCADE,
        related_name='prescription'
    )
    farmer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='feed_prescriptions'
    )
    vet = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='issued_feed_prescriptions'
    )
    issue_date = models.DateTimeField(default=timezone.now)
    status = models.CharField(max_length=10, choices=Status.choices, default=Status.ISSUED)
    notes = models.TextField(blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-issue_date']
        verbose_name = 'Prescription'
        verbose_name_plural = 'Prescriptions'

    def __str__(self):
        return f"Prescription {str(self.id)[:8]} - {self.feed_administration.feed.feed_name}"


def document_upload_path(instance, filename):
    return f"feed_administrations/{instance.feed_administration_id}/{filename}"


class AdministrationDocument(models.Model):
    """A PDF generated for a feed administration."""

    class DocumentType(models.TextChoices):
        CONFIRMATION = 'CONFIRMATION', 'Farmer Confirmation'
        VET_APPROVAL = 'VET_APPROVAL', 'Veterinarian Approval Record'
        FARMER_APPROVAL = 'FARMER_APPROVAL', 'Farmer Approval Notice'
        PRESCRIPTION = 'PRESCRIPTION', 'Prescription'

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    feed_administration = models.ForeignKey(
        FeedAdministration,
        on_delete=models.CASCADE,
        related_name='documents'
    )
    document_type = models.CharField(max_length=20, choices=DocumentType.choices)
    file = models.FileField(upload_to=document_upload_path)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']
        verbose_name = 'Administration Document'
        verbose_name_plural = 'Administration Documents'

    def __str__(self):
        return f"{self.get_document_type_display()} ({self.feed_administration_id})"


class OutboxEvent(models.Model):
    """
    A side effect to run after a workflow transition commits.

    Created in the same transaction as the transition, so an event exists
    if and only if the transition committed.
    """

    class EventType(models.TextChoices):
        CONFIRMATION_DOCUMENT = 'CONFIRMATION_DOCUMENT', 'Confirmation Document'
        VET_REVIEW_REQUEST = 'VET_REVIEW_REQUEST', 'Vet Review Request'
        APPROVAL_DOCUMENTS = 'APPROVAL_DOCUMENTS', 'Approval Documents'
        PRESCRIPTION_EMAIL = 'PRESCRIPTION_EMAIL', 'Prescription Email'
        REJECTION_EMAIL = 'REJECTION_EMAIL', 'Rejection Email'

    class Status(models.TextChoices):
        PENDING = 'PENDING', 'Pending'
        PROCESSING = 'PROCESSING', 'Processing'
        COMPLETED = 'COMPLETED', 'Completed'
        FAILED = 'FAILED', 'Failed'

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    event_type = models.CharField(max_length=30, choices=EventType.choices)
    feed_administration = models.ForeignKey(
        FeedAdministration,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='outbox_events'
    )
    payload = models.JSONField(default=dict, blank=True)
    status = models.CharField(max_length=10, choices=Status.choices, default=Status.PENDING, db_index=True)
    attempts = models.PositiveSmallIntegerField(default=0)
    last_error = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    claimed_at = models.DateTimeField(null=True, blank=True)
    processed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['created_at']
        verbose_name = 'Outbox Event'
        verbose_name_plural = 'Outbox Events'
        indexes = [
            models.Index(fields=['status', 'created_at']),
        ]

    def __str__(self):
        return f"{self.get_event_type_display()} [{self.status}]"

    def mark_processing(self):
        self.status = self.Status.PROCESSING
        self.claimed_at = timezone.now()
        self.save(update_fields=['status', 'claimed_at'])

    def mark_completed(self):
        self.status = self.Status.COMPLETED
        self.attempts += 1
        self.last_error = ''
        self.processed_at = timezone.now()
        self.save(update_fields=['status', 'attempts', 'last_error', 'processed_at'])

    def mark_failed(self, error):
        self.status = self.Status.FAILED
        self.attempts += 1
        self.last_error = str(error)
        self.processed_at = timezone.now()
        self.save(update_fields=['status', 'attempts', 'last_error', 'processed_at'])
