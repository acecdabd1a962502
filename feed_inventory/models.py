"""
Feed Inventory Models

This module tracks feed batches held by farmers, medicated and
non-medicated, and the journal of quantity movements against them.

Models:
    - FeedBatch: A purchased feed batch with remaining quantity, expiry
      and (for medicated feed) its antimicrobial and withdrawal period
    - FeedBatchMovement: Ledger journal entry for every consume/restore

remaining_quantity is only ever changed through feed_inventory.ledger.
"""

import uuid
from decimal import Decimal
from django.conf import settings
from django.core.validators import MinValueValidator
from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import F, Q
from django.utils import timezone


class FeedBatch(models.Model):
    """
    A feed batch owned by a farmer.

    Medicated batches (prescription_required=True) must name their active
    antimicrobial, its concentration and a withdrawal period.
    """

    class FeedType(models.TextChoices):
        STARTER = 'Starter', 'Starter'
        GROWER = 'Grower', 'Grower'
        FINISHER = 'Finisher', 'Finisher'
        MEDICATED = 'Medicated', 'Medicated'
        SUPPLEMENT = 'Supplement', 'Supplement'
        OTHER = 'Other', 'Other'

    class ConcentrationUnit(models.TextChoices):
        MG_PER_KG = 'mg/kg', 'mg/kg'
        G_PER_KG = 'g/kg', 'g/kg'
        PPM = 'ppm', 'ppm'

    class Unit(models.TextChoices):
        KG = 'kg', 'kg'
        TONS = 'tons', 'tons'
        LBS = 'lbs', 'lbs'

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    farmer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='feed_batches',
        help_text="Farmer who owns this feed batch"
    )

    # Basic Information
    feed_name = models.CharField(max_length=100, help_text="Name of the feed (e.g., 'Broiler Starter + OTC')")
    feed_type = models.CharField(max_length=20, choices=FeedType.choices, default=FeedType.OTHER)
    batch_number = models.CharField(max_length=50, blank=True, help_text="Manufacturer batch/lot number")
    manufacturer = models.CharField(max_length=100, blank=True)
    supplier = models.CharField(max_length=200, blank=True)

    # Antimicrobial content
    prescription_required = models.BooleanField(
        default=True,
        help_text="Medicated feed: administrations need veterinary approval"
    )
    antimicrobial_name = models.CharField(
        max_length=100,
        blank=True,
        help_text="Active antimicrobial ingredient (required for medicated feed)"
    )
    antimicrobial_concentration = models.DecimalField(
        max_digits=10,
        decimal_places=3,
        null=True,
        blank=True,
        validators=[MinValueValidator(Decimal('0'))],
        help_text="Antimicrobial concentration in the feed"
    )
    concentration_unit = models.CharField(
        max_length=10,
        choices=ConcentrationUnit.choices,
        default=ConcentrationUnit.MG_PER_KG
    )
    withdrawal_period_days = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text="Days animals must be withheld from sale after the last feeding"
    )
    target_species = models.JSONField(default=list, blank=True, help_text="Species this feed is intended for")

    # Quantities
    total_quantity = models.DecimalField(
        max_digits=12,
        decimal_places=3,
        validators=[MinValueValidator(Decimal('0.001'))],
        help_text="Quantity purchased"
    )
    remaining_quantity = models.DecimalField(
        max_digits=12,
        decimal_places=3,
        validators=[MinValueValidator(Decimal('0'))],
        help_text="Quantity still in stock"
    )
    unit = models.CharField(max_length=10, choices=Unit.choices, default=Unit.KG)
    cost_per_unit = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        null=True,
        blank=True,
        validators=[MinValueValidator(Decimal('0.00'))]
    )

    # Dates
    purchase_date = models.DateField(default=timezone.localdate)
    expiry_date = models.DateField(help_text="Feed must not be administered after this date")

    # Status
    is_active = models.BooleanField(default=True, help_text="Available for new administrations")
    depleted_at = models.DateTimeField(null=True, blank=True, help_text="When the batch ran out")
    notes = models.TextField(blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        verbose_name = 'Feed Batch'
        verbose_name_plural = 'Feed Batches'
        indexes = [
            models.Index(fields=['farmer', 'is_active']),
            models.Index(fields=['expiry_date']),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(remaining_quantity__gte=0) & Q(remaining_quantity__lte=F('total_quantity')),
                name='feed_batch_remaining_within_total',
            ),
            models.CheckConstraint(
                condition=Q(remaining_quantity__gt=0) | Q(is_active=False),
                name='feed_batch_empty_is_inactive',
            ),
        ]

    def __str__(self):
        return f"{self.feed_name} ({self.remaining_quantity}/{self.total_quantity} {self.unit})"

    def save(self, *args, **kwargs):
        # New batches start full
        if self._state.adding and self.remaining_quantity is None:
            self.remaining_quantity = self.total_quantity
        super().save(*args, **kwargs)

    def clean(self):
        """Validate feed batch data."""
        errors = {}

        if self.prescription_required:
            if not self.antimicrobial_name:
                errors['antimicrobial_name'] = 'Antimicrobial name is required for medicated feed'
            if self.antimicrobial_concentration is None:
                errors['antimicrobial_concentration'] = 'Antimicrobial concentration is required for medicated feed'
            elif self.antimicrobial_concentration < 0:
                errors['antimicrobial_concentration'] = 'Antimicrobial concentration cannot be negative'
            if self.withdrawal_period_days is None:
                errors['withdrawal_period_days'] = 'Withdrawal period is required for medicated feed'

        if self.total_quantity is not None and self.remaining_quantity is not None:
            if self.remaining_quantity < 0:
                errors['remaining_quantity'] = 'Remaining quantity cannot be negative'
            elif self.remaining_quantity > self.total_quantity:
                errors['remaining_quantity'] = 'Remaining quantity cannot exceed total quantity'
            elif self.remaining_quantity == 0 and self.is_active:
                errors['is_active'] = 'An empty feed batch cannot be active'

        if self.expiry_date and self.purchase_date and self.expiry_date <= self.purchase_date:
            errors['expiry_date'] = 'Expiry date must be after purchase date'

        if errors:
            raise ValidationError(errors)

    @property
    def is_expired(self):
        return self.expiry_date < timezone.localdate()

    @property
    def is_expiring_soon(self):
        days_left = (self.expiry_date - timezone.localdate()).days
        return 0 <= days_left <= settings.FEED_EXPIRING_SOON_DAYS

    @property
    def is_low_stock(self):
        if not self.total_quantity:
            return False
        ratio = Decimal(str(settings.FEED_LOW_STOCK_RATIO))
        return self.remaining_quantity < self.total_quantity * ratio

    @property
    def consumed_quantity(self):
        return self.total_quantity - self.remaining_quantity

    @property
    def total_antimicrobial_content(self):
        """Antimicrobial still in stock (remaining quantity x concentration)."""
        if not self.prescription_required or self.antimicrobial_concentration is None:
            return Decimal('0')
        return self.remaining_quantity * self.antimicrobial_concentration


class FeedBatchMovement(models.Model):
    """
    Journal of quantity changes on a feed batch.

    Each administration record produces at most one CONSUME and at most one
    RESTORE movement; the partial unique constraint rejects a second restore.
    """

    class MovementType(models.TextChoices):
        CONSUME = 'CONSUME', 'Consumed'
        RESTORE = 'RESTORE', 'Restored'

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    batch = models.ForeignKey(
        FeedBatch,
        on_delete=models.CASCADE,
        related_name='movements'
    )
    movement_type = models.CharField(max_length=10, choices=MovementType.choices)
    quantity = models.DecimalField(
        max_digits=12,
        decimal_places=3,
        help_text="Signed quantity: negative for consumption, positive for restoration"
    )
    balance_after = models.DecimalField(
        max_digits=12,
        decimal_places=3,
        help_text="Remaining quantity after this movement"
    )
    administration_id = models.UUIDField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Feed administration record this movement belongs to"
    )
    notes = models.TextField(blank=True)
    recorded_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='feed_batch_movements'
    )
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        db_table = 'feed_batch_movements'
        ordering = ['-created_at']
        verbose_name = 'Feed Batch Movement'
        verbose_name_plural = 'Feed Batch Movements'
        constraints = [
            models.UniqueConstraint(
                fields=['administration_id', 'movement_type'],
                condition=Q(administration_id__isnull=False),
                name='feed_movement_once_per_administration',
            ),
        ]

    def __str__(self):
        sign = '+' if self.quantity > 0 else ''
        return f"{self.get_movement_type_display()}: {sign}{self.quantity} {self.batch.unit} ({self.batch.feed_name})"
