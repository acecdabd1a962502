"""
Feed inventory ledger.

The only code allowed to change FeedBatch.remaining_quantity. Both
operations are single conditional UPDATE statements, so concurrent requests
against one batch are serialized by the database row lock instead of a
read-modify-write in Python:

    consume:  remaining -= q   WHERE remaining >= q
    restore:  remaining += q   WHERE remaining + q <= total

Every change is journaled as a FeedBatchMovement. A given administration
record can consume once and restore once.
"""

import logging
from decimal import Decimal, InvalidOperation

from django.db import transaction
from django.db.models import Case, F, Value, When
from django.utils import timezone

from core.exceptions import NotFound, ValidationFailed
from .exceptions import InsufficientQuantity, LedgerError, format_quantity
from .models import FeedBatch, FeedBatchMovement

logger = logging.getLogger(__name__)

QUANTITY_PRECISION = Decimal('0.001')


def to_quantity(value):
    """Coerce user input to a positive Decimal quantity."""
    try:
        quantity = Decimal(str(value)).quantize(QUANTITY_PRECISION)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationFailed('Valid feed quantity is required')
    if not quantity.is_finite() or quantity <= 0:
        raise ValidationFailed('Valid feed quantity is required')
    return quantity


def _refresh(batch):
    batch.refresh_from_db(fields=['remaining_quantity', 'is_active', 'depleted_at', 'updated_at'])


@transaction.atomic
def consume(batch, quantity, administration_id=None, recorded_by=None, notes=''):
    """
    Atomically take ``quantity`` out of ``batch``.

    Raises:
        InsufficientQuantity: remaining stock is below the requested amount
        NotFound: the batch no longer exists

    Returns:
        FeedBatchMovement: the CONSUME journal entry
    """
    quantity = to_quantity(quantity)
    now = timezone.now()

    # A batch emptied by this call is deactivated in the same statement
    updated = FeedBatch.objects.filter(
        pk=batch.pk,
        remaining_quantity__gte=quantity,
    ).update(
        remaining_quantity=F('remaining_quantity') - quantity,
        is_active=Case(When(remaining_quantity=quantity, then=Value(False)), default=F('is_active')),
        depleted_at=Case(When(remaining_quantity=quantity, then=Value(now)), default=F('depleted_at')),
        updated_at=now,
    )

    if not updated:
        current = FeedBatch.objects.filter(pk=batch.pk).values_list('remaining_quantity', flat=True).first()
        if current is None:
            raise NotFound('Feed not found')
        logger.warning(
            f"Insufficient stock on feed batch {batch.pk}: available {current}, requested {quantity}"
        )
        raise InsufficientQuantity(available=current, requested=quantity, unit=batch.unit)

    _refresh(batch)
    movement = FeedBatchMovement.objects.create(
        batch=batch,
        movement_type=FeedBatchMovement.MovementType.CONSUME,
        quantity=-quantity,
        balance_after=batch.remaining_quantity,
        administration_id=administration_id,
        recorded_by=recorded_by,
        notes=notes,
    )

    if not batch.is_active:
        logger.info(f"Feed batch {batch.pk} ({batch.feed_name}) depleted and deactivated")
    logger.info(
        f"Consumed {format_quantity(quantity)} {batch.unit} from feed batch {batch.pk}; "
        f"remaining {format_quantity(batch.remaining_quantity)}"
    )
    return movement


@transaction.atomic
def restore(batch, quantity, administration_id=None, recorded_by=None, notes=''):
    """
    Atomically return ``quantity`` to ``batch``.

    Used only to reverse a prior consume for the same administration record.
    A batch that was deactivated by running empty becomes active again.

    Raises:
        LedgerError: the record was already restored, or the batch would
            exceed its total quantity

    Returns:
        FeedBatchMovement: the RESTORE journal entry
    """
    quantity = to_quantity(quantity)

    if administration_id is not None and FeedBatchMovement.objects.filter(
        administration_id=administration_id,
        movement_type=FeedBatchMovement.MovementType.RESTORE,
    ).exists():
        raise LedgerError('Feed stock for this administration has already been restored')

    now = timezone.now()
    updated = FeedBatch.objects.filter(
        pk=batch.pk,
        remaining_quantity__lte=F('total_quantity') - quantity,
    ).update(
        remaining_quantity=F('remaining_quantity') + quantity,
        is_active=Case(When(depleted_at__isnull=False, then=Value(True)), default=F('is_active')),
        depleted_at=None,
        updated_at=now,
    )

    if not updated:
        if not FeedBatch.objects.filter(pk=batch.pk).exists():
            raise NotFound('Feed not found')
        logger.error(f"Restore of {quantity} on feed batch {batch.pk} would exceed its total quantity")
        raise LedgerError('Cannot restore more feed than the batch originally held')

    _refresh(batch)
    movement = FeedBatchMovement.objects.create(
        batch=batch,
        movement_type=FeedBatchMovement.MovementType.RESTORE,
        quantity=quantity,
        balance_after=batch.remaining_quantity,
        administration_id=administration_id,
        recorded_by=recorded_by,
        notes=notes,
    )
    logger.info(
        f"Restored {format_quantity(quantity)} {batch.unit} to feed batch {batch.pk}; "
        f"remaining {format_quantity(batch.remaining_quantity)}"
    )
    return movement
