"""
Feed Administration Workflow Service

State machine for feed administration records:

    create    (farmer)  -> Active (non-medicated) | Pending Approval (medicated)
    approve   (vet)     Pending Approval -> Active
    reject    (vet)     Pending Approval -> Rejected     (stock restored)
    complete  (farmer)  Active -> Completed
    delete    (farmer)  Pending Approval -> (removed)    (stock restored)
    update    (farmer/vet) descriptive fields only

Each operation is one database transaction: the record row is locked,
the ledger is consumed/restored, animals are updated, the audit entry is
written and side effects are queued on the outbox. Side effects run only
after commit, so their failure can never undo a transition.
"""

import logging
from datetime import date, datetime
from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.utils import timezone

from animals.models import Animal
from audit.models import AuditLog
from audit.services import create_audit_log
from core.exceptions import BusinessRuleViolation, NotFound, PermissionDenied, ValidationFailed
from feed_inventory import ledger
from feed_inventory.exceptions import InsufficientQuantity, LedgerError
from feed_inventory.models import FeedBatch
from ..exceptions import StatusTransitionError
from ..models import FeedAdministration, OutboxEvent, Prescription
from ..serializers import FeedAdministrationSerializer
from . import outbox
from .eligibility import ensure_eligible

logger = logging.getLogger(__name__)

Status = FeedAdministration.Status

# Valid status transitions for FeedAdministration
ADMINISTRATION_STATUS_TRANSITIONS = {
    Status.PENDING_APPROVAL: [Status.ACTIVE, Status.REJECTED],
    Status.ACTIVE: [Status.COMPLETED],
    Status.REJECTED: [],
    Status.COMPLETED: [],
}

# Fields a generic update may change
EDITABLE_FIELDS = ('group_name', 'notes', 'start_date', 'expected_mrl_clearance_date', 'requires_mrl_test')

# Ownership references are fixed at creation
OWNERSHIP_FIELDS = {'farmer', 'farmer_id', 'feed', 'feed_id'}

# Changed only through their own transitions
TRANSITION_FIELDS = {
    'status', 'feed_quantity_used', 'antimicrobial_dose_total', 'vet', 'vet_approved',
    'vet_approval_date', 'approved_by', 'rejected_by', 'rejection_reason',
    'withdrawal_end_date', 'end_date', 'stock_restored_at', 'animal_ids', 'animals',
}


def validate_status_transition(current_status, new_status, transitions=ADMINISTRATION_STATUS_TRANSITIONS,
                               resource_type='feed administration'):
    """
    Validate that a status transition is allowed.

    Raises:
        StatusTransitionError if transition is invalid
    """
    valid_transitions = transitions.get(current_status, [])
    if new_status not in valid_transitions:
        raise StatusTransitionError(
            f"Invalid {resource_type} status transition: {current_status} -> {new_status}. "
            f"Valid transitions: {[str(s) for s in valid_transitions]}",
            current_status=current_status,
            requested_status=new_status,
        )
    return True


def parse_date(value, field_name='date'):
    """Parse an ISO date (or datetime) string. Empty values give None."""
    if value in (None, ''):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        raise ValidationFailed(f"Invalid {field_name}: expected YYYY-MM-DD")


def _to_bool(value):
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on')


def _append_note(notes, line):
    return f"{notes}\n{line}".strip() if notes else line


def snapshot(record):
    """JSON-ready state of a record for the audit log."""
    return dict(FeedAdministrationSerializer(record).data)


class FeedAdministrationWorkflowService:
    """Service for the feed administration state machine."""

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _lock_record(self, record_id):
        """Fetch a record with a row lock held until the transaction ends."""
        try:
            return (
                FeedAdministration.objects.select_for_update()
                .get(pk=record_id)
            )
        except (FeedAdministration.DoesNotExist, DjangoValidationError, ValueError):
            raise NotFound('Feed administration not found')

    def _get_feed(self, feed_id):
        try:
            return FeedBatch.objects.get(pk=feed_id)
        except (FeedBatch.DoesNotExist, DjangoValidationError, ValueError):
            raise NotFound('Feed not found')

    def _require_status(self, record, expected, message):
        if record.status != expected:
            raise StatusTransitionError(message, current_status=record.status, requested_status=None)

    def _transition(self, record, new_status):
        validate_status_transition(record.status, new_status)
        old_status = record.status
        record.status = new_status
        logger.info(f"Feed administration {record.id}: {old_status} -> {new_status}")

    def _restore_stock(self, record, caller, reason):
        """Return the consumed quantity to the batch. At most once per record."""
        if record.stock_restored_at is not None:
            raise LedgerError('Feed stock for this administration has already been restored')
        ledger.restore(
            record.feed,
            record.feed_quantity_used,
            administration_id=record.id,
            recorded_by=caller.user,
            notes=reason,
        )
        record.stock_restored_at = timezone.now()

    def _clear_new_markers(self, animal_pks):
        Animal.objects.filter(pk__in=animal_pks, is_new=True).update(is_new=False, updated_at=timezone.now())

    def _audit(self, record, caller, event_type, data, changes=None, metadata=None):
        create_audit_log(
            event_type=event_type,
            entity_type=AuditLog.EntityType.FEED_ADMINISTRATION,
            entity_id=record.id,
            farmer=record.farmer,
            performed_by=caller.user,
            performed_by_role=caller.role,
            data_snapshot=data,
            changes=changes,
            metadata=metadata,
        )

    def can_edit(self, caller, record):
        if caller.is_farmer:
            return record.farmer_id == caller.id
        if caller.is_veterinarian:
            return record.farmer.assigned_vet_id == caller.id or record.vet_id == caller.id
        return False

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    @transaction.atomic
    def create_administration(self, caller, data):
        """
        Record a feed administration for one or more animals.

        Args:
            caller: Caller (must be a farmer)
            data: dict with feed_id, animal_ids, feed_quantity_used and
                optional start_date, group_name, notes

        Returns:
            FeedAdministration
        """
        if not caller.is_farmer:
            raise PermissionDenied('Only farmers can record feed administrations')

        feed_id = data.get('feed_id') or data.get('feed')
        if not feed_id:
            raise ValidationFailed('Feed selection is required')

        animal_ids = data.get('animal_ids') or []
        if isinstance(animal_ids, str):
            animal_ids = [animal_ids]
        animal_ids = list(dict.fromkeys(str(tag).strip() for tag in animal_ids if str(tag).strip()))
        if not animal_ids:
            raise ValidationFailed('At least one animal must be selected')

        quantity = ledger.to_quantity(data.get('feed_quantity_used'))
        start_date = parse_date(data.get('start_date'), 'start date') or timezone.localdate()

        feed = self._get_feed(feed_id)
        if feed.farmer_id != caller.id:
            raise PermissionDenied('Not authorized to use this feed')
        if not feed.is_active:
            raise BusinessRuleViolation('This feed batch is not active')
        if feed.is_expired:
            raise BusinessRuleViolation(f"This feed batch expired on {feed.expiry_date.isoformat()}")
        if quantity > feed.remaining_quantity:
            raise InsufficientQuantity(available=feed.remaining_quantity, requested=quantity, unit=feed.unit)

        animals = list(Animal.objects.filter(farmer=caller.user, tag_id__in=animal_ids))
        missing = sorted(set(animal_ids) - {animal.tag_id for animal in animals})
        if missing:
            raise NotFound('One or more animals not found or not owned by you', missing_animal_ids=missing)

        medicated = feed.prescription_required
        if medicated:
            ensure_eligible(animals, caller.user)

        farmer = caller.user
        record = FeedAdministration(
            farmer=farmer,
            feed=feed,
            group_name=data.get('group_name') or '',
            number_of_animals=len(animals),
            feed_quantity_used=quantity,
            antimicrobial_dose_total=(
                quantity * feed.antimicrobial_concentration
                if medicated and feed.antimicrobial_concentration is not None else None
            ),
            start_date=start_date,
            status=Status.PENDING_APPROVAL if medicated else Status.ACTIVE,
            vet=farmer.assigned_vet if medicated else None,
            requires_mrl_test=medicated and (feed.withdrawal_period_days or 0) > 0,
            notes=data.get('notes') or '',
            created_by=farmer,
        )
        record.withdrawal_end_date = record.compute_withdrawal_end_date()
        record.expected_mrl_clearance_date = record.withdrawal_end_date
        record.save()
        record.animals.set(animals)

        # Stock leaves the batch in the same transaction as the record
        ledger.consume(
            feed,
            quantity,
            administration_id=record.id,
            recorded_by=farmer,
            notes=f"Feed administration {record.id}",
        )

        self._clear_new_markers([animal.pk for animal in animals])

        self._audit(record, caller, AuditLog.EventType.CREATE, snapshot(record))

        outbox.enqueue(record, OutboxEvent.EventType.CONFIRMATION_DOCUMENT)
        if medicated and farmer.assigned_vet_id:
            outbox.enqueue(record, OutboxEvent.EventType.VET_REVIEW_REQUEST)

        logger.info(
            f"Feed administration {record.id} created by farmer {farmer.id}: "
            f"{quantity} {feed.unit} of {feed.feed_name} for {len(animals)} animal(s) [{record.status}]"
        )
        return record

    @transaction.atomic
    def approve(self, caller, record_id, notes=''):
        """
        Vet approval of a pending medicated feed administration.

        Animals are re-checked for eligibility (unless
        FEED_ADMIN_REVALIDATE_ON_APPROVE is off); a degraded animal fails the
        approval and the record stays pending.
        """
        if not caller.is_veterinarian:
            raise PermissionDenied('Only veterinarians can approve feed administrations')

        record = self._lock_record(record_id)
        self._require_status(record, Status.PENDING_APPROVAL, 'This administration is not pending approval')

        animals = list(record.animals.all())
        if record.is_medicated and settings.FEED_ADMIN_REVALIDATE_ON_APPROVE:
            ensure_eligible(animals, record.farmer)

        self._transition(record, Status.ACTIVE)
        now = timezone.now()
        record.vet_approved = True
        record.vet_approval_date = now
        record.approved_by = caller.user
        record.vet = caller.user
        if notes:
            record.notes = _append_note(record.notes, f"Vet notes: {notes}")
        record.save()

        Prescription.objects.create(
            feed_administration=record,
            farmer=record.farmer,
            vet=caller.user,
            issue_date=now,
            notes=notes or '',
        )

        self._clear_new_markers([animal.pk for animal in animals])

        feed = record.feed
        if feed.prescription_required and (feed.withdrawal_period_days or 0) > 0 and record.withdrawal_end_date:
            for animal in animals:
                animal.refresh_from_db(fields=['in_withdrawal', 'withdrawal_end_date'])
                # A longer withdrawal already running is kept
                if not (animal.in_withdrawal and animal.withdrawal_end_date
                        and animal.withdrawal_end_date > record.withdrawal_end_date):
                    animal.withdrawal_end_date = record.withdrawal_end_date
                animal.in_withdrawal = True
                animal.save(update_fields=['in_withdrawal', 'withdrawal_end_date', 'updated_at'])
                animal.active_feed_administrations.add(record)

        self._audit(record, caller, AuditLog.EventType.APPROVE, snapshot(record), metadata={'notes': notes or ''})

        outbox.enqueue(record, OutboxEvent.EventType.APPROVAL_DOCUMENTS)
        outbox.enqueue(record, OutboxEvent.EventType.PRESCRIPTION_EMAIL)

        logger.info(f"Feed administration {record.id} approved by vet {caller.id}")
        return record

    @transaction.atomic
    def reject(self, caller, record_id, reason):
        """Vet rejection of a pending record; the consumed feed goes back to the batch."""
        if not caller.is_veterinarian:
            raise PermissionDenied('Only veterinarians can reject feed administrations')

        reason = (reason or '').strip()
        if not reason:
            raise ValidationFailed('Rejection reason is required')

        record = self._lock_record(record_id)
        self._require_status(record, Status.PENDING_APPROVAL, 'This administration is not pending approval')

        self._transition(record, Status.REJECTED)
        record.rejection_reason = reason
        record.rejected_by = caller.user
        record.vet = record.vet or caller.user
        record.notes = _append_note(record.notes, f"Rejected by veterinarian: {reason}")
        self._restore_stock(record, caller, f"Feed administration {record.id} rejected")
        record.save()

        self._audit(record, caller, AuditLog.EventType.REJECT, snapshot(record), metadata={'reason': reason})

        outbox.enqueue(record, OutboxEvent.EventType.REJECTION_EMAIL)

        logger.info(f"Feed administration {record.id} rejected by vet {caller.id}: {reason}")
        return record

    @transaction.atomic
    def complete(self, caller, record_id, end_date=None):
        """Farmer ends an active feeding program. Feed is not returned."""
        if not caller.is_farmer:
            raise PermissionDenied('Only farmers can complete feeding programs')

        record = self._lock_record(record_id)
        if record.farmer_id != caller.id:
            raise PermissionDenied('Not authorized to modify this administration')
        self._require_status(record, Status.ACTIVE, 'Can only complete active feeding programs')

        end = parse_date(end_date, 'end date') or timezone.localdate()
        if end < record.start_date:
            raise ValidationFailed('End date cannot be before start date')

        previous_withdrawal_end = record.withdrawal_end_date
        self._transition(record, Status.COMPLETED)
        record.end_date = end
        record.withdrawal_end_date = record.compute_withdrawal_end_date()
        if record.withdrawal_end_date:
            record.expected_mrl_clearance_date = record.withdrawal_end_date
        record.save()

        # Animals held in withdrawal by this record follow the recomputed end
        if record.withdrawal_end_date:
            for animal in record.animals_in_withdrawal.filter(in_withdrawal=True):
                if animal.withdrawal_end_date is None or animal.withdrawal_end_date < record.withdrawal_end_date:
                    animal.withdrawal_end_date = record.withdrawal_end_date
                    animal.save(update_fields=['withdrawal_end_date', 'updated_at'])

        changes = {}
        if previous_withdrawal_end != record.withdrawal_end_date:
            changes['withdrawal_end_date'] = {
                'from': previous_withdrawal_end,
                'to': record.withdrawal_end_date,
            }
        self._audit(record, caller, AuditLog.EventType.COMPLETE, snapshot(record), changes=changes)

        logger.info(f"Feed administration {record.id} completed on {end}")
        return record

    @transaction.atomic
    def delete(self, caller, record_id):
        """Farmer withdraws a pending record; the consumed feed goes back to the batch."""
        if not caller.is_farmer:
            raise PermissionDenied('Only farmers can delete feed administrations')

        record = self._lock_record(record_id)
        if record.farmer_id != caller.id:
            raise PermissionDenied('Not authorized to delete this administration')
        self._require_status(
            record,
            Status.PENDING_APPROVAL,
            'Can only delete pending administrations. Use status update to withdraw active programs.',
        )

        data = snapshot(record)
        self._restore_stock(record, caller, f"Feed administration {record.id} deleted")
        record_pk = record.pk

        self._audit(record, caller, AuditLog.EventType.DELETE, data)
        record.delete()

        logger.info(f"Feed administration {record_pk} deleted by farmer {caller.id}")
        return record_pk

    @transaction.atomic
    def update(self, caller, record_id, data):
        """
        Generic update of descriptive fields.

        Ownership (farmer, feed) and workflow-controlled fields are refused;
        those change only through their transitions.
        """
        record = self._lock_record(record_id)
        if not self.can_edit(caller, record):
            raise PermissionDenied('Not authorized to update this administration')

        refused = sorted(set(data) & (OWNERSHIP_FIELDS | TRANSITION_FIELDS))
        if refused:
            raise ValidationFailed(
                f"These fields cannot be updated directly: {', '.join(refused)}",
                fields=refused,
            )

        changes = {}
        for field in EDITABLE_FIELDS:
            if field not in data:
                continue
            value = data[field]
            if field in ('start_date', 'expected_mrl_clearance_date'):
                value = parse_date(value, field.replace('_', ' '))
                if field == 'start_date' and value is None:
                    raise ValidationFailed('Start date cannot be empty')
            elif field == 'requires_mrl_test':
                value = _to_bool(value)
            else:
                value = value or ''

            old_value = getattr(record, field)
            if old_value != value:
                changes[field] = {'from': old_value, 'to': value}
                setattr(record, field, value)

        if 'start_date' in changes:
            if record.status not in (Status.PENDING_APPROVAL, Status.ACTIVE):
                raise BusinessRuleViolation(f"Cannot change start date of a {record.status.lower()} administration")
            if record.end_date and record.end_date < record.start_date:
                raise ValidationFailed('Start date cannot be after end date')
            record.withdrawal_end_date = record.compute_withdrawal_end_date()

        if not changes:
            return record

        record.save()
        self._audit(record, caller, AuditLog.EventType.UPDATE, snapshot(record), changes=changes)
        logger.info(f"Feed administration {record.id} updated by {caller.role} {caller.id}: {sorted(changes)}")
        return record

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def scope(self, caller, queryset=None):
        """Records visible to the caller."""
        if queryset is None:
            queryset = FeedAdministration.objects.all()
        if caller.is_farmer:
            return queryset.filter(farmer=caller.user)
        if caller.is_veterinarian:
            return queryset.filter(farmer__assigned_vet=caller.user) | queryset.filter(vet=caller.user)
        return queryset

    def can_view(self, caller, record):
        if caller.is_regulator:
            return True
        if caller.is_farmer:
            return record.farmer_id == caller.id
        return (
            record.farmer.assigned_vet_id == caller.id
            or record.vet_id == caller.id
            or record.status == Status.PENDING_APPROVAL
        )

    def active_programs(self, caller):
        return self.scope(caller).filter(status=Status.ACTIVE)

    def pending_for_vet(self, caller):
        """Pending-approval queue for a vet's supervised farmers."""
        if not caller.is_veterinarian:
            raise PermissionDenied('Only veterinarians can view the approval queue')
        return FeedAdministration.objects.filter(
            status=Status.PENDING_APPROVAL,
            farmer__assigned_vet=caller.user,
        ).order_by('created_at')

    def withdrawal_status(self, caller):
        """Records whose withdrawal period is still running."""
        return self.scope(caller).filter(
            status__in=[Status.ACTIVE, Status.COMPLETED],
            withdrawal_end_date__gt=timezone.localdate(),
        ).order_by('withdrawal_end_date')

    def animal_history(self, caller, tag_id):
        return self.scope(caller).filter(animals__tag_id=tag_id).distinct().order_by('-start_date', '-created_at')

    def amu_summary(self, caller, start_date=None, end_date=None):
        """
        Antimicrobial use from approved/completed medicated feed,
        in total and broken down by active ingredient.
        """
        records = self.scope(caller).filter(
            status__in=[Status.ACTIVE, Status.COMPLETED],
            feed__prescription_required=True,
        ).select_related('feed')
        if start_date:
            records = records.filter(start_date__gte=start_date)
        if end_date:
            records = records.filter(start_date__lte=end_date)

        total = Decimal('0')
        by_drug = {}
        for record in records:
            dose = record.antimicrobial_dose_total or Decimal('0')
            total += dose
            drug = record.feed.antimicrobial_name or 'Unknown'
            entry = by_drug.setdefault(drug, {'total_dose': Decimal('0'), 'administrations': 0})
            entry['total_dose'] += dose
            entry['administrations'] += 1

        return {
            'total_dose': float(total),
            'administrations': sum(entry['administrations'] for entry in by_drug.values()),
            'by_drug': {
                drug: {'total_dose': float(entry['total_dose']), 'administrations': entry['administrations']}
                for drug, entry in sorted(by_drug.items())
            },
        }
