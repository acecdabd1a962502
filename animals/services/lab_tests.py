"""
MRL lab test results.

Recording a result clears the animal's outstanding test flag and sets its
MRL status from the verdict (PENDING_VERIFICATION or VIOLATION). A regulator
then reviews the animal's latest test:

    approve  passed test    -> SAFE
    reject   passed test    -> TEST_REQUIRED, re-test needed
    resolve  failed test    -> TEST_REQUIRED, re-test needed
"""

import logging

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.utils import timezone

from audit.models import AuditLog
from audit.services import create_audit_log
from core.exceptions import BusinessRuleViolation, NotFound, PermissionDenied, ValidationFailed

from ..models import Animal, MRLTest
from .mrl_status import latest_withdrawal_end

logger = logging.getLogger(__name__)

APPROVE = 'approve'
REJECT = 'reject'
RESOLVE = 'resolve'
REVIEW_ACTIONS = (APPROVE, REJECT, RESOLVE)


def _update_residue_flags(animal, **flags):
    """Set residue flags on a locked animal; returns the changed fields as from/to pairs."""
    changes = {}
    for field, value in flags.items():
        old = getattr(animal, field)
        if old != value:
            changes[field] = {'from': old, 'to': value}
            setattr(animal, field, value)
    if changes:
        animal.save(update_fields=[*changes, 'updated_at'])
    return changes


def _audit(test, caller, event_type, changes, **metadata):
    from ..serializers import MRLTestSerializer

    create_audit_log(
        event_type=event_type,
        entity_type=AuditLog.EntityType.MRL_TEST,
        entity_id=test.id,
        farmer=test.animal.farmer,
        performed_by=caller.user,
        performed_by_role=caller.role,
        data_snapshot=MRLTestSerializer(test).data,
        changes=changes,
        metadata={'tag_id': test.animal.tag_id, **metadata},
    )


@transaction.atomic
def record_mrl_test(caller, animal, data):
    """
    Record a lab result for an animal.

    Args:
        caller: Owning farmer
        animal: Animal the sample was taken from
        data: Validated test fields (drug_name, sample_type, residue_level,
            mrl_threshold, unit, test_date, lab_name, test_report_number, notes)

    Returns:
        MRLTest
    """
    if not caller.is_farmer or animal.farmer_id != caller.id:
        raise PermissionDenied('Only the owning farmer can record MRL test results')

    animal = Animal.objects.select_for_update().select_related('farmer').get(pk=animal.pk)
    if latest_withdrawal_end(animal, timezone.localdate()):
        raise BusinessRuleViolation(
            'MRL test cannot be recorded while the animal is in its withdrawal period',
            tag_id=animal.tag_id,
        )
    if animal.withdrawal_end_date and data['test_date'] < animal.withdrawal_end_date:
        raise ValidationFailed(
            'Test sample must be taken after the withdrawal period ended',
            withdrawal_end_date=animal.withdrawal_end_date.isoformat(),
        )

    is_passed = data['residue_level'] <= data['mrl_threshold']
    test = MRLTest.objects.create(animal=animal, is_passed=is_passed, recorded_by=caller.user, **data)

    changes = _update_residue_flags(
        animal,
        mrl_status=Animal.MRLStatus.PENDING_VERIFICATION if is_passed else Animal.MRLStatus.VIOLATION,
        requires_mrl_test=False,
        is_new=False,
    )
    _audit(test, caller, AuditLog.EventType.CREATE, changes)

    logger.info(
        f"MRL test {test.id} recorded for animal {animal.tag_id}: "
        f"{'passed' if is_passed else 'FAILED'} ({test.residue_level} / {test.mrl_threshold} {test.unit})"
    )
    return test


@transaction.atomic
def review_mrl_test(caller, test_id, action, notes=''):
    """Regulator decision on an animal's latest MRL test."""
    if not caller.is_regulator:
        raise PermissionDenied('Only regulators can review MRL tests')
    if action not in REVIEW_ACTIONS:
        raise ValidationFailed(f"Invalid action: expected one of {', '.join(REVIEW_ACTIONS)}")

    try:
        test = MRLTest.objects.select_for_update().get(pk=test_id)
    except (MRLTest.DoesNotExist, DjangoValidationError, ValueError):
        raise NotFound('MRL test not found')

    animal = Animal.objects.select_for_update().select_related('farmer').get(pk=test.animal_id)
    test.animal = animal
    latest_id = animal.mrl_tests.values_list('pk', flat=True).first()
    if latest_id != test.pk:
        raise BusinessRuleViolation('Only the latest MRL test for an animal can be reviewed')

    if action == RESOLVE:
        if test.is_passed:
            raise BusinessRuleViolation('Only failed MRL tests can be resolved')
        if test.violation_resolved:
            raise BusinessRuleViolation('This violation has already been resolved')
        test.violation_resolved = True
        event_type = AuditLog.EventType.UPDATE
    else:
        if not test.is_passed:
            raise BusinessRuleViolation('A failed MRL test can only be resolved')
        if test.status != MRLTest.Status.PENDING_VERIFICATION:
            raise BusinessRuleViolation('This MRL test has already been reviewed')
        if action == APPROVE:
            test.status = MRLTest.Status.APPROVED
            event_type = AuditLog.EventType.APPROVE
        else:
            test.status = MRLTest.Status.REJECTED
            event_type = AuditLog.EventType.REJECT

    test.reviewed_by = caller.user
    test.reviewed_at = timezone.now()
    test.review_notes = notes or ''
    test.save()

    if action == APPROVE:
        changes = _update_residue_flags(animal, mrl_status=Animal.MRLStatus.SAFE)
    else:
        changes = _update_residue_flags(
            animal,
            mrl_status=Animal.MRLStatus.TEST_REQUIRED,
            requires_mrl_test=True,
        )
    _audit(test, caller, event_type, changes, action=action)

    logger.info(f"MRL test {test.id} for animal {animal.tag_id} reviewed ({action}) by regulator {caller.id}")
    return test
