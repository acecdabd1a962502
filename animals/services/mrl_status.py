"""
MRL (Maximum Residue Limit) status calculator.

Derives an animal's current residue status from its registry flags, its
latest lab verdict and its approved medicated feed programs. The result is
a snapshot: nothing here writes to the animal.

Statuses:
    NEW                   registered, no feed/treatment history at all
    SAFE                  no active withdrawal, lab verdict clean
    WITHDRAWAL_ACTIVE     inside a withdrawal period
    TEST_REQUIRED         withdrawal ended, lab test outstanding
    PENDING_VERIFICATION  lab test passed, awaiting regulator
    VIOLATION             residue violation detected
    UNKNOWN               status could not be computed
"""

import logging

from django.utils import timezone

logger = logging.getLogger(__name__)

NEW = 'NEW'
SAFE = 'SAFE'
WITHDRAWAL_ACTIVE = 'WITHDRAWAL_ACTIVE'
TEST_REQUIRED = 'TEST_REQUIRED'
PENDING_VERIFICATION = 'PENDING_VERIFICATION'
VIOLATION = 'VIOLATION'
UNKNOWN = 'UNKNOWN'

STATUS_MESSAGES = {
    NEW: 'Newly added animal - no treatments yet',
    SAFE: 'No recent treatments or all MRL tests passed',
    TEST_REQUIRED: 'MRL testing required before product sale',
    PENDING_VERIFICATION: 'Latest MRL test passed system check - awaiting regulator verification',
    VIOLATION: 'MRL violation detected - products cannot be sold',
    UNKNOWN: 'Error calculating status',
}


def latest_withdrawal_end(animal, today):
    """Latest future withdrawal end date affecting the animal, or None."""
    from feed_administration.models import FeedAdministration

    candidates = []
    if animal.in_withdrawal and animal.withdrawal_end_date and animal.withdrawal_end_date > today:
        candidates.append(animal.withdrawal_end_date)

    record_end = (
        animal.feed_administrations
        .filter(
            status__in=[FeedAdministration.Status.ACTIVE, FeedAdministration.Status.COMPLETED],
            withdrawal_end_date__gt=today,
        )
        .order_by('-withdrawal_end_date')
        .values_list('withdrawal_end_date', flat=True)
        .first()
    )
    if record_end:
        candidates.append(record_end)

    return max(candidates) if candidates else None


def calculate_animal_mrl_status(animal, farmer=None):
    """
    Calculate the current MRL status for an animal.

    Args:
        animal: Animal instance
        farmer: Owning farmer; when given, an animal owned by someone else
            is reported as UNKNOWN

    Returns:
        dict: {'mrl_status': str, 'status_message': str}
    """
    try:
        if farmer is not None and animal.farmer_id != farmer.pk:
            return {'mrl_status': UNKNOWN, 'status_message': 'Animal is not owned by this farmer'}

        today = timezone.localdate()
        has_history = animal.feed_administrations.exists()

        if animal.is_new and not has_history:
            return {'mrl_status': NEW, 'status_message': STATUS_MESSAGES[NEW]}

        # Lab verdict first; an outstanding post-withdrawal test overrides any non-violation verdict
        mrl_status = animal.mrl_status or SAFE
        if mrl_status in (SAFE, PENDING_VERIFICATION) and animal.requires_mrl_test:
            mrl_status = TEST_REQUIRED
        status_message = STATUS_MESSAGES.get(mrl_status, STATUS_MESSAGES[SAFE])

        withdrawal_end = latest_withdrawal_end(animal, today)
        if withdrawal_end and mrl_status != VIOLATION:
            mrl_status = WITHDRAWAL_ACTIVE
            status_message = f"Withdrawal period active until {withdrawal_end.isoformat()}"

        return {'mrl_status': mrl_status, 'status_message': status_message}

    except Exception as e:
        logger.error(f"Error calculating MRL status for animal {animal.pk}: {e}")
        return {'mrl_status': UNKNOWN, 'status_message': STATUS_MESSAGES[UNKNOWN]}
