"""
Medicated feed eligibility.

Only animals whose current MRL status is SAFE or NEW may receive medicated
feed. The check is all-or-nothing: a request naming any ineligible animal
is refused as a whole, with every offender reported.
"""

import logging

from animals.services.mrl_status import NEW, SAFE, calculate_animal_mrl_status
from ..exceptions import IneligibleAnimals

logger = logging.getLogger(__name__)

ELIGIBLE_STATUSES = (SAFE, NEW)


class EligibilityResult:
    """Partition of the requested animals into eligible and ineligible."""

    def __init__(self):
        self.eligible = []
        self.ineligible = []

    @property
    def all_eligible(self):
        return not self.ineligible


def check_eligibility(animals, farmer):
    """
    Compute the MRL status of each animal and split them by eligibility.

    Args:
        animals: Iterable of Animal instances
        farmer: Owning farmer (passed through to the MRL calculator)

    Returns:
        EligibilityResult with ``ineligible`` entries of the form
        {'tag_id', 'name', 'mrl_status', 'reason'}
    """
    result = EligibilityResult()
    for animal in animals:
        status = calculate_animal_mrl_status(animal, farmer)
        if status['mrl_status'] in ELIGIBLE_STATUSES:
            result.eligible.append(animal)
        else:
            result.ineligible.append({
                'tag_id': animal.tag_id,
                'name': animal.name,
                'mrl_status': status['mrl_status'],
                'reason': status['status_message'],
            })
    return result


def ensure_eligible(animals, farmer):
    """Raise IneligibleAnimals unless every animal may receive medicated feed."""
    result = check_eligibility(animals, farmer)
    if not result.all_eligible:
        logger.info(
            f"Medicated feed refused for farmer {farmer.pk}: "
            f"{[entry['tag_id'] for entry in result.ineligible]} ineligible"
        )
        raise IneligibleAnimals(result.ineligible)
    return result
