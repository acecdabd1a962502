from core.exceptions import BusinessRuleViolation


class StatusTransitionError(BusinessRuleViolation):
    """Raised when an invalid status transition is attempted."""

    def __init__(self, message, current_status=None, requested_status=None):
        super().__init__(message, current_status=current_status)
        self.current_status = current_status
        self.requested_status = requested_status


class IneligibleAnimals(BusinessRuleViolation):
    """
    One or more animals may not receive medicated feed.

    Carries every offending animal, not just the first one found.
    """

    def __init__(self, ineligible):
        tags = ', '.join(entry['tag_id'] for entry in ineligible)
        super().__init__(
            f"{len(ineligible)} animal(s) are not eligible for medicated feed: {tags}",
            ineligible_animals=ineligible,
        )
        self.ineligible = ineligible
