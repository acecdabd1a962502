"""
Nightly withdrawal updater: ended withdrawal periods are cleared and the
animals flagged for an MRL lab test.
"""

from datetime import timedelta
from io import StringIO

import pytest
from django.core.management import call_command
from django.utils import timezone

from animals.services.mrl_status import TEST_REQUIRED, calculate_animal_mrl_status
from animals.services.withdrawal import update_withdrawal_statuses
from animals.tasks import update_withdrawal_statuses as update_withdrawal_statuses_task
from feed_administration.services.workflow import FeedAdministrationWorkflowService

pytestmark = pytest.mark.django_db


@pytest.fixture
def ended_animal(make_animal):
    """Withdrawal ended yesterday."""
    return make_animal(
        is_new=False,
        in_withdrawal=True,
        withdrawal_end_date=timezone.localdate() - timedelta(days=1),
    )


@pytest.fixture
def running_animal(make_animal):
    """Withdrawal still running for five days."""
    return make_animal(
        is_new=False,
        in_withdrawal=True,
        withdrawal_end_date=timezone.localdate() + timedelta(days=5),
    )


# ==============================================================================
# TEST: UPDATER SERVICE
# ==============================================================================

class TestWithdrawalUpdater:

    def test_ended_withdrawal_is_cleared(self, ended_animal, running_animal, mailoutbox):
        result = update_withdrawal_statuses()

        assert result == {'updated': 1, 'farmers_notified': 1}

        ended_animal.refresh_from_db()
        assert ended_animal.in_withdrawal is False
        assert ended_animal.requires_mrl_test is True

        running_animal.refresh_from_db()
        assert running_animal.in_withdrawal is True
        assert running_animal.requires_mrl_test is False

    def test_farmer_is_emailed_once_with_all_animals(self, ended_animal, make_animal, mailoutbox):
        second = make_animal(
            is_new=False,
            in_withdrawal=True,
            withdrawal_end_date=timezone.localdate(),
        )

        update_withdrawal_statuses()

        assert len(mailoutbox) == 1
        message = mailoutbox[0]
        assert message.subject == 'MRL Testing Required for Animals'
        assert message.to == ['farmer@test.com']
        assert ended_animal.tag_id in message.body
        assert second.tag_id in message.body

    def test_cleared_animal_needs_test_before_medicated_feed(self, ended_animal):
        update_withdrawal_statuses()
        ended_animal.refresh_from_db()

        assert calculate_animal_mrl_status(ended_animal)['mrl_status'] == TEST_REQUIRED

    def test_reference_date_can_be_given(self, running_animal):
        result = update_withdrawal_statuses(today=timezone.localdate() + timedelta(days=5))

        assert result['updated'] == 1
        running_animal.refresh_from_db()
        assert running_animal.in_withdrawal is False

    def test_links_to_approved_records_are_released(self, farmer, vet, medicated_feed, animals):
        workflow = FeedAdministrationWorkflowService()
        record = workflow.create_administration(farmer, {
            'feed_id': str(medicated_feed.id),
            'animal_ids': [animal.tag_id for animal in animals],
            'feed_quantity_used': '10',
        })
        workflow.approve(vet, record.id)

        result = update_withdrawal_statuses(today=record.withdrawal_end_date)

        assert result['updated'] == 2
        assert not record.animals_in_withdrawal.exists()

    def test_nothing_to_do(self, running_animal, mailoutbox):
        assert update_withdrawal_statuses() == {'updated': 0, 'farmers_notified': 0}
        assert mailoutbox == []


# ==============================================================================
# TEST: ENTRY POINTS
# ==============================================================================

class TestWithdrawalEntryPoints:

    def test_celery_task(self, ended_animal):
        result = update_withdrawal_statuses_task()

        assert result['updated'] == 1

    def test_management_command(self, ended_animal):
        out = StringIO()

        call_command('update_withdrawal_status', stdout=out)

        assert 'Updated 1 animal(s); notified 1 farmer(s)' in out.getvalue()
        ended_animal.refresh_from_db()
        assert ended_animal.requires_mrl_test is True

    def test_management_command_rejects_bad_date(self):
        from django.core.management.base import CommandError

        with pytest.raises(CommandError):
            call_command('update_withdrawal_status', '--date', '31/01/2025')
