"""
Feed administration HTTP surface: visibility per role, list filters and
the reporting endpoints.
"""

from datetime import timedelta

import pytest
from django.utils import timezone

from feed_administration.services.workflow import FeedAdministrationWorkflowService

pytestmark = pytest.mark.django_db

FEED_ADMIN_URL = '/api/feed-admin/'


@pytest.fixture
def workflow():
    return FeedAdministrationWorkflowService()


@pytest.fixture
def pending(workflow, farmer, medicated_feed, make_animal):
    """Pending medicated record for one fresh animal."""
    return workflow.create_administration(farmer, {
        'feed_id': str(medicated_feed.id),
        'animal_ids': [make_animal().tag_id],
        'feed_quantity_used': '10',
        'group_name': 'Calves',
    })


@pytest.fixture
def active(workflow, farmer, vet, medicated_feed, make_animal):
    """Approved medicated record for one fresh animal."""
    record = workflow.create_administration(farmer, {
        'feed_id': str(medicated_feed.id),
        'animal_ids': [make_animal().tag_id],
        'feed_quantity_used': '20',
        'group_name': 'Heifers',
    })
    return workflow.approve(vet, record.id)


# ==============================================================================
# TEST: VISIBILITY
# ==============================================================================

class TestVisibility:

    def test_farmer_lists_own_records(self, farmer_client, pending, active):
        response = farmer_client.get(FEED_ADMIN_URL)

        assert response.status_code == 200
        assert response.data['count'] == 2

    def test_other_farmer_is_forbidden(self, api_client, other_farmer, pending):
        api_client.force_authenticate(user=other_farmer)

        assert api_client.get(FEED_ADMIN_URL).data['count'] == 0
        assert api_client.get(f'{FEED_ADMIN_URL}{pending.id}/').status_code == 403

    def test_regulator_sees_everything(self, regulator_client, pending, active):
        assert regulator_client.get(FEED_ADMIN_URL).data['count'] == 2

    def test_any_vet_can_view_pending(self, api_client, other_vet_user, pending):
        api_client.force_authenticate(user=other_vet_user)

        response = api_client.get(f'{FEED_ADMIN_URL}{pending.id}/')

        assert response.status_code == 200
        assert response.data['status'] == 'Pending Approval'

    def test_detail_includes_prescription_once_approved(self, farmer_client, active, vet_user):
        response = farmer_client.get(f'{FEED_ADMIN_URL}{active.id}/')

        assert response.data['prescription']['vet'] == vet_user.id

    def test_unknown_record(self, farmer_client):
        response = farmer_client.get(f'{FEED_ADMIN_URL}00000000-0000-0000-0000-000000000000/')

        assert response.status_code == 404
        assert response.data['error'] == 'Feed administration not found'


# ==============================================================================
# TEST: LIST FILTERS
# ==============================================================================

class TestListFilters:

    def test_filter_by_status(self, farmer_client, pending, active):
        response = farmer_client.get(FEED_ADMIN_URL, {'status': 'Active'})

        assert [record['id'] for record in response.data['results']] == [str(active.id)]

    def test_filter_by_animal(self, farmer_client, pending, active):
        tag_id = active.animals.get().tag_id

        response = farmer_client.get(FEED_ADMIN_URL, {'animal_id': tag_id})

        assert response.data['count'] == 1

    def test_search_group_name(self, farmer_client, pending, active):
        response = farmer_client.get(FEED_ADMIN_URL, {'search': 'Calves'})

        assert [record['id'] for record in response.data['results']] == [str(pending.id)]

    def test_filter_medicated(self, farmer_client, pending, regular_feed, animals):
        farmer_client.post(FEED_ADMIN_URL, {
            'feed_id': str(regular_feed.id),
            'animal_ids': [animals[0].tag_id],
            'feed_quantity_used': '5',
        }, format='json')

        response = farmer_client.get(FEED_ADMIN_URL, {'medicated': 'false'})

        assert response.data['count'] == 1
        assert response.data['results'][0]['status'] == 'Active'


# ==============================================================================
# TEST: TRANSITION ENDPOINTS
# ==============================================================================

class TestTransitionEndpoints:

    def test_vet_approves(self, vet_client, pending):
        response = vet_client.post(f'{FEED_ADMIN_URL}{pending.id}/approve/', {'notes': 'Mix well'}, format='json')

        assert response.status_code == 200
        assert response.data['feed_administration']['status'] == 'Active'
        assert 'Vet notes: Mix well' in response.data['feed_administration']['notes']

    def test_farmer_cannot_approve(self, farmer_client, pending):
        response = farmer_client.post(f'{FEED_ADMIN_URL}{pending.id}/approve/', {}, format='json')

        assert response.status_code == 403

    def test_double_approve(self, vet_client, active):
        response = vet_client.post(f'{FEED_ADMIN_URL}{active.id}/approve/', {}, format='json')

        assert response.status_code == 400
        assert response.data['error'] == 'This administration is not pending approval'

    def test_farmer_completes(self, farmer_client, active):
        end = timezone.localdate() + timedelta(days=2)

        response = farmer_client.post(
            f'{FEED_ADMIN_URL}{active.id}/complete/', {'end_date': end.isoformat()}, format='json'
        )

        assert response.status_code == 200
        assert response.data['feed_administration']['status'] == 'Completed'
        assert response.data['feed_administration']['end_date'] == end.isoformat()

    def test_bad_end_date_format(self, farmer_client, active):
        response = farmer_client.post(f'{FEED_ADMIN_URL}{active.id}/complete/', {'end_date': 'tomorrow'}, format='json')

        assert response.status_code == 400
        assert response.data['error'] == 'Invalid end date: expected YYYY-MM-DD'

    def test_put_refuses_feed(self, farmer_client, pending, regular_feed):
        response = farmer_client.put(
            f'{FEED_ADMIN_URL}{pending.id}/', {'feed': str(regular_feed.id)}, format='json'
        )

        assert response.status_code == 400
        assert response.data['fields'] == ['feed']

    def test_put_updates_notes(self, farmer_client, pending):
        response = farmer_client.put(f'{FEED_ADMIN_URL}{pending.id}/', {'notes': 'Morning feed'}, format='json')

        assert response.status_code == 200
        assert response.data['feed_administration']['notes'] == 'Morning feed'

    def test_ineligible_animals_reported(self, farmer_client, medicated_feed, make_animal):
        violation = make_animal(is_new=False, mrl_status='VIOLATION')
        untested = make_animal(is_new=False, requires_mrl_test=True)

        response = farmer_client.post(FEED_ADMIN_URL, {
            'feed_id': str(medicated_feed.id),
            'animal_ids': [make_animal().tag_id, violation.tag_id, untested.tag_id],
            'feed_quantity_used': '10',
        }, format='json')

        assert response.status_code == 400
        assert sorted(entry['tag_id'] for entry in response.data['ineligible_animals']) == sorted(
            [violation.tag_id, untested.tag_id]
        )

    def test_missing_animals_reported(self, farmer_client, medicated_feed):
        response = farmer_client.post(FEED_ADMIN_URL, {
            'feed_id': str(medicated_feed.id),
            'animal_ids': ['555555555555'],
            'feed_quantity_used': '10',
        }, format='json')

        assert response.status_code == 404
        assert response.data['missing_animal_ids'] == ['555555555555']

    def test_animals_required(self, farmer_client, medicated_feed):
        response = farmer_client.post(FEED_ADMIN_URL, {
            'feed_id': str(medicated_feed.id),
            'animal_ids': [],
            'feed_quantity_used': '10',
        }, format='json')

        assert response.status_code == 400
        assert response.data['error'] == 'At least one animal must be selected'


# ==============================================================================
# TEST: REPORTS
# ==============================================================================

class TestReports:

    def test_pending_queue(self, vet_client, pending, active):
        response = vet_client.get(f'{FEED_ADMIN_URL}pending/')

        assert response.status_code == 200
        assert [record['id'] for record in response.data['results']] == [str(pending.id)]

    def test_pending_queue_for_vets_only(self, farmer_client):
        assert farmer_client.get(f'{FEED_ADMIN_URL}pending/').status_code == 403

    def test_active_programs(self, farmer_client, pending, active):
        response = farmer_client.get(f'{FEED_ADMIN_URL}active/')

        assert response.data['count'] == 1
        assert response.data['results'][0]['id'] == str(active.id)

    def test_withdrawal_status(self, farmer_client, pending, active):
        response = farmer_client.get(f'{FEED_ADMIN_URL}withdrawal-status/')

        assert [record['id'] for record in response.data['records']] == [str(active.id)]
        assert response.data['records'][0]['days_remaining'] == 7
        assert len(response.data['animals_in_withdrawal']) == 1

    def test_animal_history(self, farmer_client, active):
        tag_id = active.animals.get().tag_id

        response = farmer_client.get(f'{FEED_ADMIN_URL}animal/{tag_id}/')

        assert response.data['tag_id'] == tag_id
        assert response.data['count'] == 1

    def test_amu_summary(self, regulator_client, pending, active):
        response = regulator_client.get(f'{FEED_ADMIN_URL}amu-summary/')

        assert response.status_code == 200
        assert response.data['total_dose'] == 1000.0
        assert response.data['by_drug']['Oxytetracycline']['administrations'] == 1

    def test_amu_summary_date_range(self, farmer_client, active):
        tomorrow = (timezone.localdate() + timedelta(days=1)).isoformat()

        response = farmer_client.get(f'{FEED_ADMIN_URL}amu-summary/', {'start_date': tomorrow})

        assert response.data['total_dose'] == 0.0
        assert response.data['start_date'] == tomorrow

    def test_amu_summary_bad_date(self, farmer_client):
        response = farmer_client.get(f'{FEED_ADMIN_URL}amu-summary/', {'start_date': '2025-13-40'})

        assert response.status_code == 400
