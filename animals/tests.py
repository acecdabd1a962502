"""
Tests for the animal registry, MRL status calculation and MRL lab tests
"""
import pytest
from datetime import timedelta
from django.utils import timezone
from rest_framework import status

from animals.models import Animal, MRLTest
from animals.services import mrl_status
from animals.services.mrl_status import calculate_animal_mrl_status
from audit.models import AuditLog
from feed_administration.services.workflow import FeedAdministrationWorkflowService

ANIMALS_URL = '/api/animals/'
MRL_TESTS_URL = '/api/animals/mrl-tests/'


def lab_result(residue='20', threshold='100', **overrides):
    """Lab test payload; passes unless residue exceeds threshold."""
    data = {
        'drug_name': 'Oxytetracycline',
        'sample_type': 'Milk',
        'residue_level': residue,
        'mrl_threshold': threshold,
        'unit': 'µg/kg',
        'test_date': timezone.localdate().isoformat(),
        'lab_name': 'State Residue Laboratory',
        'test_report_number': 'SRL-2031',
    }
    data.update(overrides)
    return data


# =============================================================================
# MRL STATUS
# =============================================================================

@pytest.mark.django_db
class TestMRLStatus:

    def test_new_animal(self, make_animal):
        assert calculate_animal_mrl_status(make_animal())['mrl_status'] == mrl_status.NEW

    def test_established_animal_is_safe(self, make_animal):
        animal = make_animal(is_new=False)

        result = calculate_animal_mrl_status(animal)

        assert result['mrl_status'] == mrl_status.SAFE
        assert result['status_message'] == mrl_status.STATUS_MESSAGES[mrl_status.SAFE]

    def test_outstanding_test(self, make_animal):
        animal = make_animal(is_new=False, requires_mrl_test=True)

        assert calculate_animal_mrl_status(animal)['mrl_status'] == mrl_status.TEST_REQUIRED

    def test_lab_verdict_pending_verification(self, make_animal):
        animal = make_animal(is_new=False, mrl_status=Animal.MRLStatus.PENDING_VERIFICATION)

        assert calculate_animal_mrl_status(animal)['mrl_status'] == mrl_status.PENDING_VERIFICATION

    def test_outstanding_test_overrides_unverified_pass(self, make_animal):
        animal = make_animal(
            is_new=False,
            mrl_status=Animal.MRLStatus.PENDING_VERIFICATION,
            requires_mrl_test=True,
        )

        assert calculate_animal_mrl_status(animal)['mrl_status'] == mrl_status.TEST_REQUIRED

    def test_withdrawal_flag(self, make_animal):
        end = timezone.localdate() + timedelta(days=4)
        animal = make_animal(is_new=False, in_withdrawal=True, withdrawal_end_date=end)

        result = calculate_animal_mrl_status(animal)

        assert result['mrl_status'] == mrl_status.WITHDRAWAL_ACTIVE
        assert result['status_message'] == f"Withdrawal period active until {end.isoformat()}"

    def test_violation_wins_over_withdrawal(self, make_animal):
        animal = make_animal(
            is_new=False,
            mrl_status=Animal.MRLStatus.VIOLATION,
            in_withdrawal=True,
            withdrawal_end_date=timezone.localdate() + timedelta(days=4),
        )

        assert calculate_animal_mrl_status(animal)['mrl_status'] == mrl_status.VIOLATION

    def test_approved_record_keeps_animal_in_withdrawal(self, farmer, vet, medicated_feed, make_animal):
        animal = make_animal()
        workflow = FeedAdministrationWorkflowService()
        record = workflow.create_administration(farmer, {
            'feed_id': str(medicated_feed.id),
            'animal_ids': [animal.tag_id],
            'feed_quantity_used': '5',
        })
        workflow.approve(vet, record.id)
        Animal.objects.filter(pk=animal.pk).update(in_withdrawal=False)
        animal.refresh_from_db()

        assert calculate_animal_mrl_status(animal)['mrl_status'] == mrl_status.WITHDRAWAL_ACTIVE

    def test_pending_record_does_not_start_withdrawal(self, farmer, medicated_feed, make_animal):
        animal = make_animal()
        FeedAdministrationWorkflowService().create_administration(farmer, {
            'feed_id': str(medicated_feed.id),
            'animal_ids': [animal.tag_id],
            'feed_quantity_used': '5',
        })
        animal.refresh_from_db()

        assert calculate_animal_mrl_status(animal)['mrl_status'] == mrl_status.SAFE

    def test_feed_history_means_not_new(self, farmer, regular_feed, make_animal):
        animal = make_animal()
        FeedAdministrationWorkflowService().create_administration(farmer, {
            'feed_id': str(regular_feed.id),
            'animal_ids': [animal.tag_id],
            'feed_quantity_used': '5',
        })
        Animal.objects.filter(pk=animal.pk).update(is_new=True)
        animal.refresh_from_db()

        assert calculate_animal_mrl_status(animal)['mrl_status'] == mrl_status.SAFE

    def test_other_farmers_animal_is_unknown(self, make_animal, other_farmer):
        animal = make_animal()

        assert calculate_animal_mrl_status(animal, other_farmer)['mrl_status'] == mrl_status.UNKNOWN


# =============================================================================
# ANIMAL API
# =============================================================================

@pytest.mark.django_db
class TestAnimalAPI:

    def test_register_animal(self, farmer_client, farmer_user):
        response = farmer_client.post(ANIMALS_URL, {
            'tag_id': '204060801234',
            'name': 'Lakshmi',
            'species': 'Cattle',
        }, format='json')

        assert response.status_code == status.HTTP_201_CREATED
        animal = response.data['animal']
        assert animal['is_new'] is True
        assert animal['mrl_status'] == 'SAFE'
        assert animal['farmer'] == farmer_user.id
        assert AuditLog.objects.filter(entity_type=AuditLog.EntityType.ANIMAL, entity_id=animal['id']).exists()

    def test_residue_flags_are_read_only(self, farmer_client):
        response = farmer_client.post(ANIMALS_URL, {
            'tag_id': '204060801235',
            'species': 'Goat',
            'in_withdrawal': True,
            'mrl_status': 'VIOLATION',
        }, format='json')

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data['animal']['in_withdrawal'] is False
        assert response.data['animal']['mrl_status'] == 'SAFE'

    @pytest.mark.parametrize('tag_id', ['12345', '12345678901a', '1234567890123'])
    def test_tag_must_be_twelve_digits(self, farmer_client, tag_id):
        response = farmer_client.post(ANIMALS_URL, {'tag_id': tag_id, 'species': 'Cattle'}, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['error'] == 'Validation failed'
        assert 'tag_id' in response.data['fields']

    def test_future_birth_date_rejected(self, farmer_client):
        response = farmer_client.post(ANIMALS_URL, {
            'tag_id': '204060801236',
            'species': 'Sheep',
            'date_of_birth': (timezone.localdate() + timedelta(days=3)).isoformat(),
        }, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert 'date_of_birth' in response.data['fields']

    def test_vet_cannot_register(self, vet_client):
        response = vet_client.post(ANIMALS_URL, {'tag_id': '204060801237', 'species': 'Cattle'}, format='json')

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_list_scoped_to_owner(self, api_client, farmer_client, other_farmer, make_animal):
        make_animal()
        make_animal(farmer=other_farmer)

        assert farmer_client.get(ANIMALS_URL).data['count'] == 1

        api_client.force_authenticate(user=other_farmer)
        assert api_client.get(ANIMALS_URL).data['count'] == 1

    def test_list_filter_in_withdrawal(self, farmer_client, make_animal):
        make_animal()
        held = make_animal(
            is_new=False,
            in_withdrawal=True,
            withdrawal_end_date=timezone.localdate() + timedelta(days=2),
        )

        response = farmer_client.get(ANIMALS_URL, {'in_withdrawal': 'true'})

        assert [animal['tag_id'] for animal in response.data['results']] == [held.tag_id]

    def test_mrl_status_endpoint(self, vet_client, make_animal):
        animal = make_animal(is_new=False, requires_mrl_test=True)

        response = vet_client.get(f'{ANIMALS_URL}{animal.tag_id}/mrl-status/')

        assert response.status_code == status.HTTP_200_OK
        assert response.data['mrl_status'] == 'TEST_REQUIRED'
        assert response.data['eligible_for_medicated_feed'] is False

    def test_new_animal_is_eligible(self, farmer_client, make_animal):
        animal = make_animal()

        response = farmer_client.get(f'{ANIMALS_URL}{animal.tag_id}/mrl-status/')

        assert response.data['mrl_status'] == 'NEW'
        assert response.data['eligible_for_medicated_feed'] is True

    def test_unknown_tag(self, farmer_client):
        response = farmer_client.get(f'{ANIMALS_URL}999999999999/')

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.data['error'] == 'Animal not found'

    def test_foreign_animal_forbidden(self, api_client, other_farmer, make_animal):
        animal = make_animal()
        api_client.force_authenticate(user=other_farmer)

        response = api_client.get(f'{ANIMALS_URL}{animal.tag_id}/')

        assert response.status_code == status.HTTP_403_FORBIDDEN


# =============================================================================
# MRL LAB TESTS
# =============================================================================

@pytest.fixture
def retest_animal(make_animal):
    """Withdrawal ended yesterday; a lab test is outstanding."""
    return make_animal(
        is_new=False,
        requires_mrl_test=True,
        withdrawal_end_date=timezone.localdate() - timedelta(days=1),
    )


def _record(client, animal, **payload):
    return client.post(f'{ANIMALS_URL}{animal.tag_id}/mrl-tests/', lab_result(**payload), format='json')


def _review(client, test_id, action, notes=''):
    return client.post(f'{MRL_TESTS_URL}{test_id}/review/', {'action': action, 'notes': notes}, format='json')


@pytest.mark.django_db
class TestMRLLabTests:

    def test_passed_test_clears_outstanding_flag(self, farmer_client, retest_animal):
        response = _record(farmer_client, retest_animal)

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data['mrl_test']['is_passed'] is True
        assert response.data['mrl_test']['status'] == 'Pending Verification'
        assert response.data['mrl_status'] == 'PENDING_VERIFICATION'

        retest_animal.refresh_from_db()
        assert retest_animal.requires_mrl_test is False
        entry = AuditLog.objects.get(
            entity_type=AuditLog.EntityType.MRL_TEST,
            entity_id=response.data['mrl_test']['id'],
        )
        assert entry.event_type == AuditLog.EventType.CREATE
        assert entry.changes == {
            'mrl_status': {'from': 'SAFE', 'to': 'PENDING_VERIFICATION'},
            'requires_mrl_test': {'from': True, 'to': False},
        }

    def test_verified_pass_makes_animal_eligible_again(
        self, farmer_client, regulator_client, retest_animal, medicated_feed
    ):
        test_id = _record(farmer_client, retest_animal).data['mrl_test']['id']

        response = _review(regulator_client, test_id, 'approve', 'Report checked')

        assert response.status_code == status.HTTP_200_OK
        assert response.data['mrl_test']['status'] == 'Approved'
        assert response.data['mrl_status'] == 'SAFE'

        eligibility = farmer_client.get(f'{ANIMALS_URL}{retest_animal.tag_id}/mrl-status/')
        assert eligibility.data['eligible_for_medicated_feed'] is True

        created = farmer_client.post('/api/feed-admin/', {
            'feed_id': str(medicated_feed.id),
            'animal_ids': [retest_animal.tag_id],
            'feed_quantity_used': '10',
        }, format='json')
        assert created.status_code == status.HTTP_201_CREATED

    def test_unverified_pass_is_not_eligible(self, farmer_client, retest_animal):
        _record(farmer_client, retest_animal)

        response = farmer_client.get(f'{ANIMALS_URL}{retest_animal.tag_id}/mrl-status/')

        assert response.data['eligible_for_medicated_feed'] is False

    def test_failed_test_is_violation_until_resolved(self, farmer_client, regulator_client, retest_animal):
        response = _record(farmer_client, retest_animal, residue='150')

        assert response.data['mrl_test']['is_passed'] is False
        assert response.data['mrl_status'] == 'VIOLATION'
        test_id = response.data['mrl_test']['id']

        refused = _review(regulator_client, test_id, 'approve')
        assert refused.status_code == status.HTTP_400_BAD_REQUEST
        assert refused.data['error'] == 'A failed MRL test can only be resolved'

        resolved = _review(regulator_client, test_id, 'resolve')
        assert resolved.status_code == status.HTTP_200_OK
        assert resolved.data['mrl_test']['violation_resolved'] is True
        assert resolved.data['mrl_status'] == 'TEST_REQUIRED'
        retest_animal.refresh_from_db()
        assert retest_animal.requires_mrl_test is True

    def test_rejected_pass_requires_retest(self, farmer_client, regulator_client, retest_animal):
        test_id = _record(farmer_client, retest_animal).data['mrl_test']['id']

        response = _review(regulator_client, test_id, 'reject', 'Certificate illegible')

        assert response.data['mrl_test']['status'] == 'Rejected'
        assert response.data['mrl_status'] == 'TEST_REQUIRED'
        assert AuditLog.objects.filter(
            entity_type=AuditLog.EntityType.MRL_TEST,
            entity_id=test_id,
            event_type=AuditLog.EventType.REJECT,
        ).exists()

    def test_new_animal_failing_a_test_is_a_violation(self, farmer_client, make_animal):
        animal = make_animal()

        response = _record(farmer_client, animal, residue='150')

        assert response.data['mrl_status'] == 'VIOLATION'
        animal.refresh_from_db()
        assert animal.is_new is False

    def test_not_recorded_during_withdrawal(self, farmer_client, make_animal):
        animal = make_animal(
            is_new=False,
            in_withdrawal=True,
            withdrawal_end_date=timezone.localdate() + timedelta(days=3),
        )

        response = _record(farmer_client, animal)

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['error'] == 'MRL test cannot be recorded while the animal is in its withdrawal period'
        assert not MRLTest.objects.exists()

    def test_sample_must_postdate_withdrawal(self, farmer_client, retest_animal):
        early = (timezone.localdate() - timedelta(days=5)).isoformat()

        response = _record(farmer_client, retest_animal, test_date=early)

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['error'] == 'Test sample must be taken after the withdrawal period ended'

    def test_future_test_date_rejected(self, farmer_client, retest_animal):
        tomorrow = (timezone.localdate() + timedelta(days=1)).isoformat()

        response = _record(farmer_client, retest_animal, test_date=tomorrow)

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert 'test_date' in response.data['fields']

    def test_only_owner_records(self, vet_client, retest_animal):
        response = _record(vet_client, retest_animal)

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_only_regulator_reviews(self, farmer_client, retest_animal):
        test_id = _record(farmer_client, retest_animal).data['mrl_test']['id']

        response = _review(farmer_client, test_id, 'approve')

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_only_latest_test_is_reviewed(self, farmer_client, regulator_client, retest_animal):
        yesterday = (timezone.localdate() - timedelta(days=1)).isoformat()
        older = _record(farmer_client, retest_animal, test_date=yesterday)
        _record(farmer_client, retest_animal)

        response = _review(regulator_client, older.data['mrl_test']['id'], 'approve')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['error'] == 'Only the latest MRL test for an animal can be reviewed'

    def test_unknown_action(self, farmer_client, regulator_client, retest_animal):
        test_id = _record(farmer_client, retest_animal).data['mrl_test']['id']

        response = _review(regulator_client, test_id, 'ignore')

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_review_queue_and_history(self, farmer_client, regulator_client, retest_animal):
        _record(farmer_client, retest_animal)

        queue = regulator_client.get(MRL_TESTS_URL, {'status': 'Pending Verification'})
        history = farmer_client.get(f'{ANIMALS_URL}{retest_animal.tag_id}/mrl-tests/')

        assert queue.data['count'] == 1
        assert queue.data['results'][0]['tag_id'] == retest_animal.tag_id
        assert history.data['count'] == 1
