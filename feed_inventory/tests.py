"""
Tests for the feed inventory ledger and feed batch API
"""
import pytest
from decimal import Decimal
from datetime import timedelta
from django.utils import timezone
from rest_framework import status

from audit.models import AuditLog
from core.exceptions import ValidationFailed
from feed_administration.services.workflow import FeedAdministrationWorkflowService
from feed_inventory import ledger
from feed_inventory.exceptions import InsufficientQuantity, LedgerError, format_quantity
from feed_inventory.models import FeedBatch, FeedBatchMovement
from feed_inventory.tasks import send_expiring_feed_alerts

FEED_URL = '/api/feed/'


@pytest.fixture
def expiring_feed(db, farmer_user):
    """20 kg of starter feed expiring in five days."""
    return FeedBatch.objects.create(
        farmer=farmer_user,
        feed_name='Calf Starter',
        feed_type=FeedBatch.FeedType.STARTER,
        prescription_required=False,
        total_quantity=Decimal('20'),
        purchase_date=timezone.localdate() - timedelta(days=60),
        expiry_date=timezone.localdate() + timedelta(days=5),
    )


# =============================================================================
# LEDGER
# =============================================================================

@pytest.mark.django_db
class TestLedger:

    def test_new_batch_starts_full(self, medicated_feed):
        assert medicated_feed.remaining_quantity == Decimal('100')
        assert medicated_feed.consumed_quantity == 0

    def test_consume_journals_the_movement(self, medicated_feed, farmer_user):
        movement = ledger.consume(medicated_feed, '12.5', recorded_by=farmer_user)

        assert medicated_feed.remaining_quantity == Decimal('87.5')
        assert movement.movement_type == FeedBatchMovement.MovementType.CONSUME
        assert movement.quantity == Decimal('-12.5')
        assert movement.balance_after == Decimal('87.5')

    def test_consume_everything_deactivates(self, medicated_feed):
        ledger.consume(medicated_feed, '100')

        assert medicated_feed.remaining_quantity == 0
        assert medicated_feed.is_active is False
        assert medicated_feed.depleted_at is not None

    def test_restore_reactivates_depleted_batch(self, medicated_feed):
        ledger.consume(medicated_feed, '100')
        ledger.restore(medicated_feed, '40')

        assert medicated_feed.remaining_quantity == Decimal('40')
        assert medicated_feed.is_active is True
        assert medicated_feed.depleted_at is None

    def test_stale_instance_cannot_overdraw(self, medicated_feed):
        stale = FeedBatch.objects.get(pk=medicated_feed.pk)
        ledger.consume(medicated_feed, '90')

        # ``stale`` still believes 100 kg remain
        with pytest.raises(InsufficientQuantity) as exc_info:
            ledger.consume(stale, '50')

        assert exc_info.value.available == Decimal('10')
        medicated_feed.refresh_from_db()
        assert medicated_feed.remaining_quantity == Decimal('10')

    def test_restore_cannot_exceed_total(self, medicated_feed):
        with pytest.raises(LedgerError):
            ledger.restore(medicated_feed, '1')

        assert FeedBatchMovement.objects.count() == 0

    @pytest.mark.parametrize('value', [None, '', 'abc', '0', '-3', 'NaN'])
    def test_invalid_quantities(self, value):
        with pytest.raises(ValidationFailed):
            ledger.to_quantity(value)

    def test_quantity_is_quantized(self):
        assert ledger.to_quantity('2.5') == Decimal('2.500')

    def test_format_quantity_drops_trailing_zeros(self):
        assert format_quantity(Decimal('40.000')) == '40'
        assert format_quantity(Decimal('12.500')) == '12.5'


# =============================================================================
# FEED BATCH API
# =============================================================================

@pytest.mark.django_db
class TestFeedCreate:

    def test_farmer_adds_medicated_feed(self, farmer_client, farmer_user):
        response = farmer_client.post(FEED_URL, {
            'feed_name': 'Layer Mash + Tylosin',
            'feed_type': 'Medicated',
            'prescription_required': True,
            'antimicrobial_name': 'Tylosin',
            'antimicrobial_concentration': '100',
            'withdrawal_period_days': 5,
            'total_quantity': '250',
            'expiry_date': (timezone.localdate() + timedelta(days=90)).isoformat(),
        }, format='json')

        assert response.status_code == status.HTTP_201_CREATED
        feed = response.data['feed']
        assert feed['remaining_quantity'] == 250.0
        assert feed['is_active'] is True
        assert AuditLog.objects.filter(
            entity_type=AuditLog.EntityType.FEED,
            entity_id=feed['id'],
            event_type=AuditLog.EventType.CREATE,
        ).exists()

    def test_medicated_feed_needs_antimicrobial_details(self, farmer_client):
        response = farmer_client.post(FEED_URL, {
            'feed_name': 'Unnamed medicated',
            'prescription_required': True,
            'total_quantity': '10',
            'expiry_date': (timezone.localdate() + timedelta(days=90)).isoformat(),
        }, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert 'antimicrobial_name' in response.data['errors']
        assert 'withdrawal_period_days' in response.data['errors']

    def test_quantity_required(self, farmer_client):
        response = farmer_client.post(FEED_URL, {
            'feed_name': 'Hay',
            'prescription_required': False,
            'total_quantity': '0',
            'expiry_date': (timezone.localdate() + timedelta(days=90)).isoformat(),
        }, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['error'] == 'Total quantity must be greater than 0'

    def test_expiry_required(self, farmer_client):
        response = farmer_client.post(FEED_URL, {
            'feed_name': 'Hay',
            'prescription_required': False,
            'total_quantity': '10',
        }, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['error'] == 'Expiry date is required'

    def test_vet_cannot_add_feed(self, vet_client):
        response = vet_client.post(FEED_URL, {'feed_name': 'x', 'total_quantity': '1'}, format='json')

        assert response.status_code == status.HTTP_403_FORBIDDEN


@pytest.mark.django_db
class TestFeedDetail:

    def test_quantities_are_not_editable(self, farmer_client, medicated_feed):
        response = farmer_client.put(
            f'{FEED_URL}{medicated_feed.id}/',
            {'remaining_quantity': '500', 'feed_name': 'Renamed'},
            format='json',
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['error'] == 'Feed quantities cannot be edited directly'
        assert response.data['fields'] == ['remaining_quantity']
        medicated_feed.refresh_from_db()
        assert medicated_feed.feed_name == 'Broiler Starter + OTC'

    def test_descriptive_update_is_audited(self, farmer_client, medicated_feed):
        response = farmer_client.put(f'{FEED_URL}{medicated_feed.id}/', {'supplier': 'AgriCo'}, format='json')

        assert response.status_code == status.HTTP_200_OK
        assert response.data['feed']['supplier'] == 'AgriCo'
        entry = AuditLog.objects.get(entity_id=str(medicated_feed.id), event_type=AuditLog.EventType.UPDATE)
        assert entry.changes == {'supplier': {'from': '', 'to': 'AgriCo'}}

    def test_medication_details_frozen_once_administered(self, farmer_client, vet, medicated_feed, animals):
        created = farmer_client.post('/api/feed-admin/', {
            'feed_id': str(medicated_feed.id),
            'animal_ids': [animal.tag_id for animal in animals],
            'feed_quantity_used': '10',
        }, format='json')

        response = farmer_client.put(
            f'{FEED_URL}{medicated_feed.id}/',
            {'prescription_required': False, 'withdrawal_period_days': 0},
            format='json',
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['error'] == 'Medication details cannot be changed once the feed has been administered'
        assert response.data['fields'] == ['prescription_required', 'withdrawal_period_days']
        medicated_feed.refresh_from_db()
        assert medicated_feed.prescription_required is True
        assert medicated_feed.withdrawal_period_days == 7

        FeedAdministrationWorkflowService().approve(vet, created.data['feed_administration']['id'])
        for animal in animals:
            animal.refresh_from_db()
            assert animal.in_withdrawal is True

    def test_unchanged_medication_details_allowed_once_administered(self, farmer_client, medicated_feed, animals):
        farmer_client.post('/api/feed-admin/', {
            'feed_id': str(medicated_feed.id),
            'animal_ids': [animals[0].tag_id],
            'feed_quantity_used': '10',
        }, format='json')

        response = farmer_client.put(
            f'{FEED_URL}{medicated_feed.id}/',
            {'prescription_required': True, 'supplier': 'AgriCo'},
            format='json',
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data['feed']['supplier'] == 'AgriCo'

    def test_unused_medicated_feed_can_be_reclassified(self, farmer_client, medicated_feed):
        response = farmer_client.put(
            f'{FEED_URL}{medicated_feed.id}/',
            {'withdrawal_period_days': 10},
            format='json',
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data['feed']['withdrawal_period_days'] == 10

    def test_other_farmer_cannot_view(self, api_client, other_farmer, medicated_feed):
        api_client.force_authenticate(user=other_farmer)

        response = api_client.get(f'{FEED_URL}{medicated_feed.id}/')

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_supervising_vet_can_view(self, vet_client, medicated_feed):
        response = vet_client.get(f'{FEED_URL}{medicated_feed.id}/')

        assert response.status_code == status.HTTP_200_OK
        assert response.data['antimicrobial_name'] == 'Oxytetracycline'

    def test_unknown_feed(self, farmer_client):
        response = farmer_client.get(f'{FEED_URL}not-a-feed/')

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_unused_feed_can_be_deleted(self, farmer_client, regular_feed):
        response = farmer_client.delete(f'{FEED_URL}{regular_feed.id}/')

        assert response.status_code == status.HTTP_200_OK
        assert not FeedBatch.objects.filter(pk=regular_feed.pk).exists()

    def test_used_feed_cannot_be_deleted(self, farmer_client, regular_feed, animals):
        farmer_client.post('/api/feed-admin/', {
            'feed_id': str(regular_feed.id),
            'animal_ids': [animals[0].tag_id],
            'feed_quantity_used': '5',
        }, format='json')

        response = farmer_client.delete(f'{FEED_URL}{regular_feed.id}/')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert FeedBatch.objects.filter(pk=regular_feed.pk).exists()


@pytest.mark.django_db
class TestFeedConsume:

    def test_manual_consumption(self, farmer_client, regular_feed):
        response = farmer_client.patch(f'{FEED_URL}{regular_feed.id}/consume/', {'quantity': '30'}, format='json')

        assert response.status_code == status.HTTP_200_OK
        assert response.data['feed']['remaining_quantity'] == 70.0
        movement = regular_feed.movements.get()
        assert movement.notes == 'Manual consumption'
        assert movement.administration_id is None

    def test_overdraw_refused(self, farmer_client, regular_feed):
        response = farmer_client.patch(f'{FEED_URL}{regular_feed.id}/consume/', {'quantity': '101'}, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['error'] == 'Insufficient feed. Available: 100 kg'


@pytest.mark.django_db
class TestFeedReports:

    def test_list_is_scoped_and_paginated(self, farmer_client, medicated_feed, regular_feed):
        response = farmer_client.get(FEED_URL)

        assert response.status_code == status.HTTP_200_OK
        assert response.data['count'] == 2
        assert response.data['current_page'] == 1

    def test_list_filters_medicated(self, farmer_client, medicated_feed, regular_feed):
        response = farmer_client.get(FEED_URL, {'prescription_required': 'true'})

        assert [feed['id'] for feed in response.data['results']] == [str(medicated_feed.id)]

    def test_regulator_sees_all_feed(self, regulator_client, medicated_feed, regular_feed):
        response = regulator_client.get(FEED_URL)

        assert response.data['count'] == 2

    def test_active_excludes_depleted(self, farmer_client, medicated_feed, regular_feed):
        ledger.consume(regular_feed, '100')

        response = farmer_client.get(f'{FEED_URL}active/')

        assert [feed['id'] for feed in response.data['results']] == [str(medicated_feed.id)]

    def test_expiring_window(self, farmer_client, medicated_feed, expiring_feed):
        response = farmer_client.get(f'{FEED_URL}expiring/30/')

        assert response.data['count'] == 1
        assert response.data['results'][0]['feed_name'] == 'Calf Starter'

    def test_stats(self, farmer_client, medicated_feed, regular_feed):
        ledger.consume(medicated_feed, '20')

        response = farmer_client.get(f'{FEED_URL}stats/')

        assert response.data['total_batches'] == 2
        assert response.data['medicated_batches'] == 1
        assert response.data['antimicrobial_in_stock'] == 4000.0
        assert response.data['quantities_by_unit']['kg'] == {
            'total_quantity': 200.0,
            'remaining_quantity': 180.0,
        }


# =============================================================================
# EXPIRY ALERTS
# =============================================================================

@pytest.mark.django_db
class TestExpiringFeedAlerts:

    def test_farmer_is_alerted(self, medicated_feed, expiring_feed, mailoutbox):
        sent = send_expiring_feed_alerts()

        assert sent == 1
        assert len(mailoutbox) == 1
        assert mailoutbox[0].subject == '1 Feed Batch(es) Expiring Soon'
        assert 'Calf Starter' in mailoutbox[0].body

    def test_no_alert_when_nothing_expires(self, medicated_feed, mailoutbox):
        assert send_expiring_feed_alerts() == 0
        assert mailoutbox == []
