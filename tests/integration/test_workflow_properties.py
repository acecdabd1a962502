"""
Workflow invariants exercised through FeedAdministrationWorkflowService.

- Stock conservation across create / reject / delete / complete
- A record's stock is restored at most once
- Medicated-feed eligibility is all-or-nothing
- Transitions are guarded by current status and caller role
- Eligibility is re-checked when a vet approves
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from django.db.models import Sum
from django.utils import timezone

from accounts.identity import Caller
from animals.models import Animal
from core.exceptions import BusinessRuleViolation, NotFound, PermissionDenied, ValidationFailed
from feed_administration.exceptions import IneligibleAnimals, StatusTransitionError
from feed_administration.models import FeedAdministration, Prescription
from feed_administration.services.workflow import FeedAdministrationWorkflowService
from feed_inventory import ledger
from feed_inventory.exceptions import InsufficientQuantity, LedgerError
from feed_inventory.models import FeedBatch, FeedBatchMovement

pytestmark = pytest.mark.django_db


@pytest.fixture
def workflow():
    return FeedAdministrationWorkflowService()


def create(workflow, caller, feed, animals, quantity, **extra):
    data = {
        'feed_id': str(feed.id),
        'animal_ids': [animal.tag_id for animal in animals],
        'feed_quantity_used': quantity,
    }
    data.update(extra)
    return workflow.create_administration(caller, data)


def outstanding_quantity(feed):
    """Quantity held by records whose stock has not been given back."""
    total = FeedAdministration.objects.filter(feed=feed, stock_restored_at__isnull=True).aggregate(
        total=Sum('feed_quantity_used')
    )['total']
    return total or Decimal('0')


# ==============================================================================
# TEST: CONSERVATION
# ==============================================================================

class TestConservation:

    def test_remaining_plus_outstanding_equals_total(self, workflow, farmer, vet, medicated_feed, make_animal):
        a1, a2, a3 = make_animal(), make_animal(), make_animal()

        kept = create(workflow, farmer, medicated_feed, [a1], '25')
        rejected = create(workflow, farmer, medicated_feed, [a2], '30')
        deleted = create(workflow, farmer, medicated_feed, [a3], '15')

        workflow.approve(vet, kept.id)
        workflow.reject(vet, rejected.id, 'not indicated')
        workflow.delete(farmer, deleted.id)
        workflow.complete(farmer, kept.id)

        medicated_feed.refresh_from_db()
        assert medicated_feed.remaining_quantity + outstanding_quantity(medicated_feed) == medicated_feed.total_quantity
        assert medicated_feed.remaining_quantity == Decimal('75')

        journal = FeedBatchMovement.objects.filter(batch=medicated_feed).aggregate(total=Sum('quantity'))['total']
        assert medicated_feed.total_quantity + journal == medicated_feed.remaining_quantity

    def test_failed_create_leaves_no_trace(self, workflow, farmer, medicated_feed, make_animal):
        in_withdrawal = make_animal(
            is_new=False,
            in_withdrawal=True,
            withdrawal_end_date=timezone.localdate() + timedelta(days=3),
        )

        with pytest.raises(IneligibleAnimals):
            create(workflow, farmer, medicated_feed, [make_animal(), in_withdrawal], '10')

        medicated_feed.refresh_from_db()
        assert medicated_feed.remaining_quantity == Decimal('100')
        assert FeedAdministration.objects.count() == 0
        assert FeedBatchMovement.objects.count() == 0


# ==============================================================================
# TEST: NO DOUBLE RESTORE
# ==============================================================================

class TestNoDoubleRestore:

    def test_second_reject_is_refused(self, workflow, farmer, vet, medicated_feed, animals):
        record = create(workflow, farmer, medicated_feed, animals, '40')
        workflow.reject(vet, record.id, 'dose too high')

        with pytest.raises(StatusTransitionError):
            workflow.reject(vet, record.id, 'again')

        medicated_feed.refresh_from_db()
        assert medicated_feed.remaining_quantity == Decimal('100')

    def test_ledger_refuses_second_restore_for_same_record(self, workflow, farmer, vet, medicated_feed, animals):
        record = create(workflow, farmer, medicated_feed, animals, '40')
        workflow.reject(vet, record.id, 'dose too high')

        with pytest.raises(LedgerError):
            ledger.restore(medicated_feed, Decimal('40'), administration_id=record.id)

        medicated_feed.refresh_from_db()
        assert medicated_feed.remaining_quantity == Decimal('100')
        assert FeedBatchMovement.objects.filter(
            administration_id=record.id,
            movement_type=FeedBatchMovement.MovementType.RESTORE,
        ).count() == 1


# ==============================================================================
# TEST: ALL-OR-NOTHING ELIGIBILITY
# ==============================================================================

class TestEligibility:

    def test_every_ineligible_animal_is_reported(self, workflow, farmer, medicated_feed, make_animal):
        eligible = make_animal()
        violation = make_animal(mrl_status=Animal.MRLStatus.VIOLATION, is_new=False)
        untested = make_animal(requires_mrl_test=True, is_new=False)

        with pytest.raises(IneligibleAnimals) as exc_info:
            create(workflow, farmer, medicated_feed, [eligible, violation, untested], '10')

        reported = {entry['tag_id']: entry['mrl_status'] for entry in exc_info.value.ineligible}
        assert reported == {violation.tag_id: 'VIOLATION', untested.tag_id: 'TEST_REQUIRED'}
        assert exc_info.value.message.startswith('2 animal(s) are not eligible for medicated feed')

    def test_safe_and_new_animals_are_eligible(self, workflow, farmer, medicated_feed, make_animal):
        new_animal = make_animal()
        safe_animal = make_animal(is_new=False, mrl_status=Animal.MRLStatus.SAFE)

        record = create(workflow, farmer, medicated_feed, [new_animal, safe_animal], '10')

        assert record.status == FeedAdministration.Status.PENDING_APPROVAL
        new_animal.refresh_from_db()
        assert new_animal.is_new is False

    def test_animals_of_another_farmer_are_not_found(self, workflow, farmer, medicated_feed, make_animal, other_farmer):
        foreign = make_animal(farmer=other_farmer)

        with pytest.raises(NotFound) as exc_info:
            create(workflow, farmer, medicated_feed, [make_animal(), foreign], '10')

        assert exc_info.value.details['missing_animal_ids'] == [foreign.tag_id]


# ==============================================================================
# TEST: STATE GUARDS
# ==============================================================================

class TestStateGuards:

    def test_double_approve_fails(self, workflow, farmer, vet, medicated_feed, animals):
        record = create(workflow, farmer, medicated_feed, animals, '20')
        workflow.approve(vet, record.id)

        with pytest.raises(StatusTransitionError) as exc_info:
            workflow.approve(vet, record.id)

        assert exc_info.value.message == 'This administration is not pending approval'
        assert Prescription.objects.filter(feed_administration=record).count() == 1

    def test_complete_requires_active(self, workflow, farmer, medicated_feed, animals):
        record = create(workflow, farmer, medicated_feed, animals, '20')

        with pytest.raises(StatusTransitionError) as exc_info:
            workflow.complete(farmer, record.id)

        assert exc_info.value.message == 'Can only complete active feeding programs'

    def test_farmer_cannot_approve(self, workflow, farmer, medicated_feed, animals):
        record = create(workflow, farmer, medicated_feed, animals, '20')

        with pytest.raises(PermissionDenied):
            workflow.approve(farmer, record.id)

    def test_vet_cannot_create(self, workflow, vet, medicated_feed, animals):
        with pytest.raises(PermissionDenied):
            create(workflow, vet, medicated_feed, animals, '20')

    def test_unknown_record(self, workflow, vet):
        with pytest.raises(NotFound):
            workflow.approve(vet, 'not-a-uuid')

    def test_other_farmer_cannot_use_feed(self, workflow, other_farmer, medicated_feed, make_animal):
        animal = make_animal(farmer=other_farmer)

        with pytest.raises(PermissionDenied):
            create(workflow, Caller.from_user(other_farmer), medicated_feed, [animal], '5')

    def test_quantity_must_be_positive(self, workflow, farmer, medicated_feed, animals):
        with pytest.raises(ValidationFailed) as exc_info:
            create(workflow, farmer, medicated_feed, animals, '0')
        assert exc_info.value.message == 'Valid feed quantity is required'

    def test_expired_feed_is_refused(self, workflow, farmer, medicated_feed, animals):
        FeedBatch.objects.filter(pk=medicated_feed.pk).update(expiry_date=timezone.localdate() - timedelta(days=1))

        with pytest.raises(BusinessRuleViolation) as exc_info:
            create(workflow, farmer, medicated_feed, animals, '5')
        assert exc_info.value.message.startswith('This feed batch expired on')


# ==============================================================================
# TEST: APPROVAL
# ==============================================================================

class TestApproval:

    def test_approve_starts_withdrawal(self, workflow, farmer, vet, medicated_feed, animals):
        record = create(workflow, farmer, medicated_feed, animals, '40')

        approved = workflow.approve(vet, record.id, notes='Give with water')

        assert approved.status == FeedAdministration.Status.ACTIVE
        assert approved.vet_approved is True
        assert approved.approved_by_id == vet.id
        assert approved.withdrawal_end_date == approved.start_date + timedelta(days=7)
        assert approved.antimicrobial_dose_total == Decimal('2000')
        assert approved.prescription.vet_id == vet.id

        for animal in animals:
            animal.refresh_from_db()
            assert animal.in_withdrawal is True
            assert animal.withdrawal_end_date == approved.withdrawal_end_date
            assert animal.active_feed_administrations.filter(pk=record.pk).exists()

    def test_any_vet_may_approve(self, workflow, farmer, other_vet_user, medicated_feed, animals):
        record = create(workflow, farmer, medicated_feed, animals, '10')

        approved = workflow.approve(Caller.from_user(other_vet_user), record.id)

        assert approved.vet_id == other_vet_user.id

    def test_degraded_animal_blocks_approval(self, workflow, farmer, vet, medicated_feed, animals):
        record = create(workflow, farmer, medicated_feed, animals, '10')
        Animal.objects.filter(pk=animals[0].pk).update(mrl_status=Animal.MRLStatus.VIOLATION)

        with pytest.raises(IneligibleAnimals) as exc_info:
            workflow.approve(vet, record.id)

        assert [entry['tag_id'] for entry in exc_info.value.ineligible] == [animals[0].tag_id]
        record.refresh_from_db()
        assert record.status == FeedAdministration.Status.PENDING_APPROVAL
        assert not Prescription.objects.filter(feed_administration=record).exists()

    def test_revalidation_can_be_disabled(self, settings, workflow, farmer, vet, medicated_feed, animals):
        settings.FEED_ADMIN_REVALIDATE_ON_APPROVE = False
        record = create(workflow, farmer, medicated_feed, animals, '10')
        Animal.objects.filter(pk=animals[0].pk).update(mrl_status=Animal.MRLStatus.VIOLATION)

        approved = workflow.approve(vet, record.id)

        assert approved.status == FeedAdministration.Status.ACTIVE


# ==============================================================================
# TEST: COMPLETE AND UPDATE
# ==============================================================================

class TestCompleteAndUpdate:

    def test_complete_recomputes_withdrawal_from_end_date(self, workflow, farmer, vet, medicated_feed, animals):
        record = create(workflow, farmer, medicated_feed, animals, '10')
        workflow.approve(vet, record.id)
        end = timezone.localdate() + timedelta(days=5)

        completed = workflow.complete(farmer, record.id, end_date=end.isoformat())

        assert completed.status == FeedAdministration.Status.COMPLETED
        assert completed.end_date == end
        assert completed.withdrawal_end_date == end + timedelta(days=7)
        animals[0].refresh_from_db()
        assert animals[0].withdrawal_end_date == end + timedelta(days=7)

        medicated_feed.refresh_from_db()
        assert medicated_feed.remaining_quantity == Decimal('90')

    def test_end_date_before_start_is_refused(self, workflow, farmer, regular_feed, animals):
        record = create(workflow, farmer, regular_feed, animals, '10')

        with pytest.raises(ValidationFailed):
            workflow.complete(farmer, record.id, end_date=(record.start_date - timedelta(days=1)).isoformat())

    def test_update_refuses_ownership_and_workflow_fields(self, workflow, farmer, regular_feed, animals):
        record = create(workflow, farmer, regular_feed, animals, '10')

        with pytest.raises(ValidationFailed) as exc_info:
            workflow.update(farmer, record.id, {'feed': 'other', 'status': 'Completed', 'notes': 'x'})

        assert exc_info.value.details['fields'] == ['feed', 'status']
        record.refresh_from_db()
        assert record.notes == ''

    def test_update_start_date_moves_withdrawal(self, workflow, farmer, medicated_feed, animals):
        record = create(workflow, farmer, medicated_feed, animals, '10')
        new_start = record.start_date - timedelta(days=2)

        updated = workflow.update(farmer, record.id, {'start_date': new_start.isoformat(), 'group_name': 'Pen 4'})

        assert updated.group_name == 'Pen 4'
        assert updated.withdrawal_end_date == new_start + timedelta(days=7)

    def test_unrelated_vet_cannot_update(self, workflow, farmer, other_vet_user, regular_feed, animals):
        record = create(workflow, farmer, regular_feed, animals, '10')

        with pytest.raises(PermissionDenied):
            workflow.update(Caller.from_user(other_vet_user), record.id, {'notes': 'hello'})


# ==============================================================================
# TEST: REPORTING
# ==============================================================================

class TestReporting:

    def test_amu_summary_counts_approved_medicated_feed_only(
        self, workflow, farmer, vet, medicated_feed, regular_feed, animals, make_animal
    ):
        approved = create(workflow, farmer, medicated_feed, animals, '40')
        workflow.approve(vet, approved.id)
        create(workflow, farmer, medicated_feed, [make_animal()], '10')  # still pending
        create(workflow, farmer, regular_feed, animals, '10')

        summary = workflow.amu_summary(farmer)

        assert summary['total_dose'] == 2000.0
        assert summary['administrations'] == 1
        assert summary['by_drug'] == {'Oxytetracycline': {'total_dose': 2000.0, 'administrations': 1}}

    def test_pending_queue_lists_supervised_farmers_only(
        self, workflow, farmer, vet, medicated_feed, make_animal
    ):
        mine = create(workflow, farmer, medicated_feed, [make_animal()], '5')

        assert list(workflow.pending_for_vet(vet)) == [mine]

        with pytest.raises(PermissionDenied):
            workflow.pending_for_vet(farmer)

    def test_insufficient_stock_is_reported_with_quantities(self, workflow, farmer, medicated_feed, animals):
        with pytest.raises(InsufficientQuantity) as exc_info:
            create(workflow, farmer, medicated_feed, animals, '100.5')

        assert exc_info.value.details == {'available': 100.0, 'requested': 100.5, 'unit': 'kg'}
