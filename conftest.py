"""
Shared pytest fixtures.

Users for each role, a medicated and a non-medicated feed batch, tagged
animals and authenticated API clients.
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone
from rest_framework.test import APIClient

from accounts.identity import Caller


@pytest.fixture(autouse=True)
def media_root(settings, tmp_path):
    """Generated PDFs go to a per-test directory."""
    settings.MEDIA_ROOT = tmp_path / 'media'
    return settings.MEDIA_ROOT


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def vet_user(db, django_user_model):
    """Create a veterinarian."""
    return django_user_model.objects.create_user(
        username='dr_mehta',
        password='testpass123',
        email='vet@test.com',
        first_name='Asha',
        last_name='Mehta',
        role='VETERINARIAN',
        vet_code='VET1001',
        license_number='VCI-44521',
    )


@pytest.fixture
def other_vet_user(db, django_user_model):
    return django_user_model.objects.create_user(
        username='dr_rao',
        password='testpass123',
        email='rao@test.com',
        role='VETERINARIAN',
        vet_code='VET1002',
    )


@pytest.fixture
def farmer_user(db, django_user_model, vet_user):
    """Create a farmer supervised by ``vet_user``."""
    return django_user_model.objects.create_user(
        username='farmer_singh',
        password='testpass123',
        email='farmer@test.com',
        first_name='Ravi',
        last_name='Singh',
        role='FARMER',
        farm_name='Green Pastures',
        assigned_vet=vet_user,
    )


@pytest.fixture
def other_farmer(db, django_user_model):
    """A farmer with no assigned vet."""
    return django_user_model.objects.create_user(
        username='farmer_das',
        password='testpass123',
        email='das@test.com',
        role='FARMER',
    )


@pytest.fixture
def regulator_user(db, django_user_model):
    return django_user_model.objects.create_user(
        username='regulator',
        password='testpass123',
        email='regulator@test.com',
        role='REGULATOR',
    )


@pytest.fixture
def farmer(farmer_user):
    """Caller for ``farmer_user``."""
    return Caller.from_user(farmer_user)


@pytest.fixture
def vet(vet_user):
    """Caller for ``vet_user``."""
    return Caller.from_user(vet_user)


@pytest.fixture
def farmer_client(farmer_user):
    client = APIClient()
    client.force_authenticate(user=farmer_user)
    return client


@pytest.fixture
def vet_client(vet_user):
    client = APIClient()
    client.force_authenticate(user=vet_user)
    return client


@pytest.fixture
def regulator_client(regulator_user):
    client = APIClient()
    client.force_authenticate(user=regulator_user)
    return client


@pytest.fixture
def medicated_feed(db, farmer_user):
    """100 kg of medicated feed with a 7-day withdrawal period."""
    from feed_inventory.models import FeedBatch

    return FeedBatch.objects.create(
        farmer=farmer_user,
        feed_name='Broiler Starter + OTC',
        feed_type=FeedBatch.FeedType.MEDICATED,
        batch_number='LOT-2231',
        prescription_required=True,
        antimicrobial_name='Oxytetracycline',
        antimicrobial_concentration=Decimal('50'),
        concentration_unit=FeedBatch.ConcentrationUnit.MG_PER_KG,
        withdrawal_period_days=7,
        total_quantity=Decimal('100'),
        unit=FeedBatch.Unit.KG,
        purchase_date=timezone.localdate() - timedelta(days=10),
        expiry_date=timezone.localdate() + timedelta(days=180),
    )


@pytest.fixture
def regular_feed(db, farmer_user):
    """100 kg of non-medicated feed."""
    from feed_inventory.models import FeedBatch

    return FeedBatch.objects.create(
        farmer=farmer_user,
        feed_name='Dairy Concentrate',
        feed_type=FeedBatch.FeedType.SUPPLEMENT,
        prescription_required=False,
        total_quantity=Decimal('100'),
        unit=FeedBatch.Unit.KG,
        purchase_date=timezone.localdate() - timedelta(days=10),
        expiry_date=timezone.localdate() + timedelta(days=180),
    )


@pytest.fixture
def make_animal(db, farmer_user):
    """Factory for animals; tags are 12 digits."""
    from animals.models import Animal

    counter = {'n': 0}

    def _make(farmer=None, **kwargs):
        counter['n'] += 1
        defaults = {
            'farmer': farmer or farmer_user,
            'tag_id': kwargs.pop('tag_id', f"{100000000000 + counter['n']}"),
            'name': f"Animal {counter['n']}",
            'species': Animal.Species.CATTLE,
        }
        defaults.update(kwargs)
        return Animal.objects.create(**defaults)

    return _make


@pytest.fixture
def animals(make_animal):
    """Two fresh, eligible animals."""
    return [make_animal(), make_animal()]
