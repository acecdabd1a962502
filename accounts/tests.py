"""
Tests for caller identity, JWT login and the profile endpoint
"""
import pytest
from rest_framework import status

from accounts.identity import Caller


@pytest.mark.django_db
class TestCaller:

    def test_role_flags(self, farmer_user, vet_user, regulator_user):
        farmer = Caller.from_user(farmer_user)
        vet = Caller.from_user(vet_user)
        regulator = Caller.from_user(regulator_user)

        assert (farmer.is_farmer, farmer.is_veterinarian, farmer.is_regulator) == (True, False, False)
        assert (vet.is_farmer, vet.is_veterinarian, vet.is_regulator) == (False, True, False)
        assert (regulator.is_farmer, regulator.is_veterinarian, regulator.is_regulator) == (False, False, True)
        assert farmer.id == farmer_user.pk

    def test_unknown_role_rejected(self, farmer_user):
        with pytest.raises(ValueError):
            Caller(farmer_user, 'ADMIN')


@pytest.mark.django_db
class TestAuthentication:

    def test_token_includes_role(self, api_client, vet_user):
        response = api_client.post('/api/auth/token/', {
            'username': 'dr_mehta',
            'password': 'testpass123',
        }, format='json')

        assert response.status_code == status.HTTP_200_OK
        assert 'access' in response.data
        assert 'refresh' in response.data
        assert response.data['user']['role'] == 'VETERINARIAN'
        assert response.data['user']['id'] == str(vet_user.id)

    def test_bad_password(self, api_client, vet_user):
        response = api_client.post('/api/auth/token/', {
            'username': 'dr_mehta',
            'password': 'wrong',
        }, format='json')

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_bearer_token_authenticates(self, api_client, farmer_user):
        login = api_client.post('/api/auth/token/', {
            'username': 'farmer_singh',
            'password': 'testpass123',
        }, format='json')
        api_client.credentials(HTTP_AUTHORIZATION=f"Bearer {login.data['access']}")

        response = api_client.get('/api/auth/me/')

        assert response.status_code == status.HTTP_200_OK
        assert response.data['username'] == 'farmer_singh'

    def test_anonymous_request_rejected(self, api_client):
        response = api_client.get('/api/feed-admin/')

        assert response.status_code == status.HTTP_401_UNAUTHORIZED


@pytest.mark.django_db
class TestProfile:

    def test_farmer_profile_shows_assigned_vet(self, farmer_client):
        response = farmer_client.get('/api/auth/me/')

        assert response.data['role'] == 'FARMER'
        assert response.data['role_display'] == 'Farmer'
        assert response.data['assigned_vet_name'] == 'Asha Mehta'

    def test_role_cannot_be_changed(self, farmer_client, farmer_user):
        response = farmer_client.patch('/api/auth/me/', {'role': 'REGULATOR', 'farm_name': 'Hill Farm'}, format='json')

        assert response.status_code == status.HTTP_200_OK
        farmer_user.refresh_from_db()
        assert farmer_user.role == 'FARMER'
        assert farmer_user.farm_name == 'Hill Farm'
