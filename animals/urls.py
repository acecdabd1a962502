from django.urls import path

from .views import (
    AnimalDetailView,
    AnimalListView,
    AnimalMRLStatusView,
    AnimalMRLTestView,
    MRLTestListView,
    MRLTestReviewView,
)

app_name = 'animals'

urlpatterns = [
    path('', AnimalListView.as_view(), name='animal-list'),
    path('mrl-tests/', MRLTestListView.as_view(), name='mrl-test-list'),
    path('mrl-tests/<str:test_id>/review/', MRLTestReviewView.as_view(), name='mrl-test-review'),
    path('<str:tag_id>/', AnimalDetailView.as_view(), name='animal-detail'),
    path('<str:tag_id>/mrl-status/', AnimalMRLStatusView.as_view(), name='animal-mrl-status'),
    path('<str:tag_id>/mrl-tests/', AnimalMRLTestView.as_view(), name='animal-mrl-tests'),
]
