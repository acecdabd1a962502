"""
Feed Administration URL Configuration
"""

from django.urls import path

from .views import (
    ActiveProgramsView,
    AdministrationDocumentsView,
    AMUSummaryView,
    AnimalHistoryView,
    ApproveAdministrationView,
    CompleteAdministrationView,
    FeedAdministrationDetailView,
    FeedAdministrationListView,
    PendingApprovalView,
    RejectAdministrationView,
    WithdrawalStatusView,
)

app_name = 'feed_administration'

urlpatterns = [
    path('', FeedAdministrationListView.as_view(), name='feed-admin-list'),

    # Reporting
    path('active/', ActiveProgramsView.as_view(), name='feed-admin-active'),
    path('withdrawal-status/', WithdrawalStatusView.as_view(), name='feed-admin-withdrawal-status'),
    path('pending/', PendingApprovalView.as_view(), name='feed-admin-pending'),
    path('animal/<str:tag_id>/', AnimalHistoryView.as_view(), name='feed-admin-animal-history'),
    path('amu-summary/', AMUSummaryView.as_view(), name='feed-admin-amu-summary'),

    # Single record and transitions
    path('<str:record_id>/', FeedAdministrationDetailView.as_view(), name='feed-admin-detail'),
    path('<str:record_id>/complete/', CompleteAdministrationView.as_view(), name='feed-admin-complete'),
    path('<str:record_id>/approve/', ApproveAdministrationView.as_view(), name='feed-admin-approve'),
    path('<str:record_id>/reject/', RejectAdministrationView.as_view(), name='feed-admin-reject'),
    path('<str:record_id>/documents/', AdministrationDocumentsView.as_view(), name='feed-admin-documents'),
]
