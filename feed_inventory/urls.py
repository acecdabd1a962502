"""
Feed Inventory URL Configuration
"""

from django.urls import path

from .views import (
    ActiveFeedView,
    ExpiringFeedView,
    FeedConsumeView,
    FeedDetailView,
    FeedListView,
    FeedStatsView,
)

app_name = 'feed_inventory'

urlpatterns = [
    path('', FeedListView.as_view(), name='feed-list'),
    path('stats/', FeedStatsView.as_view(), name='feed-stats'),
    path('active/', ActiveFeedView.as_view(), name='feed-active'),
    path('expiring/<int:days>/', ExpiringFeedView.as_view(), name='feed-expiring'),
    path('<str:feed_id>/', FeedDetailView.as_view(), name='feed-detail'),
    path('<str:feed_id>/consume/', FeedConsumeView.as_view(), name='feed-consume'),
]
