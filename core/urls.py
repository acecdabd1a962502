"""
URL configuration for the LivestockIQ AMU backend.

API layout:
    /api/auth/        JWT token endpoints and current user
    /api/animals/     Farmer animal registry and MRL status
    /api/feed/        Feed batch inventory (ledger)
    /api/feed-admin/  Feed administration workflow (create/approve/reject/complete)
    /api/audit/       Hash-chained audit trail
"""
from django.contrib import admin
from django.urls import path, include
from django.views.generic import RedirectView

urlpatterns = [
    path('', RedirectView.as_view(url='/admin/', permanent=False)),
    path('admin/', admin.site.urls),
    path('api/auth/', include('accounts.urls')),
    path('api/animals/', include('animals.urls')),  # Animal registry
    path('api/feed/', include('feed_inventory.urls')),  # Feed inventory management
    path('api/feed-admin/', include('feed_administration.urls')),  # Feed administration workflow
    path('api/audit/', include('audit.urls')),  # Compliance audit trail
]
