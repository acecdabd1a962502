from django.urls import path

from .views import AuditLogListView, AuditTrailView, VerifyEntityIntegrityView, VerifyFarmIntegrityView

app_name = 'audit'

urlpatterns = [
    path('logs/', AuditLogListView.as_view(), name='audit-logs'),
    path('trail/<str:entity_type>/<str:entity_id>/', AuditTrailView.as_view(), name='audit-trail'),
    path('verify/farm/<uuid:farmer_id>/', VerifyFarmIntegrityView.as_view(), name='audit-verify-farm'),
    path('verify/<str:entity_type>/<str:entity_id>/', VerifyEntityIntegrityView.as_view(), name='audit-verify-entity'),
]
