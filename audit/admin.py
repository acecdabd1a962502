from django.contrib import admin

from .models import AuditLog


@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    """Audit entries are append-only; the admin only reads them."""

    list_display = ['id', 'timestamp', 'event_type', 'entity_type', 'entity_id', 'farmer', 'performed_by', 'performed_by_role']
    list_filter = ['event_type', 'entity_type', 'performed_by_role']
    search_fields = ['entity_id', 'farmer__username', 'current_hash']
    date_hierarchy = 'timestamp'

    def get_readonly_fields(self, request, obj=None):
        return [field.name for field in self.model._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
