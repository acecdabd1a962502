"""
Feed Administration Admin Configuration

Records are read-only: status, stock and approval fields change only through
the workflow service so that the ledger and audit trail stay consistent.
"""

from django.contrib import admin
from django.utils.html import format_html

from .models import AdministrationDocument, FeedAdministration, OutboxEvent, Prescription


class AdministrationDocumentInline(admin.TabularInline):
    model = AdministrationDocument
    extra = 0
    can_delete = False
    fields = ['document_type', 'file', 'created_at']
    readonly_fields = fields


class OutboxEventInline(admin.TabularInline):
    model = OutboxEvent
    extra = 0
    can_delete = False
    fields = ['event_type', 'status', 'attempts', 'last_error', 'processed_at']
    readonly_fields = fields


@admin.register(FeedAdministration)
class FeedAdministrationAdmin(admin.ModelAdmin):
    list_display = [
        'id',
        'farmer',
        'feed',
        'number_of_animals',
        'feed_quantity_used',
        'start_date',
        'status_badge',
        'withdrawal_end_date',
        'side_effect_errors',
    ]
    list_filter = ['status', 'feed__prescription_required', 'start_date']
    search_fields = ['farmer__username', 'feed__feed_name', 'animals__tag_id', 'group_name']
    inlines = [AdministrationDocumentInline, OutboxEventInline]

    def get_readonly_fields(self, request, obj=None):
        return [field.name for field in self.model._meta.fields] + ['animals']

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False

    def status_badge(self, obj):
        colors = {
            FeedAdministration.Status.PENDING_APPROVAL: '#ffc107',
            FeedAdministration.Status.ACTIVE: '#007bff',
            FeedAdministration.Status.REJECTED: '#dc3545',
            FeedAdministration.Status.COMPLETED: '#28a745',
        }
        return format_html(
            '<span style="background-color: {}; color: white; padding: 3px 10px; border-radius: 3px;">{}</span>',
            colors.get(obj.status, '#6c757d'),
            obj.get_status_display()
        )
    status_badge.short_description = 'Status'

    def side_effect_errors(self, obj):
        errors = [error for error in (obj.email_error, obj.document_error) if error]
        if not errors:
            return '-'
        return format_html('<span style="color: {};">{}</span>', 'red', '; '.join(errors))
    side_effect_errors.short_description = 'Errors'


@admin.register(Prescription)
class PrescriptionAdmin(admin.ModelAdmin):
    list_display = ['id', 'feed_administration', 'farmer', 'vet', 'issue_date', 'status']
    list_filter = ['status', 'issue_date']
    search_fields = ['farmer__username', 'vet__username']
    readonly_fields = ['id', 'feed_administration', 'farmer', 'vet', 'issue_date', 'created_at']


@admin.register(OutboxEvent)
class OutboxEventAdmin(admin.ModelAdmin):
    list_display = ['id', 'event_type', 'feed_administration', 'status', 'attempts', 'created_at', 'processed_at']
    list_filter = ['status', 'event_type']
    readonly_fields = [
        'id', 'event_type', 'feed_administration', 'payload', 'attempts', 'last_error',
        'created_at', 'claimed_at', 'processed_at',
    ]
    actions = ['redrive']

    @admin.action(description='Run selected events now')
    def redrive(self, request, queryset):
        from .services.outbox import OutboxDispatcher

        dispatcher = OutboxDispatcher()
        succeeded = sum(1 for event_id in queryset.values_list('id', flat=True) if dispatcher.dispatch_by_id(event_id))
        self.message_user(request, f"{succeeded} of {queryset.count()} event(s) succeeded")
