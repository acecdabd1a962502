"""
Feed Inventory Admin Configuration

Feed batches and their ledger journal. Quantities are read-only here:
they only change through feed_inventory.ledger.
"""

from django.contrib import admin
from django.utils.html import format_html

from .models import FeedBatch, FeedBatchMovement


class FeedBatchMovementInline(admin.TabularInline):
    model = FeedBatchMovement
    extra = 0
    can_delete = False
    fields = ['created_at', 'movement_type', 'quantity', 'balance_after', 'administration_id', 'recorded_by']
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(FeedBatch)
class FeedBatchAdmin(admin.ModelAdmin):
    """Admin interface for Feed Batches."""

    list_display = [
        'feed_name',
        'farmer',
        'medicated_badge',
        'antimicrobial_name',
        'remaining_quantity',
        'total_quantity',
        'unit',
        'expiry_date',
        'active_status',
    ]

    list_filter = [
        'prescription_required',
        'feed_type',
        'is_active',
        'expiry_date',
    ]

    search_fields = [
        'feed_name',
        'batch_number',
        'antimicrobial_name',
        'farmer__username',
        'farmer__email',
    ]

    readonly_fields = ['id', 'remaining_quantity', 'depleted_at', 'created_at', 'updated_at']
    inlines = [FeedBatchMovementInline]

    fieldsets = (
        ('Basic Information', {
            'fields': ('id', 'farmer', 'feed_name', 'feed_type', 'batch_number', 'manufacturer', 'supplier')
        }),
        ('Antimicrobial Content', {
            'fields': (
                'prescription_required',
                'antimicrobial_name',
                'antimicrobial_concentration',
                'concentration_unit',
                'withdrawal_period_days',
                'target_species',
            )
        }),
        ('Stock', {
            'fields': ('total_quantity', 'remaining_quantity', 'unit', 'cost_per_unit')
        }),
        ('Dates & Status', {
            'fields': ('purchase_date', 'expiry_date', 'is_active', 'depleted_at')
        }),
        ('Metadata', {
            'fields': ('notes', 'created_at', 'updated_at'),
            'classes': ('collapse',)
        }),
    )

    def get_readonly_fields(self, request, obj=None):
        # total_quantity is fixed once stock has been drawn
        if obj is not None:
            return self.readonly_fields + ['total_quantity']
        return self.readonly_fields

    def medicated_badge(self, obj):
        """Display medicated/non-medicated with color-coded badge."""
        color, label = ('#e83e8c', 'Medicated') if obj.prescription_required else ('#28a745', 'Regular')
        return format_html(
            '<span style="background-color: {}; color: white; padding: 3px 10px; border-radius: 3px;">{}</span>',
            color,
            label
        )
    medicated_badge.short_description = 'Type'

    def active_status(self, obj):
        """Display active status with badge."""
        if obj.is_active:
            return format_html('<span style="color: {};">●</span> {}', 'green', 'Active')
        return format_html('<span style="color: {};">●</span> {}', 'red', 'Inactive')
    active_status.short_description = 'Status'


@admin.register(FeedBatchMovement)
class FeedBatchMovementAdmin(admin.ModelAdmin):
    """Read-only view of the feed ledger journal."""

    list_display = ['created_at', 'batch', 'movement_type', 'quantity', 'balance_after', 'administration_id']
    list_filter = ['movement_type', 'created_at']
    search_fields = ['batch__feed_name', 'administration_id']
    readonly_fields = [
        'id', 'batch', 'movement_type', 'quantity', 'balance_after',
        'administration_id', 'notes', 'recorded_by', 'created_at',
    ]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
