from django.contrib import admin
from django.utils.html import format_html

from .models import Animal, MRLTest


@admin.register(Animal)
class AnimalAdmin(admin.ModelAdmin):
    list_display = ['tag_id', 'name', 'species', 'farmer', 'status', 'mrl_badge', 'in_withdrawal', 'withdrawal_end_date']
    list_filter = ['species', 'status', 'mrl_status', 'in_withdrawal', 'requires_mrl_test', 'is_new']
    search_fields = ['tag_id', 'name', 'farmer__username', 'farmer__email']
    readonly_fields = ['id', 'created_at', 'updated_at']
    filter_horizontal = ['active_feed_administrations']

    def mrl_badge(self, obj):
        colors = {
            'SAFE': '#28a745',
            'TEST_REQUIRED': '#ffc107',
            'PENDING_VERIFICATION': '#17a2b8',
            'VIOLATION': '#dc3545',
        }
        return format_html(
            '<span style="background-color: {}; color: white; padding: 3px 10px; border-radius: 3px;">{}</span>',
            colors.get(obj.mrl_status, '#6c757d'),
            obj.get_mrl_status_display()
        )
    mrl_badge.short_description = 'MRL'


@admin.register(MRLTest)
class MRLTestAdmin(admin.ModelAdmin):
    list_display = ['animal', 'drug_name', 'test_date', 'residue_level', 'mrl_threshold', 'unit', 'is_passed', 'status', 'violation_resolved']
    list_filter = ['status', 'is_passed', 'violation_resolved', 'sample_type']
    search_fields = ['animal__tag_id', 'drug_name', 'lab_name', 'test_report_number']
    readonly_fields = ['id', 'is_passed', 'reviewed_by', 'reviewed_at', 'recorded_by', 'created_at']
