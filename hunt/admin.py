from django.contrib import admin
from django.utils.html import mark_safe

from .models import Checkpoint, Participant, ScanEvent
from .qr_sheet import checkpoint_sheet_response


class ScanEventInline(admin.TabularInline):
    model = ScanEvent
    extra = 0
    can_delete = False
    readonly_fields = ('code', 'scanned_at', 'qr_code_number')

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Participant)
class ParticipantAdmin(admin.ModelAdmin):
    list_display = ('registration_number', 'progress', 'last_scan_time', 'created_at')
    search_fields = ('registration_number',)
    readonly_fields = ('scanned_codes', 'progress', 'last_scan_time', 'created_at')
    inlines = [ScanEventInline]


@admin.register(ScanEvent)
class ScanEventAdmin(admin.ModelAdmin):
    list_display = ('participant', 'code', 'qr_code_number', 'scanned_at')
    list_filter = ('code',)
    search_fields = ('participant__registration_number', 'code')

    # Les scans sont immuables
    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Checkpoint)
class CheckpointAdmin(admin.ModelAdmin):
    list_display = ('order', 'name', 'code')
    readonly_fields = ('qr_code_preview',)
    actions = ['download_qr_codes']

    def qr_code_preview(self, obj):
        if obj.qr_code:
            return mark_safe(f'<img src="{obj.qr_code.url}" width="100" height="100" />')
        return "-"

    @admin.action(description='Télécharger les QR Codes (PDF)')
    def download_qr_codes(self, request, queryset):
        return checkpoint_sheet_response(queryset.order_by('order'))
