from django.contrib import admin
from .models import Booking


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = ['id', 'client_name', 'event_type', 'event_date', 'number_of_guards', 'status', 'payment_status', 'paid_display', 'created_at']
    list_filter = ['status', 'payment_status', 'event_date', 'created_at']
    search_fields = ['client_name', 'email', 'phone', 'venue_address', 'payment_provider_id']
    readonly_fields = ['created_at', 'updated_at', 'payment_status', 'payment_deposit_paid', 'payment_paid_amount', 'payment_paid_date', 'payment_provider_id']

    fieldsets = (
        ('Client', {
            'fields': ('client_name', 'email', 'phone')
        }),
        ('Event', {
            'fields': ('event_type', 'event_date', 'venue_address', 'number_of_guards', 'special_requirements')
        }),
        ('Status', {
            'fields': ('status', 'admin_notes')
        }),
        ('Payment', {
            'fields': ('payment_total_amount', 'payment_deposit_amount', 'payment_method', 'payment_status',
                       'payment_deposit_paid', 'payment_paid_amount', 'payment_paid_date', 'payment_provider_id')
        }),
        ('Communication', {
            'fields': ('email_enabled', 'sms_enabled', 'preferred_channel')
        }),
        ('Timestamps', {
            'fields': ('created_at', 'updated_at')
        }),
    )

    def paid_display(self, obj):
        return f"{obj.payment_paid_amount:.2f} / {obj.payment_total_amount:.2f}"
    paid_display.short_description = 'Paid'
