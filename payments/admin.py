from django.contrib import admin
from .models import Invoice, InvoiceSequence, WebhookEvent


@admin.register(Invoice)
class InvoiceAdmin(admin.ModelAdmin):
    list_display = ['invoice_number', 'booking', 'amount_display', 'deposit_display', 'status', 'due_date', 'paid_date', 'created_at']
    list_filter = ['status', 'payment_method', 'due_date', 'created_at']
    search_fields = ['invoice_number', 'provider_invoice_id', 'provider_payment_id', 'booking__client_name', 'booking__email']
    readonly_fields = ['invoice_number', 'provider_invoice_id', 'provider_payment_id', 'paid_date', 'created_at', 'updated_at']
    raw_id_fields = ['booking']

    def amount_display(self, obj):
        return f"{obj.amount:.2f}"
    amount_display.short_description = 'Amount'

    def deposit_display(self, obj):
        return f"{obj.deposit_amount:.2f}"
    deposit_display.short_description = 'Deposit'


@admin.register(InvoiceSequence)
class InvoiceSequenceAdmin(admin.ModelAdmin):
    list_display = ['name', 'value']
    readonly_fields = ['name', 'value']


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    list_display = ['event_id', 'event_type', 'classification', 'outcome', 'received_at', 'processed_at']
    list_filter = ['classification', 'outcome', 'received_at']
    search_fields = ['event_id', 'event_type']
    readonly_fields = ['event_id', 'event_type', 'classification', 'payload', 'outcome', 'received_at', 'processed_at']
