from decimal import Decimal

from django.db import models, transaction

from bookings.models import Booking


def format_invoice_number(value):
    return f"INV-{value:06d}"


class InvoiceSequence(models.Model):
    """Monotonic counters for human-readable document numbers."""
    name = models.CharField(max_length=50, unique=True)
    value = models.PositiveIntegerField(default=0)

    class Meta:
        db_table = 'payments_invoice_sequence'

    def __str__(self):
        return f"{self.name}: {self.value}"

    @classmethod
    def next_value(cls, name='invoice'):
        with transaction.atomic():
            sequence, _ = cls.objects.select_for_update().get_or_create(name=name)
            sequence.value += 1
            sequence.save(update_fields=['value'])
            return sequence.value


class Invoice(models.Model):
    STATUS_DRAFT = 'draft'
    STATUS_SENT = 'sent'
    STATUS_PAID = 'paid'
    STATUS_OVERDUE = 'overdue'
    STATUS_CANCELLED = 'cancelled'

    STATUS_CHOICES = [
        (STATUS_DRAFT, 'Draft'),
        (STATUS_SENT, 'Sent'),
        (STATUS_PAID, 'Paid'),
        (STATUS_OVERDUE, 'Overdue'),
        (STATUS_CANCELLED, 'Cancelled'),
    ]

    booking = models.ForeignKey(Booking, on_delete=models.PROTECT, related_name='invoices')
    invoice_number = models.CharField(max_length=20, unique=True, editable=False)
    provider_invoice_id = models.CharField(max_length=255, unique=True, null=True, blank=True)
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    deposit_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_DRAFT, db_index=True)
    due_date = models.DateTimeField()
    paid_date = models.DateTimeField(null=True, blank=True)
    payment_method = models.CharField(max_length=20, choices=Booking.METHOD_CHOICES, default='gateway')
    provider_payment_id = models.CharField(max_length=255, blank=True)
    notes = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'payments_invoice'
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.invoice_number} - {self.booking_id} - {self.status}"

    def save(self, *args, **kwargs):
        if self._state.adding and not self.invoice_number:
            self.invoice_number = format_invoice_number(InvoiceSequence.next_value())
        super().save(*args, **kwargs)

    def to_dict(self):
        return {
            'invoice_id': self.id,
            'invoice_number': self.invoice_number,
            'booking_id': self.booking_id,
            'provider_invoice_id': self.provider_invoice_id,
            'amount': float(self.amount),
            'deposit_amount': float(self.deposit_amount),
            'status': self.status,
            'due_date': self.due_date.isoformat(),
            'paid_date': self.paid_date.isoformat() if self.paid_date else None,
            'payment_method': self.payment_method,
            'provider_payment_id': self.provider_payment_id or None,
            'notes': self.notes,
        }


class WebhookEvent(models.Model):
    """Every authenticated provider delivery, kept for replay and audit."""
    OUTCOME_CHOICES = [
        ('received', 'Received'),
        ('applied', 'Applied'),
        ('already_paid', 'Already Paid'),
        ('no_match', 'No Match'),
        ('ignored', 'Ignored'),
    ]

    event_id = models.CharField(max_length=255, unique=True)
    event_type = models.CharField(max_length=100)
    classification = models.CharField(max_length=50)
    payload = models.JSONField(default=dict)
    outcome = models.CharField(max_length=20, choices=OUTCOME_CHOICES, default='received')
    received_at = models.DateTimeField(auto_now_add=True)
    processed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'payments_webhook_event'
        ordering = ['-received_at']

    def __str__(self):
        return f"{self.event_id} ({self.event_type}) - {self.outcome}"

    @property
    def processed(self):
        return self.outcome != 'received'
