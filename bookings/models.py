from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from django.conf import settings
from django.db import models
from django.utils import timezone

from .exceptions import DomainError

EVENT_DATE_MESSAGE = 'Event date must be at least 7 days in the future'
DEPOSIT_MESSAGE = 'Deposit must be at least 25% of total amount'


def minimum_event_date(now=None):
    now = now or timezone.now()
    return now + timedelta(days=settings.MIN_BOOKING_LEAD_DAYS)


def minimum_deposit(total_amount):
    return Decimal(total_amount) * Decimal(settings.MIN_DEPOSIT_FRACTION)


@dataclass(frozen=True)
class Payment:
    """Read-only view over the payment columns embedded in a booking."""
    total_amount: Decimal
    deposit_amount: Decimal
    status: str
    deposit_paid: bool
    paid_amount: Decimal
    paid_date: Optional[datetime]
    method: str
    provider_payment_id: str

    @property
    def outstanding_amount(self):
        return max(self.total_amount - self.paid_amount, Decimal('0.00'))

    @property
    def fully_paid(self):
        return self.status == Booking.PAYMENT_PAID

    def as_dict(self):
        return {
            'total_amount': float(self.total_amount),
            'deposit_amount': float(self.deposit_amount),
            'status': self.status,
            'deposit_paid': self.deposit_paid,
            'paid_amount': float(self.paid_amount),
            'paid_date': self.paid_date.isoformat() if self.paid_date else None,
            'method': self.method,
            'provider_payment_id': self.provider_payment_id or None,
        }


class Booking(models.Model):
    STATUS_PENDING = 'pending'
    STATUS_APPROVED = 'approved'
    STATUS_REJECTED = 'rejected'
    STATUS_COMPLETED = 'completed'
    STATUS_CANCELLED = 'cancelled'

    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_APPROVED, 'Approved'),
        (STATUS_REJECTED, 'Rejected'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_CANCELLED, 'Cancelled'),
    ]

    PAYMENT_PENDING = 'pending'
    PAYMENT_PARTIAL = 'partial'
    PAYMENT_PAID = 'paid'
    PAYMENT_OVERDUE = 'overdue'

    PAYMENT_STATUS_CHOICES = [
        (PAYMENT_PENDING, 'Pending'),
        (PAYMENT_PARTIAL, 'Deposit Paid'),
        (PAYMENT_PAID, 'Paid'),
        (PAYMENT_OVERDUE, 'Overdue'),
    ]

    METHOD_CHOICES = [
        ('gateway', 'Card (Stripe)'),
        ('cash', 'Cash'),
        ('other', 'Other'),
    ]

    CHANNEL_CHOICES = [
        ('email', 'Email'),
        ('phone', 'Phone'),
        ('both', 'Both'),
    ]

    client_name = models.CharField(max_length=255)
    email = models.EmailField()
    phone = models.CharField(max_length=50)
    event_type = models.CharField(max_length=255)
    event_date = models.DateTimeField()
    venue_address = models.CharField(max_length=500)
    number_of_guards = models.PositiveIntegerField(default=1)
    special_requirements = models.TextField(blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)
    admin_notes = models.TextField(blank=True)

    payment_total_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    payment_deposit_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    payment_status = models.CharField(max_length=20, choices=PAYMENT_STATUS_CHOICES, default=PAYMENT_PENDING, db_index=True)
    payment_deposit_paid = models.BooleanField(default=False)
    payment_paid_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    payment_paid_date = models.DateTimeField(null=True, blank=True)
    payment_method = models.CharField(max_length=20, choices=METHOD_CHOICES, default='gateway')
    payment_provider_id = models.CharField(max_length=255, blank=True, db_index=True)

    email_enabled = models.BooleanField(default=True)
    sms_enabled = models.BooleanField(default=False)
    preferred_channel = models.CharField(max_length=10, choices=CHANNEL_CHOICES, default='email')

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'bookings_booking'
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.client_name} - {self.event_type} - {self.status}"

    def save(self, *args, **kwargs):
        if self._state.adding:
            self.check_invariants()
        super().save(*args, **kwargs)

    def check_invariants(self, now=None):
        """Creation-time rules; raises DomainError on the first violation."""
        if self.event_date is None or self.event_date < minimum_event_date(now):
            raise DomainError(EVENT_DATE_MESSAGE)
        total = self.payment_total_amount or Decimal('0.00')
        deposit = self.payment_deposit_amount or Decimal('0.00')
        if total > 0 and deposit < minimum_deposit(total):
            raise DomainError(DEPOSIT_MESSAGE)

    @property
    def payment(self):
        return Payment(
            total_amount=self.payment_total_amount,
            deposit_amount=self.payment_deposit_amount,
            status=self.payment_status,
            deposit_paid=self.payment_deposit_paid,
            paid_amount=self.payment_paid_amount,
            paid_date=self.payment_paid_date,
            method=self.payment_method,
            provider_payment_id=self.payment_provider_id,
        )

    @property
    def is_terminal(self):
        return self.status in (self.STATUS_REJECTED, self.STATUS_COMPLETED, self.STATUS_CANCELLED)

    def to_dict(self):
        return {
            'booking_id': self.id,
            'client_name': self.client_name,
            'email': self.email,
            'phone': self.phone,
            'event_type': self.event_type,
            'event_date': self.event_date.isoformat(),
            'venue_address': self.venue_address,
            'number_of_guards': self.number_of_guards,
            'special_requirements': self.special_requirements,
            'status': self.status,
            'admin_notes': self.admin_notes,
            'payment': self.payment.as_dict(),
            'communication_preferences': {
                'email_enabled': self.email_enabled,
                'sms_enabled': self.sms_enabled,
                'preferred_channel': self.preferred_channel,
            },
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
