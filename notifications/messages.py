"""
Plain-text copy for client notifications.

Each builder returns ``(subject, body, sms_text)``.
"""
import math

from django.conf import settings
from django.utils import timezone

TRIGGERS = ('confirmation', 'payment_reminder', 'invoice', 'status_update')

STATUS_LINES = {
    'approved': 'Your booking has been approved. We will send your invoice shortly.',
    'rejected': 'Unfortunately we are unable to accept your booking.',
    'completed': 'Your booking is complete. Thank you for choosing us.',
    'cancelled': 'Your booking has been cancelled.',
    'pending': 'Your booking is pending review.',
}


def _money(amount):
    return f"{settings.DEFAULT_CURRENCY} {amount:.2f}"


def _event_line(booking):
    return f"{booking.event_type} on {booking.event_date:%d %b %Y} at {booking.venue_address}"


def days_until_event(booking, now=None):
    now = now or timezone.now()
    return math.ceil((booking.event_date - now).total_seconds() / 86400)


def build_payment_reminder(booking, now=None):
    days = days_until_event(booking, now)
    if days <= 7:
        urgency = 'high'
    elif days <= 14:
        urgency = 'medium'
    else:
        urgency = 'low'
    outstanding = booking.payment.outstanding_amount
    message = (
        f"Dear {booking.client_name},\n\n"
        f"This is a reminder that {_money(outstanding)} is due for {booking.event_type}.\n\n"
        f"Event date: {booking.event_date:%d %b %Y}\n"
        f"Days until event: {days}\n\n"
        f"Please complete your payment to confirm your booking.\n\n"
        f"{settings.COMPANY_NAME}"
    )
    return {
        'subject': f"Payment Reminder - {booking.event_type}",
        'message': message,
        'urgency': urgency,
    }


def confirmation(booking, invoice=None):
    subject = f"Booking request received - {booking.event_type}"
    body = (
        f"Dear {booking.client_name},\n\n"
        f"We have received your request for {booking.number_of_guards} guard(s) for "
        f"{_event_line(booking)}. Reference: #{booking.id}.\n\n"
        f"We will review it and get back to you shortly.\n\n{settings.COMPANY_NAME}"
    )
    sms = f"{settings.COMPANY_NAME}: booking #{booking.id} received for {booking.event_date:%d %b}."
    return subject, body, sms


def payment_reminder(booking, invoice=None):
    reminder = build_payment_reminder(booking)
    sms = (
        f"{settings.COMPANY_NAME}: {_money(booking.payment.outstanding_amount)} due for "
        f"booking #{booking.id}."
    )
    return reminder['subject'], reminder['message'], sms


def invoice_message(booking, invoice=None):
    if invoice is None:
        subject = f"Payment update - booking #{booking.id}"
        body = (
            f"Dear {booking.client_name},\n\n"
            f"We have recorded {_money(booking.payment.paid_amount)} against your booking "
            f"for {_event_line(booking)}.\n\n{settings.COMPANY_NAME}"
        )
        sms = f"{settings.COMPANY_NAME}: payment of {_money(booking.payment.paid_amount)} received."
        return subject, body, sms

    if invoice.status == 'paid':
        subject = f"Invoice {invoice.invoice_number} paid"
        lead = f"Thank you, invoice {invoice.invoice_number} for {_money(invoice.amount)} has been paid in full."
    else:
        subject = f"Invoice {invoice.invoice_number}"
        lead = (
            f"Invoice {invoice.invoice_number} for {_money(invoice.amount)} is now available. "
            f"A deposit of {_money(invoice.deposit_amount)} secures your booking; "
            f"the balance is due by {invoice.due_date:%d %b %Y}."
        )
    body = f"Dear {booking.client_name},\n\n{lead}\n\n{settings.COMPANY_NAME}"
    sms = f"{settings.COMPANY_NAME}: {lead}"
    return subject, body, sms


def status_update(booking, invoice=None):
    line = STATUS_LINES.get(booking.status, f"Your booking status is now {booking.status}.")
    subject = f"Booking #{booking.id} {booking.status}"
    body = f"Dear {booking.client_name},\n\n{line}\n\n{_event_line(booking)}\n\n{settings.COMPANY_NAME}"
    sms = f"{settings.COMPANY_NAME}: booking #{booking.id} - {line}"
    return subject, body, sms


BUILDERS = {
    'confirmation': confirmation,
    'payment_reminder': payment_reminder,
    'invoice': invoice_message,
    'status_update': status_update,
}


def render(trigger, booking, invoice=None):
    return BUILDERS[trigger](booking, invoice)
