"""
Invoice and payment-request operations behind the payment views.

Provider calls always happen before any local write, so a ``GatewayError``
leaves the database exactly as it was.
"""
import logging
from datetime import timedelta
from decimal import Decimal

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from bookings.exceptions import DomainError, NotFoundError
from bookings.models import Booking

from .gateway import validate_deposit
from .models import Invoice

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = (Invoice.STATUS_DRAFT, Invoice.STATUS_SENT, Invoice.STATUS_PAID, Invoice.STATUS_OVERDUE)


def get_invoice(invoice_id):
    try:
        return Invoice.objects.select_related('booking').get(pk=invoice_id)
    except Invoice.DoesNotExist:
        raise NotFoundError('Invoice not found')


def create_invoice(gateway, booking_id, total_amount, deposit_amount, description='', notes=''):
    validate_deposit(total_amount, deposit_amount)

    try:
        booking = Booking.objects.get(pk=booking_id)
    except Booking.DoesNotExist:
        raise NotFoundError('Booking not found')

    if booking.status != Booking.STATUS_APPROVED:
        raise DomainError('Booking must be approved before invoicing')
    if booking.invoices.filter(status__in=ACTIVE_STATUSES).exists():
        raise DomainError('Booking already has an active invoice')

    provider_invoice_id = gateway.create_provider_invoice(booking, total_amount, deposit_amount, description)

    with transaction.atomic():
        invoice = Invoice.objects.create(
            booking=booking,
            provider_invoice_id=provider_invoice_id,
            amount=total_amount,
            deposit_amount=deposit_amount,
            status=Invoice.STATUS_DRAFT,
            due_date=timezone.now() + timedelta(days=settings.INVOICE_DUE_DAYS),
            notes=notes,
        )
        booking = Booking.objects.select_for_update().get(pk=booking.pk)
        booking.payment_total_amount = Decimal(total_amount)
        booking.payment_deposit_amount = Decimal(deposit_amount)
        booking.save(update_fields=['payment_total_amount', 'payment_deposit_amount', 'updated_at'])

    logger.info(f"Invoice {invoice.invoice_number} created for booking {booking.id}")
    return invoice


def send_invoice(gateway, lifecycle, invoice_id):
    invoice = get_invoice(invoice_id)
    if invoice.status in (Invoice.STATUS_PAID, Invoice.STATUS_CANCELLED):
        raise DomainError(f"Invoice cannot be sent when {invoice.status}")
    if not invoice.provider_invoice_id:
        raise DomainError('Invoice has no provider invoice to send')

    gateway.send_provider_invoice(invoice.provider_invoice_id)

    with transaction.atomic():
        invoice = Invoice.objects.select_for_update().get(pk=invoice.pk)
        if invoice.status == Invoice.STATUS_DRAFT:
            invoice.status = Invoice.STATUS_SENT
            invoice.save(update_fields=['status', 'updated_at'])

    logger.info(f"Invoice {invoice.invoice_number} sent")
    lifecycle.notify(invoice.booking, 'invoice', invoice)
    return invoice


def payment_due(booking, payment_type):
    """Amount a deposit or final request should charge; DomainError if none is due."""
    payment = booking.payment
    if booking.status != Booking.STATUS_APPROVED:
        raise DomainError('Booking must be approved before payment')
    if payment.total_amount <= 0:
        raise DomainError('Booking has no agreed total amount')

    if payment_type == 'deposit':
        if payment.deposit_paid:
            raise DomainError('Deposit already paid')
        return payment.deposit_amount
    if not payment.deposit_paid:
        raise DomainError('Deposit must be paid first')
    if payment.fully_paid:
        raise DomainError('Full payment already paid')
    return payment.outstanding_amount


def request_payment(gateway, booking_id, payment_type):
    """Open a deposit or final PaymentIntent for a booking.

    The provider call runs outside the booking lock; the state is checked
    again under the lock before the payment id is stored.
    """
    try:
        booking = Booking.objects.get(pk=booking_id)
    except Booking.DoesNotExist:
        raise NotFoundError('Booking not found')

    amount = payment_due(booking, payment_type)
    intent = gateway.create_payment_intent(booking, amount, payment_type)

    with transaction.atomic():
        booking = Booking.objects.select_for_update().get(pk=booking.pk)
        if payment_due(booking, payment_type) != amount:
            raise DomainError('Booking payment changed, request a new payment')
        booking.payment_provider_id = intent['payment_id']
        booking.save(update_fields=['payment_provider_id', 'updated_at'])

    logger.info(f"{payment_type.title()} payment {intent['payment_id']} opened for booking {booking.id}")
    return intent


def mark_overdue_invoices(lifecycle, now=None):
    """Flag sent invoices past their due date. Returns the invoices changed."""
    now = now or timezone.now()
    changed = []
    for invoice in Invoice.objects.filter(status=Invoice.STATUS_SENT, due_date__lt=now).select_related('booking'):
        updated = Invoice.objects.filter(
            pk=invoice.pk, status=Invoice.STATUS_SENT,
        ).update(status=Invoice.STATUS_OVERDUE, updated_at=now)
        if not updated:
            continue
        invoice.status = Invoice.STATUS_OVERDUE
        lifecycle.mark_overdue(invoice.booking_id)
        changed.append(invoice)
        logger.info(f"Invoice {invoice.invoice_number} is overdue")
    return changed
