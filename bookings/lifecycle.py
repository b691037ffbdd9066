"""
Booking lifecycle controller.

Owns the booking status machine and the payment phase of the embedded
payment record. Every write locks the row and saves only the fields the
operation owns, so admin actions and webhook reconciliation can race on the
same booking without overwriting each other. Notifications go out after the
transaction and never undo the change that triggered them.
"""
import logging
from decimal import Decimal

from django.db import transaction
from django.utils import timezone

from notifications import get_dispatcher

from .exceptions import DomainError, NotFoundError, ValidationError
from .models import Booking
from .validation import PREFERENCE_FIELDS, STATUS_FIELDS, STATUS_VALUES

logger = logging.getLogger(__name__)

TRANSITIONS = {
    Booking.STATUS_PENDING: {Booking.STATUS_APPROVED, Booking.STATUS_REJECTED, Booking.STATUS_CANCELLED},
    Booking.STATUS_APPROVED: {Booking.STATUS_COMPLETED, Booking.STATUS_CANCELLED},
    Booking.STATUS_REJECTED: set(),
    Booking.STATUS_COMPLETED: set(),
    Booking.STATUS_CANCELLED: set(),
}

PAYMENT_FIELDS = ['payment_status', 'payment_deposit_paid', 'payment_paid_amount', 'payment_paid_date', 'payment_provider_id']


def can_transition(current, new_status):
    return new_status == current or new_status in TRANSITIONS.get(current, set())


class BookingLifecycle:

    def __init__(self, dispatcher):
        self.dispatcher = dispatcher

    def create_booking(self, data):
        """Persist a validated intake as a pending booking and confirm receipt."""
        with transaction.atomic():
            booking = Booking.objects.create(
                status=Booking.STATUS_PENDING,
                payment_status=Booking.PAYMENT_PENDING,
                **data,
            )
        logger.info(f"Booking {booking.id} created for {booking.email} on {booking.event_date:%Y-%m-%d}")
        self.notify(booking, 'confirmation')
        return booking

    def update_status(self, booking_id, new_status, admin_notes=None):
        if new_status not in STATUS_VALUES:
            raise ValidationError([{'field': 'status', 'message': 'Invalid status value'}])

        with transaction.atomic():
            booking = self._lock(booking_id)
            previous = booking.status
            if not can_transition(previous, new_status):
                raise DomainError(f"Cannot change booking status from {previous} to {new_status}")
            if new_status == Booking.STATUS_COMPLETED and not booking.payment.fully_paid:
                logger.warning(
                    f"Booking {booking.id} completed with payment status {booking.payment_status}"
                )
            booking.status = new_status
            if admin_notes is not None:
                booking.admin_notes = admin_notes
            booking.save(update_fields=[*STATUS_FIELDS, 'updated_at'])

        if new_status != previous:
            logger.info(f"Booking {booking.id} status {previous} -> {new_status}")
            self.notify(booking, 'status_update')
        return booking

    def update_preferences(self, booking_id, preferences):
        with transaction.atomic():
            booking = self._lock(booking_id)
            for field in PREFERENCE_FIELDS:
                if field in preferences:
                    setattr(booking, field, preferences[field])
            booking.save(update_fields=[*PREFERENCE_FIELDS, 'updated_at'])
        return booking

    def record_deposit(self, booking_id, amount, provider_payment_id=None):
        """Mark the deposit received. Returns ``(booking, applied)``."""
        amount = Decimal(amount)
        with transaction.atomic():
            booking = self._lock(booking_id)
            if booking.payment.deposit_paid:
                logger.info(f"Deposit for booking {booking.id} already recorded")
                return booking, False
            if booking.payment_total_amount > 0 and amount >= booking.payment_total_amount:
                booking.payment_status = Booking.PAYMENT_PAID
            else:
                booking.payment_status = Booking.PAYMENT_PARTIAL
            booking.payment_deposit_paid = True
            booking.payment_paid_amount = amount
            self._stamp_payment(booking, provider_payment_id)
        logger.info(f"Deposit of {amount} recorded for booking {booking.id}")
        self.notify(booking, 'invoice')
        return booking, True

    def record_final_payment(self, booking_id, amount=None, provider_payment_id=None):
        """Mark the booking paid in full. Returns ``(booking, applied)``."""
        with transaction.atomic():
            booking = self._lock(booking_id)
            if booking.payment.fully_paid:
                logger.info(f"Final payment for booking {booking.id} already recorded")
                return booking, False
            if amount is None:
                booking.payment_paid_amount = booking.payment_total_amount
            else:
                booking.payment_paid_amount = booking.payment_paid_amount + Decimal(amount)
            booking.payment_deposit_paid = True
            booking.payment_status = Booking.PAYMENT_PAID
            self._stamp_payment(booking, provider_payment_id)
        logger.info(f"Final payment recorded for booking {booking.id}")
        self.notify(booking, 'invoice')
        return booking, True

    def mark_paid(self, booking_id, amount, provider_payment_id=None):
        """A one-off capture settled the booking. Returns ``(booking, applied)``."""
        with transaction.atomic():
            booking = self._lock(booking_id)
            if booking.payment.fully_paid:
                return booking, False
            booking.payment_status = Booking.PAYMENT_PAID
            booking.payment_paid_amount = Decimal(amount)
            booking.payment_deposit_paid = True
            self._stamp_payment(booking, provider_payment_id)
        logger.info(f"Booking {booking.id} paid {amount} via {provider_payment_id or 'unknown payment'}")
        self.notify(booking, 'invoice')
        return booking, True

    def apply_invoice_payment(self, invoice):
        """Carry a paid invoice onto its booking's payment record."""
        with transaction.atomic():
            booking = self._lock(invoice.booking_id)
            if booking.payment.fully_paid and booking.payment_paid_amount == invoice.amount:
                return booking, False
            booking.payment_status = Booking.PAYMENT_PAID
            booking.payment_paid_amount = invoice.amount
            booking.payment_deposit_paid = True
            booking.payment_paid_date = invoice.paid_date or timezone.now()
            booking.save(update_fields=[*PAYMENT_FIELDS, 'updated_at'])
        logger.info(f"Invoice {invoice.invoice_number} settled booking {booking.id}")
        self.notify(booking, 'invoice', invoice)
        return booking, True

    def mark_overdue(self, booking_id):
        """Flag the payment overdue. A recorded deposit and paid amount are kept."""
        with transaction.atomic():
            booking = self._lock(booking_id)
            if booking.payment_status in (Booking.PAYMENT_PAID, Booking.PAYMENT_OVERDUE):
                return booking, False
            booking.payment_status = Booking.PAYMENT_OVERDUE
            booking.save(update_fields=['payment_status', 'updated_at'])
        return booking, True

    def send_payment_reminder(self, booking_id):
        booking = self.get_booking(booking_id)
        if booking.payment.fully_paid:
            raise DomainError('Booking is already paid in full')
        return self.notify(booking, 'payment_reminder')

    def get_booking(self, booking_id):
        try:
            return Booking.objects.get(pk=booking_id)
        except Booking.DoesNotExist:
            raise NotFoundError('Booking not found')

    def notify(self, booking, trigger, invoice=None):
        try:
            sent = self.dispatcher.notify(booking, trigger, invoice)
        except Exception:
            logger.exception(f"{trigger} notification failed for booking {booking.id}")
            return False
        if not sent:
            logger.warning(f"{trigger} notification not delivered for booking {booking.id}")
        return sent

    def _lock(self, booking_id):
        try:
            return Booking.objects.select_for_update().get(pk=booking_id)
        except Booking.DoesNotExist:
            raise NotFoundError('Booking not found')

    def _stamp_payment(self, booking, provider_payment_id):
        booking.payment_paid_date = timezone.now()
        if provider_payment_id:
            booking.payment_provider_id = provider_payment_id
        booking.save(update_fields=[*PAYMENT_FIELDS, 'updated_at'])


def get_lifecycle():
    return BookingLifecycle(get_dispatcher())
