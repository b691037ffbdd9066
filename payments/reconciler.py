"""
Webhook reconciler.

Applies Stripe webhook deliveries to local invoice and booking state. It is
the only code path that marks money as received.

Stripe delivers at least once and in no particular order, so:

* every authenticated delivery is written to ``WebhookEvent`` before it is
  applied, and a delivery whose event id was already applied is skipped;
* each state change is itself idempotent (paying a paid invoice is a no-op);
* an event for a record we do not have yet is logged as ``no_match`` and
  acknowledged, never failed.
"""
import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

import stripe
from django.db import transaction
from django.utils import timezone

from bookings.exceptions import AuthenticationError
from bookings.models import Booking

from .gateway import from_minor_units
from .models import Invoice, WebhookEvent

logger = logging.getLogger(__name__)

PAYMENT_COMPLETED = 'payment_completed'
INVOICE_PAID = 'invoice_paid'
UNKNOWN = 'unknown'

EVENT_TYPES = {
    'payment_intent.succeeded': PAYMENT_COMPLETED,
    'invoice.paid': INVOICE_PAID,
}


@dataclass(frozen=True)
class ProviderEvent:
    event_id: str
    provider_type: str
    type: str
    payment_id: Optional[str] = None
    amount: Optional[Decimal] = None
    metadata: dict = field(default_factory=dict)
    related_payment_id: str = ''
    message: str = ''


class WebhookReconciler:

    def __init__(self, gateway, lifecycle):
        self.gateway = gateway
        self.lifecycle = lifecycle

    def handle(self, payload, signature):
        """Verify, log and apply one delivery. Returns ``(event, outcome)``."""
        data = self.verify(payload, signature)
        event = self.classify(data)
        return event, self.process(event, data)

    def verify(self, payload, signature):
        if not signature:
            raise AuthenticationError('Missing signature')
        try:
            self.gateway.construct_event(payload, signature)
        except ValueError:
            raise AuthenticationError('Invalid payload')
        except stripe.SignatureVerificationError:
            logger.warning("Rejected webhook with invalid signature")
            raise AuthenticationError('Invalid signature')
        try:
            data = json.loads(payload)
        except (TypeError, ValueError):
            raise AuthenticationError('Invalid payload')
        if not isinstance(data, dict) or not data.get('id'):
            raise AuthenticationError('Invalid payload')
        return data

    def classify(self, data):
        provider_type = data.get('type', '')
        obj = (data.get('data') or {}).get('object') or {}
        kind = EVENT_TYPES.get(provider_type, UNKNOWN)

        if kind == PAYMENT_COMPLETED:
            return ProviderEvent(
                event_id=data['id'],
                provider_type=provider_type,
                type=kind,
                payment_id=obj.get('id'),
                amount=from_minor_units(obj.get('amount_received', obj.get('amount'))),
                metadata=obj.get('metadata') or {},
                message='Payment completed successfully',
            )
        if kind == INVOICE_PAID:
            return ProviderEvent(
                event_id=data['id'],
                provider_type=provider_type,
                type=kind,
                payment_id=obj.get('id'),
                amount=from_minor_units(obj.get('amount_paid')),
                metadata=obj.get('metadata') or {},
                related_payment_id=obj.get('payment_intent') or '',
                message='Invoice paid successfully',
            )
        return ProviderEvent(
            event_id=data['id'],
            provider_type=provider_type,
            type=UNKNOWN,
            message=f"Unhandled event type: {provider_type}",
        )

    def process(self, event, data=None):
        record, created = WebhookEvent.objects.get_or_create(
            event_id=event.event_id,
            defaults={
                'event_type': event.provider_type,
                'classification': event.type,
                'payload': data or {},
            },
        )
        if not created and record.processed:
            logger.info(f"Webhook {event.event_id} already processed ({record.outcome})")
            return 'duplicate'

        if event.type == PAYMENT_COMPLETED:
            outcome = self.apply_payment_completed(event)
        elif event.type == INVOICE_PAID:
            outcome = self.apply_invoice_paid(event)
        else:
            logger.info(event.message)
            outcome = 'ignored'

        record.outcome = outcome
        record.processed_at = timezone.now()
        record.save(update_fields=['outcome', 'processed_at'])
        logger.info(f"Webhook {event.event_id} ({event.provider_type}) -> {outcome}")
        return outcome

    def apply_payment_completed(self, event):
        booking = self._find_booking(event)
        if booking is None:
            logger.info(f"No booking matches payment {event.payment_id}")
            return 'no_match'

        payment_type = event.metadata.get('payment_type')
        if payment_type == 'deposit':
            _, applied = self.lifecycle.record_deposit(booking.id, event.amount, event.payment_id)
        elif payment_type == 'final':
            _, applied = self.lifecycle.record_final_payment(booking.id, event.amount, event.payment_id)
        else:
            _, applied = self.lifecycle.mark_paid(booking.id, event.amount, event.payment_id)
        return 'applied' if applied else 'already_paid'

    def apply_invoice_paid(self, event):
        if not event.payment_id:
            return 'no_match'
        with transaction.atomic():
            invoice = Invoice.objects.select_for_update().filter(provider_invoice_id=event.payment_id).first()
            if invoice is None:
                logger.info(f"No invoice matches provider invoice {event.payment_id}")
                return 'no_match'
            newly_paid = invoice.status != Invoice.STATUS_PAID
            if newly_paid:
                invoice.status = Invoice.STATUS_PAID
                invoice.paid_date = timezone.now()
                invoice.provider_payment_id = event.related_payment_id
                invoice.save(update_fields=['status', 'paid_date', 'provider_payment_id', 'updated_at'])

        _, applied = self.lifecycle.apply_invoice_payment(invoice)
        return 'applied' if newly_paid or applied else 'already_paid'

    def _find_booking(self, event):
        if event.payment_id:
            booking = Booking.objects.filter(payment_provider_id=event.payment_id).first()
            if booking is not None:
                return booking
        booking_id = str(event.metadata.get('booking_id', ''))
        if booking_id.isdigit():
            return Booking.objects.filter(pk=int(booking_id)).first()
        return None
