"""
Stripe gateway adapter.

All provider calls go through ``StripeGateway`` so the rest of the code sees
plain dicts and ``GatewayError`` instead of SDK objects and SDK exceptions.
Deposit rules and the payment schedule are provider independent and live
here as pure functions.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal, ROUND_HALF_UP

import stripe
from django.conf import settings
from django.utils import timezone

from bookings.exceptions import DomainError, GatewayError
from bookings.models import DEPOSIT_MESSAGE

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')
DEPOSIT_DUE_DAYS = 7
FINAL_DUE_DAYS = 30


def to_minor_units(amount):
    return int((Decimal(amount) * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def from_minor_units(value):
    return (Decimal(value or 0) / 100).quantize(CENT)


def validate_deposit(total_amount, deposit_amount):
    total = Decimal(total_amount)
    deposit = Decimal(deposit_amount)
    if total <= 0 or deposit < total * Decimal(settings.MIN_DEPOSIT_FRACTION):
        raise DomainError(DEPOSIT_MESSAGE)


def compute_payment_schedule(total_amount, deposit_fraction=Decimal('0.25'), now=None):
    now = now or timezone.now()
    total = Decimal(total_amount)
    fraction = Decimal(deposit_fraction)
    deposit = (total * fraction).quantize(CENT, rounding=ROUND_HALF_UP)
    final = (total - deposit).quantize(CENT, rounding=ROUND_HALF_UP)
    return {
        'total_amount': total,
        'deposit_amount': deposit,
        'final_amount': final,
        'deposit_fraction': fraction,
        'schedule': [
            {'type': 'deposit', 'amount': deposit, 'due_date': now + timedelta(days=DEPOSIT_DUE_DAYS)},
            {'type': 'final', 'amount': final, 'due_date': now + timedelta(days=FINAL_DUE_DAYS)},
        ],
    }


@dataclass(frozen=True)
class GatewayConfig:
    secret_key: str
    webhook_secret: str
    currency: str
    invoice_due_days: int
    timeout: int
    max_network_retries: int

    @classmethod
    def from_settings(cls):
        return cls(
            secret_key=settings.STRIPE_SECRET_KEY,
            webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
            currency=settings.DEFAULT_CURRENCY,
            invoice_due_days=settings.INVOICE_DUE_DAYS,
            timeout=settings.STRIPE_TIMEOUT_SECONDS,
            max_network_retries=settings.STRIPE_MAX_NETWORK_RETRIES,
        )


def configure_stripe(config):
    """Bound every provider call by the configured timeout and retry budget."""
    stripe.default_http_client = stripe.RequestsClient(timeout=config.timeout)
    stripe.max_network_retries = config.max_network_retries


class StripeGateway:

    def __init__(self, config):
        self.config = config

    @property
    def currency(self):
        return self.config.currency.lower()

    def create_provider_invoice(self, booking, total_amount, deposit_amount, description=''):
        """Create a Stripe invoice for the full amount; returns its id."""
        validate_deposit(total_amount, deposit_amount)
        description = description or f"{booking.event_type} - {booking.number_of_guards} guard(s)"
        metadata = {
            'booking_id': str(booking.id),
            'deposit_amount': str(Decimal(deposit_amount).quantize(CENT)),
        }
        try:
            customer_id = self._find_or_create_customer(booking)
            stripe.InvoiceItem.create(
                customer=customer_id,
                amount=to_minor_units(total_amount),
                currency=self.currency,
                description=description,
                metadata=metadata,
                api_key=self.config.secret_key,
            )
            invoice = stripe.Invoice.create(
                customer=customer_id,
                collection_method='send_invoice',
                days_until_due=self.config.invoice_due_days,
                pending_invoice_items_behavior='include',
                description=f"Invoice for {description}",
                custom_fields=[{
                    'name': 'Deposit due',
                    'value': f"{self.config.currency} {Decimal(deposit_amount):.2f}",
                }],
                metadata=metadata,
                api_key=self.config.secret_key,
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe invoice creation failed for booking {booking.id}: {str(e)}")
            raise GatewayError('Failed to create provider invoice') from e

        logger.info(f"Stripe invoice {invoice.id} created for booking {booking.id}")
        return invoice.id

    def send_provider_invoice(self, provider_invoice_id):
        try:
            invoice = stripe.Invoice.retrieve(provider_invoice_id, api_key=self.config.secret_key)
            if invoice.status == 'draft':
                stripe.Invoice.finalize_invoice(provider_invoice_id, api_key=self.config.secret_key)
            sent = stripe.Invoice.send_invoice(provider_invoice_id, api_key=self.config.secret_key)
        except stripe.StripeError as e:
            logger.error(f"Stripe invoice send failed for {provider_invoice_id}: {str(e)}")
            raise GatewayError('Failed to send provider invoice') from e
        return {'invoice_id': sent.id, 'status': sent.status}

    def get_provider_invoice(self, provider_invoice_id):
        try:
            invoice = stripe.Invoice.retrieve(provider_invoice_id, api_key=self.config.secret_key)
        except stripe.StripeError as e:
            raise GatewayError('Failed to get provider invoice') from e
        return {
            'invoice_id': invoice.id,
            'status': invoice.status,
            'amount_due': from_minor_units(invoice.amount_due),
            'amount_paid': from_minor_units(invoice.amount_paid),
        }

    def create_payment_intent(self, booking, amount, payment_type):
        try:
            intent = stripe.PaymentIntent.create(
                amount=to_minor_units(amount),
                currency=self.currency,
                receipt_email=booking.email,
                metadata={
                    'booking_id': str(booking.id),
                    'payment_type': payment_type,
                },
                idempotency_key=f"booking-{booking.id}-{payment_type}-{to_minor_units(amount)}",
                api_key=self.config.secret_key,
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe {payment_type} intent failed for booking {booking.id}: {str(e)}")
            raise GatewayError('Failed to create payment') from e
        return {
            'payment_id': intent.id,
            'client_secret': intent.client_secret,
            'amount': Decimal(amount).quantize(CENT),
        }

    def query_payment_status(self, payment_id):
        try:
            intent = stripe.PaymentIntent.retrieve(payment_id, api_key=self.config.secret_key)
        except stripe.InvalidRequestError as e:
            if e.http_status == 404:
                return None
            raise GatewayError('Failed to get payment status') from e
        except stripe.StripeError as e:
            raise GatewayError('Failed to get payment status') from e
        return {
            'payment_id': intent.id,
            'status': intent.status,
            'amount': from_minor_units(intent.amount),
        }

    def construct_event(self, payload, signature):
        return stripe.Webhook.construct_event(payload, signature, self.config.webhook_secret)

    def _find_or_create_customer(self, booking):
        existing = stripe.Customer.list(email=booking.email, limit=1, api_key=self.config.secret_key)
        if existing.data:
            return existing.data[0].id
        customer = stripe.Customer.create(
            email=booking.email,
            name=booking.client_name,
            phone=booking.phone,
            metadata={'booking_id': str(booking.id)},
            api_key=self.config.secret_key,
        )
        return customer.id
