from datetime import timedelta
from decimal import Decimal
from io import StringIO
from unittest.mock import patch, MagicMock
import json

import stripe
from django.contrib.auth import get_user_model
from django.core import mail
from django.core.management import call_command
from django.db import connection
from django.test import TestCase, Client
from django.utils import timezone

from bookings.exceptions import DomainError
from bookings.lifecycle import get_lifecycle
from bookings.models import Booking
from notifications import get_dispatcher
from notifications.dispatcher import NotificationDispatcher

from . import get_gateway, get_reconciler
from .gateway import (
    GatewayConfig, StripeGateway, compute_payment_schedule, configure_stripe, from_minor_units,
    to_minor_units, validate_deposit,
)
from .invoicing import mark_overdue_invoices, request_payment
from .models import Invoice, InvoiceSequence, WebhookEvent, format_invoice_number
from .reconciler import WebhookReconciler


def make_booking(status=Booking.STATUS_APPROVED, **overrides):
    fields = {
        'client_name': 'Jane Smith',
        'email': 'jane@example.com',
        'phone': '+44123456789',
        'event_type': 'Corporate Event',
        'event_date': timezone.now() + timedelta(days=21),
        'venue_address': '5 Dock Road',
        'number_of_guards': 4,
    }
    fields.update(overrides)
    booking = Booking.objects.create(**fields)
    if status != Booking.STATUS_PENDING:
        Booking.objects.filter(pk=booking.pk).update(status=status)
        booking.refresh_from_db()
    return booking


def make_invoice(booking, **overrides):
    fields = {
        'booking': booking,
        'provider_invoice_id': 'in_test123',
        'amount': Decimal('1600.00'),
        'deposit_amount': Decimal('400.00'),
        'status': Invoice.STATUS_SENT,
        'due_date': timezone.now() + timedelta(days=30),
    }
    fields.update(overrides)
    return Invoice.objects.create(**fields)


def stripe_event(event_type, obj, event_id='evt_test123'):
    return json.dumps({'id': event_id, 'type': event_type, 'data': {'object': obj}})


class AdminClientMixin:
    def login_admin(self):
        self.admin = get_user_model().objects.create_user(
            username='admin', email='admin@example.com', password='correct-horse-battery', is_staff=True
        )
        self.client.force_login(self.admin)


class PaymentScheduleTest(TestCase):
    def test_schedule_for_thousand(self):
        now = timezone.now()
        schedule = compute_payment_schedule(Decimal('1000'), now=now)

        self.assertEqual(schedule['deposit_amount'], Decimal('250.00'))
        self.assertEqual(schedule['final_amount'], Decimal('750.00'))
        deposit, final = schedule['schedule']
        self.assertEqual(deposit['type'], 'deposit')
        self.assertEqual(deposit['due_date'], now + timedelta(days=7))
        self.assertEqual(final['type'], 'final')
        self.assertEqual(final['amount'], Decimal('750.00'))
        self.assertEqual(final['due_date'], now + timedelta(days=30))

    def test_schedule_rounds_to_pence(self):
        schedule = compute_payment_schedule(Decimal('99.99'))

        self.assertEqual(schedule['deposit_amount'], Decimal('25.00'))
        self.assertEqual(schedule['final_amount'], Decimal('74.99'))

    def test_schedule_endpoint(self):
        response = Client().get('/api/payments/schedule/?total=1000')

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data['deposit_amount'], 250.0)
        self.assertEqual(data['final_amount'], 750.0)
        self.assertEqual(len(data['schedule']), 2)

    def test_schedule_endpoint_requires_total(self):
        response = Client().get('/api/payments/schedule/?total=abc')

        self.assertEqual(response.status_code, 400)


class DepositRuleTest(TestCase):
    def test_quarter_deposit_accepted(self):
        validate_deposit(Decimal('1000'), Decimal('250'))

    def test_below_quarter_rejected(self):
        with self.assertRaises(DomainError) as ctx:
            validate_deposit(Decimal('1000'), Decimal('249.99'))
        self.assertEqual(str(ctx.exception), 'Deposit must be at least 25% of total amount')

    def test_zero_total_rejected(self):
        with self.assertRaises(DomainError):
            validate_deposit(Decimal('0'), Decimal('0'))

    def test_minor_units(self):
        self.assertEqual(to_minor_units(Decimal('1600.00')), 160000)
        self.assertEqual(to_minor_units(Decimal('0.125')), 13)
        self.assertEqual(from_minor_units(40000), Decimal('400.00'))
        self.assertEqual(from_minor_units(None), Decimal('0.00'))


class InvoiceNumberTest(TestCase):
    def test_format(self):
        self.assertEqual(format_invoice_number(1), 'INV-000001')
        self.assertEqual(format_invoice_number(1234567), 'INV-1234567')

    def test_numbers_are_sequential(self):
        booking = make_booking()
        first = make_invoice(booking)
        second = make_invoice(booking, provider_invoice_id='in_test456')

        self.assertEqual(first.invoice_number, 'INV-000001')
        self.assertEqual(second.invoice_number, 'INV-000002')
        self.assertEqual(InvoiceSequence.objects.get(name='invoice').value, 2)

    def test_number_not_reassigned_on_save(self):
        invoice = make_invoice(make_booking())
        invoice.notes = 'Net 30'
        invoice.save()

        invoice.refresh_from_db()
        self.assertEqual(invoice.invoice_number, 'INV-000001')


@patch('payments.gateway.stripe.Invoice.create')
@patch('payments.gateway.stripe.InvoiceItem.create')
@patch('payments.gateway.stripe.Customer.create')
@patch('payments.gateway.stripe.Customer.list')
class CreateInvoiceTest(AdminClientMixin, TestCase):
    def setUp(self):
        self.client = Client()
        self.login_admin()
        self.booking = make_booking()

    def post(self, payload):
        return self.client.post(
            '/api/payments/create-invoice/',
            data=json.dumps(payload),
            content_type='application/json'
        )

    def payload(self, **overrides):
        payload = {
            'bookingId': self.booking.id,
            'totalAmount': 1000,
            'depositAmount': 250,
            'serviceType': 'Corporate Event',
            'date': '2026-11-20',
        }
        payload.update(overrides)
        return payload

    def test_invoice_created_for_approved_booking(self, mock_list, mock_customer, mock_item, mock_invoice):
        mock_list.return_value = MagicMock(data=[])
        mock_customer.return_value = MagicMock(id='cus_test123')
        mock_invoice.return_value = MagicMock(id='in_test123')

        response = self.post(self.payload())

        self.assertEqual(response.status_code, 201)
        data = response.json()
        self.assertEqual(data['invoice_number'], 'INV-000001')
        self.assertEqual(data['status'], 'draft')
        self.assertEqual(data['amount'], 1000.0)

        invoice = Invoice.objects.get()
        self.assertEqual(invoice.provider_invoice_id, 'in_test123')
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.payment_total_amount, Decimal('1000.00'))
        self.assertEqual(self.booking.payment_deposit_amount, Decimal('250.00'))

        item_kwargs = mock_item.call_args.kwargs
        self.assertEqual(item_kwargs['amount'], 100000)
        self.assertEqual(item_kwargs['description'], 'Corporate Event on 2026-11-20')
        invoice_kwargs = mock_invoice.call_args.kwargs
        self.assertEqual(invoice_kwargs['collection_method'], 'send_invoice')
        self.assertEqual(invoice_kwargs['metadata']['booking_id'], str(self.booking.id))

    def test_existing_customer_reused(self, mock_list, mock_customer, mock_item, mock_invoice):
        mock_list.return_value = MagicMock(data=[MagicMock(id='cus_existing')])
        mock_invoice.return_value = MagicMock(id='in_test123')

        response = self.post(self.payload())

        self.assertEqual(response.status_code, 201)
        mock_customer.assert_not_called()
        self.assertEqual(mock_item.call_args.kwargs['customer'], 'cus_existing')

    def test_small_deposit_rejected_before_provider_call(self, mock_list, mock_customer, mock_item, mock_invoice):
        response = self.post(self.payload(depositAmount=100))

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'Deposit must be at least 25% of total amount')
        self.assertEqual(Invoice.objects.count(), 0)
        mock_invoice.assert_not_called()
        mock_list.assert_not_called()

    def test_provider_failure_leaves_no_invoice(self, mock_list, mock_customer, mock_item, mock_invoice):
        mock_list.return_value = MagicMock(data=[])
        mock_customer.return_value = MagicMock(id='cus_test123')
        mock_invoice.side_effect = stripe.APIConnectionError('Request timed out')

        response = self.post(self.payload())

        self.assertEqual(response.status_code, 502)
        self.assertTrue(response.json()['retryable'])
        self.assertEqual(Invoice.objects.count(), 0)
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.payment_total_amount, Decimal('0.00'))

    def test_pending_booking_cannot_be_invoiced(self, mock_list, mock_customer, mock_item, mock_invoice):
        pending = make_booking(status=Booking.STATUS_PENDING)

        response = self.post(self.payload(bookingId=pending.id))

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'Booking must be approved before invoicing')
        mock_invoice.assert_not_called()

    def test_missing_booking(self, mock_list, mock_customer, mock_item, mock_invoice):
        response = self.post(self.payload(bookingId=999999))

        self.assertEqual(response.status_code, 404)

    def test_second_active_invoice_rejected(self, mock_list, mock_customer, mock_item, mock_invoice):
        make_invoice(self.booking)

        response = self.post(self.payload())

        self.assertEqual(response.status_code, 400)
        self.assertEqual(Invoice.objects.count(), 1)

    def test_missing_fields_reported(self, mock_list, mock_customer, mock_item, mock_invoice):
        response = self.post({'serviceType': 'Corporate Event'})

        self.assertEqual(response.status_code, 400)
        fields = {e['field'] for e in response.json()['errors']}
        self.assertEqual(fields, {'bookingId', 'totalAmount', 'depositAmount'})

    def test_requires_admin(self, mock_list, mock_customer, mock_item, mock_invoice):
        self.client.logout()

        response = self.post(self.payload())

        self.assertEqual(response.status_code, 401)
        mock_invoice.assert_not_called()


class SendInvoiceTest(AdminClientMixin, TestCase):
    def setUp(self):
        self.client = Client()
        self.login_admin()
        self.booking = make_booking()
        self.invoice = make_invoice(self.booking, status=Invoice.STATUS_DRAFT)

    @patch('payments.gateway.stripe.Invoice.send_invoice')
    @patch('payments.gateway.stripe.Invoice.finalize_invoice')
    @patch('payments.gateway.stripe.Invoice.retrieve')
    def test_draft_invoice_finalized_and_sent(self, mock_retrieve, mock_finalize, mock_send):
        mock_retrieve.return_value = MagicMock(status='draft')
        mock_send.return_value = MagicMock(id='in_test123', status='open')

        response = self.client.post(f'/api/payments/send-invoice/{self.invoice.id}/')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['status'], 'sent')
        mock_finalize.assert_called_once()
        mock_send.assert_called_once()
        self.assertEqual(len(mail.outbox), 1)
        self.assertIn(self.invoice.invoice_number, mail.outbox[0].subject)

    @patch('payments.gateway.stripe.Invoice.send_invoice')
    @patch('payments.gateway.stripe.Invoice.finalize_invoice')
    @patch('payments.gateway.stripe.Invoice.retrieve')
    def test_open_invoice_not_finalized_again(self, mock_retrieve, mock_finalize, mock_send):
        mock_retrieve.return_value = MagicMock(status='open')
        mock_send.return_value = MagicMock(id='in_test123', status='open')

        response = self.client.post(f'/api/payments/send-invoice/{self.invoice.id}/')

        self.assertEqual(response.status_code, 200)
        mock_finalize.assert_not_called()

    @patch('payments.gateway.stripe.Invoice.retrieve')
    def test_provider_failure_keeps_draft(self, mock_retrieve):
        mock_retrieve.side_effect = stripe.APIConnectionError('Request timed out')

        response = self.client.post(f'/api/payments/send-invoice/{self.invoice.id}/')

        self.assertEqual(response.status_code, 502)
        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.status, Invoice.STATUS_DRAFT)

    def test_paid_invoice_cannot_be_sent(self):
        Invoice.objects.filter(pk=self.invoice.pk).update(status=Invoice.STATUS_PAID)

        response = self.client.post(f'/api/payments/send-invoice/{self.invoice.id}/')

        self.assertEqual(response.status_code, 400)


@patch('payments.gateway.stripe.Webhook.construct_event')
class InvoicePaidWebhookTest(TestCase):
    def setUp(self):
        self.client = Client()
        self.booking = make_booking(
            payment_total_amount=Decimal('1600'),
            payment_deposit_amount=Decimal('400'),
        )
        self.invoice = make_invoice(self.booking)

    def post(self, payload, signature='t=1,v1=valid'):
        extra = {'HTTP_STRIPE_SIGNATURE': signature} if signature else {}
        return self.client.post(
            '/api/payments/webhook/',
            data=payload,
            content_type='application/json',
            **extra
        )

    def paid_event(self, event_id='evt_test123', invoice_id='in_test123'):
        return stripe_event('invoice.paid', {
            'id': invoice_id,
            'amount_paid': 160000,
            'payment_intent': 'pi_invoice123',
        }, event_id=event_id)

    def test_invoice_paid_settles_booking(self, mock_construct):
        response = self.post(self.paid_event())

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {'received': True, 'type': 'invoice_paid', 'outcome': 'applied'})

        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.status, Invoice.STATUS_PAID)
        self.assertIsNotNone(self.invoice.paid_date)
        self.assertEqual(self.invoice.provider_payment_id, 'pi_invoice123')

        self.booking.refresh_from_db()
        self.assertEqual(self.booking.payment_status, Booking.PAYMENT_PAID)
        self.assertEqual(self.booking.payment_paid_amount, Decimal('1600.00'))

        record = WebhookEvent.objects.get(event_id='evt_test123')
        self.assertEqual(record.outcome, 'applied')
        self.assertIsNotNone(record.processed_at)

    def test_redelivered_event_is_skipped(self, mock_construct):
        self.post(self.paid_event())
        self.invoice.refresh_from_db()
        paid_date = self.invoice.paid_date

        response = self.post(self.paid_event())

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['outcome'], 'duplicate')
        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.paid_date, paid_date)
        self.assertEqual(WebhookEvent.objects.count(), 1)

    def test_second_event_for_paid_invoice_changes_nothing(self, mock_construct):
        self.post(self.paid_event())
        self.booking.refresh_from_db()
        paid_date = self.booking.payment_paid_date

        response = self.post(self.paid_event(event_id='evt_test456'))

        self.assertEqual(response.json()['outcome'], 'already_paid')
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.payment_paid_amount, Decimal('1600.00'))
        self.assertEqual(self.booking.payment_paid_date, paid_date)

    def test_unknown_invoice_acknowledged(self, mock_construct):
        response = self.post(self.paid_event(invoice_id='in_unknown'))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['outcome'], 'no_match')
        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.status, Invoice.STATUS_SENT)
        self.assertEqual(WebhookEvent.objects.get().outcome, 'no_match')

    def test_unhandled_event_type_ignored(self, mock_construct):
        response = self.post(stripe_event('customer.created', {'id': 'cus_test123'}))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {'received': True, 'type': 'unknown', 'outcome': 'ignored'})

    def test_invalid_signature_rejected(self, mock_construct):
        mock_construct.side_effect = stripe.SignatureVerificationError('Invalid signature', 'sig_header')

        response = self.post(self.paid_event(), signature='invalid_signature')

        self.assertEqual(response.status_code, 400)
        self.assertEqual(WebhookEvent.objects.count(), 0)
        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.status, Invoice.STATUS_SENT)

    def test_missing_signature_rejected(self, mock_construct):
        response = self.post(self.paid_event(), signature=None)

        self.assertEqual(response.status_code, 400)
        mock_construct.assert_not_called()
        self.assertEqual(WebhookEvent.objects.count(), 0)

    def test_malformed_payload_rejected(self, mock_construct):
        response = self.post('not json')

        self.assertEqual(response.status_code, 400)

    @patch('notifications.dispatcher.NotificationDispatcher.notify', side_effect=RuntimeError('smtp down'))
    def test_notification_failure_keeps_payment(self, mock_notify, mock_construct):
        response = self.post(self.paid_event())

        self.assertEqual(response.status_code, 200)
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.payment_status, Booking.PAYMENT_PAID)


@patch('payments.gateway.stripe.Webhook.construct_event')
class PaymentCompletedWebhookTest(TestCase):
    def setUp(self):
        self.client = Client()
        self.booking = make_booking(
            payment_total_amount=Decimal('1600'),
            payment_deposit_amount=Decimal('400'),
            payment_provider_id='pi_deposit123',
        )

    def post(self, payload):
        return self.client.post(
            '/api/payments/webhook/',
            data=payload,
            content_type='application/json',
            HTTP_STRIPE_SIGNATURE='t=1,v1=valid'
        )

    def succeeded(self, payment_id, amount, payment_type=None, event_id='evt_pi', booking_id=None):
        metadata = {}
        if payment_type:
            metadata['payment_type'] = payment_type
        if booking_id:
            metadata['booking_id'] = str(booking_id)
        return stripe_event('payment_intent.succeeded', {
            'id': payment_id,
            'amount': amount,
            'amount_received': amount,
            'metadata': metadata,
        }, event_id=event_id)

    def test_deposit_then_final(self, mock_construct):
        response = self.post(self.succeeded('pi_deposit123', 40000, 'deposit', event_id='evt_1'))

        self.assertEqual(response.json()['outcome'], 'applied')
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.payment_status, Booking.PAYMENT_PARTIAL)
        self.assertEqual(self.booking.payment_paid_amount, Decimal('400.00'))

        Booking.objects.filter(pk=self.booking.pk).update(payment_provider_id='pi_final123')
        response = self.post(self.succeeded('pi_final123', 120000, 'final', event_id='evt_2'))

        self.assertEqual(response.json()['outcome'], 'applied')
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.payment_status, Booking.PAYMENT_PAID)
        self.assertEqual(self.booking.payment_paid_amount, Decimal('1600.00'))

    def test_repeated_deposit_event_is_noop(self, mock_construct):
        self.post(self.succeeded('pi_deposit123', 40000, 'deposit', event_id='evt_1'))

        response = self.post(self.succeeded('pi_deposit123', 40000, 'deposit', event_id='evt_2'))

        self.assertEqual(response.json()['outcome'], 'already_paid')
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.payment_paid_amount, Decimal('400.00'))

    def test_booking_found_by_metadata(self, mock_construct):
        response = self.post(self.succeeded('pi_other', 160000, booking_id=self.booking.id))

        self.assertEqual(response.json()['outcome'], 'applied')
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.payment_status, Booking.PAYMENT_PAID)
        self.assertEqual(self.booking.payment_provider_id, 'pi_other')

    def test_unknown_payment_acknowledged(self, mock_construct):
        response = self.post(self.succeeded('pi_unknown', 40000, 'deposit'))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['outcome'], 'no_match')
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.payment_status, Booking.PAYMENT_PENDING)


class WebhookConfigurationTest(TestCase):
    def test_missing_secret_returns_server_error(self):
        with self.settings(STRIPE_WEBHOOK_SECRET=''):
            response = Client().post(
                '/api/payments/webhook/',
                data=stripe_event('invoice.paid', {'id': 'in_test123'}),
                content_type='application/json',
                HTTP_STRIPE_SIGNATURE='t=1,v1=valid'
            )
        self.assertEqual(response.status_code, 500)


class PaymentRequestTest(AdminClientMixin, TestCase):
    def setUp(self):
        self.client = Client()
        self.booking = make_booking(
            payment_total_amount=Decimal('1600'),
            payment_deposit_amount=Decimal('400'),
        )

    @patch('payments.gateway.stripe.PaymentIntent.create')
    def test_deposit_intent_created(self, mock_create):
        mock_create.return_value = MagicMock(id='pi_deposit123', client_secret='pi_deposit123_secret')

        response = self.client.post(f'/api/payments/deposit/{self.booking.id}/')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {
            'payment_id': 'pi_deposit123',
            'client_secret': 'pi_deposit123_secret',
            'amount': 400.0,
        })
        kwargs = mock_create.call_args.kwargs
        self.assertEqual(kwargs['amount'], 40000)
        self.assertEqual(kwargs['metadata']['payment_type'], 'deposit')
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.payment_provider_id, 'pi_deposit123')

    @patch('payments.gateway.stripe.PaymentIntent.create')
    def test_final_requires_deposit(self, mock_create):
        response = self.client.post(f'/api/payments/final/{self.booking.id}/')

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'Deposit must be paid first')
        mock_create.assert_not_called()

    @patch('payments.gateway.stripe.PaymentIntent.create')
    def test_final_intent_for_outstanding_balance(self, mock_create):
        get_lifecycle().record_deposit(self.booking.id, Decimal('400'))
        mock_create.return_value = MagicMock(id='pi_final123', client_secret='pi_final123_secret')

        response = self.client.post(f'/api/payments/final/{self.booking.id}/')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['amount'], 1200.0)

    @patch('payments.gateway.stripe.PaymentIntent.create')
    def test_pending_booking_cannot_pay(self, mock_create):
        pending = make_booking(status=Booking.STATUS_PENDING)

        response = self.client.post(f'/api/payments/deposit/{pending.id}/')

        self.assertEqual(response.status_code, 400)
        mock_create.assert_not_called()

    @patch('payments.gateway.stripe.PaymentIntent.create')
    def test_provider_called_outside_booking_lock(self, mock_create):
        baseline = len(connection.atomic_blocks)
        depths = []

        def create_intent(**kwargs):
            depths.append(len(connection.atomic_blocks))
            return MagicMock(id='pi_deposit123', client_secret='pi_deposit123_secret')
        mock_create.side_effect = create_intent

        response = self.client.post(f'/api/payments/deposit/{self.booking.id}/')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(depths, [baseline])

    @patch('payments.gateway.stripe.PaymentIntent.create')
    def test_deposit_recorded_during_provider_call(self, mock_create):
        def create_intent(**kwargs):
            get_lifecycle().record_deposit(self.booking.id, Decimal('400'), 'pi_other')
            return MagicMock(id='pi_deposit123', client_secret='pi_deposit123_secret')
        mock_create.side_effect = create_intent

        response = self.client.post(f'/api/payments/deposit/{self.booking.id}/')

        self.assertEqual(response.status_code, 400)
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.payment_provider_id, 'pi_other')

    @patch('payments.gateway.stripe.PaymentIntent.retrieve')
    def test_payment_status(self, mock_retrieve):
        self.login_admin()
        mock_retrieve.return_value = MagicMock(id='pi_deposit123', status='succeeded', amount=40000)

        response = self.client.get('/api/payments/status/pi_deposit123/')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {'payment_id': 'pi_deposit123', 'status': 'succeeded', 'amount': 400.0})

    @patch('payments.gateway.stripe.PaymentIntent.retrieve')
    def test_unknown_payment_status(self, mock_retrieve):
        self.login_admin()
        mock_retrieve.side_effect = stripe.InvalidRequestError('No such payment_intent', 'id', http_status=404)

        response = self.client.get('/api/payments/status/pi_missing/')

        self.assertEqual(response.status_code, 404)


class OverdueInvoiceTest(AdminClientMixin, TestCase):
    def setUp(self):
        self.booking = make_booking(
            payment_total_amount=Decimal('1600'),
            payment_deposit_amount=Decimal('400'),
        )
        self.invoice = make_invoice(self.booking, due_date=timezone.now() - timedelta(days=1))

    def test_past_due_invoice_flagged(self):
        changed = mark_overdue_invoices(get_lifecycle())

        self.assertEqual([invoice.pk for invoice in changed], [self.invoice.pk])
        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.status, Invoice.STATUS_OVERDUE)
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.payment_status, Booking.PAYMENT_OVERDUE)

    @patch('payments.gateway.stripe.PaymentIntent.create')
    def test_overdue_keeps_paid_deposit(self, mock_create):
        lifecycle = get_lifecycle()
        lifecycle.record_deposit(self.booking.id, Decimal('400'), 'pi_deposit123')

        mark_overdue_invoices(lifecycle)

        self.booking.refresh_from_db()
        self.assertEqual(self.booking.payment_status, Booking.PAYMENT_OVERDUE)
        self.assertTrue(self.booking.payment.deposit_paid)
        self.assertEqual(self.booking.payment_paid_amount, Decimal('400.00'))

        with self.assertRaises(DomainError):
            request_payment(get_gateway(), self.booking.id, 'deposit')
        _, applied = lifecycle.record_deposit(self.booking.id, Decimal('400'), 'pi_deposit456')
        self.assertFalse(applied)

        mock_create.return_value = MagicMock(id='pi_final123', client_secret='pi_final123_secret')
        intent = request_payment(get_gateway(), self.booking.id, 'final')
        self.assertEqual(intent['amount'], Decimal('1200.00'))

        booking, _ = lifecycle.record_final_payment(self.booking.id, Decimal('1200'), 'pi_final123')
        self.assertEqual(booking.payment_status, Booking.PAYMENT_PAID)
        self.assertEqual(booking.payment_paid_amount, Decimal('1600.00'))

    def test_flagging_twice_changes_nothing(self):
        mark_overdue_invoices(get_lifecycle())

        self.assertEqual(mark_overdue_invoices(get_lifecycle()), [])

    def test_invoice_not_yet_due_left_alone(self):
        later = make_booking(email='later@example.com')
        invoice = make_invoice(later, provider_invoice_id='in_later', due_date=timezone.now() + timedelta(days=5))

        mark_overdue_invoices(get_lifecycle())

        invoice.refresh_from_db()
        self.assertEqual(invoice.status, Invoice.STATUS_SENT)

    def test_management_command_sends_reminders(self):
        out = StringIO()

        call_command('mark_overdue_invoices', '--remind', stdout=out)

        self.assertIn('1 invoice(s) marked overdue.', out.getvalue())
        self.assertEqual(len(mail.outbox), 1)
        self.assertIn('Payment Reminder', mail.outbox[0].subject)

    def test_flag_overdue_endpoint(self):
        self.client = Client()
        self.login_admin()

        response = self.client.post('/api/payments/invoices/flag-overdue/')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['overdue'], [self.invoice.invoice_number])


class InvoiceReadTest(AdminClientMixin, TestCase):
    def setUp(self):
        self.client = Client()
        self.login_admin()
        self.booking = make_booking()
        self.invoice = make_invoice(self.booking)

    def test_invoice_detail(self):
        response = self.client.get(f'/api/payments/invoice/{self.invoice.id}/')

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data['invoice_number'], 'INV-000001')
        self.assertEqual(data['client_name'], 'Jane Smith')

    def test_list_filters_by_status(self):
        make_invoice(make_booking(email='other@example.com'), provider_invoice_id='in_other',
                     status=Invoice.STATUS_PAID)

        response = self.client.get('/api/payments/invoices/?status=paid')

        self.assertEqual(response.status_code, 200)
        invoices = response.json()['invoices']
        self.assertEqual(len(invoices), 1)
        self.assertEqual(invoices[0]['status'], 'paid')

    def test_list_paginated(self):
        for n in range(3):
            make_invoice(make_booking(email=f'client{n}@example.com'), provider_invoice_id=f'in_page{n}')

        response = self.client.get('/api/payments/invoices/?page=2&limit=3')

        data = response.json()
        self.assertEqual(len(data['invoices']), 1)
        self.assertEqual(data['pagination'], {'page': 2, 'limit': 3, 'total': 4, 'pages': 2})


class AppWiringTest(TestCase):
    def test_services_built_at_startup(self):
        self.assertIsInstance(get_gateway(), StripeGateway)
        self.assertIsInstance(get_dispatcher(), NotificationDispatcher)
        self.assertIsInstance(get_reconciler(), WebhookReconciler)

    def test_public_booking_request_served(self):
        response = Client().post(
            '/api/bookings/',
            data=json.dumps({
                'clientName': 'Jane Smith',
                'email': 'jane@example.com',
                'phone': '+44123456789',
                'eventDate': (timezone.now() + timedelta(days=10)).isoformat(),
                'eventType': 'Wedding',
                'venueAddress': '5 Dock Road',
                'numberOfGuards': 2,
            }),
            content_type='application/json'
        )

        self.assertEqual(response.status_code, 201)


class StripeConfigurationTest(TestCase):
    def setUp(self):
        patcher = patch.multiple(stripe, default_http_client=None, max_network_retries=0)
        patcher.start()
        self.addCleanup(patcher.stop)

    @patch('payments.gateway.stripe.RequestsClient')
    def test_timeout_and_retries_applied(self, mock_client):
        config = GatewayConfig(
            secret_key='sk_test', webhook_secret='whsec_test', currency='GBP',
            invoice_due_days=30, timeout=7, max_network_retries=3,
        )

        configure_stripe(config)

        mock_client.assert_called_once_with(timeout=7)
        self.assertIs(stripe.default_http_client, mock_client.return_value)
        self.assertEqual(stripe.max_network_retries, 3)

    def test_settings_feed_gateway_config(self):
        with self.settings(STRIPE_TIMEOUT_SECONDS=4, STRIPE_MAX_NETWORK_RETRIES=1):
            config = GatewayConfig.from_settings()

        self.assertEqual(config.timeout, 4)
        self.assertEqual(config.max_network_retries, 1)
        self.assertEqual(config.webhook_secret, 'whsec_fake_secret_for_testing')


class EnsureSuperuserCommandTest(TestCase):
    def test_creates_admin_from_environment(self):
        out = StringIO()
        with patch.dict('os.environ', {'DJANGO_SUPERUSER_PASSWORD': 'long-enough-password'}):
            call_command('ensure_superuser', '--username', 'ops', stdout=out)

        user = get_user_model().objects.get(username='ops')
        self.assertTrue(user.is_superuser)
        self.assertIn('created', out.getvalue())

    def test_existing_admin_skipped(self):
        get_user_model().objects.create_superuser('ops', 'ops@example.com', 'long-enough-password')
        out = StringIO()

        call_command('ensure_superuser', '--username', 'ops', stdout=out)

        self.assertIn('already exists', out.getvalue())
