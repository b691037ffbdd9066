from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch, MagicMock

from django.core import mail
from django.test import TestCase
from django.utils import timezone

from bookings.models import Booking

from .dispatcher import EmailConfig, NotificationDispatcher, SMSConfig
from .messages import build_payment_reminder, render


def booking(**overrides):
    fields = {
        'id': 42,
        'client_name': 'Sam Taylor',
        'email': 'sam@example.com',
        'phone': '+447700900123',
        'event_type': 'Festival',
        'event_date': timezone.now() + timedelta(days=20),
        'venue_address': 'Riverside Park',
        'number_of_guards': 6,
        'payment_total_amount': Decimal('2000.00'),
        'payment_deposit_amount': Decimal('500.00'),
    }
    fields.update(overrides)
    return Booking(**fields)


class DispatcherChannelTest(TestCase):
    def setUp(self):
        self.dispatcher = NotificationDispatcher(
            EmailConfig(enabled=True, from_email='bookings@example.com'),
            SMSConfig(enabled=True, account_sid='AC123', auth_token='token', from_number='+15005550006'),
        )

    @patch('notifications.dispatcher.TwilioClient')
    def test_email_only_by_default(self, mock_twilio):
        sent = self.dispatcher.notify(booking(), 'confirmation')

        self.assertTrue(sent)
        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].from_email, 'bookings@example.com')
        mock_twilio.assert_not_called()

    @patch('notifications.dispatcher.TwilioClient')
    def test_both_channels(self, mock_twilio):
        sent = self.dispatcher.notify(
            booking(sms_enabled=True, preferred_channel='both'), 'status_update'
        )

        self.assertTrue(sent)
        self.assertEqual(len(mail.outbox), 1)
        mock_twilio.assert_called_once_with('AC123', 'token')
        kwargs = mock_twilio.return_value.messages.create.call_args.kwargs
        self.assertEqual(kwargs['to'], '+447700900123')
        self.assertEqual(kwargs['from_'], '+15005550006')

    @patch('notifications.dispatcher.TwilioClient')
    def test_phone_channel_skips_email(self, mock_twilio):
        self.dispatcher.notify(booking(sms_enabled=True, preferred_channel='phone'), 'payment_reminder')

        self.assertEqual(len(mail.outbox), 0)
        mock_twilio.return_value.messages.create.assert_called_once()

    @patch('notifications.dispatcher.TwilioClient')
    def test_sms_opt_out_respected(self, mock_twilio):
        sent = self.dispatcher.notify(booking(sms_enabled=False, preferred_channel='phone'), 'confirmation')

        self.assertFalse(sent)
        mock_twilio.assert_not_called()

    @patch('notifications.dispatcher.TwilioClient')
    def test_sms_failure_reported_not_raised(self, mock_twilio):
        mock_twilio.return_value.messages.create.side_effect = Exception('Twilio unavailable')

        sent = self.dispatcher.notify(booking(sms_enabled=True, preferred_channel='phone'), 'confirmation')

        self.assertFalse(sent)

    @patch('notifications.dispatcher.EmailMultiAlternatives.send', side_effect=OSError('connection refused'))
    def test_email_failure_reported_not_raised(self, mock_send):
        sent = self.dispatcher.notify(booking(), 'confirmation')

        self.assertFalse(sent)

    def test_unknown_trigger(self):
        with self.assertRaises(ValueError):
            self.dispatcher.notify(booking(), 'birthday')

    def test_disabled_email(self):
        dispatcher = NotificationDispatcher(
            EmailConfig(enabled=False, from_email='bookings@example.com'),
            SMSConfig(enabled=False, account_sid='', auth_token='', from_number=''),
        )

        self.assertFalse(dispatcher.notify(booking(), 'confirmation'))
        self.assertEqual(len(mail.outbox), 0)

    def test_unconfigured_twilio(self):
        dispatcher = NotificationDispatcher(
            EmailConfig(enabled=True, from_email='bookings@example.com'),
            SMSConfig(enabled=True, account_sid='', auth_token='', from_number=''),
        )

        self.assertFalse(dispatcher.send_sms('+447700900123', 'hello'))


class PaymentReminderTest(TestCase):
    def test_urgency_by_days_to_event(self):
        now = timezone.now()

        high = build_payment_reminder(booking(event_date=now + timedelta(days=7)), now=now)
        medium = build_payment_reminder(booking(event_date=now + timedelta(days=14)), now=now)
        low = build_payment_reminder(booking(event_date=now + timedelta(days=15)), now=now)

        self.assertEqual(high['urgency'], 'high')
        self.assertEqual(medium['urgency'], 'medium')
        self.assertEqual(low['urgency'], 'low')

    def test_reminder_shows_outstanding_balance(self):
        reminder = build_payment_reminder(booking(
            payment_status=Booking.PAYMENT_PARTIAL,
            payment_paid_amount=Decimal('500.00'),
        ))

        self.assertEqual(reminder['subject'], 'Payment Reminder - Festival')
        self.assertIn('GBP 1500.00', reminder['message'])


class MessageTest(TestCase):
    def test_sent_invoice_message(self):
        invoice = MagicMock(
            invoice_number='INV-000007',
            amount=Decimal('2000.00'),
            deposit_amount=Decimal('500.00'),
            status='sent',
            due_date=timezone.now() + timedelta(days=30),
        )

        subject, body, sms = render('invoice', booking(), invoice)

        self.assertEqual(subject, 'Invoice INV-000007')
        self.assertIn('A deposit of GBP 500.00', body)
        self.assertIn('INV-000007', sms)

    def test_status_message(self):
        subject, body, sms = render('status_update', booking(status='rejected'))

        self.assertEqual(subject, 'Booking #42 rejected')
        self.assertIn('unable to accept', body)
