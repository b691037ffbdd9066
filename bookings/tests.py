from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch
import json

from django.contrib.auth import get_user_model
from django.core import mail
from django.test import TestCase, Client
from django.utils import timezone

from .exceptions import DomainError, NotFoundError
from .lifecycle import get_lifecycle
from .models import Booking


def booking_payload(**overrides):
    payload = {
        'clientName': 'John Doe',
        'email': 'john@example.com',
        'phone': '+44123456789',
        'eventDate': (timezone.now() + timedelta(days=10)).isoformat(),
        'eventType': 'Wedding',
        'venueAddress': '1 High Street, London',
        'numberOfGuards': 2,
        'specialRequirements': 'Black tie',
    }
    payload.update(overrides)
    return payload


def make_booking(**overrides):
    fields = {
        'client_name': 'Test User',
        'email': 'test@example.com',
        'phone': '+44123456789',
        'event_type': 'Corporate Event',
        'event_date': timezone.now() + timedelta(days=14),
        'venue_address': '10 Market Square',
        'number_of_guards': 3,
    }
    fields.update(overrides)
    return Booking.objects.create(**fields)


def make_admin(username='admin', is_staff=True):
    return get_user_model().objects.create_user(
        username=username,
        email=f'{username}@example.com',
        password='correct-horse-battery',
        is_staff=is_staff,
    )


class BookingCreationTest(TestCase):
    def setUp(self):
        self.client = Client()

    def post(self, payload):
        return self.client.post(
            '/api/bookings/',
            data=json.dumps(payload),
            content_type='application/json'
        )

    def test_booking_created_as_pending(self):
        response = self.post(booking_payload())

        self.assertEqual(response.status_code, 201)
        data = response.json()
        self.assertEqual(data['status'], 'pending')
        self.assertEqual(data['payment']['status'], 'pending')
        self.assertEqual(data['number_of_guards'], 2)

        booking = Booking.objects.get(id=data['booking_id'])
        self.assertEqual(booking.status, Booking.STATUS_PENDING)
        self.assertEqual(booking.event_type, 'Wedding')

    def test_confirmation_email_sent(self):
        self.post(booking_payload())

        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].to, ['john@example.com'])
        self.assertIn('Wedding', mail.outbox[0].subject)

    def test_event_six_days_out_rejected(self):
        payload = booking_payload(eventDate=(timezone.now() + timedelta(days=6)).isoformat())
        response = self.post(payload)

        self.assertEqual(response.status_code, 400)
        errors = response.json()['errors']
        self.assertIn(
            {'field': 'eventDate', 'message': 'Event date must be at least 7 days in the future'},
            errors
        )
        self.assertEqual(Booking.objects.count(), 0)

    def test_event_just_over_seven_days_out_accepted(self):
        payload = booking_payload(eventDate=(timezone.now() + timedelta(days=7, minutes=1)).isoformat())
        response = self.post(payload)

        self.assertEqual(response.status_code, 201)

    def test_all_field_errors_reported(self):
        response = self.post({'email': 'not-an-email', 'numberOfGuards': 0})

        self.assertEqual(response.status_code, 400)
        fields = {e['field'] for e in response.json()['errors']}
        self.assertEqual(
            fields,
            {'clientName', 'email', 'phone', 'eventType', 'venueAddress', 'eventDate', 'numberOfGuards'}
        )

    def test_service_type_accepted_as_event_type(self):
        payload = booking_payload()
        payload['serviceType'] = payload.pop('eventType')

        response = self.post(payload)

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()['event_type'], 'Wedding')

    def test_deposit_below_quarter_rejected(self):
        response = self.post(booking_payload(totalAmount=1000, depositAmount=249))

        self.assertEqual(response.status_code, 400)
        self.assertIn(
            {'field': 'depositAmount', 'message': 'Deposit must be at least 25% of total amount'},
            response.json()['errors']
        )

    def test_deposit_of_exactly_quarter_accepted(self):
        response = self.post(booking_payload(totalAmount=1000, depositAmount=250))

        self.assertEqual(response.status_code, 201)
        payment = response.json()['payment']
        self.assertEqual(payment['total_amount'], 1000.0)
        self.assertEqual(payment['deposit_amount'], 250.0)

    def test_communication_preferences_saved(self):
        payload = booking_payload(communicationPreferences={
            'emailEnabled': True,
            'smsEnabled': True,
            'preferredChannel': 'both',
        })
        response = self.post(payload)

        self.assertEqual(response.status_code, 201)
        booking = Booking.objects.get(id=response.json()['booking_id'])
        self.assertTrue(booking.sms_enabled)
        self.assertEqual(booking.preferred_channel, 'both')

    def test_invalid_json_rejected(self):
        response = self.client.post('/api/bookings/', data='{not json', content_type='application/json')

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'Invalid JSON')

    @patch('notifications.dispatcher.NotificationDispatcher.notify', side_effect=RuntimeError('smtp down'))
    def test_notification_failure_keeps_booking(self, mock_notify):
        response = self.post(booking_payload())

        self.assertEqual(response.status_code, 201)
        self.assertEqual(Booking.objects.count(), 1)
        mock_notify.assert_called_once()


class BookingModelInvariantTest(TestCase):
    def test_model_rejects_event_inside_lead_time(self):
        with self.assertRaises(DomainError) as ctx:
            make_booking(event_date=timezone.now() + timedelta(days=6))
        self.assertEqual(str(ctx.exception), 'Event date must be at least 7 days in the future')

    def test_model_rejects_small_deposit(self):
        with self.assertRaises(DomainError) as ctx:
            make_booking(payment_total_amount=Decimal('1000'), payment_deposit_amount=Decimal('249'))
        self.assertEqual(str(ctx.exception), 'Deposit must be at least 25% of total amount')

    def test_lead_time_boundary(self):
        now = timezone.now()
        booking = Booking(event_date=now + timedelta(days=7, seconds=1))
        booking.check_invariants(now=now)

        booking.event_date = now + timedelta(days=6, hours=23)
        with self.assertRaises(DomainError):
            booking.check_invariants(now=now)

    def test_existing_booking_can_be_updated_after_lead_time(self):
        booking = make_booking()
        Booking.objects.filter(pk=booking.pk).update(event_date=timezone.now() + timedelta(days=1))
        booking.refresh_from_db()

        booking.admin_notes = 'Guards briefed'
        booking.save()

        booking.refresh_from_db()
        self.assertEqual(booking.admin_notes, 'Guards briefed')

    def test_payment_value_object(self):
        booking = make_booking(payment_total_amount=Decimal('1600'), payment_deposit_amount=Decimal('400'))
        payment = booking.payment

        self.assertEqual(payment.outstanding_amount, Decimal('1600'))
        self.assertFalse(payment.deposit_paid)
        self.assertFalse(payment.fully_paid)


class BookingStatusTest(TestCase):
    def setUp(self):
        self.client = Client()
        self.admin = make_admin()
        self.client.force_login(self.admin)
        self.booking = make_booking()

    def patch_status(self, status, booking_id=None, **extra):
        return self.client.patch(
            f'/api/bookings/{booking_id or self.booking.id}/status/',
            data=json.dumps({'status': status, **extra}),
            content_type='application/json'
        )

    def test_pending_to_approved_to_completed(self):
        response = self.patch_status('approved', adminNotes='Two guards confirmed')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['status'], 'approved')
        self.assertEqual(response.json()['admin_notes'], 'Two guards confirmed')

        response = self.patch_status('completed')
        self.assertEqual(response.status_code, 200)

        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, Booking.STATUS_COMPLETED)

    def test_rejected_is_terminal(self):
        self.assertEqual(self.patch_status('rejected').status_code, 200)

        response = self.patch_status('approved')

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'Cannot change booking status from rejected to approved')
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, Booking.STATUS_REJECTED)

    def test_cancelled_distinct_from_rejected(self):
        self.patch_status('approved')
        response = self.patch_status('cancelled')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.patch_status('completed').status_code, 400)

    def test_pending_cannot_complete(self):
        response = self.patch_status('completed')

        self.assertEqual(response.status_code, 400)

    def test_invalid_status_rejected(self):
        response = self.patch_status('archived')

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['errors'][0]['field'], 'status')

    def test_missing_booking_returns_404(self):
        response = self.patch_status('approved', booking_id=999999)

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()['error'], 'Booking not found')

    def test_status_change_notifies_client(self):
        self.patch_status('approved')

        self.assertEqual(len(mail.outbox), 1)
        self.assertIn('approved', mail.outbox[0].subject)

    @patch('notifications.dispatcher.NotificationDispatcher.notify', return_value=False)
    def test_failed_notification_keeps_status(self, mock_notify):
        response = self.patch_status('approved')

        self.assertEqual(response.status_code, 200)
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, Booking.STATUS_APPROVED)

    def test_requires_authentication(self):
        self.client.logout()

        response = self.patch_status('approved')

        self.assertEqual(response.status_code, 401)

    def test_requires_staff(self):
        self.client.force_login(make_admin('clerk', is_staff=False))

        response = self.patch_status('approved')

        self.assertEqual(response.status_code, 403)


class BookingReadTest(TestCase):
    def setUp(self):
        self.client = Client()
        self.client.force_login(make_admin())

    def test_get_booking(self):
        booking = make_booking()

        response = self.client.get(f'/api/bookings/{booking.id}/')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['client_name'], 'Test User')

    def test_get_missing_booking(self):
        response = self.client.get('/api/bookings/424242/')

        self.assertEqual(response.status_code, 404)

    def test_list_filters_by_status(self):
        make_booking()
        approved = make_booking(client_name='Approved Client')
        Booking.objects.filter(pk=approved.pk).update(status=Booking.STATUS_APPROVED)

        response = self.client.get('/api/bookings/?status=approved')

        self.assertEqual(response.status_code, 200)
        bookings = response.json()['bookings']
        self.assertEqual(len(bookings), 1)
        self.assertEqual(bookings[0]['client_name'], 'Approved Client')

    def test_list_paginated(self):
        for days in range(8, 13):
            make_booking(event_date=timezone.now() + timedelta(days=days))

        response = self.client.get('/api/bookings/?page=3&limit=2')

        data = response.json()
        self.assertEqual(len(data['bookings']), 1)
        self.assertEqual(data['pagination'], {'page': 3, 'limit': 2, 'total': 5, 'pages': 3})

        response = self.client.get('/api/bookings/?page=99&limit=abc')
        self.assertEqual(response.json()['pagination']['page'], 1)
        self.assertEqual(response.json()['pagination']['limit'], 10)

    def test_list_requires_admin(self):
        self.client.logout()

        self.assertEqual(self.client.get('/api/bookings/').status_code, 401)

    def test_dashboard_totals(self):
        make_booking()
        paid = make_booking(payment_total_amount=Decimal('1000'), payment_deposit_amount=Decimal('250'))
        Booking.objects.filter(pk=paid.pk).update(
            status=Booking.STATUS_APPROVED,
            payment_status=Booking.PAYMENT_PARTIAL,
            payment_paid_amount=Decimal('250'),
        )

        response = self.client.get('/api/bookings/dashboard/')

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data['total_requests'], 2)
        self.assertEqual(data['pending_requests'], 1)
        self.assertEqual(data['approved_requests'], 1)
        self.assertEqual(data['total_revenue'], 250.0)
        self.assertEqual(data['outstanding_balance'], 750.0)
        self.assertEqual(len(data['recent_requests']), 2)


class BookingPreferencesTest(TestCase):
    def setUp(self):
        self.client = Client()
        self.client.force_login(make_admin())
        self.booking = make_booking()

    def test_update_preferences(self):
        response = self.client.patch(
            f'/api/bookings/{self.booking.id}/preferences/',
            data=json.dumps({'smsEnabled': True, 'preferredChannel': 'phone'}),
            content_type='application/json'
        )

        self.assertEqual(response.status_code, 200)
        self.booking.refresh_from_db()
        self.assertTrue(self.booking.sms_enabled)
        self.assertEqual(self.booking.preferred_channel, 'phone')
        self.assertTrue(self.booking.email_enabled)

    def test_invalid_channel_rejected(self):
        response = self.client.patch(
            f'/api/bookings/{self.booking.id}/preferences/',
            data=json.dumps({'preferredChannel': 'pigeon'}),
            content_type='application/json'
        )

        self.assertEqual(response.status_code, 400)

    def test_payment_reminder_sent(self):
        response = self.client.post(f'/api/bookings/{self.booking.id}/payment-reminder/')

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()['sent'])
        self.assertIn('Payment Reminder', mail.outbox[0].subject)


class PaymentPhaseTest(TestCase):
    def setUp(self):
        self.lifecycle = get_lifecycle()
        self.booking = make_booking(
            payment_total_amount=Decimal('1600'),
            payment_deposit_amount=Decimal('400'),
        )

    def test_deposit_then_final_payment(self):
        booking, applied = self.lifecycle.record_deposit(self.booking.id, Decimal('400'), 'pi_deposit')
        self.assertTrue(applied)
        self.assertEqual(booking.payment_status, Booking.PAYMENT_PARTIAL)
        self.assertEqual(booking.payment_paid_amount, Decimal('400'))
        self.assertEqual(booking.payment_provider_id, 'pi_deposit')

        booking, applied = self.lifecycle.record_final_payment(self.booking.id, Decimal('1200'), 'pi_final')
        self.assertTrue(applied)
        booking.refresh_from_db()
        self.assertEqual(booking.payment_status, Booking.PAYMENT_PAID)
        self.assertEqual(booking.payment_paid_amount, Decimal('1600'))
        self.assertIsNotNone(booking.payment_paid_date)

    def test_repeated_deposit_is_noop(self):
        self.lifecycle.record_deposit(self.booking.id, Decimal('400'))
        first = Booking.objects.get(pk=self.booking.pk)

        booking, applied = self.lifecycle.record_deposit(self.booking.id, Decimal('400'))

        self.assertFalse(applied)
        self.assertEqual(booking.payment_paid_amount, Decimal('400'))
        self.assertEqual(booking.payment_paid_date, first.payment_paid_date)

    def test_overdue_keeps_deposit(self):
        self.lifecycle.record_deposit(self.booking.id, Decimal('400'))

        booking, changed = self.lifecycle.mark_overdue(self.booking.id)

        self.assertTrue(changed)
        self.assertEqual(booking.payment_status, Booking.PAYMENT_OVERDUE)
        self.assertTrue(booking.payment.deposit_paid)
        self.assertEqual(booking.to_dict()['payment']['deposit_paid'], True)

        booking, applied = self.lifecycle.record_final_payment(self.booking.id, Decimal('1200'))
        self.assertTrue(applied)
        self.assertEqual(booking.payment_paid_amount, Decimal('1600'))

    def test_record_payment_for_missing_booking(self):
        with self.assertRaises(NotFoundError):
            self.lifecycle.record_deposit(999999, Decimal('10'))

    def test_status_and_payment_writes_do_not_clobber(self):
        stale = Booking.objects.get(pk=self.booking.pk)
        self.lifecycle.record_deposit(self.booking.id, Decimal('400'))

        self.lifecycle.update_status(stale.id, Booking.STATUS_APPROVED, 'approved by phone')

        booking = Booking.objects.get(pk=self.booking.pk)
        self.assertEqual(booking.status, Booking.STATUS_APPROVED)
        self.assertEqual(booking.payment_status, Booking.PAYMENT_PARTIAL)
        self.assertEqual(booking.payment_paid_amount, Decimal('400'))
