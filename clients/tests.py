from datetime import timedelta
from decimal import Decimal
import json

from django.contrib.auth import get_user_model
from django.test import TestCase, Client
from django.utils import timezone

from bookings.models import Booking
from payments.models import Invoice


def make_booking(email='client@example.com', status=Booking.STATUS_PENDING, **overrides):
    fields = {
        'client_name': 'Alex Morgan',
        'email': email,
        'phone': '+44123456789',
        'event_type': 'Concert',
        'event_date': timezone.now() + timedelta(days=30),
        'venue_address': 'Arena Way',
        'number_of_guards': 8,
    }
    fields.update(overrides)
    booking = Booking.objects.create(**fields)
    if status != Booking.STATUS_PENDING:
        Booking.objects.filter(pk=booking.pk).update(status=status)
        booking.refresh_from_db()
    return booking


def make_invoice(booking, provider_invoice_id, status=Invoice.STATUS_SENT, amount='1000.00'):
    return Invoice.objects.create(
        booking=booking,
        provider_invoice_id=provider_invoice_id,
        amount=Decimal(amount),
        deposit_amount=Decimal(amount) / 4,
        status=status,
        due_date=timezone.now() + timedelta(days=30),
    )


class ClientPortalTest(TestCase):
    def setUp(self):
        self.client = Client()
        self.user = get_user_model().objects.create_user(
            username='alex', email='Client@Example.com', password='correct-horse-battery'
        )
        self.client.force_login(self.user)
        self.mine = make_booking(status=Booking.STATUS_APPROVED)
        self.other = make_booking(email='someone.else@example.com')

    def test_requires_authentication(self):
        self.client.logout()

        self.assertEqual(self.client.get('/api/client/bookings/').status_code, 401)
        self.assertEqual(self.client.get('/api/client/statistics/').status_code, 401)

    def test_bookings_scoped_to_account_email(self):
        response = self.client.get('/api/client/bookings/')

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual([b['booking_id'] for b in data['bookings']], [self.mine.id])
        self.assertEqual(data['pagination'], {'page': 1, 'limit': 10, 'total': 1, 'pages': 1})

    def test_bookings_paginated(self):
        for _ in range(4):
            make_booking()

        response = self.client.get('/api/client/bookings/?page=2&limit=2')

        data = response.json()
        self.assertEqual(len(data['bookings']), 2)
        self.assertEqual(data['pagination'], {'page': 2, 'limit': 2, 'total': 5, 'pages': 3})

    def test_bookings_status_filter(self):
        make_booking()

        response = self.client.get('/api/client/bookings/?status=approved')
        self.assertEqual(len(response.json()['bookings']), 1)

        response = self.client.get('/api/client/bookings/?status=all')
        self.assertEqual(len(response.json()['bookings']), 2)

        self.assertEqual(self.client.get('/api/client/bookings/?status=archived').status_code, 400)

    def test_other_clients_booking_not_found(self):
        self.assertEqual(self.client.get(f'/api/client/bookings/{self.mine.id}/').status_code, 200)

        response = self.client.get(f'/api/client/bookings/{self.other.id}/')

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()['error'], 'Booking not found')

    def test_invoices_scoped_to_account_email(self):
        mine = make_invoice(self.mine, 'in_mine')
        theirs = make_invoice(make_booking(email='someone.else@example.com', status=Booking.STATUS_APPROVED),
                              'in_theirs')

        response = self.client.get('/api/client/invoices/')

        self.assertEqual(response.status_code, 200)
        self.assertEqual([i['invoice_id'] for i in response.json()['invoices']], [mine.id])
        self.assertEqual(self.client.get(f'/api/client/invoices/{mine.id}/').status_code, 200)
        self.assertEqual(self.client.get(f'/api/client/invoices/{theirs.id}/').status_code, 404)

    def test_statistics(self):
        make_invoice(self.mine, 'in_paid', status=Invoice.STATUS_PAID, amount='1000.00')
        make_invoice(self.mine, 'in_due', status=Invoice.STATUS_OVERDUE, amount='600.00')
        make_booking(status=Booking.STATUS_CANCELLED)

        response = self.client.get('/api/client/statistics/')

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data['booking_stats']['total'], 2)
        self.assertEqual(data['booking_stats']['approved'], 1)
        self.assertEqual(data['booking_stats']['cancelled'], 1)
        self.assertEqual(data['booking_stats']['upcoming'], 1)
        self.assertEqual(data['payment_stats']['total_invoices'], 2)
        self.assertEqual(data['payment_stats']['paid_invoices'], 1)
        self.assertEqual(data['payment_stats']['overdue_invoices'], 1)
        self.assertEqual(data['payment_stats']['total_paid'], 1000.0)
        self.assertEqual(data['payment_stats']['total_outstanding'], 600.0)

    def test_profile(self):
        response = self.client.get('/api/client/profile/')

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data['name'], 'Alex Morgan')
        self.assertEqual(data['active_bookings'], 1)
        self.assertEqual(data['total_bookings'], 1)

    def test_preferences_applied_to_own_bookings_only(self):
        second = make_booking()

        response = self.client.patch(
            '/api/client/preferences/',
            data=json.dumps({'smsEnabled': True, 'preferredChannel': 'both'}),
            content_type='application/json'
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['updated'], 2)
        for booking in (self.mine, second):
            booking.refresh_from_db()
            self.assertTrue(booking.sms_enabled)
            self.assertEqual(booking.preferred_channel, 'both')
        self.other.refresh_from_db()
        self.assertFalse(self.other.sms_enabled)

    def test_account_without_email_refused(self):
        self.client.force_login(get_user_model().objects.create_user(username='noemail', password='x' * 12))

        self.assertEqual(self.client.get('/api/client/bookings/').status_code, 403)
