from django.core.management.base import BaseCommand

from bookings.lifecycle import get_lifecycle
from payments.invoicing import mark_overdue_invoices


class Command(BaseCommand):
    help = 'Mark sent invoices past their due date as overdue'

    def add_arguments(self, parser):
        parser.add_argument('--remind', action='store_true', help='Send a payment reminder for each overdue invoice')

    def handle(self, *args, **options):
        lifecycle = get_lifecycle()
        changed = mark_overdue_invoices(lifecycle)

        for invoice in changed:
            self.stdout.write(f'{invoice.invoice_number} overdue (booking {invoice.booking_id})')
            if options['remind']:
                lifecycle.notify(invoice.booking, 'payment_reminder', invoice)

        self.stdout.write(f'{len(changed)} invoice(s) marked overdue.')
