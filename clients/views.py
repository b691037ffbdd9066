"""
Client self-service views.

A signed-in client sees only the bookings made with their account email, and
the invoices raised against those bookings.
"""
from decimal import Decimal

from django.db.models import Count, Q, Sum
from django.http import JsonResponse
from django.utils import timezone
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from bookings.decorators import client_required, parse_json, service_errors
from bookings.exceptions import NotFoundError
from bookings.lifecycle import get_lifecycle
from bookings.models import Booking
from bookings.pagination import paginate
from bookings.validation import STATUS_VALUES, validate_preferences
from payments.models import Invoice

INVOICE_STATUSES = [choice for choice, _ in Invoice.STATUS_CHOICES]


def client_bookings(request):
    return Booking.objects.filter(email__iexact=request.user.email)


def client_invoices(request):
    return Invoice.objects.filter(booking__email__iexact=request.user.email)


def _status_filter(request, queryset, allowed):
    status = request.GET.get('status')
    if not status or status == 'all':
        return queryset, None
    if status not in allowed:
        return queryset, JsonResponse({'error': 'Invalid status value'}, status=400)
    return queryset.filter(status=status), None


@require_http_methods(["GET"])
@client_required
def profile(request):
    queryset = client_bookings(request)
    latest = queryset.order_by('-created_at').first()
    spent = queryset.filter(status=Booking.STATUS_COMPLETED).aggregate(total=Sum('payment_paid_amount'))
    return JsonResponse({
        'email': request.user.email,
        'name': latest.client_name if latest else request.user.get_full_name(),
        'phone': latest.phone if latest else '',
        'active_bookings': queryset.filter(
            status__in=[Booking.STATUS_PENDING, Booking.STATUS_APPROVED],
        ).count(),
        'total_bookings': queryset.count(),
        'total_spent': float(spent['total'] or Decimal('0')),
        'communication_preferences': latest.to_dict()['communication_preferences'] if latest else None,
    })


@csrf_exempt
@require_http_methods(["PATCH"])
@client_required
@service_errors
def update_preferences(request):
    """Apply new communication preferences to every booking of this client."""
    data = parse_json(request)
    if data is None:
        return JsonResponse({'error': 'Invalid JSON'}, status=400)

    preferences = validate_preferences(data)
    lifecycle = get_lifecycle()
    booking_ids = list(client_bookings(request).values_list('id', flat=True))
    for booking_id in booking_ids:
        lifecycle.update_preferences(booking_id, preferences)
    return JsonResponse({'updated': len(booking_ids), 'communication_preferences': preferences})


@require_http_methods(["GET"])
@client_required
def bookings(request):
    queryset, error = _status_filter(request, client_bookings(request), STATUS_VALUES)
    if error:
        return error
    page, pagination = paginate(request, queryset.order_by('-created_at', '-id'))
    return JsonResponse({'bookings': [b.to_dict() for b in page], 'pagination': pagination})


@require_http_methods(["GET"])
@client_required
@service_errors
def booking_detail(request, booking_id):
    booking = client_bookings(request).filter(pk=booking_id).first()
    if booking is None:
        raise NotFoundError('Booking not found')
    return JsonResponse(booking.to_dict())


@require_http_methods(["GET"])
@client_required
def invoices(request):
    queryset, error = _status_filter(request, client_invoices(request), INVOICE_STATUSES)
    if error:
        return error
    page, pagination = paginate(request, queryset.order_by('-created_at', '-id'))
    return JsonResponse({'invoices': [i.to_dict() for i in page], 'pagination': pagination})


@require_http_methods(["GET"])
@client_required
@service_errors
def invoice_detail(request, invoice_id):
    invoice = client_invoices(request).filter(pk=invoice_id).first()
    if invoice is None:
        raise NotFoundError('Invoice not found')
    return JsonResponse(invoice.to_dict())


@require_http_methods(["GET"])
@client_required
def statistics(request):
    now = timezone.now()
    booking_counts = {status: 0 for status in STATUS_VALUES}
    queryset = client_bookings(request)
    for row in queryset.values('status').annotate(count=Count('id')):
        booking_counts[row['status']] = row['count']

    invoice_totals = client_invoices(request).aggregate(
        total=Count('id'),
        paid=Count('id', filter=Q(status=Invoice.STATUS_PAID)),
        outstanding=Count('id', filter=Q(status__in=[Invoice.STATUS_SENT, Invoice.STATUS_OVERDUE])),
        overdue=Count('id', filter=Q(status=Invoice.STATUS_OVERDUE)),
        paid_amount=Sum('amount', filter=Q(status=Invoice.STATUS_PAID)),
        outstanding_amount=Sum('amount', filter=Q(status__in=[Invoice.STATUS_SENT, Invoice.STATUS_OVERDUE])),
    )

    return JsonResponse({
        'booking_stats': {
            'total': sum(booking_counts.values()),
            **booking_counts,
            'upcoming': queryset.filter(event_date__gt=now).exclude(
                status__in=[Booking.STATUS_REJECTED, Booking.STATUS_CANCELLED],
            ).count(),
        },
        'payment_stats': {
            'total_invoices': invoice_totals['total'],
            'paid_invoices': invoice_totals['paid'],
            'outstanding_invoices': invoice_totals['outstanding'],
            'overdue_invoices': invoice_totals['overdue'],
            'total_paid': float(invoice_totals['paid_amount'] or Decimal('0')),
            'total_outstanding': float(invoice_totals['outstanding_amount'] or Decimal('0')),
        },
    })
