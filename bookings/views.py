from decimal import Decimal

from django.db.models import Count, F, Sum
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from .decorators import admin_required, parse_json, service_errors
from .lifecycle import get_lifecycle
from .models import Booking
from .pagination import paginate
from .validation import STATUS_VALUES, validate_booking_payload, validate_preferences, validate_status_payload


@csrf_exempt
@require_http_methods(["GET", "POST"])
def bookings(request):
    if request.method == 'POST':
        return create_booking(request)
    return list_bookings(request)


@service_errors
def create_booking(request):
    data = parse_json(request)
    if data is None:
        return JsonResponse({'error': 'Invalid JSON'}, status=400)

    cleaned = validate_booking_payload(data)
    booking = get_lifecycle().create_booking(cleaned)
    return JsonResponse(booking.to_dict(), status=201)


@admin_required
def list_bookings(request):
    queryset = Booking.objects.all()
    status = request.GET.get('status')
    if status:
        if status not in STATUS_VALUES:
            return JsonResponse({'error': 'Invalid status value'}, status=400)
        queryset = queryset.filter(status=status)
    page, pagination = paginate(request, queryset.order_by('event_date', 'id'))
    return JsonResponse({'bookings': [b.to_dict() for b in page], 'pagination': pagination})


@require_http_methods(["GET"])
@admin_required
@service_errors
def get_booking(request, booking_id):
    booking = get_lifecycle().get_booking(booking_id)
    return JsonResponse(booking.to_dict())


@csrf_exempt
@require_http_methods(["PATCH"])
@admin_required
@service_errors
def update_booking_status(request, booking_id):
    data = parse_json(request)
    if data is None:
        return JsonResponse({'error': 'Invalid JSON'}, status=400)

    status, admin_notes = validate_status_payload(data)
    booking = get_lifecycle().update_status(booking_id, status, admin_notes)
    return JsonResponse(booking.to_dict())


@csrf_exempt
@require_http_methods(["PATCH"])
@admin_required
@service_errors
def update_preferences(request, booking_id):
    data = parse_json(request)
    if data is None:
        return JsonResponse({'error': 'Invalid JSON'}, status=400)

    preferences = validate_preferences(data)
    booking = get_lifecycle().update_preferences(booking_id, preferences)
    return JsonResponse(booking.to_dict()['communication_preferences'])


@csrf_exempt
@require_http_methods(["POST"])
@admin_required
@service_errors
def send_payment_reminder(request, booking_id):
    sent = get_lifecycle().send_payment_reminder(booking_id)
    return JsonResponse({'booking_id': booking_id, 'sent': sent})


@require_http_methods(["GET"])
@admin_required
def dashboard(request):
    by_status = {status: 0 for status in STATUS_VALUES}
    for row in Booking.objects.values('status').annotate(count=Count('id')):
        by_status[row['status']] = row['count']

    totals = Booking.objects.aggregate(revenue=Sum('payment_paid_amount'))
    outstanding = Booking.objects.filter(
        status=Booking.STATUS_APPROVED,
    ).exclude(
        payment_status=Booking.PAYMENT_PAID,
    ).aggregate(
        balance=Sum(F('payment_total_amount') - F('payment_paid_amount')),
    )

    recent = Booking.objects.order_by('-created_at')[:10]
    return JsonResponse({
        'total_requests': sum(by_status.values()),
        'pending_requests': by_status[Booking.STATUS_PENDING],
        'approved_requests': by_status[Booking.STATUS_APPROVED],
        'bookings_by_status': by_status,
        'total_revenue': float(totals['revenue'] or Decimal('0')),
        'outstanding_balance': float(outstanding['balance'] or Decimal('0')),
        'recent_requests': [{
            'booking_id': b.id,
            'client_name': b.client_name,
            'event_date': b.event_date.isoformat(),
            'status': b.status,
            'amount': float(b.payment_total_amount),
            'paid_amount': float(b.payment_paid_amount),
        } for b in recent],
    })
