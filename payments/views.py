from django.conf import settings
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from bookings.decorators import admin_required, parse_json, service_errors
from bookings.exceptions import AuthenticationError, NotFoundError, ValidationError
from bookings.lifecycle import get_lifecycle
from bookings.pagination import paginate
from bookings.validation import parse_amount, pick

from . import get_gateway, get_reconciler
from .gateway import compute_payment_schedule
from .invoicing import create_invoice as create_invoice_internal
from .invoicing import get_invoice, mark_overdue_invoices, request_payment
from .invoicing import send_invoice as send_invoice_internal
from .models import Invoice

INVOICE_STATUSES = [choice for choice, _ in Invoice.STATUS_CHOICES]


@csrf_exempt
@require_http_methods(["POST"])
@admin_required
@service_errors
def create_invoice(request):
    if not settings.PAYMENTS_ENABLED:
        return JsonResponse({'error': 'Payments are not enabled for this instance'}, status=400)

    data = parse_json(request)
    if data is None:
        return JsonResponse({'error': 'Invalid JSON'}, status=400)

    booking_id = pick(data, 'bookingId', 'booking_id')
    total_amount = parse_amount(pick(data, 'totalAmount', 'total_amount'))
    deposit_amount = parse_amount(pick(data, 'depositAmount', 'deposit_amount'))

    errors = []
    if isinstance(booking_id, bool) or not str(booking_id or '').isdigit():
        errors.append({'field': 'bookingId', 'message': 'Booking id is required'})
    if total_amount is None:
        errors.append({'field': 'totalAmount', 'message': 'Total amount is required'})
    if deposit_amount is None:
        errors.append({'field': 'depositAmount', 'message': 'Deposit amount is required'})
    if errors:
        raise ValidationError(errors)

    service_type = pick(data, 'serviceType', 'service_type', default='')
    date = pick(data, 'date', default='')
    description = f"{service_type} on {date}".strip() if service_type and date else service_type
    invoice = create_invoice_internal(
        get_gateway(),
        int(booking_id),
        total_amount,
        deposit_amount,
        description=description,
        notes=pick(data, 'notes', default=''),
    )
    return JsonResponse(invoice.to_dict(), status=201)


@csrf_exempt
@require_http_methods(["POST"])
@admin_required
@service_errors
def send_invoice(request, invoice_id):
    invoice = send_invoice_internal(get_gateway(), get_lifecycle(), invoice_id)
    return JsonResponse(invoice.to_dict())


@csrf_exempt
@require_http_methods(["POST"])
@service_errors
def create_deposit_payment(request, booking_id):
    return _payment_response(request_payment(get_gateway(), booking_id, 'deposit'))


@csrf_exempt
@require_http_methods(["POST"])
@service_errors
def create_final_payment(request, booking_id):
    return _payment_response(request_payment(get_gateway(), booking_id, 'final'))


def _payment_response(intent):
    return JsonResponse({
        'payment_id': intent['payment_id'],
        'client_secret': intent['client_secret'],
        'amount': float(intent['amount']),
    })


@csrf_exempt
@require_http_methods(["POST"])
def stripe_webhook(request):
    payload = request.body
    sig_header = request.META.get('HTTP_STRIPE_SIGNATURE')

    if not settings.STRIPE_WEBHOOK_SECRET:
        return JsonResponse({'error': 'Webhook secret not configured'}, status=500)

    try:
        event, outcome = get_reconciler().handle(payload, sig_header)
    except AuthenticationError as e:
        return JsonResponse({'error': e.message}, status=400)

    return JsonResponse({'received': True, 'type': event.type, 'outcome': outcome})


@require_http_methods(["GET"])
@admin_required
@service_errors
def get_payment_status(request, payment_id):
    status = get_gateway().query_payment_status(payment_id)
    if status is None:
        raise NotFoundError('Payment not found')
    return JsonResponse({
        'payment_id': status['payment_id'],
        'status': status['status'],
        'amount': float(status['amount']),
    })


@require_http_methods(["GET"])
@admin_required
@service_errors
def get_invoice_detail(request, invoice_id):
    invoice = get_invoice(invoice_id)
    data = invoice.to_dict()
    data['client_name'] = invoice.booking.client_name
    data['email'] = invoice.booking.email
    return JsonResponse(data)


@require_http_methods(["GET"])
@admin_required
def list_invoices(request):
    queryset = Invoice.objects.select_related('booking')
    status = request.GET.get('status')
    if status:
        if status not in INVOICE_STATUSES:
            return JsonResponse({'error': 'Invalid status value'}, status=400)
        queryset = queryset.filter(status=status)
    page, pagination = paginate(request, queryset.order_by('-created_at', '-id'))
    invoices = []
    for invoice in page:
        data = invoice.to_dict()
        data['client_name'] = invoice.booking.client_name
        invoices.append(data)
    return JsonResponse({'invoices': invoices, 'pagination': pagination})


@csrf_exempt
@require_http_methods(["POST"])
@admin_required
def flag_overdue_invoices(request):
    changed = mark_overdue_invoices(get_lifecycle())
    return JsonResponse({'overdue': [invoice.invoice_number for invoice in changed]})


@require_http_methods(["GET"])
def payment_schedule(request):
    total = parse_amount(request.GET.get('total'))
    if total is None or total <= 0:
        return JsonResponse({'error': 'total must be a positive amount'}, status=400)

    schedule = compute_payment_schedule(total)
    return JsonResponse({
        'total_amount': float(schedule['total_amount']),
        'deposit_amount': float(schedule['deposit_amount']),
        'final_amount': float(schedule['final_amount']),
        'deposit_fraction': float(schedule['deposit_fraction']),
        'schedule': [{
            'type': entry['type'],
            'amount': float(entry['amount']),
            'due_date': entry['due_date'].isoformat(),
        } for entry in schedule['schedule']],
    })
