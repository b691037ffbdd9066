"""
Request-body validation for booking intake and admin updates.

Every check runs and all failures are reported together, mirroring what the
public booking form expects back. The model repeats the date and deposit
rules when the row is first saved.
"""
from datetime import datetime, time, timezone as dt_timezone
from decimal import Decimal, InvalidOperation

from django.core.exceptions import ValidationError as DjangoValidationError
from django.core.validators import validate_email
from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime

from .exceptions import ValidationError
from .models import Booking, DEPOSIT_MESSAGE, EVENT_DATE_MESSAGE, minimum_deposit, minimum_event_date

STATUS_VALUES = [choice for choice, _ in Booking.STATUS_CHOICES]
CHANNEL_VALUES = [choice for choice, _ in Booking.CHANNEL_CHOICES]

# Fields an admin may change through each operation.
STATUS_FIELDS = ('status', 'admin_notes')
PREFERENCE_FIELDS = ('email_enabled', 'sms_enabled', 'preferred_channel')


def pick(data, *keys, default=None):
    """Return the first key present in ``data`` (camelCase or snake_case)."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def parse_event_date(value):
    if not isinstance(value, str):
        return None
    try:
        parsed = parse_datetime(value)
        if parsed is None:
            day = parse_date(value)
            if day is None:
                return None
            parsed = datetime.combine(day, time.min)
    except ValueError:
        return None
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed, dt_timezone.utc)
    return parsed


def parse_amount(value):
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        return None
    if not amount.is_finite():
        return None
    return amount.quantize(Decimal('0.01'))


def _required_text(data, errors, field, keys, message):
    value = pick(data, *keys)
    if not isinstance(value, str) or not value.strip():
        errors.append({'field': field, 'message': message})
        return ''
    return value.strip()


def validate_booking_payload(data, now=None):
    """Validate a booking intake body and return the cleaned model fields."""
    errors = []
    cleaned = {}

    cleaned['client_name'] = _required_text(data, errors, 'clientName', ('clientName', 'client_name'), 'Client name is required')

    email = pick(data, 'email')
    try:
        validate_email(email if isinstance(email, str) else '')
        cleaned['email'] = email.strip()
    except DjangoValidationError:
        errors.append({'field': 'email', 'message': 'Valid email is required'})

    cleaned['phone'] = _required_text(data, errors, 'phone', ('phone',), 'Phone number is required')
    cleaned['event_type'] = _required_text(
        data, errors, 'eventType', ('eventType', 'event_type', 'serviceType', 'service_type'), 'Event type is required'
    )
    cleaned['venue_address'] = _required_text(
        data, errors, 'venueAddress', ('venueAddress', 'venue_address'), 'Venue address is required'
    )

    event_date = parse_event_date(pick(data, 'eventDate', 'event_date', 'date'))
    if event_date is None:
        errors.append({'field': 'eventDate', 'message': 'Valid event date is required'})
    elif event_date < minimum_event_date(now):
        errors.append({'field': 'eventDate', 'message': EVENT_DATE_MESSAGE})
    cleaned['event_date'] = event_date

    guards = pick(data, 'numberOfGuards', 'number_of_guards')
    if isinstance(guards, bool) or not isinstance(guards, int) or guards < 1:
        errors.append({'field': 'numberOfGuards', 'message': 'Number of guards must be at least 1'})
    else:
        cleaned['number_of_guards'] = guards

    requirements = pick(data, 'specialRequirements', 'special_requirements', default='')
    cleaned['special_requirements'] = requirements.strip() if isinstance(requirements, str) else ''

    raw_total = pick(data, 'totalAmount', 'total_amount')
    raw_deposit = pick(data, 'depositAmount', 'deposit_amount')
    if raw_total is not None or raw_deposit is not None:
        total = parse_amount(raw_total if raw_total is not None else 0)
        deposit = parse_amount(raw_deposit if raw_deposit is not None else 0)
        if total is None or total < 0:
            errors.append({'field': 'totalAmount', 'message': 'Total amount must be a number >= 0'})
        if deposit is None or deposit < 0:
            errors.append({'field': 'depositAmount', 'message': 'Deposit amount must be a number >= 0'})
        if total is not None and deposit is not None and total > 0 and deposit < minimum_deposit(total):
            errors.append({'field': 'depositAmount', 'message': DEPOSIT_MESSAGE})
        cleaned['payment_total_amount'] = total
        cleaned['payment_deposit_amount'] = deposit

    preferences = pick(data, 'communicationPreferences', 'communication_preferences')
    if preferences is not None:
        try:
            cleaned.update(validate_preferences(preferences))
        except ValidationError as exc:
            errors.extend(exc.errors)

    if errors:
        raise ValidationError(errors)
    return cleaned


def validate_status_payload(data):
    status = pick(data, 'status')
    if status not in STATUS_VALUES:
        raise ValidationError([{'field': 'status', 'message': 'Invalid status value'}])
    notes = pick(data, 'adminNotes', 'admin_notes')
    if notes is not None and not isinstance(notes, str):
        raise ValidationError([{'field': 'adminNotes', 'message': 'Admin notes must be text'}])
    return status, notes


def validate_preferences(data):
    if not isinstance(data, dict):
        raise ValidationError([{'field': 'communicationPreferences', 'message': 'Preferences must be an object'}])
    errors = []
    cleaned = {}
    for field, keys in (
        ('email_enabled', ('emailEnabled', 'email_enabled', 'emailNotifications')),
        ('sms_enabled', ('smsEnabled', 'sms_enabled', 'smsNotifications')),
    ):
        value = pick(data, *keys)
        if value is None:
            continue
        if not isinstance(value, bool):
            errors.append({'field': keys[0], 'message': f'{keys[0]} must be true or false'})
        else:
            cleaned[field] = value
    channel = pick(data, 'preferredChannel', 'preferred_channel', 'preferredContact')
    if channel is not None:
        if channel not in CHANNEL_VALUES:
            errors.append({'field': 'preferredChannel', 'message': 'Preferred channel must be email, phone or both'})
        else:
            cleaned['preferred_channel'] = channel
    if errors:
        raise ValidationError(errors)
    return cleaned
