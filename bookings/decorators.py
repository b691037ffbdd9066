import json
from functools import wraps

from django.http import JsonResponse

from .exceptions import AuthenticationError, AuthorizationError, ServiceError


def admin_required(view):
    """Allow only signed-in staff users through to back-office views."""
    @wraps(view)
    def wrapper(request, *args, **kwargs):
        if not request.user.is_authenticated:
            return error_response(AuthenticationError('Authentication required'))
        if not request.user.is_staff:
            return error_response(AuthorizationError('Admin access required'))
        return view(request, *args, **kwargs)
    return wrapper


def client_required(view):
    """Signed-in users only; records are matched on the account's email."""
    @wraps(view)
    def wrapper(request, *args, **kwargs):
        if not request.user.is_authenticated:
            return error_response(AuthenticationError('Authentication required'))
        if not request.user.email:
            return error_response(AuthorizationError('Account has no email address'))
        return view(request, *args, **kwargs)
    return wrapper


def error_response(exc):
    return JsonResponse(exc.as_json(), status=exc.status_code)


def service_errors(view):
    """Translate ServiceError raised by a view into its JSON response."""
    @wraps(view)
    def wrapper(request, *args, **kwargs):
        try:
            return view(request, *args, **kwargs)
        except ServiceError as exc:
            return error_response(exc)
    return wrapper


def parse_json(request):
    try:
        data = json.loads(request.body or b'{}')
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None
