"""
Error taxonomy shared by the booking and payment apps.

Views catch ``ServiceError`` and turn it into a JSON response with
``status_code``; anything else is left to Django's 500 handling.
"""


class ServiceError(Exception):
    status_code = 400

    def __init__(self, message=''):
        super().__init__(message)
        self.message = message

    def as_json(self):
        return {'error': self.message}


class ValidationError(ServiceError):
    """Malformed or missing input, carrying every offending field."""

    def __init__(self, errors):
        self.errors = list(errors)
        super().__init__('; '.join(e['message'] for e in self.errors) or 'Invalid input')

    def as_json(self):
        return {'errors': self.errors}


class DomainError(ServiceError):
    """A business rule was violated."""


class NotFoundError(ServiceError):
    status_code = 404


class AuthenticationError(ServiceError):
    status_code = 401


class AuthorizationError(ServiceError):
    status_code = 403


class GatewayError(ServiceError):
    """The payment provider failed or timed out. Safe to retry."""
    status_code = 502

    def __init__(self, message='', retryable=True):
        super().__init__(message)
        self.retryable = retryable

    def as_json(self):
        return {'error': self.message, 'retryable': self.retryable}
