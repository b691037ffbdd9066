from django.apps import apps as django_apps


def get_gateway():
    return django_apps.get_app_config('payments').gateway


def get_reconciler():
    from bookings.lifecycle import get_lifecycle
    from .reconciler import WebhookReconciler
    return WebhookReconciler(get_gateway(), get_lifecycle())
