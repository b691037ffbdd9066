from django.apps import apps as django_apps


def get_dispatcher():
    """The process-wide dispatcher built when the app registry loaded."""
    return django_apps.get_app_config('notifications').dispatcher
