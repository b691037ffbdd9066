from django.apps import AppConfig


class NotificationsConfig(AppConfig):
    name = 'notifications'
    dispatcher = None

    def ready(self):
        from .dispatcher import build_dispatcher
        self.dispatcher = build_dispatcher()
