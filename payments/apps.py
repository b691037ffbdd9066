from django.apps import AppConfig


class PaymentsConfig(AppConfig):
    name = 'payments'
    gateway = None

    def ready(self):
        from .gateway import GatewayConfig, StripeGateway, configure_stripe
        config = GatewayConfig.from_settings()
        configure_stripe(config)
        self.gateway = StripeGateway(config)
