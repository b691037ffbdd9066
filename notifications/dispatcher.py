"""
Notification dispatcher for sending client emails and SMS.
"""
import logging
from dataclasses import dataclass

from django.conf import settings
from django.core.mail import EmailMultiAlternatives
from twilio.rest import Client as TwilioClient

from . import messages

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmailConfig:
    enabled: bool
    from_email: str

    @classmethod
    def from_settings(cls):
        return cls(
            enabled=settings.NOTIFICATIONS_ENABLED,
            from_email=settings.DEFAULT_FROM_EMAIL,
        )


@dataclass(frozen=True)
class SMSConfig:
    enabled: bool
    account_sid: str
    auth_token: str
    from_number: str

    @classmethod
    def from_settings(cls):
        return cls(
            enabled=settings.NOTIFICATIONS_ENABLED and settings.SMS_ENABLED,
            account_sid=settings.TWILIO_ACCOUNT_SID,
            auth_token=settings.TWILIO_AUTH_TOKEN,
            from_number=settings.TWILIO_PHONE_NUMBER,
        )

    @property
    def configured(self):
        return bool(self.account_sid and self.auth_token and self.from_number)


class NotificationDispatcher:
    """Sends templated messages over the channels a client has opted into."""

    def __init__(self, email_config, sms_config):
        self.email_config = email_config
        self.sms_config = sms_config
        self._twilio = None

    def notify(self, booking, trigger, invoice=None):
        """Send ``trigger`` to the booking's client. True if any channel delivered."""
        if trigger not in messages.TRIGGERS:
            raise ValueError(f"Unknown notification trigger: {trigger}")

        subject, body, sms_text = messages.render(trigger, booking, invoice)
        delivered = False

        if booking.email_enabled and booking.preferred_channel in ('email', 'both'):
            delivered = self.send_email(booking.email, subject, body) or delivered

        if booking.sms_enabled and booking.preferred_channel in ('phone', 'both'):
            delivered = self.send_sms(booking.phone, sms_text) or delivered

        if not delivered:
            logger.info(f"No {trigger} notification delivered for booking {booking.id}")
        return delivered

    def send_email(self, to_email, subject, text_content):
        if not self.email_config.enabled:
            logger.info("Email notifications disabled. Enable with NOTIFICATIONS_ENABLED=True")
            return False
        try:
            msg = EmailMultiAlternatives(
                subject=subject,
                body=text_content,
                from_email=self.email_config.from_email,
                to=[to_email],
            )
            msg.send()
            logger.info(f"Email sent to {to_email}: {subject}")
            return True
        except Exception as e:
            logger.error(f"Email failed to {to_email}: {str(e)}")
            return False

    def send_sms(self, to_phone, body):
        if not self.sms_config.enabled:
            logger.info("SMS disabled. Enable with SMS_ENABLED=True")
            return False
        if not self.sms_config.configured:
            logger.warning("Twilio not configured, SMS not sent")
            return False
        try:
            self.twilio.messages.create(
                body=body,
                from_=self.sms_config.from_number,
                to=to_phone,
            )
            logger.info(f"SMS sent to {to_phone}")
            return True
        except Exception as e:
            logger.error(f"SMS failed to {to_phone}: {str(e)}")
            return False

    @property
    def twilio(self):
        if self._twilio is None:
            self._twilio = TwilioClient(self.sms_config.account_sid, self.sms_config.auth_token)
        return self._twilio


def build_dispatcher():
    return NotificationDispatcher(EmailConfig.from_settings(), SMSConfig.from_settings())
