"""
Notification Service — Handles SMS and Email delivery of one-time codes.
Simulated provider; in production this would call an SMS/email gateway.
"""
import time
from typing import Dict, Any

from app.schemas.records import Channel
from app.utils.logging import get_logger
from app.utils.validators import mask_email, mask_phone

LOGGER = get_logger(__name__)

OTP_MESSAGE = "Your signing verification code is {code}. It expires in {minutes} minutes. Never share this code."


class NotificationService:
    def __init__(self, validity_minutes: int = 5):
        self.validity_minutes = validity_minutes

    def dispatch(self, channel: Channel, destination: str, code: str) -> Dict[str, Any]:
        """Send a one-time code over the given channel.

        Returns:
            dict with success, provider, sid, status.
        """
        message = OTP_MESSAGE.format(code=code, minutes=self.validity_minutes)
        if channel == Channel.SMS:
            return self.send_sms(destination, message)
        return self.send_email(destination, "Your signing verification code", message)

    @staticmethod
    def send_sms(phone: str, message: str) -> Dict[str, Any]:
        """
        Simulates sending an SMS via a provider like Brevo or Twilio.
        """
        LOGGER.info("[SMS] Sending to %s (%d chars)", mask_phone(phone), len(message))
        return {
            "success": True,
            "provider": "MockSMSGateway",
            "sid": f"SM{int(time.time())}Y",
            "status": "sent",
        }

    @staticmethod
    def send_email(email: str, subject: str, body: str) -> Dict[str, Any]:
        """
        Simulates sending a transactional email.
        """
        LOGGER.info("[EMAIL] Sending '%s' to %s", subject, mask_email(email))
        return {
            "success": True,
            "provider": "MockEmailGateway",
            "sid": f"EM{int(time.time())}X",
            "status": "sent",
        }
