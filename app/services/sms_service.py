"""
SMS Service - Handles all SMS operations via Twilio.
"""
from datetime import datetime
from typing import Dict, Optional
import logging

from app.config import get_settings

logger = logging.getLogger(__name__)


class SMSService:
    """Handles all SMS operations via Twilio."""

    def __init__(self):
        self._client = None
        self._from_number = None

    def _get_client(self):
        """Lazy initialization of Twilio client."""
        if self._client is None:
            settings = get_settings()
            if settings.twilio_account_sid and settings.twilio_auth_token:
                from twilio.rest import Client
                self._client = Client(
                    settings.twilio_account_sid,
                    settings.twilio_auth_token
                )
                self._from_number = settings.twilio_phone_number
            else:
                logger.warning("Twilio credentials not configured")
        return self._client

    def is_configured(self) -> bool:
        """Check if Twilio is properly configured."""
        settings = get_settings()
        return bool(
            settings.twilio_account_sid and
            settings.twilio_auth_token and
            settings.twilio_phone_number
        )

    def send_sms(
        self,
        to_number: str,
        message: str,
        message_type: Optional[str] = None
    ) -> Dict:
        """
        Send SMS via Twilio.

        Args:
            to_number: Destination phone number in E.164 format
            message: Message body
            message_type: Type of message (formula_update, review_reminder, etc.)

        Returns:
            Dict with success status and message SID or error
        """
        client = self._get_client()
        if not client:
            logger.error("Twilio client not available")
            return {"success": False, "error": "SMS service not configured"}

        try:
            response = client.messages.create(
                body=message,
                from_=self._from_number,
                to=to_number
            )

            logger.info(
                f"SMS sent to {self._mask_phone(to_number)} "
                f"[{message_type or 'unknown'}] SID: {response.sid}"
            )

            return {
                "success": True,
                "sid": response.sid,
                "status": response.status
            }

        except Exception as e:
            logger.error(f"Failed to send SMS: {str(e)}")
            return {"success": False, "error": str(e)}

    def send_formula_update(self, to_number: str, title: str, content: str) -> Dict:
        """Send a formula change notice."""
        return self.send_sms(
            to_number=to_number,
            message=f"{title}\n\n{content}",
            message_type="formula_update"
        )

    def send_review_reminder(
        self,
        to_number: str,
        user_name: str,
        formula_label: str,
        review_date: datetime
    ) -> Dict:
        """Send an upcoming formula review reminder."""
        message = self.build_review_message(user_name, formula_label, review_date)
        return self.send_sms(
            to_number=to_number,
            message=message,
            message_type="review_reminder"
        )

    def build_review_message(
        self,
        user_name: str,
        formula_label: str,
        review_date: datetime
    ) -> str:
        """Build personalized review reminder message."""
        first_name = user_name.split()[0] if user_name else "there"
        when = review_date.strftime("%b %d")
        return (
            f"Hi {first_name}!\n\n"
            f"Your review of {formula_label} is coming up on {when}. "
            f"Share any health changes so we can keep your formula on track."
        )

    def _mask_phone(self, phone: str) -> str:
        """Mask phone number for logging."""
        if phone and len(phone) > 6:
            return phone[:3] + "***" + phone[-4:]
        return "***"


# Singleton instance
sms_service = SMSService()
