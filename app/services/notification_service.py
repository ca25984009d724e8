"""
Notification Service - in-app notifications for formula events, with SMS
fan-out for users who opted in.
"""
from typing import Optional
import logging

from sqlalchemy.orm import Session

from app.config import get_settings
from app.models import Notification, User
from app.services.sms_service import sms_service

logger = logging.getLogger(__name__)


class NotificationService:
    """Notification sink for formula lifecycle events."""

    def emit(
        self,
        db: Session,
        user_id: str,
        title: str,
        content: str,
        formula_id: Optional[str] = None,
        notification_type: str = "formula_update",
        icon: str = "beaker",
        priority: str = "low",
        action_path: str = "/dashboard/formula",
        send_sms: bool = True,
    ) -> Notification:
        """Persist a notification and forward it by SMS when the user wants that."""
        settings = get_settings()
        notification = Notification(
            user_id=user_id,
            type=notification_type,
            title=title,
            content=content,
            formula_id=formula_id,
            extra={
                "action_url": f"{settings.app_url.rstrip('/')}{action_path}",
                "icon": icon,
                "priority": priority,
            },
        )
        db.add(notification)
        db.commit()
        db.refresh(notification)

        user = db.query(User).filter(User.id == user_id).first()
        prefs = (user.notification_preferences or {}) if user else {}
        pref_key = "review_reminders" if notification_type == "formula_review" else "formula_updates"
        if send_sms and user and user.can_receive_sms and prefs.get(pref_key, True) and sms_service.is_configured():
            result = sms_service.send_formula_update(user.phone_number, title, content)
            if not result["success"]:
                logger.error(f"Failed to text notification to user {user_id}: {result.get('error')}")

        return notification


# Singleton instance
notification_service = NotificationService()
