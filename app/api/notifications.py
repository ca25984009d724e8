"""
Notifications API - In-app formula notifications and SMS preferences.
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from pydantic import BaseModel, validator
from typing import Optional
import re

from app.api.deps import get_current_user
from app.db import get_db
from app.models import Notification, User

router = APIRouter()


# Pydantic Models
class NotificationPreferencesUpdate(BaseModel):
    sms_enabled: Optional[bool] = None
    formula_updates: Optional[bool] = None
    review_reminders: Optional[bool] = None
    phone_number: Optional[str] = None
    timezone: Optional[str] = None

    @validator("phone_number")
    def validate_phone(cls, v):
        # Basic E.164 validation for US numbers
        if v is not None and v != "":
            pattern = r"^\+1\d{10}$"
            if not re.match(pattern, v):
                raise ValueError("Phone number must be in format +1XXXXXXXXXX")
        return v if v != "" else None


# Helper functions
def _mask_phone(phone: str) -> Optional[str]:
    """Mask phone number for display."""
    if phone and len(phone) > 6:
        return phone[:3] + "***" + phone[-4:]
    return None


# Endpoints
@router.get("")
def list_notifications(
    unread_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Newest notifications first."""
    query = db.query(Notification).filter(Notification.user_id == user.id)
    if unread_only:
        query = query.filter(Notification.is_read == False)
    notifications = query.order_by(Notification.created_at.desc()).limit(limit).all()

    unread = db.query(Notification).filter(
        Notification.user_id == user.id,
        Notification.is_read == False
    ).count()

    return {
        "notifications": [n.to_dict() for n in notifications],
        "unread_count": unread
    }


@router.post("/{notification_id}/read")
def mark_read(
    notification_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    notification = db.query(Notification).filter(
        Notification.id == notification_id,
        Notification.user_id == user.id
    ).first()
    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found")

    notification.is_read = True
    db.commit()
    return {"id": notification.id, "is_read": True}


@router.patch("/preferences")
def update_preferences(
    request: NotificationPreferencesUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Update SMS and notification preferences."""
    prefs = dict(user.notification_preferences or {})

    if request.phone_number is not None and request.phone_number != user.phone_number:
        user.phone_number = request.phone_number
        user.phone_verified = False

    if request.sms_enabled is not None:
        if request.sms_enabled and not user.phone_number:
            raise HTTPException(
                status_code=400,
                detail="Add a phone number before enabling SMS"
            )
        prefs["sms_enabled"] = request.sms_enabled
    if request.formula_updates is not None:
        prefs["formula_updates"] = request.formula_updates
    if request.review_reminders is not None:
        prefs["review_reminders"] = request.review_reminders
    if request.timezone is not None:
        user.timezone = request.timezone

    # Reassign so the JSON column is flagged dirty
    user.notification_preferences = prefs
    db.commit()
    db.refresh(user)

    return {
        "phone_number": _mask_phone(user.phone_number),
        "phone_verified": user.phone_verified,
        "timezone": user.timezone,
        **prefs
    }
