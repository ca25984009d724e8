from sqlalchemy import Column, String, DateTime, JSON, Boolean
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid

from app.db.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String, nullable=False)
    email = Column(String, unique=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    # SMS Notification Fields
    phone_number = Column(String, nullable=True)  # E.164 format: +1234567890
    phone_verified = Column(Boolean, default=False)
    timezone = Column(String, default="America/New_York")  # IANA timezone
    notification_preferences = Column(JSON, default=lambda: {
        "sms_enabled": False,
        "formula_updates": True,
        "review_reminders": True,
    })

    # Relationships
    formulas = relationship("Formula", back_populates="user", order_by="Formula.version")
    notifications = relationship("Notification", back_populates="user", cascade="all, delete-orphan")
    review_schedules = relationship("ReviewSchedule", back_populates="user", cascade="all, delete-orphan")

    @property
    def first_name(self) -> str:
        return self.name.split()[0] if self.name else "there"

    @property
    def can_receive_sms(self) -> bool:
        """Verified phone and SMS switched on."""
        prefs = self.notification_preferences or {}
        return bool(self.phone_number and self.phone_verified and prefs.get("sms_enabled", False))
