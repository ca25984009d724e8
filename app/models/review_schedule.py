"""Review schedule model for periodic formula check-ins."""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Integer, Boolean, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship

from app.db.database import Base


class ReviewSchedule(Base):
    __tablename__ = "review_schedules"
    __table_args__ = (
        UniqueConstraint("user_id", "formula_id", name="uq_review_schedules_user_formula"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    formula_id = Column(String, ForeignKey("formulas.id"), nullable=False)
    frequency = Column(String, nullable=False)  # monthly, bimonthly, quarterly
    days_before = Column(Integer, nullable=False)
    next_review_date = Column(DateTime, nullable=False)
    last_review_date = Column(DateTime, nullable=True)
    email_reminders = Column(Boolean, default=True, nullable=False)
    sms_reminders = Column(Boolean, default=False, nullable=False)
    calendar_integration = Column(String, nullable=True)  # google, apple, outlook
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="review_schedules")
    formula = relationship("Formula")

    def to_dict(self):
        return {
            "id": self.id,
            "formula_id": self.formula_id,
            "frequency": self.frequency,
            "days_before": self.days_before,
            "next_review_date": self.next_review_date.isoformat() if self.next_review_date else None,
            "last_review_date": self.last_review_date.isoformat() if self.last_review_date else None,
            "email_reminders": self.email_reminders,
            "sms_reminders": self.sms_reminders,
            "calendar_integration": self.calendar_integration,
            "is_active": self.is_active,
        }
