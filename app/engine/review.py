"""
Formula Review Schedules

Periodic check-ins on a formula: when the next review falls, and an
iCalendar export so the user can put the review on their calendar.
"""

from datetime import datetime, timedelta
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from app.config import get_settings
from app.engine.errors import InvalidReviewSchedule, NotFound
from app.engine.ledger import FormulaLedger
from app.models import ReviewSchedule, User

FREQUENCY_DAYS = {
    "monthly": 30,
    "bimonthly": 60,
    "quarterly": 90,
}

# RRULE interval in months
FREQUENCY_MONTHS = {
    "monthly": 1,
    "bimonthly": 2,
    "quarterly": 3,
}

MIN_DAYS_BEFORE = 1
MAX_DAYS_BEFORE = 14

CALENDAR_FILENAME = "formula-review.ics"


def compute_next_review_date(
    formula_created_at: datetime,
    frequency: str,
    days_before: int,
    now: datetime = None
) -> datetime:
    """First review date for a formula; pushed one more cycle if already past."""
    now = now or datetime.utcnow()
    days = FREQUENCY_DAYS[frequency]
    next_review = formula_created_at + timedelta(days=days - days_before)
    if next_review < now:
        next_review += timedelta(days=days)
    return next_review


def _validate(frequency: str, days_before) -> None:
    if frequency not in FREQUENCY_DAYS:
        raise InvalidReviewSchedule(
            "Invalid frequency. Must be monthly, bimonthly, or quarterly"
        )
    if (
        not isinstance(days_before, int)
        or isinstance(days_before, bool)
        or days_before < MIN_DAYS_BEFORE
        or days_before > MAX_DAYS_BEFORE
    ):
        raise InvalidReviewSchedule(
            f"days_before must be between {MIN_DAYS_BEFORE} and {MAX_DAYS_BEFORE}"
        )


def get_review_schedule(db: Session, user_id: str, formula_id: str) -> Optional[ReviewSchedule]:
    FormulaLedger(db).load_owned(formula_id, user_id)
    return db.query(ReviewSchedule).filter(
        ReviewSchedule.user_id == user_id,
        ReviewSchedule.formula_id == formula_id
    ).first()


def save_review_schedule(
    db: Session,
    user_id: str,
    formula_id: str,
    frequency: str,
    days_before: int,
    email_reminders: Optional[bool] = None,
    sms_reminders: Optional[bool] = None,
    calendar_integration: Optional[str] = None,
    now: datetime = None
) -> ReviewSchedule:
    """Create or replace the review schedule for a formula."""
    formula = FormulaLedger(db).load_owned(formula_id, user_id)
    _validate(frequency, days_before)

    next_review = compute_next_review_date(formula.created_at, frequency, days_before, now)

    schedule = db.query(ReviewSchedule).filter(
        ReviewSchedule.user_id == user_id,
        ReviewSchedule.formula_id == formula_id
    ).first()
    if schedule is None:
        schedule = ReviewSchedule(user_id=user_id, formula_id=formula_id)
        db.add(schedule)

    schedule.frequency = frequency
    schedule.days_before = days_before
    schedule.next_review_date = next_review
    schedule.email_reminders = True if email_reminders is None else email_reminders
    schedule.sms_reminders = False if sms_reminders is None else sms_reminders
    schedule.calendar_integration = calendar_integration
    schedule.is_active = True

    db.commit()
    db.refresh(schedule)
    return schedule


def delete_review_schedule(db: Session, user_id: str, formula_id: str) -> None:
    schedule = get_review_schedule(db, user_id, formula_id)
    if schedule is None:
        raise NotFound("Review schedule")
    db.delete(schedule)
    db.commit()


def advance_schedule(schedule: ReviewSchedule, reviewed_at: datetime) -> None:
    """Record a review and roll the schedule forward one cycle."""
    schedule.last_review_date = reviewed_at
    schedule.next_review_date = schedule.next_review_date + timedelta(
        days=FREQUENCY_DAYS[schedule.frequency]
    )


def _ics_timestamp(value: datetime) -> str:
    return value.strftime("%Y%m%dT%H%M%SZ")


def _param_value(value: str) -> str:
    """Quoted parameter value; CR, LF and DQUOTE are not allowed inside."""
    cleaned = "".join(ch for ch in (value or "") if ch not in '\r\n"' and (ch == "\t" or ord(ch) >= 32))
    return f'"{cleaned.strip()}"'


def _fold(line: str, limit: int = 75) -> str:
    """Fold a content line at 75 octets, continuation lines start with a space."""
    parts = []
    current = ""
    size = 0
    for ch in line:
        width = len(ch.encode("utf-8"))
        if size + width > limit:
            parts.append(current)
            current = " "
            size = 1
        current += ch
        size += width
    parts.append(current)
    return "\r\n".join(parts)


def build_calendar_event(schedule: ReviewSchedule, user_name: str, now: datetime = None) -> str:
    """
    Render a recurring review as an iCalendar document.

    The event repeats with the schedule's frequency and carries display
    alarms one and three days ahead.
    """
    now = now or datetime.utcnow()
    review_url = f"{get_settings().app_url.rstrip('/')}/chat?review=true"
    start = schedule.next_review_date
    end = start + timedelta(hours=1)

    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        "PRODID:-//Formula Ledger//Formula Review//EN",
        "CALSCALE:GREGORIAN",
        "METHOD:PUBLISH",
        "X-WR-CALNAME:Formula Reviews",
        "BEGIN:VEVENT",
        f"UID:review-{schedule.id}@formula-ledger",
        f"DTSTAMP:{_ics_timestamp(now)}",
        f"DTSTART:{_ics_timestamp(start)}",
        f"DTEND:{_ics_timestamp(end)}",
        f"RRULE:FREQ=MONTHLY;INTERVAL={FREQUENCY_MONTHS[schedule.frequency]}",
        "SUMMARY:Formula Review",
        "DESCRIPTION:Time to review your personalized supplement formula!\\n\\n"
        "- Share any health changes or new symptoms\\n"
        "- Update recent lab results if available\\n"
        "- Make any necessary adjustments\\n\\n"
        f"Join your review session at: {review_url}",
        f"LOCATION:{review_url}",
        "STATUS:CONFIRMED",
        "SEQUENCE:0",
        f"ATTENDEE;CN={_param_value(user_name)}:mailto:reviews@formula-ledger",
        "BEGIN:VALARM",
        "ACTION:DISPLAY",
        "DESCRIPTION:Your formula review is tomorrow!",
        "TRIGGER:-P1D",
        "END:VALARM",
        "BEGIN:VALARM",
        "ACTION:DISPLAY",
        "DESCRIPTION:Your formula review is in 3 days",
        "TRIGGER:-P3D",
        "END:VALARM",
        "END:VEVENT",
        "END:VCALENDAR",
    ]
    return "\r\n".join(_fold(line) for line in lines)


def generate_calendar_file(
    db: Session,
    user_id: str,
    formula_id: str,
    now: datetime = None
) -> Tuple[str, str]:
    """Returns (ics_content, filename)."""
    schedule = get_review_schedule(db, user_id, formula_id)
    if schedule is None:
        raise NotFound("Review schedule")

    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise NotFound("User")

    return build_calendar_event(schedule, user.name, now), CALENDAR_FILENAME
