"""
Scheduler Service - Sends formula review reminders using APScheduler.
"""
from datetime import datetime, timedelta
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
import pytz

from app.config import get_settings
from app.db.database import SessionLocal
from app.engine.review import advance_schedule
from app.models import ReviewSchedule
from app.services.notification_service import notification_service
from app.services.sms_service import sms_service

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = AsyncIOScheduler(timezone=pytz.utc)


def due_schedules(db, now: datetime):
    """Active schedules whose review falls inside their reminder window."""
    schedules = db.query(ReviewSchedule).filter(
        ReviewSchedule.is_active == True,
        ReviewSchedule.next_review_date <= now + timedelta(days=14)
    ).all()
    return [
        s for s in schedules
        if s.next_review_date - timedelta(days=s.days_before) <= now
    ]


def send_review_reminders(db, now: datetime = None) -> int:
    """
    Remind users about upcoming formula reviews and roll schedules forward.

    Returns the number of reminders sent.
    """
    now = now or datetime.utcnow()
    sent = 0

    for schedule in due_schedules(db, now):
        user = schedule.user
        formula = schedule.formula
        label = f'"{formula.name}"' if formula.name else f"formula V{formula.version}"
        review_date = schedule.next_review_date

        try:
            notification_service.emit(
                db,
                user.id,
                "Formula Review Coming Up",
                f"Your review of {label} is scheduled for {review_date.strftime('%B %d')}.",
                formula_id=formula.id,
                notification_type="formula_review",
                icon="calendar",
                priority="medium",
                action_path="/chat?review=true",
                send_sms=False,
            )
            prefs = user.notification_preferences or {}
            if (
                schedule.sms_reminders
                and prefs.get("review_reminders", True)
                and user.can_receive_sms
                and sms_service.is_configured()
            ):
                result = sms_service.send_review_reminder(
                    user.phone_number, user.name, label, review_date
                )
                if not result["success"]:
                    logger.error(f"Failed to text review reminder to user {user.id}: {result.get('error')}")
        except Exception as e:
            db.rollback()
            logger.error(f"Error sending review reminder to user {user.id}: {e}")
            continue

        advance_schedule(schedule, now)
        db.commit()
        sent += 1
        logger.info(f"Sent review reminder to user {user.id} for formula {formula.id}")

    return sent


async def check_review_reminders():
    """Daily scheduler job."""
    db = SessionLocal()
    try:
        send_review_reminders(db, datetime.now(pytz.utc).replace(tzinfo=None))
    except Exception as e:
        logger.error(f"Scheduler error: {e}")
    finally:
        db.close()


def start_scheduler():
    """Initialize and start the scheduler."""
    settings = get_settings()
    if not settings.scheduler_enabled:
        logger.info("Review reminder scheduler disabled")
        return

    if not sms_service.is_configured():
        logger.warning("Twilio not configured - review reminders will be in-app only")

    scheduler.add_job(
        check_review_reminders,
        CronTrigger(hour=settings.review_reminder_hour, minute=0, timezone=pytz.utc),
        id="review_reminder_check",
        replace_existing=True
    )
    scheduler.start()
    logger.info("Review reminder scheduler started")


def shutdown_scheduler():
    """Gracefully shutdown the scheduler."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Review reminder scheduler stopped")
