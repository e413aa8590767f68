"""
Background Worker - Sends webinar reminders automatically
Uses APScheduler to run the reminder sweep in the background
"""
import logging
from datetime import datetime, timezone
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import REMINDER_SWEEP_INTERVAL_SECONDS, SYNC_AUDIENCE_AFTER_REMINDER

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("scheduler_worker")

# Global scheduler instance
scheduler = AsyncIOScheduler()

# Last outcome per job, for the worker-status endpoint
job_history = {}


async def sync_audience_after_reminder(webinar_id: str):
    """Reconcile the audience list of a webinar whose reminder just went out"""
    from services.audience_reconciler import audience_reconciler
    from utils.errors import WebinarError

    try:
        result = await audience_reconciler.reconcile(webinar_id)
        logger.info(
            f"Audience synced after reminder for {webinar_id}: "
            f"list {result.list_id}, +{len(result.to_add)} -{len(result.to_remove)}"
        )
    except WebinarError as e:
        logger.error(f"Audience sync after reminder failed for {webinar_id}: {e.message}")


async def process_webinar_reminders():
    """Reminder sweep job"""
    from services.reminder_scheduler import reminder_scheduler

    started = datetime.now(timezone.utc)
    try:
        result = await reminder_scheduler.run_sweep()
        job_history["webinar_reminders"] = {
            "last_run": started.isoformat(),
            "candidates": result.candidates,
            "claimed": result.claimed,
            "errors": len(result.errors),
        }
        if result.claimed:
            logger.info(f"Reminder sweep: {result.claimed} webinar(s) dispatched")
    except Exception as e:
        logger.error(f"Error in reminder sweep: {e}")
        job_history["webinar_reminders"] = {"last_run": started.isoformat(), "error": str(e)}


def start_scheduler():
    """Start the background scheduler"""
    from services.reminder_scheduler import reminder_scheduler

    if scheduler.running:
        logger.info("Scheduler already running")
        return

    if SYNC_AUDIENCE_AFTER_REMINDER:
        reminder_scheduler.on_dispatched = sync_audience_after_reminder

    # Ticks never overlap in-process; the claim handles other processes
    scheduler.add_job(
        process_webinar_reminders,
        IntervalTrigger(seconds=REMINDER_SWEEP_INTERVAL_SECONDS),
        id="webinar_reminders",
        name="Send webinar reminder emails",
        replace_existing=True,
        max_instances=1,
        coalesce=True
    )

    scheduler.start()
    logger.info(f"Background scheduler started - checking reminders every {REMINDER_SWEEP_INTERVAL_SECONDS}s")


def stop_scheduler():
    """Stop the background scheduler"""
    if scheduler.running:
        scheduler.shutdown()
        logger.info("Background scheduler stopped")


async def get_scheduler_info():
    """Get info about the scheduler for debugging"""
    from services.reminder_scheduler import reminder_scheduler

    jobs = scheduler.get_jobs()
    return {
        "running": scheduler.running,
        "jobs": [
            {
                "id": job.id,
                "name": job.name,
                "next_run": str(job.next_run_time) if job.next_run_time else None,
                "last_result": job_history.get(job.id)
            }
            for job in jobs
        ],
        "reminders": reminder_scheduler.status(),
        "sync_audience_after_reminder": SYNC_AUDIENCE_AFTER_REMINDER
    }
