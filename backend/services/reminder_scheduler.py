"""
Reminder Scheduler Service - time-window selection and idempotent reminder dispatch

Per scheduled webinar the reminder moves through:
    not_due -> due -> claimed -> sent

"due" is derived (scheduled, not yet sent, start time inside the window).
The claim is a single conditional write reminder_sent false -> true, so a
webinar is dispatched at most once no matter how many sweeps overlap.
Delivery is best-effort: a webinar whose recipients all failed still counts
as sent.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional, Tuple

from config import (
    REMINDER_TEMPLATE_ID,
    REMINDER_LEAD_MINUTES,
    REMINDER_TOLERANCE_SECONDS,
)
from models.schemas import DispatchReport, SweepResult, ReminderTestResult
from services.notification_service import REMINDER_SUBJECT, build_merge_fields
from services.webinar_store import WebinarStore
from utils.contact_helpers import get_contact_email
from utils.errors import NotFoundError, ExternalServiceError
from utils.time_helpers import utc_now

logger = logging.getLogger(__name__)


class ReminderScheduler:
    """Selects webinars entering the reminder window and sends their reminders"""

    def __init__(
        self,
        store: WebinarStore,
        notifier,
        clock: Callable[[], datetime] = utc_now,
        lead: timedelta = timedelta(minutes=REMINDER_LEAD_MINUTES),
        tolerance: timedelta = timedelta(seconds=REMINDER_TOLERANCE_SECONDS),
        template_id: str = REMINDER_TEMPLATE_ID,
        on_dispatched: Optional[Callable] = None
    ):
        self.store = store
        self.notifier = notifier
        self.clock = clock
        self.lead = lead
        self.tolerance = tolerance
        self.template_id = template_id
        # Awaited with the webinar id after each dispatch (e.g. audience sync)
        self.on_dispatched = on_dispatched

        self.last_sweep: Optional[SweepResult] = None

    def reminder_window(self, now: datetime = None) -> Tuple[datetime, datetime]:
        """[now + lead - tolerance, now + lead + tolerance]"""
        now = now or self.clock()
        target = now + self.lead
        return target - self.tolerance, target + self.tolerance

    async def run_sweep(self) -> SweepResult:
        """
        One scheduler tick.
        Each candidate is handled in its own task so a failing or slow webinar
        does not hold up the others.
        """
        now = self.clock()
        window_start, window_end = self.reminder_window(now)
        result = SweepResult(started_at=now, window_start=window_start, window_end=window_end)

        if not self.template_id:
            logger.error("REMINDER_TEMPLATE_ID is not configured; skipping reminder sweep")
            result.errors.append("REMINDER_TEMPLATE_ID is not configured")
            self.last_sweep = result
            return result

        candidates = await self.store.find_reminder_candidates(window_start, window_end)
        result.candidates = len(candidates)
        if not candidates:
            self.last_sweep = result
            return result

        logger.info(f"[Webinar Reminder] Found {len(candidates)} webinar(s) needing reminders at {now.isoformat()}")

        outcomes = await asyncio.gather(
            *(self._claim_and_dispatch(c["id"], (window_start, window_end)) for c in candidates),
            return_exceptions=True
        )
        for candidate, outcome in zip(candidates, outcomes):
            if isinstance(outcome, Exception):
                logger.error(f"[Webinar Reminder] Error sending reminders for {candidate['id']}: {outcome}")
                result.errors.append(f"{candidate['id']}: {outcome}")
            elif outcome is not None:
                result.claimed += 1
                result.dispatched.append(outcome)

        self.last_sweep = result
        return result

    async def _claim_and_dispatch(self, webinar_id: str, window: Tuple[datetime, datetime]) -> Optional[DispatchReport]:
        webinar = await self.store.claim_reminder(webinar_id, self.clock(), window=window)
        if webinar is None:
            logger.debug(f"Reminder for webinar {webinar_id} already claimed or no longer due")
            return None

        report = await self.dispatch_reminder(webinar)

        if self.on_dispatched:
            try:
                await self.on_dispatched(webinar_id)
            except Exception as e:
                logger.error(f"Post-reminder hook failed for webinar {webinar_id}: {e}")
        return report

    async def dispatch_reminder(self, webinar: dict) -> DispatchReport:
        """
        Send the reminder to every attendee of an already-claimed webinar and
        record it as sent. Per-recipient failures are logged and counted.
        """
        attendees = webinar.get("attendees", [])
        users = await self.store.get_users([a["user_id"] for a in attendees])
        report = DispatchReport(webinar_id=webinar["id"], webinar_name=webinar.get("name", ""))

        recipients = []
        for attendee in attendees:
            user = users.get(attendee["user_id"])
            email = get_contact_email(user)
            if not email:
                logger.warning(f"Skipping attendee {attendee['user_id']} without email for webinar {webinar['id']}")
                report.skipped += 1
                continue
            recipients.append((email, user))

        sent_flags = await asyncio.gather(*(self._send_one(webinar, email, user) for email, user in recipients))
        report.sent = sum(1 for ok in sent_flags if ok)
        report.failed = len(sent_flags) - report.sent

        report.sent_at = self.clock()
        await self.store.record_reminder_sent(webinar["id"], report.sent_at)

        logger.info(
            f"✓ Reminder emails processed for webinar: {report.webinar_name} "
            f"({len(attendees)} attendees, {report.sent} sent, {report.failed} failed, {report.skipped} skipped)"
        )
        return report

    async def _send_one(self, webinar: dict, email: str, user: dict) -> bool:
        try:
            await self.notifier.send_template_notification(
                email,
                self.template_id,
                build_merge_fields(webinar, user, REMINDER_SUBJECT)
            )
        except ExternalServiceError as e:
            logger.error(f"✗ Failed to send reminder to {email} for webinar {webinar.get('name')}: {e.message}")
            return False
        except Exception as e:
            # Counted as failed like any other recipient error
            logger.error(f"✗ Unexpected error sending reminder to {email} for webinar {webinar.get('name')}: {e}")
            return False
        logger.info(f"✓ Reminder email sent to {email} for webinar: {webinar.get('name')}")
        return True

    async def send_test_reminder(self, webinar_id: str) -> ReminderTestResult:
        """Dispatch the reminder now, ignoring reminder_sent, and report before/after state"""
        previous = await self.store.get_webinar(webinar_id)
        if not previous:
            raise NotFoundError("Webinar")

        webinar = await self.store.claim_reminder(webinar_id, self.clock(), force=True)
        if webinar is None:
            raise NotFoundError("Webinar")

        report = await self.dispatch_reminder(webinar)
        current = await self.store.get_webinar(webinar_id) or webinar

        return ReminderTestResult(
            webinar_id=webinar_id,
            name=current.get("name", ""),
            reminder_sent=bool(current.get("reminder_sent")),
            reminder_sent_at=current.get("reminder_sent_at"),
            previous_reminder_sent=bool(previous.get("reminder_sent")),
            previous_reminder_sent_at=previous.get("reminder_sent_at"),
            report=report
        )

    def status(self) -> dict:
        """Snapshot of the last sweep for the worker-status endpoint"""
        last = self.last_sweep
        return {
            "lead_minutes": self.lead.total_seconds() / 60,
            "tolerance_seconds": self.tolerance.total_seconds(),
            "template_configured": bool(self.template_id),
            "last_sweep": last.model_dump(mode="json") if last else None,
        }


def build_reminder_scheduler() -> ReminderScheduler:
    from services.notification_service import notification_service
    from services.webinar_store import webinar_store
    return ReminderScheduler(webinar_store, notification_service)


# Singleton instance
reminder_scheduler = build_reminder_scheduler()
