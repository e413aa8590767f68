"""
Attendance Engine - Registration, unregistration and attendance transitions

Rules:
- at most one attendance record per (webinar, user)
- the roster never grows past capacity
- attended is terminal; watched never overwrites it
- attend/watch without a record auto-enrolls (attend only while in progress)

Every write goes through a conditional WebinarStore operation, so the rules
hold under concurrent requests without any read-modify-write of the roster.
"""
import logging
from typing import Callable, List, Optional

from config import CONFIRMATION_TEMPLATE_ID
from constants.webinar_status import (
    STATUS_IN_PROGRESS,
    ATTENDANCE_REGISTERED,
    ATTENDANCE_ATTENDED,
    ATTENDANCE_WATCHED,
)
from models.schemas import AttendanceOutcome, AttendeeView
from services.notification_service import CONFIRMATION_SUBJECT, build_merge_fields
from services.webinar_store import (
    WebinarStore,
    INSERT_OK,
    INSERT_DUPLICATE,
    INSERT_FULL,
    INSERT_NOT_FOUND,
    INSERT_STATUS_MISMATCH,
    ensure_roster_invariants,
)
from utils.contact_helpers import get_contact_email, get_first_name, get_last_name, get_phone
from utils.errors import (
    NotFoundError,
    NotRegisteredError,
    ConflictError,
    CapacityExceededError,
    ExternalServiceError,
)
from utils.time_helpers import utc_now

logger = logging.getLogger(__name__)

# Re-reads after losing a race against another request for the same record
MAX_TRANSITION_ATTEMPTS = 3


def find_attendee(webinar: dict, user_id: str) -> Optional[dict]:
    return next((a for a in webinar.get("attendees", []) if a.get("user_id") == user_id), None)


class AttendanceEngine:
    """Attendance state machine over a WebinarStore"""

    def __init__(
        self,
        store: WebinarStore,
        notifier=None,
        clock: Callable = utc_now,
        confirmation_template_id: str = CONFIRMATION_TEMPLATE_ID
    ):
        self.store = store
        self.notifier = notifier
        self.clock = clock
        self.confirmation_template_id = confirmation_template_id

    async def _load_webinar(self, webinar_id: str) -> dict:
        webinar = ensure_roster_invariants(await self.store.get_webinar(webinar_id))
        if not webinar:
            raise NotFoundError("Webinar")
        return webinar

    def _new_record(self, user_id: str, status: str) -> dict:
        return {"user_id": user_id, "status": status, "registered_at": self.clock()}

    async def register(self, webinar_id: str, user_id: str) -> AttendanceOutcome:
        """Register a user; existence, duplicate and capacity checks are one conditional insert"""
        await self._load_webinar(webinar_id)

        result = await self.store.insert_attendee(webinar_id, self._new_record(user_id, ATTENDANCE_REGISTERED))
        if result == INSERT_NOT_FOUND:
            raise NotFoundError("Webinar")
        if result == INSERT_DUPLICATE:
            raise ConflictError("User is already registered for this webinar")
        if result == INSERT_FULL:
            raise CapacityExceededError()

        logger.info(f"User {user_id} registered for webinar {webinar_id}")
        await self._send_confirmation(webinar_id, user_id)

        return AttendanceOutcome(
            webinar_id=webinar_id,
            user_id=user_id,
            status=ATTENDANCE_REGISTERED,
            created=True,
            changed=True,
            message="Successfully registered for the webinar"
        )

    async def _send_confirmation(self, webinar_id: str, user_id: str) -> None:
        """Best-effort confirmation email; never fails the registration"""
        if not self.notifier or not self.confirmation_template_id:
            return
        webinar = await self.store.get_webinar(webinar_id)
        user = await self.store.get_user(user_id)
        email = get_contact_email(user)
        if not webinar or not email:
            logger.warning(f"Skipping registration confirmation for user {user_id}: no contact address")
            return
        try:
            await self.notifier.send_template_notification(
                email,
                self.confirmation_template_id,
                build_merge_fields(webinar, user, CONFIRMATION_SUBJECT)
            )
        except ExternalServiceError as e:
            logger.warning(f"Registration confirmation to {email} failed: {e.message}")

    async def unregister(self, webinar_id: str, user_id: str) -> AttendanceOutcome:
        await self._load_webinar(webinar_id)

        removed = await self.store.remove_attendee(webinar_id, user_id)
        if not removed:
            # Deleted concurrently, or never registered
            await self._load_webinar(webinar_id)
            raise NotRegisteredError()

        logger.info(f"User {user_id} unregistered from webinar {webinar_id}")
        return AttendanceOutcome(
            webinar_id=webinar_id,
            user_id=user_id,
            status="unregistered",
            changed=True,
            message="Successfully unregistered from the webinar"
        )

    async def mark_attended(self, webinar_id: str, user_id: str, auto_enroll: bool = True) -> AttendanceOutcome:
        """
        Mark a user as attended.

        Without a record the user is auto-enrolled as attended, but only while
        the webinar is in progress (and only if auto_enroll is set).
        """
        for _ in range(MAX_TRANSITION_ATTEMPTS):
            webinar = await self._load_webinar(webinar_id)
            attendee = find_attendee(webinar, user_id)

            if attendee:
                if attendee.get("status") == ATTENDANCE_ATTENDED:
                    return AttendanceOutcome(
                        webinar_id=webinar_id,
                        user_id=user_id,
                        status=ATTENDANCE_ATTENDED,
                        message="User is already marked as attended"
                    )
                if await self.store.set_attendee_status(webinar_id, user_id, ATTENDANCE_ATTENDED):
                    logger.info(f"User {user_id} marked as attended for webinar {webinar_id}")
                    return AttendanceOutcome(
                        webinar_id=webinar_id,
                        user_id=user_id,
                        status=ATTENDANCE_ATTENDED,
                        changed=True,
                        message="You have been marked as attended"
                    )
                continue

            if not auto_enroll or webinar.get("status") != STATUS_IN_PROGRESS:
                raise NotRegisteredError()

            result = await self.store.insert_attendee(
                webinar_id,
                self._new_record(user_id, ATTENDANCE_ATTENDED),
                require_status=STATUS_IN_PROGRESS
            )
            if result == INSERT_OK:
                logger.info(f"User {user_id} auto-enrolled as attended for webinar {webinar_id}")
                return AttendanceOutcome(
                    webinar_id=webinar_id,
                    user_id=user_id,
                    status=ATTENDANCE_ATTENDED,
                    created=True,
                    changed=True,
                    message="You have been registered and marked as attended"
                )
            if result == INSERT_NOT_FOUND:
                raise NotFoundError("Webinar")
            if result == INSERT_FULL:
                raise CapacityExceededError()
            if result == INSERT_STATUS_MISMATCH:
                raise NotRegisteredError()
            # INSERT_DUPLICATE: a record appeared meanwhile; go again against it

        raise ConflictError("Attendance changed concurrently, please retry")

    async def admin_mark_attended(self, webinar_id: str, user_id: str) -> AttendanceOutcome:
        outcome = await self.mark_attended(webinar_id, user_id, auto_enroll=False)
        outcome.message = "User marked as attended for the webinar"
        return outcome

    async def mark_watched(self, webinar_id: str, user_id: str) -> AttendanceOutcome:
        """Mark a user as having watched the recording; attended is never downgraded"""
        for _ in range(MAX_TRANSITION_ATTEMPTS):
            webinar = await self._load_webinar(webinar_id)
            attendee = find_attendee(webinar, user_id)

            if attendee:
                status = attendee.get("status")
                if status == ATTENDANCE_ATTENDED:
                    return AttendanceOutcome(
                        webinar_id=webinar_id,
                        user_id=user_id,
                        status=ATTENDANCE_ATTENDED,
                        message="Status remains as attended"
                    )
                if status == ATTENDANCE_WATCHED:
                    return AttendanceOutcome(
                        webinar_id=webinar_id,
                        user_id=user_id,
                        status=ATTENDANCE_WATCHED,
                        message="You have been marked as watched"
                    )
                changed = await self.store.set_attendee_status(
                    webinar_id, user_id, ATTENDANCE_WATCHED, unless_status=ATTENDANCE_ATTENDED
                )
                if changed:
                    return AttendanceOutcome(
                        webinar_id=webinar_id,
                        user_id=user_id,
                        status=ATTENDANCE_WATCHED,
                        changed=True,
                        message="You have been marked as watched"
                    )
                continue

            result = await self.store.insert_attendee(webinar_id, self._new_record(user_id, ATTENDANCE_WATCHED))
            if result == INSERT_OK:
                logger.info(f"User {user_id} auto-enrolled as watched for webinar {webinar_id}")
                return AttendanceOutcome(
                    webinar_id=webinar_id,
                    user_id=user_id,
                    status=ATTENDANCE_WATCHED,
                    created=True,
                    changed=True,
                    message="You have been marked as watched"
                )
            if result == INSERT_NOT_FOUND:
                raise NotFoundError("Webinar")
            if result == INSERT_FULL:
                raise CapacityExceededError()

        raise ConflictError("Attendance changed concurrently, please retry")

    async def list_attendees(self, webinar_id: str) -> List[AttendeeView]:
        """Roster joined with contact info from the user directory"""
        webinar = await self._load_webinar(webinar_id)
        attendees = webinar.get("attendees", [])
        users = await self.store.get_users([a["user_id"] for a in attendees])

        views = []
        for attendee in attendees:
            user = users.get(attendee["user_id"])
            views.append(AttendeeView(
                user_id=attendee["user_id"],
                status=attendee.get("status", ATTENDANCE_REGISTERED),
                registered_at=attendee.get("registered_at"),
                email=get_contact_email(user),
                first_name=get_first_name(user) or None,
                last_name=get_last_name(user) or None,
                phone=get_phone(user)
            ))
        return views


def build_attendance_engine() -> AttendanceEngine:
    from services.notification_service import notification_service
    from services.webinar_store import webinar_store
    return AttendanceEngine(webinar_store, notification_service)


# Singleton instance
attendance_engine = build_attendance_engine()
