"""
Webinar Status Constants - Lifecycle, attendance and reminder states
Webinar status only moves forward: scheduled -> waiting -> in_progress -> ended
"""

# Webinar lifecycle
STATUS_SCHEDULED = "scheduled"
STATUS_WAITING = "waiting"
STATUS_IN_PROGRESS = "in_progress"
STATUS_ENDED = "ended"

WEBINAR_STATUS_ORDER = [
    STATUS_SCHEDULED,
    STATUS_WAITING,
    STATUS_IN_PROGRESS,
    STATUS_ENDED
]

WEBINAR_STATUS_LABELS = {
    STATUS_SCHEDULED: "Scheduled",
    STATUS_WAITING: "Waiting",
    STATUS_IN_PROGRESS: "In Progress",
    STATUS_ENDED: "Ended"
}

# Attendance
ATTENDANCE_REGISTERED = "registered"
ATTENDANCE_ATTENDED = "attended"
ATTENDANCE_WATCHED = "watched"

ALL_ATTENDANCE_STATUSES = [ATTENDANCE_REGISTERED, ATTENDANCE_ATTENDED, ATTENDANCE_WATCHED]

# Reminder state machine. "due" is never stored: it is a not_due webinar inside the window.
REMINDER_NOT_DUE = "not_due"
REMINDER_DUE = "due"
REMINDER_CLAIMED = "claimed"
REMINDER_SENT = "sent"

# Stream types
STREAM_TYPES = ["Live Call", "Webinar"]

# Fields attendee-facing operations may never write
ENGINE_OWNED_FIELDS = {
    "reminder_sent",
    "reminder_sent_at",
    "reminder_state",
    "active_cta_indices",
    "external_audience_list_id",
    "roster_version",
    "attendees",
}


def status_rank(status: str) -> int:
    """
    Position of a status in the lifecycle.
    Returns -1 if status is not recognized.
    """
    if status in WEBINAR_STATUS_ORDER:
        return WEBINAR_STATUS_ORDER.index(status)
    return -1


def statuses_before(status: str) -> list:
    """All statuses that may legally advance to the given status"""
    rank = status_rank(status)
    if rank <= 0:
        return []
    return WEBINAR_STATUS_ORDER[:rank]


def is_forward_transition(current: str, target: str) -> bool:
    """Check if moving from current to target is a forward lifecycle step"""
    current_rank = status_rank(current)
    target_rank = status_rank(target)
    return current_rank >= 0 and target_rank > current_rank


def reminder_state_for(webinar: dict, window_start, window_end) -> str:
    """Derive the full reminder state (including 'due') for a webinar document"""
    stored = webinar.get("reminder_state") or (
        REMINDER_SENT if webinar.get("reminder_sent") else REMINDER_NOT_DUE
    )
    if stored != REMINDER_NOT_DUE:
        return stored
    scheduled_at = webinar.get("scheduled_at")
    if (
        webinar.get("status") == STATUS_SCHEDULED
        and scheduled_at is not None
        and window_start <= scheduled_at <= window_end
        and webinar.get("attendees")
    ):
        return REMINDER_DUE
    return REMINDER_NOT_DUE
