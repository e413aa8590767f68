"""
Pydantic models for Webinar Engine Backend
Request/response schemas and service result shapes are defined here
"""
from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime


# ============ WEBINAR MODELS ============

class CtaItem(BaseModel):
    label: str
    link: str


class CreateWebinarRequest(BaseModel):
    name: str
    slug: str
    scheduled_at: datetime
    line1: str
    line2: Optional[str] = None
    line3: Optional[str] = None
    stream_type: str = "Webinar"
    capacity: Optional[int] = None
    display_comments: bool = True
    portal_display: bool = True
    recording: Optional[str] = None
    ctas: List[CtaItem] = []


class UpdateWebinarRequest(BaseModel):
    name: Optional[str] = None
    slug: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    line1: Optional[str] = None
    line2: Optional[str] = None
    line3: Optional[str] = None
    stream_type: Optional[str] = None
    capacity: Optional[int] = None
    display_comments: Optional[bool] = None
    portal_display: Optional[bool] = None
    recording: Optional[str] = None
    ctas: Optional[List[CtaItem]] = None


class AdvanceStatusRequest(BaseModel):
    status: str


# ============ ATTENDANCE MODELS ============

class AttendanceOutcome(BaseModel):
    webinar_id: str
    user_id: str
    status: str
    created: bool = False
    changed: bool = False
    message: str


class AttendeeView(BaseModel):
    user_id: str
    status: str
    registered_at: Optional[datetime] = None
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None


# ============ CTA MODELS ============

class ActiveCtasResponse(BaseModel):
    message: str
    active_cta_indices: List[int]


# ============ REMINDER MODELS ============

class DispatchReport(BaseModel):
    webinar_id: str
    webinar_name: str = ""
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    sent_at: Optional[datetime] = None


class SweepResult(BaseModel):
    started_at: datetime
    window_start: datetime
    window_end: datetime
    candidates: int = 0
    claimed: int = 0
    dispatched: List[DispatchReport] = []
    errors: List[str] = []


class ReminderTestResult(BaseModel):
    webinar_id: str
    name: str
    reminder_sent: bool
    reminder_sent_at: Optional[datetime] = None
    previous_reminder_sent: bool
    previous_reminder_sent_at: Optional[datetime] = None
    report: DispatchReport


# ============ AUDIENCE MODELS ============

class MembershipDelta(BaseModel):
    to_add: List[str] = Field(default_factory=list)
    to_remove: List[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.to_add and not self.to_remove


class ReconcileResult(BaseModel):
    webinar_id: str
    list_id: str
    created: bool
    to_add: List[str] = []
    to_remove: List[str] = []
    total_contacts: int = 0
    skipped: int = 0
    message: str = ""
