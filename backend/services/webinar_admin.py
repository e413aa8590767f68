"""
Webinar Admin Service - administrative webinar lifecycle

Create, update, delete, list and status transitions. Status only moves
forward; CTAs are append-only so active indices never point at a
different CTA; capacity never drops below the current roster size.
"""
import uuid
import logging
from typing import Callable, List, Optional

from config import DEFAULT_CAPACITY
from constants.webinar_status import (
    STATUS_SCHEDULED,
    STATUS_ENDED,
    WEBINAR_STATUS_ORDER,
    REMINDER_NOT_DUE,
    STREAM_TYPES,
    ENGINE_OWNED_FIELDS,
    is_forward_transition,
)
from models.schemas import CreateWebinarRequest, UpdateWebinarRequest
from services.webinar_store import WebinarStore, ensure_roster_invariants
from utils.errors import NotFoundError, ConflictError, ValidationError
from utils.time_helpers import utc_now, ensure_utc

logger = logging.getLogger(__name__)

ORDERABLE_FIELDS = ["scheduled_at", "created_at", "name", "status", "slug"]

# Never exposed on public endpoints
PRIVATE_FIELDS = [
    "attendees",
    "external_audience_list_id",
    "reminder_sent",
    "reminder_sent_at",
    "reminder_state",
    "reminder_claimed_at",
    "roster_version",
    "created_by",
]


def public_view(webinar: dict) -> dict:
    view = {k: v for k, v in webinar.items() if k not in PRIVATE_FIELDS}
    view["registered_count"] = len(webinar.get("attendees", []))
    return view


def validate_ctas(ctas: list) -> List[dict]:
    cleaned = []
    for cta in ctas:
        label = (cta.get("label") or "").strip()
        link = (cta.get("link") or "").strip()
        if not label or not link:
            raise ValidationError("Each CTA must have both label and link")
        cleaned.append({"label": label, "link": link})
    return cleaned


def validate_stream_type(stream_type: str) -> None:
    if stream_type not in STREAM_TYPES:
        raise ValidationError(f"Invalid stream type. Must be one of: {', '.join(STREAM_TYPES)}")


class WebinarAdmin:
    def __init__(self, store: WebinarStore, clock: Callable = utc_now):
        self.store = store
        self.clock = clock

    async def _require(self, webinar_id: str) -> dict:
        webinar = ensure_roster_invariants(await self.store.get_webinar(webinar_id))
        if not webinar:
            raise NotFoundError("Webinar")
        return webinar

    async def create_webinar(self, data: CreateWebinarRequest, created_by: Optional[str] = None) -> dict:
        slug = data.slug.strip()
        if not slug:
            raise ValidationError("Slug is required")
        if not data.line1.strip():
            raise ValidationError("Line1 is required")
        validate_stream_type(data.stream_type)

        capacity = data.capacity if data.capacity is not None else DEFAULT_CAPACITY
        if capacity < 1:
            raise ValidationError("Capacity must be at least 1")

        if await self.store.get_webinar_by_slug(slug):
            raise ConflictError("Slug already exists")

        now = self.clock()
        webinar = {
            "id": str(uuid.uuid4()),
            "name": data.name.strip(),
            "slug": slug,
            "stream_type": data.stream_type,
            "scheduled_at": ensure_utc(data.scheduled_at),
            "line1": data.line1.strip(),
            "line2": data.line2,
            "line3": data.line3,
            "status": STATUS_SCHEDULED,
            "capacity": capacity,
            "display_comments": data.display_comments,
            "portal_display": data.portal_display,
            "recording": data.recording,
            "ctas": validate_ctas([c.model_dump() for c in data.ctas]),
            "active_cta_indices": [],
            "attendees": [],
            "roster_version": 0,
            "reminder_sent": False,
            "reminder_sent_at": None,
            "reminder_state": REMINDER_NOT_DUE,
            "external_audience_list_id": None,
            "created_by": created_by,
            "created_at": now,
            "updated_at": now,
        }
        created = await self.store.create_webinar(webinar)
        logger.info(f"Webinar created: {slug} ({created['id']})")
        return created

    async def update_webinar(self, webinar_id: str, data: UpdateWebinarRequest) -> dict:
        current = await self._require(webinar_id)
        fields = {
            k: v for k, v in data.model_dump(exclude_unset=True).items()
            if v is not None and k not in ENGINE_OWNED_FIELDS
        }

        expected_ctas = None
        max_roster_size = None

        if "slug" in fields:
            fields["slug"] = fields["slug"].strip()
            if not fields["slug"]:
                raise ValidationError("Slug is required")
            other = await self.store.get_webinar_by_slug(fields["slug"])
            if other and other["id"] != webinar_id:
                raise ConflictError("Slug already exists")

        if "stream_type" in fields:
            validate_stream_type(fields["stream_type"])

        if "ctas" in fields:
            existing = current.get("ctas", [])
            new_ctas = validate_ctas(fields["ctas"])
            if new_ctas[:len(existing)] != existing:
                raise ValidationError("Existing CTAs cannot be changed or removed; new CTAs can only be appended")
            fields["ctas"] = new_ctas
            expected_ctas = existing

        if "capacity" in fields:
            if fields["capacity"] < 1:
                raise ValidationError("Capacity must be at least 1")
            max_roster_size = fields["capacity"]

        if "scheduled_at" in fields:
            # reminder_* is left alone: a webinar is reminded at most once, even if rescheduled
            fields["scheduled_at"] = ensure_utc(fields["scheduled_at"])

        fields["updated_at"] = self.clock()
        updated = await self.store.update_webinar(
            webinar_id, fields, expected_ctas=expected_ctas, max_roster_size=max_roster_size
        )
        if updated is None:
            latest = await self._require(webinar_id)
            if max_roster_size is not None and len(latest.get("attendees", [])) > max_roster_size:
                raise ValidationError("Capacity cannot be lower than the number of registered attendees")
            raise ConflictError("Webinar was modified concurrently, please retry")

        logger.info(f"Webinar updated: {webinar_id} ({', '.join(sorted(fields))})")
        return updated

    async def advance_status(self, webinar_id: str, target_status: str) -> dict:
        if target_status not in WEBINAR_STATUS_ORDER:
            raise ValidationError(f"Invalid status. Must be one of: {', '.join(WEBINAR_STATUS_ORDER)}")

        current = await self._require(webinar_id)
        if not is_forward_transition(current.get("status"), target_status):
            raise ValidationError(f"Cannot change status from {current.get('status')} to {target_status}")

        extra = {"portal_display": False} if target_status == STATUS_ENDED else {}
        updated = await self.store.advance_status(webinar_id, target_status, extra)
        if updated is None:
            latest = await self._require(webinar_id)
            raise ValidationError(f"Cannot change status from {latest.get('status')} to {target_status}")

        logger.info(f"Webinar {webinar_id} status: {current.get('status')} -> {target_status}")
        return updated

    async def end_webinar(self, webinar_id: str) -> dict:
        return await self.advance_status(webinar_id, STATUS_ENDED)

    async def delete_webinar(self, webinar_id: str) -> None:
        if not await self.store.delete_webinar(webinar_id):
            raise NotFoundError("Webinar")
        logger.info(f"Webinar deleted: {webinar_id}")

    async def get_webinar(self, id_or_slug: str) -> dict:
        webinar = await self.store.get_webinar(id_or_slug) or await self.store.get_webinar_by_slug(id_or_slug)
        if not webinar:
            raise NotFoundError("Webinar")
        return ensure_roster_invariants(webinar)

    async def list_webinars(
        self,
        status: Optional[str] = None,
        stream_type: Optional[str] = None,
        order_by: str = "scheduled_at",
        order: str = "desc"
    ) -> List[dict]:
        if order_by not in ORDERABLE_FIELDS:
            raise ValidationError(f"Invalid order_by. Must be one of: {', '.join(ORDERABLE_FIELDS)}")
        if order not in ("asc", "desc"):
            raise ValidationError("Invalid order. Must be 'asc' or 'desc'")

        filters = {}
        if status:
            filters["status"] = status
        if stream_type:
            filters["stream_type"] = stream_type
        return await self.store.list_webinars(filters, order_by, 1 if order == "asc" else -1)

    async def list_public_webinars(self) -> List[dict]:
        webinars = await self.store.list_webinars({"portal_display": True}, "scheduled_at", 1)
        return [public_view(w) for w in webinars]


def build_webinar_admin() -> WebinarAdmin:
    from services.webinar_store import webinar_store
    return WebinarAdmin(webinar_store)


# Singleton instance
webinar_admin = build_webinar_admin()
