"""
Webinar Store - Persistence for webinars, their rosters and the user directory

The roster is never read, mutated locally and written back. Every roster,
CTA and reminder mutation is a single conditional write:
- insert_attendee: insert-if-absent-and-under-capacity (optionally only while in a given status)
- set_attendee_status: update-if-status
- remove_attendee: remove
- add_active_cta / remove_active_cta: set add / set remove
- claim_reminder: reminder_sent false -> true, only while still due

Two implementations:
- MongoWebinarStore: motor, conditional update_one / find_one_and_update
- InMemoryWebinarStore: single process, each operation runs to completion under one lock
"""
import copy
import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from constants.webinar_status import (
    STATUS_SCHEDULED,
    REMINDER_CLAIMED,
    REMINDER_SENT,
    statuses_before,
)
from utils.errors import ConflictError, InvariantViolation

logger = logging.getLogger(__name__)

# Outcomes of insert_attendee
INSERT_OK = "inserted"
INSERT_DUPLICATE = "duplicate"
INSERT_FULL = "full"
INSERT_NOT_FOUND = "not_found"
INSERT_STATUS_MISMATCH = "status_mismatch"

# Attempts at a conditional insert whose failure reason vanished on re-read
INSERT_ATTEMPTS = 3

WEBINAR_PROJECTION = {"_id": 0}
USER_PROJECTION = {"_id": 0, "password": 0, "password_hash": 0}


def ensure_roster_invariants(webinar: Optional[dict]) -> Optional[dict]:
    """Guard against a roster that is larger than capacity or holds duplicate users"""
    if webinar is None:
        return None
    attendees = webinar.get("attendees") or []
    capacity = webinar.get("capacity") or 0
    if len(attendees) > capacity:
        raise InvariantViolation(
            f"Webinar {webinar.get('id')} roster size {len(attendees)} exceeds capacity {capacity}"
        )
    user_ids = [a.get("user_id") for a in attendees]
    if len(user_ids) != len(set(user_ids)):
        raise InvariantViolation(f"Webinar {webinar.get('id')} roster has duplicate users")
    return webinar


def classify_failed_insert(webinar: Optional[dict], user_id: str, require_status: Optional[str]) -> Optional[str]:
    """
    Explain why a conditional insert did not match.
    Returns None when none of the conditions hold any more (the caller retries).
    """
    if webinar is None:
        return INSERT_NOT_FOUND
    attendees = webinar.get("attendees") or []
    if any(a.get("user_id") == user_id for a in attendees):
        return INSERT_DUPLICATE
    if require_status and webinar.get("status") != require_status:
        return INSERT_STATUS_MISMATCH
    if len(attendees) >= (webinar.get("capacity") or 0):
        return INSERT_FULL
    return None


def reminder_due_query(window: Optional[Tuple[datetime, datetime]] = None) -> dict:
    """Mongo filter for a webinar that may still be reminded, optionally starting inside window"""
    query = {
        "status": STATUS_SCHEDULED,
        "reminder_sent": False,
        "attendees.0": {"$exists": True}
    }
    if window:
        query["scheduled_at"] = {"$gte": window[0], "$lte": window[1]}
    return query


def is_reminder_due(webinar: dict, window: Optional[Tuple[datetime, datetime]] = None) -> bool:
    """In-memory counterpart of reminder_due_query"""
    if webinar.get("status") != STATUS_SCHEDULED or webinar.get("reminder_sent") or not webinar.get("attendees"):
        return False
    if window:
        scheduled_at = webinar.get("scheduled_at")
        return scheduled_at is not None and window[0] <= scheduled_at <= window[1]
    return True


class WebinarStore:
    """Interface shared by the Mongo and in-memory stores"""

    # ---- webinars ----
    async def create_webinar(self, webinar: dict) -> dict:
        raise NotImplementedError

    async def get_webinar(self, webinar_id: str) -> Optional[dict]:
        raise NotImplementedError

    async def get_webinar_by_slug(self, slug: str) -> Optional[dict]:
        raise NotImplementedError

    async def list_webinars(self, filters: dict, sort_field: str = "scheduled_at", direction: int = -1) -> List[dict]:
        raise NotImplementedError

    async def update_webinar(
        self,
        webinar_id: str,
        fields: dict,
        expected_ctas: Optional[list] = None,
        max_roster_size: Optional[int] = None
    ) -> Optional[dict]:
        raise NotImplementedError

    async def advance_status(self, webinar_id: str, target_status: str, extra_fields: dict = None) -> Optional[dict]:
        raise NotImplementedError

    async def delete_webinar(self, webinar_id: str) -> bool:
        raise NotImplementedError

    # ---- roster ----
    async def insert_attendee(self, webinar_id: str, record: dict, require_status: Optional[str] = None) -> str:
        raise NotImplementedError

    async def set_attendee_status(
        self,
        webinar_id: str,
        user_id: str,
        status: str,
        unless_status: Optional[str] = None
    ) -> bool:
        raise NotImplementedError

    async def remove_attendee(self, webinar_id: str, user_id: str) -> bool:
        raise NotImplementedError

    async def get_attendee(self, webinar_id: str, user_id: str) -> Optional[dict]:
        webinar = await self.get_webinar(webinar_id)
        if not webinar:
            return None
        return next((a for a in webinar.get("attendees", []) if a.get("user_id") == user_id), None)

    # ---- CTAs ----
    async def add_active_cta(self, webinar_id: str, index: int) -> Optional[List[int]]:
        raise NotImplementedError

    async def remove_active_cta(self, webinar_id: str, index: int) -> Optional[List[int]]:
        raise NotImplementedError

    # ---- reminders ----
    async def find_reminder_candidates(self, window_start: datetime, window_end: datetime) -> List[dict]:
        raise NotImplementedError

    async def claim_reminder(
        self,
        webinar_id: str,
        claimed_at: datetime,
        window: Optional[Tuple[datetime, datetime]] = None,
        force: bool = False
    ) -> Optional[dict]:
        """
        Flip reminder_sent false -> true while the webinar is still due
        (scheduled, non-empty roster, start inside window). force skips every condition.
        """
        raise NotImplementedError

    async def record_reminder_sent(self, webinar_id: str, sent_at: datetime) -> None:
        raise NotImplementedError

    # ---- audience ----
    async def set_external_audience_list_id(self, webinar_id: str, list_id: str) -> Optional[str]:
        raise NotImplementedError

    # ---- user directory ----
    async def get_user(self, user_id: str) -> Optional[dict]:
        users = await self.get_users([user_id])
        return users.get(user_id)

    async def get_users(self, user_ids: List[str]) -> Dict[str, dict]:
        raise NotImplementedError


class MongoWebinarStore(WebinarStore):
    """MongoDB-backed store; every mutation is one conditional write"""

    def __init__(self, database):
        self.db = database

    async def create_webinar(self, webinar: dict) -> dict:
        try:
            await self.db.webinars.insert_one(dict(webinar))
        except DuplicateKeyError:
            raise ConflictError("Slug already exists")
        webinar.pop("_id", None)
        return webinar

    async def get_webinar(self, webinar_id: str) -> Optional[dict]:
        return await self.db.webinars.find_one({"id": webinar_id}, WEBINAR_PROJECTION)

    async def get_webinar_by_slug(self, slug: str) -> Optional[dict]:
        return await self.db.webinars.find_one({"slug": slug}, WEBINAR_PROJECTION)

    async def list_webinars(self, filters: dict, sort_field: str = "scheduled_at", direction: int = -1) -> List[dict]:
        return await self.db.webinars.find(filters, WEBINAR_PROJECTION).sort(sort_field, direction).to_list(1000)

    async def update_webinar(
        self,
        webinar_id: str,
        fields: dict,
        expected_ctas: Optional[list] = None,
        max_roster_size: Optional[int] = None
    ) -> Optional[dict]:
        query = {"id": webinar_id}
        if expected_ctas is not None:
            # CTAs are append-only: only write if nobody changed them since they were validated
            query["ctas"] = expected_ctas
        if max_roster_size is not None:
            query["$expr"] = {"$lte": [{"$size": {"$ifNull": ["$attendees", []]}}, max_roster_size]}
        try:
            return await self.db.webinars.find_one_and_update(
                query,
                {"$set": fields},
                projection=WEBINAR_PROJECTION,
                return_document=ReturnDocument.AFTER
            )
        except DuplicateKeyError:
            raise ConflictError("Slug already exists")

    async def advance_status(self, webinar_id: str, target_status: str, extra_fields: dict = None) -> Optional[dict]:
        update = {"status": target_status, "updated_at": datetime.now(timezone.utc)}
        update.update(extra_fields or {})
        return await self.db.webinars.find_one_and_update(
            {"id": webinar_id, "status": {"$in": statuses_before(target_status)}},
            {"$set": update},
            projection=WEBINAR_PROJECTION,
            return_document=ReturnDocument.AFTER
        )

    async def delete_webinar(self, webinar_id: str) -> bool:
        result = await self.db.webinars.delete_one({"id": webinar_id})
        return result.deleted_count > 0

    async def insert_attendee(self, webinar_id: str, record: dict, require_status: Optional[str] = None) -> str:
        user_id = record["user_id"]
        query = {
            "id": webinar_id,
            "attendees.user_id": {"$ne": user_id},
            "$expr": {"$lt": [{"$size": {"$ifNull": ["$attendees", []]}}, "$capacity"]}
        }
        if require_status:
            query["status"] = require_status

        for _ in range(INSERT_ATTEMPTS):
            result = await self.db.webinars.update_one(
                query,
                {
                    "$push": {"attendees": record},
                    "$inc": {"roster_version": 1},
                    "$set": {"updated_at": datetime.now(timezone.utc)}
                }
            )
            if result.modified_count:
                return INSERT_OK

            current = await self.db.webinars.find_one(
                {"id": webinar_id},
                {"_id": 0, "status": 1, "capacity": 1, "attendees": 1}
            )
            outcome = classify_failed_insert(current, user_id, require_status)
            if outcome:
                return outcome

        logger.warning(f"Conditional insert for {user_id} on webinar {webinar_id} kept racing; reporting full")
        return INSERT_FULL

    async def set_attendee_status(
        self,
        webinar_id: str,
        user_id: str,
        status: str,
        unless_status: Optional[str] = None
    ) -> bool:
        excluded = [status] + ([unless_status] if unless_status else [])
        result = await self.db.webinars.update_one(
            {
                "id": webinar_id,
                "attendees": {"$elemMatch": {"user_id": user_id, "status": {"$nin": excluded}}}
            },
            {
                "$set": {"attendees.$.status": status, "updated_at": datetime.now(timezone.utc)},
                "$inc": {"roster_version": 1}
            }
        )
        return result.modified_count > 0

    async def remove_attendee(self, webinar_id: str, user_id: str) -> bool:
        result = await self.db.webinars.update_one(
            {"id": webinar_id, "attendees.user_id": user_id},
            {
                "$pull": {"attendees": {"user_id": user_id}},
                "$inc": {"roster_version": 1},
                "$set": {"updated_at": datetime.now(timezone.utc)}
            }
        )
        return result.modified_count > 0

    async def get_attendee(self, webinar_id: str, user_id: str) -> Optional[dict]:
        webinar = await self.db.webinars.find_one(
            {"id": webinar_id, "attendees.user_id": user_id},
            {"_id": 0, "attendees.$": 1}
        )
        if not webinar or not webinar.get("attendees"):
            return None
        return webinar["attendees"][0]

    async def add_active_cta(self, webinar_id: str, index: int) -> Optional[List[int]]:
        webinar = await self.db.webinars.find_one_and_update(
            {"id": webinar_id, f"ctas.{index}": {"$exists": True}},
            {"$addToSet": {"active_cta_indices": index}},
            projection={"_id": 0, "active_cta_indices": 1},
            return_document=ReturnDocument.AFTER
        )
        if webinar is None:
            return None
        return webinar.get("active_cta_indices", [])

    async def remove_active_cta(self, webinar_id: str, index: int) -> Optional[List[int]]:
        webinar = await self.db.webinars.find_one_and_update(
            {"id": webinar_id},
            {"$pull": {"active_cta_indices": index}},
            projection={"_id": 0, "active_cta_indices": 1},
            return_document=ReturnDocument.AFTER
        )
        if webinar is None:
            return None
        return webinar.get("active_cta_indices", [])

    async def find_reminder_candidates(self, window_start: datetime, window_end: datetime) -> List[dict]:
        return await self.db.webinars.find(
            reminder_due_query((window_start, window_end)),
            {"_id": 0, "id": 1, "name": 1, "scheduled_at": 1}
        ).to_list(500)

    async def claim_reminder(
        self,
        webinar_id: str,
        claimed_at: datetime,
        window: Optional[Tuple[datetime, datetime]] = None,
        force: bool = False
    ) -> Optional[dict]:
        query = {"id": webinar_id}
        if not force:
            query.update(reminder_due_query(window))
        return await self.db.webinars.find_one_and_update(
            query,
            {"$set": {
                "reminder_sent": True,
                "reminder_state": REMINDER_CLAIMED,
                "reminder_claimed_at": claimed_at
            }},
            projection=WEBINAR_PROJECTION,
            return_document=ReturnDocument.AFTER
        )

    async def record_reminder_sent(self, webinar_id: str, sent_at: datetime) -> None:
        await self.db.webinars.update_one(
            {"id": webinar_id},
            {"$set": {"reminder_state": REMINDER_SENT, "reminder_sent_at": sent_at}}
        )

    async def set_external_audience_list_id(self, webinar_id: str, list_id: str) -> Optional[str]:
        webinar = await self.db.webinars.find_one_and_update(
            {"id": webinar_id, "external_audience_list_id": None},
            {"$set": {"external_audience_list_id": list_id, "updated_at": datetime.now(timezone.utc)}},
            projection={"_id": 0, "external_audience_list_id": 1},
            return_document=ReturnDocument.AFTER
        )
        if webinar is None:
            # Someone else linked a list first; theirs wins
            current = await self.db.webinars.find_one({"id": webinar_id}, {"_id": 0, "external_audience_list_id": 1})
            return current.get("external_audience_list_id") if current else None
        return webinar.get("external_audience_list_id")

    async def get_users(self, user_ids: List[str]) -> Dict[str, dict]:
        if not user_ids:
            return {}
        users = await self.db.users.find({"id": {"$in": list(user_ids)}}, USER_PROJECTION).to_list(len(user_ids))
        return {u["id"]: u for u in users}


class InMemoryWebinarStore(WebinarStore):
    """
    Process-local store with the same conditional semantics as MongoWebinarStore.

    Each public operation takes the lock and completes without awaiting
    anything else, so it is atomic with respect to other coroutines.
    Documents are deep-copied on the way in and out.
    """

    def __init__(self):
        self._webinars: Dict[str, dict] = {}
        self._users: Dict[str, dict] = {}
        self._lock = asyncio.Lock()

    # ---- helpers ----
    def _find_by(self, field: str, value) -> Optional[dict]:
        return next((w for w in self._webinars.values() if w.get(field) == value), None)

    @staticmethod
    def _matches(webinar: dict, filters: dict) -> bool:
        return all(webinar.get(key) == value for key, value in filters.items())

    @staticmethod
    def _out(webinar: Optional[dict]) -> Optional[dict]:
        return copy.deepcopy(webinar) if webinar is not None else None

    def add_user(self, user: dict) -> None:
        self._users[user["id"]] = copy.deepcopy(user)

    # ---- webinars ----
    async def create_webinar(self, webinar: dict) -> dict:
        async with self._lock:
            if self._find_by("slug", webinar["slug"]) or webinar["id"] in self._webinars:
                raise ConflictError("Slug already exists")
            self._webinars[webinar["id"]] = copy.deepcopy(webinar)
            return self._out(webinar)

    async def get_webinar(self, webinar_id: str) -> Optional[dict]:
        async with self._lock:
            return self._out(self._webinars.get(webinar_id))

    async def get_webinar_by_slug(self, slug: str) -> Optional[dict]:
        async with self._lock:
            return self._out(self._find_by("slug", slug))

    async def list_webinars(self, filters: dict, sort_field: str = "scheduled_at", direction: int = -1) -> List[dict]:
        async with self._lock:
            found = [w for w in self._webinars.values() if self._matches(w, filters)]
            found.sort(key=lambda w: (w.get(sort_field) is None, w.get(sort_field)), reverse=direction < 0)
            return [self._out(w) for w in found]

    async def update_webinar(
        self,
        webinar_id: str,
        fields: dict,
        expected_ctas: Optional[list] = None,
        max_roster_size: Optional[int] = None
    ) -> Optional[dict]:
        async with self._lock:
            webinar = self._webinars.get(webinar_id)
            if webinar is None:
                return None
            if expected_ctas is not None and webinar.get("ctas", []) != expected_ctas:
                return None
            if max_roster_size is not None and len(webinar.get("attendees", [])) > max_roster_size:
                return None
            slug = fields.get("slug")
            if slug:
                other = self._find_by("slug", slug)
                if other and other["id"] != webinar_id:
                    raise ConflictError("Slug already exists")
            webinar.update(copy.deepcopy(fields))
            return self._out(webinar)

    async def advance_status(self, webinar_id: str, target_status: str, extra_fields: dict = None) -> Optional[dict]:
        async with self._lock:
            webinar = self._webinars.get(webinar_id)
            if webinar is None or webinar.get("status") not in statuses_before(target_status):
                return None
            webinar["status"] = target_status
            webinar["updated_at"] = datetime.now(timezone.utc)
            webinar.update(extra_fields or {})
            return self._out(webinar)

    async def delete_webinar(self, webinar_id: str) -> bool:
        async with self._lock:
            return self._webinars.pop(webinar_id, None) is not None

    # ---- roster ----
    async def insert_attendee(self, webinar_id: str, record: dict, require_status: Optional[str] = None) -> str:
        async with self._lock:
            webinar = self._webinars.get(webinar_id)
            outcome = classify_failed_insert(webinar, record["user_id"], require_status)
            if outcome:
                return outcome
            webinar.setdefault("attendees", []).append(copy.deepcopy(record))
            webinar["roster_version"] = webinar.get("roster_version", 0) + 1
            webinar["updated_at"] = datetime.now(timezone.utc)
            return INSERT_OK

    async def set_attendee_status(
        self,
        webinar_id: str,
        user_id: str,
        status: str,
        unless_status: Optional[str] = None
    ) -> bool:
        async with self._lock:
            webinar = self._webinars.get(webinar_id)
            if webinar is None:
                return False
            for attendee in webinar.get("attendees", []):
                if attendee.get("user_id") != user_id:
                    continue
                if attendee.get("status") in (status, unless_status):
                    return False
                attendee["status"] = status
                webinar["roster_version"] = webinar.get("roster_version", 0) + 1
                webinar["updated_at"] = datetime.now(timezone.utc)
                return True
            return False

    async def remove_attendee(self, webinar_id: str, user_id: str) -> bool:
        async with self._lock:
            webinar = self._webinars.get(webinar_id)
            if webinar is None:
                return False
            attendees = webinar.get("attendees", [])
            remaining = [a for a in attendees if a.get("user_id") != user_id]
            if len(remaining) == len(attendees):
                return False
            webinar["attendees"] = remaining
            webinar["roster_version"] = webinar.get("roster_version", 0) + 1
            webinar["updated_at"] = datetime.now(timezone.utc)
            return True

    # ---- CTAs ----
    async def add_active_cta(self, webinar_id: str, index: int) -> Optional[List[int]]:
        async with self._lock:
            webinar = self._webinars.get(webinar_id)
            if webinar is None or not 0 <= index < len(webinar.get("ctas", [])):
                return None
            active = webinar.setdefault("active_cta_indices", [])
            if index not in active:
                active.append(index)
            return list(active)

    async def remove_active_cta(self, webinar_id: str, index: int) -> Optional[List[int]]:
        async with self._lock:
            webinar = self._webinars.get(webinar_id)
            if webinar is None:
                return None
            webinar["active_cta_indices"] = [i for i in webinar.get("active_cta_indices", []) if i != index]
            return list(webinar["active_cta_indices"])

    # ---- reminders ----
    async def find_reminder_candidates(self, window_start: datetime, window_end: datetime) -> List[dict]:
        async with self._lock:
            return [
                {"id": w["id"], "name": w.get("name"), "scheduled_at": w.get("scheduled_at")}
                for w in self._webinars.values()
                if is_reminder_due(w, (window_start, window_end))
            ]

    async def claim_reminder(
        self,
        webinar_id: str,
        claimed_at: datetime,
        window: Optional[Tuple[datetime, datetime]] = None,
        force: bool = False
    ) -> Optional[dict]:
        async with self._lock:
            webinar = self._webinars.get(webinar_id)
            if webinar is None or not (force or is_reminder_due(webinar, window)):
                return None
            webinar["reminder_sent"] = True
            webinar["reminder_state"] = REMINDER_CLAIMED
            webinar["reminder_claimed_at"] = claimed_at
            return self._out(webinar)

    async def record_reminder_sent(self, webinar_id: str, sent_at: datetime) -> None:
        async with self._lock:
            webinar = self._webinars.get(webinar_id)
            if webinar is not None:
                webinar["reminder_state"] = REMINDER_SENT
                webinar["reminder_sent_at"] = sent_at

    # ---- audience ----
    async def set_external_audience_list_id(self, webinar_id: str, list_id: str) -> Optional[str]:
        async with self._lock:
            webinar = self._webinars.get(webinar_id)
            if webinar is None:
                return None
            if not webinar.get("external_audience_list_id"):
                webinar["external_audience_list_id"] = list_id
                webinar["updated_at"] = datetime.now(timezone.utc)
            return webinar["external_audience_list_id"]

    # ---- user directory ----
    async def get_users(self, user_ids: List[str]) -> Dict[str, dict]:
        async with self._lock:
            return {uid: copy.deepcopy(self._users[uid]) for uid in user_ids if uid in self._users}


def build_webinar_store(backend: str = None) -> WebinarStore:
    """Build the store selected by STORE_BACKEND"""
    from config import STORE_BACKEND

    backend = backend or STORE_BACKEND
    if backend == "memory":
        logger.info("Using in-memory webinar store")
        return InMemoryWebinarStore()

    from database import db
    return MongoWebinarStore(db)


# Singleton instance
webinar_store = build_webinar_store()
