"""
Shared fixtures for webinar engine tests
"""
import os
import sys
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

# Tests never talk to a real MongoDB
os.environ.setdefault("STORE_BACKEND", "memory")

# Add backend to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from services.webinar_store import InMemoryWebinarStore  # noqa: E402
from services.webinar_admin import WebinarAdmin  # noqa: E402
from models.schemas import CreateWebinarRequest  # noqa: E402

FIXED_NOW = datetime(2025, 11, 11, 20, 15, tzinfo=timezone.utc)


class FixedClock:
    """Injectable clock that only moves when told to"""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeAudienceClient:
    """In-memory audience-list service; every method is an AsyncMock wrapping real behaviour"""

    def __init__(self):
        self.lists = {}
        self.contacts = {}
        self._next_id = 1000
        self.resolve_or_create_contact = AsyncMock(side_effect=self._resolve_or_create_contact)
        self.create_list = AsyncMock(side_effect=self._create_list)
        self.get_members = AsyncMock(side_effect=self._get_members)
        self.add_members = AsyncMock(side_effect=self._add_members)
        self.update_members = AsyncMock(side_effect=self._update_members)

    def _new_id(self) -> str:
        self._next_id += 1
        return str(self._next_id)

    async def _resolve_or_create_contact(self, user):
        email = user["email"].lower()
        if email not in self.contacts:
            self.contacts[email] = self._new_id()
        return self.contacts[email]

    async def _create_list(self, name):
        list_id = self._new_id()
        self.lists[list_id] = {"name": name, "members": []}
        return list_id

    async def _get_members(self, list_id):
        return list(self.lists[list_id]["members"])

    async def _add_members(self, list_id, ids):
        members = self.lists[list_id]["members"]
        members.extend(i for i in ids if i not in members)

    async def _update_members(self, list_id, to_add, to_remove):
        members = [m for m in self.lists[list_id]["members"] if m not in to_remove]
        members.extend(i for i in to_add if i not in members)
        self.lists[list_id]["members"] = members


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def store():
    return InMemoryWebinarStore()


@pytest.fixture
def notifier():
    """Notification collaborator that always succeeds"""
    fake = MagicMock()
    fake.send_template_notification = AsyncMock(return_value="message-id")
    return fake


@pytest.fixture
def audience():
    return FakeAudienceClient()


@pytest.fixture
def add_users(store):
    """Seed the user directory: add_users('u1', 'u2', ...)"""
    def _add(*user_ids, role="user", with_email=True):
        for user_id in user_ids:
            store.add_user({
                "id": user_id,
                "email": f"{user_id}@example.com" if with_email else None,
                "first_name": user_id.capitalize(),
                "last_name": "Tester",
                "phone": "+15550000000",
                "role": role,
            })
    return _add


@pytest.fixture
def make_webinar(store, clock):
    """Create webinars through the admin service: await make_webinar(slug=..., capacity=...)"""
    admin = WebinarAdmin(store, clock=clock)
    counter = {"n": 0}

    async def _make(**overrides):
        counter["n"] += 1
        data = {
            "name": f"Webinar {counter['n']}",
            "slug": f"webinar-{counter['n']}",
            "scheduled_at": clock() + timedelta(days=1),
            "line1": f"Growth Session {counter['n']}",
            "capacity": 100,
            "ctas": [
                {"label": "Book a call", "link": "https://example.com/book"},
                {"label": "Download guide", "link": "https://example.com/guide"},
                {"label": "Join community", "link": "https://example.com/community"},
            ],
        }
        status = overrides.pop("status", None)
        data.update(overrides)
        webinar = await admin.create_webinar(CreateWebinarRequest(**data), created_by="admin-1")
        if status and status != webinar["status"]:
            webinar = await store.advance_status(webinar["id"], status)
        return webinar

    return _make
