"""
Tests for HubSpot Audience Client

Uses httpx.MockTransport to stand in for the HubSpot CRM v3 API.
"""

import pytest
import json
import httpx
import sys
import os

# Configure pytest-asyncio
pytestmark = pytest.mark.asyncio(loop_scope="function")

# Add backend to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from services.hubspot_audience import HubSpotAudienceClient
from utils.errors import ExternalServiceError

BASE = "https://api.hubapi.com/crm/v3"


async def fake_token():
    return "test-token"


async def no_token():
    return ""


def client_for(handler, token_provider=fake_token):
    return HubSpotAudienceClient(
        token_provider=token_provider,
        base_url=BASE,
        transport=httpx.MockTransport(handler)
    )


class TestContacts:
    """Tests for contact upsert"""

    async def test_existing_contact_is_reused(self):
        calls = []

        def handler(request):
            calls.append((request.method, request.url.path, json.loads(request.content)))
            assert request.headers["Authorization"] == "Bearer test-token"
            return httpx.Response(200, json={"total": 1, "results": [{"id": 501, "properties": {}}]})

        contact_id = await client_for(handler).resolve_or_create_contact({"email": "Ana@Example.com"})

        assert contact_id == "501"
        assert len(calls) == 1
        method, path, body = calls[0]
        assert (method, path) == ("POST", "/crm/v3/objects/contacts/search")
        assert body["filterGroups"][0]["filters"][0] == {"propertyName": "email", "operator": "EQ", "value": "ana@example.com"}

    async def test_missing_contact_is_created(self):
        def handler(request):
            if request.url.path.endswith("/search"):
                return httpx.Response(200, json={"total": 0, "results": []})
            body = json.loads(request.content)
            assert body["properties"] == {
                "email": "ana@example.com",
                "firstname": "Ana",
                "lastname": "Lopez",
                "phone": ""
            }
            return httpx.Response(201, json={"id": "777"})

        contact_id = await client_for(handler).resolve_or_create_contact(
            {"email": "ana@example.com", "first_name": "Ana", "last_name": "Lopez"}
        )

        assert contact_id == "777"

    async def test_create_conflict_falls_back_to_search(self):
        searches = {"n": 0}

        def handler(request):
            if request.url.path.endswith("/search"):
                searches["n"] += 1
                results = [] if searches["n"] == 1 else [{"id": "900"}]
                return httpx.Response(200, json={"total": len(results), "results": results})
            return httpx.Response(409, json={"message": "Contact already exists"})

        assert await client_for(handler).resolve_or_create_contact({"email": "ana@example.com"}) == "900"

    async def test_contact_without_email(self):
        with pytest.raises(ExternalServiceError):
            await client_for(lambda request: httpx.Response(200)).resolve_or_create_contact({"email": None})


class TestLists:
    """Tests for list creation and membership"""

    @pytest.mark.parametrize("payload", [
        {"list": {"listId": "42", "name": "Webinar"}},
        {"listId": 42},
        {"id": "42"},
    ])
    async def test_create_list_accepts_both_shapes(self, payload):
        def handler(request):
            assert json.loads(request.content) == {"name": "Webinar", "objectTypeId": "0-1", "processingType": "MANUAL"}
            return httpx.Response(200, json=payload)

        assert await client_for(handler).create_list("Webinar") == "42"

    async def test_create_list_without_id_is_malformed(self):
        handler = lambda request: httpx.Response(200, json={"list": {"name": "Webinar"}})

        with pytest.raises(ExternalServiceError) as exc:
            await client_for(handler).create_list("Webinar")
        assert "Malformed" in exc.value.message

    async def test_get_members_follows_paging(self):
        pages = {
            None: {"results": [{"recordId": "1"}, {"recordId": 2}], "paging": {"next": {"after": "abc"}}},
            "abc": {"results": [{"recordId": "3"}]},
        }

        def handler(request):
            return httpx.Response(200, json=pages[request.url.params.get("after")])

        assert await client_for(handler).get_members("42") == ["1", "2", "3"]

    async def test_update_members_body(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["method"] = request.method
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"recordIdsAdded": ["3"], "recordIdsRemoved": ["1"]})

        await client_for(handler).update_members("42", ["3"], ["1"])

        assert seen == {
            "path": "/crm/v3/lists/42/memberships/add-and-remove",
            "method": "PUT",
            "body": {"recordIdsToAdd": ["3"], "recordIdsToRemove": ["1"]}
        }

    async def test_add_members_sends_id_array(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(204)

        await client_for(handler).add_members("42", ["1", "2"])

        assert seen == {"path": "/crm/v3/lists/42/memberships/add", "body": ["1", "2"]}


class TestFailures:
    """Tests for error mapping"""

    async def test_non_2xx_raises_with_upstream_status(self):
        handler = lambda request: httpx.Response(403, json={"message": "Missing scopes"})

        with pytest.raises(ExternalServiceError) as exc:
            await client_for(handler).create_list("Webinar")

        assert exc.value.upstream_status == 403
        assert "Missing scopes" in exc.value.message
        assert exc.value.status_code == 500

    async def test_transport_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        with pytest.raises(ExternalServiceError):
            await client_for(handler).get_members("42")

    async def test_missing_token(self):
        with pytest.raises(ExternalServiceError) as exc:
            await client_for(lambda request: httpx.Response(200), token_provider=no_token).get_members("42")
        assert exc.value.message == "HubSpot API key not configured"
