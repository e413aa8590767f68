"""
HubSpot Audience Client - CRM v3 contacts and static lists

Implements the audience-list collaborator used by the reconciler:
contact upsert by email, list creation and membership reads/updates.
Every response is validated against a DTO in models.hubspot; a non-2xx
status, a transport error or a malformed body raises ExternalServiceError.
"""
import logging
from typing import Awaitable, Callable, Dict, List, Optional

import httpx
from pydantic import BaseModel, ValidationError as DTOValidationError

from config import HUBSPOT_API_BASE
from models.hubspot import ContactSearchResponse, CreatedList, HubSpotObject, MembershipPage
from utils.contact_helpers import get_contact_email, get_first_name, get_last_name, get_phone
from utils.errors import ExternalServiceError
from utils.hubspot_helpers import get_hubspot_token, get_hubspot_headers

logger = logging.getLogger(__name__)

MEMBERSHIP_PAGE_SIZE = 250


class HubSpotAudienceClient:
    def __init__(
        self,
        token_provider: Callable[[], Awaitable[str]] = get_hubspot_token,
        base_url: str = HUBSPOT_API_BASE,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0
    ):
        self.token_provider = token_provider
        self.base_url = base_url.rstrip("/")
        self.transport = transport
        self.timeout = timeout

    async def _request(self, method: str, path: str, json=None, params: Dict = None) -> Optional[dict]:
        token = await self.token_provider()
        if not token:
            raise ExternalServiceError("HubSpot API key not configured", service="hubspot")
        headers = await get_hubspot_headers(token)

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.request(method, f"{self.base_url}{path}", json=json, params=params, headers=headers)
        except httpx.HTTPError as e:
            raise ExternalServiceError(f"HubSpot request failed: {e}", service="hubspot")

        if resp.status_code >= 400:
            raise ExternalServiceError(
                f"HubSpot API error {resp.status_code}: {self._error_message(resp)}",
                service="hubspot",
                upstream_status=resp.status_code
            )
        if resp.status_code == 204 or not resp.content:
            return None
        try:
            return resp.json()
        except ValueError:
            raise ExternalServiceError("HubSpot returned a non-JSON response", service="hubspot")

    @staticmethod
    def _error_message(resp: httpx.Response) -> str:
        try:
            data = resp.json()
        except ValueError:
            return resp.text[:200]
        if isinstance(data, dict):
            return str(data.get("message") or data.get("error") or data)
        return str(data)

    @staticmethod
    def _parse(model: type, data, what: str) -> BaseModel:
        try:
            return model.model_validate(data if data is not None else {})
        except DTOValidationError as e:
            raise ExternalServiceError(f"Malformed HubSpot {what} response: {e.error_count()} error(s)", service="hubspot")

    async def search_contact(self, email: str) -> Optional[str]:
        data = await self._request("POST", "/objects/contacts/search", json={
            "filterGroups": [{
                "filters": [{"propertyName": "email", "operator": "EQ", "value": email}]
            }],
            "properties": ["email"],
            "limit": 1
        })
        found = self._parse(ContactSearchResponse, data, "contact search")
        return found.results[0].id if found.results else None

    async def resolve_or_create_contact(self, user: dict) -> str:
        """Search by email, create when missing. Safe to repeat."""
        email = get_contact_email(user)
        if not email:
            raise ExternalServiceError("Contact has no email", service="hubspot")

        contact_id = await self.search_contact(email)
        if contact_id:
            return contact_id

        try:
            data = await self._request("POST", "/objects/contacts", json={
                "properties": {
                    "email": email,
                    "firstname": get_first_name(user),
                    "lastname": get_last_name(user),
                    "phone": get_phone(user) or ""
                }
            })
        except ExternalServiceError as e:
            # Created by someone else between search and create
            if e.upstream_status == 409:
                contact_id = await self.search_contact(email)
                if contact_id:
                    return contact_id
            raise

        created = self._parse(HubSpotObject, data, "contact create")
        logger.info(f"Created HubSpot contact {created.id} for {email}")
        return created.id

    async def create_list(self, name: str) -> str:
        data = await self._request("POST", "/lists", json={
            "name": name,
            "objectTypeId": "0-1",
            "processingType": "MANUAL"
        })
        created = self._parse(CreatedList, data, "list create")
        logger.info(f"Created HubSpot list {created.list_id}: {name}")
        return created.list_id

    async def get_members(self, list_id: str) -> List[str]:
        """All record ids in a list, following paging.next.after"""
        members = []
        after = None
        while True:
            params = {"limit": MEMBERSHIP_PAGE_SIZE}
            if after:
                params["after"] = after
            data = await self._request("GET", f"/lists/{list_id}/memberships", params=params)
            page = self._parse(MembershipPage, data, "membership")
            members.extend(m.record_id for m in page.results)
            after = page.next_after
            if not after:
                break
        return members

    async def add_members(self, list_id: str, contact_ids: List[str]) -> None:
        if not contact_ids:
            return
        await self._request("PUT", f"/lists/{list_id}/memberships/add", json=list(contact_ids))

    async def update_members(self, list_id: str, to_add: List[str], to_remove: List[str]) -> None:
        await self._request("PUT", f"/lists/{list_id}/memberships/add-and-remove", json={
            "recordIdsToAdd": list(to_add),
            "recordIdsToRemove": list(to_remove)
        })


# Singleton instance
hubspot_audience_client = HubSpotAudienceClient()
