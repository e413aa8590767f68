"""
Audience Reconciler - keeps a webinar's external audience list equal to its roster

The list is created lazily on first sync. After that only the difference
between the roster and the current list membership is applied, so running
it again with an unchanged roster is a no-op.
"""
import logging
from typing import Iterable, List, Tuple

from models.schemas import MembershipDelta, ReconcileResult
from services.webinar_store import WebinarStore, ensure_roster_invariants
from utils.contact_helpers import get_contact_email
from utils.errors import NotFoundError, ValidationError, ExternalServiceError

logger = logging.getLogger(__name__)


def compute_membership_delta(desired: Iterable[str], current: Iterable[str]) -> MembershipDelta:
    """to_add = desired - current, to_remove = current - desired (order preserved)"""
    desired = list(dict.fromkeys(desired))
    current = list(dict.fromkeys(current))
    desired_set, current_set = set(desired), set(current)
    return MembershipDelta(
        to_add=[cid for cid in desired if cid not in current_set],
        to_remove=[cid for cid in current if cid not in desired_set]
    )


def build_list_name(webinar: dict) -> str:
    title = webinar.get("line1") or webinar.get("name")
    scheduled_at = webinar.get("scheduled_at")
    suffix = scheduled_at.strftime("%Y-%m-%d") if scheduled_at else "participants"
    return f"Webinar: {title} ({suffix})"


class AudienceReconciler:
    def __init__(self, store: WebinarStore, audience_client):
        self.store = store
        self.audience = audience_client

    async def _resolve_contact_ids(self, webinar: dict) -> Tuple[List[str], int]:
        """External contact ids for every attendee with an email; returns (ids, skipped)"""
        attendees = webinar.get("attendees", [])
        users = await self.store.get_users([a["user_id"] for a in attendees])

        contact_ids = []
        skipped = 0
        for attendee in attendees:
            user = users.get(attendee["user_id"])
            if not get_contact_email(user):
                skipped += 1
                continue
            try:
                contact_ids.append(await self.audience.resolve_or_create_contact(user))
            except ExternalServiceError as e:
                logger.warning(f"Skipping attendee {attendee['user_id']} in audience sync: {e.message}")
                skipped += 1
        return list(dict.fromkeys(contact_ids)), skipped

    async def reconcile(self, webinar_id: str) -> ReconcileResult:
        webinar = ensure_roster_invariants(await self.store.get_webinar(webinar_id))
        if not webinar:
            raise NotFoundError("Webinar")

        desired, skipped = await self._resolve_contact_ids(webinar)
        list_id = webinar.get("external_audience_list_id")

        if list_id:
            current = await self.audience.get_members(list_id)
            delta = compute_membership_delta(desired, current)
            if not delta.is_empty:
                await self.audience.update_members(list_id, delta.to_add, delta.to_remove)
            logger.info(
                f"Audience list {list_id} for webinar {webinar_id} reconciled: "
                f"+{len(delta.to_add)} -{len(delta.to_remove)}"
            )
            return ReconcileResult(
                webinar_id=webinar_id,
                list_id=list_id,
                created=False,
                to_add=delta.to_add,
                to_remove=delta.to_remove,
                total_contacts=len(desired),
                skipped=skipped,
                message="HubSpot list updated successfully"
            )

        if not desired:
            raise ValidationError("No attendees with email to sync")

        new_list_id = await self.audience.create_list(build_list_name(webinar))
        await self.audience.add_members(new_list_id, desired)

        stored_id = await self.store.set_external_audience_list_id(webinar_id, new_list_id)
        if stored_id is None:
            raise NotFoundError("Webinar")
        if stored_id != new_list_id:
            # A concurrent sync linked its list first; converge that one instead
            logger.warning(
                f"Webinar {webinar_id} already linked to list {stored_id}; list {new_list_id} is orphaned"
            )
            return await self.reconcile(webinar_id)

        return ReconcileResult(
            webinar_id=webinar_id,
            list_id=new_list_id,
            created=True,
            to_add=desired,
            total_contacts=len(desired),
            skipped=skipped,
            message="HubSpot list created and participants added"
        )


def build_audience_reconciler() -> AudienceReconciler:
    from services.hubspot_audience import hubspot_audience_client
    from services.webinar_store import webinar_store
    return AudienceReconciler(webinar_store, hubspot_audience_client)


# Singleton instance
audience_reconciler = build_audience_reconciler()
