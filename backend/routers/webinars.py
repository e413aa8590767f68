"""
Webinars Router - attendee-facing webinar operations

Public:
- GET  /webinars/public                          listings shown on the portal
- GET  /webinars/public/{id_or_slug}
- GET  /webinars/{id}/cta/active

Attendee (bearer token):
- POST   /webinars/{id}/register
- DELETE /webinars/{id}/register (alias /unregister)
- POST   /webinars/{id}/attend
- POST   /webinars/{id}/watch

Admin:
- POST /webinars/{id}/cta/{index}/activate | deactivate
- POST /webinars/{id}/sync-audience
- POST /webinars/{id}/test-reminder
"""
import logging

from fastapi import APIRouter, Depends, Request

from rate_limiter import limiter, REGISTRATION_RATE_LIMIT
from routers.auth import get_current_user, require_admin
from routers.deps import (
    get_attendance_engine,
    get_cta_activation_set,
    get_reminder_scheduler,
    get_audience_reconciler,
    get_webinar_admin,
)
from services.webinar_admin import public_view

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webinars", tags=["webinars"])


# ============ PUBLIC ============

@router.get("/public")
async def list_public_webinars(admin=Depends(get_webinar_admin)):
    webinars = await admin.list_public_webinars()
    return {"message": "Webinars fetched successfully", "webinars": webinars}


@router.get("/public/{id_or_slug}")
async def get_public_webinar(id_or_slug: str, admin=Depends(get_webinar_admin)):
    webinar = await admin.get_webinar(id_or_slug)
    return {"message": "Webinar fetched successfully", "webinar": public_view(webinar)}


@router.get("/{webinar_id}/cta/active")
async def get_active_ctas(webinar_id: str, ctas=Depends(get_cta_activation_set)):
    active = await ctas.get_active(webinar_id)
    return {"message": "Active CTAs fetched successfully", "active_cta_indices": active}


# ============ ATTENDEE ============

@router.post("/{webinar_id}/register")
@limiter.limit(REGISTRATION_RATE_LIMIT)
async def register_for_webinar(
    request: Request,
    webinar_id: str,
    current_user: dict = Depends(get_current_user),
    engine=Depends(get_attendance_engine)
):
    outcome = await engine.register(webinar_id, current_user["id"])
    return outcome.model_dump()


@router.delete("/{webinar_id}/register")
@router.delete("/{webinar_id}/unregister")
async def unregister_from_webinar(
    webinar_id: str,
    current_user: dict = Depends(get_current_user),
    engine=Depends(get_attendance_engine)
):
    outcome = await engine.unregister(webinar_id, current_user["id"])
    return outcome.model_dump()


@router.post("/{webinar_id}/attend")
async def mark_as_attended(
    webinar_id: str,
    current_user: dict = Depends(get_current_user),
    engine=Depends(get_attendance_engine)
):
    outcome = await engine.mark_attended(webinar_id, current_user["id"])
    return outcome.model_dump()


@router.post("/{webinar_id}/watch")
async def mark_as_watched(
    webinar_id: str,
    current_user: dict = Depends(get_current_user),
    engine=Depends(get_attendance_engine)
):
    outcome = await engine.mark_watched(webinar_id, current_user["id"])
    return outcome.model_dump()


# ============ ADMIN ============

@router.post("/{webinar_id}/cta/{index}/activate")
async def activate_cta(
    webinar_id: str,
    index: str,
    current_user: dict = Depends(require_admin),
    ctas=Depends(get_cta_activation_set)
):
    active = await ctas.activate(webinar_id, index)
    return {"message": "CTA activated successfully", "active_cta_indices": active}


@router.post("/{webinar_id}/cta/{index}/deactivate")
async def deactivate_cta(
    webinar_id: str,
    index: str,
    current_user: dict = Depends(require_admin),
    ctas=Depends(get_cta_activation_set)
):
    active = await ctas.deactivate(webinar_id, index)
    return {"message": "CTA deactivated successfully", "active_cta_indices": active}


@router.post("/{webinar_id}/sync-audience")
async def sync_audience(
    webinar_id: str,
    current_user: dict = Depends(require_admin),
    reconciler=Depends(get_audience_reconciler)
):
    result = await reconciler.reconcile(webinar_id)
    logger.info(f"Audience sync for webinar {webinar_id} requested by {current_user.get('id')}")
    return result.model_dump()


@router.post("/{webinar_id}/test-reminder")
async def send_test_reminder(
    webinar_id: str,
    current_user: dict = Depends(require_admin),
    scheduler=Depends(get_reminder_scheduler)
):
    result = await scheduler.send_test_reminder(webinar_id)
    return {"message": "Test reminder sent successfully", "webinar": result.model_dump()}
