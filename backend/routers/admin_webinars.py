"""
Admin Webinars Router - webinar management for admins
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from models.schemas import CreateWebinarRequest, UpdateWebinarRequest, AdvanceStatusRequest
from routers.auth import require_admin
from routers.deps import get_webinar_admin, get_attendance_engine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webinars/admin", tags=["admin-webinars"])


@router.get("")
async def list_webinars(
    status: Optional[str] = None,
    stream_type: Optional[str] = None,
    order_by: str = Query("scheduled_at"),
    order: str = Query("desc"),
    current_user: dict = Depends(require_admin),
    admin=Depends(get_webinar_admin)
):
    webinars = await admin.list_webinars(status=status, stream_type=stream_type, order_by=order_by, order=order)
    return {"message": "Webinars fetched successfully", "webinars": webinars, "total": len(webinars)}


@router.post("")
async def create_webinar(
    data: CreateWebinarRequest,
    current_user: dict = Depends(require_admin),
    admin=Depends(get_webinar_admin)
):
    webinar = await admin.create_webinar(data, created_by=current_user.get("id"))
    return {"message": "Webinar created successfully", "webinar": webinar}


@router.get("/{webinar_id}")
async def get_webinar(
    webinar_id: str,
    current_user: dict = Depends(require_admin),
    admin=Depends(get_webinar_admin)
):
    webinar = await admin.get_webinar(webinar_id)
    return {"message": "Webinar fetched successfully", "webinar": webinar}


@router.put("/{webinar_id}")
async def update_webinar(
    webinar_id: str,
    data: UpdateWebinarRequest,
    current_user: dict = Depends(require_admin),
    admin=Depends(get_webinar_admin)
):
    webinar = await admin.update_webinar(webinar_id, data)
    return {"message": "Webinar updated successfully", "webinar": webinar}


@router.delete("/{webinar_id}")
async def delete_webinar(
    webinar_id: str,
    current_user: dict = Depends(require_admin),
    admin=Depends(get_webinar_admin)
):
    await admin.delete_webinar(webinar_id)
    return {"message": "Webinar deleted successfully"}


@router.post("/{webinar_id}/end")
async def end_webinar(
    webinar_id: str,
    current_user: dict = Depends(require_admin),
    admin=Depends(get_webinar_admin)
):
    webinar = await admin.end_webinar(webinar_id)
    return {"message": "Webinar ended successfully", "webinar": webinar}


@router.post("/{webinar_id}/status")
async def advance_webinar_status(
    webinar_id: str,
    data: AdvanceStatusRequest,
    current_user: dict = Depends(require_admin),
    admin=Depends(get_webinar_admin)
):
    webinar = await admin.advance_status(webinar_id, data.status)
    return {"message": "Webinar status updated successfully", "webinar": webinar}


@router.get("/{webinar_id}/attendees")
async def get_webinar_attendees(
    webinar_id: str,
    current_user: dict = Depends(require_admin),
    engine=Depends(get_attendance_engine)
):
    attendees = await engine.list_attendees(webinar_id)
    return {
        "message": "Attendees fetched successfully",
        "attendees": [a.model_dump() for a in attendees],
        "total": len(attendees)
    }


@router.post("/{webinar_id}/user/{user_id}/attend")
async def admin_mark_user_attended(
    webinar_id: str,
    user_id: str,
    current_user: dict = Depends(require_admin),
    engine=Depends(get_attendance_engine)
):
    outcome = await engine.admin_mark_attended(webinar_id, user_id)
    return outcome.model_dump()
