"""
Dependency providers for routers.
Tests swap these out with app.dependency_overrides.
"""
from services.webinar_store import WebinarStore


def get_store() -> WebinarStore:
    from services.webinar_store import webinar_store
    return webinar_store


def get_attendance_engine():
    from services.attendance_engine import attendance_engine
    return attendance_engine


def get_cta_activation_set():
    from services.cta_activation import cta_activation_set
    return cta_activation_set


def get_reminder_scheduler():
    from services.reminder_scheduler import reminder_scheduler
    return reminder_scheduler


def get_audience_reconciler():
    from services.audience_reconciler import audience_reconciler
    return audience_reconciler


def get_webinar_admin():
    from services.webinar_admin import webinar_admin
    return webinar_admin
