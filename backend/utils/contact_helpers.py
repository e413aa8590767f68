"""
Contact helper utilities for reading attendee contact info from user documents.
"""
from typing import Any, Dict, Optional


def get_contact_email(user: Optional[Dict[str, Any]]) -> Optional[str]:
    """
    Primary email of a user document, normalized.
    Returns None when the user has no usable address.
    """
    if not user:
        return None
    email = user.get("email")
    if not email and user.get("emails"):
        email = (user["emails"][0] or {}).get("email")
    if not email or "@" not in email:
        return None
    return email.strip().lower()


def get_first_name(user: Optional[Dict[str, Any]]) -> str:
    if not user:
        return ""
    return user.get("first_name") or user.get("firstName") or ""


def get_last_name(user: Optional[Dict[str, Any]]) -> str:
    if not user:
        return ""
    return user.get("last_name") or user.get("lastName") or ""


def get_phone(user: Optional[Dict[str, Any]]) -> Optional[str]:
    if not user:
        return None
    return user.get("phone") or user.get("phone_number")
