"""
HubSpot utilities - centralized token management
"""
import logging

from config import HUBSPOT_TOKEN, STORE_BACKEND

logger = logging.getLogger(__name__)


async def get_hubspot_token() -> str:
    """
    Get HubSpot token - prioritize MongoDB settings over env var.
    This allows the token to be rotated via settings without restarting the server.
    """
    if STORE_BACKEND == "mongo":
        from database import db
        try:
            settings = await db.settings.find_one({}, {"_id": 0, "hubspot_token": 1})
            if settings and settings.get('hubspot_token'):
                return settings['hubspot_token']
        except Exception as e:
            logger.warning(f"Could not read HubSpot token from settings, using env: {e}")
    return HUBSPOT_TOKEN


async def get_hubspot_headers(token: str = None) -> dict:
    """Get headers for HubSpot API calls"""
    token = token or await get_hubspot_token()
    return {
        "Authorization": f"Bearer {token}",
        "Content-Type": "application/json"
    }
