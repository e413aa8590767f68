"""
Rate Limiter module for Webinar Engine Backend
Shared rate limiter instance for attendee-facing routers
"""
from slowapi import Limiter
from slowapi.util import get_remote_address
from config import RATE_LIMIT_REGISTRATION

# Create shared limiter instance
limiter = Limiter(key_func=get_remote_address)

# Default rate limit for registration endpoints
REGISTRATION_RATE_LIMIT = RATE_LIMIT_REGISTRATION
