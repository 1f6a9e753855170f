"""
Rate limiting configuration using slowapi.

Availability queries each hit the host store several times, so the public
endpoint is limited per client IP (``RATE_LIMIT_DEFAULT``, 60/min unless
configured otherwise).
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from venue_availability.config import RATE_LIMIT_DEFAULT

limiter = Limiter(key_func=get_remote_address, default_limits=[RATE_LIMIT_DEFAULT])

# Named rate strings for use in @limiter.limit() decorators
DEFAULT = RATE_LIMIT_DEFAULT
