"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and the route
modules (to apply limits with @limiter.shared_limit()).

Using a single shared instance ensures all routes share the same in-memory
counter store. The auth routes additionally share one bucket (scope "auth"),
so register, login, refresh and logout together count against one limit
per client address.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

AUTH_SCOPE = "auth"
AUTH_RATE_LIMIT = get_settings().auth_rate_limit

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
