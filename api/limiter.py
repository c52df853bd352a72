"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and
api/routes/v1/auth.py (to apply the tighter credential limits with
@limiter.limit()).

Using a single shared instance ensures all routes share the same in-memory
counter store.

API_RATE_LIMIT is the default applied to every route; RATE_LIMIT_ENABLED=false
turns limiting off entirely (the test suite does this).
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

_settings = get_settings()

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
    default_limits=[_settings.api_rate_limit],
    enabled=_settings.rate_limit_enabled,
)
