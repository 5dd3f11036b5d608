"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in api/main.py (to mount as middleware) and in route modules (to
apply per-route limits with @limiter.limit()).

Using a single shared instance ensures all routes share the same in-memory
counter store. Two layers apply:
  - API_RATE_LIMIT: one application-wide budget per client IP, enforced by
    SlowAPIMiddleware on every route not marked @limiter.exempt.
  - LOGIN_RATE_LIMIT: the tighter per-route limit on login and register.
RATE_LIMIT_ENABLED=false turns every limit off (test runs).
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

_settings = get_settings()

limiter = Limiter(
    key_func=get_remote_address,
    application_limits=[_settings.api_rate_limit],
    storage_uri="memory://",
    enabled=_settings.rate_limit_enabled,
)
