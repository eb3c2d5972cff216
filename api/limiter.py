"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in api/main.py (to attach to app.state) and in the route modules
(to apply per-route limits with @limiter.limit()).

Using a single shared instance ensures all routes share the same counter
store. If this were instantiated in each module separately, each module would
get its own isolated counter and rate limits would never trigger.

Keys are "<client ip>" scoped per route by slowapi, so each sensitive endpoint
has its own budget per client. The moving-window strategy counts requests in
the trailing window rather than in fixed buckets.

Weak consistency: with storage_uri="memory://" the counters live in this
process only. Several instances behind a load balancer each enforce their own
limit. Set RATE_LIMIT_STORAGE_URI to a shared backend (e.g. redis://) for a
global limit.
"""

from slowapi import Limiter

from auth.dependencies import client_ip
from core.config import get_settings

limiter = Limiter(
    key_func=client_ip,
    storage_uri=get_settings().rate_limit_storage_uri,
    strategy="moving-window",
)


# Resolved per request so tests and deployments can change them via settings.
def login_limit() -> str:
    return get_settings().login_rate_limit


def signup_limit() -> str:
    return get_settings().signup_rate_limit
