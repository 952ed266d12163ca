"""
api/limiter.py -- Shared slowapi rate limiter instance.

api/main.py mounts it (app.state.limiter + SlowAPIMiddleware) and
api/routes/v1/auth.py applies the login and register limits from Settings
with @limiter.limit().

Keyed by client IP. Counters live in process memory, so each worker process
counts separately; run behind a single worker or point storage_uri at a
shared backend when that matters.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
