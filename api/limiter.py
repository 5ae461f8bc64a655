"""
api/limiter.py -- Shared slowapi rate limiter instance.

Imported by api/main.py (mounted as middleware, stored on app.state.limiter)
and by api/routes/v1/auth.py (per-route limit on POST /auth/login).

There must be exactly one instance: every route has to share the same
in-memory counter store, or limits would never trigger.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
