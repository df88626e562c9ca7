"""Rate limiting for the poolvest API.

Limits apply per client address. Endpoints opt into a tighter limit with
``@limiter.limit(...)``; everything else shares ``rate_limit_default``.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from app.settings import settings

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.rate_limit_default],
    storage_uri=settings.rate_limit_storage_uri,
    # Tests and local runs hit the API from one address
    enabled=settings.env == "production",
)
