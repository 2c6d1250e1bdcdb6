"""Edge rate limiting for developer portal endpoints using slowapi."""

from slowapi import Limiter
from slowapi.util import get_remote_address

# Keyed by client address; protects key management, not the moderation
# surface, which is governed by the per-key token bucket.
limiter = Limiter(key_func=get_remote_address)


def reset_limiter() -> None:
    """Reset the limiter storage. Used in tests to clear rate limit state."""
    if hasattr(limiter, "_limiter") and limiter._limiter:
        storage = limiter._limiter.storage
        if hasattr(storage, "reset"):
            storage.reset()
