"""API key generation and format validation.

Keys look like ``<prefix>_<env>_<year>_<random>``, e.g.
``bal_dev_2026_3f9c...``. The random part is lowercase hex from
``secrets`` so the structural regex below always accepts generated keys.
"""

import re
import secrets
from datetime import datetime, timezone
from functools import lru_cache

from gateway.config import KeyPolicy


@lru_cache(maxsize=8)
def _key_pattern(prefix: str) -> re.Pattern[str]:
    return re.compile(rf"^{re.escape(prefix)}_[a-z]+_\d{{4}}_[a-z0-9]+$")


def generate_api_key(policy: KeyPolicy, now: datetime | None = None) -> str:
    """Generate a new key value for the configured prefix and environment."""
    year = (now or datetime.now(timezone.utc)).year
    random_part = secrets.token_hex((policy.random_length + 1) // 2)[: policy.random_length]
    return f"{policy.prefix}_{policy.environment}_{year:04d}_{random_part}"


def is_valid_api_key(value: str | None, prefix: str) -> bool:
    """Structural check run before any store lookup."""
    if not value:
        return False
    return _key_pattern(prefix).match(value) is not None
