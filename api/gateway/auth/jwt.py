"""Developer bearer tokens.

Tokens are issued by the developer portal; the gateway only verifies them
and reads the developer id from ``sub``. ``create_access_token`` exists for
tooling and tests that need to act as a developer.
"""

from datetime import datetime, timedelta, timezone

from jose import jwt

from gateway.config import settings

ALGORITHM = "HS256"


def create_access_token(developer_id: str, expires_minutes: int = 15) -> str:
    """Create a short-lived developer access token."""
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    payload = {
        "sub": developer_id,
        "exp": expire,
        "type": "access",
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=ALGORITHM)


def decode_token(token: str) -> dict | None:
    """
    Decode and validate a JWT token.

    Returns the payload if valid, None if invalid or expired.
    """
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[ALGORITHM])
    except jwt.JWTError:
        return None
