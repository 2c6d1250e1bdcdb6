"""Authentication utilities for the moderation gateway."""

from gateway.auth.api_key import generate_api_key, is_valid_api_key
from gateway.auth.jwt import create_access_token, decode_token

__all__ = [
    "generate_api_key",
    "is_valid_api_key",
    "create_access_token",
    "decode_token",
]
