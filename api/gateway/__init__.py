"""Moderation Gateway: API-key admission control for the moderation service."""

__version__ = "0.1.0"
