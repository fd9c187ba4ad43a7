"""API Routes for the ClinicFlow settings service."""

from app.api import health, settings

__all__ = [
    "health",
    "settings",
]
