"""Pydantic schemas for API request/response validation."""

from app.schemas.settings import (
    EmailSettingsDraftUpdate,
    EmailSettingsResponse,
    ReadinessStatusResponse,
    SendTestEmailRequest,
    SendTestEmailResponse,
    VisibilityResumeResponse,
)

__all__ = [
    # Readiness
    "ReadinessStatusResponse",
    "VisibilityResumeResponse",
    # Email settings
    "EmailSettingsDraftUpdate",
    "EmailSettingsResponse",
    "SendTestEmailRequest",
    "SendTestEmailResponse",
]
