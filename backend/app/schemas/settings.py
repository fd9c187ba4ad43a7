"""Pydantic schemas for readiness and email settings endpoints."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


# === Readiness ===


class ReadinessStatusResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    profile_complete: bool
    clinic_complete: bool
    doctor_complete: bool
    region_complete: bool
    all_complete: bool
    last_checked: datetime


class VisibilityResumeResponse(BaseModel):
    refreshed: bool
    status: ReadinessStatusResponse


# === Email settings ===


class EmailSettingsDraftUpdate(BaseModel):
    """Partial draft edit. Unset fields are left untouched."""

    enabled: bool | None = None
    provider_api_key: str | None = Field(None, max_length=255)
    from_address: str | None = Field(None, max_length=255)
    from_display_name: str | None = Field(None, max_length=255)
    test_recipient: str | None = Field(None, max_length=255)


class EmailSettingsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    enabled: bool
    has_provider_api_key: bool = False
    provider_api_key_last4: str | None = None
    from_address: str
    from_display_name: str | None = None
    test_recipient: str = ""
    state: str
    send_state: str
    updated_at: datetime | None = None
    has_unsaved_changes: bool = False


class SendTestEmailRequest(BaseModel):
    test_recipient: str | None = Field(None, max_length=255)


class SendTestEmailResponse(BaseModel):
    success: bool
    message: str
    message_id: str | None = None
