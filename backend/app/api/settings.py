"""Readiness and email settings API endpoints."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from app.api.deps import get_actor_session, get_current_actor_id, get_session_registry
from app.schemas.settings import (
    EmailSettingsDraftUpdate,
    EmailSettingsResponse,
    ReadinessStatusResponse,
    SendTestEmailRequest,
    SendTestEmailResponse,
    VisibilityResumeResponse,
)
from app.services.email_settings import EmailConfigDraft, EmailConfigWorkflow
from app.services.errors import (
    DeliveryError,
    OperationResult,
    PersistenceError,
    ValidationError,
)
from app.services.session import ActorSession, ActorSessionRegistry

router = APIRouter(prefix="/settings", tags=["Settings"])
logger = logging.getLogger(__name__)

ERROR_STATUS_CODES = {
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    PersistenceError: status.HTTP_503_SERVICE_UNAVAILABLE,
    DeliveryError: status.HTTP_502_BAD_GATEWAY,
}


def raise_for_result(result: OperationResult) -> None:
    """Turn a failed workflow result into an HTTP error."""
    if result.ok or result.error is None:
        return
    status_code = ERROR_STATUS_CODES.get(
        type(result.error), status.HTTP_500_INTERNAL_SERVER_ERROR
    )
    raise HTTPException(status_code=status_code, detail=result.error.to_dict())


def mask_api_key(api_key: str) -> str | None:
    """Last four characters of a key long enough to keep the rest hidden."""
    if len(api_key) <= 8:
        return None
    return api_key[-4:]


def serialize_email_settings(workflow: EmailConfigWorkflow) -> EmailSettingsResponse:
    draft = workflow.draft
    persisted = workflow.persisted
    saved_draft = (
        EmailConfigDraft.from_config(persisted) if persisted else EmailConfigDraft()
    )
    return EmailSettingsResponse(
        enabled=draft.enabled,
        has_provider_api_key=bool(draft.provider_api_key),
        provider_api_key_last4=mask_api_key(draft.provider_api_key),
        from_address=draft.from_address,
        from_display_name=draft.from_display_name,
        test_recipient=workflow.test_recipient,
        state=workflow.state.value,
        send_state=workflow.send_state.value,
        updated_at=persisted.updated_at if persisted else None,
        has_unsaved_changes=draft != saved_draft,
    )


def apply_draft_update(workflow: EmailConfigWorkflow, update: EmailSettingsDraftUpdate) -> None:
    changes = update.model_dump(exclude_unset=True)
    enabled = changes.pop("enabled", None)
    if enabled is not None:
        workflow.set_enabled(enabled)
    for name, value in changes.items():
        workflow.set_field(name, value)


@router.get("/status", response_model=ReadinessStatusResponse)
async def get_readiness_status(
    session: Annotated[ActorSession, Depends(get_actor_session)],
):
    """Get the cached configuration readiness for the current actor."""
    return ReadinessStatusResponse(**session.readiness.get_status().as_dict())


@router.post("/status/refresh", response_model=ReadinessStatusResponse)
async def refresh_readiness_status(
    session: Annotated[ActorSession, Depends(get_actor_session)],
):
    """Re-run the four readiness lookups now."""
    readiness = await session.readiness.refresh(session.actor_id)
    return ReadinessStatusResponse(**readiness.as_dict())


@router.post("/status/visibility", response_model=VisibilityResumeResponse)
async def visibility_resumed(
    session: Annotated[ActorSession, Depends(get_actor_session)],
):
    """Signal that the client regained foreground visibility."""
    refreshed = await session.readiness.on_visibility_resumed()
    return VisibilityResumeResponse(
        refreshed=refreshed,
        status=ReadinessStatusResponse(**session.readiness.get_status().as_dict()),
    )


@router.get("/email", response_model=EmailSettingsResponse)
async def load_email_settings(
    session: Annotated[ActorSession, Depends(get_actor_session)],
):
    """Load the saved email settings into the session draft."""
    raise_for_result(await session.email.load())
    return serialize_email_settings(session.email)


@router.patch("/email/draft", response_model=EmailSettingsResponse)
async def update_email_draft(
    update: EmailSettingsDraftUpdate,
    session: Annotated[ActorSession, Depends(get_actor_session)],
):
    """Edit the draft without validating or saving it."""
    raise_for_result(await session.email.ensure_loaded())
    apply_draft_update(session.email, update)
    return serialize_email_settings(session.email)


@router.put("/email", response_model=EmailSettingsResponse)
async def save_email_settings(
    session: Annotated[ActorSession, Depends(get_actor_session)],
    update: EmailSettingsDraftUpdate | None = None,
):
    """Apply optional edits to the draft, validate it and save it."""
    raise_for_result(await session.email.ensure_loaded())
    if update is not None:
        apply_draft_update(session.email, update)
    raise_for_result(await session.email.save())
    return serialize_email_settings(session.email)


@router.post("/email/test", response_model=SendTestEmailResponse)
async def send_test_email(
    session: Annotated[ActorSession, Depends(get_actor_session)],
    request: SendTestEmailRequest | None = None,
):
    """Send a verification email using the current (possibly unsaved) draft."""
    raise_for_result(await session.email.ensure_loaded())
    recipient = request.test_recipient if request else None
    result = await session.email.send_test(recipient)
    raise_for_result(result)
    return SendTestEmailResponse(
        success=True,
        message="Test email sent. Check your inbox to confirm the email was received.",
        message_id=result.value,
    )


@router.delete("/session", status_code=204)
async def end_settings_session(
    actor_id: Annotated[str, Depends(get_current_actor_id)],
    registry: Annotated[ActorSessionRegistry, Depends(get_session_registry)],
):
    """Discard the actor's draft and cached readiness (sign-out)."""
    await registry.discard(actor_id)
