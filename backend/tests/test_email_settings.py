from datetime import UTC, datetime

import pytest

from app.services.email import DeliveryResult
from app.services.email_settings import (
    EmailConfig,
    EmailConfigDraft,
    EmailConfigWorkflow,
    SendState,
    WorkflowState,
)
from app.services.errors import DeliveryError, PersistenceError, ValidationError

ACTOR = "actor-1"


@pytest.fixture()
def workflow(email_repository, provider, clock):
    return EmailConfigWorkflow(ACTOR, email_repository, provider, clock=clock)


@pytest.mark.anyio
async def test_load_without_row_yields_default_draft(workflow, email_repository):
    assert workflow.state is WorkflowState.unloaded

    result = await workflow.load()

    assert result.ok is True
    assert workflow.state is WorkflowState.loaded
    assert workflow.draft == EmailConfigDraft()
    assert workflow.draft.enabled is False
    assert workflow.draft.provider_api_key == ""
    assert workflow.draft.from_address == ""
    assert workflow.persisted is None
    assert email_repository.get_calls == 1


@pytest.mark.anyio
async def test_load_existing_row_populates_draft(workflow, email_repository):
    stored = EmailConfig(
        actor_id=ACTOR,
        enabled=True,
        provider_api_key="re_live_key",
        from_address="no-reply@acme.test",
        from_display_name="Acme Clinic",
        updated_at=datetime(2026, 1, 5, tzinfo=UTC),
    )
    await email_repository.upsert(stored)

    result = await workflow.load()

    assert result.ok is True
    assert workflow.persisted == stored
    assert workflow.draft == EmailConfigDraft(
        enabled=True,
        provider_api_key="re_live_key",
        from_address="no-reply@acme.test",
        from_display_name="Acme Clinic",
    )


@pytest.mark.anyio
async def test_load_failure_is_reported_and_keeps_workflow_unloaded(workflow, email_repository):
    email_repository.fail_with = ConnectionError("store offline")

    result = await workflow.load()

    assert result.ok is False
    assert isinstance(result.error, PersistenceError)
    assert "store offline" in result.error.message
    assert workflow.state is WorkflowState.unloaded


def test_draft_edits_never_touch_the_store(workflow, email_repository):
    workflow.set_enabled(True)
    workflow.set_field("provider_api_key", "re_key")
    workflow.set_field("from_address", "desk@clinic.test")
    workflow.set_field("from_display_name", "")
    workflow.set_field("test_recipient", "qa@example.com")

    assert workflow.draft.enabled is True
    assert workflow.draft.provider_api_key == "re_key"
    assert workflow.draft.from_display_name is None
    assert workflow.test_recipient == "qa@example.com"
    assert email_repository.get_calls == 0
    assert email_repository.upsert_calls == 0


def test_unknown_field_is_rejected(workflow):
    with pytest.raises(ValueError):
        workflow.set_field("smtp_host", "mail.example.com")


@pytest.mark.anyio
async def test_disabled_config_saves_with_empty_fields(workflow, email_repository, clock):
    await workflow.load()

    result = await workflow.save()

    assert result.ok is True
    stored = await email_repository.get(ACTOR)
    assert stored.enabled is False
    assert stored.provider_api_key == ""
    assert stored.from_address == ""
    assert stored.updated_at == clock.now


@pytest.mark.anyio
async def test_enabled_config_requires_api_key_before_any_backend_call(workflow, email_repository):
    await workflow.load()
    workflow.set_enabled(True)
    workflow.set_field("from_address", "no-reply@acme.test")

    result = await workflow.save()

    assert result.ok is False
    assert isinstance(result.error, ValidationError)
    assert result.error.message == "providerApiKey required"
    assert result.error.field == "provider_api_key"
    assert email_repository.upsert_calls == 0
    assert workflow.state is WorkflowState.loaded


@pytest.mark.anyio
async def test_enabled_config_requires_from_address(workflow, email_repository):
    await workflow.load()
    workflow.set_enabled(True)
    workflow.set_field("provider_api_key", "re_key")

    result = await workflow.save()

    assert isinstance(result.error, ValidationError)
    assert result.error.message == "fromAddress required"
    assert email_repository.upsert_calls == 0


@pytest.mark.anyio
async def test_validation_reports_only_the_first_failure(workflow):
    await workflow.load()
    workflow.set_enabled(True)

    result = await workflow.save()

    assert result.error.message == "providerApiKey required"


@pytest.mark.anyio
async def test_persistence_failure_preserves_draft_and_snapshot(workflow, email_repository):
    await workflow.load()
    workflow.set_enabled(True)
    workflow.set_field("provider_api_key", "re_key")
    workflow.set_field("from_address", "no-reply@acme.test")
    email_repository.fail_with = RuntimeError("duplicate key value")

    result = await workflow.save()

    assert result.ok is False
    assert isinstance(result.error, PersistenceError)
    assert result.error.message == "duplicate key value"
    assert workflow.draft.provider_api_key == "re_key"
    assert workflow.persisted is None
    assert workflow.state is WorkflowState.loaded


@pytest.mark.anyio
async def test_save_then_load_sees_saved_row(email_repository, provider, clock):
    first = EmailConfigWorkflow(ACTOR, email_repository, provider, clock=clock)
    await first.load()
    first.set_enabled(True)
    first.set_field("provider_api_key", "re_key")
    first.set_field("from_address", "no-reply@acme.test")
    assert (await first.save()).ok is True

    second = EmailConfigWorkflow(ACTOR, email_repository, provider, clock=clock)
    await second.load()

    assert second.draft == first.draft


@pytest.mark.anyio
async def test_send_test_uses_display_name_in_from_header(workflow, provider):
    workflow.set_field("provider_api_key", "re_draft_key")
    workflow.set_field("from_address", "no-reply@acme.test")
    workflow.set_field("from_display_name", "Acme Clinic")

    result = await workflow.send_test("qa@example.com")

    assert result.ok is True
    assert result.value == "msg_123"
    api_key, message = provider.calls[0]
    assert api_key == "re_draft_key"
    assert message.sender == "Acme Clinic <no-reply@acme.test>"
    assert message.to == ["qa@example.com"]
    assert message.subject == "Test Email from ClinicFlow"
    assert message.text


@pytest.mark.anyio
async def test_send_test_without_display_name_uses_bare_address(workflow, provider):
    workflow.set_field("provider_api_key", "re_draft_key")
    workflow.set_field("from_address", "no-reply@acme.test")

    await workflow.send_test("qa@example.com")

    assert provider.calls[0][1].sender == "no-reply@acme.test"


@pytest.mark.anyio
async def test_send_test_requires_recipient(workflow, provider):
    workflow.set_field("provider_api_key", "re_draft_key")
    workflow.set_field("from_address", "no-reply@acme.test")

    result = await workflow.send_test("")

    assert isinstance(result.error, ValidationError)
    assert result.error.message == "test recipient required"
    assert provider.calls == []


@pytest.mark.anyio
async def test_send_test_requires_draft_credentials(workflow, provider):
    result = await workflow.send_test("qa@example.com")

    assert isinstance(result.error, ValidationError)
    assert result.error.field == "provider_api_key"
    assert provider.calls == []


@pytest.mark.anyio
async def test_send_test_uses_held_recipient(workflow, provider):
    workflow.set_field("provider_api_key", "re_draft_key")
    workflow.set_field("from_address", "no-reply@acme.test")
    workflow.set_field("test_recipient", "held@example.com")

    result = await workflow.send_test()

    assert result.ok is True
    assert provider.calls[0][1].to == ["held@example.com"]


@pytest.mark.anyio
async def test_send_test_uses_unsaved_draft_not_persisted_row(email_repository, provider, clock):
    await email_repository.upsert(
        EmailConfig(
            actor_id=ACTOR,
            enabled=True,
            provider_api_key="re_saved_key",
            from_address="saved@acme.test",
        )
    )
    workflow = EmailConfigWorkflow(ACTOR, email_repository, provider, clock=clock)
    await workflow.load()
    workflow.set_field("provider_api_key", "re_new_key")

    await workflow.send_test("qa@example.com")

    assert provider.calls[0][0] == "re_new_key"
    assert workflow.persisted.provider_api_key == "re_saved_key"
    assert email_repository.upsert_calls == 1


@pytest.mark.anyio
async def test_provider_rejection_becomes_delivery_error(email_repository, make_provider, clock):
    provider = make_provider(result=DeliveryResult(success=False, error="Invalid API key"))
    workflow = EmailConfigWorkflow(ACTOR, email_repository, provider, clock=clock)
    workflow.set_field("provider_api_key", "re_bad")
    workflow.set_field("from_address", "no-reply@acme.test")

    result = await workflow.send_test("qa@example.com")

    assert isinstance(result.error, DeliveryError)
    assert result.error.message == "Invalid API key"
    assert workflow.send_state is SendState.idle
    assert len(provider.calls) == 1


@pytest.mark.anyio
async def test_provider_exception_becomes_delivery_error(email_repository, make_provider, clock):
    provider = make_provider(error=TimeoutError("read timed out"))
    workflow = EmailConfigWorkflow(ACTOR, email_repository, provider, clock=clock)
    workflow.set_field("provider_api_key", "re_key")
    workflow.set_field("from_address", "no-reply@acme.test")

    result = await workflow.send_test("qa@example.com")

    assert isinstance(result.error, DeliveryError)
    assert "read timed out" in result.error.message
    assert workflow.send_state is SendState.idle
    assert workflow.draft.provider_api_key == "re_key"


@pytest.mark.anyio
async def test_operations_without_actor_are_programming_errors(email_repository, provider):
    workflow = EmailConfigWorkflow(None, email_repository, provider)

    with pytest.raises(RuntimeError):
        await workflow.load()
    with pytest.raises(RuntimeError):
        await workflow.save()
    assert email_repository.get_calls == 0


@pytest.mark.anyio
async def test_end_to_end_configure_save_and_verify(workflow, email_repository, provider, clock):
    assert (await workflow.load()).ok is True
    workflow.set_enabled(True)

    rejected = await workflow.save()
    assert isinstance(rejected.error, ValidationError)
    assert email_repository.upsert_calls == 0

    workflow.set_field("provider_api_key", "re_live_key")
    workflow.set_field("from_address", "no-reply@acme.test")
    workflow.set_field("from_display_name", "Acme Clinic")
    clock.advance(60)
    saved = await workflow.save()

    assert saved.ok is True
    assert saved.value.updated_at == clock.now
    assert workflow.persisted.updated_at == clock.now
    assert email_repository.upsert_calls == 1

    sent = await workflow.send_test("qa@example.com")

    assert sent.ok is True
    api_key, message = provider.calls[0]
    assert api_key == "re_live_key"
    assert message.sender == "Acme Clinic <no-reply@acme.test>"


@pytest.mark.anyio
async def test_save_before_load_is_refused_and_keeps_stored_row(email_repository, provider, clock):
    stored = EmailConfig(
        actor_id=ACTOR,
        enabled=True,
        provider_api_key="re_live_key",
        from_address="desk@acme.test",
    )
    await email_repository.upsert(stored)
    workflow = EmailConfigWorkflow(ACTOR, email_repository, provider, clock=clock)
    workflow.set_field("from_display_name", "Acme Health")

    result = await workflow.save()

    assert isinstance(result.error, ValidationError)
    assert "not loaded" in result.error.message
    assert email_repository.upsert_calls == 1
    assert await email_repository.get(ACTOR) == stored


@pytest.mark.anyio
async def test_save_after_failed_load_is_refused(workflow, email_repository):
    email_repository.fail_with = ConnectionError("store offline")
    await workflow.load()
    email_repository.fail_with = None

    result = await workflow.save()

    assert isinstance(result.error, ValidationError)
    assert email_repository.upsert_calls == 0


@pytest.mark.anyio
async def test_ensure_loaded_loads_only_once(workflow, email_repository):
    assert (await workflow.ensure_loaded()).ok is True
    workflow.set_field("provider_api_key", "re_edit")

    assert (await workflow.ensure_loaded()).ok is True

    assert email_repository.get_calls == 1
    assert workflow.draft.provider_api_key == "re_edit"
